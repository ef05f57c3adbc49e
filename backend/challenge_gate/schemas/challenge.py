"""Two-factor login Pydantic schemas."""

from pydantic import BaseModel, Field


class ActivateProviderRequest(BaseModel):
    """Schema for finishing a provider's setup during login."""

    payload: str = Field(..., min_length=1, max_length=256, description="Provider-specific proof, e.g. the first TOTP code")


class ActivateProviderResponse(BaseModel):
    """Schema for the activation result."""

    provider_id: str
    activated: bool
