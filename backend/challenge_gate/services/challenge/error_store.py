"""One-shot storage of the last challenge failure."""

from dataclasses import dataclass
from typing import Optional

from challenge_gate.core.session import LoginSession

ERROR_FLAG_KEY = "two_factor_auth_error"
ERROR_MESSAGE_KEY = "two_factor_auth_error_message"


@dataclass(frozen=True)
class ChallengeError:
    """Failure state shown on the next challenge page."""

    had_error: bool = False
    message: Optional[str] = None


class SessionErrorStore:
    """Holds the last verification failure for one login session.

    Reading clears the slot, so a failure is displayed exactly once and a
    page reload does not repeat it.
    """

    def __init__(self, session: LoginSession) -> None:
        self.session = session

    async def store_message(self, message: str) -> None:
        """Remember a provider's user-facing message for the next display."""
        await self.session.set(ERROR_MESSAGE_KEY, message)

    async def flag_failure(self) -> None:
        await self.session.set(ERROR_FLAG_KEY, True)

    async def pop(self) -> ChallengeError:
        """Return and clear the pending failure, if any."""
        if not await self.session.exists(ERROR_FLAG_KEY):
            return ChallengeError()

        await self.session.remove(ERROR_FLAG_KEY)
        message = await self.session.get(ERROR_MESSAGE_KEY)
        await self.session.remove(ERROR_MESSAGE_KEY)
        return ChallengeError(had_error=True, message=message)
