"""Two-factor provider exceptions."""


class TwoFactorException(Exception):
    """Raised by a provider when a challenge fails for a reason the user should see.

    The message is shown on the next challenge page, so it must not carry
    provider internals.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
