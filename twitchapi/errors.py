"""Exceptions raised by the Twitch HTTP clients."""

from typing import Optional


class TwitchAPIError(Exception):
    """Base class for upstream Twitch failures."""

    def __init__(self, status: Optional[int], detail: str = ""):
        self.status = status
        self.detail = detail
        super().__init__(f"{status}: {detail}" if status is not None else detail)


class TokenRequestError(TwitchAPIError):
    """
    Token or validate endpoint failure.

    transient=True covers network errors, timeouts and 5xx: the credential
    itself may still be good. Anything else is a rejection of the credential.
    """

    def __init__(self, status: Optional[int], detail: str = "", transient: bool = False):
        super().__init__(status, detail)
        self.transient = transient


class HelixError(TwitchAPIError):
    """Helix API call failed (non-2xx or transport error)."""
