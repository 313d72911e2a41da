"""Exception hierarchy for the Solar.Web exporter."""


class SolarWebError(Exception):
    """Base exception for Solar.Web exporter errors."""
    pass


class LogonRequiredError(SolarWebError):
    """Raised when the portal still demands a logon after the single retry."""

    def __init__(self, url: str, status: int):
        super().__init__(f"logon needed for {url} (HTTP {status})")
        self.url = url
        self.status = status


class DownloadError(SolarWebError):
    """Raised when a portal request fails at the transport level."""
    pass


class CookieStoreError(SolarWebError):
    """Raised when the cookie store cannot be persisted."""
    pass
