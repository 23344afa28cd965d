"""
Exception types raised by the indexing pipeline
"""
from typing import Optional


class ExpoFinderError(Exception):
    """Base class for pipeline errors"""


class FetchError(ExpoFinderError):
    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class CredentialMissing(ExpoFinderError):
    """A provider needed for this run has no API key configured. Fatal to the run."""

    def __init__(self, provider: str, env_var: str):
        self.provider = provider
        self.env_var = env_var
        super().__init__(f"{provider} API key not configured (set {env_var})")


class ExtractionFailure(ExpoFinderError):
    """Model output could not be turned into exhibition records"""


class NotFoundError(ExpoFinderError):
    pass


class CooldownActive(ExpoFinderError):
    def __init__(self, city: str, hours_since: float, wait_hours: int):
        self.city = city
        self.hours_since = hours_since
        self.wait_hours = wait_hours
        super().__init__(
            f"City was indexed {int(hours_since)} hours ago. "
            f"Please wait {wait_hours} more hours."
        )


class PlacesError(ExpoFinderError):
    pass


class IndexingError(ExpoFinderError):
    def __init__(self, venue: str, message: str):
        self.venue = venue
        super().__init__(message)
