class AppError(Exception):
    """Base application error for the GeoPal service."""


class DatabaseOpenError(AppError):
    """Raised when a database file exists but cannot be opened as a MaxMind database."""


class RefreshError(AppError):
    """Base error for a failed database refresh step."""


class UnauthorizedDownloadError(RefreshError):
    """Raised when the provider rejects the license key for an edition (HTTP 401/403)."""


class DownloadError(RefreshError):
    """Raised on transport failures or unexpected HTTP responses from the provider."""


class ArchiveError(RefreshError):
    """Raised when the downloaded archive cannot be extracted or installed."""
