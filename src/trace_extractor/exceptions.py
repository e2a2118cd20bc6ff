"""Custom exceptions for Trace Extractor."""


class TraceExtractorError(Exception):
    """Base exception for errors raised outside the reconstruction core."""

    pass


class UnsupportedPlatformError(TraceExtractorError):
    """Raised when no default data store location is known for the platform."""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"Unsupported platform: {platform}")


class ExportError(TraceExtractorError):
    """Raised when a rendered conversation cannot be written to disk."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to export {path}: {reason}")
