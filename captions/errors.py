"""Exception types for the captions package."""


class CaptionError(Exception):
    """Base class for all caption subsystem errors."""
    pass


class ConfigurationError(CaptionError):
    """Raised for configuration values that cannot work."""
    pass


class FatalParseError(CaptionError):
    """Raised when a caption document cannot be parsed at all."""
    pass


class EmptyContentError(FatalParseError):
    """Raised for empty or missing caption content."""
    pass


class StrictModeError(FatalParseError):
    """Raised in strict mode for any structural problem in the document."""
    pass


class TimestampError(CaptionError, ValueError):
    """Raised for a timestamp or timing line that cannot be read."""
    pass


class SwitchError(CaptionError):
    """Raised when a language switch cannot be completed."""

    def __init__(self, message: str, language_code: str = None):
        super().__init__(message)
        self.language_code = language_code


class LanguageNotAvailableError(SwitchError):
    """Raised when switching to a language that is not registered."""
    pass


class NoCuesError(SwitchError):
    """Raised when a language's caption content yields no usable cues."""
    pass


class SourceError(CaptionError):
    """Raised when a subtitle source fails to deliver content."""
    pass


class ResourceReleasedError(CaptionError):
    """Raised when reading a resource handle that was already released."""
    pass
