"""Exception hierarchy shared by the monitoring components."""


class AudioAwareError(Exception):
    """Base class for all AudioAware errors."""


class ConfigurationError(AudioAwareError, ValueError):
    """Invalid or missing configuration supplied by the caller."""


class SourceResolveError(AudioAwareError):
    """A channel or VOD reference could not be resolved to a stream URL."""


class StreamOfflineError(SourceResolveError):
    """The channel exists but is not currently broadcasting."""


class DecodeProcessError(AudioAwareError):
    """The decode subprocess failed to launch or exited abnormally."""
    
    def __init__(self, message: str, exit_code=None, diagnostic_text: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.diagnostic_text = diagnostic_text


class ChatConfigurationError(AudioAwareError):
    """Chat notifications are enabled but bot credentials are missing."""
