"""
Exception hierarchy for optimization sessions.

Every failure surfaces synchronously to the caller of the failing
operation; nothing in this package retries.
"""


class OptimumCompressorError(Exception):
    """Base exception for this package."""
    pass


class NotFoundError(OptimumCompressorError):
    """Raised when a config or model artifact does not exist at an identifier."""
    pass


class ConfigError(OptimumCompressorError):
    """Base exception for configuration errors."""
    pass


class ConfigNotFoundError(ConfigError, NotFoundError):
    """Raised when a config file cannot be found."""
    pass


class ConfigValidationError(ConfigError):
    """Raised when a config cannot be parsed into the expected schema."""
    pass


MalformedConfigError = ConfigValidationError


class IncompatibleConfigError(ConfigError):
    """Raised when configs or artifacts do not belong together."""
    pass


class ModelNotFoundError(NotFoundError):
    """Raised when no saved model exists at an identifier."""
    pass


class OptimizationError(OptimumCompressorError):
    """Base exception for optimization session errors."""
    pass


class OptimizationFailedError(OptimizationError):
    """Raised when the accuracy-driven search does not converge within budget."""
    pass


class OptimizerStateError(OptimizationError):
    """Raised when an operation is not allowed in the session's current state."""
    pass
