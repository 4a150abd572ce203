"""Exception types shared across tasksync."""


class ValidationError(ValueError):
    """Local mutation input was rejected before anything was enqueued."""


class ConfigError(ValueError):
    """Configuration value is missing or out of range."""


class TransportError(RuntimeError):
    """A whole batch request failed (unreachable, timeout, bad response)."""
