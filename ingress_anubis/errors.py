"""Exceptions raised while reconciling Ingresses."""

__all__ = [
    "OperatorException",
    "TerminalError",
    "MalformedIngressError",
    "OwnerKeyError",
    "OwnerLabelError",
    "DirectiveError",
    "PortNotFoundError",
    "ReconcileCancelled",
    "ConfigError",
]


class OperatorException(Exception):
    """Generic base exception used for this operator."""


class TerminalError(OperatorException):
    """Raised when a reconciliation must not be retried until the Ingress changes."""


class MalformedIngressError(OperatorException):
    """Raised when an Ingress has nothing that can be wrapped."""


class OwnerKeyError(OperatorException):
    """Raised when an owner key cannot be encoded without ambiguity."""


class OwnerLabelError(OperatorException):
    """Raised when an owner label value cannot be decoded."""

    def __init__(self, value):
        super().__init__(f"failed to determine owner from owning label value {value!r}")
        self.value = value


class DirectiveError(OperatorException):
    """Raised when an annotation directive has a value of the wrong type."""

    def __init__(self, key, value, expected):
        super().__init__(f"failed to parse annotation {key} value {value!r} as {expected}")
        self.key = key
        self.value = value
        self.expected = expected


class PortNotFoundError(OperatorException):
    """Raised when a named service port cannot be resolved."""


class ReconcileCancelled(OperatorException):
    """Raised when shutdown was requested in the middle of a reconciliation."""


class ConfigError(OperatorException):
    """Raised when the process configuration is invalid."""
