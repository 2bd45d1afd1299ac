"""Errors raised by the client for misuse of the session API.

These never cross the wire; protocol errors live in ``triggerware.jsonrpc``.
"""


class TriggerwareUsageError(Exception):
    """Base class for local usage errors."""


class ParameterModeError(TriggerwareUsageError):
    """A parameter was addressed by name on a positional statement, or by index on a named one."""


class ParameterBoundsError(TriggerwareUsageError, LookupError):
    """A parameter index or name does not exist in the statement's input signature."""


class ParameterTypeError(TriggerwareUsageError, TypeError):
    """A value does not satisfy the declared type of the parameter it is bound to."""


class InvalidScheduleError(TriggerwareUsageError, ValueError):
    """A polled query schedule is malformed or out of range."""


class SubscriptionStateError(TriggerwareUsageError):
    """A subscription or batch operation is not allowed in the current state."""
