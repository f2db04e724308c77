"""
Operator error taxonomy.

Everything raised while creating, setting up or running an operator derives
from OperatorError so the entry point can tell operator failures apart from
programming errors.
"""

from typing import Optional


class OperatorError(Exception):
    """Base class for operator bootstrap errors."""


class UnknownOperatorKind(OperatorError):
    """The requested operator kind is not part of OperatorKind."""

    def __init__(self, kind):
        self.kind = kind
        super().__init__(f"unknown operator type: {kind}")


class OperatorNotImplemented(OperatorError):
    """The requested operator kind is known but has no implementation yet."""

    def __init__(self, kind):
        self.kind = kind
        super().__init__(f"{kind} operator not yet implemented")


class OperatorStateError(OperatorError):
    """A lifecycle operation was called in the wrong state."""


class SetupError(OperatorError):
    """
    A setup step failed.

    The message is the step description followed by the underlying cause,
    e.g. "unable to init services: monitoring: boom".
    """

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        self.step = step
        self.cause = cause
        message = step if cause is None else f"{step}: {cause}"
        super().__init__(message)


class CachePolicyError(OperatorError):
    """A namespace needed by the cache policy could not be resolved."""


class HandlerError(OperatorError):
    """A pluggable handler failed; `handler` holds its declared name."""

    def __init__(self, handler: str, message: str):
        self.handler = handler
        super().__init__(message)


class ManagerError(OperatorError):
    """The runtime manager rejected a registration or failed to run."""
