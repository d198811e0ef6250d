"""
Exception types raised by the uncap runtime.

Every failure is an UncapsulationError, so callers can catch one type regardless
of where a lookup went wrong. The kinds below also derive from the builtin
exception Python code expects for the same situation (AttributeError for a
missing member, TypeError for a bad call), which keeps hasattr() and
getattr(obj, name, default) working on proxies.
"""
from typing import Optional


class UncapsulationError(Exception):
    """Base class for all binding-related errors; `inner` holds the original cause."""
    def __init__(self, message: str, inner: Optional[BaseException] = None):
        super().__init__(message)
        self.inner = inner


class NullTargetError(UncapsulationError, AttributeError):
    pass


class StaticOnlyError(UncapsulationError, TypeError):
    pass


class MissingMemberError(UncapsulationError, AttributeError):
    pass


class MissingOverloadError(UncapsulationError, TypeError):
    pass


class AmbiguousOverloadError(UncapsulationError, TypeError):
    pass


class InvalidCastError(UncapsulationError, TypeError):
    pass


class UnsupportedUsageError(UncapsulationError, TypeError):
    pass


def type_name(t) -> str:
    """Readable name of a class for error messages: builtins bare, others module-qualified."""
    if t is None:
        return "None"
    if not isinstance(t, type):
        return repr(t)
    module = getattr(t, "__module__", None)
    qual = getattr(t, "__qualname__", t.__name__)
    if module in (None, "builtins"):
        return qual
    return f"{module}.{qual}"
