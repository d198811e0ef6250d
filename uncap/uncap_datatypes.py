"""
Defines the shared data types of the uncap runtime.

This module holds the small value objects every other module works with:
resolution options, visibility flags, by-reference cells, the `Uncapsulated`
capability and the sentinels used by the dispatch protocol.
"""
import enum
import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


def _dbg(*parts):
    if os.environ.get("UNCAP_DEBUG"):
        try:
            print("[DBG]", *parts, file=sys.stderr)
        except Exception:
            pass


# =================================================================
# Resolution options and visibility
# =================================================================

class Visibility(enum.IntFlag):
    """Selects which members are eligible for resolution."""
    INSTANCE = 1
    STATIC = 2
    PUBLIC = 4
    NON_PUBLIC = 8


@dataclass(frozen=True)
class ResolutionOptions:
    """Options shared, unchanged, by every proxy derived from the same root."""
    use_global_cache: bool = False
    public_only: bool = False
    # None selects the shared PythonIntrospector.
    introspector: Optional[Any] = None

    @property
    def instance_flags(self) -> Visibility:
        flags = Visibility.INSTANCE | Visibility.STATIC | Visibility.PUBLIC
        if not self.public_only:
            flags |= Visibility.NON_PUBLIC
        return flags

    @property
    def static_flags(self) -> Visibility:
        flags = Visibility.STATIC | Visibility.PUBLIC
        if not self.public_only:
            flags |= Visibility.NON_PUBLIC
        return flags


DEFAULT_OPTIONS = ResolutionOptions()


def is_public_name(name: str) -> bool:
    if not name.startswith("_"):
        return True
    return name.startswith("__") and name.endswith("__")


def mangle(owner: type, name: str) -> str:
    """Applies Python's private-name mangling for `name` as if written inside `owner`."""
    if not name.startswith("__") or name.endswith("__") or "." in name:
        return name
    stripped = owner.__name__.lstrip("_")
    if not stripped:
        return name
    return f"_{stripped}{name}"


def demangle(storage: str) -> tuple[Optional[str], str]:
    """Splits `_Owner__name` into ('Owner', '__name'); other names give (None, name)."""
    if storage.startswith("_") and not storage.startswith("__"):
        idx = storage.find("__", 1)
        if idx > 1 and not storage.endswith("__"):
            return storage[1:idx], storage[idx:]
    return None, storage


# =================================================================
# By-reference cells
# =================================================================

class Ref(Generic[T]):
    """A by-reference argument. Annotate a parameter `Ref[int]` to receive one."""
    __slots__ = ("value",)

    def __init__(self, value: Optional[T] = None):
        self.value = value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.value!r})"


class Out(Ref[T]):
    """An output argument: like Ref, but the caller's initial value is not required."""
    __slots__ = ()


# =================================================================
# The uncapsulated capability and protocol sentinels
# =================================================================

class Uncapsulated(ABC):
    """Converting a proxy to this type returns the proxy itself instead of the wrapped value."""

    @property
    @abstractmethod
    def value(self) -> Any:
        raise NotImplementedError

    @property
    @abstractmethod
    def type(self) -> Optional[type]:
        raise NotImplementedError


class _Sentinel:
    """Internal helper class for creating named singleton markers."""
    def __init__(self, name):
        self._name = name

    def __repr__(self):
        return f"<{self._name}>"

    def __bool__(self):
        return False


# The operation was declined; the host falls back to its default binding.
NOT_HANDLED = _Sentinel("not-handled")
