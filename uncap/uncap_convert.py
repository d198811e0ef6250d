"""
Conversions: explicit conversion of a proxy to a target type, viewing a value
through another type of its hierarchy (cast_to / as_type), and adapting an
iterable into a lazy sequence of proxies.
"""
import collections.abc
from typing import Any, Optional

from uncap.uncap_datatypes import Uncapsulated, _dbg
from uncap.uncap_errors import InvalidCastError, type_name
from uncap.uncap_reflection import Introspector


class ConversionEngine:
    def __init__(self, introspector: Introspector, public_only: bool = False):
        self.introspector = introspector
        self.public_only = public_only

    # ---------------------------------------------------------------
    # Explicit conversion
    # ---------------------------------------------------------------

    def convert(self, proxy, target: type) -> Any:
        if isinstance(target, type) and issubclass(target, Uncapsulated):
            return proxy
        value = proxy.value
        if value is None:
            return None
        if isinstance(target, type) and isinstance(value, target):
            return value
        if self.introspector.is_numeric(type(value)) and self.introspector.is_numeric(target):
            try:
                return target(value)
            except (TypeError, ValueError) as ex:
                raise InvalidCastError(
                    f"Cannot dynamically convert from type {type_name(type(value))} to {type_name(target)}.", ex) from ex
        raise InvalidCastError(
            f"Cannot dynamically convert from type {type_name(type(value))} to {type_name(target)}.")

    # ---------------------------------------------------------------
    # cast_to / as_type
    # ---------------------------------------------------------------

    def find_type_by_name(self, t: type, name: str) -> Optional[type]:
        """Finds a base class or interface of `t` by name; 'Box`1' also checks generic arity."""
        bare, _, arity = name.partition("`")
        arity = int(arity) if arity.isdigit() else None

        def arity_ok(c):
            return arity is None or len(getattr(c, "__parameters__", ())) == arity

        for iface in self.introspector.interfaces(t):
            if iface.__name__ == bare and arity_ok(iface):
                return iface
        for c in self.introspector.hierarchy(t, self.public_only):
            names = (c.__name__, c.__qualname__, f"{c.__module__}.{c.__qualname__}")
            if bare in names and arity_ok(c):
                return c
        return None

    def cast(self, proxy, target, strict: bool = True):
        """A proxy over the same value viewed through `target` (a class or a class name).

        cast_to (strict) raises InvalidCastError when `target` does not apply; as_type
        returns a null proxy instead. A null value casts to anything.
        """
        label = target if isinstance(target, str) else getattr(target, "__name__", repr(target))
        path = f"{proxy.path}.{'cast_to' if strict else 'as_type'}({label})"
        value = proxy.value
        if value is None:
            return proxy.derive(None, None, path)
        runtime = type(value)
        if isinstance(target, str):
            new_type = self.find_type_by_name(runtime, target)
            if new_type is None:
                if not strict:
                    return proxy.derive(None, None, path)
                raise InvalidCastError(
                    f"Error calling cast_to: '{target}' is not a base class or interface of "
                    f"'{type_name(runtime)}'. Specify generic classes with backticks, e.g. 'Box`1'. "
                    f"A module is not required.")
        else:
            if not self.introspector.is_assignable(target, runtime):
                if not strict:
                    return proxy.derive(None, None, path)
                raise InvalidCastError(f"Cannot cast from type {type_name(runtime)} to {type_name(target)}.")
            new_type = target
        _dbg("cast:", proxy.path, "->", new_type)
        return proxy.derive(value, new_type, path)

    # ---------------------------------------------------------------
    # Sequences
    # ---------------------------------------------------------------

    def to_dynamic_sequence(self, proxy):
        value = proxy.value
        if not isinstance(value, collections.abc.Iterable):
            raise InvalidCastError(
                f"Unable to call to_dynamic_sequence() because type '{type_name(proxy.static_type)}' is not iterable.")
        return self._iterate(proxy, value)

    @staticmethod
    def _iterate(proxy, value):
        for i, item in enumerate(value):
            yield proxy.derive(item, type(item) if item is not None else None, f"{proxy.path}[{i}]")
