"""
The Python-facing side of uncap.

`Uncapsulator` is a thin shim over a DynamicProxy: it intercepts attribute
access, assignment, subscription, calls, conversions and comparisons and
forwards each to the handler operation of the same meaning, wrapping results
in new shims so navigation chains:

    >>> u = uncapsulate(demo)
    >>> u._inner.__secret          # private field of a private field
    >>> u.__refresh(Ref(3))        # private method, by-reference argument
    >>> u.lookup[str]("k")         # explicit generic argument
    >>> uncapsulate_type(Demo).__counter = 0   # private static field

Attribute access is greedy: every non-dunder name is resolved against the
wrapped object, so the shim exposes no public attributes of its own. Use the
module-level helpers (unwrap, proxy_of, convert) to reach the wrapped value.
"""
import importlib
import inspect
import operator
from typing import Any, Optional

from uncap.uncap_cache import clear_global_cache
from uncap.uncap_datatypes import (
    NOT_HANDLED, Ref, ResolutionOptions, Uncapsulated, _dbg,
)
from uncap.uncap_errors import InvalidCastError, UnsupportedUsageError, UncapsulationError
from uncap.uncap_proxy import DynamicProxy, register_bypass, unregister_bypass  # noqa: F401
from uncap.uncap_reflection import clear_metadata_cache


def _handler(shim) -> DynamicProxy:
    return object.__getattribute__(shim, "_Uncapsulator__proxy")


def _wrap(result):
    if isinstance(result, DynamicProxy):
        return Uncapsulator(result)
    if inspect.isgenerator(result):
        return (_wrap(p) for p in result)
    return result


def _map_args(args):
    """Unwraps shim arguments and turns Ref cells into by-reference positions."""
    call_args = []
    by_ref = []
    cells = []
    for i, a in enumerate(args):
        if isinstance(a, Ref):
            call_args.append(unwrap(a.value))
            by_ref.append(True)
            cells.append((i, a))
        else:
            call_args.append(unwrap(a))
            by_ref.append(False)
    return call_args, by_ref, cells


def _write_back(cells, call_args):
    for i, cell in cells:
        cell.value = call_args[i]


class BoundMember:
    """A method name bound to a proxy, awaiting its call (and optional generic arguments)."""
    __slots__ = ("_shim", "_name", "_generic_args")

    def __init__(self, shim, name: str, generic_args: tuple = ()):
        self._shim = shim
        self._name = name
        self._generic_args = generic_args

    def __getitem__(self, type_args):
        if not isinstance(type_args, tuple):
            type_args = (type_args,)
        return BoundMember(self._shim, self._name, type_args)

    def __call__(self, *args, **kwargs):
        proxy = _handler(self._shim)
        call_args, by_ref, cells = _map_args(args)
        result = proxy.invoke_member(self._name, call_args, self._generic_args, by_ref, tuple(kwargs))
        if result is NOT_HANDLED:
            if proxy.should_bypass(self._name, call_args):
                return object.__getattribute__(self._shim, self._name)(*args, **kwargs)
            # The name matched a field or property: read it, then call its value.
            member = proxy.get_member(self._name)
            result = member.invoke(call_args, by_ref)
        _write_back(cells, call_args)
        return _wrap(result)

    def __repr__(self):
        return f"<BoundMember {_handler(self._shim).path}.{self._name}>"


class Uncapsulator:
    __slots__ = ("__proxy",)

    def __init__(self, proxy: DynamicProxy):
        object.__setattr__(self, "_Uncapsulator__proxy", proxy)

    def __getattribute__(self, name):
        if name.startswith("__") and name.endswith("__"):
            return object.__getattribute__(self, name)
        proxy = _handler(self)
        if proxy.should_bypass(name, None):
            return object.__getattribute__(self, name)
        if proxy.binds_to_method(name):
            return BoundMember(self, name)
        result = proxy.get_member(name)
        if result is NOT_HANDLED:
            return object.__getattribute__(self, name)
        return _wrap(result)

    def __setattr__(self, name, value):
        _handler(self).set_member(name, unwrap(value))

    def __getitem__(self, key):
        indexes = key if isinstance(key, tuple) else (key,)
        return _wrap(_handler(self).get_index([unwrap(k) for k in indexes]))

    def __setitem__(self, key, value):
        indexes = key if isinstance(key, tuple) else (key,)
        _handler(self).set_index([unwrap(k) for k in indexes], unwrap(value))

    def __call__(self, *args, **kwargs):
        proxy = _handler(self)
        if kwargs:
            raise UnsupportedUsageError("Named arguments are not supported with dynamic method calls.")
        call_args, by_ref, cells = _map_args(args)
        if proxy.wraps_type:
            return proxy.construct(call_args)
        result = proxy.invoke(call_args, by_ref)
        _write_back(cells, call_args)
        return _wrap(result)

    # Conversions

    def __int__(self):
        return _handler(self).convert(int)

    def __float__(self):
        return _handler(self).convert(float)

    def __complex__(self):
        return _handler(self).convert(complex)

    def __index__(self):
        value = _handler(self).value
        try:
            return operator.index(value)
        except TypeError as ex:
            raise InvalidCastError(f"Cannot use a value of type {type(value).__name__} as an index.", ex) from ex

    def __bool__(self):
        return bool(_handler(self).value)

    def __str__(self):
        return str(_handler(self).value)

    def __format__(self, spec):
        return format(_handler(self).value, spec)

    def __repr__(self):
        proxy = _handler(self)
        return f"<Uncapsulator {proxy.path} = {proxy.value!r}>"

    # Comparisons use the wrapped values.

    def __eq__(self, other):
        return _handler(self).value == unwrap(other)

    def __ne__(self, other):
        return _handler(self).value != unwrap(other)

    def __lt__(self, other):
        return _handler(self).value < unwrap(other)

    def __le__(self, other):
        return _handler(self).value <= unwrap(other)

    def __gt__(self, other):
        return _handler(self).value > unwrap(other)

    def __ge__(self, other):
        return _handler(self).value >= unwrap(other)

    def __hash__(self):
        return hash(_handler(self).value)

    # Containers

    def __iter__(self):
        return (Uncapsulator(p) for p in _handler(self).invoke_member("to_dynamic_sequence", []))

    def __len__(self):
        return len(_handler(self).value)

    def __dir__(self):
        return _handler(self).dynamic_member_names()

    def dump(self, fmt: str = "text", depth: int = 1) -> str:
        """Renders the wrapped value's members. Reachable only while the dump bypass is enabled."""
        from uncap.uncap_dump import dump
        return dump(self, fmt=fmt, depth=depth)


Uncapsulated.register(Uncapsulator)


# =================================================================
# Entry points
# =================================================================

def _options(use_global_cache, public_only, introspector) -> ResolutionOptions:
    return ResolutionOptions(use_global_cache=use_global_cache, public_only=public_only, introspector=introspector)


def uncapsulate(obj, use_global_cache: bool = False, public_only: bool = False,
                introspector=None, path: Optional[str] = None) -> Uncapsulator:
    """Wraps an object so that its private members can be read, written and called."""
    obj = unwrap(obj)
    return Uncapsulator(DynamicProxy(obj, path=path, options=_options(use_global_cache, public_only, introspector)))


def load_type(dotted: str) -> type:
    """Imports 'package.module.Qual.Name' (or 'package.module:Qual.Name') and returns the class."""
    if ":" in dotted:
        module_name, _, qualname = dotted.partition(":")
        target = importlib.import_module(module_name)
        for part in qualname.split("."):
            target = getattr(target, part)
        return target
    parts = dotted.split(".")
    for i in range(len(parts) - 1, 0, -1):
        try:
            target = importlib.import_module(".".join(parts[:i]))
        except ImportError:
            continue
        try:
            for part in parts[i:]:
                target = getattr(target, part)
        except AttributeError:
            continue
        return target
    raise UncapsulationError(f"Unable to load type '{dotted}'.")


def uncapsulate_type(cls, use_global_cache: bool = False, public_only: bool = False,
                     introspector=None) -> Uncapsulator:
    """Wraps a class (or a dotted class name) for access to its static members and constructors."""
    if isinstance(cls, str):
        cls = load_type(cls)
    if not isinstance(cls, type):
        raise UncapsulationError(f"'{cls!r}' is not a class.")
    _dbg("uncapsulate_type:", cls)
    return Uncapsulator(DynamicProxy(None, cls, options=_options(use_global_cache, public_only, introspector)))


def clear_cache():
    """Empties the process-wide resolution cache and the class annotation memo."""
    clear_global_cache()
    clear_metadata_cache()


def proxy_of(x) -> Optional[DynamicProxy]:
    if isinstance(x, Uncapsulator):
        return _handler(x)
    if isinstance(x, DynamicProxy):
        return x
    return None


def unwrap(x) -> Any:
    """The value wrapped by a shim or proxy; anything else is returned unchanged."""
    proxy = proxy_of(x)
    return proxy.value if proxy is not None else x


def convert(x, target):
    """Explicit conversion of a shim: to Uncapsulated yields the shim itself."""
    proxy = proxy_of(x)
    if proxy is None:
        raise InvalidCastError(f"'{x!r}' is not an uncapsulated value.")
    result = proxy.convert(target)
    return x if result is proxy else result
