"""
The reflection facility the uncap runtime is built on.

Everything the resolver and binder know about a type comes through the
`Introspector` capability: which methods, fields, properties, nested classes,
indexers and constructors a class declares, what their parameters look like,
and whether one type is assignable to another. `PythonIntrospector` implements
it with `inspect`, `typing` and the class `__dict__`/`__mro__`; a host with a
different object model can inject its own through ResolutionOptions.
"""
import array
import functools
import inspect
import numbers
import types
import typing
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from uncap.uncap_datatypes import Visibility, Ref, Out, mangle, is_public_name

_empty = inspect.Parameter.empty
_MISSING = object()

ARRAY_TYPES = (list, tuple, bytes, bytearray, array.array, memoryview)

_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


# =================================================================
# Metadata helpers
# =================================================================

def lookup_static(t: type, storage: str) -> Tuple[Optional[type], Any]:
    """Finds `storage` along t's MRO without triggering descriptors: (owner, raw)."""
    for c in getattr(t, "__mro__", (t,)):
        d = getattr(c, "__dict__", {})
        if storage in d:
            return c, d[storage]
    return None, _MISSING


def _signature(func) -> Optional[inspect.Signature]:
    try:
        return inspect.signature(func)
    except (TypeError, ValueError):
        return None


def _hints(func) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(func)
    except Exception:
        return {}


@functools.lru_cache(maxsize=512)
def _class_hints(owner: type) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(owner)
    except Exception:
        try:
            return dict(inspect.get_annotations(owner))
        except Exception:
            return {}


def clear_metadata_cache():
    _class_hints.cache_clear()


def _ref_kind(ann) -> Optional[str]:
    """'out' or 'ref' for Out[...]/Ref[...] annotations (resolved or as strings)."""
    if isinstance(ann, str):
        if ann.startswith("Out[") or ann == "Out":
            return "out"
        if ann.startswith("Ref[") or ann == "Ref":
            return "ref"
        return None
    origin = typing.get_origin(ann) or ann
    if isinstance(origin, type) and issubclass(origin, Ref):
        return "out" if issubclass(origin, Out) else "ref"
    return None


def ref_value_type(ann):
    """The T of a Ref[T]/Out[T] annotation; unparameterized cells accept anything."""
    if isinstance(ann, str):
        inner = ann[ann.find("[") + 1:-1] if "[" in ann else ""
        return inner or _empty
    args = typing.get_args(ann)
    return args[0] if args else _empty


def _substitute(ann, mapping: Dict[Any, Any]):
    if not mapping:
        return ann
    if isinstance(ann, typing.TypeVar):
        return mapping.get(ann, ann)
    params = getattr(ann, "__parameters__", None)
    if params and not isinstance(ann, type):
        try:
            return ann[tuple(mapping.get(p, p) for p in params)]
        except Exception:
            return ann
    return ann


def _method_kind(raw) -> Optional[str]:
    if isinstance(raw, staticmethod):
        return "static"
    if isinstance(raw, (classmethod, types.ClassMethodDescriptorType)):
        return "class"
    if isinstance(raw, functools.singledispatchmethod):
        return "dispatch"
    if isinstance(raw, (types.FunctionType, types.MethodDescriptorType, types.WrapperDescriptorType)):
        return "instance"
    if isinstance(raw, types.BuiltinFunctionType):
        return "static"
    return None


# =================================================================
# Parameters and methods
# =================================================================

class ParamInfo:
    """One positional parameter of a candidate method."""
    __slots__ = ("name", "annotation", "default", "ref_kind")

    def __init__(self, name: str, annotation: Any = _empty, default: Any = _empty, ref_kind: Optional[str] = None):
        self.name = name
        self.annotation = annotation
        self.default = default
        self.ref_kind = ref_kind

    @property
    def has_default(self) -> bool:
        return self.default is not _empty

    @property
    def by_ref(self) -> bool:
        return self.ref_kind is not None

    @property
    def out(self) -> bool:
        return self.ref_kind == "out"

    @property
    def value_type(self):
        """The type an argument must have: the cell's T for by-reference parameters."""
        if self.by_ref:
            return ref_value_type(self.annotation)
        return self.annotation

    def substituted(self, mapping) -> "ParamInfo":
        return ParamInfo(self.name, _substitute(self.annotation, mapping), self.default, self.ref_kind)

    def __repr__(self):
        return f"ParamInfo({self.name!r}, {self.annotation!r}{', ' + self.ref_kind if self.ref_kind else ''})"


class MethodInfo:
    """A candidate method: where it was declared, how to bind it, and its parameters.

    binding is one of 'instance' (needs a receiver), 'static', 'class' (bound to a
    class) or 'bound' (an already-callable value). `virtual` methods are declared on
    an interface or are abstract; calls go to the implementation found on the
    receiver's runtime type.
    """
    def __init__(self, name: str, owner: Optional[type], storage: str, raw: Any,
                 params: List[ParamInfo], rest: Optional[ParamInfo] = None,
                 type_params: tuple = (), return_type: Any = _empty,
                 binding: str = "instance", overload: bool = False, virtual: bool = False,
                 type_args: tuple = ()):
        self.name = name
        self.owner = owner
        self.storage = storage
        self.raw = raw
        self.params = params
        self.rest = rest
        self.type_params = type_params
        self.return_type = return_type
        self.binding = binding
        self.overload = overload
        self.virtual = virtual
        self.type_args = type_args

    @property
    def generic_arity(self) -> int:
        return len(self.type_params)

    def accepts_count(self, argc: int) -> bool:
        return len(self.params) >= argc or self.rest is not None

    def instantiate(self, type_args: tuple) -> "MethodInfo":
        mapping = dict(zip(self.type_params, type_args))
        return MethodInfo(
            self.name, self.owner, self.storage, self.raw,
            [p.substituted(mapping) for p in self.params],
            self.rest.substituted(mapping) if self.rest is not None else None,
            self.type_params, _substitute(self.return_type, mapping),
            self.binding, self.overload, self.virtual, tuple(type_args),
        )

    def bind(self, instance, cls):
        raw = self.raw
        if self.binding == "bound":
            return raw
        if self.virtual and instance is not None:
            _, impl = lookup_static(type(instance), self.storage)
            if impl is not _MISSING:
                raw = impl
        if hasattr(raw, "__get__"):
            return raw.__get__(instance, cls)
        return raw

    def invoke(self, instance, cls, args: list):
        """Calls the method with `args`; by-reference results are written back into `args`."""
        call_args = list(args)
        cells = []
        for i, p in enumerate(self.params[:len(args)]):
            if p.by_ref:
                cell = (Out if p.out else Ref)(args[i])
                call_args[i] = cell
                cells.append((i, cell))
        result = self.bind(instance, cls)(*call_args)
        for i, cell in cells:
            args[i] = cell.value
        return result

    def __repr__(self):
        owner = getattr(self.owner, "__qualname__", self.owner)
        return f"<MethodInfo {owner}.{self.name} params={self.params!r} rest={self.rest is not None}>"


# =================================================================
# Members (fields and properties)
# =================================================================

class MemberDescriptor:
    """A field or property, read and written the same way regardless of kind."""
    kind = "member"

    def __init__(self, owner: type, name: str, storage: str, declared_type: Any = None):
        self.owner = owner
        self.name = name
        self.storage = storage
        self.declared_type = declared_type

    def get(self, instance):
        raise NotImplementedError

    def set(self, instance, value):
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__} {getattr(self.owner, '__qualname__', self.owner)}.{self.storage}>"


class FieldMember(MemberDescriptor):
    """An instance-dict attribute, or a class-level data attribute (static field)."""
    kind = "field"

    def __init__(self, owner, name, storage, declared_type=None, static=False):
        super().__init__(owner, name, storage, declared_type)
        self.static = static

    def get(self, instance):
        if self.static or instance is None:
            return self.owner.__dict__[self.storage]
        return object.__getattribute__(instance, self.storage)

    def set(self, instance, value):
        if self.static or instance is None:
            type.__setattr__(self.owner, self.storage, value)
        else:
            object.__setattr__(instance, self.storage, value)


class DescriptorMember(MemberDescriptor):
    """A property, cached_property, slot or other descriptor declared on a class."""
    kind = "property"

    def __init__(self, owner, name, storage, raw, declared_type=None, virtual=False):
        super().__init__(owner, name, storage, declared_type)
        self.raw = raw
        self.virtual = virtual

    @property
    def is_data(self) -> bool:
        return hasattr(type(self.raw), "__set__") or hasattr(type(self.raw), "__delete__")

    def _resolve(self, instance):
        if self.virtual and instance is not None:
            _, impl = lookup_static(type(instance), self.storage)
            if impl is not _MISSING and hasattr(impl, "__get__"):
                return impl
        return self.raw

    def get(self, instance):
        return self._resolve(instance).__get__(instance, type(instance))

    def set(self, instance, value):
        desc = self._resolve(instance)
        if hasattr(type(desc), "__set__"):
            desc.__set__(instance, value)
        else:
            object.__setattr__(instance, self.storage, value)


# =================================================================
# Type hierarchy
# =================================================================

def type_hierarchy(t: type, public_only: bool = False, is_interface=None) -> List[type]:
    """Types to search for a member, most derived first.

    For an interface: itself, then the interfaces it extends. For a class: its MRO,
    or just the class itself in public-only mode.
    """
    is_interface = is_interface or _default_is_interface
    mro = list(getattr(t, "__mro__", (t,)))
    if is_interface(t):
        return [t] + [c for c in mro[1:] if is_interface(c)]
    if public_only:
        return [t]
    return mro


def _default_is_interface(t) -> bool:
    if not isinstance(t, type) or t in (typing.Protocol, typing.Generic, object, ABC):
        return False
    return bool(t.__dict__.get("_is_protocol", False)) or inspect.isabstract(t)


# =================================================================
# The capability and its default implementation
# =================================================================

class Introspector(ABC):
    """The reflection capability consumed by the resolver, binder and conversions."""

    @abstractmethod
    def is_interface(self, t) -> bool: ...

    @abstractmethod
    def interfaces(self, t: type) -> List[type]: ...

    @abstractmethod
    def hierarchy(self, t: type, public_only: bool) -> List[type]: ...

    @abstractmethod
    def base_type(self, t: type) -> Optional[type]: ...

    @abstractmethod
    def declared_member(self, t: type, name: str, flags: Visibility, instance=None) -> Optional[MemberDescriptor]: ...

    @abstractmethod
    def declared_methods(self, t: type, name: str, flags: Visibility) -> List[MethodInfo]: ...

    @abstractmethod
    def nested_type(self, t: type, name: str) -> Optional[type]: ...

    @abstractmethod
    def indexers(self, t: type, setter: bool = False) -> List[MethodInfo]: ...

    @abstractmethod
    def constructors(self, t: type) -> List[MethodInfo]: ...

    @abstractmethod
    def callable_info(self, value) -> Optional[MethodInfo]: ...

    @abstractmethod
    def is_assignable(self, target, source: type) -> bool: ...

    @abstractmethod
    def is_numeric(self, t) -> bool: ...

    @abstractmethod
    def is_array(self, t) -> bool: ...

    @abstractmethod
    def field_storages(self, t: type, instance=None) -> List[Tuple[type, str]]: ...


class PythonIntrospector(Introspector):
    """Introspects ordinary Python classes and instances."""

    def is_interface(self, t) -> bool:
        return _default_is_interface(t)

    def interfaces(self, t: type) -> List[type]:
        return [c for c in getattr(t, "__mro__", ()) if self.is_interface(c)]

    def hierarchy(self, t: type, public_only: bool) -> List[type]:
        return type_hierarchy(t, public_only, self.is_interface)

    def base_type(self, t: type) -> Optional[type]:
        mro = getattr(t, "__mro__", ())
        return mro[1] if len(mro) > 1 else None

    def _find(self, t: type, name: str, flags: Visibility) -> Tuple[Optional[type], str, Any]:
        """Locates `name` on t; non-public mode sees only t's own dict, public mode its MRO."""
        public = is_public_name(name)
        if not public and not (flags & Visibility.NON_PUBLIC):
            return None, name, _MISSING
        storage = mangle(t, name)
        if flags & Visibility.NON_PUBLIC:
            d = getattr(t, "__dict__", {})
            if storage in d:
                return t, storage, d[storage]
            return None, storage, _MISSING
        owner, raw = lookup_static(t, storage)
        return owner, storage, raw

    def _field_type(self, owner: type, storage: str):
        return _class_hints(owner).get(storage) if isinstance(owner, type) else None

    def declared_member(self, t, name, flags, instance=None):
        owner, storage, raw = self._find(t, name, flags)
        found = raw is not _MISSING
        is_descriptor = found and hasattr(type(raw), "__get__") and _method_kind(raw) is None and not isinstance(raw, type)
        virtual = found and (self.is_interface(owner) or getattr(raw, "__isabstractmethod__", False))

        if is_descriptor and (hasattr(type(raw), "__set__") or hasattr(type(raw), "__delete__")):
            if not flags & Visibility.INSTANCE:
                return None
            return DescriptorMember(owner, name, storage, raw, self._descriptor_type(owner, storage, raw), virtual)

        if instance is not None and flags & Visibility.INSTANCE:
            d = getattr(instance, "__dict__", None)
            if isinstance(d, dict) and storage in d:
                return FieldMember(owner or t, name, storage, self._field_type(owner or t, storage))

        if is_descriptor:
            if not flags & Visibility.INSTANCE:
                return None
            return DescriptorMember(owner, name, storage, raw, self._descriptor_type(owner, storage, raw), virtual)

        if found and _method_kind(raw) is None and flags & Visibility.STATIC:
            return FieldMember(owner, name, storage, self._field_type(owner, storage), static=True)
        return None

    def _descriptor_type(self, owner, storage, raw):
        fget = getattr(raw, "fget", None) or getattr(raw, "func", None)
        if fget is not None:
            ret = _hints(fget).get("return")
            if ret is not None:
                return ret
        return self._field_type(owner, storage)

    def declared_methods(self, t, name, flags):
        owner, storage, raw = self._find(t, name, flags)
        if raw is _MISSING:
            return []
        return self._infos_for(owner, name, storage, raw, flags)

    def _infos_for(self, owner, name, storage, raw, flags) -> List[MethodInfo]:
        kind = _method_kind(raw)
        if kind is None:
            return []
        if kind == "dispatch":
            out = []
            for dispatch_type, impl in raw.dispatcher.registry.items():
                sub = _method_kind(impl) or "instance"
                if not self._binding_allowed(sub, flags):
                    continue
                info = self._method_info(owner, name, storage, impl, sub, overload=True,
                                         dispatch_type=None if dispatch_type is object else dispatch_type)
                if info is not None:
                    out.append(info)
            return out
        if not self._binding_allowed(kind, flags):
            return []
        info = self._method_info(owner, name, storage, raw, kind)
        return [info] if info is not None else []

    @staticmethod
    def _binding_allowed(kind: str, flags: Visibility) -> bool:
        if kind == "instance":
            return bool(flags & Visibility.INSTANCE)
        return bool(flags & Visibility.STATIC)

    def _method_info(self, owner, name, storage, raw, binding, overload=False, dispatch_type=None,
                     drop_first=None) -> Optional[MethodInfo]:
        func = raw.__func__ if isinstance(raw, (staticmethod, classmethod)) else raw
        sig = _signature(func)
        hints = _hints(func.__init__ if isinstance(func, type) else func)
        if drop_first is None:
            drop_first = binding in ("instance", "class") and not isinstance(func, types.BuiltinMethodType)
        params: List[ParamInfo] = []
        rest = None
        if sig is None:
            rest = ParamInfo("args")
        else:
            plist = list(sig.parameters.values())
            if drop_first and plist and plist[0].kind in _POSITIONAL:
                plist = plist[1:]
            for p in plist:
                ann = hints.get(p.name, p.annotation)
                if p.kind in _POSITIONAL:
                    params.append(ParamInfo(p.name, ann, p.default, _ref_kind(ann)))
                elif p.kind is inspect.Parameter.VAR_POSITIONAL:
                    rest = ParamInfo(p.name, ann)
                elif p.kind is inspect.Parameter.KEYWORD_ONLY and p.default is _empty:
                    # Cannot be supplied without named arguments.
                    return None
        if dispatch_type is not None and params and params[0].annotation is _empty:
            params[0] = ParamInfo(params[0].name, dispatch_type, params[0].default)
        return_type = hints.get("return", sig.return_annotation if sig is not None else _empty)
        virtual = self.is_interface(owner) or bool(getattr(func, "__isabstractmethod__", False))
        # A generic class's parameters belong to the class, not to its constructor.
        type_params = () if isinstance(func, type) else tuple(getattr(func, "__type_params__", ()) or ())
        return MethodInfo(
            name, owner, storage, raw, params, rest, type_params, return_type,
            binding, overload, virtual,
        )

    def nested_type(self, t, name):
        candidate = getattr(t, "__dict__", {}).get(mangle(t, name))
        return candidate if isinstance(candidate, type) else None

    def indexers(self, t, setter=False):
        storage = "__setitem__" if setter else "__getitem__"
        owner, raw = lookup_static(t, storage)
        if raw is _MISSING or raw is None:
            return []
        return self._infos_for(owner, storage, storage, raw, Visibility.INSTANCE | Visibility.STATIC)

    def constructors(self, t):
        owner, init = lookup_static(t, "__init__")
        if isinstance(init, functools.singledispatchmethod):
            return self._infos_for(owner, "__init__", "__init__", init, Visibility.INSTANCE)
        info = self._method_info(t, "__init__", "__init__", t, "static", drop_first=False)
        return [info] if info is not None else []

    def callable_info(self, value):
        if not callable(value):
            return None
        return self._method_info(type(value), "__call__", "__call__", value, "bound", drop_first=False)

    def is_assignable(self, target, source) -> bool:
        if target in (object, Any):
            return True
        origin = typing.get_origin(target)
        if origin is not None and isinstance(origin, type):
            target = origin
        try:
            return issubclass(source, target)
        except TypeError:
            return target in getattr(source, "__mro__", ())

    def is_numeric(self, t) -> bool:
        return isinstance(t, type) and issubclass(t, numbers.Number) and not issubclass(t, bool)

    def is_array(self, t) -> bool:
        return isinstance(t, type) and issubclass(t, ARRAY_TYPES)

    def field_storages(self, t, instance=None):
        """(owner, storage) of every data member of a value, most derived first."""
        out: List[Tuple[type, str]] = []
        seen = set()
        if instance is not None:
            d = getattr(instance, "__dict__", None)
            if isinstance(d, dict):
                for storage in d:
                    seen.add(storage)
                    out.append((t, storage))
        for c in getattr(t, "__mro__", ()):
            if c is object or c.__module__ == "builtins":
                continue
            for storage, raw in c.__dict__.items():
                if storage in seen or (storage.startswith("__") and storage.endswith("__")):
                    continue
                if _method_kind(raw) is not None or isinstance(raw, type):
                    continue
                if hasattr(type(raw), "__get__") and instance is None:
                    continue
                seen.add(storage)
                out.append((c, storage))
        return out


DEFAULT_INTROSPECTOR = PythonIntrospector()
