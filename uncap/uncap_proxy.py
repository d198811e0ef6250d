"""
The dynamic-dispatch handler.

A DynamicProxy wraps a value (or a class, for static-member access) together
with a diagnostic access path and the options of its proxy tree. Each
operation resolves a name against the runtime type metadata, performs the
access, and wraps the result in a new DynamicProxy whose path records how it
was reached. Proxies are never mutated after construction.

The handler knows nothing about Python's data-model hooks; the Uncapsulator
shim in uncap_runtime maps those onto the operations defined here.
"""
import threading
from functools import cached_property
from typing import Any, Callable, List, Optional, Sequence

from uncap.uncap_binder import MethodBinder
from uncap.uncap_cache import GLOBAL_CACHE, instance_cache
from uncap.uncap_convert import ConversionEngine
from uncap.uncap_datatypes import (
    DEFAULT_OPTIONS, NOT_HANDLED, ResolutionOptions, Uncapsulated, Visibility, _dbg,
)
from uncap.uncap_errors import (
    MissingMemberError, MissingOverloadError, NullTargetError, StaticOnlyError,
    UncapsulationError, UnsupportedUsageError, type_name,
)
from uncap.uncap_members import MemberResolver
from uncap.uncap_reflection import DEFAULT_INTROSPECTOR, FieldMember, Introspector, MemberDescriptor

# Pseudo-methods handled by the proxy itself rather than the wrapped object.
RESERVED_METHODS = ("cast_to", "as_type", "to_dynamic_sequence", "get_type", "to_object", "new")

_UNSET = object()


# =================================================================
# Bypass hooks
# =================================================================

_bypass_lock = threading.Lock()
_bypass_hooks: List[Callable[[str, Optional[Sequence[Any]]], bool]] = []


def register_bypass(hook: Callable[[str, Optional[Sequence[Any]]], bool]):
    """Adds `hook(name, args) -> bool`; returning True declines the access for the host to handle."""
    with _bypass_lock:
        if hook not in _bypass_hooks:
            _bypass_hooks.append(hook)


def unregister_bypass(hook):
    with _bypass_lock:
        if hook in _bypass_hooks:
            _bypass_hooks.remove(hook)


def _current_hooks():
    with _bypass_lock:
        return list(_bypass_hooks)


# =================================================================
# DynamicProxy
# =================================================================

class DynamicProxy(Uncapsulated):
    def __init__(self, value: Any, static_type: Any = _UNSET, path: Optional[str] = None,
                 options: ResolutionOptions = DEFAULT_OPTIONS, call_site_interface: Optional[type] = None):
        if static_type is _UNSET:
            static_type = type(value) if value is not None else None
        self._value = value
        self.static_type = static_type
        self.options = options
        self.call_site_interface = call_site_interface
        if path is None:
            if static_type is None:
                path = "None"
            else:
                path = static_type.__name__ if value is None else type(value).__name__
        self.path = path

    # ---------------------------------------------------------------
    # State
    # ---------------------------------------------------------------

    @property
    def value(self) -> Any:
        return self._value

    @property
    def type(self) -> Optional[type]:
        return self.static_type

    @property
    def wraps_type(self) -> bool:
        return self.static_type is not None and self._value is None

    @property
    def is_null(self) -> bool:
        return self.static_type is None

    @property
    def flags(self) -> Visibility:
        return self.options.static_flags if self.wraps_type else self.options.instance_flags

    @cached_property
    def introspector(self) -> Introspector:
        return self.options.introspector or DEFAULT_INTROSPECTOR

    @cached_property
    def cache(self):
        return GLOBAL_CACHE if self.options.use_global_cache else instance_cache()

    @cached_property
    def members(self) -> MemberResolver:
        return MemberResolver(self.introspector, self.options.public_only)

    @cached_property
    def binder(self) -> MethodBinder:
        return MethodBinder(self.introspector, self.options.public_only)

    @cached_property
    def converter(self) -> ConversionEngine:
        return ConversionEngine(self.introspector, self.options.public_only)

    def derive(self, value, static_type=_UNSET, path: Optional[str] = None,
               call_site_interface=None) -> "DynamicProxy":
        return DynamicProxy(value, static_type, path, self.options, call_site_interface)

    def _receiver_class(self):
        return self.static_type if self.wraps_type else type(self._value)

    def _null_error(self, action: str) -> NullTargetError:
        return NullTargetError(
            f"You attempted to {action} on a null object, which was returned from '{self.path}'.")

    def _static_error(self, action: str) -> StaticOnlyError:
        return StaticOnlyError(
            f"You attempted to {action} on a type; this operation is valid only for instances.")

    @staticmethod
    def _unwrap_args(args: list):
        # In place, so by-reference positions stay aligned with the caller's list.
        for i, a in enumerate(args):
            if isinstance(a, DynamicProxy):
                args[i] = a.value

    # ---------------------------------------------------------------
    # Bypass
    # ---------------------------------------------------------------

    def should_bypass(self, name: str, args: Optional[Sequence[Any]] = None) -> bool:
        for hook in _current_hooks():
            if hook(name, args):
                _dbg("bypass:", self.path, name)
                return True
        return False

    # ---------------------------------------------------------------
    # Members
    # ---------------------------------------------------------------

    def _resolve_member(self, name: str) -> MemberDescriptor:
        instance = None if self.wraps_type else self._value
        if self.call_site_interface is not None:
            member = self.members.resolve(self.call_site_interface, name, self.flags, instance, self.cache, True)
            if member is not None:
                return member
        member = self.members.resolve(self.static_type, name, self.flags, instance, self.cache, False)
        if member is None:
            raise MissingMemberError(f"'{type_name(self.static_type)}' does not contain a definition for '{name}'.")
        return member

    def _member_exists(self, name: str) -> bool:
        instance = None if self.wraps_type else self._value
        for t in (self.call_site_interface, self.static_type):
            if t is not None and self.members.resolve(t, name, self.flags, instance) is not None:
                return True
        return False

    def _shadowed_by_instance(self, name: str) -> bool:
        """True when the instance dict holds `name`, hiding a same-named class method."""
        if self.wraps_type or self.is_null or not isinstance(getattr(self._value, "__dict__", None), dict):
            return False
        member = self.members.resolve(self.static_type, name, self.flags, self._value)
        return isinstance(member, FieldMember) and not member.static

    def _base(self) -> "DynamicProxy":
        if self.is_null:
            return self
        base = self.introspector.base_type(self.static_type)
        if base is None:
            return self
        return self.derive(self._value, base, f"{self.path}.base")

    def get_member(self, name: str):
        if name == "base":
            return self._base()
        if self.should_bypass(name, None):
            return NOT_HANDLED
        if self.wraps_type:
            nested = self.introspector.nested_type(self.static_type, name)
            if nested is not None:
                return self.derive(None, nested, f"{self.path}.{name}")
        if self.is_null:
            raise self._null_error(f"get member '{name}'")
        member = self._resolve_member(name)
        try:
            value = self.members.get_value(member, None if self.wraps_type else self._value)
        except UncapsulationError:
            raise
        except Exception as ex:
            raise UncapsulationError(
                f"Unable to get '{type_name(member.owner)}.{name}' - {ex}", ex) from ex
        declared = member.declared_type
        iface = declared if self.introspector.is_interface(declared) else None
        return self.derive(value, _UNSET, f"{self.path}.{name}", iface)

    def set_member(self, name: str, value: Any):
        if self.is_null:
            raise self._null_error(f"set member '{name}'")
        if isinstance(value, DynamicProxy):
            value = value.value
        member = self._resolve_member(name)
        try:
            self.members.set_value(member, None if self.wraps_type else self._value, value)
        except UncapsulationError:
            raise
        except Exception as ex:
            raise UncapsulationError(
                f"Unable to set '{type_name(member.owner)}.{name}' - {ex}", ex) from ex

    def dynamic_member_names(self) -> List[str]:
        return []

    # ---------------------------------------------------------------
    # Methods
    # ---------------------------------------------------------------

    def binds_to_method(self, name: str) -> bool:
        """True when `name` is a reserved pseudo-method or names a method of the wrapped type."""
        if name in RESERVED_METHODS:
            return True
        if self.is_null or self._shadowed_by_instance(name):
            return False
        return any(t is not None and self.binder.has_method(t, name, self.flags)
                   for t in (self.call_site_interface, self.static_type))

    @staticmethod
    def _cast_target(args: list, generic_args: tuple):
        if len(generic_args) == 1 and not args:
            return generic_args[0]
        if not generic_args and len(args) == 1 and isinstance(args[0], (str, type)):
            return args[0]
        return None

    def invoke_member(self, name: str, args: Optional[list] = None, generic_args: tuple = (),
                      by_ref: Optional[Sequence[bool]] = None, keywords: Sequence[str] = ()):
        args = args if args is not None else []
        self._unwrap_args(args)
        if self.should_bypass(name, args):
            return NOT_HANDLED
        if keywords:
            raise UnsupportedUsageError("Named arguments are not supported with dynamic method calls.")
        generic_args = tuple(generic_args)

        if name in ("cast_to", "as_type") and not self.wraps_type:
            target = self._cast_target(args, generic_args)
            if target is not None:
                return self.converter.cast(self, target, strict=name == "cast_to")

        if self.is_null:
            raise self._null_error(f"call method '{name}'")

        if not args and not generic_args:
            if name == "to_dynamic_sequence" and not self.wraps_type:
                return self.converter.to_dynamic_sequence(self)
            if name == "get_type":
                return self.static_type
            if name == "to_object":
                return self._value

        if name == "new":
            return self.derive(self.construct(args), _UNSET, f"{self.path}.new(...)")

        return self._invoke_method(name, args, generic_args, by_ref)

    def _invoke_method(self, name: str, args: list, generic_args: tuple, by_ref):
        if self._shadowed_by_instance(name):
            _dbg("invoke:", name, "is shadowed by an instance attribute")
            return NOT_HANDLED
        info = None
        if self.call_site_interface is not None:
            info = self.binder.find(self.call_site_interface, name, args, generic_args, by_ref,
                                    self.flags, self.cache, True)
        if info is None:
            info = self.binder.find(self.static_type, name, args, generic_args, by_ref,
                                    self.flags, self.cache, False)
        if info is None:
            if self._member_exists(name):
                _dbg("invoke:", name, "matches a field or property")
                return NOT_HANDLED
            raise self.binder.missing_error(self.static_type, name, self.flags)
        instance = None if self.wraps_type else self._value
        result = self.binder.invoke(info, instance, self._receiver_class(), args)
        returned = info.return_type
        iface = returned if self.introspector.is_interface(returned) else None
        return self.derive(result, _UNSET, f"{self.path}.{name}(...)", iface)

    def invoke(self, args: Optional[list] = None, by_ref: Optional[Sequence[bool]] = None):
        if self.is_null:
            raise self._null_error("invoke")
        if self.wraps_type:
            raise self._static_error("invoke")
        args = args if args is not None else []
        self._unwrap_args(args)
        selected = self.binder.select_callable(self._value, args, by_ref)
        if selected is None:
            raise MissingOverloadError(f"Unable to invoke '{self.path}'.")
        info, receiver, cls = selected
        result = self.binder.invoke(info, receiver, cls, args)
        return self.derive(result, _UNSET, f"{self.path}()")

    def construct(self, args: Optional[list] = None):
        """Creates an instance of the wrapped type; the result is returned unwrapped."""
        if self.is_null:
            raise self._null_error("construct an instance")
        args = args if args is not None else []
        self._unwrap_args(args)
        t = self.static_type
        info = self.binder.select_constructor(t, args)
        full = list(args) + [p.default for p in info.params[len(args):]]
        try:
            return t(*full)
        except UncapsulationError:
            raise
        except Exception as ex:
            raise UncapsulationError(f"Unable to construct '{type_name(t)}' - {ex}", ex) from ex

    # ---------------------------------------------------------------
    # Indexers
    # ---------------------------------------------------------------

    def _direct_indexes(self, indexes: list) -> bool:
        return self.introspector.is_array(self.static_type) and all(
            isinstance(i, int) and not isinstance(i, bool) for i in indexes)

    def get_index(self, indexes: Sequence[Any]):
        if self.is_null:
            raise self._null_error("invoke an indexer")
        if self.wraps_type:
            raise self._static_error("invoke an indexer")
        indexes = list(indexes)
        self._unwrap_args(indexes)
        path = f"{self.path}[{','.join(str(i) for i in indexes)}]"
        if self._direct_indexes(indexes):
            try:
                result = self._value
                for i in indexes:
                    result = result[i]
            except Exception as ex:
                raise UncapsulationError(
                    f"Unable to invoke get-indexer on type '{type_name(self.static_type)}' - {ex}", ex) from ex
            return self.derive(result, _UNSET, path)
        key = indexes[0] if len(indexes) == 1 else tuple(indexes)
        info = self.binder.select_indexer(self.static_type, [key], setter=False, path=self.path)
        result = self.binder.invoke(info, self._value, type(self._value), [key], action="get-indexer")
        return self.derive(result, _UNSET, path)

    def set_index(self, indexes: Sequence[Any], value: Any):
        if self.is_null:
            raise self._null_error("invoke an indexer")
        if self.wraps_type:
            raise self._static_error("invoke an indexer")
        indexes = list(indexes)
        self._unwrap_args(indexes)
        if isinstance(value, DynamicProxy):
            value = value.value
        if self._direct_indexes(indexes):
            try:
                target = self._value
                for i in indexes[:-1]:
                    target = target[i]
                target[indexes[-1]] = value
            except Exception as ex:
                raise UncapsulationError(
                    f"Unable to invoke set-indexer on type '{type_name(self.static_type)}' - {ex}", ex) from ex
            return
        key = indexes[0] if len(indexes) == 1 else tuple(indexes)
        info = self.binder.select_indexer(self.static_type, [key, value], setter=True, path=self.path)
        self.binder.invoke(info, self._value, type(self._value), [key, value], action="set-indexer")

    # ---------------------------------------------------------------
    # Conversion
    # ---------------------------------------------------------------

    def convert(self, target):
        return self.converter.convert(self, target)

    def __repr__(self):
        return f"<DynamicProxy {self.path}: {type_name(self.static_type)}>"
