import abc
from functools import singledispatchmethod
from typing import Generic, Protocol, TypeVar

from uncap.uncap_datatypes import DEFAULT_OPTIONS, Out, Ref, demangle, is_public_name, mangle
from uncap.uncap_reflection import (
    DEFAULT_INTROSPECTOR as INTRO, ParamInfo, _class_hints, lookup_static, ref_value_type, type_hierarchy,
)
from uncap.uncap_runtime import clear_cache

T = TypeVar("T")
FLAGS = DEFAULT_OPTIONS.instance_flags


class Shape(abc.ABC):
    @abc.abstractmethod
    def _area(self) -> float: ...


class Square(Shape):
    def __init__(self, side: float = 1.0):
        self._side = side

    def _area(self) -> float:
        return self._side ** 2


class Named(Protocol):
    def _name(self) -> str: ...


class Box(Generic[T]):
    def __init__(self, item: T):
        self.item = item

    def _swap[U](self, item: U, keep: Ref[T]) -> U:
        return item

    @staticmethod
    def _make(x: int) -> "Box":
        return Box(x)

    @classmethod
    def _kind(cls) -> str:
        return cls.__name__

    @singledispatchmethod
    def _fmt(self, x):
        return str(x)

    @_fmt.register
    def _(self, x: int):
        return f"#{x}"


def test_mangling():
    assert mangle(Box, "__x") == "_Box__x"
    assert mangle(Box, "__init__") == "__init__"
    assert mangle(Box, "_x") == "_x"
    assert demangle("_Box__x") == ("Box", "__x")
    assert demangle("_x") == (None, "_x")
    assert demangle("__init__") == (None, "__init__")


def test_public_names():
    assert is_public_name("x")
    assert is_public_name("__len__")
    assert not is_public_name("_x")
    assert not is_public_name("__x")


def test_lookup_static_skips_descriptors():
    owner, raw = lookup_static(Box, "_make")
    assert owner is Box
    assert isinstance(raw, staticmethod)


def test_interfaces_and_hierarchy():
    assert INTRO.is_interface(Shape)
    assert INTRO.is_interface(Named)
    assert not INTRO.is_interface(Square)
    assert not INTRO.is_interface(object)
    assert INTRO.interfaces(Square) == [Shape]
    assert type_hierarchy(Square) == list(Square.__mro__)
    assert type_hierarchy(Square, public_only=True) == [Square]
    assert type_hierarchy(Shape) == [Shape]


def test_base_type():
    assert INTRO.base_type(Square) is Shape
    assert INTRO.base_type(object) is None


def test_method_binding_kinds():
    assert INTRO.declared_methods(Box, "_make", FLAGS)[0].binding == "static"
    assert INTRO.declared_methods(Box, "_kind", FLAGS)[0].binding == "class"
    assert INTRO.declared_methods(Box, "_swap", FLAGS)[0].binding == "instance"
    assert INTRO.declared_methods(Box, "_swap", DEFAULT_OPTIONS.static_flags) == []


def test_generic_method_parameters():
    info = INTRO.declared_methods(Box, "_swap", FLAGS)[0]
    assert info.generic_arity == 1
    assert [p.name for p in info.params] == ["item", "keep"]
    assert info.params[1].by_ref and not info.params[1].out
    bound = info.instantiate((str,))
    assert bound.params[0].annotation is str
    assert bound.return_type is str


def test_dispatch_registry_becomes_overloads():
    infos = INTRO.declared_methods(Box, "_fmt", FLAGS)
    assert len(infos) == 2
    assert all(i.overload for i in infos)
    assert {i.params[0].annotation for i in infos if i.params[0].annotation is not ParamInfo("x").annotation} == {int}


def test_abstract_methods_are_virtual():
    info = INTRO.declared_methods(Shape, "_area", FLAGS)[0]
    assert info.virtual
    assert info.invoke(Square(3.0), Square, []) == 9.0


def test_constructors():
    info = INTRO.constructors(Square)[0]
    assert [p.name for p in info.params] == ["side"]
    assert info.params[0].default == 1.0
    # Class type parameters are not constructor type parameters.
    assert INTRO.constructors(Box)[0].generic_arity == 0


def test_ref_annotations():
    assert ref_value_type(Ref[int]) is int
    assert ParamInfo("x", Out[str], ref_kind="out").value_type is str
    assert ParamInfo("x", Ref, ref_kind="ref").value_type is ParamInfo("y").annotation


def test_ref_invoke_writes_back():
    def bump(cell):
        cell.value += 1

    info = INTRO.callable_info(bump)
    info.params[0].ref_kind = "ref"
    args = [1]
    info.invoke(None, None, args)
    assert args == [2]


def test_array_and_numeric_classification():
    assert INTRO.is_array(list)
    assert INTRO.is_array(bytes)
    assert not INTRO.is_array(dict)
    assert INTRO.is_numeric(int)
    assert INTRO.is_numeric(complex)
    assert not INTRO.is_numeric(bool)
    assert not INTRO.is_numeric(str)


def test_is_assignable():
    assert INTRO.is_assignable(Shape, Square)
    assert INTRO.is_assignable(list[int], list)
    assert not INTRO.is_assignable(Square, Shape)


def test_field_storages():
    storages = INTRO.field_storages(Square, Square(2))
    assert (Square, "_side") in storages


def test_nested_type():
    class Outer:
        class __Hidden:
            pass

    assert INTRO.nested_type(Outer, "__Hidden") is Outer._Outer__Hidden
    assert INTRO.nested_type(Outer, "__Missing") is None


def test_annotation_memo_is_bounded_and_cleared():
    assert _class_hints.cache_info().maxsize is not None

    class Temp:
        _x: int = 0

    assert INTRO.declared_member(Temp, "_x", FLAGS).declared_type is int
    assert _class_hints.cache_info().currsize >= 1
    clear_cache()
    assert _class_hints.cache_info().currsize == 0
