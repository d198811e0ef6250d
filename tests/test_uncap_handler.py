from typing import Protocol

import pytest

from uncap.uncap_datatypes import NOT_HANDLED
from uncap.uncap_errors import (
    MissingMemberError, MissingOverloadError, NullTargetError, StaticOnlyError, UnsupportedUsageError,
)
from uncap.uncap_proxy import DynamicProxy, RESERVED_METHODS, register_bypass, unregister_bypass
from uncap.uncap_runtime import uncapsulate, unwrap


class Speaker(Protocol):
    def __speak(self) -> str: ...


class Loud(Speaker):
    def _Speaker__speak(self) -> str:
        return "interface"

    def __speak(self) -> str:
        return "own"


class Holder:
    _impl: Speaker

    def __init__(self):
        self._impl = Loud()
        self._fn = lambda x: x * 2
        self._n = 3

    def _get(self) -> Speaker:
        return self._impl

    def _twice(self, x: int) -> int:
        return x * 2

    def __call__(self, x: int) -> int:
        return x + 1


def test_field_matched_instead_of_method():
    assert DynamicProxy(Holder()).invoke_member("_fn", [1]) is NOT_HANDLED


def test_shim_calls_callable_field():
    assert int(uncapsulate(Holder())._fn(4)) == 8


def test_missing_method():
    with pytest.raises(MissingMemberError) as exc:
        DynamicProxy(Holder()).invoke_member("_missing", [])
    assert "does not contain a method called '_missing'" in str(exc.value)


def test_keywords_rejected():
    with pytest.raises(UnsupportedUsageError):
        DynamicProxy(Holder()).invoke_member("_twice", [1], keywords=("x",))


def test_member_paths():
    p = DynamicProxy(Holder())
    assert p.path == "Holder"
    assert p.get_member("_n").path == "Holder._n"
    assert p.invoke_member("_twice", [2]).path == "Holder._twice(...)"
    assert p.get_member("_fn").invoke([1]).path == "Holder._fn()"
    assert p.get_member("base").path == "Holder.base"
    assert p.invoke_member("_twice", [2]).value == 4


def test_invoke_uses_user_defined_call():
    assert DynamicProxy(Holder()).invoke([1]).value == 2
    with pytest.raises(MissingOverloadError):
        DynamicProxy(Holder()).invoke(["x"])


def test_invoke_non_callable():
    with pytest.raises(MissingOverloadError) as exc:
        DynamicProxy(5).invoke([])
    assert str(exc.value) == "Unable to invoke 'int'."


def test_type_proxy_rules():
    p = DynamicProxy(None, Holder)
    assert p.wraps_type and not p.is_null
    with pytest.raises(StaticOnlyError):
        p.invoke([])
    assert p.invoke_member("get_type") is Holder
    assert isinstance(p.construct([]), Holder)


def test_null_proxy_rules():
    p = DynamicProxy(None)
    assert p.is_null and p.path == "None"
    with pytest.raises(NullTargetError):
        p.invoke([])
    with pytest.raises(NullTargetError):
        p.set_member("_x", 1)
    with pytest.raises(NullTargetError) as exc:
        p.invoke_member("_x", [])
    assert str(exc.value) == "You attempted to call method '_x' on a null object, which was returned from 'None'."


def test_bypass_hooks_decline_the_access():
    def hook(name, args):
        return name == "_n"

    register_bypass(hook)
    try:
        p = DynamicProxy(Holder())
        assert p.get_member("_n") is NOT_HANDLED
        assert p.invoke_member("_n", []) is NOT_HANDLED
        assert p.get_member("_fn") is not NOT_HANDLED
    finally:
        unregister_bypass(hook)
    assert DynamicProxy(Holder()).get_member("_n").value == 3


def test_reserved_methods_always_bind():
    p = DynamicProxy(Holder())
    assert all(p.binds_to_method(name) for name in RESERVED_METHODS)
    assert p.binds_to_method("_twice")
    assert not p.binds_to_method("_n")


def test_declared_interface_type_selects_interface_member():
    u = uncapsulate(Holder())
    assert str(u._impl.__speak()) == "interface"
    assert str(u._get().__speak()) == "interface"
    assert str(uncapsulate(Loud()).__speak()) == "own"


def test_dynamic_member_names_are_empty():
    assert DynamicProxy(Holder()).dynamic_member_names() == []
    assert dir(uncapsulate(Holder())) == []


def test_new_wraps_and_construct_does_not():
    p = DynamicProxy(None, Holder)
    made = p.invoke_member("new", [])
    assert isinstance(made, DynamicProxy)
    assert made.path == "Holder.new(...)"
    assert isinstance(made.value, Holder)


class Widget:
    def _label(self) -> str:
        return "method"

    def __title(self) -> str:
        return "class title"


def test_instance_attribute_shadows_method():
    w = Widget()
    w._label = "instance"
    w._Widget__title = lambda: "instance title"
    u = uncapsulate(w)
    assert unwrap(u._label) == "instance"
    assert str(u.__title()) == "instance title"
    p = DynamicProxy(w)
    assert not p.binds_to_method("_label")
    assert p.invoke_member("_label", []) is NOT_HANDLED
    assert str(uncapsulate(Widget())._label()) == "method"
    assert DynamicProxy(Widget()).binds_to_method("_label")
