import json

import pytest
import yaml

from uncap.uncap_dump import disable_dump_bypass, dump, enable_dump_bypass, snapshot
from uncap.uncap_errors import MissingMemberError
from uncap.uncap_runtime import uncapsulate


class Wallet:
    __coins = 3

    def __init__(self):
        self.__owner = "ann"
        self._items = [1]

    @property
    def _faulty(self):
        raise RuntimeError("nope")


class Pouch:
    def __init__(self):
        self.__wallet = Wallet()


def _by_name(fields):
    return {f["name"]: f for f in fields}


def test_snapshot_collects_private_and_static_fields():
    snap = snapshot(Wallet())
    assert snap["path"] == "Wallet"
    assert snap["type"].endswith("Wallet")
    fields = _by_name(snap["fields"])
    assert fields["Wallet.__owner"]["value"] == "ann"
    assert fields["_items"]["value"] == "[1]"
    assert fields["Wallet.__coins"]["value"] == 3


def test_snapshot_renders_getter_failures():
    fields = _by_name(snapshot(Wallet())["fields"])
    assert fields["_faulty"]["value"] == "<unavailable: RuntimeError>"
    assert fields["_faulty"]["kind"] == "property"
    assert fields["Wallet.__coins"]["kind"] == "field"


def test_snapshot_of_shim_uses_its_path():
    u = uncapsulate(Pouch())
    snap = snapshot(u.__wallet)
    assert snap["path"] == "Pouch.__wallet"


def test_nested_members_expand_with_depth():
    shallow = _by_name(snapshot(Pouch())["fields"])
    assert "members" not in shallow["Pouch.__wallet"]
    deep = _by_name(snapshot(Pouch(), depth=2)["fields"])
    nested = _by_name(deep["Pouch.__wallet"]["members"])
    assert nested["Wallet.__owner"]["value"] == "ann"


def test_null_snapshot():
    snap = snapshot(uncapsulate(None))
    assert snap["path"] == "None"
    assert snap["type"] == "None"
    assert snap["fields"] == []


def test_json_dump():
    data = json.loads(dump(Wallet(), fmt="json"))
    assert _by_name(data["fields"])["Wallet.__owner"]["value"] == "ann"


def test_yaml_dump():
    data = yaml.safe_load(dump(Wallet(), fmt="yaml"))
    assert data["path"] == "Wallet"
    assert _by_name(data["fields"])["Wallet.__coins"]["value"] == 3


def test_text_dump():
    text = dump(Wallet())
    lines = text.splitlines()
    assert lines[0].startswith("Wallet: ")
    assert "  Wallet.__owner = ann" in lines
    assert "  _items = [1]" in lines


def test_text_dump_without_fields():
    class Empty:
        pass

    assert "(no fields)" in dump(Empty())


def test_unknown_format():
    with pytest.raises(ValueError):
        dump(Wallet(), fmt="xml")


def test_dump_bypass():
    u = uncapsulate(Wallet())
    with pytest.raises(MissingMemberError):
        u.dump()
    enable_dump_bypass()
    try:
        assert "Wallet.__owner = ann" in u.dump()
        assert json.loads(u.dump("json"))["path"] == "Wallet"
    finally:
        disable_dump_bypass()
