"""
Diagnostic dumps of a wrapped object's state.

`snapshot` collects every data member of a value across its class hierarchy
(private, mangled and class-level ones included) into plain dicts and lists;
`dump` renders that snapshot as text, YAML or JSON. The text form goes through
a Mustache template.
"""
import json
from typing import Any, Dict, List

import pystache
import yaml

from uncap.uncap_datatypes import Visibility, demangle
from uncap.uncap_errors import type_name
from uncap.uncap_proxy import DynamicProxy, register_bypass, unregister_bypass

_ALL = Visibility.INSTANCE | Visibility.STATIC | Visibility.PUBLIC | Visibility.NON_PUBLIC
_PRIMITIVES = (str, int, float, bool, type(None))

_TEXT_TEMPLATE = """\
{{path}}: {{type}}
{{#lines}}
{{indent}}{{name}}{{#declared}}: {{declared}}{{/declared}} = {{value}}
{{/lines}}
{{^lines}}
  (no fields)
{{/lines}}"""


def _as_proxy(target) -> DynamicProxy:
    from uncap.uncap_runtime import proxy_of
    proxy = proxy_of(target)
    return proxy if proxy is not None else DynamicProxy(target)


def _label(storage: str) -> str:
    owner_name, name = demangle(storage)
    if owner_name is not None:
        return f"{owner_name}.{name}"
    return storage


def _display(value: Any) -> Any:
    if isinstance(value, _PRIMITIVES):
        return value
    return repr(value)


def _fields(value: Any, static_type: type, depth: int, introspector) -> List[Dict[str, Any]]:
    out = []
    for owner, storage in introspector.field_storages(static_type, value):
        member = introspector.declared_member(owner, storage, _ALL, value)
        if member is None:
            continue
        try:
            field_value = member.get(value)
        except Exception as ex:
            field_value = f"<unavailable: {type(ex).__name__}>"
        declared = member.declared_type
        entry = {
            "name": _label(storage),
            "owner": type_name(owner),
            "kind": member.kind,
            "declared": type_name(declared) if isinstance(declared, type) else (str(declared) if declared else None),
            "value": _display(field_value),
        }
        if depth > 1 and not isinstance(field_value, _PRIMITIVES + (type,)):
            entry["members"] = _fields(field_value, type(field_value), depth - 1, introspector)
        out.append(entry)
    return out


def snapshot(target, depth: int = 1) -> Dict[str, Any]:
    """Collects the members of a shim, proxy or plain object; nested values expand up to `depth`."""
    proxy = _as_proxy(target)
    if proxy.is_null:
        return {"path": proxy.path, "type": "None", "fields": []}
    return {
        "path": proxy.path,
        "type": type_name(proxy.static_type),
        "fields": _fields(proxy.value, proxy.static_type, depth, proxy.introspector),
    }


def _flatten(fields: List[Dict[str, Any]], level: int = 1) -> List[Dict[str, Any]]:
    lines = []
    for f in fields:
        lines.append({"indent": "  " * level, "name": f["name"], "declared": f["declared"], "value": str(f["value"])})
        lines.extend(_flatten(f.get("members", []), level + 1))
    return lines


def dump(target, fmt: str = "text", depth: int = 1) -> str:
    snap = snapshot(target, depth)
    f = (fmt or "").lower()
    if f == "json":
        return json.dumps(snap, ensure_ascii=False, indent=2)
    if f == "yaml":
        return yaml.safe_dump(snap, sort_keys=False)
    if f == "text":
        renderer = pystache.Renderer(escape=lambda u: u)
        context = {"path": snap["path"], "type": snap["type"], "lines": _flatten(snap["fields"])}
        return renderer.render(_TEXT_TEMPLATE, context)
    raise ValueError(f"Unknown dump format '{fmt}'; expected 'text', 'yaml' or 'json'")


def _dump_hook(name, args) -> bool:
    return name == "dump"


def enable_dump_bypass():
    """Lets `shim.dump(...)` reach the shim's own dump method instead of the wrapped object."""
    register_bypass(_dump_hook)


def disable_dump_bypass():
    unregister_bypass(_dump_hook)
