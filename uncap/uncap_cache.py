"""
Resolution caches.

Resolving a member or an overload walks the type hierarchy and scores
candidates, so results are memoized. There are two tiers with one interface:
a process-wide provider shared by every proxy created with
`use_global_cache=True` (keys carry the owning type, the visibility and the
introspector), and a per-proxy provider (keys leave those out, the proxy fixes them).
"""
import threading
from dataclasses import dataclass
from typing import Any, Optional

from uncap.uncap_datatypes import Visibility, _dbg


@dataclass(frozen=True)
class MethodCacheKey:
    name: str
    generic_args: tuple
    param_types: tuple
    by_ref: tuple
    interface_call_site: bool
    owner: Optional[type] = None
    visibility: Optional[Visibility] = None
    introspector: Any = None


@dataclass(frozen=True)
class MemberCacheKey:
    name: str
    interface_call_site: bool
    owner: Optional[type] = None
    visibility: Optional[Visibility] = None
    introspector: Any = None


class ResolutionCache:
    """A dict guarded by a lock. Entries are immutable, so readers never see a partial one."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries = {}

    def get(self, key) -> Any:
        with self._lock:
            return self._entries.get(key)

    def put(self, key, value):
        with self._lock:
            self._entries[key] = value

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def __contains__(self, key):
        with self._lock:
            return key in self._entries


class CacheProvider:
    """Builds keys and holds the method and member tables of one cache tier."""

    def __init__(self, shared: bool):
        self.shared = shared
        self.methods = ResolutionCache()
        self.members = ResolutionCache()

    def method_key(self, name, generic_args, param_types, by_ref, interface_call_site, owner, visibility,
                   introspector=None) -> MethodCacheKey:
        if not self.shared:
            owner = visibility = introspector = None
        return MethodCacheKey(name, tuple(generic_args), tuple(param_types), tuple(by_ref),
                              bool(interface_call_site), owner, visibility, introspector)

    def member_key(self, name, interface_call_site, owner, visibility, introspector=None) -> MemberCacheKey:
        if not self.shared:
            owner = visibility = introspector = None
        return MemberCacheKey(name, bool(interface_call_site), owner, visibility, introspector)

    def clear(self):
        self.methods.clear()
        self.members.clear()

    def __repr__(self):
        tier = "global" if self.shared else "instance"
        return f"<CacheProvider {tier} methods={len(self.methods)} members={len(self.members)}>"


GLOBAL_CACHE = CacheProvider(shared=True)


def instance_cache() -> CacheProvider:
    return CacheProvider(shared=False)


def clear_global_cache():
    _dbg("cache: clearing global tier")
    GLOBAL_CACHE.clear()
