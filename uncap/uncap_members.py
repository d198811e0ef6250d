"""
Field and property resolution.

MemberResolver walks the hierarchy of a type and returns the first
MemberDescriptor declared under the requested name. Callers read and write it
the same way whether it is an instance attribute, a class attribute, a
property or a slot.
"""
from typing import Optional

from uncap.uncap_datatypes import Visibility, _dbg
from uncap.uncap_reflection import DescriptorMember, Introspector, MemberDescriptor


class MemberResolver:
    def __init__(self, introspector: Introspector, public_only: bool = False):
        self.introspector = introspector
        self.public_only = public_only

    def resolve(self, t: type, name: str, flags: Visibility, instance=None,
                cache=None, interface_call_site: bool = False) -> Optional[MemberDescriptor]:
        key = None
        if cache is not None:
            key = cache.member_key(name, interface_call_site, t, flags, self.introspector)
            hit = cache.members.get(key)
            if hit is not None:
                _dbg("member cache hit:", name, hit)
                return hit
        for c in self.introspector.hierarchy(t, self.public_only):
            member = self.introspector.declared_member(c, name, flags, instance)
            if member is not None:
                _dbg("member resolved:", name, "->", member)
                # Misses are not cached: an instance attribute may appear later.
                if key is not None and self._cacheable(member, t, instance):
                    cache.members.put(key, member)
                return member
        return None

    @staticmethod
    def _cacheable(member: MemberDescriptor, t: type, instance) -> bool:
        """Whether the hit holds for every instance of t, not just this one."""
        if instance is None:
            return True
        # Only data descriptors take precedence over the instance dict, and only when no
        # earlier class in the walk stores the name under a different mangling.
        if isinstance(member, DescriptorMember) and member.is_data:
            return member.owner is t or member.storage == member.name
        return type(instance) is t and not isinstance(getattr(instance, "__dict__", None), dict)

    def get_value(self, member: MemberDescriptor, instance):
        return member.get(instance)

    def set_value(self, member: MemberDescriptor, instance, value):
        member.set(instance, value)
