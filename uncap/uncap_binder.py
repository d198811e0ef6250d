"""
Overload resolution and invocation.

MethodBinder picks the best candidate among same-named methods for a list of
argument values, an explicit generic-argument list and a by-reference mask,
then calls it. Selection mirrors a static compiler's rules as far as runtime
values allow: every argument must be applicable to its parameter, and the
candidate with the best score wins.

Scores per argument:
    exact type                      1.0
    subclass at MRO distance d      1 / (1 + d)
    virtual subclass (ABC/Protocol) 0.25
    numeric widening                0.2 (int -> float), 0.1 (-> complex)
    None into an Optional parameter 0.5
    untyped / Any / object          0.0

Ties break on the count of exact matches, then on fewer defaulted parameters,
then on not needing a var-positional parameter. Anything still tied is
ambiguous.
"""
import inspect
import numbers
import types
import typing
from typing import Any, List, Optional, Sequence, Tuple

from uncap.uncap_datatypes import Visibility, _dbg
from uncap.uncap_errors import (
    UncapsulationError, MissingMemberError, MissingOverloadError, AmbiguousOverloadError, type_name,
)
from uncap.uncap_reflection import Introspector, MethodInfo, lookup_static

_empty = inspect.Parameter.empty
_WIDENING = (
    (numbers.Integral, float, 0.2),
    (numbers.Integral, complex, 0.1),
    (numbers.Real, complex, 0.1),
)
_PLAIN_CALLABLES = (
    types.FunctionType, types.MethodType, types.BuiltinFunctionType,
    types.BuiltinMethodType, types.MethodWrapperType, type,
)


def accepts_none(ann) -> bool:
    if ann is _empty or ann is Any or ann is object or ann is None or ann is type(None):
        return True
    if isinstance(ann, str):
        return ann == "None" or "Optional[" in ann or "| None" in ann or "None |" in ann
    if isinstance(ann, typing.TypeVar):
        return ann.__bound__ is None or accepts_none(ann.__bound__)
    if typing.get_origin(ann) in (typing.Union, types.UnionType):
        return any(accepts_none(a) for a in typing.get_args(ann))
    return False


def argument_score(ann, value, introspector: Introspector) -> Optional[float]:
    """How well `value` fits a parameter annotated `ann`; None means not applicable."""
    if ann is _empty or ann is Any or ann is object:
        return 0.0
    if value is None:
        return 0.5 if accepts_none(ann) else None
    if isinstance(ann, typing.TypeVar):
        if ann.__bound__ is None:
            return 0.0
        return argument_score(ann.__bound__, value, introspector)
    if isinstance(ann, str):
        # Unresolvable forward reference: match by class name along the MRO.
        bare = ann.split("[", 1)[0].rsplit(".", 1)[-1].strip("'\" ")
        names = [c.__name__ for c in type(value).__mro__]
        if bare in names:
            d = names.index(bare)
            return 1.0 / (1 + d)
        return None
    origin = typing.get_origin(ann)
    if origin in (typing.Union, types.UnionType):
        scores = [s for s in (argument_score(a, value, introspector) for a in typing.get_args(ann)) if s is not None]
        return max(scores) if scores else None
    if origin is typing.Literal:
        return 1.0 if value in typing.get_args(ann) else None
    if origin is typing.Annotated:
        return argument_score(typing.get_args(ann)[0], value, introspector)
    if origin is not None:
        ann = origin
    if not isinstance(ann, type):
        return 0.0
    vt = type(value)
    mro = vt.__mro__
    if ann in mro:
        return 1.0 / (1 + mro.index(ann))
    for src, dst, score in _WIDENING:
        if ann is dst and isinstance(value, src) and not isinstance(value, bool):
            return score
    if introspector.is_assignable(ann, vt):
        return 0.25
    return None


class MethodBinder:
    def __init__(self, introspector: Introspector, public_only: bool = False):
        self.introspector = introspector
        self.public_only = public_only

    # ---------------------------------------------------------------
    # Candidate filtering and scoring
    # ---------------------------------------------------------------

    @staticmethod
    def _shape_matches(info: MethodInfo, argc: int, generic_args: tuple, by_ref: Sequence[bool]) -> bool:
        if not info.accepts_count(argc):
            return False
        if info.generic_arity != len(generic_args):
            return False
        for i in range(argc):
            declared = info.params[i].by_ref if i < len(info.params) else False
            if declared != bool(by_ref[i]):
                return False
        return not any(p.by_ref for p in info.params[argc:])

    def score(self, info: MethodInfo, args: Sequence[Any]) -> Optional[Tuple[float, int, int, int]]:
        total = 0.0
        exact = 0
        for i, value in enumerate(args):
            if i < len(info.params):
                p = info.params[i]
                if p.out and value is None:
                    continue
                ann = p.value_type
            else:
                ann = info.rest.annotation
            s = argument_score(ann, value, self.introspector)
            if s is None:
                return None
            total += s
            if s == 1.0:
                exact += 1
        missing = info.params[len(args):]
        if any(not p.has_default for p in missing):
            return None
        uses_rest = len(args) > len(info.params)
        return (total, exact, -len(missing), -int(uses_rest))

    def select(self, candidates: List[MethodInfo], args: Sequence[Any], generic_args: tuple = (),
               by_ref: Optional[Sequence[bool]] = None, label: str = "") -> Optional[MethodInfo]:
        """The best applicable candidate, None when none applies; ties raise AmbiguousOverloadError."""
        by_ref = list(by_ref) if by_ref is not None else [False] * len(args)
        scored = []
        for info in candidates:
            if not self._shape_matches(info, len(args), generic_args, by_ref):
                continue
            if generic_args:
                info = info.instantiate(generic_args)
            sc = self.score(info, args)
            if sc is not None:
                scored.append((sc, info))
        if not scored:
            return None
        best_score = max(sc for sc, _ in scored)
        best = [info for sc, info in scored if sc == best_score]
        if len(best) > 1:
            raise AmbiguousOverloadError(
                f"The call to '{label}' is ambiguous between {len(best)} overloads with equal scores.")
        _dbg("bind:", label, "->", best[0], "score", best_score)
        return best[0]

    # ---------------------------------------------------------------
    # Methods
    # ---------------------------------------------------------------

    def find(self, t: type, name: str, args: Sequence[Any], generic_args: tuple = (),
             by_ref: Optional[Sequence[bool]] = None, flags: Visibility = Visibility.INSTANCE | Visibility.PUBLIC,
             cache=None, interface_call_site: bool = False) -> Optional[MethodInfo]:
        """Walks t's hierarchy; the first type with an applicable overload wins."""
        by_ref = tuple(bool(b) for b in by_ref) if by_ref is not None else (False,) * len(args)
        key = None
        if cache is not None:
            key = cache.method_key(name, generic_args, tuple(type(a) for a in args), by_ref,
                                   interface_call_site, t, flags, self.introspector)
            hit = cache.methods.get(key)
            if hit is not None:
                _dbg("method cache hit:", name, hit)
                return hit
        for c in self.introspector.hierarchy(t, self.public_only):
            candidates = self.introspector.declared_methods(c, name, flags)
            if not candidates:
                continue
            info = self.select(candidates, args, generic_args, by_ref, f"{type_name(c)}.{name}")
            if info is None:
                continue
            if key is not None and len(info.params) <= len(args):
                cache.methods.put(key, info)
            return info
        return None

    def has_method(self, t: type, name: str, flags: Visibility) -> bool:
        return any(self.introspector.declared_methods(c, name, flags)
                   for c in self.introspector.hierarchy(t, self.public_only))

    def missing_error(self, t: type, name: str, flags: Visibility) -> UncapsulationError:
        if self.has_method(t, name, flags):
            return MissingOverloadError(f"Unable to find a compatible overload for '{type_name(t)}.{name}'.")
        return MissingMemberError(f"'{type_name(t)}' does not contain a method called '{name}'.")

    def invoke(self, info: MethodInfo, instance, cls, args: list, action: Optional[str] = None):
        """Calls `info`, filling defaults; by-reference values are written back into `args`."""
        full = list(args) + [p.default for p in info.params[len(args):]]
        try:
            result = info.invoke(instance, cls, full)
        except UncapsulationError:
            raise
        except Exception as ex:
            owner = type_name(info.owner) if isinstance(info.owner, type) else info.owner
            if action:
                message = f"Unable to invoke {action} on type '{owner}' - {ex}"
            else:
                message = f"'{owner}.{info.name}' raised {type(ex).__name__}: {ex}"
            raise UncapsulationError(message, ex) from ex
        args[:] = full[:len(args)]
        return result

    # ---------------------------------------------------------------
    # Indexers, constructors and callables (never cached)
    # ---------------------------------------------------------------

    def select_indexer(self, t: type, args: Sequence[Any], setter: bool = False, path: str = "") -> MethodInfo:
        candidates = self.introspector.indexers(t, setter)
        if not candidates:
            raise MissingMemberError(f"There are no indexers on type '{type_name(t)}'.")
        shaped = [c for c in candidates if self._shape_matches(c, len(args), (), [False] * len(args))]
        if args and args[0] is None:
            nullable = [c for c in shaped if c.params and accepts_none(c.params[0].annotation)
                        or not c.params and c.rest is not None]
            if len(nullable) > 1:
                raise AmbiguousOverloadError(
                    f"Call to indexer on '{path}' is ambiguous because one or more arguments is null.")
            if nullable:
                return nullable[0]
            raise MissingMemberError(f"Cannot find a compatible indexer on type '{type_name(t)}'.")
        info = self.select(shaped, args, label=f"{type_name(t)}[]")
        if info is None:
            raise MissingMemberError(f"Cannot find a compatible indexer on type '{type_name(t)}'.")
        return info

    def select_constructor(self, t: type, args: Sequence[Any]) -> MethodInfo:
        info = self.select(self.introspector.constructors(t), args, label=f"{type_name(t)}.__init__")
        if info is None:
            raise MissingOverloadError(f"Unable to find a compatible overload for '{type_name(t)}.__init__'.")
        return info

    def select_callable(self, value, args: Sequence[Any], by_ref=None) -> Optional[Tuple[MethodInfo, Any, Optional[type]]]:
        """Chooses the call signature of a callable value: (info, receiver, receiver class) or None."""
        vt = type(value)
        if not isinstance(value, _PLAIN_CALLABLES):
            owner, _ = lookup_static(vt, "__call__")
            if owner is not None and owner is not object:
                info = self.find(vt, "__call__", args, (), by_ref,
                                 Visibility.INSTANCE | Visibility.STATIC | Visibility.PUBLIC)
                return (info, value, vt) if info is not None else None
        base = self.introspector.callable_info(value)
        if base is None:
            return None
        info = self.select([base], args, (), by_ref, f"{type_name(vt)}()")
        return (info, None, None) if info is not None else None
