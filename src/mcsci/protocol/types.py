from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from .errors import AliasConflict, TypedValueParseError, UnknownAlias
from .lexer import NUMBER, WORD, Cursor, Token, tokenize
from .values import (
    PRIMITIVES,
    Alias,
    ArrayOf,
    EnumOf,
    ListOf,
    Primitive,
    TupleOf,
    TypeDescriptor,
)

# Scope key for aliases every extension can see.
GLOBAL_SCOPE: Optional[int] = None

COMPOSITE_KEYWORDS = ("tuple", "list", "array", "enum")

ScopeLoader = Callable[[Optional[int]], Optional[Iterable[Tuple[str, Union[TypeDescriptor, str]]]]]


# ==== Type declaration grammar ====
def parse_type_decl(cur: Cursor) -> TypeDescriptor:
    """Parse one type declaration from the cursor.

    Grammar:
      decl := primitive | alias
            | tuple(decl, ...) | list(decl) | array(decl, n)
            | enum(Ctor, Ctor(decl), ...)
    """
    tok = cur.next()
    if tok.kind != WORD:
        raise TypedValueParseError(f"expected a type, found {tok.text!r}")
    name = tok.text
    if name in PRIMITIVES:
        return Primitive(name)
    nxt = cur.peek()
    if name not in COMPOSITE_KEYWORDS or nxt is None or not nxt.is_punct("("):
        return Alias(name)

    cur.expect("(")
    if name == "tuple":
        items: List[TypeDescriptor] = []
        while not cur.accept(")"):
            items.append(parse_type_decl(cur))
            if not cur.accept(","):
                cur.expect(")")
                break
        return TupleOf(tuple(items))
    if name == "list":
        element = parse_type_decl(cur)
        cur.accept(",")
        cur.expect(")")
        return ListOf(element)
    if name == "array":
        element = parse_type_decl(cur)
        cur.expect(",")
        length_tok = cur.next()
        if length_tok.kind != NUMBER or not (length_tok.text.isascii() and length_tok.text.isdigit()):
            raise TypedValueParseError(f"array length must be a decimal number, found {length_tok.text!r}")
        cur.expect(")")
        return ArrayOf(element, int(length_tok.text))

    ctors: List[Tuple[str, Optional[TypeDescriptor]]] = []
    seen = set()
    while not cur.accept(")"):
        ctor_tok = cur.next()
        if ctor_tok.kind != WORD:
            raise TypedValueParseError(f"expected an enum constructor, found {ctor_tok.text!r}")
        if ctor_tok.text in seen:
            raise TypedValueParseError(f"duplicate enum constructor {ctor_tok.text!r}")
        seen.add(ctor_tok.text)
        payload: Optional[TypeDescriptor] = None
        if cur.accept("("):
            payload = parse_type_decl(cur)
            cur.expect(")")
        ctors.append((ctor_tok.text, payload))
        if not cur.accept(","):
            cur.expect(")")
            break
    if not ctors:
        raise TypedValueParseError("enum needs at least one constructor")
    return EnumOf(tuple(ctors))


def parse_type_string(text: str) -> TypeDescriptor:
    cur = Cursor(tokenize(text), TypedValueParseError)
    decl = parse_type_decl(cur)
    if not cur.at_end():
        raise TypedValueParseError(f"trailing input after type: {cur.peek().text!r}")  # type: ignore[union-attr]
    return decl


def format_type_decl(decl: TypeDescriptor) -> str:
    if isinstance(decl, (Primitive, Alias)):
        return decl.name
    if isinstance(decl, TupleOf):
        return "tuple(" + ", ".join(format_type_decl(t) for t in decl.items) + ")"
    if isinstance(decl, ListOf):
        return f"list({format_type_decl(decl.element)})"
    if isinstance(decl, ArrayOf):
        return f"array({format_type_decl(decl.element)}, {decl.length})"
    if isinstance(decl, EnumOf):
        parts = []
        for name, payload in decl.constructors:
            parts.append(name if payload is None else f"{name}({format_type_decl(payload)})")
        return "enum(" + ", ".join(parts) + ")"
    raise TypeError(f"not a type descriptor: {decl!r}")


# ==== Built-in aliases (frozen) ====
BUILTIN_ALIASES: Tuple[Tuple[str, str], ...] = (
    ("extension_info", "tuple(string, string, string, list(string), list(string))"),
    ("problem_arg", "tuple(string, bool, string)"),
    ("problem_description", "tuple(string, string, list(problem_arg))"),
    ("extension_problem_list", "list(problem_description)"),
)


class TypeRegistry:
    """Per-connection alias table: (extension id, alias) -> descriptor.

    Descriptors are interned in an arena and referenced by integer handle,
    so nested alias references never form object cycles and lookups stay O(1).
    Built-in aliases live in the global scope and are visible to every
    extension scope. An optional `loader(ext_id)` fills an extension scope
    the first time it is consulted.
    """

    def __init__(self, *, builtins: bool = True, loader: Optional[ScopeLoader] = None) -> None:
        self._lock = threading.RLock()
        self._arena: List[TypeDescriptor] = []
        self._interned: Dict[TypeDescriptor, int] = {}
        self._aliases: Dict[Tuple[Optional[int], str], int] = {}
        self._order: Dict[Optional[int], List[str]] = {}
        self._loader = loader
        self._loaded: Set[Optional[int]] = {GLOBAL_SCOPE}
        if builtins:
            for name, decl in BUILTIN_ALIASES:
                self.register(GLOBAL_SCOPE, name, parse_type_string(decl))

    # ---- arena ----
    def intern(self, descriptor: TypeDescriptor) -> int:
        with self._lock:
            handle = self._interned.get(descriptor)
            if handle is None:
                handle = len(self._arena)
                self._arena.append(descriptor)
                self._interned[descriptor] = handle
            return handle

    def descriptor(self, handle: int) -> TypeDescriptor:
        return self._arena[handle]

    # ---- aliases ----
    def register(self, ext_id: Optional[int], alias: str, descriptor: Union[TypeDescriptor, str]) -> int:
        """Register an alias; idempotent for identical redefinitions."""
        if isinstance(descriptor, str):
            descriptor = parse_type_string(descriptor)
        if alias in PRIMITIVES or alias in COMPOSITE_KEYWORDS:
            raise AliasConflict(f"{alias!r} is a reserved type name")
        with self._lock:
            handle = self.intern(descriptor)
            key = (ext_id, alias)
            for existing in (self._aliases.get(key), self._aliases.get((GLOBAL_SCOPE, alias))):
                if existing is not None and existing != handle:
                    raise AliasConflict(
                        f"alias {alias!r} already defined as {format_type_decl(self._arena[existing])}"
                    )
            if key in self._aliases:
                return handle
            self._aliases[key] = handle
            self._order.setdefault(ext_id, []).append(alias)
            return handle

    def register_all(self, ext_id: Optional[int], types: Iterable[Tuple[str, Union[TypeDescriptor, str]]]) -> None:
        for alias, descriptor in types:
            self.register(ext_id, alias, descriptor)

    def ensure_scope(self, ext_id: Optional[int]) -> None:
        """Load an extension scope through the loader, all or nothing.

        Ids the loader does not know are not remembered. A declaration list
        that fails to register is rolled back, so the next lookup fails again.
        """
        with self._lock:
            if ext_id in self._loaded or self._loader is None:
                return
            types = self._loader(ext_id)
            if types is None:
                return
            order = self._order.setdefault(ext_id, [])
            mark = len(order)
            try:
                self.register_all(ext_id, types)
            except Exception:
                for alias in order[mark:]:
                    del self._aliases[(ext_id, alias)]
                del order[mark:]
                if not order:
                    del self._order[ext_id]
                raise
            self._loaded.add(ext_id)

    def lookup(self, ext_id: Optional[int], alias: str) -> Optional[TypeDescriptor]:
        with self._lock:
            self.ensure_scope(ext_id)
            handle = self._aliases.get((ext_id, alias))
            if handle is None:
                handle = self._aliases.get((GLOBAL_SCOPE, alias))
            return None if handle is None else self._arena[handle]

    def resolve(self, ext_id: Optional[int], alias: str) -> TypeDescriptor:
        """Follow an alias chain to a non-alias descriptor."""
        if alias in PRIMITIVES:
            return Primitive(alias)
        seen = set()
        name = alias
        while True:
            if name in seen:
                raise UnknownAlias(f"alias {alias!r} is cyclic")
            seen.add(name)
            found = self.lookup(ext_id, name)
            if found is None:
                raise UnknownAlias(f"unknown type alias {name!r}")
            if not isinstance(found, Alias):
                return found
            if found.name in PRIMITIVES:
                return Primitive(found.name)
            name = found.name

    def expand(self, ext_id: Optional[int], descriptor: TypeDescriptor) -> TypeDescriptor:
        if isinstance(descriptor, Alias):
            return self.resolve(ext_id, descriptor.name)
        return descriptor

    def aliases(self, ext_id: Optional[int]) -> List[Tuple[str, TypeDescriptor]]:
        with self._lock:
            self.ensure_scope(ext_id)
            return [(a, self._arena[self._aliases[(ext_id, a)]]) for a in self._order.get(ext_id, [])]


def type_list_tokens_to_aliases(tokens: List[Token]) -> List[Tuple[str, TypeDescriptor]]:
    """Parse `alias = decl alias = decl ...` as carried by a type-list response."""
    cur = Cursor(tokens, TypedValueParseError)
    out: List[Tuple[str, TypeDescriptor]] = []
    while not cur.at_end():
        tok = cur.next()
        if tok.kind != WORD:
            raise TypedValueParseError(f"expected an alias name, found {tok.text!r}")
        cur.expect("=")
        out.append((tok.text, parse_type_decl(cur)))
    return out
