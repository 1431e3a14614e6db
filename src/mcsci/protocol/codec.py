from __future__ import annotations

import math
import re
from typing import List, Optional, Sequence, Tuple, Union

from .errors import (
    ArrayLengthMismatch,
    LossyConversionError,
    PayloadTypeMismatch,
    TypedValueParseError,
    TypeMismatch,
    UnknownAlias,
    UnknownConstructor,
)
from .lexer import NUMBER, STRING, WORD, Cursor, Token, tokenize
from .types import TypeRegistry, format_type_decl
from .values import (
    FLOAT_KINDS,
    FLOAT_MANTISSA,
    INT_KINDS,
    INT_RANGES,
    PRIMITIVES,
    Alias,
    ArrayOf,
    ArrayValue,
    BoolValue,
    EnumOf,
    EnumValue,
    FloatValue,
    IntValue,
    ListOf,
    ListValue,
    Primitive,
    StringValue,
    TupleOf,
    TupleValue,
    TypeDescriptor,
    TypedValue,
    describe,
    float_bits,
    float_from_bits,
    int_fits,
    is_signed,
    round_f32,
)

_INT_LITERAL = re.compile(r"^(-)?(?:0[xX]([0-9a-fA-F]+)|0[oO]([0-7]+)|0[bB]([01]+)|([0-9]+))$")
_FLOAT_LITERAL = re.compile(r"^-?(?:[0-9]+(?:\.[0-9]+)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?$")
_HEX_BITS = re.compile(r"^0[xX]([0-9a-fA-F]+)$")
_RADIX_DIGITS = re.compile(r"^-?[0-9a-zA-Z]+$")

SPECIAL_FLOATS = {"NaN": math.nan, "Infinity": math.inf, "-Infinity": -math.inf}

_SIGNED_ORDER = ("i8", "i16", "i32", "i64")
_UNSIGNED_ORDER = ("u8", "u16", "u32", "u64")

Source = Union[str, bytes, Sequence[Token]]


# ==== Numeric helpers ====
def parse_int_literal(text: str) -> Optional[int]:
    """Decimal, 0x, 0o or 0b literal with optional leading '-'; None if not one."""
    m = _INT_LITERAL.match(text)
    if m is None:
        return None
    neg, hx, oc, bn, dec = m.groups()
    if hx is not None:
        v = int(hx, 16)
    elif oc is not None:
        v = int(oc, 8)
    elif bn is not None:
        v = int(bn, 2)
    else:
        v = int(dec, 10)
    return -v if neg else v


def parse_radix(text: str, radix: int) -> int:
    if not 2 <= radix <= 36:
        raise TypedValueParseError(f"radix must be between 2 and 36, got {radix}")
    if _RADIX_DIGITS.match(text) is None:
        raise TypedValueParseError(f"{text!r} is not a base-{radix} integer")
    digits = text.lstrip("-")
    if len(text) - len(digits) > 1 or any(int(c, 36) >= radix for c in digits):
        raise TypedValueParseError(f"{text!r} is not a base-{radix} integer")
    return int(text, radix)


def infer_int_kind(value: int) -> str:
    """Smallest integer type holding `value`; non-negative values prefer unsigned."""
    order = _SIGNED_ORDER if value < 0 else _UNSIGNED_ORDER
    for kind in order:
        if int_fits(kind, value):
            return kind
    raise TypedValueParseError(f"integer {value} does not fit any integer type")


def _int_to_float(kind: str, value: int) -> FloatValue:
    try:
        f = float(value)
        if kind == "f32":
            f = round_f32(f)
    except OverflowError:
        raise LossyConversionError(f"{value} cannot be represented as {kind}") from None
    if int(f) != value:
        raise LossyConversionError(f"{value} cannot be represented exactly as {kind}")
    return FloatValue(kind, f)


def _float_of_width(kind: str, value: float, *, exact: bool) -> FloatValue:
    if kind == "f32" and math.isfinite(value):
        try:
            rounded = round_f32(value)
        except OverflowError:
            raise LossyConversionError(f"{value!r} overflows f32") from None
        if exact and rounded != value:
            raise LossyConversionError(f"{value!r} cannot be represented exactly as f32")
        value = rounded
    return FloatValue(kind, value)


def _int_widens(src: str, dst: str) -> bool:
    sb, db = INT_RANGES[src][2], INT_RANGES[dst][2]
    if is_signed(src) == is_signed(dst):
        return sb <= db
    return (not is_signed(src)) and sb < db


def widen(value: TypedValue, target: Primitive) -> TypedValue:
    """Type-level lossless widening of an explicitly typed scalar."""
    if isinstance(value, IntValue):
        if target.name == value.kind:
            return value
        if target.name in INT_RANGES:
            if not _int_widens(value.kind, target.name):
                raise LossyConversionError(f"{value.kind} does not widen losslessly to {target.name}")
            return IntValue(target.name, value.value, explicit=True)
        if target.name in FLOAT_KINDS:
            if INT_RANGES[value.kind][2] >= FLOAT_MANTISSA[target.name]:
                raise LossyConversionError(f"{value.kind} does not widen losslessly to {target.name}")
            return FloatValue(target.name, float(value.value), explicit=True)
    if isinstance(value, FloatValue):
        if target.name == value.kind:
            return value
        if target.name == "f64":
            return FloatValue("f64", value.value, explicit=True)
        if target.name in FLOAT_KINDS or target.name in INT_RANGES:
            raise LossyConversionError(f"{value.kind} does not widen losslessly to {target.name}")
    raise TypeMismatch(f"{_kind_of(value)} value where {target.name} is expected")


def _kind_of(value: TypedValue) -> str:
    d = describe(value)
    if d is not None:
        return format_type_decl(d)
    return type(value).__name__


# ==== Descriptor unification (context-free lists/arrays) ====
def _common_int(a: str, b: str) -> str:
    lo = min(INT_RANGES[a][0], INT_RANGES[b][0])
    hi = max(INT_RANGES[a][1], INT_RANGES[b][1])
    for kind in INT_KINDS:
        if int_fits(kind, lo) and int_fits(kind, hi):
            return kind
    raise TypeMismatch(f"no integer type holds both {a} and {b}")


def unify(a: Optional[TypeDescriptor], b: Optional[TypeDescriptor]) -> Optional[TypeDescriptor]:
    if a is None:
        return b
    if b is None or a == b:
        return a
    if isinstance(a, Primitive) and isinstance(b, Primitive):
        if a.name in INT_RANGES and b.name in INT_RANGES:
            return Primitive(_common_int(a.name, b.name))
        numeric = set(INT_KINDS) | set(FLOAT_KINDS)
        if a.name in numeric and b.name in numeric:
            return Primitive("f64" if "f64" in (a.name, b.name) else "f32")
    if isinstance(a, TupleOf) and isinstance(b, TupleOf) and len(a.items) == len(b.items):
        return TupleOf(tuple(unify(x, y) for x, y in zip(a.items, b.items)))  # type: ignore[misc]
    if isinstance(a, ListOf) and isinstance(b, ListOf):
        return ListOf(unify(a.element, b.element))  # type: ignore[arg-type]
    if isinstance(a, ArrayOf) and isinstance(b, ArrayOf) and a.length == b.length:
        return ArrayOf(unify(a.element, b.element), a.length)  # type: ignore[arg-type]
    if isinstance(a, EnumOf) and isinstance(b, EnumOf):
        merged: List[Tuple[str, Optional[TypeDescriptor]]] = list(a.constructors)
        for name, payload in b.constructors:
            for i, (n, p) in enumerate(merged):
                if n == name:
                    if (p is None) != (payload is None):
                        raise TypeMismatch(f"constructor {name} used with and without a payload")
                    merged[i] = (n, unify(p, payload))
                    break
            else:
                merged.append((name, payload))
        return EnumOf(tuple(merged))
    raise TypeMismatch(f"elements of type {format_type_decl(a)} and {format_type_decl(b)} cannot share a list")


# ==== Decoder ====
class Decoder:
    """Recursive-descent decoder for typed-value literals.

    `registry`/`scope` resolve `alias::value` prefixes and alias descriptors;
    without a registry any alias is unknown.
    """

    def __init__(self, registry: Optional[TypeRegistry] = None, scope: Optional[int] = None) -> None:
        self.registry = registry
        self.scope = scope

    def resolve(self, descriptor: Optional[TypeDescriptor]) -> Optional[TypeDescriptor]:
        if not isinstance(descriptor, Alias):
            return descriptor
        if descriptor.name in PRIMITIVES:
            return Primitive(descriptor.name)
        if self.registry is None:
            raise UnknownAlias(f"unknown type alias {descriptor.name!r}")
        return self.registry.resolve(self.scope, descriptor.name)

    def decode(self, source: Source, expected: Optional[TypeDescriptor] = None) -> TypedValue:
        tokens = tokenize(source) if isinstance(source, (str, bytes)) else list(source)
        cur = Cursor(tokens, TypedValueParseError)
        value = self.value(cur, expected)
        if not cur.at_end():
            raise TypedValueParseError(f"trailing input after value: {cur.peek().text!r}")  # type: ignore[union-attr]
        return value

    def value(self, cur: Cursor, expected: Optional[TypeDescriptor] = None) -> TypedValue:
        tok = cur.peek()
        if tok is None:
            raise TypedValueParseError("expected a value, found end of line")

        nxt = cur.peek(1)
        if tok.kind == WORD and nxt is not None and nxt.is_punct("::"):
            cur.next()
            cur.next()
            if self.registry is None:
                raise UnknownAlias(f"unknown type alias {tok.text!r}")
            aliased = self.registry.resolve(self.scope, tok.text)
            v = self.value(cur, aliased)
            return v if expected is None else conform(v, expected, self.registry, self.scope)

        expected = self.resolve(expected)

        if tok.kind == STRING:
            cur.next()
            if expected is not None and expected != Primitive("string"):
                raise TypeMismatch(f"string where {format_type_decl(expected)} is expected")
            return StringValue(tok.text)

        if tok.kind == NUMBER or (tok.kind == WORD and tok.text in SPECIAL_FLOATS):
            cur.next()
            return self._bare_number(tok.text, expected)

        if tok.kind == WORD and tok.text in ("true", "false"):
            cur.next()
            if expected is not None and expected != Primitive("bool"):
                raise TypeMismatch(f"bool where {format_type_decl(expected)} is expected")
            return BoolValue(tok.text == "true")

        opens_paren = nxt is not None and nxt.is_punct("(")
        opens_bracket = nxt is not None and nxt.is_punct("[")

        if tok.kind == WORD and tok.text in INT_RANGES and opens_paren:
            cur.next()
            v = self._int_constructor(cur, tok.text)
            return v if expected is None else widen(v, self._primitive(expected, v))
        if tok.kind == WORD and tok.text in FLOAT_KINDS and opens_paren:
            cur.next()
            v = self._float_constructor(cur, tok.text)
            return v if expected is None else widen(v, self._primitive(expected, v))

        if tok.is_punct("(") or (tok.is_word("tuple") and opens_paren):
            if tok.kind == WORD:
                cur.next()
            return self._tuple(cur, expected)
        if tok.is_punct("[") or (tok.is_word("list") and (opens_paren or opens_bracket)):
            bare = tok.kind != WORD
            if not bare:
                cur.next()
            return self._sequence(cur, expected, array=False, bare=bare)
        if tok.is_word("array") and (opens_paren or opens_bracket):
            cur.next()
            return self._sequence(cur, expected, array=True, bare=False)

        if tok.kind == WORD:
            cur.next()
            return self._enum(cur, tok.text, expected)

        raise TypedValueParseError(f"unexpected {tok.text!r} where a value is expected")

    # ---- scalars ----
    @staticmethod
    def _primitive(expected: TypeDescriptor, v: TypedValue) -> Primitive:
        if not isinstance(expected, Primitive):
            raise TypeMismatch(f"{_kind_of(v)} value where {format_type_decl(expected)} is expected")
        return expected

    def _bare_number(self, text: str, expected: Optional[TypeDescriptor]) -> TypedValue:
        as_int = parse_int_literal(text)
        if as_int is None:
            if text in SPECIAL_FLOATS:
                as_float = SPECIAL_FLOATS[text]
            elif _FLOAT_LITERAL.match(text):
                as_float = float(text)
            else:
                raise TypedValueParseError(f"{text!r} is not a numeric literal")
            if expected is None:
                return _float_of_width("f32", as_float, exact=False)
            if isinstance(expected, Primitive) and expected.name in FLOAT_KINDS:
                return _float_of_width(expected.name, as_float, exact=False)
            if isinstance(expected, Primitive) and expected.name in INT_RANGES:
                raise LossyConversionError(f"float literal {text} where {expected.name} is expected")
            raise TypeMismatch(f"number where {format_type_decl(expected)} is expected")

        if expected is None:
            return IntValue(infer_int_kind(as_int), as_int)
        if isinstance(expected, Primitive) and expected.name in INT_RANGES:
            if not int_fits(expected.name, as_int):
                raise LossyConversionError(f"{text} does not fit {expected.name}")
            return IntValue(expected.name, as_int)
        if isinstance(expected, Primitive) and expected.name in FLOAT_KINDS:
            return _int_to_float(expected.name, as_int)
        raise TypeMismatch(f"number where {format_type_decl(expected)} is expected")

    def _int_constructor(self, cur: Cursor, kind: str) -> IntValue:
        cur.expect("(")
        arg = cur.next()
        radix: Optional[int] = None
        if cur.accept(","):
            r = cur.next()
            if r.kind != NUMBER or not (r.text.isascii() and r.text.isdigit()):
                raise TypedValueParseError(f"radix must be a decimal number, found {r.text!r}")
            radix = int(r.text)
        cur.expect(")")

        if arg.kind == STRING:
            value = parse_radix(arg.text, 10 if radix is None else radix)
        elif arg.kind == NUMBER and radix is None:
            parsed = parse_int_literal(arg.text)
            if parsed is None:
                raise TypedValueParseError(f"{arg.text!r} is not an integer literal")
            value = parsed
        else:
            raise TypedValueParseError(f"bad argument {arg.text!r} to {kind}(...)")
        if not int_fits(kind, value):
            raise TypedValueParseError(f"{value} is out of range for {kind}")
        return IntValue(kind, value, explicit=True)

    def _float_constructor(self, cur: Cursor, kind: str) -> FloatValue:
        cur.expect("(")
        arg = cur.next()
        cur.expect(")")
        text = arg.text
        if arg.kind == NUMBER:
            m = _HEX_BITS.match(text)
            if m is not None:
                bits = int(m.group(1), 16)
                if bits >= 1 << (32 if kind == "f32" else 64):
                    raise TypedValueParseError(f"bit pattern {text} is wider than {kind}")
                return FloatValue(kind, float_from_bits(kind, bits), explicit=True)
        if arg.kind in (NUMBER, STRING) or (arg.kind == WORD and text in SPECIAL_FLOATS):
            if text in SPECIAL_FLOATS:
                return FloatValue(kind, SPECIAL_FLOATS[text], explicit=True)
            if _FLOAT_LITERAL.match(text):
                return FloatValue(kind, _float_of_width(kind, float(text), exact=False).value, explicit=True)
        raise TypedValueParseError(f"bad argument {text!r} to {kind}(...)")

    # ---- composites ----
    def _items(self, cur: Cursor, close: str, expected_items: Optional[Sequence[Optional[TypeDescriptor]]] = None) -> List[TypedValue]:
        items: List[TypedValue] = []
        while not cur.accept(close):
            want = None
            if expected_items is not None:
                if len(items) >= len(expected_items):
                    raise TypeMismatch(f"too many items, expected {len(expected_items)}")
                want = expected_items[len(items)]
            items.append(self.value(cur, want))
            if not cur.accept(","):
                cur.expect(close)
                break
        return items

    def _tuple(self, cur: Cursor, expected: Optional[TypeDescriptor]) -> TupleValue:
        cur.expect("(")
        if expected is None:
            return TupleValue(tuple(self._items(cur, ")")))
        if not isinstance(expected, TupleOf):
            raise TypeMismatch(f"tuple where {format_type_decl(expected)} is expected")
        items = self._items(cur, ")", expected.items)
        if len(items) != len(expected.items):
            raise TypeMismatch(f"tuple has {len(items)} items, expected {len(expected.items)}")
        return TupleValue(tuple(items))

    def _sequence(self, cur: Cursor, expected: Optional[TypeDescriptor], *, array: bool, bare: bool) -> TypedValue:
        opener = cur.next()
        if not (opener.is_punct("[") or opener.is_punct("(")):
            raise TypedValueParseError(f"expected '[' or '(', found {opener.text!r}")
        close = "]" if opener.text == "[" else ")"

        if expected is not None:
            if isinstance(expected, ArrayOf) and (array or bare):
                values = self._items_of(cur, close, expected.element)
                if len(values) != expected.length:
                    raise ArrayLengthMismatch(f"array expects {expected.length} elements, got {len(values)}")
                return ArrayValue(tuple(values), expected.element, expected.length)
            if isinstance(expected, ListOf) and not array:
                values = self._items_of(cur, close, expected.element)
                return ListValue(tuple(values), expected.element)
            kind = "array" if array else "list"
            raise TypeMismatch(f"{kind} where {format_type_decl(expected)} is expected")

        start = cur.i
        first_pass = self._items(cur, close)
        element: Optional[TypeDescriptor] = None
        for v in first_pass:
            element = unify(element, describe(v))
        if element is not None and any(describe(v) != element for v in first_pass):
            cur.i = start
            first_pass = self._items_of(cur, close, element)
        if array:
            return ArrayValue(tuple(first_pass), element, len(first_pass))
        return ListValue(tuple(first_pass), element)

    def _items_of(self, cur: Cursor, close: str, element: TypeDescriptor) -> List[TypedValue]:
        items: List[TypedValue] = []
        while not cur.accept(close):
            items.append(self.value(cur, element))
            if not cur.accept(","):
                cur.expect(close)
                break
        return items

    def _enum(self, cur: Cursor, tag: str, expected: Optional[TypeDescriptor]) -> EnumValue:
        has_payload = cur.peek() is not None and cur.peek().is_punct("(")  # type: ignore[union-attr]
        if expected is None:
            payload = None
            if has_payload:
                cur.expect("(")
                payload = self.value(cur)
                cur.expect(")")
            return EnumValue(tag, payload)

        if not isinstance(expected, EnumOf):
            raise TypeMismatch(f"{tag!r} where {format_type_decl(expected)} is expected")
        known, payload_type = expected.constructor(tag)
        if not known:
            raise UnknownConstructor(f"{tag!r} is not a constructor of {format_type_decl(expected)}")
        if payload_type is None:
            if has_payload:
                raise PayloadTypeMismatch(f"constructor {tag} takes no payload")
            return EnumValue(tag)
        if not has_payload:
            raise PayloadTypeMismatch(f"constructor {tag} requires a {format_type_decl(payload_type)} payload")
        cur.expect("(")
        try:
            payload = self.value(cur, payload_type)
        except PayloadTypeMismatch:
            raise
        except TypedValueParseError as e:
            raise PayloadTypeMismatch(f"payload of {tag}: {e}") from e
        cur.expect(")")
        return EnumValue(tag, payload)


def decode(
    source: Source,
    expected: Optional[TypeDescriptor] = None,
    *,
    registry: Optional[TypeRegistry] = None,
    scope: Optional[int] = None,
) -> TypedValue:
    return Decoder(registry, scope).decode(source, expected)


# ==== Value-level conformance ====
def conform(
    value: TypedValue,
    descriptor: TypeDescriptor,
    registry: Optional[TypeRegistry] = None,
    scope: Optional[int] = None,
) -> TypedValue:
    """Re-type an already decoded value to `descriptor` without losing information.

    Works on values rather than literals: an inferred integer conforms to any
    integer type whose range holds it, while a scalar written with an explicit
    type only widens.
    """
    d = Decoder(registry, scope).resolve(descriptor)

    if isinstance(value, (IntValue, FloatValue)) and value.explicit and isinstance(d, Primitive):
        return widen(value, d)

    if isinstance(value, StringValue) or isinstance(value, BoolValue):
        want = Primitive("string" if isinstance(value, StringValue) else "bool")
        if d != want:
            raise TypeMismatch(f"{want.name} value where {format_type_decl(d)} is expected")
        return value

    if isinstance(value, IntValue):
        if isinstance(d, Primitive) and d.name in INT_RANGES:
            if not int_fits(d.name, value.value):
                raise LossyConversionError(f"{value.value} does not fit {d.name}")
            return IntValue(d.name, value.value)
        if isinstance(d, Primitive) and d.name in FLOAT_KINDS:
            return _int_to_float(d.name, value.value)
        raise TypeMismatch(f"{value.kind} value where {format_type_decl(d)} is expected")

    if isinstance(value, FloatValue):
        if isinstance(d, Primitive) and d.name in FLOAT_KINDS:
            return _float_of_width(d.name, value.value, exact=True)
        if isinstance(d, Primitive) and d.name in INT_RANGES:
            raise LossyConversionError(f"{value.kind} value where {d.name} is expected")
        raise TypeMismatch(f"{value.kind} value where {format_type_decl(d)} is expected")

    if isinstance(value, TupleValue):
        if not isinstance(d, TupleOf) or len(d.items) != len(value.items):
            raise TypeMismatch(f"{_kind_of(value)} where {format_type_decl(d)} is expected")
        return TupleValue(tuple(conform(v, t, registry, scope) for v, t in zip(value.items, d.items)))

    if isinstance(value, (ListValue, ArrayValue)):
        if isinstance(d, ArrayOf):
            if len(value.items) != d.length:
                raise ArrayLengthMismatch(f"array expects {d.length} elements, got {len(value.items)}")
            return ArrayValue(tuple(conform(v, d.element, registry, scope) for v in value.items), d.element, d.length)
        if isinstance(d, ListOf):
            return ListValue(tuple(conform(v, d.element, registry, scope) for v in value.items), d.element)
        raise TypeMismatch(f"sequence where {format_type_decl(d)} is expected")

    if isinstance(value, EnumValue):
        if not isinstance(d, EnumOf):
            raise TypeMismatch(f"{value.tag!r} where {format_type_decl(d)} is expected")
        known, payload_type = d.constructor(value.tag)
        if not known:
            raise UnknownConstructor(f"{value.tag!r} is not a constructor of {format_type_decl(d)}")
        if (payload_type is None) != (value.payload is None):
            raise PayloadTypeMismatch(f"payload of {value.tag} does not match its declaration")
        if payload_type is None:
            return value
        try:
            return EnumValue(value.tag, conform(value.payload, payload_type, registry, scope))  # type: ignore[arg-type]
        except PayloadTypeMismatch:
            raise
        except TypedValueParseError as e:
            raise PayloadTypeMismatch(f"payload of {value.tag}: {e}") from e

    raise TypeMismatch(f"cannot conform {value!r}")


# ==== Encoder ====
def quote(text: str) -> str:
    out = ['"']
    for c in text:
        if c == "\\":
            out.append("\\\\")
        elif c == '"':
            out.append('\\"')
        elif c == "\n":
            out.append("\\n")
        elif c == "\r":
            out.append("\\r")
        elif c == "\t":
            out.append("\\t")
        elif not c.isprintable():
            out.append(f"\\u{{{ord(c):x}}}")
        else:
            out.append(c)
    out.append('"')
    return "".join(out)


def _float_text(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return repr(value)


def _encode_float(value: FloatValue) -> str:
    # NaNs other than the canonical one keep their payload as a bit pattern
    if math.isnan(value.value) and value.bits != float_bits(value.kind, math.nan):
        width = 8 if value.kind == "f32" else 16
        return f"{value.kind}(0x{value.bits:0{width}x})"
    return f"{value.kind}({_float_text(value.value)})"


def encode(value: TypedValue) -> str:
    """Canonical text for a typed value (decimal integers, explicit scalar types)."""
    if isinstance(value, StringValue):
        return quote(value.text)
    if isinstance(value, BoolValue):
        return "true" if value.value else "false"
    if isinstance(value, IntValue):
        return f"{value.kind}({value.value})"
    if isinstance(value, FloatValue):
        return _encode_float(value)
    if isinstance(value, TupleValue):
        return "tuple(" + ", ".join(encode(v) for v in value.items) + ")"
    if isinstance(value, ListValue):
        return "[" + ", ".join(encode(v) for v in value.items) + "]"
    if isinstance(value, ArrayValue):
        return "array[" + ", ".join(encode(v) for v in value.items) + "]"
    if isinstance(value, EnumValue):
        if value.payload is None:
            return value.tag
        return f"{value.tag}({encode(value.payload)})"
    raise TypeError(f"not a typed value: {value!r}")
