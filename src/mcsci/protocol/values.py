from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

# ==== Primitive type names (frozen) ====
INT_KINDS: Tuple[str, ...] = ("i8", "u8", "i16", "u16", "i32", "u32", "i64", "u64")
FLOAT_KINDS: Tuple[str, ...] = ("f32", "f64")
PRIMITIVES: Tuple[str, ...] = ("string", "bool") + INT_KINDS + FLOAT_KINDS

# kind -> (min, max, bits)
INT_RANGES: Dict[str, Tuple[int, int, int]] = {
    "i8": (-(2**7), 2**7 - 1, 8),
    "u8": (0, 2**8 - 1, 8),
    "i16": (-(2**15), 2**15 - 1, 16),
    "u16": (0, 2**16 - 1, 16),
    "i32": (-(2**31), 2**31 - 1, 32),
    "u32": (0, 2**32 - 1, 32),
    "i64": (-(2**63), 2**63 - 1, 64),
    "u64": (0, 2**64 - 1, 64),
}

# mantissa bits (including the implicit one) of each float width
FLOAT_MANTISSA: Dict[str, int] = {"f32": 24, "f64": 53}


def is_signed(kind: str) -> bool:
    return kind.startswith("i")


def int_fits(kind: str, value: int) -> bool:
    lo, hi, _ = INT_RANGES[kind]
    return lo <= value <= hi


def round_f32(value: float) -> float:
    """Round a Python float to the nearest IEEE-754 binary32 value.

    Raises OverflowError for finite values outside the binary32 range.
    """
    return struct.unpack("<f", struct.pack("<f", value))[0]


def float_bits(kind: str, value: float) -> int:
    if kind == "f32":
        return struct.unpack("<I", struct.pack("<f", value))[0]
    return struct.unpack("<Q", struct.pack("<d", value))[0]


def float_from_bits(kind: str, bits: int) -> float:
    if kind == "f32":
        return struct.unpack("<f", struct.pack("<I", bits))[0]
    return struct.unpack("<d", struct.pack("<Q", bits))[0]


# ==== Type descriptors ====
class TypeDescriptor:
    """Marker base for the descriptor variants below."""

    __slots__ = ()


@dataclass(frozen=True)
class Primitive(TypeDescriptor):
    name: str

    def __post_init__(self) -> None:
        if self.name not in PRIMITIVES:
            raise ValueError(f"not a primitive type: {self.name}")


@dataclass(frozen=True)
class Alias(TypeDescriptor):
    name: str


@dataclass(frozen=True)
class TupleOf(TypeDescriptor):
    items: Tuple[TypeDescriptor, ...]


@dataclass(frozen=True)
class ListOf(TypeDescriptor):
    element: TypeDescriptor


@dataclass(frozen=True)
class ArrayOf(TypeDescriptor):
    element: TypeDescriptor
    length: int


@dataclass(frozen=True)
class EnumOf(TypeDescriptor):
    # ordered (constructor name, optional payload type)
    constructors: Tuple[Tuple[str, Optional[TypeDescriptor]], ...]

    def constructor(self, name: str) -> Tuple[bool, Optional[TypeDescriptor]]:
        for ctor, payload in self.constructors:
            if ctor == name:
                return True, payload
        return False, None


# ==== Typed values ====
class TypedValue:
    """Marker base for the value variants below."""

    __slots__ = ()


@dataclass(frozen=True)
class StringValue(TypedValue):
    text: str


@dataclass(frozen=True)
class BoolValue(TypedValue):
    value: bool


@dataclass(frozen=True)
class IntValue(TypedValue):
    kind: str
    value: int
    # written as `kind(...)` rather than inferred from a bare literal
    explicit: bool = field(default=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.kind not in INT_RANGES:
            raise ValueError(f"not an integer type: {self.kind}")
        if not int_fits(self.kind, self.value):
            raise ValueError(f"{self.value} does not fit {self.kind}")


@dataclass(frozen=True, eq=False)
class FloatValue(TypedValue):
    kind: str
    value: float
    explicit: bool = field(default=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.kind not in FLOAT_KINDS:
            raise ValueError(f"not a float type: {self.kind}")
        v = float(self.value)
        if self.kind == "f32" and math.isfinite(v):
            v = round_f32(v)
        object.__setattr__(self, "value", v)

    @property
    def bits(self) -> int:
        return float_bits(self.kind, self.value)

    # bit-exact equality: NaN == NaN, 0.0 != -0.0
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FloatValue):
            return NotImplemented
        return self.kind == other.kind and self.bits == other.bits

    def __hash__(self) -> int:
        return hash((self.kind, self.bits))


@dataclass(frozen=True)
class TupleValue(TypedValue):
    items: Tuple[TypedValue, ...]


@dataclass(frozen=True)
class ListValue(TypedValue):
    items: Tuple[TypedValue, ...]
    # None only for a context-free empty list
    element: Optional[TypeDescriptor] = None


@dataclass(frozen=True)
class ArrayValue(TypedValue):
    items: Tuple[TypedValue, ...]
    element: Optional[TypeDescriptor] = None
    length: int = field(default=-1)

    def __post_init__(self) -> None:
        if self.length < 0:
            object.__setattr__(self, "length", len(self.items))
        if len(self.items) != self.length:
            raise ValueError(f"array of length {self.length} built from {len(self.items)} items")


@dataclass(frozen=True)
class EnumValue(TypedValue):
    tag: str
    payload: Optional[TypedValue] = None


Scalar = Union[StringValue, BoolValue, IntValue, FloatValue]


def describe(value: TypedValue) -> Optional[TypeDescriptor]:
    """Best-effort descriptor of a value; None where the value alone cannot tell."""
    if isinstance(value, StringValue):
        return Primitive("string")
    if isinstance(value, BoolValue):
        return Primitive("bool")
    if isinstance(value, (IntValue, FloatValue)):
        return Primitive(value.kind)
    if isinstance(value, TupleValue):
        items = [describe(v) for v in value.items]
        if any(d is None for d in items):
            return None
        return TupleOf(tuple(items))  # type: ignore[arg-type]
    if isinstance(value, ListValue):
        return ListOf(value.element) if value.element is not None else None
    if isinstance(value, ArrayValue):
        return ArrayOf(value.element, value.length) if value.element is not None else None
    if isinstance(value, EnumValue):
        payload = describe(value.payload) if value.payload is not None else None
        if value.payload is not None and payload is None:
            return None
        return EnumOf(((value.tag, payload),))
    return None
