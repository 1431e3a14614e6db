from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from .codec import conform
from .types import TypeRegistry
from .values import (
    Alias,
    BoolValue,
    ListValue,
    Primitive,
    StringValue,
    TupleValue,
    TypedValue,
)

_STRING = Primitive("string")


def _strings(items: Tuple[str, ...]) -> ListValue:
    return ListValue(tuple(StringValue(s) for s in items), _STRING)


def _texts(value: TypedValue) -> Tuple[str, ...]:
    assert isinstance(value, ListValue)
    return tuple(v.text for v in value.items)  # type: ignore[attr-defined]


@dataclass(frozen=True)
class ExtensionDescriptor:
    """Immutable description of one registered extension (`extension_info`)."""

    name: str
    version: str
    description: str
    authors: Tuple[str, ...] = ()
    commands: Tuple[str, ...] = ()

    def to_value(self) -> TupleValue:
        return TupleValue(
            (
                StringValue(self.name),
                StringValue(self.version),
                StringValue(self.description),
                _strings(self.authors),
                _strings(self.commands),
            )
        )

    @staticmethod
    def from_value(value: TypedValue, registry: Optional[TypeRegistry] = None) -> "ExtensionDescriptor":
        v = conform(value, Alias("extension_info"), registry or TypeRegistry())
        assert isinstance(v, TupleValue)
        name, version, desc, authors, commands = v.items
        return ExtensionDescriptor(
            name=name.text,  # type: ignore[attr-defined]
            version=version.text,  # type: ignore[attr-defined]
            description=desc.text,  # type: ignore[attr-defined]
            authors=_texts(authors),
            commands=_texts(commands),
        )


@dataclass(frozen=True)
class ProblemArg:
    name: str
    optional: bool
    type_name: str  # type declaration text, resolved in the extension's scope

    def to_value(self) -> TupleValue:
        return TupleValue((StringValue(self.name), BoolValue(self.optional), StringValue(self.type_name)))


@dataclass(frozen=True)
class ProblemDescription:
    name: str
    description: str
    args: Tuple[ProblemArg, ...] = ()

    def to_value(self) -> TupleValue:
        return TupleValue(
            (
                StringValue(self.name),
                StringValue(self.description),
                ListValue(tuple(a.to_value() for a in self.args), Alias("problem_arg")),
            )
        )

    def arg(self, name: str) -> Optional[ProblemArg]:
        for a in self.args:
            if a.name == name:
                return a
        return None


def problem_list_value(problems: Tuple[ProblemDescription, ...]) -> ListValue:
    return ListValue(tuple(p.to_value() for p in problems), Alias("problem_description"))


def problems_from_value(value: TypedValue, registry: Optional[TypeRegistry] = None) -> Tuple[ProblemDescription, ...]:
    v = conform(value, Alias("extension_problem_list"), registry or TypeRegistry())
    out = []
    for item in v.items:  # type: ignore[attr-defined]
        name, desc, args = item.items
        out.append(
            ProblemDescription(
                name=name.text,
                description=desc.text,
                args=tuple(ProblemArg(a.items[0].text, a.items[1].value, a.items[2].text) for a in args.items),
            )
        )
    return tuple(out)
