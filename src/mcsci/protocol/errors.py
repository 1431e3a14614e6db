from __future__ import annotations

from typing import Optional


# ==== Error taxonomy (frozen) ====
class McsciError(Exception):
    """Base class for every error raised by the protocol engine."""


class LexError(McsciError):
    def __init__(self, message: str, *, pos: Optional[int] = None) -> None:
        self.pos = pos
        if pos is not None:
            message = f"{message} (at column {pos})"
        super().__init__(message)


class TypedValueParseError(McsciError):
    """A literal could not be decoded into a typed value."""


class LossyConversionError(TypedValueParseError):
    pass


class ArrayLengthMismatch(TypedValueParseError):
    pass


class UnknownConstructor(TypedValueParseError):
    pass


class PayloadTypeMismatch(TypedValueParseError):
    pass


class TypeMismatch(TypedValueParseError):
    pass


class UnknownAlias(TypedValueParseError):
    pass


class AliasConflict(TypedValueParseError):
    pass


class ProtocolStateError(McsciError):
    """Command is not valid in the current connection phase."""


class UnknownExtension(McsciError):
    def __init__(self, ext_id: int) -> None:
        self.ext_id = ext_id
        super().__init__(f"no such extension: {ext_id}")


class DispatchError(McsciError):
    """An extension refused an invocation.

    `parse_failure` marks refusals caused by an unparseable payload; those
    surface as `parsefail` instead of `unexpected`.
    """

    def __init__(self, message: str, *, parse_failure: bool = False) -> None:
        self.parse_failure = parse_failure
        super().__init__(message)


class ProblemRejected(McsciError):
    """An extension refused `setup-problem` arguments; `value` is sent back in `setup-error`."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(str(getattr(value, "text", value)))
