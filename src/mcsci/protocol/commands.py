from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .codec import Decoder
from .errors import McsciError, TypedValueParseError
from .lexer import NUMBER, STRING, WORD, Cursor, Token, decode_line, tokenize
from .types import TypeRegistry
from .values import TypedValue

# ==== Connection phases (frozen) ====
AWAITING_HELLO = "AwaitingHello"
READY = "Ready"
CLOSING = "Closing"

U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1


# ==== Command variants ====
class Command:
    name = ""


@dataclass(frozen=True)
class Hello(Command):
    name = "hello"


@dataclass(frozen=True)
class Help(Command):
    name = "help"


@dataclass(frozen=True)
class Quit(Command):
    name = "quit"


@dataclass(frozen=True)
class Version(Command):
    name = "version"


@dataclass(frozen=True)
class Extensions(Command):
    name = "extensions"


@dataclass(frozen=True)
class Go(Command):
    name = "go"


@dataclass(frozen=True)
class Stop(Command):
    name = "stop"


@dataclass(frozen=True)
class ListTypes(Command):
    ext_id: int
    name = "list-types"


@dataclass(frozen=True)
class ListProblems(Command):
    ext_id: int
    name = "list-problems"


@dataclass(frozen=True)
class SetupProblem(Command):
    ext_id: int
    problem: str
    args: Tuple[Tuple[str, TypedValue], ...] = ()
    name = "setup-problem"


@dataclass(frozen=True)
class UseExtension(Command):
    ext_id: int
    usage_id: int
    payload: str
    name = "use-extension"


@dataclass(frozen=True)
class Malformed(Command):
    line: str
    reason: str
    name = "(malformed)"


_SINGLE_WORD = {
    "hello": Hello,
    "help": Help,
    "quit": Quit,
    "version": Version,
    "extensions": Extensions,
    "go": Go,
    "stop": Stop,
}


class _Malformed(Exception):
    pass


def _number_text(tok: Optional[Token]) -> Optional[str]:
    return tok.text if tok is not None and tok.kind == NUMBER else None


def _number(text: Optional[str], what: str, limit: int) -> int:
    if text is None or not (text.isascii() and text.isdigit()):
        raise _Malformed(f"{what} must be a decimal number")
    v = int(text)
    if v > limit:
        raise _Malformed(f"{what} {v} is out of range")
    return v


def _parse_use_extension(line: str) -> Command:
    parts = line.split(None, 3)
    if len(parts) < 4 or not parts[3].strip():
        raise _Malformed("use-extension requires <ext-id> <usage-id> <command>")
    return UseExtension(
        ext_id=_number(parts[1], "ext-id", U32_MAX),
        usage_id=_number(parts[2], "usage-id", U64_MAX),
        payload=parts[3].strip(),
    )


def _parse_setup_problem(cur: Cursor, registry: Optional[TypeRegistry]) -> Command:
    ext_id = _number(_number_text(cur.peek()), "ext-id", U32_MAX)
    cur.next()
    name_tok = cur.peek()
    if name_tok is None or name_tok.kind != STRING:
        raise _Malformed("problem name must be a quoted string")
    cur.next()

    decoder = Decoder(registry, ext_id)
    args = []
    seen = set()
    while not cur.at_end():
        arg_tok = cur.next()
        if arg_tok.kind not in (WORD, STRING):
            raise _Malformed(f"expected an argument name, found {arg_tok.text!r}")
        if arg_tok.text in seen:
            raise _Malformed(f"argument {arg_tok.text!r} given twice")
        seen.add(arg_tok.text)
        cur.expect("=")
        args.append((arg_tok.text, decoder.value(cur)))
    return SetupProblem(ext_id=ext_id, problem=name_tok.text, args=tuple(args))


def parse_command(
    raw: Union[str, bytes],
    phase: str = READY,
    registry: Optional[TypeRegistry] = None,
) -> Command:
    """Map one client line to a Command; never raises for bad input.

    Lexer and typed-value failures fold into Malformed. Once the connection
    is closing no line is interpreted.
    """
    try:
        line = decode_line(raw)
    except McsciError as e:
        return Malformed(repr(raw), str(e))
    if phase == CLOSING:
        return Malformed(line, "connection is closing")

    words = line.split(None, 1)
    if not words:
        return Malformed(line, "empty line")
    try:
        if words[0] == "use-extension":
            return _parse_use_extension(line)

        cur = Cursor(tokenize(line), TypedValueParseError)
        head = cur.next()
        if head.kind != WORD:
            raise _Malformed(f"unknown command {head.text!r}")

        if head.text in _SINGLE_WORD:
            if not cur.at_end():
                raise _Malformed(f"{head.text} takes no arguments")
            return _SINGLE_WORD[head.text]()

        if head.text in ("list-types", "list-problems"):
            ext_id = _number(_number_text(cur.peek()), "ext-id", U32_MAX)
            cur.next()
            if not cur.at_end():
                raise _Malformed(f"{head.text} takes exactly one argument")
            return ListTypes(ext_id) if head.text == "list-types" else ListProblems(ext_id)

        if head.text == "setup-problem":
            return _parse_setup_problem(cur, registry)

        raise _Malformed(f"unknown command {head.text!r}")
    except (_Malformed, McsciError) as e:
        return Malformed(line, str(e))
