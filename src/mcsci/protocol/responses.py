from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .codec import Decoder, encode, quote
from .descriptors import ExtensionDescriptor, ProblemDescription, problem_list_value, problems_from_value
from .errors import TypedValueParseError
from .lexer import NUMBER, STRING, WORD, Cursor, decode_line, tokenize
from .types import TypeRegistry, format_type_decl, type_list_tokens_to_aliases
from .values import Alias, TypeDescriptor, TypedValue

PROTOCOL_VERSION = 0
TERMINATOR = "\n"


# ==== Response variants ====
class Response:
    kind = ""


@dataclass(frozen=True)
class Ack(Response):
    kind = "ack"


@dataclass(frozen=True)
class SetupOk(Response):
    kind = "setup-ok"


@dataclass(frozen=True)
class SetupError(Response):
    value: TypedValue
    kind = "setup-error"


@dataclass(frozen=True)
class ParseFail(Response):
    kind = "parsefail"


@dataclass(frozen=True)
class VersionInfo(Response):
    protocol: int = PROTOCOL_VERSION
    server: Optional[str] = None
    kind = "version"


@dataclass(frozen=True)
class Unexpected(Response):
    value: Optional[TypedValue] = None
    kind = "unexpected"


@dataclass(frozen=True)
class NoSuchExtension(Response):
    ext_id: int
    kind = "no-such-extension"


@dataclass(frozen=True)
class ExtensionsList(Response):
    extensions: Tuple[ExtensionDescriptor, ...] = ()
    kind = "extensions"


@dataclass(frozen=True)
class TypeList(Response):
    ext_id: int
    types: Tuple[Tuple[str, TypeDescriptor], ...] = ()
    kind = "type-list"


@dataclass(frozen=True)
class ProblemList(Response):
    ext_id: int
    problems: Tuple[ProblemDescription, ...] = ()
    kind = "problem-list"


@dataclass(frozen=True)
class ExtensionResponse(Response):
    usage_id: int
    payload: str
    kind = "extension-response"


@dataclass(frozen=True)
class Info(Response):
    text: str
    kind = "info"


@dataclass(frozen=True)
class Status(Response):
    text: str
    kind = "status"


# Lines the client routes by id or treats as out-of-band.
OUT_OF_BAND = (ExtensionResponse, Info, Status)


# ==== Writer ====
def format_response(resp: Response) -> str:
    """Serialize one response to a single line, terminator included."""
    return render(resp) + TERMINATOR


def render(resp: Response) -> str:
    if isinstance(resp, (Ack, SetupOk, ParseFail)):
        return resp.kind
    if isinstance(resp, SetupError):
        return f"setup-error {encode(resp.value)}"
    if isinstance(resp, VersionInfo):
        line = f"version mcsci={resp.protocol}"
        if resp.server is not None:
            line += f" server={quote(resp.server)}"
        return line
    if isinstance(resp, Unexpected):
        return "unexpected" if resp.value is None else f"unexpected {encode(resp.value)}"
    if isinstance(resp, NoSuchExtension):
        return f"no-such-extension {resp.ext_id}"
    if isinstance(resp, ExtensionsList):
        parts = [f"extensions {len(resp.extensions)}"]
        parts += [f"extension_info::{encode(e.to_value())}" for e in resp.extensions]
        return " ".join(parts)
    if isinstance(resp, TypeList):
        parts = [f"type-list {resp.ext_id}"]
        parts += [f"{alias} = {format_type_decl(decl)}" for alias, decl in resp.types]
        return " ".join(parts)
    if isinstance(resp, ProblemList):
        value = problem_list_value(resp.problems)
        return f"problem-list {resp.ext_id} extension_problem_list::{encode(value)}"
    if isinstance(resp, ExtensionResponse):
        if "\n" in resp.payload or "\r" in resp.payload:
            raise ValueError("extension-response payload must be a single line")
        return f"extension-response {resp.usage_id} {resp.payload}"
    if isinstance(resp, (Info, Status)):
        return f"{resp.kind} {quote(resp.text)}"
    raise TypeError(f"not a response: {resp!r}")


# ==== Reader (client side) ====
def _ext_id(cur: Cursor) -> int:
    tok = cur.next()
    if tok.kind != NUMBER or not (tok.text.isascii() and tok.text.isdigit()):
        raise TypedValueParseError(f"expected an extension id, found {tok.text!r}")
    return int(tok.text)


def _free_text(rest: str) -> str:
    rest = rest.strip()
    if rest.startswith('"'):
        tokens = tokenize(rest)
        if len(tokens) == 1 and tokens[0].kind == STRING:
            return tokens[0].text
    return rest


def parse_response(raw: Union[str, bytes], registry: Optional[TypeRegistry] = None) -> Response:
    """Parse one server line. Raises TypedValueParseError/LexError on garbage."""
    line = decode_line(raw)
    registry = registry if registry is not None else TypeRegistry()
    parts = line.split(None, 1)
    if not parts:
        raise TypedValueParseError("empty response line")
    head, rest = parts[0], (parts[1] if len(parts) > 1 else "")

    if head == "extension-response":
        fields = rest.split(None, 1)
        if len(fields) != 2 or not (fields[0].isascii() and fields[0].isdigit()):
            raise TypedValueParseError("extension-response requires <usage-id> <payload>")
        return ExtensionResponse(int(fields[0]), fields[1])
    if head in ("info", "status"):
        return Info(_free_text(rest)) if head == "info" else Status(_free_text(rest))

    cur = Cursor(tokenize(rest), TypedValueParseError)
    decoder = Decoder(registry)

    if head in ("ack", "setup-ok", "parsefail"):
        resp: Response = {"ack": Ack, "setup-ok": SetupOk, "parsefail": ParseFail}[head]()
    elif head == "setup-error":
        resp = SetupError(decoder.value(cur))
    elif head == "unexpected":
        resp = Unexpected(None if cur.at_end() else decoder.value(cur))
    elif head == "no-such-extension":
        resp = NoSuchExtension(_ext_id(cur))
    elif head == "version":
        resp = _version(cur)
    elif head == "extensions":
        count = _ext_id(cur)
        exts = []
        for _ in range(count):
            exts.append(ExtensionDescriptor.from_value(decoder.value(cur, Alias("extension_info")), registry))
        resp = ExtensionsList(tuple(exts))
    elif head == "type-list":
        ext_id = _ext_id(cur)
        aliases = type_list_tokens_to_aliases(cur.tokens[cur.i :])
        cur.i = len(cur.tokens)
        resp = TypeList(ext_id, tuple(aliases))
    elif head == "problem-list":
        ext_id = _ext_id(cur)
        value = decoder.value(cur, Alias("extension_problem_list"))
        resp = ProblemList(ext_id, problems_from_value(value, registry))
    else:
        raise TypedValueParseError(f"unknown response {head!r}")

    if not cur.at_end():
        raise TypedValueParseError(f"trailing input in {head} response: {cur.peek().text!r}")  # type: ignore[union-attr]
    return resp


def _version(cur: Cursor) -> VersionInfo:
    protocol: Optional[int] = None
    server: Optional[str] = None
    while not cur.at_end():
        key = cur.next()
        if key.kind != WORD:
            raise TypedValueParseError(f"expected a version field, found {key.text!r}")
        cur.expect("=")
        val = cur.next()
        if key.text == "mcsci" and val.kind == NUMBER and val.text.isdigit():
            protocol = int(val.text)
        elif key.text == "server" and val.kind == STRING:
            server = val.text
        # unknown fields are ignored for forward compatibility
    if protocol is None:
        raise TypedValueParseError("version response lacks mcsci=<n>")
    return VersionInfo(protocol, server)
