from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .errors import LexError

# ==== Token kinds (frozen) ====
WORD = "WORD"
NUMBER = "NUMBER"
STRING = "STRING"
PUNCT = "PUNCT"

SINGLE_PUNCT = "()[],="
WHITESPACE = " \t"

SIMPLE_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "\\": "\\",
    '"': '"',
    "'": "'",
}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str  # decoded contents for STRING, raw text otherwise
    start: int
    end: int

    def is_punct(self, p: str) -> bool:
        return self.kind == PUNCT and self.text == p

    def is_word(self, w: str) -> bool:
        return self.kind == WORD and self.text == w


def _is_control(c: str) -> bool:
    o = ord(c)
    return o < 0x20 or o == 0x7F


def _looks_numeric(run: str) -> bool:
    s = run[1:] if run.startswith("-") else run
    if not s:
        return False
    return s[0].isdigit() or (s[0] == "." and len(s) > 1 and s[1].isdigit())


def _read_unicode_escape(line: str, i: int) -> Tuple[str, int]:
    # line[i] is the char after "\u"
    if i >= len(line) or line[i] != "{":
        raise LexError("\\u escape must be written as \\u{hex}", pos=i)
    close = line.find("}", i + 1)
    if close < 0:
        raise LexError("unterminated \\u{...} escape", pos=i)
    digits = line[i + 1 : close]
    if not digits or len(digits) > 6 or any(c not in "0123456789abcdefABCDEF" for c in digits):
        raise LexError(f"invalid \\u{{{digits}}} escape", pos=i)
    cp = int(digits, 16)
    if cp > 0x10FFFF or 0xD800 <= cp <= 0xDFFF:
        raise LexError(f"\\u{{{digits}}} is not a Unicode scalar value", pos=i)
    return chr(cp), close + 1


def _read_string(line: str, start: int) -> Tuple[str, int]:
    """Decode a quoted string starting at line[start] == '"'.

    Returns (decoded text, index after the closing quote).
    """
    out: List[str] = []
    i = start + 1
    n = len(line)
    while i < n:
        c = line[i]
        if c == '"':
            return "".join(out), i + 1
        if c == "\\":
            if i + 1 >= n:
                break
            e = line[i + 1]
            if e in SIMPLE_ESCAPES:
                out.append(SIMPLE_ESCAPES[e])
                i += 2
                continue
            if e == "u":
                ch, i = _read_unicode_escape(line, i + 2)
                out.append(ch)
                continue
            raise LexError(f"invalid escape sequence \\{e}", pos=i)
        if _is_control(c):
            raise LexError(f"unescaped control character {ord(c):#04x} in string", pos=i)
        out.append(c)
        i += 1
    raise LexError("unterminated string literal", pos=start)


def strip_terminator(line: str) -> str:
    """Drop one CRLF or LF terminator, or the CR left behind by a split on LF."""
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n"):
        return line[:-1]
    if line.endswith("\r"):
        return line[:-1]
    return line


def decode_line(raw: Union[bytes, str]) -> str:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise LexError(f"line is not valid UTF-8: {e.reason}", pos=e.start) from e
    return strip_terminator(raw)


def tokenize(raw: Union[bytes, str]) -> List[Token]:
    """Split one protocol line into tokens.

    - Barewords run until whitespace, punctuation, a quote or "::".
    - Barewords that start with a digit (optionally after "-") are NUMBER tokens.
    - Quoted strings are escape-decoded; STRING.text holds the decoded value.
    """
    line = decode_line(raw)
    tokens: List[Token] = []
    i = 0
    n = len(line)
    while i < n:
        c = line[i]
        if c in WHITESPACE:
            i += 1
            continue
        if c == '"':
            text, j = _read_string(line, i)
            tokens.append(Token(STRING, text, i, j))
            i = j
            continue
        if c in SINGLE_PUNCT:
            tokens.append(Token(PUNCT, c, i, i + 1))
            i += 1
            continue
        if line.startswith("::", i):
            tokens.append(Token(PUNCT, "::", i, i + 2))
            i += 2
            continue
        if c == "\\":
            raise LexError("backslash outside of a string literal", pos=i)
        if _is_control(c):
            raise LexError(f"unescaped control character {ord(c):#04x}", pos=i)

        j = i
        while j < n:
            d = line[j]
            if d in WHITESPACE or d in SINGLE_PUNCT or d == '"' or d == "\\" or _is_control(d):
                break
            if line.startswith("::", j):
                break
            j += 1
        run = line[i:j]
        tokens.append(Token(NUMBER if _looks_numeric(run) else WORD, run, i, j))
        i = j
    return tokens


class Cursor:
    """Forward-only reader over a token list, shared by the decoders."""

    def __init__(self, tokens: List[Token], error: type = LexError) -> None:
        self.tokens = tokens
        self.i = 0
        self._error = error

    def peek(self, k: int = 0) -> Optional[Token]:
        j = self.i + k
        return self.tokens[j] if j < len(self.tokens) else None

    def at_end(self) -> bool:
        return self.i >= len(self.tokens)

    def next(self) -> Token:
        tok = self.peek()
        if tok is None:
            raise self._error("unexpected end of line")
        self.i += 1
        return tok

    def accept(self, punct: str) -> bool:
        tok = self.peek()
        if tok is not None and tok.is_punct(punct):
            self.i += 1
            return True
        return False

    def expect(self, punct: str) -> Token:
        tok = self.next()
        if not tok.is_punct(punct):
            raise self._error(f"expected '{punct}', found {tok.text!r}")
        return tok
