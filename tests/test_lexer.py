import pytest

from mcsci.protocol.errors import LexError
from mcsci.protocol.lexer import NUMBER, PUNCT, STRING, WORD, Cursor, decode_line, tokenize


def _kinds(line):
    return [(t.kind, t.text) for t in tokenize(line)]


def test_words_numbers_and_punctuation():
    assert _kinds("setup-problem 0 \"p\" x=i32(5)") == [
        (WORD, "setup-problem"),
        (NUMBER, "0"),
        (STRING, "p"),
        (WORD, "x"),
        (PUNCT, "="),
        (WORD, "i32"),
        (PUNCT, "("),
        (NUMBER, "5"),
        (PUNCT, ")"),
    ]


def test_double_colon_splits_alias_prefix():
    assert _kinds("bound::Exact(3)")[:3] == [(WORD, "bound"), (PUNCT, "::"), (WORD, "Exact")]


def test_negative_and_special_numbers():
    assert _kinds("-0x1f -.5 -Infinity NaN") == [
        (NUMBER, "-0x1f"),
        (NUMBER, "-.5"),
        (WORD, "-Infinity"),
        (WORD, "NaN"),
    ]


def test_string_escapes_are_decoded():
    toks = tokenize(r'"a\nb\t\"q\" \\ \u{1F600}"')
    assert toks[0].kind == STRING
    assert toks[0].text == 'a\nb\t"q" \\ \U0001F600'


def test_crlf_terminator_is_stripped():
    assert decode_line(b"hello\r\n") == "hello"
    assert decode_line("hello\n") == "hello"


@pytest.mark.parametrize(
    "line",
    [
        '"unterminated',
        r'"bad \q escape"',
        r'"\u{110000}"',
        r'"\u{d800}"',
        r'"\u41"',
        "back\\slash",
        '"tab\tinside"',
    ],
)
def test_lex_errors(line):
    with pytest.raises(LexError):
        tokenize(line)


def test_invalid_utf8_is_a_lex_error():
    with pytest.raises(LexError):
        tokenize(b"hello \xff\xfe")


def test_cursor_expect_reports_mismatch():
    cur = Cursor(tokenize("( ]"))
    cur.expect("(")
    with pytest.raises(LexError):
        cur.expect(")")


def test_lone_carriage_return_left_by_newline_split_is_stripped():
    assert decode_line(b"hello\r") == "hello"
    assert _kinds("list-types 0\r") == [(WORD, "list-types"), (NUMBER, "0")]
