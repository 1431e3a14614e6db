import pytest

from mcsci.protocol.commands import (
    CLOSING,
    Go,
    Hello,
    ListProblems,
    ListTypes,
    Malformed,
    Quit,
    SetupProblem,
    Stop,
    UseExtension,
    parse_command,
)
from mcsci.protocol.types import TypeRegistry
from mcsci.protocol.values import EnumValue, IntValue, StringValue


def test_core_words():
    assert parse_command("hello") == Hello()
    assert parse_command("quit\r\n") == Quit()
    assert parse_command("go") == Go()
    assert parse_command(b"stop\n") == Stop()
    assert parse_command("list-types 3") == ListTypes(3)
    assert parse_command("list-problems 0") == ListProblems(0)


@pytest.mark.parametrize(
    "line",
    [
        "",
        "hello extra",
        "frobnicate",
        "list-types",
        "list-types x",
        "list-types -1",
        "list-types 4294967296",
        "list-types 1 2",
        "use-extension 1",
        "use-extension 1 x payload",
        'setup-problem 0 name',
        'setup-problem 0 "p" a=1 a=2',
        'setup-problem 0 "p" a=',
        'setup-problem 0 "p" a=300 b="unterminated',
        '"hello"',
    ],
)
def test_malformed_lines(line):
    cmd = parse_command(line)
    assert isinstance(cmd, Malformed)
    assert cmd.reason


def test_invalid_utf8_is_malformed():
    assert isinstance(parse_command(b"hello \xff"), Malformed)


def test_closing_phase_interprets_nothing():
    assert isinstance(parse_command("hello", CLOSING), Malformed)


def test_use_extension_payload_is_opaque():
    cmd = parse_command('use-extension 1 7 anything "unbalanced( \\q')
    assert cmd == UseExtension(1, 7, 'anything "unbalanced( \\q')


def test_setup_problem_arguments_are_typed_values():
    cmd = parse_command('setup-problem 0 "range-sum" start=5 "stop"=i32(10) label="x"')
    assert cmd == SetupProblem(
        0,
        "range-sum",
        (("start", IntValue("u8", 5)), ("stop", IntValue("i32", 10)), ("label", StringValue("x"))),
    )


def test_setup_problem_alias_arguments_use_the_extension_scope():
    reg = TypeRegistry(loader=lambda ext: [("bound", "enum(Any, Exact(u32))")] if ext == 2 else None)
    cmd = parse_command('setup-problem 2 "p" steps=bound::Exact(9)', registry=reg)
    assert isinstance(cmd, SetupProblem)
    assert cmd.args == (("steps", EnumValue("Exact", IntValue("u32", 9))),)
    assert isinstance(parse_command('setup-problem 1 "p" steps=bound::Exact(9)', registry=reg), Malformed)
