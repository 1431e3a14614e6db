import pytest

from mcsci.protocol.descriptors import ExtensionDescriptor, ProblemArg, ProblemDescription
from mcsci.protocol.errors import McsciError
from mcsci.protocol.responses import (
    Ack,
    ExtensionResponse,
    ExtensionsList,
    Info,
    NoSuchExtension,
    ParseFail,
    ProblemList,
    SetupError,
    SetupOk,
    Status,
    TypeList,
    Unexpected,
    VersionInfo,
    format_response,
    parse_response,
)
from mcsci.protocol.types import parse_type_string
from mcsci.protocol.values import IntValue, StringValue

EXT = ExtensionDescriptor("demo", "0.1.0", "Demo \"quoted\" ext", ("Ann",), ("echo", "repeat"))
PROBLEM = ProblemDescription("range-sum", "Sum a range", (ProblemArg("start", False, "i32"), ProblemArg("step", True, "u16")))


@pytest.mark.parametrize(
    "resp,line",
    [
        (Ack(), "ack\n"),
        (SetupOk(), "setup-ok\n"),
        (ParseFail(), "parsefail\n"),
        (SetupError(StringValue("bad")), 'setup-error "bad"\n'),
        (VersionInfo(0, "srv 1"), 'version mcsci=0 server="srv 1"\n'),
        (VersionInfo(0), "version mcsci=0\n"),
        (Unexpected(), "unexpected\n"),
        (Unexpected(StringValue("already initialized")), 'unexpected "already initialized"\n'),
        (NoSuchExtension(99), "no-such-extension 99\n"),
        (ExtensionResponse(7, "1 hello world"), "extension-response 7 1 hello world\n"),
        (Info("hi there"), 'info "hi there"\n'),
        (Status("progress 1/2"), 'status "progress 1/2"\n'),
    ],
)
def test_writer_grammar(resp, line):
    assert format_response(resp) == line


def test_extensions_list_uses_extension_info_values():
    line = format_response(ExtensionsList((EXT,)))
    assert line == (
        'extensions 1 extension_info::tuple("demo", "0.1.0", "Demo \\"quoted\\" ext", ["Ann"], ["echo", "repeat"])\n'
    )
    assert parse_response(line) == ExtensionsList((EXT,))


def test_type_list_roundtrip():
    types = (("span", parse_type_string("tuple(i32, i32)")), ("bound", parse_type_string("enum(Any, Within(span))")))
    line = format_response(TypeList(0, types))
    assert line == "type-list 0 span = tuple(i32, i32) bound = enum(Any, Within(span))\n"
    assert parse_response(line) == TypeList(0, types)
    assert parse_response("type-list 3") == TypeList(3, ())


def test_problem_list_roundtrip():
    line = format_response(ProblemList(1, (PROBLEM,)))
    assert line.startswith("problem-list 1 extension_problem_list::[tuple(")
    assert parse_response(line) == ProblemList(1, (PROBLEM,))
    assert parse_response("problem-list 1 extension_problem_list::[]") == ProblemList(1, ())


def test_core_responses_parse_back():
    for resp in (
        Ack(),
        SetupOk(),
        ParseFail(),
        SetupError(IntValue("i32", -3)),
        VersionInfo(0, "x"),
        Unexpected(),
        Unexpected(StringValue("computation running")),
        NoSuchExtension(4),
        ExtensionResponse(12, 'raw "payload( stays'),
        Info("line with \"quotes\""),
        Status("result i64(45)"),
    ):
        assert parse_response(format_response(resp)) == resp


def test_out_of_band_text_may_be_unquoted():
    assert parse_response("info server warming up") == Info("server warming up")
    assert parse_response("status") == Status("")


def test_multiline_extension_payload_is_refused():
    with pytest.raises(ValueError):
        format_response(ExtensionResponse(1, "two\nlines"))


@pytest.mark.parametrize("line", ["", "bogus 1", "ack extra", "no-such-extension x", "version server=\"x\"", "extension-response x y"])
def test_garbage_server_lines(line):
    with pytest.raises(McsciError):
        parse_response(line)
