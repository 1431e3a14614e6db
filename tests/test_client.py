import io

import pytest

from mcsci.client.client import McsciClient, result_value
from mcsci.protocol.errors import ProtocolStateError
from mcsci.protocol.responses import Info, NoSuchExtension, Status, VersionInfo
from mcsci.protocol.types import parse_type_string
from mcsci.protocol.values import IntValue


def _client(server_lines: str, **kw):
    writer = io.StringIO()
    client = McsciClient(io.StringIO(server_lines), writer, timeout_s=2.0, **kw)
    return client, writer


def test_out_of_band_lines_are_tolerated_anywhere():
    seen = []
    client, writer = _client(
        'info "welcome"\nack\nstatus "progress 1/2"\nack\nversion mcsci=0 server="x"\n',
        on_out_of_band=seen.append,
    )
    assert client.hello().ok
    r = client.version()
    assert r.ok and r.acked
    assert r.response == VersionInfo(0, "x")
    assert r.lines == ("ack", "version")
    assert seen == [Info("welcome"), Status("progress 1/2")]
    assert writer.getvalue() == "hello\nversion\n"


def test_refusals_are_not_ok():
    client, _ = _client("unexpected\nack\nno-such-extension 3\n")
    r = client.hello()
    assert not r.ok and not r.acked
    r = client.list_types(3)
    assert r.acked and not r.ok
    assert r.response == NoSuchExtension(3)


def test_type_list_registers_aliases():
    client, _ = _client("ack\ntype-list 0 span = tuple(i32, i32)\n")
    assert client.list_types(0).ok
    assert client.registry.lookup(0, "span") == parse_type_string("tuple(i32, i32)")


def test_extension_responses_are_routed_by_usage_id():
    client, _ = _client(
        "ack\nextension-response 2 other\nextension-response 1 a\ninfo \"x\"\nextension-response 1 b\n"
    )
    assert client.use_extension(0, 1, "repeat 2 a").ok
    assert client.extension_responses(1, 2) == ["a", "b"]
    assert client.drain_extension_responses() == [(2, "other")]


def test_wait_status_and_result_value():
    client, _ = _client('ack\nstatus "progress 10/10"\nstatus "result i64(45)"\n')
    assert client.go().ok
    status = client.wait_status("result")
    assert result_value(status) == IntValue("i64", 45)


def test_setup_problem_line_format():
    client, writer = _client("ack\nsetup-ok\n")
    assert client.setup_problem(0, "range-sum", {"start": "0", "stop": "i32(10)"}).ok
    assert writer.getvalue() == 'setup-problem 0 "range-sum" start=0 stop=i32(10)\n'


def test_garbage_breaks_the_client():
    client, _ = _client("ack extra\n")
    with pytest.raises(ProtocolStateError):
        client.hello()
    with pytest.raises(ProtocolStateError):
        client.version()


def test_eof_raises_connection_error():
    client, _ = _client("")
    with pytest.raises(ConnectionError):
        client.hello()
