import io
import json
import socket
import threading
from pathlib import Path

from mcsci.client.client import McsciClient, result_value
from mcsci.protocol.responses import ExtensionsList
from mcsci.protocol.values import IntValue
from mcsci.server.config_schema import ServerConfig
from mcsci.server.server import McsciServer

_CONFIG = ServerConfig.model_validate(
    {
        "server_version": "smoke",
        "banner": ["hi"],
        "help": ["usage"],
        "extensions": [{"factory": "mcsci.extensions.demo:make_demo", "options": {"chunk": 5}}],
    }
)


def test_tcp_round_trip(tmp_path: Path):
    server = McsciServer("127.0.0.1", 0, config=_CONFIG, transcript_dir=tmp_path)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    assert server.ready.wait(5.0)
    host, port = server.address
    try:
        with McsciClient.connect(host, port, timeout_s=5.0) as client:
            assert client.hello().ok
            assert client.out_of_band[0].text == "hi"

            r = client.extensions()
            assert isinstance(r.response, ExtensionsList)
            assert r.response.extensions[0].name == "demo"

            assert client.list_types(0).ok
            assert client.setup_problem(0, "range-sum", {"start": "0", "stop": "10"}).ok
            assert client.go().ok
            assert result_value(client.wait_status("result")) == IntValue("i64", 45)

            assert client.use_extension(0, 1, "repeat 3 x").ok
            assert client.extension_responses(1, 3) == ["1 x", "2 x", "3 x"]
            assert client.quit().ok
    finally:
        server.stop()
        t.join(5.0)

    runs = list(tmp_path.iterdir())
    assert len(runs) == 1
    rows = [json.loads(l) for l in (runs[0] / "events.jsonl").read_text(encoding="utf-8").splitlines()]
    assert {r["connection_id"] for r in rows} == {"C0001"}
    assert rows[0]["direction"] == "out" and rows[0]["kind"] == "info"


def test_two_connections_have_independent_state():
    server = McsciServer("127.0.0.1", 0, config=_CONFIG)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    assert server.ready.wait(5.0)
    try:
        with McsciClient.connect(*server.address) as a, McsciClient.connect(*server.address) as b:
            assert a.hello().ok
            assert not b.version().ok
            assert a.version().ok
    finally:
        server.stop()
        t.join(5.0)


def test_stdio_session():
    server = McsciServer(config=_CONFIG)
    out = io.StringIO()
    server.serve_stdio(io.BytesIO(b"hello\r\nversion\n\nhelp\nquit\nversion\n"), out)
    assert out.getvalue().splitlines() == [
        'info "hi"',
        "ack",
        "ack",
        'version mcsci=0 server="smoke"',
        "ack",
        'info "usage"',
        "ack",
    ]


def test_tcp_accepts_crlf_line_endings():
    server = McsciServer("127.0.0.1", 0, config=_CONFIG)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    assert server.ready.wait(5.0)
    try:
        with socket.create_connection(server.address, timeout=5.0) as sock:
            sock.sendall(b"hello\r\nversion\r\nquit\r\n")
            reader = sock.makefile("r", encoding="utf-8", newline="\n")
            lines = [line.rstrip("\n") for line in reader]
    finally:
        server.stop()
        t.join(5.0)
    assert lines == ['info "hi"', "ack", "ack", 'version mcsci=0 server="smoke"', "ack"]
