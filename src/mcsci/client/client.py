from __future__ import annotations

import queue
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, TextIO, Tuple

from mcsci.protocol.codec import decode, quote
from mcsci.protocol.errors import McsciError, ProtocolStateError
from mcsci.protocol.responses import (
    Ack,
    ExtensionResponse,
    Info,
    Response,
    Status,
    TypeList,
    parse_response,
)
from mcsci.protocol.types import TypeRegistry
from mcsci.protocol.values import TypedValue

_EOF = object()

# Commands answered by `ack` followed by exactly one data response.
_TWO_PART = ("version", "extensions", "list-types", "list-problems", "setup-problem")

OutOfBandFn = Callable[[Response], None]


@dataclass(frozen=True)
class ClientResult:
    ok: bool
    acked: bool
    response: Response  # terminal response: data response, ack, or refusal
    lines: Tuple[str, ...]  # core lines consumed by this command


class McsciClient:
    """Synchronous MCSCI client over a pair of text streams.

    A pump thread reads raw lines into a queue; the caller's read loop
    classifies each one, routing `info`/`status` to the out-of-band log and
    `extension-response` to per-usage inboxes, until the response that
    terminates the pending command arrives.
    """

    def __init__(
        self,
        reader: TextIO,
        writer: TextIO,
        *,
        timeout_s: float = 5.0,
        registry: Optional[TypeRegistry] = None,
        on_out_of_band: Optional[OutOfBandFn] = None,
        sock: Optional[socket.socket] = None,
    ) -> None:
        self.timeout_s = timeout_s
        self.registry = registry if registry is not None else TypeRegistry()
        self.out_of_band: List[Response] = []
        self._on_oob = on_out_of_band
        self._reader = reader
        self._writer = writer
        self._sock = sock
        self._lines: "queue.Queue[object]" = queue.Queue()
        self._inboxes: Dict[int, "queue.Queue[str]"] = {}
        self._inbox_lock = threading.Lock()
        self._broken = False
        self._eof = False
        self._pump = threading.Thread(target=self._pump_lines, name="mcsci-client-reader", daemon=True)
        self._pump.start()

    @classmethod
    def connect(cls, host: str, port: int, *, timeout_s: float = 5.0, **kwargs) -> "McsciClient":
        sock = socket.create_connection((host, port), timeout=timeout_s)
        sock.settimeout(None)
        reader = sock.makefile("r", encoding="utf-8", newline="\n")
        writer = sock.makefile("w", encoding="utf-8", newline="\n")
        return cls(reader, writer, timeout_s=timeout_s, sock=sock, **kwargs)

    def close(self) -> None:
        for stream in (self._writer, self._reader):
            try:
                stream.close()
            except (OSError, ValueError):
                pass
        if self._sock is not None:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self._sock.close()

    def __enter__(self) -> "McsciClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ---- reading ----
    def _pump_lines(self) -> None:
        try:
            for line in self._reader:
                self._lines.put(line)
        except (OSError, ValueError):
            pass
        self._lines.put(_EOF)

    def _inbox(self, usage_id: int) -> "queue.Queue[str]":
        with self._inbox_lock:
            return self._inboxes.setdefault(usage_id, queue.Queue())

    def _read_one(self, deadline: float) -> Optional[Response]:
        """Next line from the server; None at end of stream."""
        if self._eof:
            return None
        remaining = deadline - time.monotonic()
        try:
            item = self._lines.get(timeout=max(0.0, remaining))
        except queue.Empty:
            self._broken = True
            raise TimeoutError("No complete response line from server") from None
        if item is _EOF:
            self._eof = True
            return None
        return self._parse(str(item))

    def _parse(self, line: str) -> Response:
        try:
            return parse_response(line, self.registry)
        except McsciError as e:
            self._broken = True
            raise ProtocolStateError(f"unparseable server line {line.rstrip()!r}: {e}") from e

    def _route(self, resp: Response) -> bool:
        """File out-of-band lines; True if `resp` was one."""
        if isinstance(resp, ExtensionResponse):
            self._inbox(resp.usage_id).put(resp.payload)
            return True
        if isinstance(resp, (Info, Status)):
            self.out_of_band.append(resp)
            if self._on_oob is not None:
                self._on_oob(resp)
            return True
        return False

    def _next_core(self, deadline: float) -> Optional[Response]:
        while True:
            resp = self._read_one(deadline)
            if resp is None or not self._route(resp):
                return resp

    def pump(self, timeout_s: float = 0.0) -> None:
        """Drain whatever out-of-band lines arrive within `timeout_s`."""
        deadline = time.monotonic() + timeout_s
        while True:
            try:
                item = self._lines.get(timeout=max(0.0, deadline - time.monotonic()))
            except queue.Empty:
                return
            if item is _EOF:
                self._eof = True
                return
            resp = self._parse(str(item))
            if not self._route(resp):
                self._broken = True
                raise ProtocolStateError(f"unsolicited core response {resp.kind!r}")

    # ---- writing ----
    def _send(self, line: str) -> None:
        if self._broken:
            raise ProtocolStateError("connection state unknown after a failed exchange; close the client")
        self._writer.write(line.rstrip("\r\n") + "\n")
        self._writer.flush()

    def call(self, line: str, *, timeout_s: Optional[float] = None) -> ClientResult:
        """Send one command line and wait for its terminal response."""
        words = line.split(None, 1)
        head = words[0] if words else ""
        deadline = time.monotonic() + (self.timeout_s if timeout_s is None else float(timeout_s))

        self._send(line)
        seen: List[str] = []
        first = self._next_core(deadline)
        if first is None:
            raise ConnectionError("server closed the connection")
        seen.append(first.kind)
        if not isinstance(first, Ack):
            return ClientResult(ok=False, acked=False, response=first, lines=tuple(seen))
        if head not in _TWO_PART:
            return ClientResult(ok=True, acked=True, response=first, lines=tuple(seen))

        data = self._next_core(deadline)
        if data is None:
            raise ConnectionError("server closed the connection after ack")
        seen.append(data.kind)
        ok = data.kind in ("version", "extensions", "type-list", "problem-list", "setup-ok")
        if isinstance(data, TypeList):
            self.registry.register_all(data.ext_id, data.types)
        return ClientResult(ok=ok, acked=True, response=data, lines=tuple(seen))

    # ---- core commands ----
    def hello(self) -> ClientResult:
        return self.call("hello")

    def help(self) -> ClientResult:
        return self.call("help")

    def version(self) -> ClientResult:
        return self.call("version")

    def extensions(self) -> ClientResult:
        return self.call("extensions")

    def list_types(self, ext_id: int) -> ClientResult:
        return self.call(f"list-types {int(ext_id)}")

    def list_problems(self, ext_id: int) -> ClientResult:
        return self.call(f"list-problems {int(ext_id)}")

    def setup_problem(self, ext_id: int, name: str, args: Optional[Dict[str, str]] = None) -> ClientResult:
        """`args` maps argument names to typed-value literal text."""
        parts = [f"setup-problem {int(ext_id)} {quote(name)}"]
        for key, literal in (args or {}).items():
            parts.append(f"{key}={literal}")
        return self.call(" ".join(parts))

    def use_extension(self, ext_id: int, usage_id: int, payload: str) -> ClientResult:
        return self.call(f"use-extension {int(ext_id)} {int(usage_id)} {payload}")

    def go(self) -> ClientResult:
        return self.call("go")

    def stop(self) -> ClientResult:
        return self.call("stop")

    def quit(self) -> ClientResult:
        return self.call("quit")

    # ---- extension responses ----
    def extension_response(self, usage_id: int, *, timeout_s: Optional[float] = None) -> str:
        """Next payload for `usage_id`, reading the stream as needed."""
        inbox = self._inbox(usage_id)
        deadline = time.monotonic() + (self.timeout_s if timeout_s is None else float(timeout_s))
        while True:
            try:
                return inbox.get_nowait()
            except queue.Empty:
                pass
            resp = self._read_one(deadline)
            if resp is None:
                raise ConnectionError("server closed the connection")
            if not self._route(resp):
                self._broken = True
                raise ProtocolStateError(f"unsolicited core response {resp.kind!r}")

    def extension_responses(self, usage_id: int, count: int, *, timeout_s: Optional[float] = None) -> List[str]:
        return [self.extension_response(usage_id, timeout_s=timeout_s) for _ in range(count)]

    def drain_extension_responses(self) -> List[Tuple[int, str]]:
        """Everything already routed to the inboxes, as (usage_id, payload) pairs."""
        out: List[Tuple[int, str]] = []
        with self._inbox_lock:
            for usage_id, inbox in sorted(self._inboxes.items()):
                while not inbox.empty():
                    out.append((usage_id, inbox.get_nowait()))
        return out

    def wait_status(self, prefix: str, *, timeout_s: Optional[float] = None) -> Status:
        """Block until a `status` line starting with `prefix` arrives (e.g. "result")."""
        deadline = time.monotonic() + (self.timeout_s if timeout_s is None else float(timeout_s))
        start = len(self.out_of_band)
        while True:
            for resp in self.out_of_band[start:]:
                if isinstance(resp, Status) and resp.text.startswith(prefix):
                    return resp
            start = len(self.out_of_band)
            resp = self._read_one(deadline)
            if resp is None:
                raise ConnectionError("server closed the connection")
            if not self._route(resp):
                self._broken = True
                raise ProtocolStateError(f"unsolicited core response {resp.kind!r}")


def result_value(status: Status, registry: Optional[TypeRegistry] = None) -> TypedValue:
    """Decode the typed value carried by a `status "result <value>"` line."""
    _, _, literal = status.text.partition(" ")
    return decode(literal, registry=registry)
