from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple, Union

from mcsci.protocol.codec import conform, encode
from mcsci.protocol.commands import (
    AWAITING_HELLO,
    CLOSING,
    READY,
    Command,
    Extensions,
    Go,
    Hello,
    Help,
    ListProblems,
    ListTypes,
    Malformed,
    Quit,
    SetupProblem,
    Stop,
    UseExtension,
    Version,
    parse_command,
)
from mcsci.protocol.descriptors import ExtensionDescriptor
from mcsci.protocol.errors import (
    DispatchError,
    McsciError,
    ProblemRejected,
    ProtocolStateError,
    UnknownExtension,
)
from mcsci.protocol.lexer import decode_line
from mcsci.protocol.responses import (
    PROTOCOL_VERSION,
    Ack,
    ExtensionsList,
    Info,
    NoSuchExtension,
    ParseFail,
    ProblemList,
    Response,
    SetupError,
    SetupOk,
    Status,
    TypeList,
    Unexpected,
    VersionInfo,
)
from mcsci.protocol.types import TypeRegistry, parse_type_string
from mcsci.protocol.values import StringValue, TypedValue
from mcsci.reporting.transcript import IN, OUT, ConnectionTranscript

from .dispatcher import ExtensionDispatcher
from .extension import Calculation, Extension
from .sink import ResponseSink


@dataclass
class ConnectionState:
    phase: str = AWAITING_HELLO
    protocol_version: Optional[int] = None
    extensions: Tuple[ExtensionDescriptor, ...] = ()
    # usage_id -> ext_id, shared with the dispatcher
    active_usage: Dict[int, int] = field(default_factory=dict)


class _CalculationRun:
    def __init__(self, calc: Calculation, sink: ResponseSink) -> None:
        self.cancelled = threading.Event()
        self._calc = calc
        self._sink = sink
        self._thread = threading.Thread(target=self._run, name="mcsci-calculation", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def running(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def _progress(self, done: int, total: int) -> None:
        self._sink.send(Status(f"progress {done}/{total}"))

    def _run(self) -> None:
        try:
            result = self._calc.run(self._progress, self.cancelled)
        except Exception as e:
            self._sink.send(Status(f"calculation failed: {e}"))
            return
        if result is None or self.cancelled.is_set():
            self._sink.send(Status("stopped"))
        else:
            self._sink.send(Status(f"result {encode(result)}"))


class Connection:
    """Per-connection protocol state machine.

    Feed raw client lines to `handle_line`; every response goes to the sink.
    State is private to the connection and observable only through the
    response stream.
    """

    def __init__(
        self,
        extensions: Sequence[Extension],
        sink: ResponseSink,
        *,
        server_version: Optional[str] = None,
        help_lines: Sequence[str] = (),
        banner: Sequence[str] = (),
        transcript: Optional[ConnectionTranscript] = None,
    ) -> None:
        self._sink = sink
        self._server_version = server_version
        self._help = tuple(help_lines)
        self._banner = tuple(banner)
        self._transcript = transcript
        if transcript is not None:
            sink.observer = self._record_out

        self._dispatcher = ExtensionDispatcher()
        for ext in extensions:
            self._dispatcher.register_extension(ext.describe(), ext)
        self.registry = TypeRegistry(loader=self._dispatcher.types_for)
        self._state = ConnectionState(
            extensions=self._dispatcher.descriptors(),
            active_usage=self._dispatcher.active,
        )

        self._calculation: Optional[Calculation] = None
        self._run: Optional[_CalculationRun] = None

    # ---- read-only accessors ----
    @property
    def phase(self) -> str:
        return self._state.phase

    @property
    def closed(self) -> bool:
        return self._state.phase == CLOSING

    def active_usages(self) -> Dict[int, int]:
        return dict(self._state.active_usage)

    # ---- lifecycle ----
    def greet(self) -> None:
        for text in self._banner:
            self._send(Info(text))

    def handle_line(self, raw: Union[str, bytes]) -> bool:
        """Process one client line; False once the connection should close."""
        if self.closed:
            return False
        try:
            text = decode_line(raw)
        except McsciError:
            text = repr(raw)
        if not text.strip():
            return True
        cmd = parse_command(raw, self._state.phase, self.registry)
        if self._transcript is not None:
            error = cmd.reason if isinstance(cmd, Malformed) else ""
            self._transcript.record(IN, self._state.phase, cmd.name, text, error)
        self.execute(cmd)
        return not self.closed

    def close(self) -> None:
        self._state.phase = CLOSING
        if self._run is not None:
            self._run.cancelled.set()
        self._sink.close()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for background extension jobs and calculations (tests, shutdown)."""
        if self._run is not None:
            self._run.join(timeout)
        return self._dispatcher.wait_idle(timeout)

    # ---- transitions ----
    def execute(self, cmd: Command) -> None:
        if isinstance(cmd, Malformed):
            self._send(ParseFail())
            return
        try:
            self._check_phase(cmd)
        except ProtocolStateError as e:
            msg = str(e)
            self._send(Unexpected(StringValue(msg) if msg else None))
            return

        if isinstance(cmd, Hello):
            self._state.phase = READY
            self._state.protocol_version = PROTOCOL_VERSION
            self._send(Ack())
        elif isinstance(cmd, Quit):
            self._send(Ack())
            self.close()
        elif isinstance(cmd, Help):
            self._send(Ack())
            for text in self._help:
                self._send(Info(text))
        elif isinstance(cmd, Version):
            self._send(Ack())
            self._send(VersionInfo(PROTOCOL_VERSION, self._server_version))
        elif isinstance(cmd, Extensions):
            self._send(Ack())
            self._send(ExtensionsList(self._state.extensions))
        elif isinstance(cmd, ListTypes):
            self._send(Ack())
            self._send(self._list_types(cmd.ext_id))
        elif isinstance(cmd, ListProblems):
            self._send(Ack())
            self._send(self._list_problems(cmd.ext_id))
        elif isinstance(cmd, SetupProblem):
            self._send(Ack())
            self._send(self._setup_problem(cmd))
        elif isinstance(cmd, UseExtension):
            self._use_extension(cmd)
        elif isinstance(cmd, Go):
            self._go()
        elif isinstance(cmd, Stop):
            self._stop()
        else:
            self._send(ParseFail())

    def _check_phase(self, cmd: Command) -> None:
        phase = self._state.phase
        if phase == AWAITING_HELLO and not isinstance(cmd, Hello):
            raise ProtocolStateError()
        if phase == READY and isinstance(cmd, Hello):
            raise ProtocolStateError("already initialized")
        if self._computing() and not isinstance(cmd, (Stop, Quit)):
            raise ProtocolStateError("computation running")

    def _computing(self) -> bool:
        return self._run is not None and self._run.running()

    # ---- data commands ----
    def _list_types(self, ext_id: int) -> Response:
        try:
            self._dispatcher.get(ext_id)
        except UnknownExtension:
            return NoSuchExtension(ext_id)
        try:
            return TypeList(ext_id, tuple(self.registry.aliases(ext_id)))
        except McsciError as e:
            return Unexpected(StringValue(f"extension {ext_id} declares bad types: {e}"))

    def _list_problems(self, ext_id: int) -> Response:
        try:
            ext = self._dispatcher.get(ext_id)
        except UnknownExtension:
            return NoSuchExtension(ext_id)
        return ProblemList(ext_id, tuple(ext.list_problems()))

    def _setup_problem(self, cmd: SetupProblem) -> Response:
        try:
            ext = self._dispatcher.get(cmd.ext_id)
        except UnknownExtension:
            return NoSuchExtension(cmd.ext_id)

        problem = next((p for p in ext.list_problems() if p.name == cmd.problem), None)
        if problem is None:
            return SetupError(StringValue(f"unknown problem {cmd.problem!r}"))

        given = dict(cmd.args)
        args: Dict[str, TypedValue] = {}
        for name in given:
            if problem.arg(name) is None:
                return SetupError(StringValue(f"unknown argument {name!r}"))
        for arg in problem.args:
            if arg.name not in given:
                if not arg.optional:
                    return SetupError(StringValue(f"missing argument {arg.name!r}"))
                continue
            try:
                declared = parse_type_string(arg.type_name)
                args[arg.name] = conform(given[arg.name], declared, self.registry, cmd.ext_id)
            except McsciError as e:
                return SetupError(StringValue(f"argument {arg.name!r}: {e}"))

        try:
            calc = ext.setup_problem(cmd.problem, args)
        except ProblemRejected as e:
            value = e.value if isinstance(e.value, TypedValue) else StringValue(str(e.value))
            return SetupError(value)
        except Exception as e:
            return SetupError(StringValue(str(e)))
        self._calculation = calc
        return SetupOk()

    def _use_extension(self, cmd: UseExtension) -> None:
        try:
            job = self._dispatcher.dispatch(cmd.ext_id, cmd.usage_id, cmd.payload, self._sink)
        except UnknownExtension:
            self._send(NoSuchExtension(cmd.ext_id))
            return
        except DispatchError as e:
            self._send(ParseFail() if e.parse_failure else Unexpected(StringValue(str(e))))
            return
        if self._send(Ack()):
            job.start()
        else:
            self._dispatcher.release(cmd.usage_id)

    def _go(self) -> None:
        if self._calculation is None:
            self._send(Unexpected(StringValue("no problem to solve")))
            return
        self._send(Ack())
        self._run = _CalculationRun(self._calculation, self._sink)
        self._run.start()

    def _stop(self) -> None:
        if not self._computing():
            self._send(Unexpected(StringValue("no computation to stop")))
            return
        self._send(Ack())
        self._run.cancelled.set()  # type: ignore[union-attr]

    def _send(self, resp: Response) -> bool:
        return self._sink.send(resp)

    def _record_out(self, resp: Response, line: str) -> None:
        self._transcript.record(OUT, self._state.phase, resp.kind, line)  # type: ignore[union-attr]
