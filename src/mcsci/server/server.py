from __future__ import annotations

import itertools
import socket
import sys
import threading
from pathlib import Path
from typing import BinaryIO, Optional, TextIO, Tuple

from mcsci.reporting.transcript import ConnectionTranscript, TranscriptLogger, run_stamp

from .config_loader import build_extensions, load_server_config
from .config_schema import ServerConfig
from .session import Connection
from .sink import ResponseSink


class McsciServer:
    """MCSCI v0 server: TCP thread-per-connection, or a single stdio connection."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 7878,
        *,
        config: Optional[ServerConfig] = None,
        config_path: Optional[Path] = None,
        transcript_dir: Optional[Path] = None,
    ) -> None:
        self.host = host
        self.port = port
        self._stop = threading.Event()
        self._sock: Optional[socket.socket] = None
        self.ready = threading.Event()

        self.config = config if config is not None else load_server_config(config_path)
        # fail fast on broken factories before accepting anyone
        build_extensions(self.config)

        self._transcript: Optional[TranscriptLogger] = None
        if transcript_dir is not None:
            self._transcript = TranscriptLogger(transcript_dir / run_stamp())
        self._ids = itertools.count(1)

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); valid once `ready` is set. Port 0 binds an ephemeral port."""
        if self._sock is None:
            return self.host, self.port
        return self._sock.getsockname()[:2]

    def stop(self) -> None:
        self._stop.set()
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass

    def new_connection(self, sink: ResponseSink) -> Connection:
        transcript = None
        if self._transcript is not None:
            transcript = ConnectionTranscript(self._transcript, f"C{next(self._ids):04d}")
        return Connection(
            build_extensions(self.config),
            sink,
            server_version=self.config.server_version,
            help_lines=self.config.help,
            banner=self.config.banner,
            transcript=transcript,
        )

    # ---- TCP ----
    def _handle(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        with conn:
            session = self.new_connection(ResponseSink(lambda s: conn.sendall(s.encode("utf-8"))))
            print(f"[MCSCI] connection from {addr[0]}:{addr[1]}")
            try:
                session.greet()
                buf = b""
                while not self._stop.is_set() and not session.closed:
                    try:
                        chunk = conn.recv(4096)
                    except OSError:
                        return
                    if not chunk:
                        return
                    buf += chunk
                    while b"\n" in buf:
                        line, buf = buf.split(b"\n", 1)
                        if not session.handle_line(line):
                            return
            finally:
                session.close()
                print(f"[MCSCI] connection from {addr[0]}:{addr[1]} closed")

    def serve_forever(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            self._sock = s
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind((self.host, self.port))
            s.listen()
            s.settimeout(0.5)
            host, port = self.address
            print(f"[MCSCI] listening on {host}:{port}")
            self.ready.set()

            while not self._stop.is_set():
                try:
                    conn, addr = s.accept()
                except socket.timeout:
                    continue
                except OSError:
                    break
                conn.settimeout(None)
                threading.Thread(target=self._handle, args=(conn, addr), daemon=True).start()

            print("[MCSCI] shutdown complete")

    # ---- stdio ----
    def serve_stdio(self, stdin: Optional[BinaryIO] = None, stdout: Optional[TextIO] = None) -> None:
        """Serve exactly one connection over a byte input and a text output.

        Lifecycle messages go to stderr so stdout carries only protocol lines.
        """
        src = stdin if stdin is not None else sys.stdin.buffer
        out = stdout if stdout is not None else sys.stdout

        def write(s: str) -> None:
            out.write(s)
            out.flush()

        session = self.new_connection(ResponseSink(write))
        print("[MCSCI] serving on stdio", file=sys.stderr)
        try:
            session.greet()
            for line in src:
                if not session.handle_line(line):
                    break
            session.wait_idle(timeout=5.0)
        finally:
            session.close()
            print("[MCSCI] stdio connection closed", file=sys.stderr)
