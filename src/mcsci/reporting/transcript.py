from __future__ import annotations

import csv
import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

TRANSCRIPT_SCHEMA_VERSION = 1

# Stable CSV column order (append-only evolution: only add new columns at the end)
CSV_COLUMNS: List[str] = [
    "schema_version",
    "timestamp",
    "connection_id",
    "seq",
    "direction",
    "phase",
    "kind",
    "line",
    "error",
]

IN = "in"
OUT = "out"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def run_stamp() -> str:
    """Filesystem-safe UTC stamp naming one server run's transcript directory."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")


@dataclass(frozen=True)
class TranscriptEvent:
    schema_version: int
    timestamp: str
    connection_id: str
    seq: int
    direction: str  # in | out
    phase: str
    kind: str  # command name or response kind
    line: str
    error: str

    @staticmethod
    def make(
        *,
        connection_id: str,
        seq: int,
        direction: str,
        phase: str,
        kind: str,
        line: str,
        error: str = "",
    ) -> "TranscriptEvent":
        return TranscriptEvent(
            schema_version=TRANSCRIPT_SCHEMA_VERSION,
            timestamp=_utc_now_iso(),
            connection_id=connection_id,
            seq=int(seq),
            direction=direction,
            phase=phase,
            kind=kind,
            line=line.rstrip("\r\n"),
            error=error,
        )

    def to_jsonl_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_csv_row(self) -> Dict[str, Any]:
        return asdict(self)


class TranscriptLogger:
    """Append-only transcript shared by all connections of one server run.

    Emits one JSONL row per protocol line plus a mirrored CSV row.
    """

    def __init__(self, run_dir: Path) -> None:
        self.run_dir = run_dir
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.jsonl_path = self.run_dir / "events.jsonl"
        self.csv_path = self.run_dir / "events.csv"
        self._lock = threading.Lock()

        if not self.csv_path.exists():
            with self.csv_path.open("w", newline="", encoding="utf-8") as f:
                csv.DictWriter(f, fieldnames=CSV_COLUMNS).writeheader()

    def log(self, ev: TranscriptEvent) -> None:
        with self._lock:
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(ev.to_jsonl_dict(), ensure_ascii=False) + "\n")

            with self.csv_path.open("a", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
                row = ev.to_csv_row()
                writer.writerow({k: row.get(k, "") for k in CSV_COLUMNS})


class ConnectionTranscript:
    """Numbers the lines of one connection and forwards them to the shared logger."""

    def __init__(self, logger: TranscriptLogger, connection_id: str) -> None:
        self._logger = logger
        self.connection_id = connection_id
        self._seq = 0
        self._lock = threading.Lock()

    def record(self, direction: str, phase: str, kind: str, line: str, error: str = "") -> None:
        with self._lock:
            self._seq += 1
            seq = self._seq
        self._logger.log(
            TranscriptEvent.make(
                connection_id=self.connection_id,
                seq=seq,
                direction=direction,
                phase=phase,
                kind=kind,
                line=line,
                error=error,
            )
        )
