from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Tuple

from mcsci.protocol.descriptors import ExtensionDescriptor
from mcsci.protocol.errors import DispatchError, UnknownExtension
from mcsci.protocol.responses import ExtensionResponse, Status

from .extension import Extension, TypeDecls
from .sink import ResponseSink


class ExtensionJob:
    """One accepted `use-extension` invocation, drained on its own thread."""

    def __init__(self, dispatcher: "ExtensionDispatcher", usage_id: int, stream: Iterable[str], sink: ResponseSink) -> None:
        self.usage_id = usage_id
        self._dispatcher = dispatcher
        self._stream = stream
        self._sink = sink
        self._thread = threading.Thread(target=self._drain, name=f"mcsci-usage-{usage_id}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _drain(self) -> None:
        try:
            for chunk in self._stream:
                for line in str(chunk).splitlines() or [""]:
                    if not self._sink.send(ExtensionResponse(self.usage_id, line)):
                        return
        except Exception as e:
            self._sink.send(Status(f"extension {self.usage_id} failed: {e}"))
        finally:
            self._dispatcher.release(self.usage_id)


class ExtensionDispatcher:
    """Per-connection extension table: id -> handle, plus the active-usage table.

    Ids are positions in registration order and never change for the
    connection's lifetime.
    """

    def __init__(self) -> None:
        self._entries: List[Tuple[ExtensionDescriptor, Extension]] = []
        self._lock = threading.Lock()
        self.active: Dict[int, int] = {}  # usage_id -> ext_id
        self._jobs: List[ExtensionJob] = []

    def register_extension(self, descriptor: ExtensionDescriptor, handle: Extension) -> int:
        self._entries.append((descriptor, handle))
        return len(self._entries) - 1

    def descriptors(self) -> Tuple[ExtensionDescriptor, ...]:
        return tuple(d for d, _ in self._entries)

    def get(self, ext_id: int) -> Extension:
        if not 0 <= ext_id < len(self._entries):
            raise UnknownExtension(ext_id)
        return self._entries[ext_id][1]

    def types_for(self, ext_id: Optional[int]) -> Optional[TypeDecls]:
        if ext_id is None or not 0 <= ext_id < len(self._entries):
            return None
        return self._entries[ext_id][1].list_types()

    # ---- use-extension ----
    def dispatch(self, ext_id: int, usage_id: int, payload: str, sink: ResponseSink) -> ExtensionJob:
        """Validate and start an invocation; the caller acks, then calls job.start().

        Raises UnknownExtension or DispatchError; neither records the usage id.
        """
        handle = self.get(ext_id)
        with self._lock:
            if usage_id in self.active:
                raise DispatchError(f"usage id {usage_id} already active")
            self.active[usage_id] = ext_id
        try:
            stream = handle.handle(usage_id, payload)
        except DispatchError:
            self.release(usage_id)
            raise
        except Exception as e:
            self.release(usage_id)
            raise DispatchError(f"extension {ext_id} failed: {e}") from e

        job = ExtensionJob(self, usage_id, stream, sink)
        with self._lock:
            self._jobs = [j for j in self._jobs if j.is_alive()]
            self._jobs.append(job)
        return job

    def release(self, usage_id: int) -> None:
        with self._lock:
            self.active.pop(usage_id, None)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        with self._lock:
            jobs = list(self._jobs)
        for job in jobs:
            job.join(timeout)
        return not any(j.is_alive() for j in jobs)
