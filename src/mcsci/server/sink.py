from __future__ import annotations

import threading
from typing import Callable, Optional

from mcsci.protocol.responses import Response, format_response

LineObserver = Callable[[Response, str], None]


class ResponseSink:
    """Single writer for one connection's outbound stream.

    Core responses, info/status lines and extension jobs all funnel through
    `send`, so lines are never interleaved mid-write.
    """

    def __init__(self, write: Callable[[str], None], *, observer: Optional[LineObserver] = None) -> None:
        self._write = write
        self.observer = observer
        self._lock = threading.Lock()
        self.closed = False

    def send(self, resp: Response) -> bool:
        line = format_response(resp)
        with self._lock:
            if self.closed:
                return False
            try:
                self._write(line)
            except (OSError, ValueError):
                # peer went away (ValueError: write to a closed file object)
                self.closed = True
                return False
            if self.observer is not None:
                self.observer(resp, line)
        return True

    def close(self) -> None:
        with self._lock:
            self.closed = True
