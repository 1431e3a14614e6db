from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple, Union

from mcsci.protocol.descriptors import ExtensionDescriptor, ProblemDescription
from mcsci.protocol.errors import DispatchError, ProblemRejected
from mcsci.protocol.values import TypeDescriptor, TypedValue

# progress(done, total)
ProgressFn = Callable[[int, int], None]

TypeDecls = Sequence[Tuple[str, Union[TypeDescriptor, str]]]


class Calculation:
    """Prepared problem instance, executed by `go` on a background thread.

    `run` reports progress through `progress` and should poll `cancelled`
    between units of work. Returning None means the run was stopped.
    """

    def run(self, progress: ProgressFn, cancelled: threading.Event) -> Optional[TypedValue]:
        raise NotImplementedError


class Extension:
    """Capability interface the server talks to; one instance per connection.

    Only `describe` is mandatory. Extensions receive their `options` mapping
    from the server config.
    """

    def __init__(self, options: Optional[Dict[str, Any]] = None) -> None:
        self.options: Dict[str, Any] = dict(options or {})

    def describe(self) -> ExtensionDescriptor:
        raise NotImplementedError

    def list_types(self) -> TypeDecls:
        return ()

    def list_problems(self) -> Sequence[ProblemDescription]:
        return ()

    def setup_problem(self, name: str, args: Dict[str, TypedValue]) -> Optional[Calculation]:
        """Validate conformed arguments; raise ProblemRejected to refuse them."""
        raise ProblemRejected(f"unknown problem {name!r}")

    def handle(self, usage_id: int, payload: str) -> Iterable[str]:
        """Start one invocation; the returned iterable yields opaque response lines.

        Raising DispatchError refuses the invocation before it is acknowledged.
        The iterable is drained on a background thread.
        """
        raise DispatchError(f"{self.describe().name} accepts no commands")
