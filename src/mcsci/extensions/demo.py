from __future__ import annotations

import threading
import time
from typing import Dict, Iterable, Iterator, Optional, Sequence

from mcsci.protocol.descriptors import ExtensionDescriptor, ProblemArg, ProblemDescription
from mcsci.protocol.errors import DispatchError, ProblemRejected
from mcsci.protocol.values import EnumValue, IntValue, TupleValue, TypedValue
from mcsci.server.extension import Calculation, Extension, ProgressFn, TypeDecls

DEMO_TYPES: TypeDecls = (
    ("span", "tuple(i32, i32)"),
    ("bound", "enum(Unbounded, Exact(u32), Within(span))"),
)

DEMO_PROBLEMS = (
    ProblemDescription(
        "range-sum",
        "Sum the integers in [start, stop) stepping by step",
        (
            ProblemArg("start", False, "i32"),
            ProblemArg("stop", False, "i32"),
            ProblemArg("step", True, "u16"),
        ),
    ),
    ProblemDescription(
        "collatz",
        "Find the number below limit with the longest Collatz chain",
        (
            ProblemArg("limit", False, "u32"),
            ProblemArg("steps", True, "bound"),
        ),
    ),
)


class RangeSum(Calculation):
    def __init__(self, start: int, stop: int, step: int, chunk: int) -> None:
        self.values = range(start, stop, step)
        self.chunk = max(1, chunk)

    def run(self, progress: ProgressFn, cancelled: threading.Event) -> Optional[TypedValue]:
        total = len(self.values)
        acc = 0
        for lo in range(0, total, self.chunk):
            if cancelled.is_set():
                return None
            acc += sum(self.values[lo : lo + self.chunk])
            progress(min(lo + self.chunk, total), total)
        return IntValue("i64", acc)


def _chain(n: int) -> int:
    steps = 0
    while n != 1:
        n = n // 2 if n % 2 == 0 else 3 * n + 1
        steps += 1
    return steps


class Collatz(Calculation):
    """Longest chain below `limit`, optionally restricted to a chain length."""

    def __init__(self, limit: int, bound: EnumValue, chunk: int) -> None:
        self.limit = limit
        self.bound = bound
        self.chunk = max(1, chunk)

    def _accepts(self, steps: int) -> bool:
        if self.bound.tag == "Exact":
            return steps == self.bound.payload.value  # type: ignore[union-attr]
        if self.bound.tag == "Within":
            lo, hi = (v.value for v in self.bound.payload.items)  # type: ignore[union-attr]
            return lo <= steps <= hi
        return True

    def run(self, progress: ProgressFn, cancelled: threading.Event) -> Optional[TypedValue]:
        best_n, best_steps = 0, 0
        total = max(0, self.limit - 1)
        for n in range(1, self.limit):
            steps = _chain(n)
            if self._accepts(steps) and (best_n == 0 or steps > best_steps):
                best_n, best_steps = n, steps
            if n % self.chunk == 0 or n == total:
                if cancelled.is_set():
                    return None
                progress(n, total)
        return TupleValue((IntValue("u32", best_n), IntValue("u32", best_steps)))


class DemoExtension(Extension):
    """Reference extension: two problems and a small text command set.

    Options: `max_items` caps problem sizes, `chunk` sets progress granularity,
    `delay_s` slows down `repeat` to make interleaving visible.
    """

    def describe(self) -> ExtensionDescriptor:
        return ExtensionDescriptor(
            name=str(self.options.get("name", "demo")),
            version="0.1.0",
            description="Reference extension with arithmetic problems and echo commands",
            authors=("mcsci maintainers",),
            commands=("echo", "repeat", "upper"),
        )

    def list_types(self) -> TypeDecls:
        return DEMO_TYPES

    def list_problems(self) -> Sequence[ProblemDescription]:
        return DEMO_PROBLEMS

    def setup_problem(self, name: str, args: Dict[str, TypedValue]) -> Optional[Calculation]:
        max_items = int(self.options.get("max_items", 10_000_000))
        chunk = int(self.options.get("chunk", 10_000))
        if name == "range-sum":
            start = args["start"].value  # type: ignore[attr-defined]
            stop = args["stop"].value  # type: ignore[attr-defined]
            step = args["step"].value if "step" in args else 1  # type: ignore[attr-defined]
            if step == 0:
                raise ProblemRejected("step must be positive")
            if len(range(start, stop, step)) > max_items:
                raise ProblemRejected(f"range has more than {max_items} items")
            return RangeSum(start, stop, step, chunk)
        if name == "collatz":
            limit = args["limit"].value  # type: ignore[attr-defined]
            if not 2 <= limit <= max_items:
                raise ProblemRejected(f"limit must be between 2 and {max_items}")
            bound = args.get("steps", EnumValue("Unbounded"))
            return Collatz(limit, bound, chunk)  # type: ignore[arg-type]
        raise ProblemRejected(f"unknown problem {name!r}")

    # ---- opaque commands ----
    def handle(self, usage_id: int, payload: str) -> Iterable[str]:
        verb, _, rest = payload.partition(" ")
        rest = rest.strip()
        if verb == "echo":
            return [rest]
        if verb == "upper":
            return [rest.upper()]
        if verb == "repeat":
            count_text, _, text = rest.partition(" ")
            if not count_text.isdigit():
                raise DispatchError("repeat expects <count> <text>", parse_failure=True)
            return self._repeat(int(count_text), text)
        raise DispatchError(f"unknown demo command {verb!r}")

    def _repeat(self, count: int, text: str) -> Iterator[str]:
        delay = float(self.options.get("delay_s", 0.0))
        for i in range(count):
            if delay > 0:
                time.sleep(delay)
            yield f"{i + 1} {text}"


def make_demo(options: Optional[Dict] = None) -> DemoExtension:
    return DemoExtension(options)
