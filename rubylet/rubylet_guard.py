"""
Resource limits for one script run.

Every evaluated node costs one operation; wall-clock time is checked every
`check_interval` operations so the clock read stays off the hot path.
Output size, materialized collection sizes and call depth are capped too.
"""

import os
import time
from typing import Mapping, Optional

from rubylet.rubylet_datatypes import ResourceExceeded


DEFAULT_MAX_OPERATIONS = 1_000_000
DEFAULT_TIME_LIMIT = 5.0
DEFAULT_CHECK_INTERVAL = 256
DEFAULT_MAX_OUTPUT = 1_000_000
DEFAULT_MAX_COLLECTION = 1_000_000
DEFAULT_MAX_DEPTH = 400


class ExecutionGuard:
    """Counts operations and enforces the run's time, output and size budgets."""

    def __init__(self, max_operations: int = DEFAULT_MAX_OPERATIONS,
                 time_limit: float = DEFAULT_TIME_LIMIT,
                 check_interval: int = DEFAULT_CHECK_INTERVAL,
                 max_output: int = DEFAULT_MAX_OUTPUT,
                 max_collection: int = DEFAULT_MAX_COLLECTION,
                 max_depth: int = DEFAULT_MAX_DEPTH):
        self.max_operations = max_operations
        self.time_limit = time_limit
        self.check_interval = max(1, check_interval)
        self.max_output = max_output
        self.max_collection = max_collection
        self.max_depth = max_depth
        self.start()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "ExecutionGuard":
        """Builds a guard from RUBYLET_* environment variables; explicit overrides win."""
        env = os.environ if environ is None else environ
        settings = {
            "max_operations": int(env.get("RUBYLET_MAX_OPERATIONS", DEFAULT_MAX_OPERATIONS)),
            "time_limit": float(env.get("RUBYLET_TIME_LIMIT", DEFAULT_TIME_LIMIT)),
            "max_output": int(env.get("RUBYLET_MAX_OUTPUT", DEFAULT_MAX_OUTPUT)),
        }
        settings.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**settings)

    def start(self):
        self.operations = 0
        self.output_size = 0
        self.depth = 0
        self.started = time.monotonic()
        self._next_clock_check = self.check_interval

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def tick(self, cost: int = 1):
        self.operations += cost
        if self.operations > self.max_operations:
            raise ResourceExceeded(
                f"execution exceeded {self.max_operations} operations (possible infinite loop)",
                reason="operations")
        if self.operations >= self._next_clock_check:
            self._next_clock_check = self.operations + self.check_interval
            self.check_clock()

    def check_clock(self):
        if self.elapsed > self.time_limit:
            raise ResourceExceeded(
                f"execution exceeded the {self.time_limit:g}s time limit (possible infinite loop)",
                reason="time")

    def charge_output(self, size: int):
        self.output_size += size
        if self.output_size > self.max_output:
            raise ResourceExceeded(f"output exceeded {self.max_output} characters", reason="output")

    def check_collection(self, size: int):
        if size > self.max_collection:
            raise ResourceExceeded(f"collection of {size} elements exceeds the limit of {self.max_collection}",
                                   reason="memory")
        self.tick(size // 64)

    def enter_call(self):
        self.depth += 1
        if self.depth > self.max_depth:
            raise ResourceExceeded("stack level too deep", reason="stack")

    def exit_call(self):
        self.depth -= 1

    def sleep(self, seconds: float):
        """`sleep` never blocks; it spends the run's time budget instead."""
        self.started -= max(0.0, seconds)
        self.check_clock()
