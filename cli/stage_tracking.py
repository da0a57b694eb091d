import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from dataclasses_json import DataClassJsonMixin, dataclass_json


@dataclass
class Interval:
    start_ns: int
    end_ns: int

    def duration_ns(self) -> int:
        """Duration in nanoseconds"""
        return self.end_ns - self.start_ns

    def duration_ms_int(self) -> int:
        """Duration in milliseconds (rounded down)"""
        return self.duration_ns() // 1_000_000


@dataclass_json
@dataclass
class StageRecord:
    name: str
    start_unix_timestamp: int
    elapsed_ms: int
    exit_code: int


@dataclass
class RunRecord(DataClassJsonMixin):  # mixin for better type inference
    project_root: str
    scope: str | None
    extra_args: list[str]
    final_state: str
    exit_code: int
    final_report: str | None
    elapsed_ms: int
    stages: list[StageRecord] = field(default_factory=list)


class StageTracker:
    def __init__(self):
        self._current_stage: StageRecord | None = None
        self._results: list[StageRecord] = []
        self._start_time_ns = time.monotonic_ns()

    @contextmanager
    def tracking(self, stage_name: str):
        """Context manager to track timing for a named stage"""
        start_time = time.monotonic_ns()
        self._current_stage = StageRecord(
            name=stage_name,
            start_unix_timestamp=int(time.time()),
            elapsed_ms=0,  # Will be set after the context manager exits
            exit_code=0,
        )

        try:
            yield self
        finally:
            interval = Interval(start_time, time.monotonic_ns())
            self._current_stage.elapsed_ms = interval.duration_ms_int()
            self._results.append(self._current_stage)
            self._current_stage = None

    def set_exit_code(self, exit_code: int):
        """Set the exit code for the current stage"""
        if self._current_stage is None:
            raise RuntimeError("No current stage to set exit code for")
        self._current_stage.exit_code = exit_code

    def elapsed_ms(self) -> int:
        return Interval(self._start_time_ns, time.monotonic_ns()).duration_ms_int()

    def finalize(self) -> list[StageRecord]:
        if self._current_stage is not None:
            raise RuntimeError("Current stage is not finalized")
        return list(self._results)


def write_run_record(record: RunRecord, path: Path):
    path.write_text(record.to_json(indent=2) + "\n", encoding="utf-8")
