"""
Puzzle catalog, grading and progress tracking around the interpreter.

The interpreter only produces output; deciding whether a solution passes is
a byte-for-byte comparison done here, outside the core.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from rubylet.rubylet_runtime import ScriptRunner


@dataclass
class Puzzle:
    id: Any
    title: str = ""
    level: str = ""
    description: str = ""
    hint: str = ""
    expected_output: str = ""
    starting_source: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Puzzle":
        """Builds a puzzle from a catalog record, accepting the legacy field names."""
        if "id" not in record:
            raise ValueError(f"puzzle record without an id: {record!r}")
        expected = record.get("expected_output", record.get("expected"))
        if expected is None:
            cases = record.get("testCases") or record.get("test_cases") or []
            if cases:
                expected = cases[0].get("expected")
        starting = record.get("starting_source", record.get("initialCode", record.get("initial_code", "")))
        known = {"id", "title", "level", "difficulty", "description", "hint", "expected_output", "expected",
                 "testCases", "test_cases", "starting_source", "initialCode", "initial_code"}
        return cls(
            id=record["id"],
            title=str(record.get("title", "")),
            level=str(record.get("level", record.get("difficulty", ""))),
            description=str(record.get("description", "")),
            hint=str(record.get("hint", "")),
            expected_output=str(expected or ""),
            starting_source=str(starting or ""),
            extra={k: v for k, v in record.items() if k not in known},
        )


def parse_catalog(text: str, fmt: Optional[str] = None) -> List[Puzzle]:
    """Parses catalog text; JSON when it looks like JSON, YAML otherwise."""
    if fmt is None:
        fmt = 'json' if text.lstrip().startswith(('[', '{')) else 'yaml'
    if fmt == 'json':
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            # YAML is a superset of JSON
            data = yaml.safe_load(text)
    else:
        data = yaml.safe_load(text)
    if isinstance(data, dict):
        data = data.get("puzzles", [])
    if not isinstance(data, list):
        raise ValueError("a puzzle catalog must be a list of puzzle records")
    return [Puzzle.from_record(record) for record in data]


def load_catalog(path) -> List[Puzzle]:
    path = Path(path)
    fmt = 'json' if path.suffix.lower() == '.json' else None
    return parse_catalog(path.read_text(encoding="utf-8"), fmt)


def id_key(puzzle_id) -> str:
    """Ids compare by their text, so `3` and `"3"` name the same puzzle."""
    return str(puzzle_id)


def find_puzzle(puzzles: Iterable[Puzzle], puzzle_id) -> Optional[Puzzle]:
    for puzzle in puzzles:
        if id_key(puzzle.id) == id_key(puzzle_id):
            return puzzle
    return None


def check_solution(source: str, expected_output: str, runner: Optional[ScriptRunner] = None) -> Dict[str, Any]:
    """Runs `source` and compares its output with `expected_output` exactly.

    Returns `{success, output, expected, error, error_kind}`; `expected` is
    only filled in on a mismatch and `error` only when the script failed.
    """
    runner = runner or ScriptRunner()
    result = runner.handle_script(source)
    if result.status == 'error':
        return {
            "success": False,
            "output": result.output,
            "expected": None,
            "error": result.format_error(),
            "error_kind": result.error_kind,
        }
    if result.output == expected_output:
        return {"success": True, "output": result.output, "expected": None, "error": None, "error_kind": None}
    return {
        "success": False,
        "output": result.output,
        "expected": expected_output,
        "error": None,
        "error_kind": None,
    }


class ProgressStore:
    """The set of completed puzzle ids, optionally persisted to a YAML file."""

    def __init__(self, path=None, completed: Iterable[Any] = ()):
        self.path = Path(path) if path is not None else None
        self._completed: Dict[str, Any] = {}
        for puzzle_id in completed:
            self.mark_completed(puzzle_id)

    @classmethod
    def load(cls, path) -> "ProgressStore":
        path = Path(path)
        if not path.exists():
            return cls(path)
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if isinstance(data, dict):
            data = data.get("completed", [])
        return cls(path, data or [])

    def save(self, path=None):
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("no path to save progress to")
        target.write_text(yaml.safe_dump({"completed": self.completed}, sort_keys=False), encoding="utf-8")

    def mark_completed(self, puzzle_id):
        self._completed.setdefault(id_key(puzzle_id), puzzle_id)

    def is_completed(self, puzzle_id) -> bool:
        return id_key(puzzle_id) in self._completed

    @property
    def completed(self) -> List[Any]:
        return sorted(self._completed.values(), key=lambda i: (not isinstance(i, int), str(i) if not isinstance(i, int) else i))

    def reset(self):
        self._completed.clear()

    def next_puzzle_id(self, puzzles: Iterable[Puzzle]):
        """The first puzzle in catalog order that is not completed yet."""
        for puzzle in puzzles:
            if not self.is_completed(puzzle.id):
                return puzzle.id
        return None

    def summary(self, puzzles: List[Puzzle]) -> str:
        done = sum(1 for p in puzzles if self.is_completed(p.id))
        return f"{done} / {len(puzzles)}"
