"""
Totals for lcov tracefiles.

Only the detail records grcov emits are interpreted (SF, DA, BRDA, FN, FNDA
and end_of_record); summary lines such as LF/LH are recomputed. Repeated
SF records for the same file are merged, taking the maximum hit count per
line, branch and function.
"""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class FileTotals:
    filename: str
    lines: dict[int, int] = field(default_factory=dict)
    branches: dict[tuple[int, str, str], int] = field(default_factory=dict)
    functions: dict[str, int] = field(default_factory=dict)

    @property
    def lines_found(self) -> int:
        return len(self.lines)

    @property
    def lines_hit(self) -> int:
        return sum(1 for hits in self.lines.values() if hits > 0)

    @property
    def branches_found(self) -> int:
        return len(self.branches)

    @property
    def branches_hit(self) -> int:
        return sum(1 for taken in self.branches.values() if taken > 0)

    @property
    def functions_found(self) -> int:
        return len(self.functions)

    @property
    def functions_hit(self) -> int:
        return sum(1 for hits in self.functions.values() if hits > 0)


@dataclass
class LcovTotals:
    files: dict[str, FileTotals] = field(default_factory=dict)

    @property
    def lines_found(self) -> int:
        return sum(f.lines_found for f in self.files.values())

    @property
    def lines_hit(self) -> int:
        return sum(f.lines_hit for f in self.files.values())

    @property
    def branches_found(self) -> int:
        return sum(f.branches_found for f in self.files.values())

    @property
    def branches_hit(self) -> int:
        return sum(f.branches_hit for f in self.files.values())

    @property
    def functions_found(self) -> int:
        return sum(f.functions_found for f in self.files.values())

    @property
    def functions_hit(self) -> int:
        return sum(f.functions_hit for f in self.files.values())


def _max_into(d: dict, key, value: int):
    d[key] = max(d.get(key, 0), value)


def _parse_count(text: str) -> int:
    # BRDA uses "-" for a branch whose block was never executed.
    if text == "-":
        return 0
    return int(text)


def parse_lcov_text(text: str) -> LcovTotals:
    totals = LcovTotals()
    current: FileTotals | None = None

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue

        if line.startswith("SF:"):
            filename = line[3:]
            current = totals.files.setdefault(filename, FileTotals(filename=filename))
        elif line == "end_of_record":
            current = None
        elif current is None:
            continue
        elif line.startswith("DA:"):
            parts = line[3:].split(",")
            if len(parts) >= 2:
                _max_into(current.lines, int(parts[0]), _parse_count(parts[1]))
        elif line.startswith("BRDA:"):
            parts = line[5:].split(",")
            if len(parts) >= 4:
                key = (int(parts[0]), parts[1], parts[2])
                _max_into(current.branches, key, _parse_count(parts[3]))
        elif line.startswith("FNDA:"):
            hits, _, name = line[5:].partition(",")
            _max_into(current.functions, name, _parse_count(hits))
        elif line.startswith("FN:"):
            # FN:<line>,<name> or, in newer lcov, FN:<line>,<end line>,<name>
            _, _, name = line[3:].rpartition(",")
            current.functions.setdefault(name, 0)
        # LF/LH, BRF/BRH and FNF/FNH are derived from the detail records.

    return totals


def parse_lcov(path: Path) -> LcovTotals:
    return parse_lcov_text(path.read_text(encoding="utf-8", errors="replace"))


def _pct(hit: int, found: int) -> str:
    if found == 0:
        return "   n/a"
    return f"{hit / found * 100:5.1f}%"


def format_summary(totals: LcovTotals) -> str:
    rows = [
        ("lines", totals.lines_hit, totals.lines_found),
        ("functions", totals.functions_hit, totals.functions_found),
        ("branches", totals.branches_hit, totals.branches_found),
    ]
    out = [f"Coverage summary ({len(totals.files)} files):"]
    for label, hit, found in rows:
        out.append(f"  {label:<10} {_pct(hit, found)}  ({hit} of {found})")
    return "\n".join(out)
