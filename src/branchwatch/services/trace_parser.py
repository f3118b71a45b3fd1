from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import re
from typing import Iterable


HEX_CAPTURE = r"(?:0x)?[0-9a-fA-F]{1,8}"
BRANCH_PATTERN = re.compile(
    rf"(?:Branch at:\s*)?(?P<origin>{HEX_CAPTURE})\s*->\s*(?P<destination>{HEX_CAPTURE})"
    rf"\s*\[(?P<instruction>{HEX_CAPTURE})\]\s*(?P<condition>taken|not-taken|not taken)?",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class BranchHit:
    origin: int
    destination: int
    instruction: int
    condition: bool = True


def _line_source(trace_input: str | Path) -> Iterable[str]:
    candidate = Path(str(trace_input))
    try:
        is_file = candidate.is_file()
    except OSError:
        is_file = False
    if is_file:
        with candidate.open("r", encoding="utf-8", errors="replace") as handle:
            yield from handle
        return
    # Treat argument as in-memory trace content when the file path does not exist
    for line in str(trace_input).splitlines():
        yield line


def parse_trace(trace_input: str | Path) -> list[BranchHit]:
    return list(iter_trace(trace_input))


def iter_trace(trace_input: str | Path) -> Iterable[BranchHit]:
    for raw_line in _line_source(trace_input):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        match = BRANCH_PATTERN.match(line)
        if not match:
            continue
        condition_text = (match.group("condition") or "taken").lower()
        yield BranchHit(
            origin=_parse_hex(match.group("origin")),
            destination=_parse_hex(match.group("destination")),
            instruction=_parse_hex(match.group("instruction")),
            condition=condition_text == "taken",
        )


def format_hit(hit: BranchHit) -> str:
    state = "taken" if hit.condition else "not-taken"
    return f"0x{hit.origin:08x} -> 0x{hit.destination:08x} [{hit.instruction:08x}] {state}"


def _parse_hex(raw: str) -> int:
    text = raw.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    return int(text, 16)
