import logging
from dataclasses import dataclass, field

import regex as re

from patchpilot.diffing.engine import (
    detect_line_ending,
    find_best_window,
    line_ending_of,
    splice_region,
    split_lines,
)
from patchpilot.exceptions import InvalidRequestError
from patchpilot.models import (
    DiffFailure,
    DiffResult,
    DiffSuccess,
    HunkFailure,
    LineRange,
)

logger = logging.getLogger(__name__)

_HUNK_HEADER_REGEX = re.compile(r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? \+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@")


@dataclass(slots=True)
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[tuple[str, str]] = field(default_factory=list)

    @property
    def old_lines(self) -> list[str]:
        return [text for op, text in self.lines if op in (" ", "-")]

    @property
    def new_lines(self) -> list[str]:
        return [text for op, text in self.lines if op in (" ", "+")]

    @property
    def header_range(self) -> tuple[int, int]:
        """Zero-based, end-exclusive span of the original file this hunk claims."""
        start = max(self.old_start - 1, 0)
        return start, start + max(self.old_count, 1)

    def overlaps(self, other: "Hunk") -> bool:
        start, end = self.header_range
        other_start, other_end = other.header_range
        return start < other_end and other_start < end


def parse_unified_diff(diff_content: str) -> list[Hunk]:
    """
    Parses `@@` hunks out of a unified diff. File headers (`---`/`+++`) and any text
    before the first hunk are ignored. A bare empty line inside a hunk is read as an
    empty context line, since models often drop the leading space.

    Body lines are counted against the header's old/new line counts. While lines are
    still owed, `--- x` and `+++ x` are a removed `-- x` or an added `++ x`; only after
    the counts are used up do they start a new file section.
    """
    hunks: list[Hunk] = []
    current: Hunk | None = None
    old_remaining = new_remaining = 0

    for raw_line in diff_content.splitlines():
        header = _HUNK_HEADER_REGEX.match(raw_line)
        if header:
            current = Hunk(
                old_start=int(header.group("old_start")),
                old_count=int(header.group("old_count") or 1),
                new_start=int(header.group("new_start")),
                new_count=int(header.group("new_count") or 1),
            )
            old_remaining, new_remaining = current.old_count, current.new_count
            hunks.append(current)
            continue

        if current is None:
            continue

        if raw_line.startswith("\\"):
            # "\ No newline at end of file"
            continue

        counts_used_up = old_remaining <= 0 and new_remaining <= 0
        if counts_used_up and (raw_line.startswith("--- ") or raw_line.startswith("+++ ")):
            current = None
            continue

        op, text = (" ", "") if not raw_line else (raw_line[0], raw_line[1:])
        if op not in (" ", "-", "+"):
            current = None
            continue

        current.lines.append((op, text))
        if op != "+":
            old_remaining -= 1
        if op != "-":
            new_remaining -= 1

    return [hunk for hunk in hunks if hunk.lines]


def _insert_lines(content: str, position: int, new_lines: list[str]) -> str:
    lines = split_lines(content)
    eol = detect_line_ending(content)
    position = min(max(position, 0), len(lines))
    if position == len(lines) and lines and not line_ending_of(lines[-1]):
        lines[-1] += eol
    inserted = [line + eol for line in new_lines]
    return "".join(lines[:position] + inserted + lines[position:])


def apply_hunks(original_content: str, diff_content: str, fuzzy_threshold: float) -> DiffResult:
    """
    Applies each hunk independently, in order, against the evolving content.

    A hunk that cannot be located is recorded and skipped; later hunks are only skipped
    along with it when their header ranges overlap it.
    """
    hunks = parse_unified_diff(diff_content)
    if not hunks:
        raise InvalidRequestError("The diff does not contain any '@@' hunks.")

    content = original_content
    line_delta = 0
    failures: list[HunkFailure] = []
    failed_hunks: list[Hunk] = []
    applied_ranges: list[LineRange] = []
    confidences: list[float] = []

    for index, hunk in enumerate(hunks):
        blocking = next((failed for failed in failed_hunks if failed.overlaps(hunk)), None)
        if blocking is not None:
            previous = failures[failed_hunks.index(blocking)].failure
            failures.append(HunkFailure(hunk_index=index, failure=previous))
            failed_hunks.append(hunk)
            continue

        old_lines, new_lines = hunk.old_lines, hunk.new_lines

        if not old_lines:
            position = hunk.old_start + line_delta
            content = _insert_lines(content, position, new_lines)
            applied_ranges.append(LineRange(start_line=position, end_line=position))
            confidences.append(1.0)
            line_delta += len(new_lines)
            continue

        located = find_best_window(
            content,
            old_lines,
            fuzzy_threshold,
            preferred_start=hunk.old_start - 1 + line_delta,
        )
        if isinstance(located, DiffFailure):
            logger.debug("Hunk %d failed: %s", index, located.reason.value)
            failures.append(HunkFailure(hunk_index=index, failure=located))
            failed_hunks.append(hunk)
            continue

        content = splice_region(content, located, old_lines, new_lines)
        applied_ranges.append(located.line_range)
        confidences.append(located.score)
        line_delta += len(new_lines) - len(old_lines)

    if not applied_ranges:
        return failures[0].failure

    return DiffSuccess(
        new_content=content,
        matched_range=LineRange(
            start_line=min(r.start_line for r in applied_ranges),
            end_line=max(r.end_line for r in applied_ranges),
        ),
        match_confidence=min(confidences),
        failed_hunks=tuple(failures),
    )
