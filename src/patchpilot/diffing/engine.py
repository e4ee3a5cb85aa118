"""
Locates a model-authored SEARCH block inside a file and splices in its replacement.

Matching runs in two stages:

1.  Exact substring match. A single occurrence is spliced as-is with confidence 1.0.
2.  Line-windowed fuzzy match. A window of the search block's line count slides over
    the file; each window is scored by the mean line similarity of its aligned lines.

Line similarity is `difflib.SequenceMatcher(None, a, b, autojunk=False).ratio()`, i.e.
`2 * M / (len(a) + len(b))` where M is the number of matched characters, computed on
lines with their terminator and trailing whitespace removed (two empty lines score 1.0).

The engine performs no I/O and keeps no state between calls.
"""

import difflib
import logging
from dataclasses import dataclass

from patchpilot.exceptions import InvalidRequestError
from patchpilot.models import (
    DiffFailure,
    DiffRequest,
    DiffResult,
    DiffSuccess,
    LineRange,
    MatchFailureReason,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class MatchCandidate:
    start_line: int
    end_line: int
    score: float

    @property
    def line_range(self) -> LineRange:
        return LineRange(start_line=self.start_line, end_line=self.end_line)


def split_lines(content: str) -> list[str]:
    return content.splitlines(keepends=True)


def line_ending_of(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n") or line.endswith("\r"):
        return line[-1]
    return ""


def strip_line_ending(line: str) -> str:
    return line[: len(line) - len(line_ending_of(line))]


def detect_line_ending(content: str) -> str:
    return "\r\n" if "\r\n" in content else "\n"


def _normalize_line(line: str) -> str:
    return line.rstrip()


def line_similarity(a: str, b: str) -> float:
    a, b = _normalize_line(a), _normalize_line(b)
    if a == b:
        return 1.0
    return difflib.SequenceMatcher(None, a, b, autojunk=False).ratio()


def score_windows(content_lines: list[str], search_lines: list[str]) -> list[MatchCandidate]:
    """Scores every window of len(search_lines) lines in content_lines."""
    window = len(search_lines)
    if window == 0 or window > len(content_lines):
        return []

    candidates: list[MatchCandidate] = []
    for start in range(len(content_lines) - window + 1):
        total = sum(line_similarity(content_lines[start + i], search_lines[i]) for i in range(window))
        candidates.append(MatchCandidate(start_line=start, end_line=start + window, score=total / window))
    return candidates


def _failure(
    reason: MatchFailureReason,
    best: MatchCandidate | None,
    content_lines: list[str],
) -> DiffFailure:
    if best is None:
        return DiffFailure(reason=reason, best_candidate_confidence=0.0)
    return DiffFailure(
        reason=reason,
        best_candidate_confidence=best.score,
        best_candidate_text="".join(content_lines[best.start_line : best.end_line]),
        best_candidate_range=best.line_range,
    )


def find_best_window(
    content: str,
    search_lines: list[str],
    fuzzy_threshold: float,
    *,
    exact_occurrences: int = 0,
    preferred_start: int | None = None,
) -> MatchCandidate | DiffFailure:
    """
    Picks the single best-scoring window for search_lines, or explains why there is none.

    `exact_occurrences` is the number of exact substring hits found by the caller; two or
    more of them turn an unresolved search into an ambiguity rather than a miss.
    `preferred_start` breaks a tie between equally scored windows when exactly one of them
    starts at that line (used by unified-diff hunks, whose headers carry a line number).
    """
    content_lines = split_lines(content)
    candidates = score_windows(content_lines, search_lines)

    if not candidates:
        reason = MatchFailureReason.AMBIGUOUS_MATCH if exact_occurrences > 1 else MatchFailureReason.NO_MATCH
        return _failure(reason, None, content_lines)

    best_score = max(candidate.score for candidate in candidates)
    top = [candidate for candidate in candidates if candidate.score == best_score]
    best = top[0]

    if best_score >= fuzzy_threshold:
        if len(top) == 1:
            logger.debug("Window match at line %d with score %.3f", best.start_line + 1, best.score)
            return best
        if preferred_start is not None:
            preferred = [candidate for candidate in top if candidate.start_line == preferred_start]
            if len(preferred) == 1:
                return preferred[0]
        logger.debug("%d windows tie at score %.3f", len(top), best_score)
        return _failure(MatchFailureReason.AMBIGUOUS_MATCH, best, content_lines)

    if exact_occurrences > 1:
        return _failure(MatchFailureReason.AMBIGUOUS_MATCH, best, content_lines)
    if fuzzy_threshold >= 1.0 or best_score <= 0.0:
        return _failure(MatchFailureReason.NO_MATCH, best, content_lines)
    return _failure(MatchFailureReason.THRESHOLD_NOT_MET, best, content_lines)


def _leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _base_indentation(lines: list[str]) -> str:
    return next((_leading_whitespace(line) for line in lines if line.strip()), "")


def _rebase_indentation(replace_lines: list[str], search_lines: list[str], region_lines: list[str]) -> list[str]:
    """
    Shifts replacement lines from the SEARCH block's indentation to the matched region's.
    Lines that do not start with the SEARCH block's base indentation keep their own.
    """
    search_indent = _base_indentation(search_lines)
    region_indent = _base_indentation(region_lines)
    if search_indent == region_indent:
        return replace_lines

    rebased: list[str] = []
    for line in replace_lines:
        if line.strip() and line.startswith(search_indent):
            rebased.append(region_indent + line[len(search_indent) :])
        else:
            rebased.append(line)
    return rebased


def splice_region(content: str, candidate: MatchCandidate, search_lines: list[str], replace_lines: list[str]) -> str:
    """Replaces the candidate's lines with replace_lines, keeping the file's line endings."""
    lines = split_lines(content)
    region = lines[candidate.start_line : candidate.end_line]
    region_text = [strip_line_ending(line) for line in region]

    replace_lines = _rebase_indentation(replace_lines, search_lines, region_text)
    if replace_lines == region_text:
        return content

    eol = detect_line_ending(content)
    trailing = eol if region and line_ending_of(region[-1]) else ""
    new_region = eol.join(replace_lines) + trailing if replace_lines else ""

    return "".join(lines[: candidate.start_line]) + new_region + "".join(lines[candidate.end_line :])


def _exact_occurrences(content: str, search_block: str, limit: int = 2) -> list[tuple[int, str]]:
    """
    Start offsets and matched text of exact hits. A block ending in a line terminator also
    matches the file's last line when the file has no final newline.
    """
    occurrences: list[tuple[int, str]] = []
    index = content.find(search_block)
    while index != -1 and len(occurrences) < limit:
        occurrences.append((index, search_block))
        index = content.find(search_block, index + 1)

    unterminated = search_block.rstrip("\r\n")
    if len(occurrences) < limit and unterminated != search_block and content.endswith(unterminated):
        occurrences.append((len(content) - len(unterminated), unterminated))
    return occurrences


def _exact_range(content: str, index: int, search_block: str) -> LineRange:
    end = index + len(search_block)
    start_line = content.count("\n", 0, index)
    end_line = content.count("\n", 0, end) + (0 if search_block.endswith("\n") else 1)
    return LineRange(start_line=start_line, end_line=end_line)


def _match_line_endings(text: str, eol: str) -> str:
    if eol == "\n":
        return text
    return text.replace("\r\n", "\n").replace("\n", eol)


def validate_request(request: DiffRequest) -> None:
    if not request.search_block.strip():
        raise InvalidRequestError(f"The SEARCH block for '{request.file_path}' is empty.")
    if not 0.0 <= request.fuzzy_threshold <= 1.0:
        raise InvalidRequestError(f"Fuzzy threshold must be between 0 and 1, got {request.fuzzy_threshold}.")


def apply(request: DiffRequest) -> DiffResult:
    """
    Applies one SEARCH/REPLACE edit to `request.original_content`.

    Negative outcomes (no match, ambiguity, threshold) are returned as DiffFailure;
    only malformed requests raise (InvalidRequestError).
    """
    validate_request(request)
    content = request.original_content
    search_block = request.search_block

    occurrences = _exact_occurrences(content, search_block)
    if len(occurrences) == 1:
        index, matched = occurrences[0]
        replacement = _match_line_endings(request.replace_block, detect_line_ending(content))
        if matched != search_block:
            # Keep the missing final newline
            replacement = replacement.removesuffix("\n").removesuffix("\r")
        return DiffSuccess(
            new_content=content[:index] + replacement + content[index + len(matched) :],
            matched_range=_exact_range(content, index, matched),
            match_confidence=1.0,
        )

    search_lines = search_block.splitlines()
    located = find_best_window(
        content,
        search_lines,
        request.fuzzy_threshold,
        exact_occurrences=len(occurrences),
    )
    if isinstance(located, DiffFailure):
        logger.debug(
            "No usable match in '%s': %s (best %.3f)",
            request.file_path,
            located.reason.value,
            located.best_candidate_confidence,
        )
        return located

    return DiffSuccess(
        new_content=splice_region(content, located, search_lines, request.replace_block.splitlines()),
        matched_range=located.line_range,
        match_confidence=located.score,
    )
