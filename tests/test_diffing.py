# pyright: standard

import pytest

from patchpilot.diffing import engine
from patchpilot.diffing.diff_utils import render_unified_diff
from patchpilot.diffing.strategy import (
    SearchReplaceDiffStrategy,
    UnifiedDiffStrategy,
    get_diff_strategy,
    parse_search_replace_blocks,
)
from patchpilot.diffing.unified import apply_hunks, parse_unified_diff
from patchpilot.exceptions import InvalidRequestError
from patchpilot.models import (
    DiffFailure,
    DiffRequest,
    DiffStrategyKind,
    DiffSuccess,
    LineRange,
    MatchFailureReason,
)


def _request(original: str, search: str, replace: str, threshold: float = 1.0) -> DiffRequest:
    return DiffRequest(
        file_path="file.py",
        original_content=original,
        search_block=search,
        replace_block=replace,
        fuzzy_threshold=threshold,
    )


def test_apply_single_exact_match() -> None:
    # GIVEN a file with one occurrence of the search text
    request = _request("foo\nbar\nbaz", "bar", "qux")

    # WHEN the edit is applied
    result = engine.apply(request)

    # THEN the occurrence is replaced with full confidence
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "foo\nqux\nbaz"
    assert result.match_confidence == 1.0
    assert result.matched_range == LineRange(start_line=1, end_line=2)


def test_apply_two_identical_occurrences_is_ambiguous() -> None:
    # GIVEN a search block that appears twice with no distinguishing context
    request = _request("x = 1\ny = 2\nx = 1\n", "x = 1", "x = 3")

    # WHEN the edit is applied
    result = engine.apply(request)

    # THEN the engine refuses to guess
    assert isinstance(result, DiffFailure)
    assert result.reason == MatchFailureReason.AMBIGUOUS_MATCH
    assert result.best_candidate_confidence == 1.0


def test_duplicate_last_line_without_final_newline_is_ambiguous() -> None:
    # GIVEN a file without a final newline whose last line repeats an earlier one
    content = "x\nbar\ny\nbar"

    # WHEN the search block carries a trailing newline, as parsed SEARCH blocks do
    result = engine.apply(_request(content, "bar\n", "qux\n"))

    # THEN both copies count and nothing is guessed
    assert isinstance(result, DiffFailure)
    assert result.reason == MatchFailureReason.AMBIGUOUS_MATCH
    assert engine.apply(_request(content, "bar", "qux")) == result


def test_terminated_search_matches_unterminated_last_line() -> None:
    # GIVEN the only occurrence is the last line of a file without a final newline
    result = engine.apply(_request("x\nbar", "bar\n", "qux\n"))

    # THEN it is replaced and the file still has no final newline
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "x\nqux"
    assert result.matched_range == LineRange(start_line=1, end_line=2)


def test_apply_ambiguity_resolved_by_surrounding_context() -> None:
    # GIVEN a repeated line, but a search block that includes the line before it
    original = "x = 1\ny = 2\nx = 1\n"

    # WHEN the search block spans the distinguishing line
    result = engine.apply(_request(original, "y = 2\nx = 1\n", "y = 2\nx = 3\n"))

    # THEN only the second occurrence changes
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "x = 1\ny = 2\nx = 3\n"


def test_apply_identical_replace_is_idempotent() -> None:
    # GIVEN a replace block equal to the search block
    original = "a\nb\nc\n"

    # WHEN the edit is applied
    result = engine.apply(_request(original, "b\n", "b\n"))

    # THEN the content is unchanged
    assert isinstance(result, DiffSuccess)
    assert result.new_content == original


def test_reapplying_an_applied_edit_reports_no_match() -> None:
    # GIVEN an edit that has already been applied
    request = _request("def f():\n    return 1\n", "return 1", "return 2")
    first = engine.apply(request)
    assert isinstance(first, DiffSuccess)
    assert first.new_content == "def f():\n    return 2\n"

    # WHEN the same request is applied to the new content
    second = engine.apply(_request(first.new_content, "return 1", "return 2"))

    # THEN the search text is no longer found
    assert isinstance(second, DiffFailure)
    assert second.reason == MatchFailureReason.NO_MATCH


def test_fuzzy_match_above_threshold() -> None:
    # GIVEN a search line that is close to, but not exactly, a file line
    # ("betx" vs "beta": 3 of 4 characters match, ratio 0.75)
    request = _request("alpha\nbeta\ngamma\n", "betx\n", "better\n", threshold=0.7)

    # WHEN the edit is applied
    result = engine.apply(request)

    # THEN the closest line is replaced
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "alpha\nbetter\ngamma\n"
    assert result.match_confidence == pytest.approx(0.75)
    assert result.matched_range == LineRange(start_line=1, end_line=2)


def test_fuzzy_match_below_threshold_reports_best_candidate() -> None:
    # GIVEN the same near-miss but a stricter threshold
    request = _request("alpha\nbeta\ngamma\n", "betx\n", "better\n", threshold=0.8)

    # WHEN the edit is applied
    result = engine.apply(request)

    # THEN the failure carries the almost-matching text for diagnostics
    assert isinstance(result, DiffFailure)
    assert result.reason == MatchFailureReason.THRESHOLD_NOT_MET
    assert result.best_candidate_confidence == pytest.approx(0.75)
    assert result.best_candidate_text == "beta\n"
    assert result.best_candidate_range == LineRange(start_line=1, end_line=2)


@pytest.mark.parametrize("threshold", [0.75, 0.5, 0.0])
def test_lowering_threshold_keeps_a_successful_match(threshold: float) -> None:
    result = engine.apply(_request("alpha\nbeta\ngamma\n", "betx\n", "better\n", threshold=threshold))

    assert isinstance(result, DiffSuccess)
    assert result.new_content == "alpha\nbetter\ngamma\n"


def test_apply_preserves_crlf_line_endings() -> None:
    # GIVEN a CRLF file and an LF search block
    request = _request("a\r\nb\r\nc\r\n", "b\n", "x\n")

    # WHEN the edit is applied
    result = engine.apply(request)

    # THEN the replacement uses the file's line endings
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "a\r\nx\r\nc\r\n"


def test_apply_rebases_indentation_of_fuzzy_match() -> None:
    # GIVEN a method written without its class indentation in the search block
    original = "class A:\n    def f(self):\n        return 1\n"
    request = _request(original, "def f(self):\n    return 1\n", "def f(self):\n    return 2\n", threshold=0.8)

    # WHEN the edit is applied
    result = engine.apply(request)

    # THEN the replacement is shifted to the matched region's indentation
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "class A:\n    def f(self):\n        return 2\n"
    assert result.match_confidence < 1.0


def test_apply_whitespace_only_search_is_invalid() -> None:
    with pytest.raises(InvalidRequestError, match="SEARCH block"):
        _ = engine.apply(_request("a\nb\n", "  \n", "c"))


def test_apply_search_longer_than_file_is_no_match() -> None:
    result = engine.apply(_request("one\n", "one\ntwo\nthree\n", "x\n"))

    assert isinstance(result, DiffFailure)
    assert result.reason == MatchFailureReason.NO_MATCH
    assert result.best_candidate_text is None


def test_parse_search_replace_blocks() -> None:
    # GIVEN two blocks, the second indented as a whole
    diff = (
        "<<<<<<< SEARCH\nbar\n=======\nqux\n>>>>>>> REPLACE\n"
        + "  <<<<<<< SEARCH\none\n  =======\ntwo\n  >>>>>>> REPLACE\n"
    )

    # WHEN parsed
    blocks = parse_search_replace_blocks(diff)

    # THEN both blocks are found with their line terminators kept
    assert [(b.search_content, b.replace_content) for b in blocks] == [("bar\n", "qux\n"), ("one\n", "two\n")]


def test_search_replace_strategy_applies_blocks_in_order() -> None:
    # GIVEN two blocks touching different lines
    diff = (
        "<<<<<<< SEARCH\nfoo\n=======\nFOO\n>>>>>>> REPLACE\n"
        + "<<<<<<< SEARCH\nbaz\n=======\nBAZ\n>>>>>>> REPLACE\n"
    )

    # WHEN applied through the strategy
    result = SearchReplaceDiffStrategy().apply_diff("foo\nbar\nbaz\n", diff, "f.txt")

    # THEN both changes land and the range covers both blocks
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "FOO\nbar\nBAZ\n"
    assert result.matched_range == LineRange(start_line=0, end_line=3)


def test_search_replace_strategy_stops_at_first_failing_block() -> None:
    diff = "<<<<<<< SEARCH\nnope\n=======\nx\n>>>>>>> REPLACE\n"

    result = SearchReplaceDiffStrategy().apply_diff("foo\nbar\n", diff, "f.txt")

    assert isinstance(result, DiffFailure)
    assert result.reason == MatchFailureReason.NO_MATCH


def test_search_replace_strategy_without_blocks_is_invalid() -> None:
    with pytest.raises(InvalidRequestError, match="No SEARCH/REPLACE blocks"):
        _ = SearchReplaceDiffStrategy().apply_diff("foo\n", "just some text", "f.txt")


def test_get_diff_strategy() -> None:
    assert isinstance(get_diff_strategy(DiffStrategyKind.SEARCH_REPLACE), SearchReplaceDiffStrategy)
    assert isinstance(get_diff_strategy("unified", 0.9), UnifiedDiffStrategy)
    assert get_diff_strategy("unified", 0.9).fuzzy_threshold == 0.9

    with pytest.raises(InvalidRequestError, match="Unknown diff strategy"):
        _ = get_diff_strategy("whole_file")


def test_strategy_rejects_out_of_range_threshold() -> None:
    with pytest.raises(InvalidRequestError, match="between 0 and 1"):
        _ = SearchReplaceDiffStrategy(1.5)


LETTERS = "a\nb\nc\nd\ne\nf\ng\nh\n"


def test_parse_unified_diff_ignores_file_headers() -> None:
    diff = "--- a/f.txt\n+++ b/f.txt\n@@ -2,3 +2,3 @@\n b\n-c\n+C\n d\n"

    hunks = parse_unified_diff(diff)

    assert len(hunks) == 1
    assert hunks[0].old_start == 2
    assert hunks[0].old_lines == ["b", "c", "d"]
    assert hunks[0].new_lines == ["b", "C", "d"]


def test_parse_unified_diff_counts_lines_before_treating_dashes_as_headers() -> None:
    # GIVEN a hunk removing a line that itself starts with "-- " and a second file section
    diff = "@@ -1,3 +1,2 @@\n a\n--- b\n c\n--- a/other.sql\n+++ b/other.sql\n@@ -1 +1 @@\n-x\n+++ y\n"

    hunks = parse_unified_diff(diff)

    # THEN the removed line belongs to the hunk and the real headers do not
    assert [hunk.lines for hunk in hunks] == [
        [(" ", "a"), ("-", "-- b"), (" ", "c")],
        [("-", "x"), ("+", "++ y")],
    ]


def test_apply_hunks_removes_sql_comment_line() -> None:
    # GIVEN a file with a SQL comment line
    content = "a\n-- b\nc\n"

    # WHEN a hunk removes that line
    result = apply_hunks(content, "@@ -1,3 +1,2 @@\n a\n--- b\n c\n", 1.0)

    # THEN the comment is gone
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "a\nc\n"
    assert result.failed_hunks == ()


def test_apply_hunks_applies_independent_hunks() -> None:
    # GIVEN two hunks in different parts of the file
    diff = "@@ -2,3 +2,3 @@\n b\n-c\n+C\n d\n@@ -6,3 +6,3 @@\n f\n-g\n+G\n h\n"

    # WHEN applied
    result = apply_hunks(LETTERS, diff, 1.0)

    # THEN both hunks land
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "a\nb\nC\nd\ne\nf\nG\nh\n"
    assert result.failed_hunks == ()
    assert result.match_confidence == 1.0


def test_apply_hunks_failure_does_not_block_unrelated_hunk() -> None:
    # GIVEN a second hunk whose context is not in the file
    diff = "@@ -2,3 +2,3 @@\n b\n-c\n+C\n d\n@@ -6,3 +6,3 @@\n x\n-y\n+Y\n z\n"

    # WHEN applied
    result = apply_hunks(LETTERS, diff, 1.0)

    # THEN the first hunk is applied and the second is reported
    assert isinstance(result, DiffSuccess)
    assert result.new_content == "a\nb\nC\nd\ne\nf\ng\nh\n"
    assert len(result.failed_hunks) == 1
    assert result.failed_hunks[0].hunk_index == 1
    assert result.failed_hunks[0].failure.reason == MatchFailureReason.NO_MATCH


def test_apply_hunks_failure_blocks_overlapping_hunk() -> None:
    # GIVEN a failing hunk and a later hunk claiming overlapping lines
    diff = "@@ -2,3 +2,3 @@\n x\n-y\n+Y\n z\n@@ -3,2 +3,2 @@\n c\n-d\n+D\n"

    # WHEN applied
    result = apply_hunks(LETTERS, diff, 1.0)

    # THEN nothing is applied
    assert isinstance(result, DiffFailure)
    assert result.reason == MatchFailureReason.NO_MATCH


def test_apply_hunks_pure_insertion() -> None:
    result = apply_hunks("b\nc\n", "@@ -0,0 +1,1 @@\n+a\n", 1.0)

    assert isinstance(result, DiffSuccess)
    assert result.new_content == "a\nb\nc\n"


def test_apply_hunks_without_hunks_is_invalid() -> None:
    with pytest.raises(InvalidRequestError, match="'@@' hunks"):
        _ = apply_hunks(LETTERS, "not a diff", 1.0)


def test_render_unified_diff_modification() -> None:
    rendered = render_unified_diff("x.txt", "a\n", "b\n")

    assert rendered.startswith("--- a/x.txt\n+++ b/x.txt\n")
    assert "-a\n+b\n" in rendered


def test_render_unified_diff_creation_and_no_change() -> None:
    assert render_unified_diff("new.txt", None, "hello\n").startswith("--- /dev/null\n+++ b/new.txt\n")
    assert render_unified_diff("same.txt", "x\n", "x\n") == ""


def test_render_unified_diff_marks_missing_final_newline() -> None:
    rendered = render_unified_diff("x.txt", "a", "b")

    assert rendered.count("\\ No newline at end of file\n") == 2
