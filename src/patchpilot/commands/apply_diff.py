import sys
from pathlib import Path

from patchpilot.agent.tools import format_diff_failure
from patchpilot.console import configure_logging, is_terminal
from patchpilot.diffing.diff_utils import render_unified_diff
from patchpilot.diffing.strategy import get_diff_strategy
from patchpilot.exceptions import InvalidRequestError
from patchpilot.integrations.filesystem import atomic_write_text
from patchpilot.models import DiffFailure, DiffStrategyKind


def _read_text(path: Path) -> str:
    with path.open(encoding="utf-8", newline="") as f:
        return f.read()


def apply_diff_file(
    file: Path,
    diff_file: Path,
    strategy_kind: DiffStrategyKind,
    threshold: float,
    write: bool,
    verbose: bool,
) -> None:
    configure_logging(verbose)
    original = _read_text(file)
    strategy = get_diff_strategy(strategy_kind, threshold)
    result = strategy.apply_diff(original, _read_text(diff_file), file.as_posix())

    if isinstance(result, DiffFailure):
        raise InvalidRequestError(format_diff_failure(file.as_posix(), result, threshold))

    rendered = render_unified_diff(file.as_posix(), original, result.new_content)
    if rendered and is_terminal():
        from rich.console import Console
        from rich.syntax import Syntax

        Console().print(Syntax(rendered, "diff"))
    else:
        print(rendered, end="")

    for hunk in result.failed_hunks:
        print(f"Hunk {hunk.hunk_index + 1} was not applied: {hunk.failure.reason.value}", file=sys.stderr)

    if write and result.new_content != original:
        atomic_write_text(file, result.new_content)
