import logging
from abc import ABC, abstractmethod
from typing import override

import regex as re

from patchpilot.diffing import engine
from patchpilot.diffing.unified import apply_hunks
from patchpilot.exceptions import InvalidRequestError
from patchpilot.models import (
    DiffFailure,
    DiffRequest,
    DiffResult,
    DiffStrategyKind,
    DiffSuccess,
    LineRange,
    SearchReplaceBlock,
)

logger = logging.getLogger(__name__)

# One SEARCH/REPLACE block.
#
# - `(?P<indent>\p{H}*)`: leading horizontal whitespace of the `<<<<<<<` line.
# - `(?P=indent)`: the `=======` and `>>>>>>>` delimiters must be indented the same way.
# - `\p{H}*$`: trailing whitespace is allowed on the closing line.
_SEARCH_REPLACE_BLOCK_REGEX = re.compile(
    r"^(?P<indent>\p{H}*)<<<<<<< SEARCH\p{H}*\n"
    + r"(?P<search_content>.*?)"
    + r"^(?P=indent)=======\p{H}*\n"
    + r"(?P<replace_content>.*?)"
    + r"^(?P=indent)>>>>>>> REPLACE\p{H}*$",
    re.MULTILINE | re.DOTALL | re.UNICODE,
)


def parse_search_replace_blocks(diff_content: str) -> list[SearchReplaceBlock]:
    return [
        SearchReplaceBlock(
            search_content=match.group("search_content"),
            replace_content=match.group("replace_content"),
        )
        for match in _SEARCH_REPLACE_BLOCK_REGEX.finditer(diff_content)
    ]


class DiffStrategy(ABC):
    fuzzy_threshold: float

    def __init__(self, fuzzy_threshold: float = 1.0):
        if not 0.0 <= fuzzy_threshold <= 1.0:
            raise InvalidRequestError(f"Fuzzy threshold must be between 0 and 1, got {fuzzy_threshold}.")
        self.fuzzy_threshold = fuzzy_threshold

    @abstractmethod
    def apply_diff(self, original_content: str, diff_content: str, file_path: str = "") -> DiffResult:
        """Applies a model-authored edit in this strategy's format."""
        ...

    @abstractmethod
    def get_tool_description(self, cwd: str) -> str:
        """Describes the `apply_diff` tool input format for the system prompt."""
        ...

    def apply(self, request: DiffRequest) -> DiffResult:
        return engine.apply(request)


class SearchReplaceDiffStrategy(DiffStrategy):
    @override
    def apply_diff(self, original_content: str, diff_content: str, file_path: str = "") -> DiffResult:
        blocks = parse_search_replace_blocks(diff_content)
        if not blocks:
            raise InvalidRequestError(f"No SEARCH/REPLACE blocks found in the diff for '{file_path}'.")

        content = original_content
        ranges: list[LineRange] = []
        confidence = 1.0
        for index, block in enumerate(blocks):
            result = engine.apply(
                DiffRequest(
                    file_path=file_path,
                    original_content=content,
                    search_block=block.search_content,
                    replace_block=block.replace_content,
                    fuzzy_threshold=self.fuzzy_threshold,
                )
            )
            if isinstance(result, DiffFailure):
                logger.debug("Block %d of %d failed for '%s'", index + 1, len(blocks), file_path)
                return result
            content = result.new_content
            ranges.append(result.matched_range)
            confidence = min(confidence, result.match_confidence)

        return DiffSuccess(
            new_content=content,
            matched_range=LineRange(
                start_line=min(r.start_line for r in ranges),
                end_line=max(r.end_line for r in ranges),
            ),
            match_confidence=confidence,
        )

    @override
    def get_tool_description(self, cwd: str) -> str:
        return f"""## apply_diff
Description: Request to replace existing code using one or more search/replace blocks. The SEARCH section must match the existing content of the file, including whitespace and indentation. Use read_file first if you are unsure of the exact content. Blocks are applied in order; each SEARCH section must identify exactly one region of the file.
Parameters:
- path: (required) The path of the file to modify (relative to the current working directory {cwd})
- diff: (required) The search/replace blocks.
Diff format:
<<<<<<< SEARCH
[exact content to find]
=======
[new content to replace with]
>>>>>>> REPLACE
Usage:
<apply_diff>
<path>File path here</path>
<diff>
Your search/replace content here
</diff>
</apply_diff>"""


class UnifiedDiffStrategy(DiffStrategy):
    @override
    def apply_diff(self, original_content: str, diff_content: str, file_path: str = "") -> DiffResult:
        result = apply_hunks(original_content, diff_content, self.fuzzy_threshold)
        if isinstance(result, DiffSuccess) and result.failed_hunks:
            logger.debug("%d hunk(s) could not be applied to '%s'", len(result.failed_hunks), file_path)
        return result

    @override
    def get_tool_description(self, cwd: str) -> str:
        return f"""## apply_diff
Description: Apply a unified diff to a file. Each hunk is located by its context and removed lines, so include a few unchanged lines around every change. Hunks are applied independently; a hunk that cannot be located is reported without blocking unrelated hunks.
Parameters:
- path: (required) The path of the file to modify (relative to the current working directory {cwd})
- diff: (required) The diff content in unified format (`@@ -start,count +start,count @@` hunks).
Usage:
<apply_diff>
<path>File path here</path>
<diff>
--- a/file.py
+++ b/file.py
@@ -1,3 +1,3 @@
 unchanged line
-old line
+new line
</diff>
</apply_diff>"""


_STRATEGIES: dict[DiffStrategyKind, type[DiffStrategy]] = {
    DiffStrategyKind.SEARCH_REPLACE: SearchReplaceDiffStrategy,
    DiffStrategyKind.UNIFIED: UnifiedDiffStrategy,
}


def get_diff_strategy(kind: DiffStrategyKind | str, fuzzy_threshold: float = 1.0) -> DiffStrategy:
    try:
        strategy_cls = _STRATEGIES[DiffStrategyKind(kind)]
    except ValueError as e:
        raise InvalidRequestError(
            f"Unknown diff strategy '{kind}'. Use one of: {', '.join(k.value for k in DiffStrategyKind)}."
        ) from e
    return strategy_cls(fuzzy_threshold)
