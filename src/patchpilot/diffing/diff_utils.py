import difflib

NO_NEWLINE_MARKER = "\\ No newline at end of file\n"


def _quote_path_if_needed(path: str) -> str:
    return f'"{path}"' if " " in path else path


def _mark_missing_final_newline(diff_lines: list[str], content: str, side_prefixes: tuple[str, ...]) -> None:
    """
    Inserts the no-newline marker IN-PLACE after the last diff line that came from the
    end of `content`, if `content` lacks a trailing newline. difflib never emits it.
    """
    if not content or content.endswith("\n"):
        return

    for i in range(len(diff_lines) - 1, -1, -1):
        line = diff_lines[i]
        if line.startswith("@@"):
            return
        if line.startswith(side_prefixes):
            if not line.endswith("\n"):
                diff_lines[i] += "\n"
                diff_lines.insert(i + 1, NO_NEWLINE_MARKER)
            return


def render_unified_diff(file_path: str, before: str | None, after: str | None) -> str:
    """
    Renders the change from `before` to `after` as a unified diff for display.
    A None side is shown as /dev/null (file creation or deletion).
    """
    from_file = "/dev/null" if before is None else f"a/{file_path}"
    to_file = "/dev/null" if after is None else f"b/{file_path}"

    before_text = before or ""
    after_text = after or ""
    if before_text == after_text and before is not None and after is not None:
        return ""

    diff_lines = list(
        difflib.unified_diff(
            before_text.splitlines(keepends=True),
            after_text.splitlines(keepends=True),
            fromfile=_quote_path_if_needed(from_file),
            tofile=_quote_path_if_needed(to_file),
        )
    )

    # The "+" side first: inserting there does not shift the "-"/" " lines that precede it.
    _mark_missing_final_newline(diff_lines, after_text, ("+",))
    _mark_missing_final_newline(diff_lines, before_text, ("-", " "))

    if not diff_lines:
        return f"--- {from_file}\n+++ {to_file}\n"
    return "".join(diff_lines)
