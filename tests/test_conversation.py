# pyright: standard

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from patchpilot.conversation.environment import (
    build_environment_details,
    format_current_time,
    format_files_list,
    format_utc_offset,
)
from patchpilot.conversation.mentions import expand_tagged_mentions, parse_mentions
from patchpilot.conversation.state import IMAGE_PLACEHOLDER, ConversationState, context_limit, make_message
from patchpilot.exceptions import InvalidRequestError
from patchpilot.llm.model_info import SANE_DEFAULTS, with_model_id
from patchpilot.models import ImageBlock, ModelDescriptor, TextBlock, ToolResultBlock, ToolUseBlock
from tests.helpers import InMemoryFileSystem

TEXT_ONLY_MODEL = ModelDescriptor(
    id="text-only",
    max_tokens=None,
    context_window=64_000,
    supports_images=False,
    supports_prompt_cache=False,
)

PNG = ImageBlock(mime_type="image/png", data=b"\x89PNG")


def _state(model: ModelDescriptor | None = None, files: dict[str, str] | None = None) -> ConversationState:
    return ConversationState(model or with_model_id(SANE_DEFAULTS, "m"), InMemoryFileSystem(files))


def test_sanitize_strips_timestamps_and_keeps_order() -> None:
    # GIVEN a short history
    state = _state()
    state.append_message(make_message("user", [TextBlock(text="hi")]))
    state.append_message(make_message("assistant", [TextBlock(text="hello")]))

    # WHEN sanitized
    sanitized = state.sanitize_for_transmission()

    # THEN only role and content are transmitted, in order
    assert [(m.role, m.content) for m in sanitized] == [
        ("user", [TextBlock(text="hi")]),
        ("assistant", [TextBlock(text="hello")]),
    ]
    assert not hasattr(sanitized[0], "timestamp")


def test_sanitize_replaces_images_for_text_only_models() -> None:
    # GIVEN images in a user message and in a tool result
    state = _state(TEXT_ONLY_MODEL)
    state.append_message(make_message("user", [TextBlock(text="see"), PNG]))
    state.append_message(make_message("assistant", [ToolUseBlock(id="t1", name="read_file", input={"path": "a"})]))
    state.append_message(make_message("user", [ToolResultBlock(tool_use_id="t1", content=[TextBlock(text="x"), PNG])]))

    # WHEN sanitized
    sanitized = state.sanitize_for_transmission()

    # THEN every image becomes the placeholder text
    assert sanitized[0].content == [TextBlock(text="see"), TextBlock(text=IMAGE_PLACEHOLDER)]
    result = sanitized[2].content[0]
    assert isinstance(result, ToolResultBlock)
    assert result.content == [TextBlock(text="x"), TextBlock(text=IMAGE_PLACEHOLDER)]
    # The stored history is untouched
    assert state.messages[0].content[1] == PNG


def test_sanitize_keeps_images_for_vision_models() -> None:
    state = _state()
    state.append_message(make_message("user", [PNG]))

    assert state.sanitize_for_transmission()[0].content == [PNG]


def test_tool_result_must_reference_a_prior_tool_use() -> None:
    state = _state()
    state.append_message(make_message("user", [TextBlock(text="task")]))

    with pytest.raises(InvalidRequestError, match="unknown tool use 'toolu_missing'"):
        state.append_message(make_message("user", [ToolResultBlock(tool_use_id="toolu_missing", content=[])]))
    assert len(state) == 1


def test_inject_context_expands_mentions_only_in_tagged_regions() -> None:
    # GIVEN a mention inside a <task> region and one outside
    state = _state(files={"src/app.py": "print('hi')\n"})
    raw = [TextBlock(text="<task>\nfix @/src/app.py please\n</task>\nsee also @/src/app.py")]

    # WHEN context is injected
    content = state.inject_context(raw, "<environment_details>\nENV\n</environment_details>")

    # THEN only the tagged mention is expanded and environment details come last
    first = content[0]
    assert isinstance(first, TextBlock)
    assert "fix 'src/app.py' (see below for file content) please" in first.text
    assert '<file_content path="src/app.py">\nprint(\'hi\')\n\n</file_content>' in first.text
    assert first.text.endswith("see also @/src/app.py")
    assert content[-1] == TextBlock(text="<environment_details>\nENV\n</environment_details>")


def test_inject_context_expands_feedback_inside_tool_results() -> None:
    state = _state(files={"notes.md": "remember"})
    raw = [ToolResultBlock(tool_use_id="t1", content=[TextBlock(text="<feedback>\nread @/notes.md\n</feedback>")])]

    content = state.inject_context(raw, "env")

    result = content[0]
    assert isinstance(result, ToolResultBlock)
    assert isinstance(result.content[0], TextBlock)
    assert '<file_content path="notes.md">\nremember\n</file_content>' in result.content[0].text


def test_parse_mentions_reports_missing_files() -> None:
    parsed = parse_mentions("look at @/missing.py.", InMemoryFileSystem())

    assert parsed.startswith("look at 'missing.py' (see below for file content).")
    assert "Error fetching content: File not found: missing.py" in parsed


def test_parse_mentions_folder_listing() -> None:
    fs = InMemoryFileSystem({"src/a.py": "A", "src/pkg/b.py": "B"})

    parsed = parse_mentions("@/src/", fs)

    assert parsed.startswith("'src/' (see below for folder content)")
    assert "├── a.py\n└── pkg/" in parsed
    assert '<file_content path="src/a.py">\nA\n</file_content>' in parsed


def test_expand_tagged_mentions_leaves_untagged_text() -> None:
    assert expand_tagged_mentions("plain @/a.py", InMemoryFileSystem({"a.py": "x"})) == "plain @/a.py"


def test_truncate_half_keeps_task_and_whole_pairs() -> None:
    # GIVEN a task message followed by four user/assistant pairs
    state = _state()
    state.append_message(make_message("user", [TextBlock(text="task")]))
    for i in range(4):
        state.append_message(make_message("assistant", [TextBlock(text=f"a{i}")]))
        state.append_message(make_message("user", [TextBlock(text=f"u{i}")]))

    # WHEN truncated
    removed = state.truncate_half()

    # THEN the first message stays and the oldest half of the rest is gone
    assert removed == 4
    assert [m.content[0] for m in state.messages] == [
        TextBlock(text="task"),
        TextBlock(text="a2"),
        TextBlock(text="u2"),
        TextBlock(text="a3"),
        TextBlock(text="u3"),
    ]


def test_needs_truncation_uses_context_limit() -> None:
    state = _state(TEXT_ONLY_MODEL)

    assert context_limit(TEXT_ONLY_MODEL) == 51_200
    assert not state.needs_truncation(51_199)
    assert state.needs_truncation(51_200)


def test_format_current_time_with_iana_zone() -> None:
    now = datetime(2024, 1, 1, 5, 0, 0, tzinfo=ZoneInfo("America/Los_Angeles"))

    assert format_current_time(now) == "1/1/2024, 5:00:00 AM (America/Los_Angeles, UTC-8:00)"


def test_format_current_time_afternoon_and_dst() -> None:
    now = datetime(2024, 7, 4, 13, 5, 9, tzinfo=ZoneInfo("America/Los_Angeles"))

    assert format_current_time(now) == "7/4/2024, 1:05:09 PM (America/Los_Angeles, UTC-7:00)"


def test_format_utc_offset_half_hours() -> None:
    now = datetime(2024, 1, 1, tzinfo=ZoneInfo("Asia/Kolkata"))

    assert format_utc_offset(now.utcoffset()) == "UTC+5:30"
    assert format_utc_offset(None) == "UTC+0:00"


def test_format_files_list() -> None:
    assert format_files_list([], False) == "(No files found.)"
    assert format_files_list(["b.py", "a.py"], False) == "a.py\nb.py"
    assert "(File list truncated." in format_files_list(["a.py"], True)


def test_build_environment_details_is_fresh_each_call() -> None:
    # GIVEN a clock that advances between calls
    times = iter(
        [
            datetime(2024, 1, 1, 5, 0, 0, tzinfo=ZoneInfo("UTC")),
            datetime(2024, 1, 1, 5, 0, 1, tzinfo=ZoneInfo("UTC")),
        ]
    )
    fs = InMemoryFileSystem({"main.py": ""})

    # WHEN details are built twice
    first = build_environment_details(fs, "/work", lambda: next(times))
    fs.files["added.py"] = ""
    second = build_environment_details(fs, "/work", lambda: next(times))

    # THEN each reflects the state at that moment
    assert first.startswith("<environment_details>\n# Current Time\n1/1/2024, 5:00:00 AM (UTC, UTC+0:00)")
    assert "# Current Working Directory (/work) Files\nmain.py" in first
    assert "5:00:01 AM" in second
    assert "added.py\nmain.py" in second
    assert second.endswith("</environment_details>")
