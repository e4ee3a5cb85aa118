# pyright: standard
import io

from rich.console import Console

from patchpilot.console import RichHostUI, format_tokens, format_usage_summary
from patchpilot.models import UsageTotals


def _host(is_terminal: bool) -> tuple[RichHostUI, io.StringIO]:
    buffer = io.StringIO()
    console = Console(file=buffer, force_terminal=is_terminal, width=60, color_system=None)
    return RichHostUI(console), buffer


def test_format_tokens() -> None:
    assert format_tokens(999) == "999"
    assert format_tokens(1500) == "1.5k"


def test_format_usage_summary_mentions_cache_reads() -> None:
    usage = UsageTotals(input_tokens=12_000, output_tokens=300, cache_read_tokens=2_000, total_cost=0.5)

    assert format_usage_summary(usage) == "Tokens: 12.0k (2.0k cached) sent, 300 received. Cost: $0.50"


def test_partial_messages_are_hidden_without_a_terminal() -> None:
    # GIVEN a host writing to a plain file
    host, buffer = _host(is_terminal=False)

    # WHEN a countdown is reported followed by the final message
    host.say("api_req_retry_delayed", "Retrying in 2 seconds...", partial=True)
    host.say("api_req_retry_delayed", "Retrying now", partial=False)

    # THEN only the final message is written
    output = buffer.getvalue()
    assert "Retrying in 2 seconds" not in output
    assert "Retrying now" in output


def test_partial_messages_are_overwritten_on_a_terminal() -> None:
    host, buffer = _host(is_terminal=True)

    host.say("api_req_retry_delayed", "Retrying in 1 seconds...", partial=True)
    host.say("api_req_retry_delayed", "Retrying now")

    output = buffer.getvalue()
    assert "Retrying in 1 seconds..." in output
    assert output.count("\r") >= 2
    assert output.rstrip().endswith("Retrying now")


def test_tool_diffs_and_brackets_are_rendered_verbatim() -> None:
    host, buffer = _host(is_terminal=False)

    host.say("tool", "--- a/f.py\n+++ b/f.py\n@@ -1 +1 @@\n-x\n+y\n")
    host.say("error", "[not markup] failed")

    output = buffer.getvalue()
    assert "+y" in output
    assert "[not markup] failed" in output


def test_completion_result_is_announced() -> None:
    host, buffer = _host(is_terminal=False)

    host.say("completion_result", "All done.")

    output = buffer.getvalue()
    assert "Task completed" in output
    assert "All done." in output
