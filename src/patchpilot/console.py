"""Console host for the task loop, and terminal utilities."""

import logging
import sys
from collections.abc import Sequence
from typing import TYPE_CHECKING

from patchpilot.integrations.interfaces import SayType
from patchpilot.models import ImageBlock, UsageTotals

if TYPE_CHECKING:
    from rich.console import Console


def format_tokens(tokens: int) -> str:
    """Formats token counts for display, using 'k' for thousands."""
    if tokens >= 1000:
        return f"{tokens / 1000:.1f}k"
    return str(tokens)


def is_terminal() -> bool:
    """Checks if stdout is a TTY."""
    return sys.stdout.isatty()


def configure_logging(verbose: bool = False) -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )
    if verbose:
        # SDK transport tracing drowns out the agent's own messages
        for noisy in ("httpx", "httpcore", "openai"):
            logging.getLogger(noisy).setLevel(logging.INFO)


def format_usage_summary(usage: UsageTotals) -> str:
    input_str = format_tokens(usage.input_tokens)
    if usage.cache_read_tokens:
        input_str += f" ({format_tokens(usage.cache_read_tokens)} cached)"
    return (
        f"Tokens: {input_str} sent, {format_tokens(usage.output_tokens)} received. Cost: ${usage.total_cost:.2f}"
    )


class RichHostUI:
    """Renders task messages on the console. Partial messages are overwritten in place."""

    def __init__(self, console: "Console | None" = None):
        from rich.console import Console

        self.console: Console = console or Console(stderr=True)
        self._partial_open: bool = False

    def say(
        self,
        type: SayType,
        text: str | None = None,
        images: Sequence[ImageBlock] | None = None,
        partial: bool = False,
    ) -> None:
        from rich.markdown import Markdown
        from rich.markup import escape
        from rich.syntax import Syntax

        if partial:
            if self.console.is_terminal:
                self.console.print(f"[dim]{escape(text or '')}[/dim]", end="\r")
                self._partial_open = True
            return

        if self._partial_open:
            # Clear the line left behind by the countdown
            self.console.print(" " * self.console.width, end="\r")
            self._partial_open = False

        body = text or ""
        match type:
            case "text":
                if body:
                    self.console.print(Markdown(body))
                if images:
                    self.console.print(f"[dim]({len(images)} image(s) attached)[/dim]")
            case "tool":
                if body.startswith("--- "):
                    self.console.print(Syntax(body, "diff"))
                else:
                    self.console.print(f"[cyan]{escape(body)}[/cyan]")
            case "command_output":
                if body:
                    self.console.print(body, markup=False, highlight=False)
            case "api_req_started":
                self.console.print(f"[dim]API request to {escape(body)}...[/dim]")
            case "api_req_finished":
                self.console.print(f"[dim]{escape(body)}[/dim]")
            case "api_req_failed" | "diff_error":
                self.console.print(f"[yellow]{escape(body)}[/yellow]")
            case "api_req_retry_delayed":
                self.console.print(f"[dim]{escape(body)}[/dim]")
            case "completion_result":
                self.console.print("[bold green]Task completed[/bold green]")
                self.console.print(Markdown(body))
            case "error":
                self.console.print(f"[bold red]{escape(body)}[/bold red]")
