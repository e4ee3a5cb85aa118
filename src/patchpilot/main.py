from collections.abc import Sequence
from pathlib import Path
from sys import exit
from typing import Annotated, Any, final, override

import typer
from typer.core import TyperGroup

from patchpilot.exceptions import PatchPilotError
from patchpilot.models import DiffStrategyKind

app: typer.Typer


@final
class ErrorHandlingGroup(TyperGroup):
    @override
    def main(  # pyright: ignore[reportAny]
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        windows_expand_args: bool = True,
        **extra: Any,  # pyright: ignore[reportAny, reportExplicitAny]
    ) -> Any:  # pyright: ignore[reportExplicitAny]
        try:
            return super().main(args, prog_name, complete_var, standalone_mode, windows_expand_args, **extra)  #  pyright: ignore[reportAny]
        except PatchPilotError as e:
            typer.secho(f"Error: {e.message}", err=True, fg=typer.colors.RED)
            exit(e.exit_code)
        except Exception as e:
            typer.secho("Unexpected Internal Error", err=True, fg=typer.colors.RED)
            typer.echo(str(e), err=True)
            exit(1)


app = typer.Typer(cls=ErrorHandlingGroup, no_args_is_help=True)

ModelOption = Annotated[
    str | None,
    typer.Option(
        "--model",
        "-m",
        help="Model to use, e.g. 'openai/gpt-4o', 'bedrock/amazon.nova-pro-v1:0+region=eu-west-1' or "
        + "'openrouter/anthropic/claude-3.5-sonnet+reasoning_effort=low'. "
        + "Defaults to $PATCHPILOT_MODEL.",
    ),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Log requests, matches and retries to stderr.")]


@app.command("run")
def run(
    task_text: Annotated[str, typer.Argument(help="What the agent should do.")],
    model: ModelOption = None,
    cwd: Annotated[
        Path | None,
        typer.Option(
            "--cwd",
            help="Workspace the agent may read, edit and run commands in. Defaults to the current directory.",
            file_okay=False,
            exists=True,
        ),
    ] = None,
    transcript: Annotated[
        Path | None,
        typer.Option(help="Write the final conversation to this file (one JSON message per line)."),
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Run a coding task against the local workspace.

    Press Ctrl+C once to abort the task cleanly; partial output is kept.
    """
    from patchpilot.commands.run import run_task

    run_task(task_text, model, cwd or Path.cwd(), transcript, verbose)


@app.command("apply-diff")
def apply_diff(
    file: Annotated[Path, typer.Argument(help="The file to patch.", exists=True, dir_okay=False)],
    diff_file: Annotated[
        Path, typer.Argument(help="File holding SEARCH/REPLACE blocks or unified diff hunks.", exists=True)
    ],
    strategy: Annotated[
        DiffStrategyKind, typer.Option(help="How to interpret the diff file.")
    ] = DiffStrategyKind.SEARCH_REPLACE,
    threshold: Annotated[
        float, typer.Option(min=0.0, max=1.0, help="Minimum similarity for a fuzzy match (1.0 = exact).")
    ] = 1.0,
    write: Annotated[bool, typer.Option("--write", "-w", help="Save the result back to FILE.")] = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Apply an edit to a file offline and print the resulting change as a unified diff.
    """
    from patchpilot.commands.apply_diff import apply_diff_file

    apply_diff_file(file, diff_file, strategy, threshold, write, verbose)


@app.command("enhance")
def enhance(
    text: Annotated[str, typer.Argument(help="The prompt to rewrite.")],
    model: ModelOption = None,
    instructions: Annotated[
        str | None, typer.Option(help="Replace the default rewriting instructions.")
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Rewrite a prompt into a clearer, more detailed one with a single completion.
    """
    from patchpilot.commands.enhance import enhance_text

    enhance_text(text, model, instructions, verbose)


@app.command("log")
def log(
    transcript: Annotated[Path, typer.Argument(help="A transcript written by `run --transcript`.", exists=True)],
) -> None:
    """
    Display a saved task transcript.
    """
    from patchpilot.commands.log import show_transcript

    show_transcript(transcript)


if __name__ == "__main__":
    app()
