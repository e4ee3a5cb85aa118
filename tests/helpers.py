# pyright: standard
from collections.abc import Callable, Iterator, Sequence
from typing import Any
from unittest import mock

from patchpilot.exceptions import FileAccessError
from patchpilot.llm.model_info import SANE_DEFAULTS, with_model_id
from patchpilot.llm.providers.base import ApiHandler
from patchpilot.llm.stream import ApiStream
from patchpilot.models import ApiMessage, ApiStreamChunk, ImageBlock, ModelDescriptor

type ScriptItem = ApiStreamChunk | Exception | Callable[[], object]


def create_mock_usage(
    prompt_tokens: int,
    completion_tokens: int,
    cost: float | None = None,
    cached_tokens: int | None = None,
) -> Any:
    """Mimics openai's CompletionUsage (plus OpenRouter's `cost`)."""
    usage = mock.MagicMock()
    usage.prompt_tokens = prompt_tokens
    usage.completion_tokens = completion_tokens
    usage.cost = cost
    usage.prompt_tokens_details = mock.MagicMock(cached_tokens=cached_tokens) if cached_tokens is not None else None
    return usage


def create_mock_chunk(content: str | None, usage: Any = None, chunk_id: str = "gen-1") -> Any:
    """
    Creates a MagicMock that mimics a ChatCompletionChunk.
    """
    chunk = mock.MagicMock()
    chunk.id = chunk_id
    chunk.error = None
    chunk.usage = usage

    if content is not None:
        container = mock.MagicMock()
        container.delta = mock.MagicMock(content=content)
        chunk.choices = [container]
    else:
        chunk.choices = []

    return chunk


def create_mock_completion(content: str | None, usage: Any = None) -> Any:
    """Mimics a non-streaming ChatCompletion."""
    response = mock.MagicMock()
    response.error = None
    response.usage = usage
    choice = mock.MagicMock()
    choice.message = mock.MagicMock(content=content)
    response.choices = [choice]
    return response


def create_mock_sdk_stream(chunks: Sequence[Any]) -> Any:
    """An SDK Stream stand-in: iterable once, with a close() we can assert on."""
    stream = mock.MagicMock()
    stream.__iter__.return_value = iter(chunks)
    return stream


class ScriptedApiHandler(ApiHandler):
    """
    Replays one script per request. A script item is a chunk to yield, an exception to
    raise at that point, or a callable to invoke (e.g. to abort the task mid-stream).
    """

    def __init__(self, scripts: Sequence[Sequence[ScriptItem]], model: ModelDescriptor | None = None):
        self.scripts = list(scripts)
        self.model = model or with_model_id(SANE_DEFAULTS, "test-model")
        self.requests: list[tuple[str, list[ApiMessage]]] = []

    def create_message(self, system_prompt: str, messages: Sequence[ApiMessage]) -> ApiStream:
        self.requests.append((system_prompt, list(messages)))
        if not self.scripts:
            raise AssertionError("ScriptedApiHandler ran out of scripted responses")
        return ApiStream(self._play(self.scripts.pop(0)))

    def _play(self, script: Sequence[ScriptItem]) -> Iterator[ApiStreamChunk]:
        for item in script:
            if isinstance(item, Exception):
                raise item
            if callable(item):
                _ = item()
                continue
            yield item

    def get_model(self) -> ModelDescriptor:
        return self.model


class RecordingHost:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str | None, bool]] = []

    def say(
        self,
        type: str,
        text: str | None = None,
        images: Sequence[ImageBlock] | None = None,
        partial: bool = False,
    ) -> None:
        self.messages.append((type, text, partial))

    def texts(self, type: str) -> list[str | None]:
        return [text for say_type, text, _ in self.messages if say_type == type]


class InMemoryFileSystem:
    def __init__(self, files: dict[str, str] | None = None):
        self.files: dict[str, str] = dict(files or {})
        self.writes: list[str] = []

    def read_file(self, path: str) -> str:
        try:
            return self.files[path]
        except KeyError as e:
            raise FileAccessError(f"File not found: {path}") from e

    def write_file(self, path: str, content: str) -> None:
        self.files[path] = content
        self.writes.append(path)

    def list_directory(self, path: str) -> list[str]:
        prefix = path.rstrip("/") + "/"
        entries = {name[len(prefix) :].split("/")[0] for name in self.files if name.startswith(prefix)}
        if not entries:
            raise FileAccessError(f"Directory not found: {path}")
        return sorted(
            entry + "/" if any(name.startswith(prefix + entry + "/") for name in self.files) else entry
            for entry in entries
        )

    def list_files(self, limit: int) -> tuple[list[str], bool]:
        names = sorted(self.files)
        return names[:limit], len(names) > limit
