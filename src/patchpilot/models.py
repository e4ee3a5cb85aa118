from enum import Enum
from typing import Literal

import msgspec
from msgspec import Struct, field

type Role = Literal["user", "assistant"]


# --- Content blocks ---


class TextBlock(Struct, frozen=True, tag="text", tag_field="type"):
    text: str


class ImageBlock(Struct, frozen=True, tag="image", tag_field="type"):
    mime_type: str
    data: bytes


class ToolUseBlock(Struct, frozen=True, tag="tool_use", tag_field="type"):
    id: str
    name: str
    input: dict[str, str] = field(default_factory=dict)


class ToolResultBlock(Struct, frozen=True, tag="tool_result", tag_field="type"):
    tool_use_id: str
    content: list[TextBlock | ImageBlock]
    status: Literal["success", "error"] = "success"


type ContentBlock = TextBlock | ImageBlock | ToolUseBlock | ToolResultBlock


class Message(Struct, frozen=True):
    role: Role
    content: list[ContentBlock]
    timestamp: str


class ApiMessage(Struct, frozen=True):
    """A history message as it is sent to a backend: role and content only."""

    role: Role
    content: list[ContentBlock]


# --- Stream chunks ---


class TextChunk(Struct, frozen=True, tag="text", tag_field="type"):
    text: str


class UsageChunk(Struct, frozen=True, tag="usage", tag_field="type"):
    input_tokens: int
    output_tokens: int
    cache_write_tokens: int | None = None
    cache_read_tokens: int | None = None
    total_cost: float | None = None


type ApiStreamChunk = TextChunk | UsageChunk


# --- Model metadata ---


class ModelPricing(Struct, frozen=True):
    """USD per million tokens."""

    input_price: float = 0.0
    output_price: float = 0.0
    cache_writes_price: float | None = None
    cache_reads_price: float | None = None


class ModelDescriptor(Struct, frozen=True):
    id: str
    max_tokens: int | None
    context_window: int
    supports_images: bool
    supports_prompt_cache: bool
    pricing: ModelPricing = field(default_factory=ModelPricing)


# --- Diff engine ---


class DiffStrategyKind(str, Enum):
    SEARCH_REPLACE = "search_replace"
    UNIFIED = "unified"


class MatchFailureReason(str, Enum):
    NO_MATCH = "no_match"
    AMBIGUOUS_MATCH = "ambiguous_match"
    THRESHOLD_NOT_MET = "threshold_not_met"


class DiffRequest(Struct, frozen=True):
    file_path: str
    original_content: str
    search_block: str
    replace_block: str
    fuzzy_threshold: float = 1.0


class LineRange(Struct, frozen=True):
    start_line: int
    end_line: int


class DiffFailure(Struct, frozen=True, tag="failure", tag_field="kind"):
    reason: MatchFailureReason
    best_candidate_confidence: float
    best_candidate_text: str | None = None
    best_candidate_range: LineRange | None = None

    @property
    def ok(self) -> Literal[False]:
        return False


class HunkFailure(Struct, frozen=True):
    hunk_index: int
    failure: DiffFailure


class DiffSuccess(Struct, frozen=True, tag="success", tag_field="kind"):
    new_content: str
    matched_range: LineRange
    match_confidence: float
    failed_hunks: tuple[HunkFailure, ...] = ()

    @property
    def ok(self) -> Literal[True]:
        return True


type DiffResult = DiffSuccess | DiffFailure


class SearchReplaceBlock(Struct, frozen=True):
    search_content: str
    replace_content: str


# --- Task loop ---


class TaskStatus(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    TOOL_EXECUTING = "tool_executing"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.ABORTED, TaskStatus.FAILED)


class UsageTotals(Struct):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0
    total_cost: float = 0.0


class ToolResponse(Struct, frozen=True):
    content: list[TextBlock | ImageBlock]
    is_error: bool = False


class CommandResult(Struct, frozen=True):
    output: str
    exit_code: int | None


class TaskOutcome(Struct, frozen=True):
    status: TaskStatus
    result: str | None = None
    error: str | None = None
    usage: UsageTotals = field(default_factory=UsageTotals)


def text_of(blocks: list[ContentBlock] | list[TextBlock | ImageBlock]) -> str:
    """Concatenates the text blocks of a content list."""
    return "".join(block.text for block in blocks if isinstance(block, TextBlock))


def encode_message(message: Message) -> bytes:
    return msgspec.json.encode(message)


def decode_message(data: bytes) -> Message:
    return msgspec.json.decode(data, type=Message)
