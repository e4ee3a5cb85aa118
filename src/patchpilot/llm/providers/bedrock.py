"""
AWS Bedrock through the Converse API.

Unlike the chat-completions backends, Converse streams typed events
(`messageStart`, `contentBlockDelta`, `messageStop`, `metadata`) and reports usage in a
trailing `metadata` event. Credentials come from the standard boto3 chain
(AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY / AWS_SESSION_TOKEN, profiles, roles).
"""

import logging
import os
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, override

from patchpilot.exceptions import ApiError, NetworkError, ProtocolError
from patchpilot.llm.model_info import BEDROCK_DEFAULT_MODEL_ID, BEDROCK_MODELS, lookup_model
from patchpilot.llm.providers.base import EMPTY_MAP, ApiHandler, SingleCompletionHandler
from patchpilot.llm.stream import ApiStream, translate_exception
from patchpilot.llm.transform import convert_to_converse_messages
from patchpilot.models import ApiMessage, ApiStreamChunk, ModelDescriptor, TextChunk, UsageChunk

logger = logging.getLogger(__name__)

type ConverseEvent = Mapping[str, Any]  # pyright: ignore[reportExplicitAny]

DEFAULT_REGION = "us-east-1"
DEFAULT_MAX_TOKENS = 5000

# Region prefix -> cross-region inference profile prefix
_CROSS_REGION_PREFIXES = {"us-": "us.", "eu-": "eu."}


def translate_boto_exception(error: Exception) -> ApiError:
    """Maps botocore failures (including errors raised mid-stream) onto the ApiError taxonomy."""
    from botocore.exceptions import BotoCoreError, ClientError

    match error:
        case ClientError():
            metadata: Mapping[str, Any] = error.response.get("ResponseMetadata", {})  # pyright: ignore[reportExplicitAny]
            status_code = metadata.get("HTTPStatusCode")
            return NetworkError(str(error), status_code if isinstance(status_code, int) else None)
        case BotoCoreError():
            return NetworkError(f"Connection to AWS Bedrock failed: {error}")
        case _:
            return translate_exception(error)


def parse_converse_event(event: ConverseEvent) -> list[ApiStreamChunk]:
    match event:
        case {"metadata": {"usage": dict(usage)}}:
            return [
                UsageChunk(
                    input_tokens=usage.get("inputTokens", 0),  # pyright: ignore[reportUnknownArgumentType]
                    output_tokens=usage.get("outputTokens", 0),  # pyright: ignore[reportUnknownArgumentType]
                    cache_write_tokens=usage.get("cacheWriteInputTokens"),  # pyright: ignore[reportUnknownArgumentType]
                    cache_read_tokens=usage.get("cacheReadInputTokens"),  # pyright: ignore[reportUnknownArgumentType]
                )
            ]
        case {"contentBlockStart": {"start": {"text": str(text)}}} if text:
            return [TextChunk(text=text)]
        case {"contentBlockDelta": {"delta": {"text": str(text)}}} if text:
            return [TextChunk(text=text)]
        case _:
            # messageStart, messageStop, contentBlockStop and non-text deltas
            return []


class BedrockHandler(ApiHandler, SingleCompletionHandler):
    """
    Extra parameters: `region=eu-west-1`, `cross_region=true` (use the us./eu. inference
    profile for the region), `max_tokens=4096`.
    """

    display_name: str = "AWS Bedrock"
    temperature: float = 0.3
    top_p: float = 0.1

    def __init__(self, model_id: str, extra_params: Mapping[str, str] = EMPTY_MAP):
        self.model_id = model_id or BEDROCK_DEFAULT_MODEL_ID
        self.extra_params = dict(extra_params)
        self.region = self.extra_params.get("region") or os.getenv("AWS_REGION") or DEFAULT_REGION
        self.use_cross_region_inference = self.extra_params.get("cross_region", "").lower() in ("1", "true", "yes")
        self._client: Any = None  # pyright: ignore[reportExplicitAny]

    def make_client(self) -> Any:  # pyright: ignore[reportExplicitAny]
        import boto3

        return boto3.client("bedrock-runtime", region_name=self.region)  # pyright: ignore[reportUnknownMemberType]

    @property
    def client(self) -> Any:  # pyright: ignore[reportExplicitAny]
        if self._client is None:
            self._client = self.make_client()
        return self._client  # pyright: ignore[reportAny]

    def inference_model_id(self) -> str:
        if not self.use_cross_region_inference:
            return self.model_id
        prefix = _CROSS_REGION_PREFIXES.get(self.region[:3])
        return f"{prefix}{self.model_id}" if prefix else self.model_id

    def inference_config(self) -> dict[str, float | int]:
        max_tokens = self.extra_params.get("max_tokens")
        return {
            "maxTokens": int(max_tokens) if max_tokens else self.get_model().max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": self.temperature,
            "topP": self.top_p,
        }

    @override
    def get_model(self) -> ModelDescriptor:
        return lookup_model(BEDROCK_MODELS, self.model_id, BEDROCK_DEFAULT_MODEL_ID)

    @override
    def create_message(self, system_prompt: str, messages: Sequence[ApiMessage]) -> ApiStream:
        return ApiStream(self._stream_chunks(system_prompt, messages))

    def _stream_chunks(self, system_prompt: str, messages: Sequence[ApiMessage]) -> Iterator[ApiStreamChunk]:
        model_id = self.inference_model_id()
        converse_messages = convert_to_converse_messages(messages)
        logger.debug("Requesting %s (%s, %d messages)", model_id, self.display_name, len(converse_messages))

        try:
            response = self.client.converse_stream(  # pyright: ignore[reportAny]
                modelId=model_id,
                messages=converse_messages,
                system=[{"text": system_prompt}],
                inferenceConfig=self.inference_config(),
            )
        except Exception as e:
            raise translate_boto_exception(e) from e

        events = response.get("stream")  # pyright: ignore[reportAny]
        if events is None:
            raise ProtocolError("No stream available in the AWS Bedrock response")

        try:
            for event in events:  # pyright: ignore[reportAny]
                yield from parse_converse_event(event)  # pyright: ignore[reportAny]
        except Exception as e:
            raise translate_boto_exception(e) from e
        finally:
            close = getattr(events, "close", None)  # pyright: ignore[reportAny]
            if callable(close):
                _ = close()

    @override
    def complete_prompt(self, prompt: str) -> str:
        try:
            response = self.client.converse(  # pyright: ignore[reportAny]
                modelId=self.inference_model_id(),
                messages=[{"role": "user", "content": [{"text": prompt}]}],
                inferenceConfig=self.inference_config(),
            )
        except Exception as e:
            error = translate_boto_exception(e)
            raise type(error)(f"Bedrock completion error: {error.message}") from e

        match response:
            case {"output": {"message": {"content": list(content)}}}:
                return "".join(block["text"] for block in content if isinstance(block, dict) and "text" in block)  # pyright: ignore[reportUnknownVariableType, reportUnknownArgumentType]
            case _:
                logger.debug("Unexpected Bedrock completion response: %r", response)
                return ""
