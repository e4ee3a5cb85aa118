import logging
from collections.abc import Iterator
from types import TracebackType
from typing import Self

from patchpilot.exceptions import ApiError, NetworkError, ProtocolError
from patchpilot.models import ApiStreamChunk

logger = logging.getLogger(__name__)


def translate_exception(error: Exception) -> ApiError:
    """Maps SDK/transport exceptions onto the NetworkError/ProtocolError taxonomy."""
    if isinstance(error, ApiError):
        return error

    import httpx
    import openai

    match error:
        case openai.APIResponseValidationError():
            return ProtocolError(f"Unexpected response from the API: {error}")
        case openai.APIStatusError(status_code=int(status_code)):
            return NetworkError(f"API request failed with status {status_code}: {error.message}", status_code)
        case openai.APIConnectionError() | openai.APITimeoutError():
            return NetworkError(f"Connection to the API failed: {error}")
        case openai.APIError():
            return NetworkError(str(error))
        case httpx.HTTPError() | ConnectionError() | TimeoutError():
            return NetworkError(str(error))
        case _:
            return ProtocolError(f"{type(error).__name__}: {error}")


class ApiStream:
    """
    A single-consumer, non-restartable sequence of normalized chunks.

    Chunks are produced lazily by the adapter's generator, so network I/O happens on the
    first `next()`. Any failure ends the sequence: the error is raised once as an
    ApiError and every later `next()` raises StopIteration.
    """

    def __init__(self, chunks: Iterator[ApiStreamChunk]):
        self._chunks = chunks
        self._claimed = False
        self._closed = False
        self._failed: ApiError | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def failed(self) -> ApiError | None:
        return self._failed

    def __iter__(self) -> Self:
        if self._claimed:
            raise RuntimeError("ApiStream supports a single consumer and cannot be iterated twice.")
        self._claimed = True
        return self

    def __next__(self) -> ApiStreamChunk:
        if self._closed:
            raise StopIteration
        try:
            return next(self._chunks)
        except StopIteration:
            self.close()
            raise
        except ApiError as e:
            self._fail(e)
            raise
        except Exception as e:
            error = translate_exception(e)
            self._fail(error)
            raise error from e

    def _fail(self, error: ApiError) -> None:
        self._failed = error
        logger.debug("Stream terminated abnormally: %s", error.message)
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._chunks, "close", None)
        if callable(close):
            _ = close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
