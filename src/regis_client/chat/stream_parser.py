"""Incremental parser for the backend's server-sent-event stream."""

import codecs
import json
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Union

from regis_client.chat.models import SearchResult
from regis_client.utils.logger import logger

EVENT_SEPARATOR = "\n\n"
DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

ChunkCallback = Callable[[str], None]


@dataclass(frozen=True)
class ChunkEvent:
    """Partial response text."""
    text: str


@dataclass(frozen=True)
class DoneEvent:
    """
    Terminal event. Metadata fields are None when the server omitted them,
    so only the fields present are merged into the stream state.
    """
    model_used: Optional[str] = None
    sources: Optional[List[SearchResult]] = None
    grounding_performed: Optional[bool] = None


@dataclass(frozen=True)
class ErrorEvent:
    """Error reported by the server inside the stream."""
    message: str


@dataclass(frozen=True)
class EmptyEvent:
    """Blank, comment, non-data or unrecognized line."""


ParsedEvent = Union[ChunkEvent, DoneEvent, ErrorEvent, EmptyEvent]

EMPTY = EmptyEvent()


@dataclass(frozen=True)
class StreamState:
    """
    Running state of one streamed response.

    Attributes:
        buffer: Unterminated tail of the text received so far
        full_response: Accumulated chunk text
        model_used: Model reported by the done event, if any
        sources: Search results in the order the server ranked them
        grounding_performed: Whether the answer was grounded in search
        error: Error message from an error event
        is_done: Terminal flag; no chunk is applied once set
    """
    buffer: str = ""
    full_response: str = ""
    model_used: Optional[str] = None
    sources: List[SearchResult] = field(default_factory=list)
    grounding_performed: bool = False
    error: Optional[str] = None
    is_done: bool = False


def create_stream_state() -> StreamState:
    return StreamState()


def parse_sse_line(line: str) -> ParsedEvent:
    """
    Classify a single line of a completed SSE event block.

    Malformed lines never raise; they parse to ``EMPTY`` so a single bad
    line cannot abort the stream.

    Args:
        line: Raw line, including the ``data:`` prefix

    Returns:
        The parsed event
    """
    if not line.strip() or line.startswith(":"):
        return EMPTY
    if not line.startswith(DATA_PREFIX):
        return EMPTY

    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return DoneEvent()
    if not payload:
        return EMPTY

    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug(f"Ignoring malformed SSE payload: {payload[:80]}")
        return EMPTY

    if not isinstance(event, dict):
        return EMPTY

    if event.get("error"):
        return ErrorEvent(message=str(event["error"]))

    done = event.get("done", False)
    if done is True:
        sources = event.get("sources")
        grounding = event.get("grounding_performed")
        return DoneEvent(
            model_used=event.get("model_used"),
            sources=list(sources) if isinstance(sources, list) else None,
            grounding_performed=bool(grounding) if grounding is not None else None,
        )

    if done is False and "chunk" in event:
        chunk = event["chunk"]
        if isinstance(chunk, str) and chunk:
            return ChunkEvent(text=chunk)

    return EMPTY


def process_sse_chunk(
    state: StreamState,
    chunk: str,
    on_chunk: Optional[ChunkCallback] = None,
) -> StreamState:
    """
    Fold a raw text chunk into the stream state.

    Chunks need not align with event boundaries: the unterminated tail is
    carried in ``buffer`` until the separator arrives, so the final state
    does not depend on how the stream was split.

    Args:
        state: Current stream state (not modified)
        chunk: Raw text received from the network
        on_chunk: Called with each piece of response text as it is parsed

    Returns:
        The new stream state
    """
    if state.is_done:
        return state

    buffer = (state.buffer + chunk).replace("\r\n", "\n")
    blocks = buffer.split(EVENT_SEPARATOR)
    tail = blocks.pop()

    full_response = state.full_response
    model_used = state.model_used
    sources = state.sources
    grounding_performed = state.grounding_performed

    for block in blocks:
        for line in block.split("\n"):
            event = parse_sse_line(line)

            if isinstance(event, ErrorEvent):
                logger.warning(f"Stream reported error: {event.message}")
                return replace(
                    state,
                    buffer=tail,
                    full_response=full_response,
                    error=event.message,
                    is_done=True,
                )

            if isinstance(event, ChunkEvent):
                full_response += event.text
                if on_chunk:
                    on_chunk(event.text)

            elif isinstance(event, DoneEvent):
                if event.model_used:
                    model_used = event.model_used
                if event.sources is not None:
                    sources = event.sources
                if event.grounding_performed is not None:
                    grounding_performed = event.grounding_performed
                return StreamState(
                    buffer=tail,
                    full_response=full_response,
                    model_used=model_used,
                    sources=list(sources),
                    grounding_performed=grounding_performed,
                    is_done=True,
                )

    return replace(state, buffer=tail, full_response=full_response)


def flush_stream_state(
    state: StreamState,
    on_chunk: Optional[ChunkCallback] = None,
) -> StreamState:
    """Terminate a trailing event the server closed without a blank line."""
    if state.is_done or not state.buffer.strip():
        return state
    return process_sse_chunk(state, EVENT_SEPARATOR, on_chunk)


class SSEDecoder:
    """
    Feeds network bytes through the fold.

    Holds an incremental UTF-8 decoder so a multi-byte character split
    across two reads is decoded once both halves have arrived.
    """

    def __init__(self, on_chunk: Optional[ChunkCallback] = None):
        self.on_chunk = on_chunk
        self.state = create_stream_state()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes) -> StreamState:
        text = self._decoder.decode(data)
        if text:
            self.state = process_sse_chunk(self.state, text, self.on_chunk)
        return self.state

    def close(self) -> StreamState:
        text = self._decoder.decode(b"", final=True)
        if text:
            self.state = process_sse_chunk(self.state, text, self.on_chunk)
        self.state = flush_stream_state(self.state, self.on_chunk)
        return self.state
