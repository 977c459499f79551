"""Newline-delimited JSON decoding for the engine event stream.

The engine writes one JSON document per line on /events, but the carrier
delivers bytes in arbitrary chunks: a line can be split anywhere, including
inside a multi-byte UTF-8 sequence. iter_json_lines() reassembles lines and
yields each decoded document.

Wire format:
    {"Type":"container","Action":"start",...}\n
    {"Type":"image","Action":"pull",...}\n
"""

from __future__ import annotations

import codecs
import contextlib
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from typing import Any

from .query import build_query
from .transport import Transport

logger = logging.getLogger(__name__)

_SKIP = object()


def _parse_line(line: str) -> Any:
    stripped = line.strip()
    if not stripped:
        return _SKIP
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        # truncated or interleaved output; not fatal to the stream
        logger.debug(f"Skipping malformed event line: {stripped[:80]}")
        return _SKIP


async def iter_json_lines(stream: AsyncIterable[bytes]) -> AsyncIterator[Any]:
    """Yield each JSON document of a newline-delimited byte stream.

    Blank and unparseable lines are skipped. The stream is closed when the
    generator finishes, fails, or is closed early by the consumer; wrap it in
    ``contextlib.aclosing`` when breaking out of the loop.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    try:
        async for chunk in stream:
            buffer += decoder.decode(chunk)
            *lines, buffer = buffer.split("\n")
            for line in lines:
                record = _parse_line(line)
                if record is not _SKIP:
                    yield record

        buffer += decoder.decode(b"", final=True)
        record = _parse_line(buffer)
        if record is not _SKIP:
            yield record
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()


async def stream_events(
    transport: Transport,
    query: Mapping[str, Any] | None = None,
) -> AsyncIterator[Any]:
    """Subscribe to /events and yield decoded event records.

    Each call issues a new request. Pass ``{"stream": False}`` to receive
    only past events (with ``since``/``until``) and end the sequence.
    """
    stream = await transport.request_stream("GET", f"/events{build_query(query)}")
    async with contextlib.aclosing(iter_json_lines(stream)) as records:
        async for record in records:
            yield record
