"""
sse.py — Server-Sent Events Decoding

Turns the line stream of a `text/event-stream` response into named events,
following the field rules of the EventSource format (event, data, id, retry,
comment lines, blank-line dispatch).
"""

from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

import httpx


@dataclass(frozen=True)
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Incremental decoder fed one line at a time, without line terminators."""

    def __init__(self):
        self._event = ""
        self._data: List[str] = []
        self._last_event_id: Optional[str] = None
        self._retry: Optional[int] = None

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        if not line:
            # Blank line dispatches the buffered event
            if not self._event and not self._data and self._retry is None:
                return None
            sse = ServerSentEvent(
                event=self._event or "message",
                data="\n".join(self._data),
                id=self._last_event_id,
                retry=self._retry,
            )
            self._event = ""
            self._data = []
            self._retry = None
            return sse

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None


async def aiter_sse(response: httpx.Response) -> AsyncIterator[ServerSentEvent]:
    """
    Yields events from a streaming httpx response as they arrive.

    Args:
        response (httpx.Response): A response opened with `client.stream(...)`.

    Yields:
        ServerSentEvent: Each dispatched event, in arrival order.
    """
    decoder = SSEDecoder()
    async for line in response.aiter_lines():
        sse = decoder.decode(line.rstrip("\r\n"))
        if sse is not None:
            yield sse
