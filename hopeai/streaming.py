import json
from typing import Callable, List, Optional

from hopeai.schemas import ProgressEvent


class ResponseStreamManager:
    """Collects streamed model output and relays every chunk to a listener."""

    def __init__(self):
        self.chunks: List[str] = []
        self.events: List[ProgressEvent] = []
        self._on_chunk: Optional[Callable[[str], None]] = None
        self._on_progress: Optional[Callable[[ProgressEvent], None]] = None

    def add_chunk(self, chunk: str) -> None:
        self.chunks.append(chunk)
        if self._on_chunk:
            self._on_chunk(chunk)

    def add_progress(self, step: str, progress: int, message: str) -> None:
        event = ProgressEvent(step=step, progress=progress, message=message)
        self.events.append(event)
        if self._on_progress:
            self._on_progress(event)

    def get_full_response(self) -> str:
        return "".join(self.chunks)

    def on_chunk(self, callback: Callable[[str], None]) -> None:
        self._on_chunk = callback

    def on_progress(self, callback: Callable[[ProgressEvent], None]) -> None:
        self._on_progress = callback

    def reset(self, keep_listeners: bool = False) -> None:
        self.chunks = []
        self.events = []
        if not keep_listeners:
            self._on_chunk = None
            self._on_progress = None


# Shared manager for callers that ask for streaming without supplying their own
response_stream_manager = ResponseStreamManager()


def sse_event(event: str, data) -> str:
    """Format one Server-Sent-Events frame. Data is always sent as JSON."""
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"
