import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from rag_chat.logger import GLOBAL_LOGGER as log

FRAME_SEPARATOR = "\n\n"
DATA_PREFIX = "data: "


class SSEBuffer:
    """
    Incremental parser for `data: <json>\\n\\n` frames.

    Network reads can end anywhere, including inside a frame; the unfinished
    tail is kept until the next feed() completes it.
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> List[Dict[str, Any]]:
        self._buffer += text
        frames = self._buffer.split(FRAME_SEPARATOR)
        self._buffer = frames.pop()

        events = []
        for frame in frames:
            if not frame.startswith(DATA_PREFIX):
                continue
            try:
                events.append(json.loads(frame[len(DATA_PREFIX):]))
            except json.JSONDecodeError:
                log.debug("Skipping unparsable SSE frame | frame=%r", frame[:80])
        return events

    @property
    def pending(self) -> str:
        return self._buffer


@dataclass
class StreamingReply:
    """
    Client-side state of one streamed answer: idle -> streaming -> done | error.
    """

    state: str = "idle"
    content: str = ""
    sources: List[Dict[str, Any]] = field(default_factory=list)
    message_id: Optional[str] = None
    error: Optional[str] = None

    def start(self) -> None:
        self.state = "streaming"
        self.content = ""
        self.sources = []
        self.message_id = None
        self.error = None

    def apply(self, event: Dict[str, Any]) -> None:
        """Fold one parsed SSE event into the reply."""
        kind = event.get("type")
        data = event.get("data")
        if kind == "content":
            self.content += data or ""
        elif kind == "sources":
            self.sources = list(data or [])
        elif kind == "done":
            self.message_id = (data or {}).get("messageId")
            self.state = "done"
        elif kind == "error":
            self.fail((data or {}).get("message") or "Failed to get response")

    def fail(self, message: str) -> None:
        self.error = message
        self.state = "error"

    def finish(self) -> None:
        """Close the reply once the stream ends; no `done` event means it failed."""
        if self.state == "streaming":
            self.fail("Failed to get response")

    @property
    def is_streaming(self) -> bool:
        return self.state == "streaming"
