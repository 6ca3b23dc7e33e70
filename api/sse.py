import json
from typing import Any

from fastapi.encoders import jsonable_encoder

SSE_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # stop nginx from buffering the stream
    "X-Accel-Buffering": "no",
}


def format_sse(event: Any) -> str:
    """One SSE frame: `data: <json>` followed by a blank line."""
    payload = jsonable_encoder(event, by_alias=True)
    return f"data: {json.dumps(payload)}\n\n"


def sse_error(message: str) -> str:
    return format_sse({"type": "error", "data": {"message": message}})
