from dataclasses import dataclass
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


@dataclass
class EmbeddingResult:
    embedding: List[float]
    token_count: int


class SearchResult(CamelModel):
    id: str
    content: str
    score: float
    document_id: str
    metadata: Optional[dict[str, Any]] = None


class CompletionUsage(CamelModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class CompletionResult(CamelModel):
    content: str
    sources: List[SearchResult]
    model: str
    usage: Optional[CompletionUsage] = None


StreamEventType = Literal["content", "sources", "done", "error"]


class StreamChunk(BaseModel):
    type: StreamEventType
    data: Any = None
