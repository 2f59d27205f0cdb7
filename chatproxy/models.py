"""Pydantic models for the chat-completion payloads the proxy reconstructs"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict


class ChatMessage(BaseModel):
    """Request message - permissive to support various OpenAI-compatible clients"""

    model_config = ConfigDict(extra="allow")

    role: str = ""
    content: Union[str, List[Any], None] = None


class ChatCompletionRequest(BaseModel):
    """Chat completion request; only the conversation is needed for transcripts"""

    model_config = ConfigDict(extra="allow")

    messages: List[ChatMessage]


class ReplyMessage(BaseModel):
    """Assistant message of a non-streaming reply"""

    model_config = ConfigDict(extra="allow")

    role: str = ""
    content: Union[str, List[Any], None] = None
    function_call: Optional[Dict[str, Any]] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None


class ReplyChoice(BaseModel):
    model_config = ConfigDict(extra="allow")

    index: int = 0
    message: ReplyMessage = ReplyMessage()
    finish_reason: Optional[str] = None


class ChatCompletionResponse(BaseModel):
    """Single-document chat completion reply"""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[ReplyChoice] = []


class StreamDelta(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None
    function_call: Optional[Dict[str, Any]] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None


class StreamChoice(BaseModel):
    index: int = 0
    delta: StreamDelta = StreamDelta()
    finish_reason: Optional[str] = None
    logprobs: Optional[Any] = None
    content_filter_results: Optional[Dict[str, Any]] = None


class StreamFrame(BaseModel):
    """One `data:` event of a streaming reply.

    Only fields carried by this fragment are set; None means "absent".
    """

    id: Optional[str] = None
    model: Optional[str] = None
    created: Optional[int] = None
    object: Optional[str] = None
    system_fingerprint: Optional[str] = None
    choices: List[StreamChoice] = []


@dataclass
class MergedReply:
    """Accumulated state of all frames of one streaming reply."""

    id: str = ""
    model: str = ""
    created: int = 0
    object: str = ""
    system_fingerprint: str = ""
    choices: List[StreamChoice] = field(default_factory=list)
    role: str = ""
    content: str = ""
    function_call: Optional[Dict[str, Any]] = None
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Structured dump of the recovered top-level fields."""
        return {
            "id": self.id,
            "model": self.model,
            "created": self.created,
            "object": self.object,
            "system_fingerprint": self.system_fingerprint,
            "choices": [c.model_dump() for c in self.choices],
        }


@dataclass(frozen=True)
class StructuredReply:
    """A reply with a known role/content per choice."""

    messages: List[ReplyMessage]
    merged: Optional[MergedReply] = None  # set when rebuilt from a stream


@dataclass(frozen=True)
class RawFallback:
    """A reply that could not be interpreted; kept verbatim."""

    body: bytes


ReconstructedReply = Union[StructuredReply, RawFallback]


@dataclass(frozen=True)
class CapturedResponse:
    """Upstream response held in memory so it can be read twice."""

    status_code: int
    headers: List[tuple]
    body: bytes
