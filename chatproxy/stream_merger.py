"""Rebuild one logical reply from a captured chat-completion response body.

The upstream answers either with a single JSON document or with an event
stream of ``data: {...}`` frames terminated by ``data: [DONE]``. Frames are
folded in arrival order: scalar fields keep the last non-empty value seen and
delta content is concatenated.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .models import (
    ChatCompletionResponse,
    MergedReply,
    RawFallback,
    ReconstructedReply,
    ReplyMessage,
    StreamFrame,
    StructuredReply,
)

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_PAYLOAD = "[DONE]"
MIN_STREAM_FRAMES = 3


def split_lines(body: bytes) -> List[str]:
    return body.decode("utf-8", errors="replace").split("\n")


def _strip_data_prefix(line: str) -> str:
    return line[len(DATA_PREFIX):].strip()


def _is_done(line: str) -> bool:
    return line.startswith(DATA_PREFIX) and _strip_data_prefix(line) == DONE_PAYLOAD


def _parse_frame(payload: str) -> Optional[StreamFrame]:
    try:
        return StreamFrame.model_validate_json(payload)
    except ValidationError:
        return None


def is_event_stream(lines: List[str]) -> bool:
    """Return True once MIN_STREAM_FRAMES well-formed data frames are seen.

    Lines without the ``data:`` prefix are ignored. The scan stops at the
    first data line that is not a valid frame.
    """
    count = 0
    for line in lines:
        line = line.strip()
        if _is_done(line):
            continue
        if not line.startswith(DATA_PREFIX):
            continue
        if _parse_frame(_strip_data_prefix(line)) is None:
            break
        count += 1
        if count >= MIN_STREAM_FRAMES:
            return True
    return False


def filter_frames(lines: List[str]) -> List[str]:
    """Return the JSON payloads of all data lines, in order."""
    payloads = []
    for line in lines:
        line = line.strip()
        if not line or _is_done(line):
            continue
        if not line.startswith(DATA_PREFIX):
            logger.debug("Skipping non-data stream line: %s", line[:120])
            continue
        payloads.append(_strip_data_prefix(line))
    return payloads


def _merge_call_fragment(target: Dict[str, Any], fragment: Dict[str, Any]) -> None:
    """Apply a function-call fragment: names are set once, arguments append."""
    name = fragment.get("name")
    if name:
        target["name"] = name
    arguments = fragment.get("arguments")
    if isinstance(arguments, str):
        target["arguments"] = target.get("arguments", "") + arguments


def _merge_tool_call_delta(
    tool_calls: List[Dict[str, Any]], fragment: Dict[str, Any]
) -> None:
    index = fragment.get("index")
    existing = None
    if index is not None:
        existing = next((c for c in tool_calls if c.get("index") == index), None)
    elif tool_calls and not fragment.get("id"):
        # continuation fragment without index
        existing = tool_calls[-1]

    if existing is None:
        existing = {"index": index if index is not None else len(tool_calls)}
        tool_calls.append(existing)

    for key in ("id", "type"):
        if fragment.get(key):
            existing[key] = fragment[key]
    function = fragment.get("function")
    if isinstance(function, dict):
        _merge_call_fragment(existing.setdefault("function", {}), function)


def apply_frame(merged: MergedReply, frame: StreamFrame) -> None:
    """Fold one frame into the accumulator; empty values never overwrite."""
    if frame.id:
        merged.id = frame.id
    if frame.model:
        merged.model = frame.model
    if frame.created:
        merged.created = frame.created
    if frame.object:
        merged.object = frame.object
    if frame.system_fingerprint:
        merged.system_fingerprint = frame.system_fingerprint
    if not frame.choices:
        return
    merged.choices = list(frame.choices)

    delta = frame.choices[0].delta
    if delta.role:
        merged.role = delta.role
    if delta.content:
        merged.content += delta.content
    if delta.function_call:
        if merged.function_call is None:
            merged.function_call = {}
        _merge_call_fragment(merged.function_call, delta.function_call)
    for fragment in delta.tool_calls or []:
        if isinstance(fragment, dict):
            _merge_tool_call_delta(merged.tool_calls, fragment)


def merge_frames(payloads: List[str]) -> MergedReply:
    """Merge frame payloads strictly in the order given."""
    merged = MergedReply()
    for payload in payloads:
        frame = _parse_frame(payload)
        if frame is None:
            logger.warning("Skipping unparseable stream frame: [%s]", payload[:200])
            continue
        apply_frame(merged, frame)
    return merged


def parse_single_document(body: bytes) -> Optional[ChatCompletionResponse]:
    try:
        return ChatCompletionResponse.model_validate_json(body.strip())
    except ValidationError:
        return None


def reconstruct_reply(body: bytes) -> ReconstructedReply:
    """Interpret a captured response body as a structured reply if possible."""
    document = parse_single_document(body)
    if document is not None:
        if document.choices:
            return StructuredReply(messages=[c.message for c in document.choices])
        logger.warning("Response document has no choices; keeping raw body")
        return RawFallback(body=body)

    lines = split_lines(body)
    if is_event_stream(lines):
        merged = merge_frames(filter_frames(lines))
        message = ReplyMessage(
            role=merged.role or "assistant",
            content=merged.content,
            function_call=merged.function_call,
            tool_calls=merged.tool_calls or None,
        )
        return StructuredReply(messages=[message], merged=merged)

    logger.warning("Unrecognized response body (%d bytes); keeping raw body", len(body))
    return RawFallback(body=body)
