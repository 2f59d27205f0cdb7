"""Render a request/reply exchange as a YAML-like text transcript."""

import copy
import json
from typing import Any, Dict, List

import yaml

from .models import ChatMessage, RawFallback, ReconstructedReply, ReplyMessage

MARGIN = "  "
METHOD_LABEL = "POST"


def indent(text: str, prefix: str = MARGIN) -> str:
    """Prefix every line of text, keeping line breaks as they are."""
    return prefix + text.replace("\n", "\n" + prefix)


def content_to_text(content: Any) -> str:
    """Flatten message content; non-text parts become a ``[type]`` marker."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict):
                if item.get("type") == "text" and isinstance(item.get("text"), str):
                    parts.append(item["text"])
                else:
                    parts.append(f"[{item.get('type', 'part')}]")
        return "\n".join(parts)
    return json.dumps(content, ensure_ascii=False)


def format_call(call: Dict[str, Any]) -> Dict[str, Any]:
    """Expand JSON-encoded ``arguments`` so they dump as nested data."""
    call = copy.deepcopy(call)
    target = call.get("function") if isinstance(call.get("function"), dict) else call
    arguments = target.get("arguments")
    if isinstance(arguments, str):
        try:
            parsed = json.loads(arguments)
        except ValueError:
            parsed = None
        if isinstance(parsed, (dict, list)):
            target["arguments"] = parsed
    return call


def _dump(data: Any) -> str:
    return yaml.safe_dump(
        data, sort_keys=False, allow_unicode=True, default_flow_style=False
    ).rstrip("\n")


def _literal(label: str, text: str) -> List[str]:
    return [f"{label}: |", indent(text)]


def render_messages(messages: List[ChatMessage]) -> str:
    lines: List[str] = []
    for message in messages:
        lines.append(f"- role: {message.role}")
        lines.append(indent("\n".join(_literal("content", content_to_text(message.content)))))
    return "\n".join(lines)


def _render_reply_message(message: ReplyMessage) -> List[str]:
    lines = [f"role: {message.role}"]
    lines += _literal("content", content_to_text(message.content))
    if message.function_call:
        lines.append("function_call:")
        lines.append(indent(_dump(format_call(message.function_call))))
    if message.tool_calls:
        lines.append("tool_calls:")
        lines.append(indent(_dump([format_call(c) for c in message.tool_calls])))
    return lines


def render_output(reply: ReconstructedReply) -> str:
    if isinstance(reply, RawFallback):
        raw = reply.body.decode("utf-8", errors="replace")
        return "\n".join(_literal("raw_response", raw))

    if reply.merged is not None:
        message = reply.messages[0]
        lines = _render_reply_message(message)
        if not message.content and not message.function_call and not message.tool_calls:
            # stream produced no text; show what the frames did carry
            dump = json.dumps(reply.merged.to_dict(), indent=2, ensure_ascii=False)
            lines += _literal("raw_response", dump)
        return "\n".join(lines)

    if len(reply.messages) == 1:
        return "\n".join(_render_reply_message(reply.messages[0]))

    blocks = []
    for message in reply.messages:
        block = indent("\n".join(_render_reply_message(message)))
        blocks.append("-" + block[1:])
    return "\n".join(blocks)


def render_transcript(
    request_path: str, messages: List[ChatMessage], reply: ReconstructedReply
) -> str:
    """Build the full transcript text for one exchange."""
    return (
        "request:\n"
        f"{MARGIN}method: {METHOD_LABEL}\n"
        f"{MARGIN}url: {request_path}\n"
        "input:\n"
        f"{indent(render_messages(messages))}\n"
        "output:\n"
        f"{indent(render_output(reply))}\n"
    )
