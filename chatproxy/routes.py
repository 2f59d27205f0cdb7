"""Recognize the chat-completion route whose exchanges get transcribed."""

import re
from typing import Tuple

# /openai/deployments/{model}/chat/completions?api-version=...
_CHAT_COMPLETIONS_RE = re.compile(r"/openai/deployments/([^/]+)/chat/completions")


def match_chat_completion(path: str) -> Tuple[bool, str]:
    """Return (matched, model) for a request path; query strings are not expected."""
    match = _CHAT_COMPLETIONS_RE.fullmatch(path)
    if match is None:
        return False, ""
    return True, match.group(1)
