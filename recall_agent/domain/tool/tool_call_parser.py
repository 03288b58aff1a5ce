"""
Recovers a tool invocation from free-form model text.

The model is asked to answer with ``{"provider": ..., "tool": ..., "args": {...}}``
either in a ```json fenced block or inline. Anything that does not parse into
that shape means "no tool call"; nothing here raises.
"""

from typing import Any, Iterator, List, Optional, Tuple
import json
import re

from recall_agent.domain.models.turn_state import PendingToolCall


_FENCED_JSON = re.compile(r"```(?:json|JSON)\s*(.*?)\s*```", re.DOTALL)
_DECODER = json.JSONDecoder()


def _to_tool_call(payload: Any) -> Optional[PendingToolCall]:
    if not isinstance(payload, dict):
        return None

    # "server" is the older spelling of "provider"
    provider = payload.get("provider", payload.get("server"))
    tool = payload.get("tool")
    if not isinstance(provider, str) or not provider.strip():
        return None
    if not isinstance(tool, str) or not tool.strip():
        return None

    args = payload.get("args", payload.get("arguments"))
    if args is None:
        args = {}
    if not isinstance(args, dict):
        return None

    return PendingToolCall(provider_name=provider.strip(), tool_name=tool.strip(), arguments=args)


def _candidates(text: str) -> Iterator[Tuple[Any, int, int]]:
    """Yield (payload, start, end) for fenced blocks, then inline objects"""

    parsed_fences: List[Tuple[int, int]] = []
    for match in _FENCED_JSON.finditer(text):
        try:
            payload = json.loads(match.group(1))
        except ValueError:
            continue
        parsed_fences.append((match.start(), match.end()))
        yield payload, match.start(), match.end()

    position = text.find("{")
    while position != -1:
        fence_end = next((end for start, end in parsed_fences if start <= position < end), None)
        if fence_end is not None:
            position = text.find("{", fence_end)
            continue
        try:
            payload, end = _DECODER.raw_decode(text, position)
        except ValueError:
            position = text.find("{", position + 1)
            continue
        yield payload, position, end
        # Objects nested in a decoded value are never calls of their own
        position = text.find("{", end)


def find_tool_call(text: str) -> Optional[Tuple[PendingToolCall, int, int]]:
    """Locate the first valid tool call and its span in ``text``"""

    if not text or "{" not in text:
        return None

    for payload, start, end in _candidates(text):
        call = _to_tool_call(payload)
        if call is not None:
            return call, start, end
    return None


def extract_tool_call(text: str) -> Optional[PendingToolCall]:
    """Parse a tool call out of a model reply, or None"""

    found = find_tool_call(text)
    return found[0] if found else None


def strip_tool_call(text: str) -> str:
    """Reply text with the tool-call block removed"""

    found = find_tool_call(text)
    if found is None:
        return text.strip()
    _, start, end = found
    return (text[:start] + text[end:]).strip()
