import re
import json
from typing import Any, Dict, List

_BULLET = re.compile(r"^\s*(?:[-*•]\s*|\d+[.)]\s+)")


class ResponseParseError(ValueError):
    """The model answer did not contain a usable JSON object."""


def message_text(message) -> str:
    """Return the text of a LangChain message or chunk, whatever shape its content has."""
    content = getattr(message, "content", message)
    # Hardwiring fix for list response
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                parts.append(part.get("text", ""))
            else:
                parts.append(str(part))
        return "".join(parts)
    return content if isinstance(content, str) else str(content)


def parse_json_response(content: str) -> Dict[str, Any]:
    """
    Extract and parse the JSON object in a model answer.

    The model may wrap the JSON in prose or in a ```json fence, so the
    outermost {...} block is taken.

    Raises:
        ResponseParseError: if there is no block or it is not valid JSON
    """
    match = re.search(r"\{[\s\S]*\}", content or "")
    if not match:
        raise ResponseParseError("No JSON object found in the response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Invalid JSON in the response: {e}") from e
    if not isinstance(parsed, dict):
        raise ResponseParseError("The JSON in the response is not an object")
    return parsed


def split_lines(text: str) -> List[str]:
    """Turn list-like model output into clean items, one per non-empty line."""
    items = []
    for line in text.split("\n"):
        line = _BULLET.sub("", line).strip()
        if line:
            items.append(line)
    return items


def format_references(references: List[Dict]) -> str:
    """Format clinical references as plain text for console output."""
    if not references:
        return "### References\nNo references were provided."

    formatted = ["### References\n"]
    seen = set()
    for ref in references:
        source = ref.get("source") or "Unspecified source"
        citation = ref.get("citation") or "No specific citation"
        key = (source, citation)
        if key in seen:
            continue
        seen.add(key)
        line = f"[{len(seen)}] **{source}**: {citation}"
        if ref.get("link"):
            line += f" ({ref['link']})"
        formatted.append(line)

    return "\n".join(formatted)
