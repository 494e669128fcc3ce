"""
Extraction of JSON values from free-form model output.

Models frequently wrap JSON in Markdown fences or surround it with prose.
`extract_json` applies explicit stages:

1. strip code-fence markers
2. trim everything before the first `[`/`{` and after the last `]`/`}`
3. parse
4. on failure, decode the first complete `[...]` value, nested arrays included
"""

import json
import re
from typing import Any, Optional

_FENCE_RE = re.compile(r"```[a-zA-Z]*")
_DECODER = json.JSONDecoder()


def strip_code_fences(text: str) -> str:
    """Remove Markdown code-fence markers (```json, ```)."""
    return _FENCE_RE.sub("", text).strip()


def trim_to_json(text: str) -> str:
    """Cut the text down to the outermost JSON-looking span."""
    starts = [index for index in (text.find("["), text.find("{")) if index != -1]
    if not starts:
        return text.strip()
    end = max(text.rfind("]"), text.rfind("}"))
    start = min(starts)
    if end < start:
        return text[start:].strip()
    return text[start:end + 1]


def recover_first_array(text: str) -> Optional[Any]:
    """Decode the first complete `[...]` value in the text, or return None."""
    start = text.find("[")
    while start != -1:
        try:
            value, _end = _DECODER.raw_decode(text, start)
            return value
        except ValueError:
            start = text.find("[", start + 1)
    return None


def extract_json(text: Optional[str]) -> Optional[Any]:
    """
    Extract the JSON value contained in a model response.

    Returns:
        The parsed value, or None when no stage could parse it
    """
    if not text or not text.strip():
        return None

    cleaned = strip_code_fences(text)
    try:
        return json.loads(trim_to_json(cleaned))
    except ValueError:
        pass
    return recover_first_array(cleaned)
