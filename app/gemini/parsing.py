import json
import re
from typing import Any, Dict, Optional

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def parse_model_output(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse model output into a JSON object.

    Tries the raw text first, then once more with markdown code fences
    stripped. Returns None when neither yields a JSON object.
    """
    if not text or not text.strip():
        return None
    parsed = _loads_object(text)
    if parsed is not None:
        return parsed
    return _loads_object(_FENCE.sub("", text).strip())
