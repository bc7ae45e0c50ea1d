import json
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def extract_json_object(raw: str) -> dict[str, Any]:
    """Pull the outermost {...} block out of a model reply and parse it.

    Raises ValueError when the text holds no JSON object.
    """
    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start < 0 or end <= start:
        raise ValueError("no JSON object in response")
    parsed = json.loads(raw[start:end])
    if not isinstance(parsed, dict):
        raise ValueError("response is not a JSON object")
    return parsed
