import dataclasses
import json
from typing import Any


def _default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return str(value)


def to_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=True, default=_default)


def from_json(value: str, fallback: Any):
    try:
        return json.loads(value) if value else fallback
    except ValueError:
        return fallback
