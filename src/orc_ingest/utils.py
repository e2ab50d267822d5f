import hashlib
import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:
    return utc_now().replace(tzinfo=None)


def calculate_spec_hash(spec: BaseModel) -> str:
    """
    Hashes the dictionary representation of a parse spec.
    Effectively: MD5(YAML Content - Comments - Whitespace - Defaults)
    """
    data = spec.model_dump(exclude_defaults=True, mode="json")
    json_str = json.dumps(data, sort_keys=True, default=deterministic_serializer)
    return hashlib.md5(json_str.encode("utf-8")).hexdigest()


def deterministic_serializer(obj: Any) -> Any:
    """Serialize types JSON doesn't handle natively, deterministically."""
    if isinstance(obj, (set, frozenset)):
        return sorted(list(obj), key=str)
    return str(obj)
