"""
Canonical serialization of responses.

Turns a raw sample into the string key that votes are tallied under.
Structured values are encoded as canonical JSON so that equal data always
produces an equal key.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel


class CanonicalJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for values that the standard encoder rejects.

    Keys are sorted and separators compacted by to_canonical_json(); this
    class only widens the set of encodable types.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()

        if isinstance(obj, Enum):
            return obj.value

        if isinstance(obj, Decimal):
            return float(obj)

        if isinstance(obj, BaseModel):
            return obj.model_dump()

        if isinstance(obj, bytes):
            return obj.hex()

        if isinstance(obj, (set, frozenset)):
            return sorted(obj)

        return super().default(obj)


def to_canonical_json(data: Any) -> str:
    """
    Convert data to a canonical JSON string.

    Sorted keys, no whitespace between tokens, non-ASCII kept as-is.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump()

    return json.dumps(
        data,
        cls=CanonicalJSONEncoder,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def default_serialize(response: Any) -> str:
    """
    Default vote key: strings pass through, everything else is JSON-encoded.

    Values that cannot be encoded fall back to str().
    """
    if isinstance(response, str):
        return response
    if response is None:
        return str(response)
    if isinstance(response, BaseModel):
        response = response.model_dump()
    try:
        return json.dumps(response, cls=CanonicalJSONEncoder, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(response)
