"""
Codec — serialize and deserialize job payloads to/from stored text using Pydantic v2.

Payloads are validated as pydantic ``JsonValue`` and dumped in a canonical
form: object keys are sorted recursively and the compact separator style is
used. Payloads with the same JSON value therefore serialize to the same text,
which is what the storage-side exact-match search relies on.

Wire format (one row of the job table):
---------------------------------------
    id  | job
    ----+-------------------------------
    7   | {"to":"user@example.com","n":1}    <-- sorted keys, no whitespace
"""
from __future__ import annotations

from pydantic import JsonValue, TypeAdapter, ValidationError

from persistq.domain.errors import PayloadError

_PAYLOAD: TypeAdapter[JsonValue] = TypeAdapter(JsonValue)


def _canonical(value: JsonValue) -> JsonValue:
    match value:
        case dict():
            return {k: _canonical(value[k]) for k in sorted(value)}
        case list():
            return [_canonical(v) for v in value]
        case _:
            return value


def validate(payload: object) -> JsonValue:
    """Coerce `payload` into a canonical JSON value. Raises PayloadError."""
    try:
        return _canonical(_PAYLOAD.validate_python(payload))
    except ValidationError as exc:
        raise PayloadError(
            f"payload must be JSON-serializable, got {type(payload).__name__}"
        ) from exc


def encode(payload: object) -> str:
    """Serialize a payload to its canonical JSON text."""
    return _PAYLOAD.dump_json(validate(payload)).decode("utf-8")


def decode(text: str) -> JsonValue:
    """Parse stored JSON text back into a payload. Raises PayloadError."""
    try:
        return _PAYLOAD.validate_json(text)
    except ValidationError as exc:
        raise PayloadError(f"stored job is not valid JSON: {text!r}") from exc
