import collections
import json


class MalformedRecord(ValueError):
    """Raised when a stored resume record cannot be decoded."""


ResumeRecord = collections.namedtuple(
    "ResumeRecord", ["fingerprint", "resume_id", "hash_name", "hash_state"]
)

# Field name on disk for each ResumeRecord attribute
_WIRE_KEYS = (
    ("fingerprint", "fprint"),
    ("resume_id", "id"),
    ("hash_name", "hname"),
    ("hash_state", "hstate"),
)


def encode(record):
    """Serialize a ResumeRecord to compact, key-sorted UTF-8 JSON."""
    payload = {wire: getattr(record, attr) for attr, wire in _WIRE_KEYS}
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode(
        "utf-8"
    )


def decode(data):
    """Parse bytes produced by encode().

    Raises MalformedRecord for anything that is not a complete record.
    """
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedRecord(f"invalid resume record: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedRecord("resume record is not a JSON object")
    values = {}
    for attr, wire in _WIRE_KEYS:
        value = payload.get(wire)
        if not isinstance(value, str):
            raise MalformedRecord(f"resume record field {wire!r} missing or invalid")
        values[attr] = value
    return ResumeRecord(**values)
