#!/usr/bin/env python3
"""Serializer - Canonical JSON encoding of the entry collection.

The output of ``encode`` is what gets encrypted; ``decode`` is only ever
fed authenticated plaintext, so a failure here means a format mismatch,
not a wrong password.
"""

import json
from typing import Any, Dict, Iterable, List

from .entry import Entry
from .errors import MalformedData

FORMAT_VERSION = 1

ENTRY_FIELDS = ("id", "label", "account", "secret", "site", "tips", "created_at", "updated_at")


def encode(entries: Iterable[Entry]) -> bytes:
    """Encode entries to UTF-8 JSON, preserving order."""
    obj = {
        "format": FORMAT_VERSION,
        "entries": [{name: getattr(e, name) for name in ENTRY_FIELDS} for e in entries],
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode('utf-8')


def _entry_from_dict(obj: Dict[str, Any]) -> Entry:
    if not isinstance(obj, dict):
        raise MalformedData("entry is not an object")

    values = {}
    for name in ENTRY_FIELDS:
        if name not in obj:
            raise MalformedData(f"entry missing field: {name}")
        if not isinstance(obj[name], str):
            raise MalformedData(f"entry field {name} is not a string")
        values[name] = obj[name]

    if not values["id"]:
        raise MalformedData("entry has empty id")

    return Entry(**values)


def decode(data: bytes) -> List[Entry]:
    """Decode bytes produced by ``encode``.

    Raises:
        MalformedData: If the payload is not a well-formed entry document

    """
    try:
        obj = json.loads(data.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedData(f"invalid payload: {e}") from e

    if not isinstance(obj, dict):
        raise MalformedData("payload is not an object")
    if obj.get("format") != FORMAT_VERSION:
        raise MalformedData(f"unsupported payload format: {obj.get('format')!r}")
    if not isinstance(obj.get("entries"), list):
        raise MalformedData("payload has no entry list")

    entries = [_entry_from_dict(item) for item in obj["entries"]]

    seen = set()
    for entry in entries:
        if entry.id in seen:
            raise MalformedData(f"duplicate entry id: {entry.id}")
        seen.add(entry.id)

    return entries
