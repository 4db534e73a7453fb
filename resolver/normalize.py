from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from resolver.config import CANONICAL_FIELDS


def pick_first(attrs: Mapping[str, Any], keys: Optional[Sequence[str]]) -> Optional[str]:
    if not keys:
        return None
    for key in keys:
        value = attrs.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def normalize_attributes(
    attrs: Optional[Mapping[str, Any]],
    field_map: Mapping[str, Sequence[str]],
    label: str,
    viewer_base: str,
) -> Optional[Dict[str, Any]]:
    """Map raw layer attributes onto the canonical parcel record.

    Returns None when no ``parcel_id`` alias carries a value, even if other
    fields resolved.
    """
    if not attrs:
        return None
    parcel_id = pick_first(attrs, field_map.get("parcel_id"))
    if not parcel_id:
        return None
    record: Dict[str, Any] = {"status": "ok", "parcel_id": parcel_id}
    for name in CANONICAL_FIELDS[1:]:
        value = pick_first(attrs, field_map.get(name))
        if value is not None:
            record[name] = value
    record["viewer_url"] = f"{viewer_base}?f=pjson"
    record["source"] = label
    record["raw"] = {"attrs": dict(attrs)}
    return record
