import json
from typing import Optional, Tuple


def parse_bool(s: str) -> bool:
    s = s.strip().lower()
    if s in ("true", "1", "on", "yes", "granted"): return True
    if s in ("false", "0", "off", "no", "denied"): return False
    try:
        return bool(json.loads(s))
    except Exception:
        return False


def parse_contacts(payload: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Accepts {"contact1": "...", "contact2": "..."}, ["...", "..."] or a
    comma separated string.
    """
    try:
        data = json.loads(payload)
    except ValueError:
        data = [part.strip() for part in payload.split(",")]

    if isinstance(data, dict):
        data = [data.get("contact1"), data.get("contact2")]
    if isinstance(data, (str, int, float)):
        data = [str(data)]
    if not isinstance(data, list):
        raise ValueError(f"Unsupported contacts payload: {payload!r}")
    values = [str(v) if v is not None else None for v in data[:2]]
    values += [None] * (2 - len(values))
    return values[0], values[1]
