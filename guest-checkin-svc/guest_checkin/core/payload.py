from __future__ import annotations
import json
import re
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

from .errors import InvalidPayload

# 8-4-4-4-12 hex; codes are opaque beyond this shape
UUID_RE = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")

JSON_NAME_KEYS = ("name", "guest", "guest_name")
JSON_CODE_KEYS = ("uuid", "code", "id")
INVITE_SEGMENT = "i"

@dataclass(frozen=True)
class ScannedPayload:
    code: str
    name_hint: str | None = None
    form: str = "bare"  # json | pipe | url | bare

def extract_uuid(text: str | None) -> str | None:
    if not text:
        return None
    m = UUID_RE.search(str(text))
    return m.group(0).lower() if m else None

def _first_truthy(obj: dict, keys) -> str:
    for k in keys:
        v = obj.get(k)
        if v not in (None, ""):
            return str(v).strip()
    return ""

def _from_json(raw: str) -> ScannedPayload | None:
    try:
        obj = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    code = extract_uuid(_first_truthy(obj, JSON_CODE_KEYS))
    if not code:
        return None
    name = _first_truthy(obj, JSON_NAME_KEYS)
    return ScannedPayload(code=code, name_hint=name or None, form="json")

def _from_pipe(raw: str) -> ScannedPayload | None:
    if "|" not in raw:
        return None
    left, right = (part.strip() for part in raw.split("|", 1))
    left_code, right_code = extract_uuid(left), extract_uuid(right)
    code = right_code or left_code
    if not code:
        return None
    # tolerate CODE|NAME as well as NAME|CODE
    name = right if (not right_code and code == left_code) else left
    return ScannedPayload(code=code, name_hint=name or None, form="pipe")

def _from_url(raw: str) -> ScannedPayload | None:
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    segments = [s for s in parts.path.split("/") if s]
    if not segments:
        return None
    idx = next((n for n, s in enumerate(segments) if s.lower() == INVITE_SEGMENT), -1)
    if 0 <= idx < len(segments) - 1:
        candidate = segments[idx + 1]
    else:
        candidate = segments[-1]
    code = extract_uuid(unquote(candidate))
    if not code:
        return None
    return ScannedPayload(code=code, form="url")

def parse_payload(raw: str | None) -> ScannedPayload:
    """
    Extract the guest code from a scanned payload.

    Accepted shapes, first structural match wins:
      1) JSON object {name|guest|guest_name, uuid|code|id}
      2) NAME|UUID (or UUID|NAME)
      3) URL, code after the /i/ segment or in the last segment
      4) any text containing a UUID

    Raises InvalidPayload when none of them yields a code.
    """
    if raw is not None and not isinstance(raw, str):
        raise InvalidPayload(raw, "payload is not text")
    text = (raw or "").strip()
    if not text:
        raise InvalidPayload(raw, "empty payload")

    for rule in (_from_json, _from_pipe, _from_url):
        found = rule(text)
        if found:
            return found

    code = extract_uuid(text)
    if code:
        return ScannedPayload(code=code, form="bare")
    raise InvalidPayload(raw)

def normalize(raw: str | None) -> str:
    """Canonical guest code for *raw* (lowercase); raises InvalidPayload."""
    return parse_payload(raw).code
