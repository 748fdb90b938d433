from __future__ import annotations

import json

import pytest

from guest_checkin.core.errors import InvalidPayload
from guest_checkin.core.payload import extract_uuid, normalize, parse_payload

CODE = "550e8400-e29b-41d4-a716-446655440000"


@pytest.mark.parametrize(
    "raw",
    [
        CODE,
        f"https://x/i/{CODE}",
        "Guest Name|550E8400-E29B-41D4-A716-446655440000",
        '{"name":"Guest","uuid":"550e8400-e29b-41d4-a716-446655440000"}',
    ],
)
def test_every_payload_shape_yields_the_bare_code(raw):
    assert normalize(raw) == normalize(CODE) == CODE


def test_not_a_code_is_invalid():
    with pytest.raises(InvalidPayload):
        normalize("not a code")


@pytest.mark.parametrize("raw", ["", "   ", None])
def test_empty_payload_is_invalid(raw):
    with pytest.raises(InvalidPayload) as exc:
        parse_payload(raw)
    assert exc.value.reason == "empty payload"


def test_non_text_payload_is_invalid():
    with pytest.raises(InvalidPayload):
        parse_payload(12345)


def test_normalization_is_deterministic():
    raw = f"  Layla Haddad | {CODE.upper()}  "
    first = parse_payload(raw)
    assert parse_payload(raw) == first
    assert first.code == CODE


# --- JSON

@pytest.mark.parametrize("name_key", ["name", "guest", "guest_name"])
@pytest.mark.parametrize("code_key", ["uuid", "code", "id"])
def test_json_accepts_all_field_aliases(name_key, code_key):
    p = parse_payload(json.dumps({name_key: "Omar", code_key: CODE.upper()}))
    assert p.code == CODE
    assert p.name_hint == "Omar"
    assert p.form == "json"


def test_json_without_name_has_no_hint():
    p = parse_payload(json.dumps({"id": CODE}))
    assert p.code == CODE
    assert p.name_hint is None


def test_json_code_field_may_wrap_the_uuid():
    p = parse_payload(json.dumps({"name": "Omar", "code": f"urn:invite:{CODE}"}))
    assert p.code == CODE


def test_json_without_uuid_in_code_field_falls_through_to_text_search():
    # the id field has no UUID, so the JSON form does not match; bare search still finds one
    p = parse_payload(json.dumps({"name": "Omar", "code": "XK72", "note": CODE}))
    assert p.code == CODE
    assert p.form == "bare"


def test_json_array_is_not_the_json_form():
    p = parse_payload(json.dumps([CODE]))
    assert p.form == "bare"


# --- NAME|CODE

def test_pipe_name_then_code():
    p = parse_payload(f"Nour Saleh|{CODE}")
    assert (p.code, p.name_hint, p.form) == (CODE, "Nour Saleh", "pipe")


def test_pipe_tolerates_swapped_order():
    p = parse_payload(f"{CODE}|Nour Saleh")
    assert (p.code, p.name_hint) == (CODE, "Nour Saleh")


def test_pipe_splits_at_first_bar_only():
    p = parse_payload(f"A|B|{CODE}")
    assert p.code == CODE
    assert p.name_hint == "A"


def test_pipe_without_uuid_is_invalid():
    with pytest.raises(InvalidPayload):
        parse_payload("Nour Saleh|XK72")


# --- URL

def test_url_prefers_segment_after_i():
    other = "6fa459ea-ee8a-3ca4-894e-db77e160355e"
    p = parse_payload(f"https://venue.example/I/{CODE}/{other}")
    assert p.code == CODE
    assert p.form == "url"


def test_url_falls_back_to_last_segment():
    p = parse_payload(f"https://venue.example/invites/{CODE}")
    assert p.code == CODE


def test_url_segment_is_percent_decoded():
    encoded = CODE.replace("-", "%2D")
    p = parse_payload(f"https://venue.example/i/{encoded}")
    assert p.code == CODE
    assert p.form == "url"


def test_url_with_code_only_in_query_is_found_by_text_search():
    p = parse_payload(f"https://venue.example/checkin?id={CODE}")
    assert p.code == CODE
    assert p.form == "bare"


def test_url_without_code_is_invalid():
    with pytest.raises(InvalidPayload):
        parse_payload("https://venue.example/i/")


# --- bare text

def test_bare_text_with_embedded_code():
    assert normalize(f"INVITE:{CODE.upper()};") == CODE


def test_extract_uuid_lowercases_and_handles_missing():
    assert extract_uuid(CODE.upper()) == CODE
    assert extract_uuid("nothing here") is None
    assert extract_uuid(None) is None
