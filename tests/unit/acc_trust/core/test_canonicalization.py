import pytest
from datetime import datetime, timezone

from acc_trust.core.canonicalization import (
    CanonicalizationError,
    canonical_bytes,
    canonicalize,
    verify_canonical_equivalence,
)


def test_canonicalize_sorts_keys_without_whitespace():
    data = {"b": 2, "a": 1, "c": [3, 1, 2], "d": {"y": None, "x": True}}
    assert canonicalize(data) == '{"a":1,"b":2,"c":[3,1,2],"d":{"x":true,"y":null}}'


def test_canonicalize_floats():
    assert canonicalize(1e6) == "1000000"
    assert canonicalize(1.23e-4) == "0.000123"
    assert canonicalize(42.0) == "42"
    with pytest.raises(CanonicalizationError):
        canonicalize(float("nan"))
    with pytest.raises(CanonicalizationError):
        canonicalize(float("inf"))


def test_canonicalize_datetimes():
    dt = datetime(2023, 5, 1, 12, 30, 0, 123000, tzinfo=timezone.utc)
    assert canonicalize(dt) == '"2023-05-01T12:30:00.123Z"'

    dt_naive = datetime(2023, 5, 1, 12, 30, 0)
    assert canonicalize(dt_naive) == '"2023-05-01T12:30:00Z"'


def test_strings_are_not_unicode_normalized():
    # RFC 8785 serialises strings as given
    composed = "\u00e9"
    decomposed = "e\u0301"
    assert canonicalize(composed) != canonicalize(decomposed)


def test_non_ascii_is_emitted_as_utf8():
    assert canonical_bytes({"name": "café"}) == '{"name":"café"}'.encode("utf-8")


def test_non_string_keys_are_rejected():
    with pytest.raises(CanonicalizationError):
        canonicalize({1: "one"})


def test_unsupported_types_are_rejected():
    with pytest.raises(CanonicalizationError):
        canonicalize({"value": object()})


def test_canonical_equivalence_ignores_key_order():
    assert verify_canonical_equivalence({"a": 1, "b": [1, 2]}, {"b": [1, 2], "a": 1})
    assert not verify_canonical_equivalence({"a": [1, 2]}, {"a": [2, 1]})
    assert not verify_canonical_equivalence({"a": float("nan")}, {"a": 1})


@pytest.mark.parametrize(
    "value, expected",
    [
        (1e-7, "1e-7"),
        (1e-6, "0.000001"),
        (123.456, "123.456"),
        (-0.5, "-0.5"),
        (-0.0, "0"),
        (1e20, "100000000000000000000"),
        (1e21, "1e+21"),
        (1.5e300, "1.5e+300"),
        (5e-324, "5e-324"),
    ],
)
def test_numbers_use_ecmascript_formatting(value, expected):
    assert canonicalize(value) == expected
    assert canonicalize({"n": value}) == '{"n":' + expected + "}"


def test_keys_are_ordered_by_utf16_code_units():
    # U+1F600 encodes as a surrogate pair (0xD83D...) and sorts before U+FB01
    data = {"\ufb01": 1, "\U0001f600": 2, "a": 3}
    assert canonicalize(data) == '{"a":3,"\U0001f600":2,"\ufb01":1}'


def test_control_characters_are_escaped():
    assert canonicalize("a\nb\u001f") == '"a\\nb\\u001f"'
