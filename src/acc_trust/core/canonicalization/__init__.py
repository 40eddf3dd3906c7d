# SPDX-License-Identifier: MPL-2.0
"""Canonicalization utilities following JSON Canonicalization Scheme (RFC 8785).

The canonical bytes produced here are what attestation envelopes sign and
what the verification results hash is computed over, so the output for a
given document must never change between releases.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List

from acc_trust.core.exceptions import CanonicalizationError

__all__ = [
    "CanonicalizationError",
    "canonicalize",
    "canonical_bytes",
    "format_number",
    "verify_canonical_equivalence",
]


def format_number(value: float) -> str:
    """Serialise a finite number the way ECMAScript ``Number.prototype.toString`` does.

    ``repr`` already yields the shortest digits that round-trip, so only the
    placement of the decimal point and the exponent differ from ECMAScript.
    """

    if not math.isfinite(value):
        raise CanonicalizationError("Non-finite float values are not allowed")
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    # value == 0.<digits> * 10**n
    n = k + int(exponent)

    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + text


def _normalize(value: Any) -> Any:
    """Recursively normalise a value for canonical JSON serialisation."""

    # RFC 8785 leaves strings untouched; no Unicode normalisation is applied
    if isinstance(value, str):
        return value

    if isinstance(value, bool) or value is None or isinstance(value, int):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalizationError("Non-finite float values are not allowed")
        return value

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        iso = value.isoformat(timespec="microseconds").replace("+00:00", "Z")
        main, rest = iso.split(".", 1)
        frac = rest.rstrip("Z").rstrip("0")
        return main + ("." + frac if frac else "") + "Z"

    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]

    if isinstance(value, dict):
        if any(not isinstance(k, str) for k in value):
            raise CanonicalizationError("Dictionary keys must be strings")
        return {k: _normalize(v) for k, v in value.items()}

    raise CanonicalizationError(f"Type {type(value)!r} is not supported for canonicalization")


def _utf16_key(key: str) -> bytes:
    # RFC 8785 orders members by UTF-16 code units
    return key.encode("utf-16-be", "surrogatepass")


def _write(value: Any, out: List[str]) -> None:
    if value is None:
        out.append("null")
    elif value is True:
        out.append("true")
    elif value is False:
        out.append("false")
    elif isinstance(value, str):
        out.append(json.dumps(value, ensure_ascii=False))
    elif isinstance(value, int):
        out.append(str(value))
    elif isinstance(value, float):
        out.append(format_number(value))
    elif isinstance(value, list):
        out.append("[")
        for i, item in enumerate(value):
            if i:
                out.append(",")
            _write(item, out)
        out.append("]")
    else:
        out.append("{")
        for i, key in enumerate(sorted(value, key=_utf16_key)):
            if i:
                out.append(",")
            out.append(json.dumps(key, ensure_ascii=False))
            out.append(":")
            _write(value[key], out)
        out.append("}")


def canonicalize(data: Any) -> str:
    """Convert data to a canonical JSON string.

    Object keys are sorted, no insignificant whitespace is emitted, numbers
    use ECMAScript formatting and non-ASCII characters are written as UTF-8
    rather than escaped.
    """

    out: List[str] = []
    _write(_normalize(data), out)
    return "".join(out)


def canonical_bytes(data: Any) -> bytes:
    """Return the UTF-8 encoded canonical form of ``data``."""

    try:
        return canonicalize(data).encode("utf-8")
    except UnicodeEncodeError as exc:
        raise CanonicalizationError(str(exc)) from exc


def verify_canonical_equivalence(a: Any, b: Any) -> bool:
    """Return True if two objects canonicalize to the same JSON string."""

    try:
        return canonicalize(a) == canonicalize(b)
    except CanonicalizationError:
        return False
