"""
Deterministic canonical encoding primitives.

Used for the event journal (one canonical JSON object per line) and for the
signing payloads of participant requests.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


CANONICAL_ENCODING_VERSION = 1


def _reject_surrogates(s: str) -> None:
    # Surrogate code points are not valid Unicode scalar values.
    for ch in s:
        o = ord(ch)
        if 0xD800 <= o <= 0xDFFF:
            raise TypeError("surrogate code points are not allowed in canonical encoding")


def _reject_floats(value: Any) -> None:
    if isinstance(value, float):
        raise TypeError("floats are not allowed in canonical encoding")
    if isinstance(value, str):
        _reject_surrogates(value)
    if isinstance(value, dict):
        for k in value.keys():
            if not isinstance(k, str):
                raise TypeError("dict keys must be str for canonical encoding")
        for k, v in value.items():
            _reject_surrogates(k)
            _reject_floats(v)
        return
    if isinstance(value, (list, tuple)):
        for item in value:
            _reject_floats(item)
        return


def canonical_json_bytes(value: Any) -> bytes:
    """
    Canonical JSON encoding for journaling/signing.

    Rules:
    - UTF-8
    - sort_keys=True
    - separators=(',', ':') (no whitespace)
    - allow_nan=False
    - floats rejected (to avoid representation ambiguity)
    """
    _reject_floats(value)
    text = json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return text.encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def domain_sep_bytes(label: str, version: int = 1) -> bytes:
    """
    Create a domain separation prefix.

    The output is ASCII-only and NUL-terminated to make concatenation unambiguous.
    """
    if not isinstance(label, str) or not label:
        raise TypeError("label must be a non-empty str")
    if "\x00" in label:
        raise ValueError("label must not contain NUL")
    try:
        label_bytes = label.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ValueError("label must be ASCII") from exc
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    return b"veilbatch:" + label_bytes + b":v" + str(version).encode("ascii") + b"\x00"


def hex_to_bytes_fixed(hex_str: str, *, nbytes: int, name: str) -> bytes:
    """Decode `0x`-optional hex of exactly `nbytes` bytes."""
    if not isinstance(hex_str, str):
        raise TypeError(f"{name} must be a hex string")
    s = hex_str[2:] if hex_str.lower().startswith("0x") else hex_str
    if len(s) != 2 * nbytes:
        raise ValueError(f"{name} must be {nbytes} bytes, got {len(s) // 2}")
    try:
        return bytes.fromhex(s)
    except ValueError as exc:
        raise ValueError(f"{name} is not valid hex") from exc
