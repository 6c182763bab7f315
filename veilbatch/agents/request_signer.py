"""
Signed participant requests.

Participants authorize `submit`, `claim` and `cancel` by signing a canonical
payload with a BLS12-381 key (py_ecc `G2Basic`, the same scheme the settlement
chain uses for transactions). The signed message is

    sha256(domain_sep("request_sig:<chain_id>") || canonical_json(payload))

where `payload = {action, sender_pubkey, nonce, params}`. The verified public
key becomes the caller identity on the ledger.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from py_ecc.bls import G2Basic
from py_ecc.optimized_bls12_381 import curve_order as _BLS12_381_CURVE_ORDER

from ..state.canonical import canonical_json_bytes, domain_sep_bytes, hex_to_bytes_fixed


ACTIONS = ("submit", "claim", "cancel")

# Required params per action.
ACTION_PARAMS: Dict[str, Tuple[str, ...]] = {
    "submit": ("amount_in", "min_out", "recipient", "direction"),
    "claim": ("window_id", "intent_index"),
    "cancel": ("window_id", "intent_index"),
}

PUBKEY_NBYTES = 48
SIGNATURE_NBYTES = 96


@dataclass(frozen=True)
class SignedRequest:
    action: str
    sender_pubkey: str
    nonce: int
    params: Mapping[str, Any] = field(default_factory=dict)
    signature: str = ""

    def payload(self) -> Dict[str, Any]:
        return request_payload(self.action, self.sender_pubkey, self.nonce, self.params)

    def to_dict(self) -> Dict[str, Any]:
        out = self.payload()
        out["signature"] = self.signature
        return out

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "SignedRequest":
        return cls(
            action=str(d["action"]),
            sender_pubkey=str(d["sender_pubkey"]),
            nonce=int(d["nonce"]),
            params=dict(d.get("params") or {}),
            signature=str(d.get("signature", "")),
        )


def _parse_privkey_int(privkey: int) -> int:
    sk = int(privkey)
    if sk <= 0:
        raise ValueError("privkey must be positive")
    if sk >= int(_BLS12_381_CURVE_ORDER):
        raise ValueError("privkey out of range (must be < BLS12-381 curve order)")
    return sk


def keygen(seed: bytes) -> int:
    """Derive a secret key from at least 32 bytes of seed material."""
    if not isinstance(seed, (bytes, bytearray)) or len(seed) < 32:
        raise ValueError("seed must be at least 32 bytes")
    return _parse_privkey_int(G2Basic.KeyGen(bytes(seed)))


def pubkey_hex(privkey: int) -> str:
    return "0x" + G2Basic.SkToPk(_parse_privkey_int(privkey)).hex()


def request_payload(action: str, sender_pubkey: str, nonce: int, params: Mapping[str, Any]) -> Dict[str, Any]:
    if action not in ACTIONS:
        raise ValueError(f"unknown action: {action!r}")
    if not isinstance(nonce, int) or isinstance(nonce, bool) or nonce <= 0:
        raise ValueError("nonce must be a positive int")
    missing = [k for k in ACTION_PARAMS[action] if k not in params]
    if missing:
        raise ValueError(f"{action} request missing params: {missing}")
    return {
        "action": action,
        "sender_pubkey": sender_pubkey.lower(),
        "nonce": nonce,
        "params": dict(params),
    }


def signing_digest(payload: Mapping[str, Any], *, chain_id: str) -> bytes:
    msg = domain_sep_bytes(f"request_sig:{chain_id}", version=1) + canonical_json_bytes(dict(payload))
    return hashlib.sha256(msg).digest()


def sign_request(
    privkey: int,
    action: str,
    *,
    nonce: int,
    params: Mapping[str, Any],
    chain_id: str,
) -> SignedRequest:
    sk = _parse_privkey_int(privkey)
    sender = pubkey_hex(sk)
    payload = request_payload(action, sender, nonce, params)
    sig = G2Basic.Sign(sk, signing_digest(payload, chain_id=chain_id))
    return SignedRequest(
        action=action,
        sender_pubkey=payload["sender_pubkey"],
        nonce=nonce,
        params=payload["params"],
        signature="0x" + sig.hex(),
    )


def verify_request(request: SignedRequest, *, chain_id: str) -> Tuple[bool, Optional[str]]:
    """Return `(True, None)` for a valid signature, else `(False, reason)`."""
    try:
        payload = request.payload()
        pubkey_bytes = hex_to_bytes_fixed(request.sender_pubkey, nbytes=PUBKEY_NBYTES, name="sender_pubkey")
        sig_bytes = hex_to_bytes_fixed(request.signature, nbytes=SIGNATURE_NBYTES, name="signature")
        ok = bool(G2Basic.Verify(pubkey_bytes, signing_digest(payload, chain_id=chain_id), sig_bytes))
    except (TypeError, ValueError) as exc:
        return False, f"malformed request: {exc}"
    except Exception as exc:
        # py_ecc raises assorted errors for off-curve points.
        return False, f"signature verification error: {exc}"
    if not ok:
        return False, "invalid request signature"
    return True, None
