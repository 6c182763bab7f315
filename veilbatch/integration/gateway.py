"""
Authenticated entry point for participant operations.

`LedgerGateway.handle` accepts a `SignedRequest`, and:
1. verifies its BLS signature (`SignatureError`),
2. checks the nonce is exactly `last + 1` for the sender (`NonceError`),
3. dispatches to the ledger with the verified public key as caller,
4. records the nonce once the ledger operation committed.

A request the ledger rejects does not consume its nonce.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..agents.request_signer import SignedRequest, verify_request
from ..core.errors import NonceError, SignatureError, ValidationError
from ..core.ledger import IntentLedger
from ..state.intents import Direction
from ..state.nonces import NonceTable


log = logging.getLogger("veilbatch.gateway")


class LedgerGateway:
    def __init__(self, ledger: IntentLedger, *, chain_id: str, nonces: Optional[NonceTable] = None) -> None:
        self.ledger = ledger
        self.chain_id = chain_id
        self.nonces = nonces if nonces is not None else NonceTable()

    def handle(self, request: SignedRequest) -> Dict[str, Any]:
        ok, reason = verify_request(request, chain_id=self.chain_id)
        if not ok:
            raise SignatureError(reason or "invalid request signature", {"sender": request.sender_pubkey})

        sender = request.sender_pubkey.lower()
        expected = self.nonces.get_last(sender) + 1
        if request.nonce != expected:
            raise NonceError("unexpected nonce", {"sender": sender, "nonce": request.nonce, "expected": expected})

        result = self._dispatch(sender, request)
        self.nonces.set_last(sender, request.nonce)
        log.debug("request-ok action=%s sender=%s nonce=%d", request.action, sender, request.nonce)
        return result

    def _dispatch(self, sender: str, request: SignedRequest) -> Dict[str, Any]:
        p = request.params
        if request.action == "submit":
            try:
                direction = Direction(p["direction"])
            except ValueError as exc:
                raise ValidationError(f"unknown direction: {p['direction']!r}") from exc
            receipt = self.ledger.submit(
                sender,
                p["amount_in"],
                recipient=p["recipient"],
                min_out=p["min_out"],
                direction=direction,
            )
            return {"window_id": receipt.window_id, "intent_index": receipt.intent_index}
        if request.action == "claim":
            amount_out = self.ledger.claim(p["window_id"], p["intent_index"], sender)
            return {"amount_out": amount_out}
        if request.action == "cancel":
            refund = self.ledger.cancel(p["window_id"], p["intent_index"], sender)
            return {"refund": refund}
        raise ValidationError(f"unknown action: {request.action!r}")
