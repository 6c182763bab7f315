"""
Autonomous agents for VeilBatch
"""

from .backoff import BackoffPolicy, with_backoff
from .clearing_agent import AgentConfig, ClearingAgent, TickReport
from .request_signer import SignedRequest, sign_request, verify_request
from .tracker import WindowPhase, WindowTracker

__all__ = [
    "BackoffPolicy",
    "with_backoff",
    "AgentConfig",
    "ClearingAgent",
    "TickReport",
    "SignedRequest",
    "sign_request",
    "verify_request",
    "WindowPhase",
    "WindowTracker",
]
