"""Verification workflow.

Contains:
- VerificationWorker: capture, embedding extraction and matching for one run
- VerificationSession: claim / verify state machine around the worker
"""

from .session import VerificationSession
from .types import (
    SessionState,
    StatusEvent,
    StatusListener,
    VerificationRequest,
    VerificationStatus,
)
from .worker import VerificationWorker, extract_embeddings, similarity_message

__all__ = [
    "SessionState",
    "StatusEvent",
    "StatusListener",
    "VerificationRequest",
    "VerificationSession",
    "VerificationStatus",
    "VerificationWorker",
    "extract_embeddings",
    "similarity_message",
]
