"""Install/rotate transactions: registry, state machine and session driver."""
from __future__ import annotations

from certmgmt.lifecycle.engine import LifecycleEngine
from certmgmt.lifecycle.messages import (
    FinalizeRequest,
    FinalizeResponse,
    GenerateCSRRequest,
    GenerateCSRResponse,
    LoadCertificateRequest,
    LoadCertificateResponse,
    StepRequest,
    StepResponse,
)
from certmgmt.lifecycle.registry import (
    Transaction,
    TransactionMode,
    TransactionRegistry,
    TransactionState,
)
from certmgmt.lifecycle.session import run_session

__all__ = [
    "FinalizeRequest",
    "FinalizeResponse",
    "GenerateCSRRequest",
    "GenerateCSRResponse",
    "LifecycleEngine",
    "LoadCertificateRequest",
    "LoadCertificateResponse",
    "StepRequest",
    "StepResponse",
    "Transaction",
    "TransactionMode",
    "TransactionRegistry",
    "TransactionState",
    "run_session",
]
