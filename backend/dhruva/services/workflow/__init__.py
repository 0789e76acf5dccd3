"""
Workflow Services

Organization vetting, document approval, ledger-first credential issuance
and the reconciler that closes gaps between the database and the ledger.
"""

from .state_machine import STATE_CONFIG, can_transition, ensure_transition, is_terminal
from .vetting import VettingService, purge_corrupt_requests
from .approval import ApprovalService, DecisionOutcome
from .issuance import IssuanceService, IssuanceOutcome
from .reconciler import ConsistencyReconciler, DriftStatus, SyncOutcome, SyncResult

__all__ = [
    'STATE_CONFIG',
    'can_transition',
    'ensure_transition',
    'is_terminal',
    'VettingService',
    'purge_corrupt_requests',
    'ApprovalService',
    'DecisionOutcome',
    'IssuanceService',
    'IssuanceOutcome',
    'ConsistencyReconciler',
    'DriftStatus',
    'SyncOutcome',
    'SyncResult',
]
