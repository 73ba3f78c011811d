"""Task ownership and callback reconciliation engine."""

from song_tasks.engine.access import OwnedTaskReader
from song_tasks.engine.callbacks import InboundCallback, parse_callback
from song_tasks.engine.ownership import (
    credential_matches,
    derive_credential,
    new_identity_token,
    orphan_credential,
)
from song_tasks.engine.reconciliation import ReconcileOutcome, ReconciliationEngine
from song_tasks.engine.submission import SubmissionCoordinator
from song_tasks.engine.sweeper import ExpirySweeper

__all__ = [
    "ExpirySweeper",
    "InboundCallback",
    "OwnedTaskReader",
    "ReconcileOutcome",
    "ReconciliationEngine",
    "SubmissionCoordinator",
    "credential_matches",
    "derive_credential",
    "new_identity_token",
    "orphan_credential",
    "parse_callback",
]
