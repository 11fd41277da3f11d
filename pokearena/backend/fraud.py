"""Rule evaluation over capture attempts.

Reports are advisory and append-only: the monitor never blocks or rolls
back the capture that triggered it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import timedelta

from .documents import (
    CAPTURE_ATTEMPTS,
    FRAUD_REPORTS,
    attempt_from_document,
    fraud_report_document,
    fraud_report_from_document,
)
from .models import CaptureAttempt, FraudReport
from .stats import MAX_IV
from .store import DocumentStore

logger = logging.getLogger(__name__)

EXCESSIVE_CAPTURES = "excessive_captures"
SUSPICIOUS_IVS = "suspicious_ivs"

DEFAULT_WINDOW_SECONDS = 60
DEFAULT_MAX_CAPTURES = 10
PERFECT_IV_THRESHOLD = 5


def evaluate_capture_attempt(
    store: DocumentStore,
    attempt: CaptureAttempt,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
    max_captures: int = DEFAULT_MAX_CAPTURES,
) -> list[FraudReport]:
    """Run both rules for one attempt and persist any reports they raise."""
    window_start = attempt.attempted_at - timedelta(seconds=window_seconds)
    reports: list[FraudReport] = []

    with store.transaction() as txn:
        history = [
            attempt_from_document(key, document)
            for key, document in txn.scan(CAPTURE_ATTEMPTS, characterId=attempt.character_id)
        ]
        recent = [past for past in history if window_start <= past.attempted_at <= attempt.attempted_at]
        if len(recent) > max_captures:
            reports.append(
                FraudReport(
                    report_type=EXCESSIVE_CAPTURES,
                    character_id=attempt.character_id,
                    user_id=attempt.user_id,
                    details={
                        "capturesInWindow": len(recent),
                        "windowSeconds": window_seconds,
                        "pokemonId": attempt.creature_id,
                        "attemptId": attempt.attempt_id,
                    },
                    timestamp=attempt.attempted_at,
                )
            )

        if attempt.ivs is not None:
            perfect = sum(1 for value in attempt.ivs.as_dict().values() if value == MAX_IV)
            if perfect >= PERFECT_IV_THRESHOLD:
                reports.append(
                    FraudReport(
                        report_type=SUSPICIOUS_IVS,
                        character_id=attempt.character_id,
                        user_id=attempt.user_id,
                        details={
                            "perfectIvs": perfect,
                            "ivs": attempt.ivs.as_dict(),
                            "pokemonId": attempt.creature_id,
                        },
                        timestamp=attempt.attempted_at,
                    )
                )

        saved = [replace(report, report_id=txn.add(FRAUD_REPORTS, fraud_report_document(report))) for report in reports]

    for report in saved:
        logger.warning("Fraud report %s raised for character %s", report.report_type, report.character_id)
    return saved


def handle_capture_attempt(
    store: DocumentStore,
    attempt: CaptureAttempt,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
    max_captures: int = DEFAULT_MAX_CAPTURES,
) -> list[FraudReport]:
    """Best-effort wrapper: failures are logged and discarded so gameplay never blocks."""
    try:
        return evaluate_capture_attempt(store, attempt, window_seconds, max_captures)
    except Exception:
        logger.exception("Fraud evaluation failed for capture attempt %s", attempt.attempt_id)
        return []


@dataclass
class FraudMonitor:
    """Capture-event consumer bound to a store, suitable as ``on_attempt``."""

    store: DocumentStore
    window_seconds: int = DEFAULT_WINDOW_SECONDS
    max_captures: int = DEFAULT_MAX_CAPTURES

    def __call__(self, attempt: CaptureAttempt) -> list[FraudReport]:
        return handle_capture_attempt(self.store, attempt, self.window_seconds, self.max_captures)


def list_reports(
    store: DocumentStore,
    character_id: str | None = None,
    status: str | None = None,
) -> list[FraudReport]:
    """Stored reports, oldest first, optionally narrowed to one character or status."""
    filters = {}
    if character_id is not None:
        filters["characterId"] = character_id
    if status is not None:
        filters["status"] = status
    with store.transaction() as txn:
        reports = [fraud_report_from_document(key, document) for key, document in txn.scan(FRAUD_REPORTS, **filters)]
    return sorted(reports, key=lambda report: report.timestamp)
