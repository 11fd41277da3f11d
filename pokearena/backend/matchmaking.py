"""Waiting-player queue and the periodic pairing pass."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from .documents import (
    BATTLES,
    CHARACTERS,
    MATCHMAKING,
    build_session_document,
    session_from_document,
    ticket_document,
    ticket_from_document,
    utc_now,
)
from .errors import DuplicateTicketError, ValidationError
from .models import BattleRules, BattleSession, MatchingPassResult, MatchmakingTicket, Participant
from .store import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_MIN_WAIT_SECONDS = 30
DEFAULT_MAX_PAIRS = 5
DEFAULT_MAX_LEVEL_GAP = 10

_PAIRED = "paired"
_DROPPED = "dropped"
_DEFERRED = "deferred"


def enqueue(
    store: DocumentStore,
    trainer_id: str,
    roster_id: str,
    now: datetime | None = None,
) -> MatchmakingTicket:
    if not trainer_id or not roster_id:
        raise ValidationError("trainer and roster ids are required")
    ticket = MatchmakingTicket(trainer_id=trainer_id, roster_id=roster_id, enqueued_at=now or utc_now())
    with store.transaction() as txn:
        if not txn.insert(MATCHMAKING, trainer_id, ticket_document(ticket)):
            raise DuplicateTicketError("trainer already queued", trainer_id=trainer_id)
    logger.info("Trainer %s queued with roster %s", trainer_id, roster_id)
    return ticket


def dequeue(store: DocumentStore, trainer_id: str) -> None:
    with store.transaction() as txn:
        txn.delete(MATCHMAKING, trainer_id)


def list_tickets(store: DocumentStore) -> list[MatchmakingTicket]:
    """Outstanding tickets in arrival order."""
    with store.transaction() as txn:
        tickets = [ticket_from_document(key, document) for key, document in txn.scan(MATCHMAKING)]
    return sorted(tickets, key=lambda ticket: ticket.enqueued_at)


def _same_ticket(document: dict[str, Any] | None, ticket: MatchmakingTicket) -> bool:
    return document is not None and document == ticket_document(ticket)


def _pair(
    store: DocumentStore,
    first: MatchmakingTicket,
    second: MatchmakingTicket,
    now: datetime,
    max_level_gap: int,
    rules: BattleRules,
) -> tuple[str, BattleSession | None]:
    with store.transaction() as txn:
        # both tickets must still be the ones this pass selected
        if not (
            _same_ticket(txn.get(MATCHMAKING, first.trainer_id), first)
            and _same_ticket(txn.get(MATCHMAKING, second.trainer_id), second)
        ):
            logger.warning("Pairing aborted for %s and %s: ticket changed", first.trainer_id, second.trainer_id)
            return _DEFERRED, None

        first_roster = txn.get(CHARACTERS, first.roster_id)
        second_roster = txn.get(CHARACTERS, second.roster_id)
        if first_roster is None or second_roster is None:
            txn.delete(MATCHMAKING, first.trainer_id)
            txn.delete(MATCHMAKING, second.trainer_id)
            return _DROPPED, None

        first_level = int(first_roster.get("level", 1))
        second_level = int(second_roster.get("level", 1))
        if abs(first_level - second_level) > max_level_gap:
            return _DEFERRED, None

        document = build_session_document(
            Participant(first.trainer_id, first.roster_id, first_level),
            Participant(second.trainer_id, second.roster_id, second_level),
            rules,
            now,
        )
        session_id = txn.add(BATTLES, document)
        txn.delete(MATCHMAKING, first.trainer_id)
        txn.delete(MATCHMAKING, second.trainer_id)
    return _PAIRED, session_from_document(session_id, document)


def run_matching_pass(
    store: DocumentStore,
    now: datetime | None = None,
    max_pairs: int = DEFAULT_MAX_PAIRS,
    min_wait_seconds: int = DEFAULT_MIN_WAIT_SECONDS,
    max_level_gap: int = DEFAULT_MAX_LEVEL_GAP,
    rules: BattleRules | None = None,
) -> MatchingPassResult:
    """Pair adjacent waiting tickets into active sessions.

    Safe to run concurrently with itself: a pair only commits if both of its
    tickets are still queued inside the same unit that creates the session.
    """
    now = now or utc_now()
    cutoff = now - timedelta(seconds=min_wait_seconds)
    candidates = [ticket for ticket in list_tickets(store) if ticket.enqueued_at < cutoff][: max_pairs * 2]
    rules = rules or BattleRules()

    sessions: list[BattleSession] = []
    dropped: list[str] = []
    deferred: list[str] = []
    for index in range(0, len(candidates) - 1, 2):
        first, second = candidates[index], candidates[index + 1]
        status, session = _pair(store, first, second, now, max_level_gap, rules)
        if status == _PAIRED and session is not None:
            sessions.append(session)
            logger.info("Session %s created for %s vs %s", session.session_id, first.trainer_id, second.trainer_id)
        elif status == _DROPPED:
            dropped.extend([first.trainer_id, second.trainer_id])
            logger.warning("Dropped tickets for %s and %s: roster not found", first.trainer_id, second.trainer_id)
        else:
            deferred.extend([first.trainer_id, second.trainer_id])
    if len(candidates) % 2:
        deferred.append(candidates[-1].trainer_id)

    logger.info(
        "Matching pass: %d candidates, %d sessions, %d dropped, %d deferred",
        len(candidates),
        len(sessions),
        len(dropped),
        len(deferred),
    )
    return MatchingPassResult(
        sessions=tuple(sessions),
        dropped_trainers=tuple(dropped),
        deferred_trainers=tuple(deferred),
    )
