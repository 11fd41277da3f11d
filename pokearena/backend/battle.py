"""Battle session lifecycle and reward settlement.

Session states: ``waiting`` -> ``active`` -> ``finished`` | ``cancelled``.
Terminal states are sinks. Every transition re-reads the session inside
the transaction that writes it, so the status check and the status change
form a single compare-and-swap.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from .documents import (
    BATTLE_HISTORY,
    BATTLES,
    CHARACTERS,
    MATCHMAKING,
    build_session_document,
    from_iso,
    participant_document,
    session_from_document,
    to_iso,
    utc_now,
)
from .errors import (
    AlreadyFinishedError,
    InvalidTransitionError,
    NotFoundError,
    SessionClosedError,
    ValidationError,
)
from .models import BattleRules, BattleSession, FinishResult, Participant, RewardDelta, Rewards
from .stats import MAX_LEVEL
from .store import DocumentStore, Transaction

logger = logging.getLogger(__name__)

WAITING = "waiting"
ACTIVE = "active"
FINISHED = "finished"
CANCELLED = "cancelled"

END_REASONS = ("victory", "forfeit", "timeout", "disconnect")

WINNER_REWARD = RewardDelta(experience=100, coins=50)
LOSER_REWARD = RewardDelta(experience=25, coins=10)


def compute_rewards() -> Rewards:
    """Fixed settlement: losers still earn a smaller non-zero share."""
    return Rewards(winner=WINNER_REWARD, loser=LOSER_REWARD)


def _load_open_session(txn: Transaction, session_id: str) -> dict[str, Any]:
    document = txn.get(BATTLES, session_id)
    if document is None:
        raise NotFoundError("battle session not found", session_id=session_id)
    status = document.get("status")
    if status == FINISHED:
        raise AlreadyFinishedError("battle session already finished", session_id=session_id)
    if status == CANCELLED:
        raise SessionClosedError("battle session was cancelled", session_id=session_id)
    return document


def _require_status(document: dict[str, Any], session_id: str, expected: str) -> None:
    if document.get("status") != expected:
        raise InvalidTransitionError(
            f"battle session must be {expected}",
            session_id=session_id,
            status=document.get("status"),
        )


def _load_character(txn: Transaction, character_id: str) -> dict[str, Any]:
    character = txn.get(CHARACTERS, character_id)
    if character is None:
        raise NotFoundError("character not found", character_id=character_id)
    return character


def get_session(store: DocumentStore, session_id: str) -> BattleSession:
    with store.transaction() as txn:
        document = txn.get(BATTLES, session_id)
    if document is None:
        raise NotFoundError("battle session not found", session_id=session_id)
    return session_from_document(session_id, document)


def create_challenge(
    store: DocumentStore,
    challenger: Participant,
    rules: BattleRules | None = None,
    battle_type: str = "pvp",
    now: datetime | None = None,
) -> BattleSession:
    """Open a ``waiting`` session for a direct challenge."""
    now = now or utc_now()
    rules = rules or BattleRules()
    with store.transaction() as txn:
        character = _load_character(txn, challenger.character_id)
        challenger = replace(challenger, level=int(character.get("level", 1)))
        document = build_session_document(challenger, None, rules, now, battle_type)
        session_id = txn.add(BATTLES, document)
    logger.info("Challenge %s opened by %s", session_id, challenger.user_id)
    return session_from_document(session_id, document)


def join(
    store: DocumentStore,
    session_id: str,
    participant: Participant,
    now: datetime | None = None,
) -> BattleSession:
    now = now or utc_now()
    with store.transaction() as txn:
        document = _load_open_session(txn, session_id)
        _require_status(document, session_id, WAITING)
        if participant.user_id == document["player1"]["userId"]:
            raise ValidationError("a trainer cannot join their own session", session_id=session_id)

        character = _load_character(txn, participant.character_id)
        level = int(character.get("level", 1))
        max_level = int(document.get("rules", {}).get("maxLevel", MAX_LEVEL))
        if level > max_level:
            raise ValidationError("character exceeds the session level cap", level=level, max_level=max_level)

        document["player2"] = participant_document(replace(participant, level=level))
        document["status"] = ACTIVE
        document["startedAt"] = to_iso(now)
        document["turnStartedAt"] = to_iso(now)
        txn.put(BATTLES, session_id, document)
        txn.delete(MATCHMAKING, participant.user_id)
    logger.info("Trainer %s joined session %s", participant.user_id, session_id)
    return session_from_document(session_id, document)


def advance_turn(
    store: DocumentStore,
    session_id: str,
    actor_id: str,
    now: datetime | None = None,
) -> BattleSession:
    """Hand the turn to the other player; move resolution lives elsewhere."""
    now = now or utc_now()
    with store.transaction() as txn:
        document = _load_open_session(txn, session_id)
        _require_status(document, session_id, ACTIVE)
        active_player = int(document.get("activePlayer", 1))
        expected = document["player1" if active_player == 1 else "player2"]["userId"]
        if actor_id != expected:
            raise ValidationError("not this trainer's turn", session_id=session_id, actor_id=actor_id)

        document["currentTurn"] = int(document.get("currentTurn", 1)) + 1
        document["activePlayer"] = 2 if active_player == 1 else 1
        document["turnStartedAt"] = to_iso(now)
        txn.put(BATTLES, session_id, document)
    return session_from_document(session_id, document)


def _apply_reward(character: dict[str, Any], delta: RewardDelta, outcome_stat: str, now: datetime) -> None:
    # settlement only touches coins and stats counters; level is owned by other flows
    character["coins"] = int(character.get("coins", 0)) + delta.coins
    stats = character.setdefault("stats", {})
    stats["experience"] = int(stats.get("experience", 0)) + delta.experience
    stats[outcome_stat] = int(stats.get(outcome_stat, 0)) + 1
    stats["totalBattles"] = int(stats.get("totalBattles", 0)) + 1
    character["updatedAt"] = to_iso(now)


def finish(
    store: DocumentStore,
    session_id: str,
    winner_id: str,
    loser_id: str,
    end_reason: str = "victory",
    now: datetime | None = None,
) -> FinishResult:
    """Conclude an active session and settle rewards exactly once.

    A second call for the same session raises AlreadyFinishedError and
    writes nothing.
    """
    if end_reason not in END_REASONS:
        raise ValidationError("unknown end reason", end_reason=end_reason)
    now = now or utc_now()
    rewards = compute_rewards()

    with store.transaction() as txn:
        document = _load_open_session(txn, session_id)
        _require_status(document, session_id, ACTIVE)

        players = {document[side]["userId"]: document[side] for side in ("player1", "player2")}
        if winner_id == loser_id or set(players) != {winner_id, loser_id}:
            raise ValidationError(
                "winner and loser must be the two session participants",
                winner_id=winner_id,
                loser_id=loser_id,
            )
        winner_character_id = players[winner_id]["characterId"]
        loser_character_id = players[loser_id]["characterId"]
        if winner_character_id == loser_character_id:
            raise ValidationError("participants share a character", character_id=winner_character_id)

        winner = _load_character(txn, winner_character_id)
        loser = _load_character(txn, loser_character_id)
        _apply_reward(winner, rewards.winner, "battlesWon", now)
        _apply_reward(loser, rewards.loser, "battlesLost", now)

        document["status"] = FINISHED
        document["winner"] = winner_id
        document["loser"] = loser_id
        document["endReason"] = end_reason
        document["finishedAt"] = to_iso(now)
        document["rewards"] = {
            "winner": {"experience": rewards.winner.experience, "coins": rewards.winner.coins},
            "loser": {"experience": rewards.loser.experience, "coins": rewards.loser.coins},
        }

        started_at = from_iso(document.get("startedAt"))
        history_id = txn.add(
            BATTLE_HISTORY,
            {
                "battleId": session_id,
                "player1Id": document["player1"]["userId"],
                "player2Id": document["player2"]["userId"],
                "winnerId": winner_id,
                "loserId": loser_id,
                "battleType": document.get("type", "pvp"),
                "endReason": end_reason,
                "durationSeconds": (now - started_at).total_seconds() if started_at else None,
                "rewards": document["rewards"],
                "createdAt": to_iso(now),
            },
        )
        txn.put(CHARACTERS, winner_character_id, winner)
        txn.put(CHARACTERS, loser_character_id, loser)
        txn.put(BATTLES, session_id, document)
        txn.delete(MATCHMAKING, winner_id)
        txn.delete(MATCHMAKING, loser_id)

    logger.info("Session %s finished: %s beat %s (%s)", session_id, winner_id, loser_id, end_reason)
    return FinishResult(
        session=session_from_document(session_id, document),
        rewards=rewards,
        history_id=history_id,
    )


def cancel(
    store: DocumentStore,
    session_id: str,
    reason: str = "cancelled",
    now: datetime | None = None,
) -> BattleSession:
    """Close a waiting or active session without rewards."""
    now = now or utc_now()
    with store.transaction() as txn:
        document = _load_open_session(txn, session_id)
        document["status"] = CANCELLED
        document["endReason"] = reason
        document["finishedAt"] = to_iso(now)
        txn.put(BATTLES, session_id, document)
    logger.info("Session %s cancelled (%s)", session_id, reason)
    return session_from_document(session_id, document)


def cancel_overdue_sessions(store: DocumentStore, now: datetime | None = None) -> list[BattleSession]:
    """Cancel active sessions running past their rule-set time limit."""
    now = now or utc_now()
    with store.transaction() as txn:
        active = txn.scan(BATTLES, status=ACTIVE)

    cancelled: list[BattleSession] = []
    for session_id, document in active:
        started_at = from_iso(document.get("startedAt"))
        time_limit = int(document.get("rules", {}).get("timeLimit", BattleRules().time_limit))
        if started_at is None or started_at + timedelta(seconds=time_limit) >= now:
            continue
        try:
            cancelled.append(cancel(store, session_id, reason="timeout", now=now))
        except SessionClosedError:
            # settled between the scan and the cancel
            continue
    return cancelled
