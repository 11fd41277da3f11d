"""Document builders and parsers for the stored collections."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from .models import (
    BattleRules,
    BattleSession,
    CaptureAttempt,
    Character,
    FraudReport,
    MatchmakingTicket,
    OwnedCreature,
    Participant,
    StatBlock,
)

MATCHMAKING = "matchmaking"
BATTLES = "battles"
BATTLE_HISTORY = "battle_history"
CHARACTERS = "characters"
CAPTURED_POKEMON = "captured_pokemon"
CAPTURE_ATTEMPTS = "capture_attempts"
FRAUD_REPORTS = "fraud_reports"

DEFAULT_INVENTORY = {"pokeball": 10, "greatball": 5, "ultraball": 1}
DEFAULT_LOCATION = "Pallet Town"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def build_character_document(
    user_id: str,
    name: str = "",
    level: int = 1,
    experience: int = 0,
    coins: int = 1000,
    inventory: Mapping[str, int] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Return a fresh character document as the creation flow stores it."""
    created = to_iso(now or utc_now())
    return {
        "userId": user_id,
        "name": name,
        "level": level,
        "experience": experience,
        "coins": coins,
        "inventory": dict(DEFAULT_INVENTORY if inventory is None else inventory),
        "team": [],
        "currentLocation": DEFAULT_LOCATION,
        "stats": {
            "totalBattles": 0,
            "experience": 0,
            "battlesWon": 0,
            "battlesLost": 0,
            "pokemonCaught": 0,
            "shinyFound": 0,
        },
        "isActive": True,
        "createdAt": created,
        "updatedAt": created,
    }


def character_from_document(key: str, document: Mapping[str, Any]) -> Character:
    return Character(
        character_id=key,
        user_id=str(document.get("userId", "")),
        level=int(document.get("level", 1)),
        experience=int(document.get("experience", 0)),
        coins=int(document.get("coins", 0)),
        inventory={kind: int(count) for kind, count in dict(document.get("inventory", {})).items()},
        team=tuple(document.get("team", [])),
        stats={name: int(value) for name, value in dict(document.get("stats", {})).items()},
        is_active=bool(document.get("isActive", True)),
    )


def ticket_document(ticket: MatchmakingTicket) -> dict[str, Any]:
    return {
        "trainerId": ticket.trainer_id,
        "rosterId": ticket.roster_id,
        "timestamp": to_iso(ticket.enqueued_at),
    }


def ticket_from_document(key: str, document: Mapping[str, Any]) -> MatchmakingTicket:
    return MatchmakingTicket(
        trainer_id=key,
        roster_id=str(document["rosterId"]),
        enqueued_at=from_iso(document["timestamp"]),
    )


def participant_document(participant: Participant) -> dict[str, Any]:
    return {
        "userId": participant.user_id,
        "characterId": participant.character_id,
        "level": participant.level,
    }


def participant_from_document(document: Mapping[str, Any] | None) -> Participant | None:
    if not document:
        return None
    level = document.get("level")
    return Participant(
        user_id=str(document["userId"]),
        character_id=str(document["characterId"]),
        level=int(level) if level is not None else None,
    )


def rules_document(rules: BattleRules) -> dict[str, Any]:
    return {
        "maxLevel": rules.max_level,
        "itemsAllowed": rules.items_allowed,
        "legendariesAllowed": rules.legendaries_allowed,
        "timeLimit": rules.time_limit,
        "maxTeamSize": rules.max_team_size,
    }


def rules_from_document(document: Mapping[str, Any] | None) -> BattleRules:
    document = document or {}
    defaults = BattleRules()
    return BattleRules(
        max_level=int(document.get("maxLevel", defaults.max_level)),
        items_allowed=bool(document.get("itemsAllowed", defaults.items_allowed)),
        legendaries_allowed=bool(document.get("legendariesAllowed", defaults.legendaries_allowed)),
        time_limit=int(document.get("timeLimit", defaults.time_limit)),
        max_team_size=int(document.get("maxTeamSize", defaults.max_team_size)),
    )


def build_session_document(
    player1: Participant,
    player2: Participant | None,
    rules: BattleRules,
    now: datetime,
    battle_type: str = "pvp",
) -> dict[str, Any]:
    """Return a new session: ``active`` when both sides are present, ``waiting`` otherwise."""
    started = player2 is not None
    return {
        "type": battle_type,
        "status": "active" if started else "waiting",
        "player1": participant_document(player1),
        "player2": participant_document(player2) if player2 is not None else None,
        "rules": rules_document(rules),
        "currentTurn": 1,
        "activePlayer": 1,
        "winner": None,
        "loser": None,
        "endReason": None,
        "rewards": {},
        "createdAt": to_iso(now),
        "startedAt": to_iso(now) if started else None,
        "turnStartedAt": to_iso(now) if started else None,
        "finishedAt": None,
    }


def session_from_document(key: str, document: Mapping[str, Any]) -> BattleSession:
    return BattleSession(
        session_id=key,
        status=str(document["status"]),
        battle_type=str(document.get("type", "pvp")),
        player1=participant_from_document(document["player1"]),
        player2=participant_from_document(document.get("player2")),
        rules=rules_from_document(document.get("rules")),
        active_player=int(document.get("activePlayer", 1)),
        current_turn=int(document.get("currentTurn", 1)),
        winner=document.get("winner"),
        loser=document.get("loser"),
        end_reason=document.get("endReason"),
        rewards=dict(document.get("rewards") or {}),
        created_at=from_iso(document.get("createdAt")),
        started_at=from_iso(document.get("startedAt")),
        finished_at=from_iso(document.get("finishedAt")),
    )


def creature_document(creature: OwnedCreature) -> dict[str, Any]:
    return {
        "characterId": creature.character_id,
        "pokemonId": creature.species_id,
        "level": creature.level,
        "ivs": creature.ivs.as_dict(),
        "evs": creature.evs.as_dict(),
        "nature": creature.nature,
        "ability": creature.ability,
        "gender": creature.gender,
        "isShiny": creature.is_shiny,
        "currentHp": creature.current_hp,
        "maxHp": creature.max_hp,
        "pokeball": creature.pokeball,
        "caughtLevel": creature.caught_level,
        "caughtAt": to_iso(creature.caught_at),
        "moves": list(creature.moves),
        "teamPosition": creature.team_position,
        "boxNumber": creature.box_number,
        "boxPosition": creature.box_position,
    }


def creature_from_document(key: str, document: Mapping[str, Any]) -> OwnedCreature:
    return OwnedCreature(
        creature_id=key,
        character_id=str(document["characterId"]),
        species_id=int(document["pokemonId"]),
        level=int(document["level"]),
        ivs=StatBlock.from_mapping(document.get("ivs")),
        evs=StatBlock.from_mapping(document.get("evs")),
        nature=str(document["nature"]),
        ability=document.get("ability"),
        gender=document.get("gender"),
        is_shiny=bool(document.get("isShiny", False)),
        current_hp=int(document["currentHp"]),
        max_hp=int(document["maxHp"]),
        pokeball=str(document.get("pokeball", "pokeball")),
        caught_level=int(document.get("caughtLevel", document["level"])),
        caught_at=from_iso(document["caughtAt"]),
        moves=tuple(document.get("moves", [])),
        team_position=document.get("teamPosition"),
        box_number=document.get("boxNumber"),
        box_position=document.get("boxPosition"),
    )


def attempt_document(attempt: CaptureAttempt) -> dict[str, Any]:
    return {
        "characterId": attempt.character_id,
        "userId": attempt.user_id,
        "pokemonId": attempt.species_id,
        "level": attempt.level,
        "pokeball": attempt.device_kind,
        "success": attempt.success,
        "probability": attempt.probability,
        "capturedPokemonId": attempt.creature_id,
        "ivs": attempt.ivs.as_dict() if attempt.ivs is not None else None,
        "attemptedAt": to_iso(attempt.attempted_at),
    }


def attempt_from_document(key: str, document: Mapping[str, Any]) -> CaptureAttempt:
    ivs = document.get("ivs")
    return CaptureAttempt(
        attempt_id=key,
        character_id=str(document["characterId"]),
        user_id=str(document.get("userId", "")),
        species_id=int(document["pokemonId"]),
        level=int(document["level"]),
        device_kind=str(document["pokeball"]),
        success=bool(document["success"]),
        probability=float(document["probability"]),
        attempted_at=from_iso(document["attemptedAt"]),
        creature_id=document.get("capturedPokemonId"),
        ivs=StatBlock.from_mapping(ivs) if ivs is not None else None,
    )


def fraud_report_document(report: FraudReport) -> dict[str, Any]:
    return {
        "type": report.report_type,
        "characterId": report.character_id,
        "userId": report.user_id,
        "details": dict(report.details),
        "timestamp": to_iso(report.timestamp),
        "status": report.status,
    }


def fraud_report_from_document(key: str, document: Mapping[str, Any]) -> FraudReport:
    return FraudReport(
        report_type=str(document["type"]),
        character_id=str(document["characterId"]),
        user_id=document.get("userId"),
        details=dict(document.get("details", {})),
        timestamp=from_iso(document["timestamp"]),
        status=str(document.get("status", "pending")),
        report_id=key,
    )
