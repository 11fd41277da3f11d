from datetime import datetime, timezone

import pytest

from pokearena.backend.documents import (
    build_character_document,
    build_session_document,
    character_from_document,
)
from pokearena.backend.errors import AlreadyFinishedError, SessionClosedError, UnknownSpeciesError
from pokearena.backend.models import BattleRules, OwnedCreature, Participant, StatBlock

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_build_character_document_sets_starting_defaults() -> None:
    document = build_character_document("ash", name="Ash", now=NOW)

    assert document["level"] == 1
    assert document["experience"] == 0
    assert document["coins"] == 1000
    assert document["inventory"] == {"pokeball": 10, "greatball": 5, "ultraball": 1}
    assert document["team"] == []
    assert document["stats"]["battlesWon"] == 0
    assert document["stats"]["experience"] == 0
    assert document["currentLocation"] == "Pallet Town"
    assert document["createdAt"] == document["updatedAt"] == "2024-05-01T12:00:00+00:00"

    character = character_from_document("char-1", document)
    assert character.user_id == "ash"
    assert character.inventory["pokeball"] == 10


def test_build_session_document_status_depends_on_second_player() -> None:
    ash = Participant("ash", "ash-char", 20)
    misty = Participant("misty", "misty-char", 25)

    waiting = build_session_document(ash, None, BattleRules(), NOW)
    active = build_session_document(ash, misty, BattleRules(), NOW)

    assert waiting["status"] == "waiting"
    assert waiting["startedAt"] is None
    assert active["status"] == "active"
    assert active["startedAt"] == active["createdAt"]
    assert active["rules"] == {
        "maxLevel": 100,
        "itemsAllowed": True,
        "legendariesAllowed": False,
        "timeLimit": 300,
        "maxTeamSize": 6,
    }


def test_creature_cannot_be_on_team_and_in_box() -> None:
    with pytest.raises(ValueError):
        OwnedCreature(
            creature_id="p1",
            character_id="char-1",
            species_id=25,
            level=5,
            ivs=StatBlock(),
            evs=StatBlock(),
            nature="hardy",
            ability="static",
            gender="M",
            is_shiny=False,
            current_hp=20,
            max_hp=20,
            pokeball="pokeball",
            caught_level=5,
            caught_at=NOW,
            team_position=1,
            box_number=1,
            box_position=1,
        )


def test_error_payload_carries_kind_and_details() -> None:
    error = UnknownSpeciesError("unknown species", species=999)

    assert error.to_payload() == {"error": "validation", "details": {"species": 999}}
    assert AlreadyFinishedError("done").kind == SessionClosedError("closed").kind == "conflict"
