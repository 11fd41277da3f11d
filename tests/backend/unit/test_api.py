import random
from datetime import timedelta

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from pokearena.backend.api import create_app
from pokearena.backend.config import BackendSettings
from pokearena.backend.documents import CHARACTERS, MATCHMAKING, build_character_document, utc_now
from pokearena.backend.species import StaticSpeciesProvider
from pokearena.backend.store import InMemoryDocumentStore


def _settings(**overrides) -> BackendSettings:
    values = {
        "database_url": None,
        "host": "127.0.0.1",
        "port": 8000,
        "log_level": "INFO",
        "match_interval_seconds": 30,
        "match_min_wait_seconds": 30,
        "match_max_pairs": 5,
        "match_max_level_gap": 10,
        "fraud_window_seconds": 60,
        "fraud_max_captures": 10,
        "enforce_time_limit": False,
        "pokeapi_url": None,
    }
    values.update(overrides)
    return BackendSettings(**values)


def _client(store: InMemoryDocumentStore, **settings) -> TestClient:
    app = create_app(
        store=store,
        species_provider=StaticSpeciesProvider(),
        settings=_settings(**settings),
        rng=random.Random(5),
    )
    return TestClient(app)


def _seed_character(store: InMemoryDocumentStore, character_id: str, user_id: str, level: int, **fields) -> None:
    with store.transaction() as txn:
        txn.put(CHARACTERS, character_id, build_character_document(user_id, level=level, **fields))


def _start_battle(client: TestClient) -> str:
    created = client.post(
        "/api/battles",
        json={"challenger": {"user_id": "ash", "character_id": "ash-char"}},
    ).json()
    session_id = created["session"]["session_id"]
    client.post(
        f"/api/battles/{session_id}/join",
        json={"user_id": "misty", "character_id": "misty-char"},
    )
    return session_id


def test_create_and_join_battle() -> None:
    store = InMemoryDocumentStore()
    _seed_character(store, "ash-char", "ash", 20)
    _seed_character(store, "misty-char", "misty", 25)
    client = _client(store)

    created = client.post(
        "/api/battles",
        json={"challenger": {"user_id": "ash", "character_id": "ash-char"}, "rules": {"time_limit": 120}},
    )
    session_id = created.json()["session"]["session_id"]
    joined = client.post(
        f"/api/battles/{session_id}/join",
        json={"user_id": "misty", "character_id": "misty-char"},
    )

    assert created.status_code == 200
    assert created.json()["session"]["status"] == "waiting"
    assert created.json()["session"]["rules"]["time_limit"] == 120
    assert joined.status_code == 200
    assert joined.json()["session"]["status"] == "active"
    assert joined.json()["session"]["player2"]["level"] == 25


def test_finish_returns_rewards_and_rejects_second_finish() -> None:
    store = InMemoryDocumentStore()
    _seed_character(store, "ash-char", "ash", 20)
    _seed_character(store, "misty-char", "misty", 25)
    client = _client(store)
    session_id = _start_battle(client)

    first = client.post(f"/api/battles/{session_id}/finish", json={"winner_id": "ash", "loser_id": "misty"})
    second = client.post(f"/api/battles/{session_id}/finish", json={"winner_id": "ash", "loser_id": "misty"})

    assert first.status_code == 200
    assert first.json()["session"]["status"] == "finished"
    assert first.json()["rewards"]["winner"] == {"experience": 100, "coins": 50}
    assert second.status_code == 409
    assert second.json()["error"] == "conflict"


def test_turn_and_cancel_endpoints() -> None:
    store = InMemoryDocumentStore()
    _seed_character(store, "ash-char", "ash", 20)
    _seed_character(store, "misty-char", "misty", 25)
    client = _client(store)
    session_id = _start_battle(client)

    wrong_turn = client.post(f"/api/battles/{session_id}/turns", json={"actor_id": "misty"})
    turn = client.post(f"/api/battles/{session_id}/turns", json={"actor_id": "ash"})
    cancelled = client.post(f"/api/battles/{session_id}/cancel", json={"reason": "disconnect"})

    assert wrong_turn.status_code == 422
    assert wrong_turn.json()["error"] == "validation"
    assert turn.json()["session"]["active_player"] == 2
    assert cancelled.json()["session"]["status"] == "cancelled"


def test_unknown_battle_returns_not_found() -> None:
    client = _client(InMemoryDocumentStore())

    response = client.get("/api/battles/missing")

    assert response.status_code == 404
    assert response.json() == {"error": "not_found", "details": {"session_id": "missing"}}


def test_matchmaking_endpoints() -> None:
    store = InMemoryDocumentStore()
    _seed_character(store, "ash-char", "ash", 20)
    _seed_character(store, "misty-char", "misty", 25)
    client = _client(store, match_min_wait_seconds=0)

    queued = client.post("/api/matchmaking/tickets", json={"trainer_id": "ash", "roster_id": "ash-char"})
    duplicate = client.post("/api/matchmaking/tickets", json={"trainer_id": "ash", "roster_id": "ash-char"})
    client.post("/api/matchmaking/tickets", json={"trainer_id": "misty", "roster_id": "misty-char"})
    # pass cutoff is strict, so back-date the tickets
    with store.transaction() as txn:
        for key, document in txn.scan(MATCHMAKING):
            document["timestamp"] = (utc_now() - timedelta(seconds=5)).isoformat()
            txn.put(MATCHMAKING, key, document)
    matched = client.post("/api/matchmaking/pass")

    assert queued.status_code == 200
    assert queued.json()["trainer_id"] == "ash"
    assert duplicate.status_code == 409
    assert len(matched.json()["sessions"]) == 1


def test_dequeue_endpoint_is_idempotent() -> None:
    store = InMemoryDocumentStore()
    client = _client(store)
    client.post("/api/matchmaking/tickets", json={"trainer_id": "ash", "roster_id": "ash-char"})

    first = client.delete("/api/matchmaking/tickets/ash")
    second = client.delete("/api/matchmaking/tickets/ash")

    assert first.status_code == 204
    assert second.status_code == 204


def test_capture_endpoint_rolls_encounter_on_the_server() -> None:
    store = InMemoryDocumentStore()
    _seed_character(store, "ash-char", "ash", 10, inventory={"masterball": 1})
    client = _client(store)

    caught = client.post(
        "/api/captures",
        json={"character_id": "ash-char", "species_id": 150, "level": 100, "device_kind": "masterball"},
    )
    exhausted = client.post("/api/captures", json={"character_id": "ash-char", "device_kind": "masterball"})
    unknown = client.post(
        "/api/captures",
        json={"character_id": "ash-char", "location": "Mt. Moon", "device_kind": "masterball"},
    )
    missing = client.post("/api/captures", json={"character_id": "ghost", "device_kind": "masterball"})

    body = caught.json()
    assert caught.status_code == 200
    assert body["success"] is True
    assert body["devices_remaining"] == 0
    assert body["encounter"]["species_id"] in (1, 4, 7, 16, 19, 25)
    assert 5 <= body["encounter"]["level"] <= 15
    assert body["creature"]["species_id"] == body["encounter"]["species_id"]
    assert body["creature"]["level"] == body["encounter"]["level"]
    assert exhausted.status_code == 409
    assert exhausted.json()["error"] == "resource_exhausted"
    assert unknown.status_code == 422
    assert missing.status_code == 404


def test_derive_stats_endpoint() -> None:
    client = _client(InMemoryDocumentStore())

    response = client.post(
        "/api/stats/derive",
        json={"species_id": 25, "level": 50, "ivs": {"attack": 31}, "evs": {"attack": 252}, "nature": "hardy"},
    )
    bad_nature = client.post("/api/stats/derive", json={"species_id": 25, "level": 50, "nature": "grumpy"})
    bad_iv = client.post("/api/stats/derive", json={"species_id": 25, "level": 50, "ivs": {"speed": 40}})

    assert response.status_code == 200
    assert response.json()["stats"]["attack"] == 107
    assert bad_nature.status_code == 422
    assert bad_iv.status_code == 422


def test_websocket_sends_initial_session_after_connect() -> None:
    store = InMemoryDocumentStore()
    _seed_character(store, "ash-char", "ash", 20)
    _seed_character(store, "misty-char", "misty", 25)
    client = _client(store)
    session_id = _start_battle(client)

    with client.websocket_connect(f"/ws/battles/{session_id}") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "session.full"
    assert message["session"]["session_id"] == session_id
    assert message["session"]["status"] == "active"


def test_websocket_rejects_unknown_session() -> None:
    client = _client(InMemoryDocumentStore())

    with pytest.raises(Exception):
        with client.websocket_connect("/ws/battles/missing"):
            pass


def test_websocket_broadcasts_session_updates() -> None:
    store = InMemoryDocumentStore()
    _seed_character(store, "ash-char", "ash", 20)
    _seed_character(store, "misty-char", "misty", 25)
    app = create_app(
        store=store,
        species_provider=StaticSpeciesProvider(),
        settings=_settings(),
        rng=random.Random(5),
    )

    with TestClient(app) as client:
        session_id = _start_battle(client)
        with client.websocket_connect(f"/ws/battles/{session_id}") as ws_ash:
            with client.websocket_connect(f"/ws/battles/{session_id}") as ws_misty:
                ws_ash.receive_json()
                ws_misty.receive_json()

                client.post(f"/api/battles/{session_id}/turns", json={"actor_id": "ash"})

                ash_message = ws_ash.receive_json()
                misty_message = ws_misty.receive_json()

    assert ash_message["session"]["current_turn"] == 2
    assert misty_message["session"]["active_player"] == 2
