"""FastAPI endpoints for matchmaking, battles, captures and live session sync."""

from __future__ import annotations

import random
from collections import defaultdict
from typing import Any

from fastapi import Depends, FastAPI, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import battle, matchmaking
from .capture import attempt_capture, roll_encounter
from .config import BackendSettings, load_settings
from .errors import CoreError, NotFoundError, ValidationError
from .fraud import FraudMonitor
from .models import BattleRules, Participant, StatBlock
from .species import SpeciesProvider, create_species_provider
from .stats import NATURES, derive_stats, validate_evs, validate_ivs, validate_level
from .store import DocumentStore, create_store

ERROR_STATUS = {
    "validation": 422,
    "resource_exhausted": 409,
    "conflict": 409,
    "not_found": 404,
}


class RulesPayload(BaseModel):
    max_level: int = Field(default=100, ge=1, le=100)
    items_allowed: bool = True
    legendaries_allowed: bool = False
    time_limit: int = Field(default=300, ge=1)
    max_team_size: int = Field(default=6, ge=1, le=6)


class ParticipantPayload(BaseModel):
    user_id: str = Field(min_length=1)
    character_id: str = Field(min_length=1)


class ChallengeRequest(BaseModel):
    challenger: ParticipantPayload
    battle_type: str = Field(default="pvp", min_length=1)
    rules: RulesPayload | None = None


class TurnRequest(BaseModel):
    actor_id: str = Field(min_length=1)


class FinishRequest(BaseModel):
    winner_id: str = Field(min_length=1)
    loser_id: str = Field(min_length=1)
    end_reason: str = "victory"


class CancelRequest(BaseModel):
    reason: str = Field(default="cancelled", min_length=1, max_length=200)


class SessionResponse(BaseModel):
    session: dict[str, Any]


class EnqueueRequest(BaseModel):
    trainer_id: str = Field(min_length=1)
    roster_id: str = Field(min_length=1)


class CaptureRequest(BaseModel):
    character_id: str = Field(min_length=1)
    location: str | None = None
    hp_fraction: float = Field(default=1.0, ge=0.0, le=1.0)
    device_kind: str = Field(default="pokeball", min_length=1)


class DeriveStatsRequest(BaseModel):
    species_id: int = Field(ge=1)
    level: int
    ivs: dict[str, int] = Field(default_factory=dict)
    evs: dict[str, int] = Field(default_factory=dict)
    nature: str = "hardy"


class BattleWebSocketHub:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[session_id].add(websocket)

    def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        connections = self._connections.get(session_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(session_id, None)

    async def send_session(self, websocket: WebSocket, session: dict[str, Any]) -> None:
        await websocket.send_json({"type": "session.full", "session": session})

    async def broadcast_session(self, session_id: str, session: dict[str, Any]) -> None:
        stale_connections: list[WebSocket] = []
        for websocket in self._connections.get(session_id, set()):
            try:
                await self.send_session(websocket, session)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(session_id=session_id, websocket=websocket)


def create_app(
    store: DocumentStore | None = None,
    species_provider: SpeciesProvider | None = None,
    settings: BackendSettings | None = None,
    rng: random.Random | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title="Pokearena API", version="0.1.0")
    game_store = store if store is not None else create_store(settings.database_url)
    species = species_provider if species_provider is not None else create_species_provider(settings.pokeapi_url)
    capture_rng = rng if rng is not None else random.Random()
    fraud_monitor = FraudMonitor(
        store=game_store,
        window_seconds=settings.fraud_window_seconds,
        max_captures=settings.fraud_max_captures,
    )
    websocket_hub = BattleWebSocketHub()
    app.state.websocket_hub = websocket_hub

    async def publish_session(session_id: str, session: dict[str, Any]) -> None:
        await websocket_hub.broadcast_session(session_id=session_id, session=session)

    app.state.publish_session = publish_session

    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
        return JSONResponse(
            status_code=ERROR_STATUS.get(exc.kind, 400),
            content=jsonable_encoder(exc.to_payload()),
        )

    def get_store() -> DocumentStore:
        return game_store

    @app.get("/api/battles/{session_id}", response_model=SessionResponse)
    def get_battle(session_id: str, local_store: DocumentStore = Depends(get_store)) -> SessionResponse:
        return SessionResponse(session=jsonable_encoder(battle.get_session(local_store, session_id)))

    @app.post("/api/battles", response_model=SessionResponse)
    def create_battle(payload: ChallengeRequest, local_store: DocumentStore = Depends(get_store)) -> SessionResponse:
        rules = BattleRules(**payload.rules.model_dump()) if payload.rules is not None else None
        session = battle.create_challenge(
            local_store,
            Participant(user_id=payload.challenger.user_id, character_id=payload.challenger.character_id),
            rules=rules,
            battle_type=payload.battle_type,
        )
        return SessionResponse(session=jsonable_encoder(session))

    @app.post("/api/battles/{session_id}/join", response_model=SessionResponse)
    async def join_battle(
        session_id: str,
        payload: ParticipantPayload,
        local_store: DocumentStore = Depends(get_store),
    ) -> SessionResponse:
        session = battle.join(
            local_store,
            session_id,
            Participant(user_id=payload.user_id, character_id=payload.character_id),
        )
        encoded = jsonable_encoder(session)
        await publish_session(session_id=session_id, session=encoded)
        return SessionResponse(session=encoded)

    @app.post("/api/battles/{session_id}/turns", response_model=SessionResponse)
    async def advance_battle_turn(
        session_id: str,
        payload: TurnRequest,
        local_store: DocumentStore = Depends(get_store),
    ) -> SessionResponse:
        encoded = jsonable_encoder(battle.advance_turn(local_store, session_id, payload.actor_id))
        await publish_session(session_id=session_id, session=encoded)
        return SessionResponse(session=encoded)

    @app.post("/api/battles/{session_id}/finish")
    async def finish_battle(
        session_id: str,
        payload: FinishRequest,
        local_store: DocumentStore = Depends(get_store),
    ) -> dict[str, Any]:
        result = battle.finish(
            local_store,
            session_id,
            winner_id=payload.winner_id,
            loser_id=payload.loser_id,
            end_reason=payload.end_reason,
        )
        encoded = jsonable_encoder(result)
        await publish_session(session_id=session_id, session=encoded["session"])
        return encoded

    @app.post("/api/battles/{session_id}/cancel", response_model=SessionResponse)
    async def cancel_battle(
        session_id: str,
        payload: CancelRequest,
        local_store: DocumentStore = Depends(get_store),
    ) -> SessionResponse:
        encoded = jsonable_encoder(battle.cancel(local_store, session_id, reason=payload.reason))
        await publish_session(session_id=session_id, session=encoded)
        return SessionResponse(session=encoded)

    @app.post("/api/matchmaking/tickets")
    def enqueue_ticket(payload: EnqueueRequest, local_store: DocumentStore = Depends(get_store)) -> dict[str, Any]:
        ticket = matchmaking.enqueue(local_store, payload.trainer_id, payload.roster_id)
        return jsonable_encoder(ticket)

    @app.delete("/api/matchmaking/tickets/{trainer_id}", status_code=204)
    def dequeue_ticket(trainer_id: str, local_store: DocumentStore = Depends(get_store)) -> Response:
        matchmaking.dequeue(local_store, trainer_id)
        return Response(status_code=204)

    @app.post("/api/matchmaking/pass")
    def matching_pass(local_store: DocumentStore = Depends(get_store)) -> dict[str, Any]:
        result = matchmaking.run_matching_pass(
            local_store,
            max_pairs=settings.match_max_pairs,
            min_wait_seconds=settings.match_min_wait_seconds,
            max_level_gap=settings.match_max_level_gap,
        )
        return jsonable_encoder(result)

    @app.post("/api/captures")
    def capture(payload: CaptureRequest, local_store: DocumentStore = Depends(get_store)) -> dict[str, Any]:
        encounter = roll_encounter(
            local_store,
            species,
            payload.character_id,
            capture_rng,
            location=payload.location,
            hp_fraction=payload.hp_fraction,
        )
        outcome = attempt_capture(
            local_store,
            species,
            payload.character_id,
            encounter,
            payload.device_kind,
            rng=capture_rng,
            on_attempt=fraud_monitor,
        )
        return {"encounter": jsonable_encoder(encounter), **jsonable_encoder(outcome)}

    @app.post("/api/stats/derive")
    def derive(payload: DeriveStatsRequest) -> dict[str, Any]:
        ivs = StatBlock.from_mapping(payload.ivs)
        evs = StatBlock.from_mapping(payload.evs)
        validate_level(payload.level)
        validate_ivs(ivs)
        validate_evs(evs)
        if payload.nature.lower() not in NATURES:
            raise ValidationError("unknown nature", nature=payload.nature)
        species_data = species.get_species(payload.species_id)
        return {"stats": derive_stats(species_data.base_stats, payload.level, ivs, evs, payload.nature).as_dict()}

    @app.websocket("/ws/battles/{session_id}")
    async def battle_ws(
        websocket: WebSocket,
        session_id: str,
        local_store: DocumentStore = Depends(get_store),
    ) -> None:
        try:
            session = battle.get_session(local_store, session_id)
        except NotFoundError:
            await websocket.close(code=1008)
            return

        await websocket_hub.connect(session_id=session_id, websocket=websocket)
        await websocket_hub.send_session(websocket=websocket, session=jsonable_encoder(session))

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(session_id=session_id, websocket=websocket)

    return app


app = create_app()
