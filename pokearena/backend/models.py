"""Domain records exchanged between the core components and their callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

STAT_NAMES: tuple[str, ...] = (
    "hp",
    "attack",
    "defense",
    "special_attack",
    "special_defense",
    "speed",
)


@dataclass(frozen=True)
class StatBlock:
    hp: int = 0
    attack: int = 0
    defense: int = 0
    special_attack: int = 0
    special_defense: int = 0
    speed: int = 0

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any] | None) -> "StatBlock":
        values = values or {}
        return cls(**{stat: int(values.get(stat, 0) or 0) for stat in STAT_NAMES})

    def get(self, stat: str) -> int:
        return int(getattr(self, stat))

    def as_dict(self) -> dict[str, int]:
        return {stat: self.get(stat) for stat in STAT_NAMES}

    def total(self) -> int:
        return sum(self.as_dict().values())


@dataclass(frozen=True)
class SpeciesData:
    species_id: int
    name: str
    base_stats: StatBlock
    abilities: tuple[str, ...] = ()
    gender_ratio: float | None = 0.5
    base_capture_rate: int = 45
    level_up_moves: tuple[str, ...] = ()

    @property
    def stats_total(self) -> int:
        return self.base_stats.total()


@dataclass(frozen=True)
class WildEncounter:
    species_id: int
    level: int
    hp_fraction: float = 1.0
    is_shiny: bool = False


@dataclass(frozen=True)
class Character:
    character_id: str
    user_id: str
    level: int
    experience: int
    coins: int
    inventory: Mapping[str, int] = field(default_factory=dict)
    team: tuple[str, ...] = ()
    stats: Mapping[str, int] = field(default_factory=dict)
    is_active: bool = True


@dataclass(frozen=True)
class OwnedCreature:
    creature_id: str
    character_id: str
    species_id: int
    level: int
    ivs: StatBlock
    evs: StatBlock
    nature: str
    ability: str | None
    gender: str | None
    is_shiny: bool
    current_hp: int
    max_hp: int
    pokeball: str
    caught_level: int
    caught_at: datetime
    moves: tuple[str, ...] = ()
    team_position: int | None = None
    box_number: int | None = None
    box_position: int | None = None

    def __post_init__(self) -> None:
        if self.team_position is not None and self.box_position is not None:
            raise ValueError("creature cannot be on the team and boxed at the same time")


@dataclass(frozen=True)
class MatchmakingTicket:
    trainer_id: str
    roster_id: str
    enqueued_at: datetime


@dataclass(frozen=True)
class Participant:
    user_id: str
    character_id: str
    level: int | None = None


@dataclass(frozen=True)
class BattleRules:
    max_level: int = 100
    items_allowed: bool = True
    legendaries_allowed: bool = False
    time_limit: int = 300
    max_team_size: int = 6


@dataclass(frozen=True)
class BattleSession:
    session_id: str
    status: str
    battle_type: str
    player1: Participant
    player2: Participant | None
    rules: BattleRules
    active_player: int = 1
    current_turn: int = 1
    winner: str | None = None
    loser: str | None = None
    end_reason: str | None = None
    rewards: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def participant_for(self, user_id: str) -> Participant | None:
        for participant in (self.player1, self.player2):
            if participant is not None and participant.user_id == user_id:
                return participant
        return None


@dataclass(frozen=True)
class RewardDelta:
    experience: int
    coins: int


@dataclass(frozen=True)
class Rewards:
    winner: RewardDelta
    loser: RewardDelta


@dataclass(frozen=True)
class FinishResult:
    session: BattleSession
    rewards: Rewards
    history_id: str


@dataclass(frozen=True)
class MatchingPassResult:
    sessions: tuple[BattleSession, ...] = ()
    dropped_trainers: tuple[str, ...] = ()
    deferred_trainers: tuple[str, ...] = ()


@dataclass(frozen=True)
class CaptureAttempt:
    attempt_id: str
    character_id: str
    user_id: str
    species_id: int
    level: int
    device_kind: str
    success: bool
    probability: float
    attempted_at: datetime
    creature_id: str | None = None
    ivs: StatBlock | None = None


@dataclass(frozen=True)
class CaptureOutcome:
    success: bool
    probability: float
    attempt: CaptureAttempt
    devices_remaining: int
    creature: OwnedCreature | None = None


@dataclass(frozen=True)
class FraudReport:
    report_type: str
    character_id: str
    user_id: str | None
    details: Mapping[str, Any]
    timestamp: datetime
    status: str = "pending"
    report_id: str | None = None
