"""Capture resolution against wild creatures."""

from __future__ import annotations

import logging
import random
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, Protocol, TypeVar

from .documents import (
    CAPTURE_ATTEMPTS,
    CAPTURED_POKEMON,
    CHARACTERS,
    DEFAULT_LOCATION,
    attempt_document,
    creature_document,
    creature_from_document,
    to_iso,
    utc_now,
)
from .errors import InsufficientDeviceError, NotFoundError, ValidationError
from .models import (
    STAT_NAMES,
    CaptureAttempt,
    CaptureOutcome,
    OwnedCreature,
    SpeciesData,
    StatBlock,
    WildEncounter,
)
from .species import DEFAULT_CAPTURE_RATE, SpeciesProvider
from .stats import MAX_IV, MAX_LEVEL, MIN_LEVEL, NATURE_NAMES, derive_stats, validate_level
from .store import DocumentStore, Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

GUARANTEED_CAPTURE_MULTIPLIER = 255.0
DEVICE_MULTIPLIERS: dict[str, float] = {
    "pokeball": 1.0,
    "greatball": 1.5,
    "ultraball": 2.0,
    "masterball": GUARANTEED_CAPTURE_MULTIPLIER,
}
SHINY_ODDS = 1 / 4096
MAX_TEAM_SIZE = 6
BOX_CAPACITY = 30
WILD_LEVEL_SPREAD = 5
MAX_OPENING_MOVES = 4

# location -> species ids that can appear there
LOCATION_SPECIES: dict[str, tuple[int, ...]] = {
    "Pallet Town": (1, 4, 7, 16, 19, 25),
    "Route 1": (16, 19, 10, 13),
    "Viridian Forest": (10, 11, 13, 14, 25),
    "Mt. Moon": (41, 42, 74, 75),
    "Rock Tunnel": (66, 67, 95, 104),
    "Safari Zone": (29, 30, 32, 33, 111, 113, 115, 123, 127, 128),
    "Seafoam Islands": (86, 87, 116, 117, 120, 121),
    "Victory Road": (42, 57, 95, 105, 112),
}
DEFAULT_SPECIES_POOL = (1, 4, 7)


class RandomSource(Protocol):
    def random(self) -> float: ...

    def randint(self, a: int, b: int) -> int: ...

    def choice(self, seq: Sequence[T]) -> T: ...


def device_multiplier(device_kind: str) -> float:
    try:
        return DEVICE_MULTIPLIERS[device_kind]
    except KeyError:
        raise ValidationError("unknown device kind", device=device_kind) from None


def capture_probability(
    stats_total: int,
    hp_fraction: float,
    device_kind: str,
    base_rate: int = DEFAULT_CAPTURE_RATE,
) -> float:
    """Chance in [0, 1] that a throw succeeds.

    The top-tier device short-circuits to a guaranteed capture.
    """
    multiplier = device_multiplier(device_kind)
    if not 0.0 <= hp_fraction <= 1.0:
        raise ValidationError("HP fraction must be within [0, 1]", hp_fraction=hp_fraction)
    if multiplier >= GUARANTEED_CAPTURE_MULTIPLIER:
        return 1.0
    if stats_total <= 0:
        raise ValidationError("species stats total must be positive", stats_total=stats_total)

    current_hp = hp_fraction * stats_total
    value = (3 * stats_total - 2 * current_hp) * base_rate * multiplier / (3 * stats_total)
    return min(1.0, value / 255)


def species_pool(location: str | None) -> tuple[int, ...]:
    """Species ids that can appear at ``location``; unknown places fall back to the starters."""
    return LOCATION_SPECIES.get(location or "", DEFAULT_SPECIES_POOL)


def generate_wild_encounter(
    species: SpeciesData,
    character_level: int,
    rng: RandomSource,
    hp_fraction: float = 1.0,
) -> WildEncounter:
    low = max(MIN_LEVEL, character_level - WILD_LEVEL_SPREAD)
    high = min(MAX_LEVEL, character_level + WILD_LEVEL_SPREAD)
    return WildEncounter(
        species_id=species.species_id,
        level=rng.randint(low, high),
        hp_fraction=hp_fraction,
        is_shiny=rng.random() < SHINY_ODDS,
    )


def roll_encounter(
    store: DocumentStore,
    species_provider: SpeciesProvider,
    character_id: str,
    rng: RandomSource,
    location: str | None = None,
    hp_fraction: float = 1.0,
) -> WildEncounter:
    """Pick a wild creature for the character's location, levelled around the character.

    ``location`` overrides the character's ``currentLocation``. Species, level
    and shininess all come from ``rng``; nothing about the creature is taken
    from the caller.
    """
    with store.transaction() as txn:
        character = txn.get(CHARACTERS, character_id)
    if character is None:
        raise NotFoundError("character not found", character_id=character_id)

    location = location or character.get("currentLocation") or DEFAULT_LOCATION
    species = species_provider.get_species(rng.choice(species_pool(location)))
    encounter = generate_wild_encounter(species, int(character.get("level", MIN_LEVEL)), rng, hp_fraction)
    logger.debug("Encounter at %s for %s: %s L%d", location, character_id, species.name, encounter.level)
    return encounter


def _roll_gender(species: SpeciesData, rng: RandomSource) -> str | None:
    if species.gender_ratio is None:
        return None
    return "F" if rng.random() < species.gender_ratio else "M"


def _free_box_slot(txn: Transaction, character_id: str) -> tuple[int, int]:
    """First box with room, then its lowest free position."""
    occupied: dict[int, set[int]] = {}
    for key, document in txn.scan(CAPTURED_POKEMON, characterId=character_id):
        creature = creature_from_document(key, document)
        if creature.box_number is not None and creature.box_position is not None:
            occupied.setdefault(creature.box_number, set()).add(creature.box_position)

    box_number = 1
    while len(occupied.get(box_number, ())) >= BOX_CAPACITY:
        box_number += 1
    taken = occupied.get(box_number, set())
    position = next(slot for slot in range(1, BOX_CAPACITY + 1) if slot not in taken)
    return box_number, position


def _roll_creature(
    txn: Transaction,
    creature_id: str,
    character_id: str,
    character: dict[str, Any],
    species: SpeciesData,
    encounter: WildEncounter,
    device_kind: str,
    rng: RandomSource,
    now: datetime,
) -> OwnedCreature:
    ivs = StatBlock(**{stat: rng.randint(0, MAX_IV) for stat in STAT_NAMES})
    evs = StatBlock()
    nature = rng.choice(NATURE_NAMES)
    ability = rng.choice(species.abilities) if species.abilities else None
    gender = _roll_gender(species, rng)
    max_hp = derive_stats(species.base_stats, encounter.level, ivs, evs, nature).hp

    team_position: int | None = None
    box_number: int | None = None
    box_position: int | None = None
    team = character.get("team", [])
    if len(team) < MAX_TEAM_SIZE:
        team_position = len(team) + 1
    else:
        box_number, box_position = _free_box_slot(txn, character_id)

    return OwnedCreature(
        creature_id=creature_id,
        character_id=character_id,
        species_id=species.species_id,
        level=encounter.level,
        ivs=ivs,
        evs=evs,
        nature=nature,
        ability=ability,
        gender=gender,
        is_shiny=encounter.is_shiny,
        current_hp=max(1, int(max_hp * encounter.hp_fraction)),
        max_hp=max_hp,
        pokeball=device_kind,
        caught_level=encounter.level,
        caught_at=now,
        moves=tuple(species.level_up_moves[:MAX_OPENING_MOVES]),
        team_position=team_position,
        box_number=box_number,
        box_position=box_position,
    )


def attempt_capture(
    store: DocumentStore,
    species_provider: SpeciesProvider,
    character_id: str,
    encounter: WildEncounter,
    device_kind: str,
    rng: RandomSource | None = None,
    now: datetime | None = None,
    on_attempt: Callable[[CaptureAttempt], Any] | None = None,
) -> CaptureOutcome:
    """Throw one capture device at a wild encounter.

    The device is consumed whether or not the capture succeeds. Device
    consumption, creature creation, the character's counters and the audit
    record are written as one unit. ``on_attempt`` receives the attempt
    after it is committed.
    """
    device_multiplier(device_kind)
    validate_level(encounter.level)
    species = species_provider.get_species(encounter.species_id)
    probability = capture_probability(
        species.stats_total,
        encounter.hp_fraction,
        device_kind,
        species.base_capture_rate,
    )
    rng = rng if rng is not None else random.Random()
    now = now or utc_now()

    with store.transaction() as txn:
        character = txn.get(CHARACTERS, character_id)
        if character is None:
            raise NotFoundError("character not found", character_id=character_id)

        inventory = character.setdefault("inventory", {})
        available = int(inventory.get(device_kind, 0))
        if available <= 0:
            raise InsufficientDeviceError("no capture devices left", device=device_kind)
        inventory[device_kind] = available - 1

        success = rng.random() < probability
        creature: OwnedCreature | None = None
        if success:
            creature = _roll_creature(
                txn,
                str(uuid.uuid4()),
                character_id,
                character,
                species,
                encounter,
                device_kind,
                rng,
                now,
            )
            txn.put(CAPTURED_POKEMON, creature.creature_id, creature_document(creature))
            if creature.team_position is not None:
                character["team"] = [*character.get("team", []), creature.creature_id]
            stats = character.setdefault("stats", {})
            stats["pokemonCaught"] = int(stats.get("pokemonCaught", 0)) + 1
            if creature.is_shiny:
                stats["shinyFound"] = int(stats.get("shinyFound", 0)) + 1

        character["updatedAt"] = to_iso(now)
        txn.put(CHARACTERS, character_id, character)

        attempt = CaptureAttempt(
            attempt_id=str(uuid.uuid4()),
            character_id=character_id,
            user_id=str(character.get("userId", "")),
            species_id=species.species_id,
            level=encounter.level,
            device_kind=device_kind,
            success=success,
            probability=probability,
            attempted_at=now,
            creature_id=creature.creature_id if creature is not None else None,
            ivs=creature.ivs if creature is not None else None,
        )
        txn.put(CAPTURE_ATTEMPTS, attempt.attempt_id, attempt_document(attempt))

    logger.info(
        "Capture %s: character=%s species=%s device=%s p=%.3f",
        "succeeded" if success else "failed",
        character_id,
        species.name,
        device_kind,
        probability,
    )
    if on_attempt is not None:
        on_attempt(attempt)
    return CaptureOutcome(
        success=success,
        probability=probability,
        attempt=attempt,
        devices_remaining=available - 1,
        creature=creature,
    )
