"""Species static data providers.

The core only needs base stats, abilities, gender ratio, capture rate and
the opening level-up moves. Providers raise ``UnknownSpeciesError`` when a
lookup has no match.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

import httpx

from .errors import UnknownSpeciesError
from .models import SpeciesData, StatBlock

POKEAPI_URL = "https://pokeapi.co/api/v2"
DEFAULT_CAPTURE_RATE = 45

POKEAPI_STAT_NAMES = {
    "hp": "hp",
    "attack": "attack",
    "defense": "defense",
    "special-attack": "special_attack",
    "special-defense": "special_defense",
    "speed": "speed",
}


class SpeciesProvider(Protocol):
    def get_species(self, id_or_name: int | str) -> SpeciesData:
        """Return species data or raise UnknownSpeciesError."""


def _species(
    species_id: int,
    name: str,
    stats: tuple[int, int, int, int, int, int],
    abilities: tuple[str, ...],
    gender_ratio: float | None,
    capture_rate: int,
    moves: tuple[str, ...],
) -> SpeciesData:
    hp, attack, defense, special_attack, special_defense, speed = stats
    return SpeciesData(
        species_id=species_id,
        name=name,
        base_stats=StatBlock(hp, attack, defense, special_attack, special_defense, speed),
        abilities=abilities,
        gender_ratio=gender_ratio,
        base_capture_rate=capture_rate,
        level_up_moves=moves,
    )


DEFAULT_SPECIES: tuple[SpeciesData, ...] = (
    _species(1, "bulbasaur", (45, 49, 49, 65, 65, 45), ("overgrow", "chlorophyll"), 0.125, 45,
             ("tackle", "growl", "vine-whip", "leech-seed")),
    _species(4, "charmander", (39, 52, 43, 60, 50, 65), ("blaze", "solar-power"), 0.125, 45,
             ("scratch", "growl", "ember", "smokescreen")),
    _species(7, "squirtle", (44, 48, 65, 50, 64, 43), ("torrent", "rain-dish"), 0.125, 45,
             ("tackle", "tail-whip", "water-gun", "withdraw")),
    _species(10, "caterpie", (45, 30, 35, 20, 20, 45), ("shield-dust", "run-away"), 0.5, 255,
             ("tackle", "string-shot", "bug-bite")),
    _species(11, "metapod", (50, 20, 55, 25, 25, 30), ("shed-skin",), 0.5, 120,
             ("harden",)),
    _species(13, "weedle", (40, 35, 30, 20, 20, 50), ("shield-dust", "run-away"), 0.5, 255,
             ("poison-sting", "string-shot", "bug-bite")),
    _species(14, "kakuna", (45, 25, 50, 25, 25, 35), ("shed-skin",), 0.5, 120,
             ("harden",)),
    _species(16, "pidgey", (40, 45, 40, 35, 35, 56), ("keen-eye", "tangled-feet", "big-pecks"), 0.5, 255,
             ("tackle", "sand-attack", "gust", "quick-attack")),
    _species(19, "rattata", (30, 56, 35, 25, 35, 72), ("run-away", "guts", "hustle"), 0.5, 255,
             ("tackle", "tail-whip", "quick-attack", "focus-energy")),
    _species(25, "pikachu", (35, 55, 40, 50, 50, 90), ("static", "lightning-rod"), 0.5, 190,
             ("thunder-shock", "growl", "tail-whip", "quick-attack")),
    _species(81, "magnemite", (25, 35, 70, 95, 55, 45), ("magnet-pull", "sturdy", "analytic"), None, 190,
             ("tackle", "thunder-shock", "supersonic", "sonic-boom")),
)


@dataclass
class StaticSpeciesProvider:
    species: Iterable[SpeciesData] = field(default=DEFAULT_SPECIES)

    def __post_init__(self) -> None:
        self._by_key: dict[str, SpeciesData] = {}
        for entry in self.species:
            self._by_key[str(entry.species_id)] = entry
            self._by_key[entry.name.lower()] = entry

    def get_species(self, id_or_name: int | str) -> SpeciesData:
        entry = self._by_key.get(str(id_or_name).strip().lower())
        if entry is None:
            raise UnknownSpeciesError("unknown species", species=id_or_name)
        return entry


def gender_ratio_from_rate(gender_rate: int) -> float | None:
    """Convert PokeAPI's eighths-female rate (-1 for genderless) to a probability."""
    if gender_rate < 0:
        return None
    return gender_rate / 8


def _level_up_moves(moves: list[dict[str, Any]]) -> tuple[str, ...]:
    learned: list[tuple[int, str]] = []
    for entry in moves:
        levels = [
            int(detail.get("level_learned_at", 0))
            for detail in entry.get("version_group_details", [])
            if detail.get("move_learn_method", {}).get("name") == "level-up"
        ]
        if levels:
            learned.append((min(levels), entry["move"]["name"]))
    learned.sort()
    return tuple(name for _, name in learned)


@dataclass
class PokeApiSpeciesProvider:
    base_url: str = POKEAPI_URL
    timeout: float = 10.0

    def __post_init__(self) -> None:
        self._memo: dict[str, SpeciesData] = {}

    def _fetch(self, path: str, id_or_name: int | str) -> dict[str, Any]:
        response = httpx.get(
            f"{self.base_url.rstrip('/')}/{path}",
            headers={"User-Agent": "pokearena/0.1"},
            timeout=self.timeout,
        )
        if response.status_code == 404:
            raise UnknownSpeciesError("unknown species", species=id_or_name)
        response.raise_for_status()
        return response.json()

    def get_species(self, id_or_name: int | str) -> SpeciesData:
        lookup = str(id_or_name).strip().lower()
        cached = self._memo.get(lookup)
        if cached is not None:
            return cached

        pokemon = self._fetch(f"pokemon/{lookup}", id_or_name)
        species = self._fetch(f"pokemon-species/{pokemon['species']['name']}", id_or_name)

        base_stats = StatBlock(
            **{
                POKEAPI_STAT_NAMES[entry["stat"]["name"]]: int(entry["base_stat"])
                for entry in pokemon.get("stats", [])
                if entry["stat"]["name"] in POKEAPI_STAT_NAMES
            }
        )
        capture_rate = species.get("capture_rate")
        data = SpeciesData(
            species_id=int(pokemon["id"]),
            name=str(pokemon["name"]),
            base_stats=base_stats,
            abilities=tuple(entry["ability"]["name"] for entry in pokemon.get("abilities", [])),
            gender_ratio=gender_ratio_from_rate(int(species.get("gender_rate", 4))),
            base_capture_rate=int(capture_rate) if capture_rate is not None else DEFAULT_CAPTURE_RATE,
            level_up_moves=_level_up_moves(pokemon.get("moves", [])),
        )
        self._memo[str(data.species_id)] = data
        self._memo[data.name] = data
        return data


def create_species_provider(pokeapi_url: str | None) -> SpeciesProvider:
    if pokeapi_url:
        return PokeApiSpeciesProvider(base_url=pokeapi_url)
    return StaticSpeciesProvider()
