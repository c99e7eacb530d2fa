"""Environment-driven settings for town controllers."""

from __future__ import annotations

from dataclasses import dataclass
import os


def _truthy_env(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int, *, minimum: int = 1) -> int:
    raw = str(os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


@dataclass(frozen=True)
class TownSettings:
    require_pet_area_for_followers: bool = False
    town_capacity: int = 50

    @classmethod
    def from_env(cls) -> TownSettings:
        return cls(
            require_pet_area_for_followers=_truthy_env("COVEY_REQUIRE_PET_AREA_FOR_FOLLOWERS", False),
            town_capacity=_int_env("COVEY_TOWN_CAPACITY", 50),
        )
