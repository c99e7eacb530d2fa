"""Player records and their bounded location history."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Optional
import secrets

DIRECTIONS = ("front", "back", "left", "right")


def _new_player_id() -> str:
    return secrets.token_urlsafe(9)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


@dataclass(frozen=True)
class UserLocation:
    """A position report as sent by a client."""

    x: float
    y: float
    rotation: str = "front"
    moving: bool = False
    conversation_label: Optional[str] = None

    def __post_init__(self) -> None:
        if self.rotation not in DIRECTIONS:
            raise ValueError(f"Unknown rotation: {self.rotation}")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "x": self.x,
            "y": self.y,
            "rotation": self.rotation,
            "moving": self.moving,
        }
        if self.conversation_label is not None:
            out["conversationLabel"] = self.conversation_label
        return out

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> UserLocation:
        label = raw.get("conversationLabel", raw.get("conversation_label"))
        return UserLocation(
            x=float(raw.get("x", 0)),
            y=float(raw.get("y", 0)),
            rotation=str(raw.get("rotation") or "front"),
            moving=_as_bool(raw.get("moving", False)),
            conversation_label=str(label) if label else None,
        )


DEFAULT_LOCATION = UserLocation(x=0, y=0, rotation="front", moving=False)


class Player:
    """A participant in a town, or a follower trailing one.

    Followers are ordinary players owned by the player directly ahead of
    them in the chain. The chain itself lives in the town's player table;
    a player only records the id of its follower and of its leader.
    """

    PREVIOUS_STEP_SIZE = 10
    MAX_FOLLOWERS = 7

    def __init__(
        self,
        user_name: str,
        *,
        player_id: str | None = None,
        location: UserLocation | None = None,
        sprite_type: str = "atlas",
    ) -> None:
        self._id = player_id or _new_player_id()
        self._user_name = user_name
        self.location = location or DEFAULT_LOCATION
        self.sprite_type = sprite_type
        self.previous_steps: deque[UserLocation] = deque()
        self.follower_id: str | None = None
        self.leader_id: str | None = None
        self.active_area_label: str | None = None

    @property
    def id(self) -> str:
        return self._id

    @property
    def user_name(self) -> str:
        return self._user_name

    @property
    def is_follower(self) -> bool:
        return self.leader_id is not None

    def update_location(self, location: UserLocation) -> UserLocation | None:
        """Move to ``location`` and return the step owed to a follower.

        Once the history is full the oldest entry is handed down before
        it is evicted, so each link in a chain trails its leader by one
        full history window.
        """
        self.previous_steps.append(self.location)
        self.location = location
        handoff = None
        if len(self.previous_steps) >= self.PREVIOUS_STEP_SIZE:
            handoff = self.previous_steps[0]
        while len(self.previous_steps) > self.PREVIOUS_STEP_SIZE:
            self.previous_steps.popleft()
        return handoff

    def to_dict(self) -> dict[str, Any]:
        return {
            "_id": self._id,
            "_userName": self._user_name,
            "location": self.location.to_dict(),
            "spriteType": self.sprite_type,
        }

    def __repr__(self) -> str:
        return f"Player(id={self._id!r}, user_name={self._user_name!r})"
