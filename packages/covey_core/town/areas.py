"""Labelled rectangular areas and the per-town registry that resolves them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional
import logging

from .player import UserLocation

logger = logging.getLogger("covey_core.town.areas")

AREA_KINDS = ("conversation", "pet")


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box centred on (x, y)."""

    x: float
    y: float
    width: float
    height: float

    def contains(self, x: float, y: float) -> bool:
        half_w = self.width / 2
        half_h = self.height / 2
        return (self.x - half_w < x < self.x + half_w) and (self.y - half_h < y < self.y + half_h)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class ConversationArea:
    label: str
    topic: str
    bounding_box: BoundingBox
    kind: str = "conversation"
    occupants_by_id: list[str] = field(default_factory=list)

    def contains(self, location: UserLocation) -> bool:
        return self.bounding_box.contains(location.x, location.y)

    def add_occupant(self, player_id: str) -> None:
        if player_id not in self.occupants_by_id:
            self.occupants_by_id.append(player_id)

    def remove_occupant(self, player_id: str) -> bool:
        if player_id not in self.occupants_by_id:
            return False
        self.occupants_by_id.remove(player_id)
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "topic": self.topic,
            "kind": self.kind,
            "occupantsByID": list(self.occupants_by_id),
            "boundingBox": self.bounding_box.to_dict(),
        }


class AreaRegistry:
    """Areas of one town, kept in registration order.

    Registration order doubles as the tie-break when a point falls inside
    several overlapping areas: the earliest registered area wins.
    """

    def __init__(self) -> None:
        self._areas: dict[str, ConversationArea] = {}

    def __iter__(self) -> Iterator[ConversationArea]:
        return iter(list(self._areas.values()))

    def __len__(self) -> int:
        return len(self._areas)

    def get(self, label: str | None) -> Optional[ConversationArea]:
        if not label:
            return None
        return self._areas.get(label)

    def add(self, area: ConversationArea) -> bool:
        label = str(area.label or "").strip()
        if not label:
            logger.warning("[AREAS] Rejected area without a label")
            return False
        if area.kind not in AREA_KINDS:
            logger.warning("[AREAS] Rejected area with unknown kind: label='%s', kind='%s'", label, area.kind)
            return False
        if area.bounding_box.width <= 0 or area.bounding_box.height <= 0:
            logger.warning("[AREAS] Rejected degenerate area: label='%s'", label)
            return False
        if label in self._areas:
            logger.warning("[AREAS] Duplicate area label: label='%s'", label)
            return False
        self._areas[label] = area
        return True

    def resolve(self, location: UserLocation) -> Optional[ConversationArea]:
        # A reported label is authoritative, even when it names nothing.
        if location.conversation_label:
            return self._areas.get(location.conversation_label)
        for area in self._areas.values():
            if area.contains(location):
                return area
        return None

    def in_kind(self, location: UserLocation, kind: str) -> bool:
        return any(area.kind == kind and area.contains(location) for area in self._areas.values())

    def clear(self) -> None:
        self._areas.clear()
