"""Capability interface implemented by anything that wants town events."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .areas import ConversationArea
    from .player import Player


class TownListener(ABC):
    """Receives state changes from a town, synchronously and in order."""

    @abstractmethod
    def on_player_joined(self, player: Player) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_player_moved(self, moved_players: list[Player]) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_player_disconnected(self, player: Player) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_conversation_area_updated(self, area: ConversationArea) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_town_destroyed(self) -> None:
        raise NotImplementedError
