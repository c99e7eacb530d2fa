"""Binding between a connected transport and the player it controls."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional
import secrets

from .listener import TownListener
from .player import Player


def _new_session_token() -> str:
    return f"covey_session_{secrets.token_urlsafe(18)}"


@dataclass(eq=False)
class PlayerSession:
    player: Player
    session_token: str = field(default_factory=_new_session_token)
    video_token: Optional[str] = None
    listener: Optional[TownListener] = None

    def bind_listener(self, listener: TownListener) -> None:
        self.listener = listener

    def release_listener(self) -> Optional[TownListener]:
        listener, self.listener = self.listener, None
        return listener
