"""Town presence and session control for Covey Town."""

from .areas import AreaRegistry, BoundingBox, ConversationArea
from .controller import InvalidSessionError, TownController, TownError, UnknownPlayerError
from .listener import TownListener
from .player import Player, UserLocation
from .session import PlayerSession
from .settings import TownSettings
from .store import TownsStore

__all__ = [
    "AreaRegistry",
    "BoundingBox",
    "ConversationArea",
    "InvalidSessionError",
    "TownController",
    "TownError",
    "UnknownPlayerError",
    "TownListener",
    "Player",
    "UserLocation",
    "PlayerSession",
    "TownSettings",
    "TownsStore",
]
