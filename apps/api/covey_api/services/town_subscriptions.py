"""Binds a connected socket to a town session.

The handler is transport agnostic: anything exposing ``auth``, ``on``,
``emit`` and ``disconnect`` can subscribe, which keeps it testable with
plain mocks and lets the WebSocket router provide the real transport.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping, Optional
import logging

from packages.covey_core.town.areas import ConversationArea
from packages.covey_core.town.controller import InvalidSessionError, TownController, UnknownPlayerError
from packages.covey_core.town.listener import TownListener
from packages.covey_core.town.player import Player, UserLocation
from packages.covey_core.town.session import PlayerSession
from packages.covey_core.town.store import TownsStore

logger = logging.getLogger("covey_api.town_subscriptions")

EVENT_NEW_PLAYER = "newPlayer"
EVENT_PLAYER_MOVED = "playerMoved"
EVENT_PLAYER_DISCONNECT = "playerDisconnect"
EVENT_PLAYER_MOVEMENT = "playerMovement"
EVENT_TOWN_CLOSING = "townClosing"
EVENT_CONVERSATION_UPDATED = "conversationUpdated"
EVENT_DISCONNECT = "disconnect"


class TownSocket(ABC):
    auth: Mapping[str, Any]

    @abstractmethod
    def on(self, event: str, handler: Callable[..., Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def emit(self, event: str, *args: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def disconnect(self, close: bool = False) -> None:
        raise NotImplementedError


class SocketTownListener(TownListener):
    """Translates town events into outbound socket events."""

    def __init__(self, socket: TownSocket) -> None:
        self._socket = socket

    def on_player_joined(self, player: Player) -> None:
        self._socket.emit(EVENT_NEW_PLAYER, player.to_dict())

    def on_player_moved(self, moved_players: list[Player]) -> None:
        self._socket.emit(EVENT_PLAYER_MOVED, [player.to_dict() for player in moved_players])

    def on_player_disconnected(self, player: Player) -> None:
        self._socket.emit(EVENT_PLAYER_DISCONNECT, player.to_dict())

    def on_conversation_area_updated(self, area: ConversationArea) -> None:
        self._socket.emit(EVENT_CONVERSATION_UPDATED, area.to_dict())

    def on_town_destroyed(self) -> None:
        self._socket.emit(EVENT_TOWN_CLOSING)
        self._socket.disconnect(True)

    def close(self) -> None:
        self._socket.disconnect(True)


def _resolve_session(store: TownsStore, auth: Mapping[str, Any]) -> tuple[TownController, PlayerSession]:
    town_id = str(auth.get("coveyTownID") or "").strip()
    token = str(auth.get("token") or "").strip()
    controller = store.get_controller_for_town(town_id)
    if controller is None:
        raise InvalidSessionError(f"Unknown town: {town_id}", error_code="unknown_town")
    session = controller.get_session_by_token(token)
    if session is None:
        raise InvalidSessionError("Unknown session token", error_code="unknown_session")
    return controller, session


def town_subscription_handler(socket: TownSocket, store: TownsStore) -> Optional[PlayerSession]:
    try:
        controller, session = _resolve_session(store, socket.auth or {})
    except InvalidSessionError as e:
        logger.warning("[SOCKET] Rejected subscription: reason=%s", e.error_code)
        socket.disconnect(True)
        return None

    previous = session.release_listener()
    listener = SocketTownListener(socket)
    session.bind_listener(listener)
    controller.add_town_listener(listener)
    if previous is not None:
        controller.remove_town_listener(previous)
        if isinstance(previous, SocketTownListener):
            logger.info("[SOCKET] Replacing earlier connection: player_id='%s'", session.player.id)
            previous.close()
    logger.info(
        "[SOCKET] Subscribed: town_id='%s', player_id='%s'",
        controller.town_id,
        session.player.id,
    )

    def _on_disconnect(*_: Any) -> None:
        controller.remove_town_listener(listener)
        # A replaced connection no longer owns the session.
        if session.listener is listener:
            controller.destroy_session(session)

    def _on_player_movement(payload: Any) -> None:
        if session.listener is not listener:
            return
        if not isinstance(payload, Mapping):
            logger.warning("[SOCKET] Ignoring malformed movement: player_id='%s'", session.player.id)
            return
        try:
            location = UserLocation.from_dict(dict(payload))
        except (TypeError, ValueError) as e:
            logger.warning("[SOCKET] Ignoring invalid movement: player_id='%s', error=%s", session.player.id, e)
            return
        try:
            controller.update_player_location(session.player, location)
        except UnknownPlayerError:
            logger.warning("[SOCKET] Movement for departed player: player_id='%s'", session.player.id)

    socket.on(EVENT_DISCONNECT, _on_disconnect)
    socket.on(EVENT_PLAYER_MOVEMENT, _on_player_movement)
    return session
