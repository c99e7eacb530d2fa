"""Per-town controller: players, follower chains, areas and event fan-out."""

from __future__ import annotations

from typing import Any, Callable, Optional
import logging
import secrets
import uuid

from packages.covey_core.video.tokens import TokenProviderError, VideoTokenProvider

from .areas import AreaRegistry, ConversationArea
from .listener import TownListener
from .player import Player, UserLocation
from .session import PlayerSession
from .settings import TownSettings

logger = logging.getLogger("covey_core.town.controller")


class TownError(RuntimeError):
    def __init__(self, message: str, *, error_code: str) -> None:
        super().__init__(message)
        self.error_code = error_code


class InvalidSessionError(TownError):
    pass


class UnknownPlayerError(TownError):
    pass


def _new_town_id() -> str:
    return uuid.uuid4().hex[:10].upper()


class TownController:
    """Owns every player, session, area and listener of one town.

    All operations run to completion on the caller's thread; the only
    suspension point is the video token request inside ``add_player``.
    Listeners are notified synchronously in registration order and a
    failing listener never prevents delivery to the others.
    """

    def __init__(
        self,
        friendly_name: str,
        is_publicly_listed: bool,
        *,
        video_tokens: VideoTokenProvider,
        settings: TownSettings | None = None,
        town_id: str | None = None,
        on_destroyed: Optional[Callable[[TownController], None]] = None,
    ) -> None:
        self._town_id = town_id or _new_town_id()
        self._town_update_password = secrets.token_urlsafe(18)
        self.friendly_name = friendly_name
        self.is_publicly_listed = bool(is_publicly_listed)
        self.settings = settings or TownSettings()
        self._video_tokens = video_tokens
        self._on_destroyed = on_destroyed
        self._players: dict[str, Player] = {}
        self._sessions: dict[str, PlayerSession] = {}
        self._listeners: dict[int, TownListener] = {}
        self._areas = AreaRegistry()
        self._destroyed = False

    @property
    def town_id(self) -> str:
        return self._town_id

    @property
    def town_update_password(self) -> str:
        return self._town_update_password

    @property
    def capacity(self) -> int:
        return self.settings.town_capacity

    @property
    def occupancy(self) -> int:
        return len(self._players)

    @property
    def players(self) -> list[Player]:
        return list(self._players.values())

    @property
    def conversation_areas(self) -> list[ConversationArea]:
        return list(self._areas)

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def get_player(self, player_id: str) -> Optional[Player]:
        return self._players.get(player_id)

    def get_session_by_token(self, token: str) -> Optional[PlayerSession]:
        return self._sessions.get(token)

    def follower_of(self, player: Player) -> Optional[Player]:
        if player.follower_id is None:
            return None
        return self._players.get(player.follower_id)

    def follower_chain(self, player: Player) -> list[Player]:
        """Followers beneath ``player``, nearest first."""
        chain: list[Player] = []
        current = self.follower_of(player)
        while current is not None:
            chain.append(current)
            current = self.follower_of(current)
        return chain

    def root_of(self, player: Player) -> Player:
        current = player
        while current.leader_id is not None and current.leader_id in self._players:
            current = self._players[current.leader_id]
        return current

    def active_conversation_area(self, player: Player) -> Optional[ConversationArea]:
        return self._areas.get(player.active_area_label)

    def add_town_listener(self, listener: TownListener) -> None:
        self._listeners[id(listener)] = listener

    def remove_town_listener(self, listener: TownListener) -> None:
        self._listeners.pop(id(listener), None)

    def _broadcast(self, callback: str, *args: Any) -> None:
        for listener in list(self._listeners.values()):
            try:
                getattr(listener, callback)(*args)
            except Exception as e:
                logger.error(
                    "[TOWN] Listener delivery failed: town_id='%s', callback=%s, error=%s",
                    self._town_id,
                    callback,
                    e,
                )

    def _refresh_area(self, player: Player) -> list[ConversationArea]:
        """Re-resolve ``player``'s area and return the areas whose occupants changed."""
        resolved = self._areas.resolve(player.location)
        new_label = resolved.label if resolved is not None else None
        if new_label == player.active_area_label:
            return []
        changed: list[ConversationArea] = []
        previous = self._areas.get(player.active_area_label)
        if previous is not None and previous.remove_occupant(player.id):
            changed.append(previous)
        if resolved is not None:
            resolved.add_occupant(player.id)
            changed.append(resolved)
        player.active_area_label = new_label
        return changed

    def _broadcast_areas(self, areas: list[ConversationArea]) -> None:
        unique: dict[str, ConversationArea] = {}
        for area in areas:
            unique.setdefault(area.label, area)
        for area in unique.values():
            self._broadcast("on_conversation_area_updated", area)

    async def add_player(self, player: Player) -> PlayerSession:
        if self._destroyed:
            raise TownError(f"Town is closed: {self._town_id}", error_code="town_closed")
        session = PlayerSession(player=player)
        try:
            session.video_token = await self._video_tokens.get_token_for_town(self._town_id, player.id)
        except TokenProviderError:
            logger.error("[TOWN] Video token rejected: town_id='%s', player_id='%s'", self._town_id, player.id)
            raise
        except Exception as e:
            logger.error(
                "[TOWN] Video token provider failed: town_id='%s', player_id='%s', error=%s",
                self._town_id,
                player.id,
                e,
            )
            raise TokenProviderError(str(e), error_code="provider_failure") from e

        if self._destroyed:
            logger.warning("[TOWN] Town closed while joining: town_id='%s', player_id='%s'", self._town_id, player.id)
            raise TownError(f"Town is closed: {self._town_id}", error_code="town_closed")
        self._sessions[session.session_token] = session
        self._players[player.id] = player
        changed = self._refresh_area(player)
        logger.info(
            "[TOWN] Player joined: town_id='%s', player_id='%s', user_name='%s'",
            self._town_id,
            player.id,
            player.user_name,
        )
        self._broadcast("on_player_joined", player)
        self._broadcast_areas(changed)
        return session

    def update_player_location(self, player: Player, location: UserLocation) -> list[Player]:
        """Move ``player`` and cascade delayed steps down its follower chain.

        Returns ``player`` followed by the followers whose position
        changed, in chain order. A follower handed a step equal to where
        it already stands still records that step in its history.
        """
        if player.id not in self._players:
            raise UnknownPlayerError(
                f"Player is not in town {self._town_id}: {player.id}",
                error_code="unknown_player",
            )
        moved = [player]
        step = player.update_location(location)
        current = player
        while step is not None:
            follower = self.follower_of(current)
            if follower is None:
                break
            previous = follower.location
            step = follower.update_location(step)
            if follower.location != previous:
                moved.append(follower)
            current = follower

        changed: list[ConversationArea] = []
        for mover in moved:
            changed.extend(self._refresh_area(mover))

        logger.debug(
            "[TOWN] Player moved: town_id='%s', player_id='%s', chain_moved=%d",
            self._town_id,
            player.id,
            len(moved),
        )
        self._broadcast("on_player_moved", list(moved))
        self._broadcast_areas(changed)
        return moved

    def add_follower(self, player: Player, sprite_type: str) -> bool:
        if player.id not in self._players:
            logger.warning("[TOWN] Follower requested for unknown player: player_id='%s'", player.id)
            return False
        root = self.root_of(player)
        chain = self.follower_chain(root)
        if len(chain) >= Player.MAX_FOLLOWERS:
            logger.warning(
                "[TOWN] Follower limit reached: town_id='%s', player_id='%s', followers=%d",
                self._town_id,
                root.id,
                len(chain),
            )
            return False
        if self.settings.require_pet_area_for_followers and not self._areas.in_kind(player.location, "pet"):
            logger.warning(
                "[TOWN] Follower refused outside pet area: town_id='%s', player_id='%s'",
                self._town_id,
                player.id,
            )
            return False

        tail = chain[-1] if chain else root
        follower = Player(f"{root.user_name}'s pet", location=tail.location, sprite_type=sprite_type)
        follower.leader_id = tail.id
        tail.follower_id = follower.id
        self._players[follower.id] = follower

        area = self._areas.get(tail.active_area_label)
        if area is not None:
            area.add_occupant(follower.id)
            follower.active_area_label = area.label

        logger.info(
            "[TOWN] Follower added: town_id='%s', leader_id='%s', follower_id='%s', depth=%d",
            self._town_id,
            tail.id,
            follower.id,
            len(chain) + 1,
        )
        self._broadcast("on_player_joined", follower)
        if area is not None:
            self._broadcast("on_conversation_area_updated", area)
        return True

    def add_conversation_area(self, area: ConversationArea) -> bool:
        if not self._areas.add(area):
            return False
        changed: list[ConversationArea] = [area]
        for player in self._players.values():
            changed.extend(self._refresh_area(player))
        logger.info(
            "[TOWN] Area added: town_id='%s', label='%s', kind='%s', occupants=%d",
            self._town_id,
            area.label,
            area.kind,
            len(area.occupants_by_id),
        )
        self._broadcast_areas(changed)
        return True

    def _remove_player(self, player: Player) -> None:
        self._players.pop(player.id, None)
        area = self._areas.get(player.active_area_label)
        player.active_area_label = None
        if area is not None and area.remove_occupant(player.id):
            self._broadcast("on_conversation_area_updated", area)
        self._broadcast("on_player_disconnected", player)

    def destroy_session(self, session: PlayerSession) -> list[Player]:
        """Remove the session's player and its whole follower chain, leader first."""
        if self._sessions.get(session.session_token) is not session:
            logger.warning(
                "[TOWN] Ignoring unknown session: town_id='%s', player_id='%s'",
                self._town_id,
                session.player.id,
            )
            return []
        del self._sessions[session.session_token]

        removed = [session.player] + self.follower_chain(session.player)
        for player in removed:
            self._remove_player(player)

        listener = session.release_listener()
        if listener is not None:
            self.remove_town_listener(listener)
        logger.info(
            "[TOWN] Session destroyed: town_id='%s', player_id='%s', removed=%d",
            self._town_id,
            session.player.id,
            len(removed),
        )
        return removed

    def disconnect_all_players(self) -> None:
        if self._destroyed:
            return
        self._broadcast("on_town_destroyed")
        self._destroyed = True
        self._listeners.clear()
        for session in self._sessions.values():
            session.release_listener()
        self._sessions.clear()
        self._players.clear()
        self._areas.clear()
        logger.info("[TOWN] Town destroyed: town_id='%s'", self._town_id)
        if self._on_destroyed is not None:
            self._on_destroyed(self)

    def snapshot(self) -> dict[str, Any]:
        return {
            "town_id": self._town_id,
            "friendly_name": self.friendly_name,
            "is_publicly_listed": self.is_publicly_listed,
            "current_players": [player.to_dict() for player in self._players.values()],
            "conversation_areas": [area.to_dict() for area in self._areas],
        }
