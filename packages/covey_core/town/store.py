"""Process-wide registry of live towns."""

from __future__ import annotations

from typing import Any, Optional
import hmac
import logging

from packages.covey_core.video.tokens import VideoTokenProvider

from .controller import TownController
from .settings import TownSettings

logger = logging.getLogger("covey_core.town.store")


def _password_matches(controller: TownController, password: str) -> bool:
    return hmac.compare_digest(controller.town_update_password.encode("utf-8"), str(password or "").encode("utf-8"))


class TownsStore:
    """Creates, finds and tears down towns.

    One store is created at process start and handed to whatever layer
    needs it; ``clear`` closes every town on shutdown.
    """

    def __init__(self, *, video_tokens: VideoTokenProvider, settings: TownSettings | None = None) -> None:
        self._video_tokens = video_tokens
        self.settings = settings or TownSettings()
        self._towns: dict[str, TownController] = {}

    def __len__(self) -> int:
        return len(self._towns)

    def _forget(self, controller: TownController) -> None:
        if self._towns.get(controller.town_id) is controller:
            del self._towns[controller.town_id]
            logger.info("[STORE] Town removed: town_id='%s'", controller.town_id)

    def create_town(self, friendly_name: str, is_publicly_listed: bool) -> TownController:
        controller = TownController(
            friendly_name,
            is_publicly_listed,
            video_tokens=self._video_tokens,
            settings=self.settings,
            on_destroyed=self._forget,
        )
        self._towns[controller.town_id] = controller
        logger.info(
            "[STORE] Town created: town_id='%s', friendly_name='%s', public=%s",
            controller.town_id,
            friendly_name,
            controller.is_publicly_listed,
        )
        return controller

    def get_controller_for_town(self, town_id: str) -> Optional[TownController]:
        return self._towns.get(town_id)

    def list_public_towns(self) -> list[dict[str, Any]]:
        return [
            {
                "friendly_name": town.friendly_name,
                "town_id": town.town_id,
                "current_occupancy": town.occupancy,
                "maximum_occupancy": town.capacity,
            }
            for town in self._towns.values()
            if town.is_publicly_listed
        ]

    def update_town(
        self,
        town_id: str,
        password: str,
        *,
        friendly_name: str | None = None,
        is_publicly_listed: bool | None = None,
    ) -> bool:
        controller = self._towns.get(town_id)
        if controller is None or not _password_matches(controller, password):
            logger.warning("[STORE] Town update refused: town_id='%s'", town_id)
            return False
        if friendly_name is not None and friendly_name.strip():
            controller.friendly_name = friendly_name
        if is_publicly_listed is not None:
            controller.is_publicly_listed = bool(is_publicly_listed)
        logger.info("[STORE] Town updated: town_id='%s'", town_id)
        return True

    def delete_town(self, town_id: str, password: str) -> bool:
        controller = self._towns.get(town_id)
        if controller is None or not _password_matches(controller, password):
            logger.warning("[STORE] Town delete refused: town_id='%s'", town_id)
            return False
        controller.disconnect_all_players()
        self._forget(controller)
        return True

    def clear(self) -> None:
        for controller in list(self._towns.values()):
            controller.disconnect_all_players()
        self._towns.clear()
