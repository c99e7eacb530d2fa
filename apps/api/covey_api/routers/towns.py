"""Town directory, lifecycle and membership endpoints."""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import BaseModel, Field

from packages.covey_core.town.areas import BoundingBox, ConversationArea
from packages.covey_core.town.controller import TownController, TownError
from packages.covey_core.town.player import Player
from packages.covey_core.town.session import PlayerSession
from packages.covey_core.town.store import TownsStore
from packages.covey_core.video.tokens import TokenProviderError

from ..middleware.rate_limit import SlidingWindowLimiter

logger = logging.getLogger("covey_api.towns")


router = APIRouter(prefix="/api/v1/towns", tags=["towns"])

_create_limiter = SlidingWindowLimiter(
    max_events=int(os.environ.get("COVEY_TOWN_CREATE_LIMIT") or 30),
    window_seconds=int(os.environ.get("COVEY_TOWN_CREATE_WINDOW_SECONDS") or 3600),
)


def reset_rate_limiter_for_tests() -> None:
    _create_limiter.reset()


class CreateTownRequest(BaseModel):
    friendly_name: str = Field(min_length=1, max_length=80)
    is_publicly_listed: bool = True


class UpdateTownRequest(BaseModel):
    friendly_name: Optional[str] = Field(default=None, max_length=80)
    is_publicly_listed: Optional[bool] = None


class JoinTownRequest(BaseModel):
    user_name: str = Field(min_length=1, max_length=60)
    sprite_type: str = Field(default="atlas", min_length=1, max_length=60)


class BoundingBoxRequest(BaseModel):
    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class CreateAreaRequest(BaseModel):
    label: str = Field(min_length=1, max_length=80)
    topic: str = Field(default="", max_length=200)
    kind: str = Field(default="conversation", pattern="^(conversation|pet)$")
    bounding_box: BoundingBoxRequest


class AddFollowerRequest(BaseModel):
    sprite_type: str = Field(default="pet", min_length=1, max_length=60)


def _store(request: Request) -> TownsStore:
    return request.app.state.towns_store


def _require_town(store: TownsStore, town_id: str) -> TownController:
    controller = store.get_controller_for_town(town_id)
    if controller is None:
        logger.warning("[TOWNS] Town not found: town_id='%s'", town_id)
        raise HTTPException(status_code=404, detail=f"Town not found: {town_id}")
    return controller


def _require_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    prefix = "bearer "
    if not authorization.lower().startswith(prefix):
        raise HTTPException(status_code=401, detail="Authorization must be Bearer token")
    token = authorization[len(prefix) :].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def _require_session(controller: TownController, authorization: Optional[str]) -> PlayerSession:
    token = _require_bearer_token(authorization)
    session = controller.get_session_by_token(token)
    if session is None:
        raise HTTPException(status_code=403, detail="Invalid session token for this town")
    return session


def _require_password(password: Optional[str]) -> str:
    value = str(password or "").strip()
    if not value:
        raise HTTPException(status_code=401, detail="Missing X-Covey-Town-Password header")
    return value


@router.post("")
@router.post("/")
async def create_town(req: CreateTownRequest, request: Request) -> dict[str, Any]:
    client_ip = request.client.host if request.client else "unknown"
    if not _create_limiter.allow(client_ip):
        raise HTTPException(status_code=429, detail="Too many towns created. Try again later.")

    friendly_name = req.friendly_name.strip()
    if not friendly_name:
        raise HTTPException(status_code=400, detail="friendly_name must not be blank")
    controller = _store(request).create_town(friendly_name, req.is_publicly_listed)
    logger.info("[TOWNS] Town created: town_id='%s'", controller.town_id)
    return {
        "town_id": controller.town_id,
        "town_update_password": controller.town_update_password,
    }


@router.get("")
@router.get("/")
async def list_towns(request: Request) -> dict[str, Any]:
    towns = _store(request).list_public_towns()
    logger.info("[TOWNS] Towns listed: count=%d", len(towns))
    return {"count": len(towns), "towns": towns}


@router.get("/{town_id}")
async def get_town(town_id: str, request: Request) -> dict[str, Any]:
    controller = _require_town(_store(request), town_id)
    return {"town": controller.snapshot()}


@router.patch("/{town_id}")
async def update_town(
    town_id: str,
    req: UpdateTownRequest,
    request: Request,
    x_covey_town_password: Optional[str] = Header(default=None),
) -> dict[str, Any]:
    store = _store(request)
    _require_town(store, town_id)
    password = _require_password(x_covey_town_password)
    updated = store.update_town(
        town_id,
        password,
        friendly_name=req.friendly_name,
        is_publicly_listed=req.is_publicly_listed,
    )
    if not updated:
        raise HTTPException(status_code=403, detail="Invalid town password")
    return {"ok": True}


@router.delete("/{town_id}")
async def delete_town(
    town_id: str,
    request: Request,
    x_covey_town_password: Optional[str] = Header(default=None),
) -> dict[str, Any]:
    store = _store(request)
    _require_town(store, town_id)
    password = _require_password(x_covey_town_password)
    if not store.delete_town(town_id, password):
        raise HTTPException(status_code=403, detail="Invalid town password")
    logger.info("[TOWNS] Town deleted: town_id='%s'", town_id)
    return {"ok": True}


@router.post("/{town_id}/players")
async def join_town(town_id: str, req: JoinTownRequest, request: Request) -> dict[str, Any]:
    controller = _require_town(_store(request), town_id)
    if controller.occupancy >= controller.capacity:
        raise HTTPException(status_code=409, detail=f"Town is full: {town_id}")

    player = Player(req.user_name.strip() or req.user_name, sprite_type=req.sprite_type)
    try:
        session = await controller.add_player(player)
    except TokenProviderError as e:
        logger.error("[TOWNS] Join failed, video token unavailable: town_id='%s', code=%s", town_id, e.error_code)
        raise HTTPException(status_code=502, detail="Video token provider unavailable")
    except TownError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "user_id": player.id,
        "session_token": session.session_token,
        "video_token": session.video_token,
        **controller.snapshot(),
    }


@router.post("/{town_id}/conversation-areas")
async def create_conversation_area(
    town_id: str,
    req: CreateAreaRequest,
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> dict[str, Any]:
    controller = _require_town(_store(request), town_id)
    _require_session(controller, authorization)
    area = ConversationArea(
        label=req.label.strip(),
        topic=req.topic,
        kind=req.kind,
        bounding_box=BoundingBox(
            x=req.bounding_box.x,
            y=req.bounding_box.y,
            width=req.bounding_box.width,
            height=req.bounding_box.height,
        ),
    )
    if not controller.add_conversation_area(area):
        raise HTTPException(status_code=400, detail=f"Unable to create area: {req.label}")
    return {"area": area.to_dict()}


@router.post("/{town_id}/followers")
async def add_follower(
    town_id: str,
    req: AddFollowerRequest,
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> dict[str, Any]:
    controller = _require_town(_store(request), town_id)
    session = _require_session(controller, authorization)
    if not controller.add_follower(session.player, req.sprite_type):
        raise HTTPException(status_code=409, detail="Follower could not be added")
    chain = controller.follower_chain(session.player)
    return {"follower": chain[-1].to_dict(), "follower_count": len(chain)}
