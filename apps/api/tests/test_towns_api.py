#!/usr/bin/env python3

from __future__ import annotations

import unittest
from typing import Any
from unittest.mock import patch

from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from apps.api.covey_api.main import app
from apps.api.covey_api.routers import towns as towns_router
from apps.api.covey_api.routers.towns import reset_rate_limiter_for_tests as reset_rate_limiter
from packages.covey_core.town.settings import TownSettings
from packages.covey_core.town.store import TownsStore
from packages.covey_core.video.tokens import TokenProviderError, VideoTokenProvider


class StaticVideoTokens(VideoTokenProvider):
    def __init__(self) -> None:
        self.fail = False

    async def get_token_for_town(self, town_id: str, player_id: str) -> str:
        if self.fail:
            raise TokenProviderError("relay offline", error_code="relay_offline")
        return f"video:{town_id}:{player_id}"


class TownsApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.video = StaticVideoTokens()
        self.store = TownsStore(video_tokens=self.video, settings=TownSettings(town_capacity=3))
        app.state.towns_store = self.store
        reset_rate_limiter()
        self.client = TestClient(app)

    def tearDown(self) -> None:
        self.store.clear()

    def _create_town(self, name: str = "Test Town", public: bool = True) -> dict[str, Any]:
        res = self.client.post("/api/v1/towns", json={"friendly_name": name, "is_publicly_listed": public})
        self.assertEqual(res.status_code, 200)
        return res.json()

    def _join(self, town_id: str, user_name: str = "alice") -> dict[str, Any]:
        res = self.client.post(f"/api/v1/towns/{town_id}/players", json={"user_name": user_name})
        self.assertEqual(res.status_code, 200)
        return res.json()

    def test_town_directory_empty_then_populated(self) -> None:
        empty = self.client.get("/api/v1/towns")
        self.assertEqual(empty.status_code, 200)
        self.assertEqual(empty.json(), {"count": 0, "towns": []})

        created = self._create_town("Main Street")
        self._create_town("Back Alley", public=False)
        self.assertTrue(created["town_update_password"])

        directory = self.client.get("/api/v1/towns")
        self.assertEqual(directory.status_code, 200)
        payload = directory.json()
        self.assertEqual(payload["count"], 1)
        self.assertEqual(payload["towns"][0]["town_id"], created["town_id"])
        self.assertEqual(payload["towns"][0]["friendly_name"], "Main Street")
        self.assertEqual(payload["towns"][0]["current_occupancy"], 0)
        self.assertEqual(payload["towns"][0]["maximum_occupancy"], 3)

    def test_create_town_rejects_blank_name(self) -> None:
        res = self.client.post("/api/v1/towns", json={"friendly_name": "   "})
        self.assertEqual(res.status_code, 400)
        res = self.client.post("/api/v1/towns", json={"friendly_name": ""})
        self.assertEqual(res.status_code, 422)

    def test_create_town_is_rate_limited(self) -> None:
        with patch.object(towns_router._create_limiter, "allow", return_value=False):
            res = self.client.post("/api/v1/towns", json={"friendly_name": "Spam"})
        self.assertEqual(res.status_code, 429)
        self.assertEqual(len(self.store), 0)

    def test_unknown_town_is_404(self) -> None:
        self.assertEqual(self.client.get("/api/v1/towns/NOPE").status_code, 404)
        res = self.client.post("/api/v1/towns/NOPE/players", json={"user_name": "alice"})
        self.assertEqual(res.status_code, 404)

    def test_join_returns_session_and_town_state(self) -> None:
        town_id = self._create_town()["town_id"]
        joined = self._join(town_id, "alice")
        self.assertTrue(joined["session_token"])
        self.assertEqual(joined["video_token"], f"video:{town_id}:{joined['user_id']}")
        self.assertEqual(joined["town_id"], town_id)
        self.assertEqual([p["_id"] for p in joined["current_players"]], [joined["user_id"]])
        self.assertEqual(joined["current_players"][0]["_userName"], "alice")

        town = self.client.get(f"/api/v1/towns/{town_id}").json()["town"]
        self.assertEqual(len(town["current_players"]), 1)

    def test_join_full_town_is_conflict(self) -> None:
        town_id = self._create_town()["town_id"]
        for name in ("a", "b", "c"):
            self._join(town_id, name)
        res = self.client.post(f"/api/v1/towns/{town_id}/players", json={"user_name": "d"})
        self.assertEqual(res.status_code, 409)

    def test_join_with_provider_failure_is_bad_gateway(self) -> None:
        town_id = self._create_town()["town_id"]
        self.video.fail = True
        res = self.client.post(f"/api/v1/towns/{town_id}/players", json={"user_name": "alice"})
        self.assertEqual(res.status_code, 502)
        town = self.client.get(f"/api/v1/towns/{town_id}").json()["town"]
        self.assertEqual(town["current_players"], [])

    def test_update_town_requires_password(self) -> None:
        created = self._create_town("Old Name", public=False)
        town_id = created["town_id"]

        missing = self.client.patch(f"/api/v1/towns/{town_id}", json={"friendly_name": "New"})
        self.assertEqual(missing.status_code, 401)
        wrong = self.client.patch(
            f"/api/v1/towns/{town_id}",
            json={"friendly_name": "New"},
            headers={"X-Covey-Town-Password": "wrong"},
        )
        self.assertEqual(wrong.status_code, 403)

        ok = self.client.patch(
            f"/api/v1/towns/{town_id}",
            json={"friendly_name": "New Name", "is_publicly_listed": True},
            headers={"X-Covey-Town-Password": created["town_update_password"]},
        )
        self.assertEqual(ok.status_code, 200)
        listing = self.client.get("/api/v1/towns").json()
        self.assertEqual(listing["towns"][0]["friendly_name"], "New Name")

    def test_delete_town(self) -> None:
        created = self._create_town()
        town_id = created["town_id"]
        wrong = self.client.delete(f"/api/v1/towns/{town_id}", headers={"X-Covey-Town-Password": "wrong"})
        self.assertEqual(wrong.status_code, 403)
        ok = self.client.delete(
            f"/api/v1/towns/{town_id}",
            headers={"X-Covey-Town-Password": created["town_update_password"]},
        )
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(self.client.get(f"/api/v1/towns/{town_id}").status_code, 404)

    def test_conversation_area_requires_session(self) -> None:
        town_id = self._create_town()["town_id"]
        body = {"label": "lobby", "topic": "hi", "bounding_box": {"x": 0, "y": 0, "width": 10, "height": 10}}
        self.assertEqual(self.client.post(f"/api/v1/towns/{town_id}/conversation-areas", json=body).status_code, 401)
        res = self.client.post(
            f"/api/v1/towns/{town_id}/conversation-areas",
            json=body,
            headers={"Authorization": "Bearer not-a-session"},
        )
        self.assertEqual(res.status_code, 403)

    def test_conversation_area_adopts_players(self) -> None:
        town_id = self._create_town()["town_id"]
        joined = self._join(town_id)
        headers = {"Authorization": f"Bearer {joined['session_token']}"}
        body = {"label": "lobby", "topic": "hi", "bounding_box": {"x": 0, "y": 0, "width": 10, "height": 10}}
        res = self.client.post(f"/api/v1/towns/{town_id}/conversation-areas", json=body, headers=headers)
        self.assertEqual(res.status_code, 200)
        area = res.json()["area"]
        self.assertEqual(area["label"], "lobby")
        self.assertEqual(area["occupantsByID"], [joined["user_id"]])

        dup = self.client.post(f"/api/v1/towns/{town_id}/conversation-areas", json=body, headers=headers)
        self.assertEqual(dup.status_code, 400)

        bad_kind = dict(body, label="stage", kind="stage")
        res = self.client.post(f"/api/v1/towns/{town_id}/conversation-areas", json=bad_kind, headers=headers)
        self.assertEqual(res.status_code, 422)

    def test_followers_up_to_limit(self) -> None:
        town_id = self._create_town()["town_id"]
        joined = self._join(town_id)
        headers = {"Authorization": f"Bearer {joined['session_token']}"}
        for expected in range(1, 8):
            res = self.client.post(f"/api/v1/towns/{town_id}/followers", json={"sprite_type": "cat"}, headers=headers)
            self.assertEqual(res.status_code, 200)
            self.assertEqual(res.json()["follower_count"], expected)
            self.assertEqual(res.json()["follower"]["spriteType"], "cat")
        res = self.client.post(f"/api/v1/towns/{town_id}/followers", json={}, headers=headers)
        self.assertEqual(res.status_code, 409)

        town = self.client.get(f"/api/v1/towns/{town_id}").json()["town"]
        self.assertEqual(len(town["current_players"]), 8)


class TownSocketApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = TownsStore(video_tokens=StaticVideoTokens())
        app.state.towns_store = self.store
        reset_rate_limiter()
        self.client = TestClient(app)
        created = self.client.post("/api/v1/towns", json={"friendly_name": "Socket Town"}).json()
        self.town_id = created["town_id"]
        self.password = created["town_update_password"]
        self.joined = self.client.post(f"/api/v1/towns/{self.town_id}/players", json={"user_name": "alice"}).json()

    def tearDown(self) -> None:
        self.store.clear()

    def _socket_url(self, token: str) -> str:
        return f"/api/v1/towns/{self.town_id}/socket?token={token}"

    def test_invalid_token_is_closed(self) -> None:
        with self.assertRaises(WebSocketDisconnect) as ctx:
            with self.client.websocket_connect(self._socket_url("bogus")) as ws:
                ws.receive_json()
        self.assertEqual(ctx.exception.code, 4401)

    def test_events_reach_subscriber(self) -> None:
        with self.client.websocket_connect(self._socket_url(self.joined["session_token"])) as ws:
            bob = self.client.post(f"/api/v1/towns/{self.town_id}/players", json={"user_name": "bob"}).json()
            frame = ws.receive_json()
            self.assertEqual(frame["event"], "newPlayer")
            self.assertEqual(frame["args"][0]["_id"], bob["user_id"])

            ws.send_json({"event": "playerMovement", "payload": {"x": 5, "y": 7, "rotation": "left", "moving": True}})
            frame = ws.receive_json()
            self.assertEqual(frame["event"], "playerMoved")
            self.assertEqual(frame["args"][0][0]["_id"], self.joined["user_id"])
            self.assertEqual(frame["args"][0][0]["location"]["rotation"], "left")

    def test_town_closing_is_sent_before_close(self) -> None:
        with self.client.websocket_connect(self._socket_url(self.joined["session_token"])) as ws:
            res = self.client.delete(
                f"/api/v1/towns/{self.town_id}",
                headers={"X-Covey-Town-Password": self.password},
            )
            self.assertEqual(res.status_code, 200)
            self.assertEqual(ws.receive_json(), {"event": "townClosing", "args": []})
            with self.assertRaises(WebSocketDisconnect) as ctx:
                ws.receive_json()
            self.assertEqual(ctx.exception.code, 1000)


if __name__ == "__main__":
    unittest.main()
