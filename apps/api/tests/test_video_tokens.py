#!/usr/bin/env python3

from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from packages.covey_core.video.tokens import (
    DEFAULT_TOKEN_TTL_SECONDS,
    LocalVideoTokenProvider,
    TokenProviderError,
    video_token_provider_from_env,
)


class LocalVideoTokenProviderTests(unittest.IsolatedAsyncioTestCase):
    async def test_token_carries_town_and_identity(self) -> None:
        provider = LocalVideoTokenProvider(secret="shh")
        token = await provider.get_token_for_town("TOWN1", "player-1")
        claims = provider.verify(token)
        self.assertIsNotNone(claims)
        self.assertEqual(claims["town"], "TOWN1")
        self.assertEqual(claims["identity"], "player-1")

    async def test_other_secret_cannot_verify(self) -> None:
        token = await LocalVideoTokenProvider(secret="one").get_token_for_town("T", "p")
        self.assertIsNone(LocalVideoTokenProvider(secret="two").verify(token))

    async def test_tampered_token_is_rejected(self) -> None:
        provider = LocalVideoTokenProvider(secret="shh")
        token = await provider.get_token_for_town("T", "p")
        body, _, signature = token.partition(".")
        self.assertIsNone(provider.verify(f"{body}x.{signature}"))
        self.assertIsNone(provider.verify("garbage"))
        self.assertIsNone(provider.verify(""))

    async def test_expired_token_is_rejected(self) -> None:
        provider = LocalVideoTokenProvider(secret="shh", ttl_seconds=60)
        with patch("packages.covey_core.video.tokens.time.time", return_value=1_000_000):
            token = await provider.get_token_for_town("T", "p")
        with patch("packages.covey_core.video.tokens.time.time", return_value=1_000_061):
            self.assertIsNone(provider.verify(token))

    async def test_missing_identity_is_refused(self) -> None:
        provider = LocalVideoTokenProvider(secret="shh")
        with self.assertRaises(TokenProviderError) as ctx:
            await provider.get_token_for_town("T", "")
        self.assertEqual(ctx.exception.error_code, "missing_identity")

    def test_missing_secret_is_refused(self) -> None:
        with self.assertRaises(TokenProviderError) as ctx:
            LocalVideoTokenProvider(secret="")
        self.assertEqual(ctx.exception.error_code, "missing_secret")


class VideoProviderFromEnvTests(unittest.TestCase):
    def test_reads_ttl_from_env(self) -> None:
        with patch.dict(
            os.environ,
            {"COVEY_VIDEO_SIGNING_SECRET": "configured", "COVEY_VIDEO_TOKEN_TTL_SECONDS": "120"},
        ):
            provider = video_token_provider_from_env()
        self.assertIsInstance(provider, LocalVideoTokenProvider)
        self.assertEqual(provider.ttl_seconds, 120)

    def test_falls_back_without_configuration(self) -> None:
        with patch.dict(os.environ, {"COVEY_VIDEO_SIGNING_SECRET": "", "COVEY_VIDEO_TOKEN_TTL_SECONDS": "soon"}):
            provider = video_token_provider_from_env()
        self.assertEqual(provider.ttl_seconds, DEFAULT_TOKEN_TTL_SECONDS)


if __name__ == "__main__":
    unittest.main()
