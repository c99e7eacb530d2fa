"""Video access token capability for Covey Town."""

from .tokens import (
    LocalVideoTokenProvider,
    TokenProviderError,
    VideoTokenProvider,
    video_token_provider_from_env,
)

__all__ = [
    "LocalVideoTokenProvider",
    "TokenProviderError",
    "VideoTokenProvider",
    "video_token_provider_from_env",
]
