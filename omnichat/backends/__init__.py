"""Provider adapters and the router that picks between them."""

from omnichat.backends.base import (
    BaseAdapter,
    GenerationConfig,
    GenerationRequest,
    MediaResult,
    StreamChunk,
    normalize_history,
)
from omnichat.backends.router import FAMILIES, AdapterRouter

__all__ = [
    "AdapterRouter",
    "BaseAdapter",
    "FAMILIES",
    "GenerationConfig",
    "GenerationRequest",
    "MediaResult",
    "StreamChunk",
    "normalize_history",
]
