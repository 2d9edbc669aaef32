"""Transport peers, one per backend, keyed by transport kind."""

from __future__ import annotations

import logging
from typing import Final, Optional, Type

from tool_bridge.config import BackendConfig, BridgeSettings, TransportKind

from .base import BasePeer
from .http import HttpPeer
from .stdio import StdioPeer

__all__ = ["BasePeer", "StdioPeer", "HttpPeer", "PEER_REGISTRY", "create_peer"]

# map TransportKind to its peer implementation
PEER_REGISTRY: Final[dict[TransportKind, Type[BasePeer]]] = {
    TransportKind.STDIO: StdioPeer,
    TransportKind.HTTP: HttpPeer,
}


def create_peer(
    backend: BackendConfig,
    *,
    settings: Optional[BridgeSettings] = None,
    logger: Optional[logging.Logger] = None,
) -> BasePeer:
    """
    Factory for the peer matching a backend's transport.

    Args:
        backend: Backend to connect to.
        settings: Shared timeouts and limits.
        logger: Optional custom logger.
    """
    try:
        peer_cls = PEER_REGISTRY[backend.transport]
    except KeyError as exc:
        raise ValueError(f"Unsupported transport: {backend.transport}") from exc
    return peer_cls(backend, settings=settings, logger=logger)
