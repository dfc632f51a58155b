"""
ICE server configuration for the peer connection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

LOG = logging.getLogger(__name__)

DEFAULT_STUN_SERVER = "stun:stun.l.google.com:19302"


@dataclass
class IceServerConfig:
    """
    One STUN/TURN server entry.

    Mirrors the browser ``RTCIceServer`` dictionary; ``urls`` is always kept as
    a list even when the source used a single string.
    """

    urls: List[str] = field(default_factory=list)
    username: Optional[str] = None
    credential: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"urls": list(self.urls)}
        if self.username:
            payload["username"] = self.username
        if self.credential:
            payload["credential"] = self.credential
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "IceServerConfig":
        raw_urls = payload.get("urls", payload.get("url"))
        if isinstance(raw_urls, str):
            urls = [raw_urls]
        elif isinstance(raw_urls, (list, tuple)):
            urls = [str(url) for url in raw_urls if url]
        else:
            urls = []
        if not urls:
            raise ValueError("ICE server entry requires at least one url")
        username = payload.get("username")
        credential = payload.get("credential")
        return cls(
            urls=urls,
            username=str(username) if username else None,
            credential=str(credential) if credential else None,
        )


def default_ice_servers() -> List[IceServerConfig]:
    return [IceServerConfig(urls=[DEFAULT_STUN_SERVER])]


def parse_ice_servers(payload: Any) -> List[IceServerConfig]:
    """
    Accept either a bare list of servers or an ``{"iceServers": [...]}`` object.
    """

    if isinstance(payload, Mapping):
        payload = payload.get("iceServers", [])
    if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
        raise ValueError("ICE server payload must be a list")
    return [IceServerConfig.from_dict(entry) for entry in payload]


async def fetch_ice_servers(
    url: str,
    *,
    timeout: float = 10.0,
    client: Optional[httpx.AsyncClient] = None,
) -> List[IceServerConfig]:
    """
    Download the ICE server list published by the signaling service.
    """

    if client is not None:
        response = await client.get(url)
    else:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5.0)) as owned:
            response = await owned.get(url)
    response.raise_for_status()
    servers = parse_ice_servers(response.json())
    LOG.debug("Fetched %d ICE servers from %s", len(servers), url)
    return servers


__all__ = [
    "DEFAULT_STUN_SERVER",
    "IceServerConfig",
    "default_ice_servers",
    "fetch_ice_servers",
    "parse_ice_servers",
]
