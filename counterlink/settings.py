"""
Counter configuration.

Profiles live in ``configs/profiles.yaml``; the ``default`` profile is merged
underneath the requested one, then explicit overrides and finally the
``COUNTERLINK_*`` environment variables are applied.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .negotiation.state_machine import SessionErrorPolicy
from .rtc.ice_servers import DEFAULT_STUN_SERVER, IceServerConfig

LOG = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"

DEFAULT_PROFILE = "default"

ENV_OVERRIDES = {
    "COUNTERLINK_SESSION_KEY": "sessionKey",
    "COUNTERLINK_SIGNALING_URL": "signalingUrl",
    "COUNTERLINK_ICE_SERVERS_URL": "iceServersUrl",
}


class IceServerModel(BaseModel):
    urls: List[str]
    username: Optional[str] = None
    credential: Optional[str] = None

    @field_validator("urls", mode="before")
    @classmethod
    def _coerce_urls(cls, value: object) -> List[str]:
        if isinstance(value, str):
            return [value]
        return list(value or [])

    def to_config(self) -> IceServerConfig:
        return IceServerConfig(urls=list(self.urls), username=self.username, credential=self.credential)


class CounterSettings(BaseModel):
    session_key: str = Field(default="KIOSK-ABC123", alias="sessionKey")
    signaling_url: str = Field(default="ws://127.0.0.1:3000/signaling", alias="signalingUrl")
    ice_servers_url: Optional[str] = Field(default=None, alias="iceServersUrl")
    ice_servers: List[IceServerModel] = Field(
        default_factory=lambda: [IceServerModel(urls=[DEFAULT_STUN_SERVER])],
        alias="iceServers",
    )
    channel_label: str = Field(default="chat", alias="channelLabel")
    negotiation_timeout: Optional[float] = Field(default=30.0, ge=0.0, alias="negotiationTimeout")
    max_restarts: int = Field(default=1, ge=0, alias="maxRestarts")
    session_error_policy: SessionErrorPolicy = Field(
        default=SessionErrorPolicy.ADVISORY,
        alias="sessionErrorPolicy",
    )
    diagnostics_history: int = Field(default=200, ge=1, alias="diagnosticsHistory")
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("session_error_policy", mode="before")
    @classmethod
    def _normalise_policy(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def ice_server_configs(self) -> List[IceServerConfig]:
        return [server.to_config() for server in self.ice_servers]


def _wire_key(key: str) -> str:
    field = CounterSettings.model_fields.get(key)
    if field is not None and field.alias:
        return field.alias
    return key


def read_profiles(path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    target = Path(path) if path is not None else PROFILES_PATH
    try:
        with target.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.warning("Profile file %s not found; using built-in defaults", target)
        profiles = {}
    if not isinstance(profiles, dict):
        raise ValueError(f"{target} must contain a mapping of profiles")
    return profiles


def load_settings(
    profile: str = DEFAULT_PROFILE,
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> CounterSettings:
    profiles = read_profiles(path)
    if profile != DEFAULT_PROFILE and profile not in profiles:
        raise KeyError(f"unknown profile '{profile}'")

    merged: Dict[str, Any] = {}
    layers = [profiles.get(DEFAULT_PROFILE) or {}]
    if profile != DEFAULT_PROFILE:
        layers.append(profiles.get(profile) or {})
    layers.append({key: value for key, value in (overrides or {}).items() if value is not None})
    for layer in layers:
        for key, value in layer.items():
            merged[_wire_key(str(key))] = value
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            merged[key] = value

    settings = CounterSettings.model_validate(merged)
    LOG.debug("Loaded profile '%s' (signaling %s)", profile, settings.signaling_url)
    return settings


__all__ = [
    "CONFIG_DIR",
    "CounterSettings",
    "DEFAULT_PROFILE",
    "IceServerModel",
    "PROFILES_PATH",
    "load_settings",
    "read_profiles",
]
