"""Configuration loader for editor bridge."""

from __future__ import annotations

import asyncio
import os
import tempfile
import tomllib
from pathlib import Path
from typing import Literal

import tomlkit
from pydantic import BaseModel, Field, field_validator

from editor_bridge.paths import DEFAULT_DESCRIPTOR_RELPATH, ensure_directories, get_config_path

type TransportPreference = Literal["auto", "socket", "tcp"]

TRANSPORT_PREFERENCE_VALUES = frozenset({"auto", "socket", "tcp"})


def atomic_write(path: Path, content: str) -> None:
    """Write file atomically to avoid partial/corrupt writes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        Path(tmp_path).replace(path)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise


class ClientConfig(BaseModel):
    """Controller-side request engine settings."""

    connect_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Deadline for establishing a connection (no retry on expiry)",
    )
    read_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Per-attempt deadline for reading one response frame",
    )
    max_retries: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Retry budget shared by write and read attempts of one request",
    )
    retry_interval_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Fixed delay between retry attempts",
    )
    descriptor_relpath: str = Field(
        default=DEFAULT_DESCRIPTOR_RELPATH,
        description="Instance descriptor location relative to the project directory",
    )

    @field_validator("descriptor_relpath", mode="before")
    @classmethod
    def validate_descriptor_relpath(cls, value: object) -> str:
        """Fall back to the default location for empty or non-string values."""
        match value:
            case str() as relpath if relpath.strip():
                return relpath.strip()
            case _:
                pass
        return DEFAULT_DESCRIPTOR_RELPATH


class HostConfig(BaseModel):
    """Host-side server and dispatcher settings."""

    transport: TransportPreference = Field(
        default="auto",
        description="Transport preference: auto (platform default), socket, or tcp",
    )
    tick_interval_seconds: float = Field(
        default=0.01,
        gt=0,
        description="Update loop period used by the standalone demo host",
    )
    log_history_size: int = Field(
        default=2000,
        ge=1,
        description="Number of log records retained for the 'logs' method",
    )

    @field_validator("transport", mode="before")
    @classmethod
    def validate_transport(cls, value: object) -> str:
        """Coerce invalid transport values to 'auto'."""
        match value:
            case str() as transport if transport in TRANSPORT_PREFERENCE_VALUES:
                return transport
            case _:
                pass
        return "auto"


class BridgeConfig(BaseModel):
    """Root configuration model."""

    client: ClientConfig = Field(default_factory=ClientConfig)
    host: HostConfig = Field(default_factory=HostConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> BridgeConfig:
        """Load configuration from TOML file or use defaults."""
        ensure_directories()
        if config_path is None:
            config_path = get_config_path()

        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            return cls.model_validate(data)

        return cls()

    async def save(self, path: Path) -> None:
        """Serialize current config to TOML file.

        Args:
            path: Path to write config file (created if missing)
        """
        doc = tomlkit.document()
        doc.add(tomlkit.comment("editor-bridge configuration"))

        for section_name, section in (("client", self.client), ("host", self.host)):
            table = tomlkit.table()
            for key, value in section.model_dump().items():
                if value is not None:
                    table[key] = value
            doc[section_name] = table

        content = tomlkit.dumps(doc)
        await asyncio.to_thread(atomic_write, path, content)


__all__ = [
    "BridgeConfig",
    "ClientConfig",
    "HostConfig",
    "TransportPreference",
    "atomic_write",
]
