"""
Configuration models for livebuild.

Uses pydantic for validation of the JSON project file. A project holds the
build groups to supervise, the reverse proxy routes and an optional static
file server. The file is loaded once at startup and treated as read-only.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import ConfigError

logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Convert a duration to seconds.

    Numbers are taken as seconds. Strings use Go-style units and may combine
    several parts, e.g. "500ms", "2s", "1m30s".
    """
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for part in _DURATION_PART.finditer(text):
        if part.start() != pos:
            break
        total += float(part.group(1)) * _DURATION_UNITS[part.group(2)]
        pos = part.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


def parse_bind_addr(addr: str) -> tuple[str, int]:
    """Split a bind address like ":8080" or "127.0.0.1:8080" into host and port."""
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"Invalid bind address: {addr!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


class CommandSpec(BaseModel):
    """A command with its arguments, working directory and environment overrides."""

    model_config = ConfigDict(frozen=True)

    command: str = Field(..., min_length=1, description="Executable to run")
    args: list[str] = Field(default_factory=list, description="Arguments")
    dir: Optional[str] = Field(None, description="Working directory")
    env: list[str] = Field(default_factory=list, description="KEY=VALUE overrides")

    @field_validator("env")
    @classmethod
    def _check_env(cls, value: list[str]) -> list[str]:
        for entry in value:
            if "=" not in entry or entry.startswith("="):
                raise ValueError(f"environment entry {entry!r} is not KEY=VALUE")
        return value

    def env_overrides(self) -> dict[str, str]:
        """Parse the KEY=VALUE list; later entries win."""
        overrides = {}
        for entry in self.env:
            key, _, value = entry.partition("=")
            overrides[key] = value
        return overrides

    def describe(self) -> str:
        return " ".join([self.command, *self.args])


class BuildGroup(BaseModel):
    """One independently supervised build + run + watch unit."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique build group name")
    description: str = ""
    match: list[str] = Field(default_factory=list, description="Glob patterns to watch")
    heartbeat: float = Field(1.0, gt=0, description="Polling interval in seconds")
    build: CommandSpec
    run: CommandSpec

    @field_validator("heartbeat", mode="before")
    @classmethod
    def _parse_heartbeat(cls, value):
        if isinstance(value, str):
            return parse_duration(value)
        return value


class HttpTarget(BaseModel):
    """A reverse proxy upstream."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., description="Upstream URL, e.g. http://localhost:8080")
    custom_headers: dict[str, str] = Field(default_factory=dict)
    insecure_skip_verify: bool = False

    @field_validator("host")
    @classmethod
    def _check_host(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"upstream {value!r} must be an http(s) URL with a host")
        return value


class StaticServer(BaseModel):
    """A static file server."""

    model_config = ConfigDict(frozen=True)

    bind_addr: str = ":8080"
    static_dir: str = "wwwroot"


class ProjectConfig(BaseModel):
    """The livebuild project file."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    description: str = ""
    builds: list[BuildGroup] = Field(default_factory=list)

    bind_addr: str = ":8443"
    reverse_proxy: dict[str, HttpTarget] = Field(default_factory=dict)
    static_server: Optional[StaticServer] = None

    # Both are needed for TLS
    tls_cert_file: str = ""
    tls_key_file: str = ""

    @field_validator("builds")
    @classmethod
    def _unique_names(cls, value: list[BuildGroup]) -> list[BuildGroup]:
        seen = set()
        for group in value:
            if group.name in seen:
                raise ValueError(f"duplicate build group name {group.name!r}")
            seen.add(group.name)
        return value

    @field_validator("reverse_proxy")
    @classmethod
    def _rooted_paths(cls, value: dict[str, HttpTarget]) -> dict[str, HttpTarget]:
        for path in value:
            if not path.startswith("/"):
                raise ValueError(f"reverse proxy path {path!r} must start with '/'")
        return value

    @classmethod
    def default(cls) -> "ProjectConfig":
        """A sample project: one Go webserver behind the proxy."""
        return cls(
            name="github.com/dearing/webserver",
            description="sample webserver config",
            builds=[
                BuildGroup(
                    name="webserver",
                    description="sample webserver",
                    match=["*.go"],
                    heartbeat=1.0,
                    # A trailing slash makes go build name the binary after the module
                    build=CommandSpec(
                        command="go",
                        args=["build", "-o", "build/"],
                        dir=".",
                        env=["CGO_ENABLED=0"],
                    ),
                    run=CommandSpec(
                        command="./webserver",
                        args=["--www-bind", ":8081", "--www-root", "wwwroot"],
                        dir="build",
                        env=["WWWBIND=8081", "WWWROOT=wwwroot"],
                    ),
                ),
            ],
            reverse_proxy={
                "/": HttpTarget(
                    host="http://localhost:8081",
                    custom_headers={"Test-Header": "Hello World!"},
                ),
                "/api/": HttpTarget(
                    host="https://localhost:8082",
                    custom_headers={"Speak-Friend": "mellon"},
                    insecure_skip_verify=True,
                ),
            },
            tls_cert_file="cert.pem",
            tls_key_file="key.pem",
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ProjectConfig":
        """Read and validate a project file."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e

        try:
            project = cls.model_validate_json(text)
        except ValidationError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e

        logger.info(f"Loaded {len(project.builds)} build group(s) from {path}")
        return project

    def save(self, path: Union[str, Path]) -> None:
        """Write the project as indented JSON."""
        path = Path(path)
        path.write_text(self.model_dump_json(indent=2) + "\n", encoding="utf-8")
        logger.info(f"Wrote config to {path}")

    def select_groups(self, names: Optional[list[str]] = None) -> list[BuildGroup]:
        """
        Return the build groups to supervise, in file order.

        With names, only those groups are returned. Unknown names and an
        empty selection are configuration errors.
        """
        if names:
            known = {group.name for group in self.builds}
            unknown = [name for name in names if name not in known]
            if unknown:
                raise ConfigError(f"Unknown build group(s): {', '.join(unknown)}")
            groups = [group for group in self.builds if group.name in names]
        else:
            groups = list(self.builds)

        if not groups:
            raise ConfigError("No build groups selected")
        return groups
