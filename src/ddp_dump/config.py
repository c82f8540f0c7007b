from __future__ import annotations

import os
import urllib.parse
from dataclasses import dataclass
from typing import Optional, Sequence

from .types import SUPPORTED_DDP_VERSIONS, ConfigError


DEFAULT_TIMEOUT_MS = 800
DEFAULT_HOST = "localhost"
DEFAULT_PATH = "/websocket"
URL_ENV_VAR = "DDP_DUMP_URL"


@dataclass(frozen=True)
class DumpConfig:
    host: str = DEFAULT_HOST
    port: int = 80
    ssl: bool = False
    path: str = DEFAULT_PATH
    ddp_version: str = "1"
    sockjs: bool = False

    # what to dump
    collections: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    capture_all: bool = False

    # ms of silence after the last message before we write
    timeout_ms: int = 0
    compress: bool = False

    verbose: bool = False
    debug: bool = False

    @property
    def scheme(self) -> str:
        return "wss" if self.ssl else "ws"

    @property
    def base_url(self) -> str:
        # IPv6 literals need brackets in a URL
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.scheme}://{host}:{self.port}"

    @property
    def ws_url(self) -> str:
        return self.base_url + self.path


def _parse_url(url: str) -> tuple[bool, str, Optional[int], Optional[str]]:
    u = urllib.parse.urlsplit(url)
    if u.scheme not in ("ws", "wss"):
        raise ConfigError(f'Unknown protocol "{u.scheme}:"')
    try:
        port = u.port
    except ValueError as e:
        raise ConfigError(f"Invalid port in URL {url!r}") from e
    path = u.path if u.path and u.path != "/" else None
    return u.scheme == "wss", u.hostname or DEFAULT_HOST, port, path


def resolve_config(
    *,
    collections: Sequence[str] = (),
    url: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    ssl: bool = False,
    outputs: Sequence[str] = (),
    capture_all: bool = False,
    timeout_ms: Optional[int] = None,
    compress: bool = False,
    ddp_version: Optional[str] = None,
    sockjs: bool = False,
    verbose: bool = False,
    debug: bool = False,
) -> DumpConfig:
    """Apply defaults and validate the raw command line values."""
    colls = tuple(collections)
    if not colls and not capture_all:
        raise ConfigError("Please specify at least one collection or use the --all option.")

    if url is None and host is None:
        url = os.getenv(URL_ENV_VAR) or None

    path = DEFAULT_PATH
    if url:
        ssl, host, port, url_path = _parse_url(url)
        path = url_path or DEFAULT_PATH

    if port is None:
        port = 443 if ssl else 80

    if timeout_ms is None:
        timeout_ms = DEFAULT_TIMEOUT_MS if capture_all else 0
    if timeout_ms < 0:
        raise ConfigError(f"Timeout must be >= 0 ms, got {timeout_ms}")

    ddpv = ddp_version or SUPPORTED_DDP_VERSIONS[0]
    if ddpv not in SUPPORTED_DDP_VERSIONS:
        raise ConfigError(f"Unsupported DDP version {ddpv!r} (expected one of {', '.join(SUPPORTED_DDP_VERSIONS)})")

    return DumpConfig(
        host=host or DEFAULT_HOST,
        port=int(port),
        ssl=bool(ssl),
        path=path,
        ddp_version=ddpv,
        sockjs=sockjs,
        collections=colls,
        outputs=tuple(outputs),
        capture_all=capture_all,
        timeout_ms=int(timeout_ms),
        compress=compress,
        verbose=verbose,
        debug=debug,
    )
