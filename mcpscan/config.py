from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_CAPABILITIES = "csharp,angular,react,jquery,node"


def configure_logging(level: Optional[str] = None) -> None:
    """Install the process-wide log format. Level defaults to LOG_LEVEL or INFO."""
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)


def parse_capabilities(raw: str) -> List[str]:
    """Split a comma list of capability tags, lower-cased, order kept, no dups."""
    tags: List[str] = []
    for part in (raw or "").split(","):
        tag = part.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class CoordinatorSettings:
    """Settings for the coordinator (MCP) service."""

    database_url: str = "sqlite:///./mcpscan.db"
    heartbeat_timeout: float = 90.0
    enforce_transitions: bool = True
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "CoordinatorSettings":
        env = os.environ if env is None else env
        return cls(
            database_url=env.get("DATABASE_URL") or cls.database_url,
            heartbeat_timeout=float(env.get("MCP_HEARTBEAT_TIMEOUT") or cls.heartbeat_timeout),
            enforce_transitions=_as_bool(env.get("MCP_ENFORCE_TRANSITIONS"), True),
            host=env.get("MCP_HOST") or cls.host,
            port=int(env.get("MCP_PORT") or cls.port),
        )


@dataclass(frozen=True)
class AgentSettings:
    """Settings for one scanning agent process."""

    server_url: str = "http://localhost:8000"
    name: str = "OWASP_Scanner_Agent"
    capabilities: List[str] = field(
        default_factory=lambda: parse_capabilities(DEFAULT_CAPABILITIES)
    )
    port: int = 3000
    temp_dir: str = "./temp"
    heartbeat_interval: float = 30.0
    poll_interval: float = 30.0
    registration_retry_seconds: float = 30.0
    request_timeout: float = 10.0
    priority_capability: str = "csharp"
    priority_batch_size: int = 25
    batch_size: int = 50
    batch_delay: float = 1.0
    verify_tls: bool = True

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AgentSettings":
        env = os.environ if env is None else env
        return cls(
            server_url=(env.get("MCP_SERVER_URL") or cls.server_url).rstrip("/"),
            name=env.get("AGENT_NAME") or cls.name,
            capabilities=parse_capabilities(env.get("AGENT_CAPABILITIES") or DEFAULT_CAPABILITIES),
            port=int(env.get("AGENT_PORT") or cls.port),
            temp_dir=env.get("TEMP_DIR") or cls.temp_dir,
            heartbeat_interval=float(env.get("AGENT_HEARTBEAT_INTERVAL") or cls.heartbeat_interval),
            poll_interval=float(env.get("AGENT_POLL_INTERVAL") or cls.poll_interval),
            registration_retry_seconds=float(
                env.get("AGENT_REGISTRATION_RETRY") or cls.registration_retry_seconds
            ),
            request_timeout=float(env.get("AGENT_REQUEST_TIMEOUT") or cls.request_timeout),
            priority_capability=(
                env.get("AGENT_PRIORITY_CAPABILITY") or cls.priority_capability
            ).strip().lower(),
            priority_batch_size=int(env.get("AGENT_PRIORITY_BATCH_SIZE") or cls.priority_batch_size),
            batch_size=int(env.get("AGENT_BATCH_SIZE") or cls.batch_size),
            batch_delay=float(env.get("AGENT_BATCH_DELAY") or cls.batch_delay),
            verify_tls=_as_bool(env.get("AGENT_VERIFY_TLS"), True),
        )
