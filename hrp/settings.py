from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


ORCHESTRATORS = {"ecs", "swarm"}


class ConfigError(Exception):
    """A mandatory setting is missing or invalid. The process must not start."""


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_required(env: Mapping[str, str], name: str) -> str:
    raw = env.get(name)
    if raw is None or not raw.strip():
        raise ConfigError(f"missing mandatory env {name}")
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    cluster: str

    # Core
    aws_region: str = "us-west-2"
    proxy_port: int = 8080
    routing_header: str = "X-Org-ID"
    listen_host: str = "0.0.0.0"

    # Discovery
    orchestrator: str = "ecs"
    ecs_endpoint_url: str | None = None
    refresh_timeout_s: float = 30.0
    # 0 disables the periodic refresher; discovery then only happens on misses.
    refresh_interval_s: float = 0.0

    # Event log / admin surface
    db_path: str = "hrp.db"
    admin_prefix: str = "/_hrp"


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from the environment.

    Raises ConfigError naming the offending variable instead of failing later
    from somewhere deep in discovery.
    """
    env = os.environ if environ is None else environ

    orchestrator = _env_str(env, "HRP_ORCHESTRATOR", "ecs").lower()
    if orchestrator not in ORCHESTRATORS:
        raise ConfigError(
            f"invalid HRP_ORCHESTRATOR '{orchestrator}' (expected one of: {', '.join(sorted(ORCHESTRATORS))})"
        )

    admin_prefix = _env_str(env, "HRP_ADMIN_PREFIX", "/_hrp").rstrip("/")
    if not admin_prefix.startswith("/"):
        raise ConfigError("HRP_ADMIN_PREFIX must be a non-root absolute path, e.g. /_hrp")

    return Settings(
        cluster=_env_required(env, "ECS_CLUSTER"),
        aws_region=_env_str(env, "AWS_REGION", "us-west-2"),
        proxy_port=_env_int(env, "PROXY_PORT", 8080),
        routing_header=_env_str(env, "DEFAULT_ORG_ID", "X-Org-ID"),
        listen_host=_env_str(env, "HRP_LISTEN_HOST", "0.0.0.0"),
        orchestrator=orchestrator,
        ecs_endpoint_url=env.get("HRP_ECS_ENDPOINT_URL") or None,
        refresh_timeout_s=max(0.1, _env_float(env, "HRP_REFRESH_TIMEOUT_S", 30.0)),
        refresh_interval_s=max(0.0, _env_float(env, "HRP_REFRESH_INTERVAL_S", 0.0)),
        db_path=_env_str(env, "HRP_DB_PATH", "hrp.db"),
        admin_prefix=admin_prefix,
    )
