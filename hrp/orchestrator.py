from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from .settings import ConfigError, Settings


class OrchestratorError(Exception):
    """A control-plane call failed. Backends wrap their vendor errors in this."""


@dataclass(frozen=True)
class ContainerDescription:
    name: str
    # One entry per network interface that carries a private IPv4 address.
    private_ipv4_addresses: tuple[str, ...] = ()


class OrchestratorClient(Protocol):
    """What the service directory needs from a control plane.

    Nothing vendor specific leaks through this interface, so backends can be
    swapped without touching discovery.
    """

    def list_services(self, cluster: str) -> list[str]: ...

    def list_tasks(self, cluster: str, service_id: str | None = None) -> list[str]: ...

    def describe_tasks(self, cluster: str, task_ids: Sequence[str]) -> list[ContainerDescription]: ...


def build_orchestrator(settings: Settings) -> OrchestratorClient:
    if settings.orchestrator == "ecs":
        from .ecs import EcsOrchestrator

        return EcsOrchestrator(
            region=settings.aws_region,
            endpoint_url=settings.ecs_endpoint_url,
            timeout_s=settings.refresh_timeout_s,
        )
    if settings.orchestrator == "swarm":
        from .docker_ops import SwarmOrchestrator

        return SwarmOrchestrator(timeout_s=settings.refresh_timeout_s)
    raise ConfigError(f"unknown orchestrator '{settings.orchestrator}'")
