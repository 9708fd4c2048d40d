from __future__ import annotations

from typing import Any, Sequence

import docker
import requests
from docker.errors import DockerException

from .orchestrator import ContainerDescription, OrchestratorError


_DOCKER_ERRORS = (DockerException, requests.exceptions.RequestException)


def _client(timeout_s: float) -> docker.DockerClient:
    return docker.from_env(timeout=max(1, int(timeout_s)))


def _strip_prefix_len(address: str) -> str:
    # Swarm reports attachment addresses in CIDR form, e.g. "10.0.1.5/24".
    return address.split("/", 1)[0]


def container_name(service_name: str, task: dict[str, Any]) -> str:
    """Name docker gives a swarm task's container: <service>.<slot>.<task id>.

    Global services have no slot; docker uses the node id instead.
    """
    slot = task.get("Slot")
    middle = str(slot) if slot is not None else task.get("NodeID", "")
    return f"{service_name}.{middle}.{task['ID']}"


class SwarmOrchestrator:
    """Docker Swarm backend. The daemon we talk to is a manager of the swarm,
    so the cluster argument is only used in error messages."""

    def __init__(self, client: Any | None = None, timeout_s: float = 30.0) -> None:
        self._client = client if client is not None else _client(timeout_s)

    def list_services(self, cluster: str) -> list[str]:
        try:
            return [s.id for s in self._client.services.list()]
        except _DOCKER_ERRORS as e:
            raise OrchestratorError(f"list services failed on swarm '{cluster}': {e}") from e

    def list_tasks(self, cluster: str, service_id: str | None = None) -> list[str]:
        filters: dict[str, Any] = {"desired-state": "running"}
        if service_id:
            filters["service"] = service_id
        try:
            tasks = self._client.api.tasks(filters=filters)
        except _DOCKER_ERRORS as e:
            raise OrchestratorError(f"list tasks failed on swarm '{cluster}': {e}") from e
        return [t["ID"] for t in tasks]

    def describe_tasks(self, cluster: str, task_ids: Sequence[str]) -> list[ContainerDescription]:
        out: list[ContainerDescription] = []
        service_names: dict[str, str] = {}
        try:
            for task_id in task_ids:
                task = self._client.api.inspect_task(task_id)
                service_id = task.get("ServiceID", "")
                if service_id not in service_names:
                    service_names[service_id] = self._client.api.inspect_service(service_id)["Spec"]["Name"]

                addrs: list[str] = []
                for att in task.get("NetworksAttachments") or []:
                    spec = (att.get("Network") or {}).get("Spec") or {}
                    if spec.get("Ingress"):
                        continue
                    addrs.extend(_strip_prefix_len(a) for a in att.get("Addresses") or [])

                out.append(
                    ContainerDescription(
                        name=container_name(service_names[service_id], task),
                        private_ipv4_addresses=tuple(addrs),
                    )
                )
        except _DOCKER_ERRORS as e:
            raise OrchestratorError(f"describe tasks failed on swarm '{cluster}': {e}") from e
        except KeyError as e:
            raise OrchestratorError(f"unexpected task payload from swarm '{cluster}': missing {e}") from e
        return out
