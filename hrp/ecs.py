from __future__ import annotations

from typing import Any, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .orchestrator import ContainerDescription, OrchestratorError


class EcsOrchestrator:
    """AWS ECS control plane backend."""

    def __init__(
        self,
        region: str,
        endpoint_url: str | None = None,
        timeout_s: float = 30.0,
        client: Any | None = None,
    ) -> None:
        if client is None:
            # Retries are decided by the router (one refresh-and-retry), not by botocore.
            config = Config(
                connect_timeout=timeout_s,
                read_timeout=timeout_s,
                retries={"mode": "standard", "max_attempts": 1},
            )
            client = boto3.client("ecs", region_name=region, endpoint_url=endpoint_url, config=config)
        self._ecs = client

    def _paginate(self, operation: str, result_key: str, **kwargs: Any) -> list[str]:
        out: list[str] = []
        try:
            paginator = self._ecs.get_paginator(operation)
            for page in paginator.paginate(**kwargs):
                out.extend(page.get(result_key, []))
        except (BotoCoreError, ClientError) as e:
            raise OrchestratorError(f"{operation} failed: {e}") from e
        return out

    def list_services(self, cluster: str) -> list[str]:
        return self._paginate("list_services", "serviceArns", cluster=cluster)

    def list_tasks(self, cluster: str, service_id: str | None = None) -> list[str]:
        kwargs: dict[str, Any] = {"cluster": cluster}
        if service_id:
            kwargs["serviceName"] = service_id
        return self._paginate("list_tasks", "taskArns", **kwargs)

    def describe_tasks(self, cluster: str, task_ids: Sequence[str]) -> list[ContainerDescription]:
        try:
            resp = self._ecs.describe_tasks(cluster=cluster, tasks=list(task_ids))
        except (BotoCoreError, ClientError) as e:
            raise OrchestratorError(f"describe_tasks failed: {e}") from e

        tasks = resp.get("tasks", [])
        failures = resp.get("failures", [])
        if failures and not tasks:
            reasons = ", ".join(f"{f.get('arn', '?')}: {f.get('reason', 'unknown')}" for f in failures)
            raise OrchestratorError(f"describe_tasks returned only failures ({reasons})")

        containers: list[ContainerDescription] = []
        for task in tasks:
            for c in task.get("containers", []):
                addrs = tuple(
                    ni["privateIpv4Address"]
                    for ni in c.get("networkInterfaces", [])
                    if ni.get("privateIpv4Address")
                )
                containers.append(ContainerDescription(name=c.get("name", ""), private_ipv4_addresses=addrs))
        return containers
