import sys
from collections import Counter
from threading import Event, Lock

import pytest


# Ensure project root is importable (so `import hrp...` works without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from hrp.directory import ServiceDirectory  # noqa: E402
from hrp.events import EventLog  # noqa: E402
from hrp.orchestrator import ContainerDescription, OrchestratorError  # noqa: E402
from hrp.settings import Settings  # noqa: E402


class FakeOrchestrator:
    """In-memory control plane: services -> tasks -> containers."""

    def __init__(self):
        self.tasks_by_service: dict[str, list[str]] = {}
        self.containers_by_task: dict[str, list[ContainerDescription]] = {}
        self.fail_list_services = False
        self.standalone_tasks: list[str] = []
        self.fail_list_tasks = False
        self.fail_describe: set[str] = set()
        self.calls = Counter()
        # When set, list_services blocks until the gate opens.
        self.gate: Event | None = None
        self.entered = Event()
        self._lock = Lock()

    def add_task(self, service: str | None, task_id: str, container: str, *ips: str) -> None:
        """Register a running task; service None means a standalone task."""
        if service is None:
            self.standalone_tasks.append(task_id)
        else:
            self.tasks_by_service.setdefault(service, []).append(task_id)
        self.containers_by_task.setdefault(task_id, []).append(
            ContainerDescription(name=container, private_ipv4_addresses=tuple(ips))
        )

    def _count(self, name: str) -> None:
        with self._lock:
            self.calls[name] += 1

    def list_services(self, cluster):
        self._count("list_services")
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(10)
        if self.fail_list_services:
            raise OrchestratorError("AccessDenied: list services")
        return list(self.tasks_by_service)

    def list_tasks(self, cluster, service_id=None):
        self._count("list_tasks")
        if self.fail_list_tasks:
            raise OrchestratorError("ThrottlingException: list tasks")
        if service_id is None:
            return [t for ts in self.tasks_by_service.values() for t in ts] + self.standalone_tasks
        return list(self.tasks_by_service.get(service_id, []))

    def describe_tasks(self, cluster, task_ids):
        self._count("describe_tasks")
        out = []
        for task_id in task_ids:
            if task_id in self.fail_describe:
                raise OrchestratorError(f"describe failed for {task_id}")
            out.extend(self.containers_by_task.get(task_id, []))
        return out


@pytest.fixture
def fake():
    return FakeOrchestrator()


@pytest.fixture
def events(tmp_path):
    log = EventLog(str(tmp_path / "events.db"))
    log.init_db()
    return log


@pytest.fixture
def directory(fake, events):
    return ServiceDirectory(fake, cluster="demo", events=events, refresh_timeout_s=5.0)


@pytest.fixture
def settings(tmp_path):
    return Settings(cluster="demo", db_path=str(tmp_path / "app.db"), refresh_timeout_s=5.0)
