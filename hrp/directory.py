from __future__ import annotations

from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from threading import Lock, Thread

from .events import EventLog, utc_now
from .orchestrator import ContainerDescription, OrchestratorClient, OrchestratorError


class DiscoveryError(Exception):
    """Listing services or tasks failed; the refresh was aborted."""


class RefreshTimeout(DiscoveryError):
    """The shared refresh did not finish within the caller's wait budget."""


@dataclass(frozen=True)
class ServiceInstance:
    name: str
    ip: str


@dataclass(frozen=True)
class PartialDiscoveryWarning:
    task_id: str
    message: str


@dataclass(frozen=True)
class DirectorySnapshot:
    instances: tuple[ServiceInstance, ...] = ()
    built_at: str | None = None
    service_count: int = 0
    task_count: int = 0
    warnings: tuple[PartialDiscoveryWarning, ...] = field(default_factory=tuple)

    def lookup(self, key: str) -> ServiceInstance | None:
        # First match in enumeration order wins. A short key can match several
        # names ("1" hits both "org-1" and "org-10"); that is left to callers.
        for inst in self.instances:
            if key in inst.name:
                return inst
        return None


class ServiceDirectory:
    """Known service instances for one cluster.

    The published snapshot is replaced wholesale (copy-on-write), and only the
    swap takes the lock; readers just grab the current reference. Concurrent
    refresh requests share one in-flight refresh.
    """

    def __init__(
        self,
        orchestrator: OrchestratorClient,
        cluster: str,
        events: EventLog,
        refresh_timeout_s: float = 30.0,
    ) -> None:
        self.orchestrator = orchestrator
        self.cluster = cluster
        self.events = events
        self.refresh_timeout_s = refresh_timeout_s
        self._lock = Lock()
        self._snapshot = DirectorySnapshot()
        self._inflight: Future[DirectorySnapshot] | None = None

    @property
    def snapshot(self) -> DirectorySnapshot:
        return self._snapshot

    def _publish(self, snap: DirectorySnapshot) -> None:
        with self._lock:
            self._snapshot = snap

    def lookup(self, key: str) -> tuple[str, bool]:
        inst = self._snapshot.lookup(key)
        if inst is None:
            self.events.log("INFO", f"No instance matches routing key '{key}'")
            return "", False
        return inst.ip, True

    def refresh(self) -> DirectorySnapshot:
        """Run one discovery pass and publish its result.

        Raises DiscoveryError if services or tasks cannot be listed; the
        previously published snapshot stays in place in that case.
        """
        try:
            services = self.orchestrator.list_services(self.cluster)
        except OrchestratorError as e:
            self.events.log("ERROR", f"Failed to list services in cluster '{self.cluster}': {e}")
            raise DiscoveryError(f"list services failed: {e}") from e

        # One cluster-wide listing also picks up tasks that belong to no service
        # (started directly with RunTask).
        try:
            listed = self.orchestrator.list_tasks(self.cluster)
        except OrchestratorError as e:
            self.events.log("ERROR", f"Failed to list tasks in cluster '{self.cluster}': {e}")
            raise DiscoveryError(f"list tasks failed: {e}") from e
        task_ids = list(dict.fromkeys(listed))

        containers, warnings = self._describe_all(task_ids)

        instances = tuple(
            ServiceInstance(name=c.name, ip=ip) for c in containers for ip in c.private_ipv4_addresses
        )
        snap = DirectorySnapshot(
            instances=instances,
            built_at=utc_now(),
            service_count=len(services),
            task_count=len(task_ids),
            warnings=tuple(warnings),
        )
        self._publish(snap)
        self.events.log(
            "WARN" if warnings else "INFO",
            f"Directory refreshed: {len(instances)} instances from {len(task_ids)} tasks "
            f"in {len(services)} services ({len(warnings)} tasks skipped)",
        )
        return snap

    def _describe_all(
        self, task_ids: list[str]
    ) -> tuple[list[ContainerDescription], list[PartialDiscoveryWarning]]:
        containers: list[ContainerDescription] = []
        warnings: list[PartialDiscoveryWarning] = []
        for task_id in task_ids:
            try:
                described = self.orchestrator.describe_tasks(self.cluster, [task_id])
            except OrchestratorError as e:
                self.events.log("WARN", f"Failed to describe task {task_id}: {e}")
                warnings.append(PartialDiscoveryWarning(task_id=task_id, message=str(e)))
                continue
            containers.extend(described)
        return containers, warnings

    def ensure_fresh(self, timeout_s: float | None = None) -> DirectorySnapshot:
        """Refresh once for everyone who asks while a refresh is running.

        The refresh runs in its own thread so a caller giving up (timeout,
        client gone) never cancels it; it still publishes for the others.
        """
        with self._lock:
            fut = self._inflight
            if fut is None:
                fut = Future()
                self._inflight = fut
                Thread(target=self._run_refresh, args=(fut,), name="hrp-refresh", daemon=True).start()

        wait = self.refresh_timeout_s if timeout_s is None else timeout_s
        try:
            return fut.result(timeout=wait)
        except FutureTimeout:
            self.events.log("WARN", f"Directory refresh still running after {wait}s; serving current snapshot")
            raise RefreshTimeout(f"refresh did not complete within {wait}s") from None

    def _run_refresh(self, fut: Future[DirectorySnapshot]) -> None:
        snap: DirectorySnapshot | None = None
        error: BaseException | None = None
        try:
            snap = self.refresh()
        except DiscoveryError as e:
            error = e
        except Exception as e:
            self.events.log("ERROR", f"Directory refresh crashed: {type(e).__name__}: {e}")
            error = DiscoveryError(f"refresh failed: {type(e).__name__}: {e}")
            error.__cause__ = e

        # Free the slot before resolving so the next miss starts a new cycle.
        with self._lock:
            self._inflight = None
        if error is not None:
            fut.set_exception(error)
        else:
            fut.set_result(snap)
