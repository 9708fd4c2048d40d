import sqlite3
import time
from threading import Barrier, Event, Thread

import pytest

from hrp.directory import (
    DirectorySnapshot,
    DiscoveryError,
    RefreshTimeout,
    ServiceDirectory,
    ServiceInstance,
)


def test_empty_directory_before_first_build(directory):
    assert directory.snapshot.instances == ()
    assert directory.snapshot.built_at is None
    assert directory.lookup("42") == ("", False)


def test_refresh_flattens_containers_and_interfaces(fake, directory):
    fake.add_task("svc-a", "t1", "org-42-api", "10.0.0.5")
    fake.add_task("svc-a", "t2", "org-43-api", "10.0.0.6", "10.0.1.6")
    fake.add_task("svc-b", "t3", "sidecar")  # no network interface

    snap = directory.refresh()

    assert snap.instances == (
        ServiceInstance("org-42-api", "10.0.0.5"),
        ServiceInstance("org-43-api", "10.0.0.6"),
        ServiceInstance("org-43-api", "10.0.1.6"),
    )
    assert snap.service_count == 2
    assert snap.task_count == 3
    assert snap.warnings == ()
    assert directory.snapshot is snap


def test_lookup_is_substring_and_first_match_wins(fake, directory):
    fake.add_task("svc", "t1", "org-1", "10.0.0.1")
    fake.add_task("svc", "t2", "org-10", "10.0.0.10")
    directory.refresh()

    assert directory.lookup("1") == ("10.0.0.1", True)
    assert directory.lookup("org-10") == ("10.0.0.10", True)
    assert directory.lookup("0") == ("10.0.0.10", True)
    assert directory.lookup("org-2") == ("", False)


def test_snapshot_lookup_without_directory():
    snap = DirectorySnapshot(instances=(ServiceInstance("a-x", "1.1.1.1"), ServiceInstance("b-x", "2.2.2.2")))
    assert snap.lookup("x").ip == "1.1.1.1"
    assert snap.lookup("b").ip == "2.2.2.2"
    assert snap.lookup("zzz") is None


def test_list_services_failure_keeps_previous_snapshot(fake, directory):
    fake.add_task("svc", "t1", "org-42-api", "10.0.0.5")
    before = directory.refresh()

    fake.fail_list_services = True
    with pytest.raises(DiscoveryError):
        directory.refresh()

    assert directory.snapshot is before
    assert directory.lookup("42") == ("10.0.0.5", True)


def test_list_tasks_failure_aborts_refresh(fake, directory):
    fake.add_task("svc-a", "t1", "org-1", "10.0.0.1")
    before = directory.snapshot
    fake.fail_list_tasks = True

    with pytest.raises(DiscoveryError):
        directory.refresh()

    assert directory.snapshot is before
    assert fake.calls["describe_tasks"] == 0


def test_tasks_are_listed_once_for_the_whole_cluster(fake, directory):
    fake.add_task("svc-a", "t1", "org-1", "10.0.0.1")
    fake.add_task("svc-b", "t2", "org-2", "10.0.0.2")
    fake.add_task(None, "t3", "org-77-batch", "10.0.0.77")

    snap = directory.refresh()

    assert fake.calls["list_tasks"] == 1
    assert snap.service_count == 2
    assert snap.task_count == 3
    assert directory.lookup("77") == ("10.0.0.77", True)


def test_describe_failure_skips_only_that_task(fake, directory, events):
    fake.add_task("svc", "t1", "org-1-api", "10.0.0.1")
    fake.add_task("svc", "t2", "org-2-api", "10.0.0.2")
    fake.add_task("svc", "t3", "org-3-api", "10.0.0.3")
    fake.fail_describe.add("t2")

    snap = directory.refresh()

    assert [i.name for i in snap.instances] == ["org-1-api", "org-3-api"]
    assert [w.task_id for w in snap.warnings] == ["t2"]
    assert directory.lookup("org-2") == ("", False)
    assert any("Failed to describe task t2" in e.message for e in events.recent(20))


def test_tasks_listed_under_several_services_are_described_once(fake, directory):
    fake.add_task("svc-a", "t1", "org-1", "10.0.0.1")
    fake.tasks_by_service["svc-b"] = ["t1"]

    snap = directory.refresh()

    assert snap.task_count == 1
    assert fake.calls["describe_tasks"] == 1


def test_concurrent_ensure_fresh_runs_one_refresh(fake, directory):
    fake.add_task("svc", "t1", "org-7-api", "10.0.0.7")
    fake.gate = Event()
    n = 12
    barrier = Barrier(n)
    results = []

    def worker():
        barrier.wait()
        results.append(directory.ensure_fresh())

    threads = [Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    assert fake.entered.wait(5)
    time.sleep(1.0)
    fake.gate.set()
    for t in threads:
        t.join(5)

    assert fake.calls["list_services"] == 1
    assert len(results) == n
    assert all(r is results[0] for r in results)
    assert directory.lookup("7") == ("10.0.0.7", True)


def test_ensure_fresh_failure_is_seen_by_every_waiter(fake, directory):
    fake.fail_list_services = True
    fake.gate = Event()
    errors = []

    def worker():
        try:
            directory.ensure_fresh()
        except DiscoveryError as e:
            errors.append(e)

    threads = [Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    assert fake.entered.wait(5)
    time.sleep(0.5)
    fake.gate.set()
    for t in threads:
        t.join(5)

    assert len(errors) == 4
    assert fake.calls["list_services"] == 1


def test_next_miss_after_completion_starts_a_new_refresh(fake, directory):
    directory.ensure_fresh()
    directory.ensure_fresh()
    assert fake.calls["list_services"] == 2


def test_timed_out_waiter_does_not_cancel_shared_refresh(fake, directory):
    fake.add_task("svc", "t1", "org-9", "10.0.0.9")
    fake.gate = Event()

    with pytest.raises(RefreshTimeout):
        directory.ensure_fresh(timeout_s=0.1)

    fake.gate.set()
    deadline = time.time() + 5
    while directory.snapshot.built_at is None and time.time() < deadline:
        time.sleep(0.01)

    assert directory.lookup("org-9") == ("10.0.0.9", True)
    assert fake.calls["list_services"] == 1


def test_refresh_timeout_defaults_to_directory_setting(fake, events):
    fake.gate = Event()
    d = ServiceDirectory(fake, cluster="demo", events=events, refresh_timeout_s=0.05)
    try:
        with pytest.raises(RefreshTimeout):
            d.ensure_fresh()
    finally:
        fake.gate.set()


def test_unexpected_refresh_error_reaches_waiters_as_discovery_error(fake, directory, monkeypatch):
    def broken(cluster):
        raise RuntimeError("unexpected payload")

    monkeypatch.setattr(fake, "list_services", broken)

    with pytest.raises(DiscoveryError) as exc:
        directory.ensure_fresh()
    assert isinstance(exc.value.__cause__, RuntimeError)


def test_unwritable_event_log_does_not_fail_refresh(fake, directory, events, monkeypatch):
    fake.add_task("svc", "t1", "org-42-api", "10.0.0.5")

    def locked():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(events, "connect", locked)

    snap = directory.ensure_fresh()

    assert snap.instances == (ServiceInstance("org-42-api", "10.0.0.5"),)
    assert directory.lookup("42") == ("10.0.0.5", True)
