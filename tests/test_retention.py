"""Tests for snapshot retention evaluation across clusters."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from unittest import mock

import pytest

from snapshot_cleanup.models import VmHandle
from snapshot_cleanup.report import DRY_RUN_BANNER, render_report
from snapshot_cleanup.retention import (
    evaluate_vm,
    is_expired,
    process_cluster,
    run_retention,
    snapshot_age_days,
)

from fakes import FakeDirectory, snap, utc


# ---------------------------------------------------------------------------
# Age arithmetic
# ---------------------------------------------------------------------------


def test_is_expired_includes_exact_threshold(now):
    assert is_expired(now - timedelta(days=30), now, 30)
    assert not is_expired(now - timedelta(days=30) + timedelta(seconds=1), now, 30)


def test_zero_retention_expires_everything_up_to_now(now):
    assert is_expired(now, now, 0)
    assert not is_expired(now + timedelta(minutes=1), now, 0)


def test_naive_timestamps_are_read_as_utc(now):
    naive = datetime(2024, 5, 1)
    assert is_expired(naive, now, 30)
    assert snapshot_age_days(naive, now) == 47


def test_age_is_floored_to_whole_days(now):
    assert snapshot_age_days(now - timedelta(days=3, hours=23), now) == 3


# ---------------------------------------------------------------------------
# Example scenarios
# ---------------------------------------------------------------------------


def test_old_snapshot_is_deleted_and_reported(now, make_config):
    directory = FakeDirectory({"vc1": [("db1", [], [snap("nightly", utc(2024, 5, 1))])]})

    run = run_retention(directory, make_config(clusters=["vc1"]), now=now)

    assert directory.deleted == ["nightly"]
    [section] = run.entries
    assert section.vm_name == "db1"
    assert section.snapshots[0].age_days == 47
    assert section.snapshots[0].deleted
    text = render_report(run)
    assert "VM: db1 (vc1)" in text
    assert "Age (days):  47" in text


def test_recent_snapshot_is_kept_and_not_reported(now, make_config):
    directory = FakeDirectory({"vc1": [("db1", [], [snap("weekly", utc(2024, 6, 10))])]})

    run = run_retention(directory, make_config(clusters=["vc1"]), now=now)

    assert directory.deleted == []
    assert run.entries == []
    assert "db1" not in render_report(run)


def test_dry_run_reports_without_deleting(now, make_config):
    directory = FakeDirectory(
        {"vc1": [("db1", [], [snap("a", utc(2024, 5, 1)), snap("b", utc(2024, 1, 1))])]}
    )

    run = run_retention(directory, make_config(clusters=["vc1"], dry_run=True), now=now)

    assert not any(call[0] == "delete_snapshot" for call in directory.calls)
    assert [s.name for s in run.entries[0].snapshots] == ["a", "b"]
    assert all(not s.deleted for s in run.entries[0].snapshots)
    text = render_report(run)
    assert text.startswith(DRY_RUN_BANNER)
    assert "Name:        a" in text


def test_unreachable_cluster_does_not_stop_the_run(now, make_config, caplog):
    directory = FakeDirectory({"vc2": [("app1", [], [snap("old", utc(2024, 1, 1))])]})
    directory.unreachable.add("vc1")

    with caplog.at_level(logging.ERROR):
        run = run_retention(directory, make_config(clusters=["vc1", "vc2"]), now=now)

    assert [r.ok for r in run.clusters] == [False, True]
    assert [vm.vm_name for vm in run.entries] == ["app1"]
    assert "vc1" not in render_report(run)
    assert any("vc1" in rec.getMessage() for rec in caplog.records)
    assert ("disconnect", "vc1") not in directory.calls


def test_tag_filter_limits_vms(now, make_config):
    old = utc(2024, 1, 1)
    directory = FakeDirectory(
        {"vc1": [("app1", ["prod"], [snap("s1", old)]), ("app2", [], [snap("s2", old)])]}
    )

    run = run_retention(directory, make_config(clusters=["vc1"], tags=["prod"]), now=now)

    assert [vm.vm_name for vm in run.entries] == ["app1"]
    assert directory.deleted == ["s1"]


# ---------------------------------------------------------------------------
# Ordering and session handling
# ---------------------------------------------------------------------------


def test_vms_sorted_by_name_with_stable_ties(now, make_config):
    old = utc(2024, 1, 1)
    directory = FakeDirectory(
        {
            "vc1": [
                ("web", [], [snap("w", old)]),
                ("db", [], [snap("first", old)]),
                ("app", [], [snap("a", old)]),
                ("db", [], [snap("second", old)]),
            ]
        }
    )

    run = run_retention(directory, make_config(clusters=["vc1"]), now=now)

    assert [vm.vm_name for vm in run.entries] == ["app", "db", "db", "web"]
    assert [vm.snapshots[0].name for vm in run.entries] == ["a", "first", "second", "w"]


def test_snapshot_discovery_order_is_preserved(now):
    directory = FakeDirectory({})
    records = [snap("newer", utc(2024, 3, 1)), snap("older", utc(2023, 1, 1))]
    vm = VmHandle(name="db1", cluster="vc1", ref=("vc1", 0, records))

    section = evaluate_vm(directory, vm, now, 30, dry_run=True)

    assert [s.name for s in section.snapshots] == ["newer", "older"]


def test_vm_without_snapshots_contributes_nothing(now):
    directory = FakeDirectory({})
    vm = VmHandle(name="empty", cluster="vc1", ref=("vc1", 0, []))

    assert evaluate_vm(directory, vm, now, 30) is None


def test_clusters_run_one_session_at_a_time(now, make_config):
    old = utc(2024, 1, 1)
    directory = FakeDirectory(
        {"vc1": [("a", [], [snap("s1", old)])], "vc2": [("b", [], [snap("s2", old)])]}
    )

    run_retention(directory, make_config(clusters=["vc1", "vc2"]), now=now)

    assert directory.max_open == 1
    sessions = [call for call in directory.calls if call[0] in ("connect", "disconnect")]
    assert sessions == [
        ("connect", "vc1"),
        ("disconnect", "vc1"),
        ("connect", "vc2"),
        ("disconnect", "vc2"),
    ]


def test_enumeration_failure_skips_cluster_and_disconnects(now, make_config):
    directory = FakeDirectory({"vc2": [("b", [], [snap("s2", utc(2024, 1, 1))])]})
    directory.enumeration_fails.add("vc1")

    run = run_retention(directory, make_config(clusters=["vc1", "vc2"]), now=now)

    assert run.clusters[0].ok is False
    assert "inventory unavailable" in run.clusters[0].error
    assert ("disconnect", "vc1") in directory.calls
    assert directory.deleted == ["s2"]


def test_unexpected_error_still_disconnects(now, make_config):
    class BrokenDirectory(FakeDirectory):
        def list_snapshots(self, vm):
            raise RuntimeError("boom")

    directory = BrokenDirectory({"vc1": [("a", [], [])]})

    with pytest.raises(RuntimeError):
        process_cluster(directory, "vc1", make_config(clusters=["vc1"]), now)

    assert directory.calls[-1] == ("disconnect", "vc1")
    assert directory.open_sessions == set()


def test_listing_failure_skips_only_that_vm(now, make_config):
    old = utc(2024, 1, 1)
    directory = FakeDirectory({"vc1": [("a", [], [snap("s1", old)]), ("b", [], [snap("s2", old)])]})
    directory.listing_fails.add("a")

    run = run_retention(directory, make_config(clusters=["vc1"]), now=now)

    assert [vm.vm_name for vm in run.entries] == ["b"]
    assert run.clusters[0].vms_scanned == 2


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


def test_deletes_exactly_the_expired_snapshots(now, make_config):
    snapshots = [
        snap("boundary", now - timedelta(days=30)),
        snap("young", now - timedelta(days=29, hours=23)),
        snap("ancient", utc(2020, 1, 1)),
        snap("fresh", now),
    ]
    directory = FakeDirectory({"vc1": [("db1", [], snapshots)]})

    run_retention(directory, make_config(clusters=["vc1"]), now=now)

    assert directory.deleted == ["boundary", "ancient"]


def test_deletion_failure_continues_with_next_snapshot(now, make_config, caplog):
    old = utc(2024, 1, 1)
    directory = FakeDirectory({"vc1": [("db1", [], [snap("stuck", old), snap("ok", old)])]})
    directory.delete_fails.add("stuck")

    with caplog.at_level(logging.ERROR):
        run = run_retention(directory, make_config(clusters=["vc1"]), now=now)

    assert directory.deleted == ["ok"]
    stuck, ok = run.entries[0].snapshots
    assert stuck.error == "task failed" and not stuck.deleted
    assert ok.deleted and ok.error is None
    assert run.clusters[0].deleted == 1
    assert run.clusters[0].failed_deletions == 1
    assert "Delete failed: task failed" in render_report(run)
    assert any("stuck" in rec.getMessage() for rec in caplog.records)


def test_repeated_dry_run_reports_are_identical(now, make_config):
    directory = FakeDirectory(
        {"vc1": [("db1", [], [snap("a", utc(2024, 5, 1), "before upgrade")]), ("web", [], [])]}
    )
    config = make_config(clusters=["vc1"], dry_run=True)

    first = render_report(run_retention(directory, config, now=now))
    second = render_report(run_retention(directory, config, now=now))

    assert first == second
    assert "web" not in first


def test_vms_without_expired_snapshots_add_no_bytes(now, make_config):
    old = utc(2024, 5, 1)
    with_extras = FakeDirectory(
        {
            "vc1": [
                ("db1", [], [snap("a", old)]),
                ("empty", [], []),
                ("young", [], [snap("b", utc(2024, 6, 10))]),
            ]
        }
    )
    alone = FakeDirectory({"vc1": [("db1", [], [snap("a", old)])]})
    config = make_config(clusters=["vc1"], dry_run=True)

    assert render_report(run_retention(with_extras, config, now=now)) == render_report(
        run_retention(alone, config, now=now)
    )


def test_now_is_captured_once_per_run(make_config):
    start = utc(2024, 6, 17)
    ticks = iter(start + timedelta(days=10 * i) for i in range(100))
    created = start - timedelta(days=30)
    directory = FakeDirectory(
        {
            "vc1": [("a", [], [snap("s1", created), snap("s2", created)]), ("b", [], [snap("s3", created)])],
            "vc2": [("c", [], [snap("s4", created)])],
        }
    )

    with mock.patch("snapshot_cleanup.retention.datetime") as clock:
        clock.now.side_effect = lambda tz=None: next(ticks)
        run = run_retention(directory, make_config(clusters=["vc1", "vc2"]))

    assert clock.now.call_count == 1
    assert run.now == start
    ages = [s.age_days for vm in run.entries for s in vm.snapshots]
    assert ages == [30, 30, 30, 30]
    assert directory.deleted == ["s1", "s2", "s3", "s4"]
