"""Tests for the host policy controller against a fake procfs/sysfs tree."""

from __future__ import annotations

from pathlib import Path

import pytest

from hashbench.automation import host_policies
from hashbench.automation.host_policies import (
    DEFAULT_SWITCHES,
    PolicyController,
    PrivilegeEscalationError,
)

INITIAL = {
    "numa_balancing": "1",
    "ksm.run": "1",
    "ksm.merge_across_nodes": "1",
    "transparent_hugepage.enabled": "[always] madvise never",
    "smt.control": "on",
}


def _fake_root(tmp_path: Path, skip=()) -> Path:
    root = tmp_path / "host"
    for switch in DEFAULT_SWITCHES:
        if switch.name in skip:
            continue
        path = root / switch.path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(INITIAL[switch.name] + "\n")
    return root


def _contents(root: Path):
    return {s.name: (root / s.path).read_text() for s in DEFAULT_SWITCHES if (root / s.path).is_file()}


def test_apply_writes_disabled_values_in_order(tmp_path: Path) -> None:
    root = _fake_root(tmp_path)
    report = PolicyController(root=root).apply()

    assert report.ok
    assert [r.name for r in report.results] == [
        "numa_balancing",
        "ksm.run",
        "ksm.merge_across_nodes",
        "transparent_hugepage.enabled",
        "smt.control",
    ]
    assert PolicyController(root=root).query() == {
        "numa_balancing": "0",
        "ksm.run": "0",
        "ksm.merge_across_nodes": "0",
        "transparent_hugepage.enabled": "never",
        "smt.control": "off",
    }


def test_apply_twice_is_idempotent(tmp_path: Path) -> None:
    root = _fake_root(tmp_path)
    controller = PolicyController(root=root)

    first = controller.apply()
    after_first = _contents(root)
    second = controller.apply()

    assert first.ok and second.ok
    assert _contents(root) == after_first


def test_missing_switch_is_reported_without_blocking_others(tmp_path: Path) -> None:
    root = _fake_root(tmp_path, skip={"smt.control"})
    report = PolicyController(root=root).apply()

    assert not report.ok
    assert [(r.name, r.status) for r in report.failures] == [("smt.control", "unsupported")]
    assert (root / "sys/kernel/mm/transparent_hugepage/enabled").read_text() == "never\n"


def test_write_error_is_tagged_failed(tmp_path: Path) -> None:
    root = _fake_root(tmp_path, skip={"ksm.run"})
    # A directory in place of the control file makes the write fail with an OSError.
    (root / "sys/kernel/mm/ksm/run").mkdir(parents=True)

    report = PolicyController(root=root).apply()

    failed = {r.name: r for r in report.failures}
    assert set(failed) == {"ksm.run"}
    assert failed["ksm.run"].status == "failed"
    assert failed["ksm.run"].detail
    assert (root / "proc/sys/kernel/numa_balancing").read_text() == "0\n"


def test_query_reports_missing_switch_as_none(tmp_path: Path) -> None:
    root = _fake_root(tmp_path, skip={"numa_balancing"})
    values = PolicyController(root=root).query()
    assert values["numa_balancing"] is None
    assert values["smt.control"] == "on"


def test_no_escalation_fails_before_any_write(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = _fake_root(tmp_path)
    monkeypatch.setattr(host_policies, "sudo_available", lambda: False)

    with pytest.raises(PrivilegeEscalationError):
        PolicyController(root=root, use_sudo=True).apply()

    assert _contents(root)["numa_balancing"] == "1\n"


def test_alternative_root_does_not_need_sudo(tmp_path: Path) -> None:
    assert PolicyController(root=tmp_path).use_sudo is False
