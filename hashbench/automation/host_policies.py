#!/usr/bin/env python3
"""Disable the Linux policies that add noise to NUMA measurements.

Typical usage (once per boot, before a sweep):

  python3 -m hashbench.automation.host_policies

Every switch is written independently: a host without SMT control still gets
NUMA balancing, KSM and THP turned off, and the report says which switch was
not applied. Writing the same value twice is a no-op, so the command can be
re-run safely. Previous values are not saved or restored.
"""

from __future__ import annotations

import argparse
import json
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

HOST_ROOT = Path("/")


class PrivilegeEscalationError(RuntimeError):
    pass


@dataclass(frozen=True)
class PolicySwitch:
    name: str
    path: str  # relative to the sysfs/procfs root
    value: str


DEFAULT_SWITCHES: List[PolicySwitch] = [
    PolicySwitch("numa_balancing", "proc/sys/kernel/numa_balancing", "0"),
    PolicySwitch("ksm.run", "sys/kernel/mm/ksm/run", "0"),
    PolicySwitch("ksm.merge_across_nodes", "sys/kernel/mm/ksm/merge_across_nodes", "0"),
    PolicySwitch("transparent_hugepage.enabled", "sys/kernel/mm/transparent_hugepage/enabled", "never"),
    PolicySwitch("smt.control", "sys/devices/system/cpu/smt/control", "off"),
]


@dataclass
class SwitchResult:
    name: str
    path: str
    value: str
    status: str  # ok | unsupported | failed
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class PolicyReport:
    results: List[SwitchResult]

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failures(self) -> List[SwitchResult]:
        return [r for r in self.results if not r.ok]

    def as_dict(self) -> Dict[str, object]:
        return {"ok": self.ok, "switches": [r.__dict__ for r in self.results]}


def _direct_write(path: Path, value: str) -> None:
    with path.open("w", encoding="utf-8") as f:
        f.write(f"{value}\n")


def _sudo_write(path: Path, value: str) -> None:
    # `sudo tee` so that the redirection happens with elevated privileges.
    proc = subprocess.run(
        ["sudo", "-n", "tee", str(path)],
        input=f"{value}\n",
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
    )
    if proc.returncode != 0:
        raise PermissionError(proc.stderr.strip() or f"sudo tee exited with code {proc.returncode}")


def sudo_available() -> bool:
    if not shutil.which("sudo"):
        return False
    proc = subprocess.run(["sudo", "-n", "true"], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    return proc.returncode == 0


class PolicyController:
    def __init__(
        self,
        switches: Optional[Sequence[PolicySwitch]] = None,
        root: Path = HOST_ROOT,
        use_sudo: Optional[bool] = None,
    ):
        self.switches = list(switches if switches is not None else DEFAULT_SWITCHES)
        self.root = Path(root)
        if use_sudo is None:
            use_sudo = self.root == HOST_ROOT and os.geteuid() != 0
        self.use_sudo = use_sudo

    def resolve(self, switch: PolicySwitch) -> Path:
        return self.root / switch.path

    def _writer(self) -> Callable[[Path, str], None]:
        if not self.use_sudo:
            return _direct_write
        if not sudo_available():
            raise PrivilegeEscalationError(
                "not running as root and `sudo -n` is unavailable; run `sudo -v` first or rerun as root"
            )
        return _sudo_write

    def apply(self) -> PolicyReport:
        """Write the disabled value to every switch, in order."""
        write = self._writer()
        results: List[SwitchResult] = []
        for switch in self.switches:
            path = self.resolve(switch)
            result = SwitchResult(name=switch.name, path=str(path), value=switch.value, status="ok")
            if not path.exists():
                result.status = "unsupported"
                result.detail = "control file not present on this kernel"
            else:
                try:
                    write(path, switch.value)
                except OSError as exc:
                    result.status = "failed"
                    result.detail = str(exc)
            results.append(result)
        return PolicyReport(results=results)

    def query(self) -> Dict[str, Optional[str]]:
        values: Dict[str, Optional[str]] = {}
        for switch in self.switches:
            try:
                values[switch.name] = self.resolve(switch).read_text(encoding="utf-8").strip()
            except OSError:
                values[switch.name] = None
        return values


def _select(only: Optional[str]) -> List[PolicySwitch]:
    if not only:
        return list(DEFAULT_SWITCHES)
    wanted = [name.strip() for name in only.split(",") if name.strip()]
    known = {s.name: s for s in DEFAULT_SWITCHES}
    unknown = [name for name in wanted if name not in known]
    if unknown:
        raise SystemExit(f"unknown switch(es): {', '.join(unknown)} (known: {', '.join(known)})")
    return [s for s in DEFAULT_SWITCHES if s.name in wanted]


def main() -> int:
    ap = argparse.ArgumentParser(description="Disable NUMA balancing, KSM, THP and SMT for benchmarking")
    ap.add_argument("--only", help="Comma-separated subset of switches to apply")
    ap.add_argument("--root", default=str(HOST_ROOT), help="Alternative procfs/sysfs root (default: /)")
    ap.add_argument("--show", action="store_true", help="Print current values and exit without writing")
    ap.add_argument("--dry-run", action="store_true", help="Print the writes that would be performed")
    ap.add_argument("--json", action="store_true", help="Emit the report as JSON")
    args = ap.parse_args()

    controller = PolicyController(switches=_select(args.only), root=Path(args.root))

    if args.show:
        print(json.dumps(controller.query(), indent=2))
        return 0
    if args.dry_run:
        for switch in controller.switches:
            print(f"[host_policies] would write {switch.value!r} > {controller.resolve(switch)}")
        return 0

    try:
        report = controller.apply()
    except PrivilegeEscalationError as exc:
        print(f"[host_policies] error: {exc}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(report.as_dict(), indent=2))
    for result in report.results:
        if result.ok:
            print(f"[host_policies] {result.name}={result.value} ok")
        else:
            print(
                f"[host_policies] warning: {result.name}={result.value} {result.status}: {result.detail}",
                file=sys.stderr,
            )
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
