#!/usr/bin/env python3
"""Helpers for recording what a sweep ran and how each run ended."""

from __future__ import annotations

import json
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from hashbench.automation.host_policies import PolicyController
from hashbench.automation.sweep_matrix import RunSpec


@dataclass
class RunRecord:
    index: int
    spec: Dict[str, object]
    status: str  # ok | failed
    duration_s: Optional[float] = None
    returncode: Optional[int] = None
    error: Optional[str] = None


@dataclass
class SweepRecorder:
    plan: Dict
    runs: List[RunRecord] = field(default_factory=list)
    build: Optional[Dict] = None
    plot: Optional[Dict] = None
    error: Optional[str] = None
    host_facts: Optional[Dict] = None

    def record_run(
        self,
        index: int,
        spec: RunSpec,
        status: str,
        duration_s: Optional[float] = None,
        returncode: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        self.runs.append(
            RunRecord(
                index=index,
                spec=spec.as_dict(),
                status=status,
                duration_s=round(duration_s, 3) if duration_s is not None else None,
                returncode=returncode,
                error=error,
            )
        )

    def finalize(self, path: Path) -> Path:
        payload = {
            "plan": self.plan,
            "build": self.build,
            "runs": [record.__dict__ for record in self.runs],
            "completed": sum(1 for r in self.runs if r.status == "ok"),
            "planned": len(self.plan.get("runs", [])),
            "plot": self.plot,
            "error": self.error,
            "host_facts": self.host_facts,
            "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path


def capture_host_facts(controller: Optional[PolicyController] = None) -> Dict[str, object]:
    def _run(argv: List[str]) -> Optional[str]:
        try:
            cp = subprocess.run(argv, check=False, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
            return cp.stdout.strip()
        except OSError:
            return None

    controller = controller or PolicyController()
    return {
        "kernel_release": _run(["uname", "-r"]),
        "numactl_hardware": _run(["numactl", "--hardware"]) if shutil.which("numactl") else None,
        "policies": controller.query(),
    }
