"""Shared fixtures: stub numactl, benchmark and plot commands.

Also ensures the repository root is on sys.path so 'import hashbench.*' works
without installing the package.
"""

from __future__ import annotations

import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import pytest

_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from hashbench.automation.bench_runner import BenchConfig  # noqa: E402
from hashbench.automation.run_sweep import PlotConfig, SweepConfig  # noqa: E402
from hashbench.automation.sweep_matrix import SweepMatrix  # noqa: E402

FAIL_ENV = "HASHBENCH_STUB_FAIL"

# Records the affinity flags next to the script, then execs whatever follows "--".
FAKE_NUMACTL = """
import os
import sys
from pathlib import Path

args = sys.argv[1:]
split = args.index("--")
with Path(__file__).with_name("affinity.log").open("a") as f:
    f.write(" ".join(args[:split]) + "\\n")
os.execv(args[split + 1], args[split + 1:])
"""

# Prints one record per run; fails after printing when HASHBENCH_STUB_FAIL
# names its "<locality>,<distribution>,<read>" triple.
FAKE_BENCH = """
import argparse
import os
import sys

ap = argparse.ArgumentParser()
ap.add_argument("-c")
ap.add_argument("-r")
ap.add_argument("-w")
ap.add_argument("-d")
ap.add_argument("-a")
args = ap.parse_args()
if os.environ.get("RUST_TEST_THREADS") != "1":
    sys.exit(9)
print(f"OK {args.a} {args.d} {args.r}", flush=True)
if os.environ.get("HASHBENCH_STUB_FAIL") == f"{args.a},{args.d},{args.r}":
    sys.exit(1)
"""

FAKE_PLOT = """
import os
import sys
from pathlib import Path

Path(__file__).with_name("plotted.txt").write_text(sys.argv[1] + "\\n" + os.environ["HASHBENCH_LOG"] + "\\n")
"""


@dataclass
class Stubs:
    root: Path
    numactl: Path
    bench: Path
    plot: Path

    @property
    def affinity_log(self) -> Path:
        return self.root / "affinity.log"

    @property
    def plotted(self) -> Path:
        return self.root / "plotted.txt"

    def bench_config(self) -> BenchConfig:
        return BenchConfig(
            argv=[sys.executable, str(self.bench)],
            launcher=[sys.executable, str(self.numactl)],
        )

    def sweep_config(
        self,
        log_path: Optional[Path] = None,
        build_argv: Optional[List[str]] = None,
        plot_argv: Optional[List[str]] = None,
        matrix: Optional[SweepMatrix] = None,
    ) -> SweepConfig:
        return SweepConfig(
            name="test",
            log_path=log_path or self.root / "results.log",
            workdir=self.root,
            build_argv=build_argv or [sys.executable, "-c", "pass"],
            bench=self.bench_config(),
            matrix=matrix or SweepMatrix(),
            plot=PlotConfig(argv=plot_argv or [sys.executable, str(self.plot), "{log}"], stdin=None),
        )


def _write(path: Path, body: str) -> Path:
    path.write_text(textwrap.dedent(body).lstrip(), encoding="utf-8")
    return path


@pytest.fixture
def stubs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Stubs:
    monkeypatch.delenv(FAIL_ENV, raising=False)
    root = tmp_path / "stubs"
    root.mkdir()
    return Stubs(
        root=root,
        numactl=_write(root / "fake_numactl.py", FAKE_NUMACTL),
        bench=_write(root / "fake_bench.py", FAKE_BENCH),
        plot=_write(root / "fake_plot.py", FAKE_PLOT),
    )
