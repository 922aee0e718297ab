#!/usr/bin/env python3
"""Run a hashbench sweep defined in hashbench/configs/sweeps/*.yaml.

Steps, each a precondition for the next:
  1. build the benchmark (abort on failure)
  2. truncate the results log
  3. run every RunSpec of the matrix, one at a time, appending to the log
  4. hand the log to the plotting command

Typical usage:
  # once per boot
  python3 -m hashbench.automation.host_policies

  python3 -m hashbench.automation.run_sweep --sweep hashbench_rdonly
  python3 -m hashbench.automation.run_sweep --sweep hashbench_rdonly --dry-run
"""

from __future__ import annotations

import argparse
import json
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from hashbench.automation.bench_runner import BenchConfig, RunExecutor, RunFailure, build_invocation
from hashbench.automation.process_utils import ProcessLaunchError, log_line, run_command, split_cmd
from hashbench.automation.results import SweepRecorder, capture_host_facts
from hashbench.automation.sweep_matrix import SweepConfigError, SweepMatrix

CONFIG_ROOT = Path(__file__).resolve().parents[1] / "configs" / "sweeps"
DEFAULT_SWEEP = "hashbench_rdonly"
DEFAULT_LOG = "results.log"
DEFAULT_BUILD_ARGV = ["cargo", "build", "--release"]
DEFAULT_PLOT_ARGV = ["R", "-q", "--no-readline", "--no-restore", "--no-save"]
DEFAULT_PLOT_STDIN = "benches/hashbench_plot.r"
LOG_ENV = "HASHBENCH_LOG"
ALLOWED_SWEEP_KEYS = {
    "sweep",
    "description",
    "notes",
    "log",
    "workdir",
    "build",
    "bench",
    "matrix",
    "plot",
}


class BuildFailure(RuntimeError):
    pass


class PlottingFailure(RuntimeError):
    pass


def _warn_unknown_keys(label: str, mapping: Dict) -> None:
    unknown = sorted(set(mapping.keys()) - ALLOWED_SWEEP_KEYS)
    if unknown:
        print(
            f"[run_sweep] warning: unrecognized top-level keys {unknown} in {label}; they will be ignored",
            file=sys.stderr,
        )


def load_sweep(name: str, path_override: Optional[str] = None) -> Dict:
    path = Path(path_override) if path_override else CONFIG_ROOT / f"{name}.yaml"
    if not path.exists():
        raise SweepConfigError(f"sweep config not found: {path}")
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise SweepConfigError(f"{path}: expected a mapping at top level")
    _warn_unknown_keys(raw.get("sweep", name), raw)
    return raw


@dataclass
class PlotConfig:
    argv: List[str] = field(default_factory=lambda: list(DEFAULT_PLOT_ARGV))
    stdin: Optional[str] = DEFAULT_PLOT_STDIN

    @classmethod
    def from_mapping(cls, raw: Optional[Dict]) -> "PlotConfig":
        raw = raw or {}
        if not isinstance(raw, dict):
            raise SweepConfigError(f"plot: expected a mapping, got {type(raw).__name__}")
        cfg = cls()
        if raw.get("argv"):
            cfg.argv = split_cmd(raw["argv"])
        if "stdin" in raw:
            cfg.stdin = str(raw["stdin"]) if raw["stdin"] else None
        return cfg


@dataclass
class SweepConfig:
    name: str
    log_path: Path
    workdir: Path
    build_argv: List[str]
    bench: BenchConfig
    matrix: SweepMatrix
    plot: PlotConfig

    @classmethod
    def from_mapping(
        cls,
        raw: Dict,
        log_override: Optional[str] = None,
        workdir_override: Optional[str] = None,
    ) -> "SweepConfig":
        workdir = Path(workdir_override or raw.get("workdir") or ".").resolve()
        log_path = Path(log_override or raw.get("log") or DEFAULT_LOG)
        if not log_path.is_absolute():
            log_path = workdir / log_path
        build = raw.get("build") or {}
        if not isinstance(build, dict):
            raise SweepConfigError(f"build: expected a mapping, got {type(build).__name__}")
        return cls(
            name=str(raw.get("sweep") or DEFAULT_SWEEP),
            log_path=log_path,
            workdir=workdir,
            build_argv=split_cmd(build["argv"]) if build.get("argv") else list(DEFAULT_BUILD_ARGV),
            bench=BenchConfig.from_mapping(raw.get("bench")),
            matrix=SweepMatrix.from_mapping(raw.get("matrix")),
            plot=PlotConfig.from_mapping(raw.get("plot")),
        )


class SweepDriver:
    def __init__(
        self,
        config: SweepConfig,
        executor=None,
        build_enabled: bool = True,
        plot_enabled: bool = True,
        recorder: Optional[SweepRecorder] = None,
    ):
        self.config = config
        self.executor = executor or RunExecutor(config.log_path, bench=config.bench, workdir=config.workdir)
        self.build_enabled = build_enabled
        self.plot_enabled = plot_enabled
        self.recorder = recorder

    def plan(self) -> Dict:
        cfg = self.config
        return {
            "sweep": cfg.name,
            "workdir": str(cfg.workdir),
            "log": str(cfg.log_path),
            "build": cfg.build_argv if self.build_enabled else None,
            "matrix": cfg.matrix.as_dict(),
            "runs": [
                {"index": idx, **spec.as_dict(), **build_invocation(spec, cfg.bench).as_dict()}
                for idx, spec in enumerate(cfg.matrix, start=1)
            ],
            "plot": self._plot_argv() if self.plot_enabled else None,
        }

    def build(self) -> None:
        argv = self.config.build_argv
        log_line("run_sweep", f"building: {shlex.join(argv)}")
        try:
            rc = run_command("build", argv, cwd=self.config.workdir)
        except ProcessLaunchError as exc:
            raise BuildFailure(str(exc)) from exc
        if self.recorder:
            self.recorder.build = {"argv": argv, "returncode": rc}
        if rc != 0:
            raise BuildFailure(f"build exited with code {rc}: {shlex.join(argv)}")

    def reset_log(self) -> None:
        path = self.config.log_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")
        log_line("run_sweep", f"reset log {path}")

    def run_matrix(self) -> int:
        total = len(self.config.matrix)
        completed = 0
        for idx, spec in enumerate(self.config.matrix, start=1):
            log_line("run_sweep", f"run {idx}/{total}: {spec.label}")
            try:
                duration = self.executor.execute(spec)
            except RunFailure as exc:
                if self.recorder:
                    self.recorder.record_run(idx, spec, "failed", returncode=exc.returncode, error=str(exc))
                raise
            if self.recorder:
                self.recorder.record_run(idx, spec, "ok", duration_s=duration)
            completed += 1
        return completed

    def _plot_argv(self) -> List[str]:
        log = str(self.config.log_path)
        return [arg.replace("{log}", log) for arg in self.config.plot.argv]

    def plot(self) -> None:
        argv = self._plot_argv()
        stdin_path = None
        if self.config.plot.stdin:
            stdin_path = Path(self.config.plot.stdin)
            if not stdin_path.is_absolute():
                stdin_path = self.config.workdir / stdin_path
            if not stdin_path.exists():
                raise PlottingFailure(f"plot script not found: {stdin_path}")
        log_line("run_sweep", f"plotting {self.config.log_path}: {shlex.join(argv)}")
        try:
            rc = run_command(
                "plot",
                argv,
                cwd=self.config.workdir,
                env={LOG_ENV: str(self.config.log_path)},
                stdin_path=stdin_path,
            )
        except ProcessLaunchError as exc:
            raise PlottingFailure(str(exc)) from exc
        if rc != 0:
            raise PlottingFailure(f"plot exited with code {rc}: {shlex.join(argv)}")

    def run(self) -> int:
        """Build, reset, run the whole matrix, then plot. Returns completed run count."""
        if self.build_enabled:
            self.build()
        self.reset_log()
        completed = self.run_matrix()
        log_line("run_sweep", f"completed {completed} runs; results in {self.config.log_path}")
        if self.plot_enabled:
            try:
                self.plot()
            except PlottingFailure as exc:
                if self.recorder:
                    self.recorder.plot = {"status": "failed", "error": str(exc)}
                raise
            if self.recorder:
                self.recorder.plot = {"status": "ok"}
        return completed


def run_sweep(args) -> int:
    try:
        raw = load_sweep(args.sweep, args.config)
        config = SweepConfig.from_mapping(raw, log_override=args.log, workdir_override=args.workdir)
    except (SweepConfigError, yaml.YAMLError) as exc:
        print(f"[run_sweep] error: {exc}", file=sys.stderr)
        return 2

    recorder = SweepRecorder(plan={}) if args.summary else None
    driver = SweepDriver(
        config,
        build_enabled=not args.skip_build,
        plot_enabled=not args.no_plot,
        recorder=recorder,
    )
    plan = driver.plan()
    if args.dry_run:
        try:
            print(json.dumps(plan, indent=2))
        except BrokenPipeError:
            pass
        return 0
    if recorder:
        recorder.plan = plan
        recorder.host_facts = capture_host_facts()

    rc = 0
    try:
        driver.run()
    except BuildFailure as exc:
        print(f"[run_sweep] error: build failed, no runs started: {exc}", file=sys.stderr)
        rc = 2
    except RunFailure as exc:
        print(f"[run_sweep] error: {exc}; stopping sweep", file=sys.stderr)
        print(f"[run_sweep] partial results kept in {config.log_path}", file=sys.stderr)
        rc = 2
    except PlottingFailure as exc:
        print(f"[run_sweep] error: plotting failed: {exc}", file=sys.stderr)
        print(f"[run_sweep] results are complete in {config.log_path}", file=sys.stderr)
        rc = 3
    except OSError as exc:
        print(f"[run_sweep] error: {exc}", file=sys.stderr)
        rc = 2
    except KeyboardInterrupt:
        print("[run_sweep] interrupted; sweep aborted", file=sys.stderr)
        rc = 130
    except BaseException as exc:
        if recorder:
            recorder.error = repr(exc)
        raise
    finally:
        if recorder:
            if rc:
                recorder.error = f"exit code {rc}"
            out = recorder.finalize(Path(args.summary))
            print(f"[run_sweep] wrote {out}")
    return rc


def parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Run a NUMA-pinned hashbench sweep")
    parser.add_argument("--sweep", default=DEFAULT_SWEEP, help="Sweep name under hashbench/configs/sweeps")
    parser.add_argument("--config", help="Optional sweep config path")
    parser.add_argument("--log", help="Override results log path (relative paths resolve against --workdir)")
    parser.add_argument("--workdir", help="Directory to build, benchmark and plot from")
    parser.add_argument("--skip-build", action="store_true", help="Use the already-built benchmark")
    parser.add_argument("--no-plot", action="store_true", help="Do not run the plotting step")
    parser.add_argument("--dry-run", action="store_true", help="Print the sweep plan as JSON and exit")
    parser.add_argument("--summary", help="Write JSON summary to path")
    return parser.parse_args(argv)


def main() -> int:
    return run_sweep(parse_args())


if __name__ == "__main__":
    raise SystemExit(main())
