#!/usr/bin/env python3
"""Run one hash-table benchmark configuration under numactl.

Each RunSpec becomes exactly one subprocess:

    RUST_TEST_THREADS=1 numactl --cpunodebind=0 --membind=<n> -- \
        cargo bench --bench hashbench --features=nr -- \
        -c std -r <read> -w <write> -d <distribution> -a <locality>

and its stdout is appended to the cumulative sweep log.
"""

from __future__ import annotations

import argparse
import shlex
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, TextIO

from hashbench.automation.process_utils import ProcessLaunchError, log_line, run_teed, split_cmd
from hashbench.automation.sweep_matrix import Distribution, Locality, RunSpec, SweepConfigError, is_runnable

DEFAULT_BENCH_ARGV = ["cargo", "bench", "--bench", "hashbench", "--features=nr", "--"]
DEFAULT_MODE = "std"
DEFAULT_THREADS_ENV = "RUST_TEST_THREADS"
DEFAULT_LAUNCHER = ["numactl"]


class RunFailure(RuntimeError):
    def __init__(self, spec: RunSpec, returncode: Optional[int], detail: str = ""):
        self.spec = spec
        self.returncode = returncode
        self.detail = detail
        if returncode is None:
            msg = f"run failed to launch ({spec.label}): {detail}"
        else:
            msg = f"run exited with code {returncode} ({spec.label})"
        super().__init__(msg)


@dataclass
class BenchConfig:
    argv: List[str] = field(default_factory=lambda: list(DEFAULT_BENCH_ARGV))
    mode: str = DEFAULT_MODE
    threads_env: str = DEFAULT_THREADS_ENV
    launcher: List[str] = field(default_factory=lambda: list(DEFAULT_LAUNCHER))

    @classmethod
    def from_mapping(cls, raw: Optional[Dict]) -> "BenchConfig":
        raw = raw or {}
        if not isinstance(raw, dict):
            raise SweepConfigError(f"bench: expected a mapping, got {type(raw).__name__}")
        cfg = cls()
        if raw.get("argv"):
            cfg.argv = split_cmd(raw["argv"])
        if raw.get("mode"):
            cfg.mode = str(raw["mode"])
        if raw.get("threads_env"):
            cfg.threads_env = str(raw["threads_env"])
        if raw.get("launcher"):
            cfg.launcher = split_cmd(raw["launcher"])
        return cfg


@dataclass
class CommandSpec:
    name: str
    argv: List[str]
    env: Dict[str, str]

    def as_dict(self) -> Dict[str, object]:
        return {"name": self.name, "argv": self.argv, "env": self.env, "shell": shlex.join(self.argv)}


def bench_flags(spec: RunSpec, mode: str) -> List[str]:
    return [
        "-c", mode,
        "-r", str(spec.read_ratio),
        "-w", str(spec.write_ratio),
        "-d", spec.distribution.value,
        "-a", spec.locality.value,
    ]


def build_invocation(spec: RunSpec, bench: BenchConfig) -> CommandSpec:
    affinity = spec.affinity
    argv = [*bench.launcher, *affinity.numactl_args(), "--", *bench.argv, *bench_flags(spec, bench.mode)]
    env = {bench.threads_env: "1"}
    name = f"hashbench[{spec.locality.value}/{spec.distribution.value}/r{spec.read_ratio}w{spec.write_ratio}]"
    return CommandSpec(name=name, argv=argv, env=env)


class RunExecutor:
    def __init__(
        self,
        log_path: Path,
        bench: Optional[BenchConfig] = None,
        workdir: Optional[Path] = None,
        echo: Optional[TextIO] = None,
    ):
        self.log_path = Path(log_path)
        self.bench = bench or BenchConfig()
        self.workdir = workdir
        self.echo = echo

    def invocation(self, spec: RunSpec) -> CommandSpec:
        return build_invocation(spec, self.bench)

    def execute(self, spec: RunSpec) -> float:
        """Run spec to completion; return wall-clock seconds or raise RunFailure."""
        cmd = self.invocation(spec)
        log_line("bench_runner", f"running {spec.label}: {shlex.join(cmd.argv)}")
        started = time.monotonic()
        try:
            rc = run_teed(cmd.name, cmd.argv, self.log_path, cwd=self.workdir, env=cmd.env, echo=self.echo)
        except ProcessLaunchError as exc:
            raise RunFailure(spec, None, str(exc)) from exc
        if rc != 0:
            raise RunFailure(spec, rc)
        return time.monotonic() - started


def parse_args():
    parser = argparse.ArgumentParser(description="Run a single pinned hashbench configuration")
    parser.add_argument("--locality", choices=[m.value for m in Locality], required=True)
    parser.add_argument("--distribution", choices=[m.value for m in Distribution], required=True)
    parser.add_argument("--read-ratio", type=int, required=True)
    parser.add_argument("--write-ratio", type=int, default=0)
    parser.add_argument("--log", default="results.log", help="Log file to append to")
    parser.add_argument("--workdir", default=None, help="Directory to run the benchmark from")
    parser.add_argument("--dry-run", action="store_true", help="Print the command instead of running it")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    if args.read_ratio < 0 or args.write_ratio < 0:
        print("[bench_runner] error: ratios must be >= 0", file=sys.stderr)
        return 2
    if not is_runnable(args.read_ratio, args.write_ratio):
        print("[bench_runner] error: read and write ratio are both 0; nothing to measure", file=sys.stderr)
        return 2
    spec = RunSpec(
        locality=Locality(args.locality),
        distribution=Distribution(args.distribution),
        read_ratio=args.read_ratio,
        write_ratio=args.write_ratio,
    )
    executor = RunExecutor(Path(args.log), workdir=Path(args.workdir) if args.workdir else None)
    if args.dry_run:
        cmd = executor.invocation(spec)
        env_prefix = " ".join(f"{k}={v}" for k, v in cmd.env.items())
        print(f"{env_prefix} {shlex.join(cmd.argv)}")
        return 0
    try:
        executor.execute(spec)
    except RunFailure as exc:
        print(f"[bench_runner] error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
