#!/usr/bin/env python3
"""Utility helpers for launching benchmark, build and plot commands."""

from __future__ import annotations

import os
import shlex
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, TextIO


class ProcessLaunchError(RuntimeError):
    pass


def log_line(tag: str, message: str, stream: Optional[TextIO] = None) -> None:
    ts = datetime.now().isoformat(timespec="seconds")
    print(f"[{tag}] [{ts}] {message}", file=stream or sys.stdout, flush=True)


def split_cmd(cmd) -> List[str]:
    if isinstance(cmd, (list, tuple)):
        return [str(part) for part in cmd]
    return shlex.split(str(cmd))


def child_env(extra_env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    env = os.environ.copy()
    if extra_env:
        env.update({key: str(value) for key, value in extra_env.items()})
    return env


def _spawn(name: str, argv: List[str], **kwargs) -> subprocess.Popen:
    try:
        return subprocess.Popen(argv, **kwargs)
    except OSError as exc:
        raise ProcessLaunchError(f"{name}: failed to launch {argv[0]!r}: {exc}") from exc


def run_command(
    name: str,
    argv: List[str],
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    stdin_path: Optional[Path] = None,
) -> int:
    """Run a command to completion with inherited stdout/stderr."""
    stdin = open(stdin_path, "r", encoding="utf-8") if stdin_path else None
    try:
        proc = _spawn(name, argv, cwd=cwd, env=child_env(env), stdin=stdin)
        return _wait(proc, name)
    finally:
        if stdin:
            stdin.close()


def run_teed(
    name: str,
    argv: List[str],
    log_path: Path,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    echo: Optional[TextIO] = None,
) -> int:
    """Run a command and append its stdout to log_path while echoing it.

    Lines are written to the log as they arrive, so a run that dies half-way
    leaves whatever it printed on disk. Output is copied as raw bytes and
    never decoded. stderr is left attached to the terminal.
    """
    echo = echo or sys.stdout
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("ab") as log:
        proc = _spawn(
            name,
            argv,
            cwd=cwd,
            env=child_env(env),
            stdout=subprocess.PIPE,
        )
        try:
            for line in proc.stdout:
                log.write(line)
                log.flush()
                _echo_bytes(echo, line)
        except BaseException:
            _terminate_process(proc, name)
            raise
        finally:
            proc.stdout.close()
        return _wait(proc, name)


def _echo_bytes(echo: TextIO, line: bytes) -> None:
    buffer = getattr(echo, "buffer", None)
    if buffer is None:
        echo.write(line.decode("utf-8", errors="replace"))
        echo.flush()
        return
    # Pending text must reach the stream before the raw bytes do.
    echo.flush()
    buffer.write(line)
    buffer.flush()


def _wait(proc: subprocess.Popen, name: str) -> int:
    try:
        return proc.wait()
    except BaseException:
        _terminate_process(proc, name)
        raise


def _terminate_process(proc: subprocess.Popen, name: str, timeout: float = 5.0) -> None:
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
