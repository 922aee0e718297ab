#!/usr/bin/env python3
"""Experiment matrix for the hash-table benchmark sweep.

The matrix is the cartesian product locality x distribution x read ratio
(x write ratio), enumerated with locality outermost. Downstream plotting groups
log records by locality first and distribution second, so the enumeration
order is part of the contract and must not change.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Sequence


class SweepConfigError(ValueError):
    pass


class Locality(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class Distribution(str, Enum):
    UNIFORM = "uniform"
    SKEWED = "skewed"


CPU_NODE = 0
LOCAL_MEM_NODE = 0
REMOTE_MEM_NODE = 1


@dataclass(frozen=True)
class AffinityBinding:
    cpu_node: int
    mem_node: int

    def numactl_args(self) -> List[str]:
        return [f"--cpunodebind={self.cpu_node}", f"--membind={self.mem_node}"]


def affinity_for(locality: Locality) -> AffinityBinding:
    """Threads always run on node 0; remote runs allocate from node 1."""
    if locality is Locality.LOCAL:
        return AffinityBinding(cpu_node=CPU_NODE, mem_node=LOCAL_MEM_NODE)
    if locality is Locality.REMOTE:
        return AffinityBinding(cpu_node=CPU_NODE, mem_node=REMOTE_MEM_NODE)
    raise SweepConfigError(f"unknown locality {locality!r}")


@dataclass(frozen=True)
class RunSpec:
    locality: Locality
    distribution: Distribution
    read_ratio: int
    write_ratio: int = 0

    @property
    def affinity(self) -> AffinityBinding:
        return affinity_for(self.locality)

    @property
    def label(self) -> str:
        return (
            f"locality={self.locality.value} distribution={self.distribution.value} "
            f"read={self.read_ratio} write={self.write_ratio}"
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "locality": self.locality.value,
            "distribution": self.distribution.value,
            "read_ratio": self.read_ratio,
            "write_ratio": self.write_ratio,
        }


def is_runnable(read_ratio: int, write_ratio: int) -> bool:
    # An all-zero mix has no operations to measure.
    return read_ratio > 0 or write_ratio > 0


def _coerce_ratios(name: str, values) -> List[int]:
    if isinstance(values, (int, str)) or values is None:
        values = [values]
    ratios: List[int] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise SweepConfigError(f"{name}: expected a non-negative integer, got {value!r}")
        if value < 0:
            raise SweepConfigError(f"{name}: ratio must be >= 0, got {value}")
        if value in ratios:
            raise SweepConfigError(f"{name}: duplicate value {value!r}")
        ratios.append(value)
    if not ratios:
        raise SweepConfigError(f"{name}: at least one value is required")
    return ratios


def _coerce_enum(name: str, enum_cls, values) -> List:
    if isinstance(values, str):
        values = [values]
    members = []
    for value in values or []:
        try:
            members.append(enum_cls(value))
        except ValueError:
            allowed = ", ".join(m.value for m in enum_cls)
            raise SweepConfigError(f"{name}: unknown value {value!r} (expected one of: {allowed})") from None
        if members.count(members[-1]) > 1:
            raise SweepConfigError(f"{name}: duplicate value {value!r}")
    if not members:
        raise SweepConfigError(f"{name}: at least one value is required")
    return members


@dataclass(frozen=True)
class SweepMatrix:
    localities: Sequence[Locality] = (Locality.LOCAL, Locality.REMOTE)
    distributions: Sequence[Distribution] = (Distribution.UNIFORM, Distribution.SKEWED)
    read_ratios: Sequence[int] = (1, 4, 8)
    write_ratios: Sequence[int] = (0,)

    @classmethod
    def from_mapping(cls, raw: Dict) -> "SweepMatrix":
        raw = raw or {}
        if not isinstance(raw, dict):
            raise SweepConfigError(f"matrix: expected a mapping, got {type(raw).__name__}")
        defaults = cls()
        return cls(
            localities=tuple(_coerce_enum("matrix.localities", Locality, raw.get("localities", [m.value for m in defaults.localities]))),
            distributions=tuple(
                _coerce_enum("matrix.distributions", Distribution, raw.get("distributions", [m.value for m in defaults.distributions]))
            ),
            read_ratios=tuple(_coerce_ratios("matrix.read_ratios", raw.get("read_ratios", list(defaults.read_ratios)))),
            write_ratios=tuple(_coerce_ratios("matrix.write_ratios", raw.get("write_ratios", list(defaults.write_ratios)))),
        )

    def __iter__(self) -> Iterator[RunSpec]:
        for locality in self.localities:
            for distribution in self.distributions:
                for read_ratio in self.read_ratios:
                    for write_ratio in self.write_ratios:
                        if not is_runnable(read_ratio, write_ratio):
                            continue
                        yield RunSpec(
                            locality=locality,
                            distribution=distribution,
                            read_ratio=read_ratio,
                            write_ratio=write_ratio,
                        )

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def as_dict(self) -> Dict[str, List]:
        return {
            "localities": [m.value for m in self.localities],
            "distributions": [m.value for m in self.distributions],
            "read_ratios": list(self.read_ratios),
            "write_ratios": list(self.write_ratios),
        }


def main() -> int:
    ap = argparse.ArgumentParser(description="Print the run order of the default sweep matrix")
    ap.add_argument("--json", action="store_true", help="Emit one JSON object per run")
    args = ap.parse_args()

    for idx, spec in enumerate(SweepMatrix(), start=1):
        if args.json:
            print(json.dumps({"index": idx, **spec.as_dict()}))
        else:
            print(f"{idx:3d} {spec.label}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
