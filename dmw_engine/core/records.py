#!/usr/bin/env python
# coding: utf-8

"""
Record types flowing through the windowed differential methylation pipeline.

SiteRecord -> WindowAggregate -> UnitedWindow -> DiffResult
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping


# ============================================================================
# ENUMERATIONS
# ============================================================================


class Context(str, Enum):
    """Cytosine sequence context."""

    CPG = "CpG"
    CHG = "CHG"
    CHH = "CHH"

    @classmethod
    def from_label(cls, label) -> "Context":
        """Parse a context label, accepting the MethylDackel spelling ``CG``."""
        if isinstance(label, cls):
            return label
        key = str(label).strip().upper()
        aliases = {"CPG": cls.CPG, "CG": cls.CPG, "CHG": cls.CHG, "CHH": cls.CHH}
        if key not in aliases:
            raise ValueError(f"Unknown cytosine context: {label!r}")
        return aliases[key]


class Strand(str, Enum):
    PLUS = "+"
    MINUS = "-"

    @classmethod
    def from_label(cls, label) -> "Strand":
        """Parse '+'/'-' or the methylKit 'F'/'R' strand labels."""
        if isinstance(label, cls):
            return label
        key = str(label).strip().upper()
        if key in ("+", "F"):
            return cls.PLUS
        if key in ("-", "R"):
            return cls.MINUS
        raise ValueError(f"Unknown strand: {label!r}")


class Group(str, Enum):
    """Treatment group of a sample."""

    CONTROL = "control"
    EXPERIMENTAL = "experimental"

    @classmethod
    def from_label(cls, label) -> "Group":
        if isinstance(label, cls):
            return label
        key = str(label).strip().lower()
        if key in ("control", "0"):
            return cls.CONTROL
        if key in ("experimental", "treatment", "1"):
            return cls.EXPERIMENTAL
        raise ValueError(f"Unknown group: {label!r}")


class Direction(str, Enum):
    HYPER = "hyper"
    HYPO = "hypo"
    NONE = "none"


# ============================================================================
# RECORDS
# ============================================================================


@dataclass(frozen=True)
class SiteRecord:
    """Coverage of one cytosine in one sample."""

    chromosome: str
    position: int
    strand: Strand
    context: Context
    coverage: int
    methylated: int
    sample_id: str
    group: Group

    @property
    def unmethylated(self) -> int:
        return self.coverage - self.methylated

    @property
    def ratio(self) -> float:
        return self.methylated / self.coverage if self.coverage > 0 else float("nan")


@dataclass(frozen=True, order=True)
class WindowKey:
    """Half-open genomic window [start, end) on one chromosome."""

    chromosome: str
    start: int
    end: int

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(
                f"Window start ({self.start}) must be less than end ({self.end})"
            )

    def __str__(self) -> str:
        return f"{self.chromosome}:{self.start}-{self.end}"


@dataclass(frozen=True)
class WindowAggregate:
    """Summed counts of one sample inside one window."""

    key: WindowKey
    sample_id: str
    group: Group
    coverage: int
    methylated: int
    n_sites: int = 0

    @property
    def ratio(self) -> float:
        return self.methylated / self.coverage if self.coverage > 0 else float("nan")


@dataclass(frozen=True)
class UnitedWindow:
    """One window with an aggregate for every sample of the run."""

    key: WindowKey
    aggregates: Mapping[str, WindowAggregate]

    def group_counts(self, group: Group):
        """Return (methylated, coverage) summed over the samples of ``group``."""
        meth = 0
        cov = 0
        for agg in self.aggregates.values():
            if agg.group == group:
                meth += agg.methylated
                cov += agg.coverage
        return meth, cov


@dataclass(frozen=True)
class DiffResult:
    """Outcome of the differential test for one window."""

    key: WindowKey
    pvalue: float
    qvalue: float
    meth_diff: float
    direction: Direction

    @property
    def chromosome(self) -> str:
        return self.key.chromosome

    @property
    def start(self) -> int:
        return self.key.start

    @property
    def end(self) -> int:
        return self.key.end


# ============================================================================
# DIAGNOSTICS AND RESULT CONTAINERS
# ============================================================================


@dataclass(frozen=True)
class ExclusionReport:
    """Counts of windows dropped without aborting the run."""

    missing_in_samples: int = 0
    zero_coverage_groups: int = 0
    failed_tests: int = 0

    @property
    def total(self) -> int:
        return self.missing_in_samples + self.zero_coverage_groups + self.failed_tests

    def merge(self, other: "ExclusionReport") -> "ExclusionReport":
        return ExclusionReport(
            missing_in_samples=self.missing_in_samples + other.missing_in_samples,
            zero_coverage_groups=self.zero_coverage_groups + other.zero_coverage_groups,
            failed_tests=self.failed_tests + other.failed_tests,
        )

    def summary(self) -> str:
        return (
            f"{self.total} windows excluded: "
            f"{self.missing_in_samples} missing in at least one sample, "
            f"{self.zero_coverage_groups} with a zero-coverage group, "
            f"{self.failed_tests} failed tests"
        )


@dataclass(frozen=True)
class ClassifiedResults:
    """Significant windows split by direction."""

    all: List[DiffResult] = field(default_factory=list)
    hyper: List[DiffResult] = field(default_factory=list)
    hypo: List[DiffResult] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {"all": len(self.all), "hyper": len(self.hyper), "hypo": len(self.hypo)}
