"""Parsed tool reports: scanner findings, test totals, quality-gate verdicts."""

from enum import StrEnum

from pydantic import BaseModel


class Severity(StrEnum):
    """Finding severity, ordered from least to most severe."""

    UNKNOWN = "UNKNOWN"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)

    def at_least(self, threshold: "Severity") -> bool:
        return self.rank >= threshold.rank

    @classmethod
    def parse(cls, value: str | None) -> "Severity":
        """Map a scanner's severity string onto :class:`Severity` (case-insensitive)."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.upper())
        except ValueError:
            return cls.UNKNOWN


class Finding(BaseModel):
    """One vulnerability or leaked secret reported by a scanner."""

    rule_id: str
    severity: Severity
    target: str = ""
    title: str = ""


class ScanReport(BaseModel):
    """Findings from one scanner run."""

    scanner: str
    report_path: str
    findings: list[Finding] = []

    def count_at_least(self, threshold: Severity) -> int:
        return sum(1 for f in self.findings if f.severity.at_least(threshold))

    def severity_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for finding in self.findings:
            counts[finding.severity.value] = counts.get(finding.severity.value, 0) + 1
        return counts


class TestReport(BaseModel):
    """Totals aggregated from JUnit XML result files."""

    __test__ = False

    tests: int = 0
    failures: int = 0
    errors: int = 0
    skipped: int = 0
    failed_cases: list[str] = []

    @property
    def passed(self) -> bool:
        return self.failures == 0 and self.errors == 0


class GateCondition(BaseModel):
    """One quality-gate condition as reported by the analysis server."""

    metric: str
    status: str
    actual: str | None = None
    threshold: str | None = None
    comparator: str | None = None


class QualityGateVerdict(BaseModel):
    """Pass/fail verdict computed by the static-analysis server."""

    status: str
    analysis_id: str | None = None
    conditions: list[GateCondition] = []

    @property
    def passed(self) -> bool:
        return self.status == "OK"

    @property
    def failing_conditions(self) -> list[GateCondition]:
        return [c for c in self.conditions if c.status == "ERROR"]
