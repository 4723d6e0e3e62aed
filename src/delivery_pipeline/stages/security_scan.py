"""Security-scan stage: filesystem vulnerability scan plus secret scan.

Both scanners always run and both reports are always kept.  Whether findings
fail the stage is decided afterwards by the configured policy:

- ``blocking: false`` (advisory): the stage succeeds whatever was found.
- ``blocking: true``: any finding at or above ``severity_threshold`` fails
  the stage with :class:`ScanFindingError`.

Leaked secrets carry no severity of their own, so they are scored as
``secret_severity``.
"""

import json
from pathlib import Path

from loguru import logger

from delivery_pipeline.config import ScanConfig
from delivery_pipeline.models.execution import ArtifactKind, ExternalArtifact, StageOutcome
from delivery_pipeline.models.reports import Finding, ScanReport, Severity
from delivery_pipeline.pipeline.context import StageContext
from delivery_pipeline.pipeline.errors import ScanFindingError
from delivery_pipeline.pipeline.redaction import tail
from delivery_pipeline.runners.command import format_command
from delivery_pipeline.stages.base import BaseStage


def parse_vulnerability_report(path: Path) -> ScanReport:
    """Read a filesystem-scanner JSON report (``Results[].Vulnerabilities[]``)."""
    data = json.loads(path.read_text() or "{}")
    findings: list[Finding] = []
    for result in data.get("Results") or []:
        target = result.get("Target", "")
        for vuln in result.get("Vulnerabilities") or []:
            findings.append(
                Finding(
                    rule_id=vuln.get("VulnerabilityID", "unknown"),
                    severity=Severity.parse(vuln.get("Severity")),
                    target=f"{target}:{vuln.get('PkgName', '')}",
                    title=vuln.get("Title", ""),
                )
            )
    return ScanReport(scanner="vulnerability", report_path=str(path), findings=findings)


def parse_secret_report(path: Path, severity: Severity) -> ScanReport:
    """Read a secret-scanner JSON report (a top-level array of leaks)."""
    data = json.loads(path.read_text() or "[]")
    findings = [
        Finding(
            rule_id=leak.get("RuleID", "unknown"),
            severity=severity,
            target=f"{leak.get('File', '')}:{leak.get('StartLine', '')}",
            title=leak.get("Description", ""),
        )
        for leak in data or []
    ]
    return ScanReport(scanner="secret", report_path=str(path), findings=findings)


class SecurityScanStage(BaseStage):
    """Runs both scanners against the checkout and applies the findings policy."""

    error_type = ScanFindingError

    def __init__(self, config: ScanConfig, name: str = "security_scan", **kwargs) -> None:
        super().__init__(name, **kwargs)
        self.config = config

    def _run_scanner(
        self, context: StageContext, command: list[str], report_path: Path
    ) -> None:
        if report_path.exists():
            report_path.unlink()
        result = context.runner.run(
            format_command(command, report=str(report_path)),
            timeout=self.config.timeout,
        )
        # Some scanners signal "findings present" with a non-zero exit but
        # still write the report; only a missing report is a tool failure.
        if not report_path.exists():
            raise self.fail(
                f"Scanner '{command[0]}' produced no report "
                f"(exit={result.exit_code}): {tail(result.stderr)}"
            )

    def execute(self, context: StageContext) -> StageOutcome:
        context.reports_dir.mkdir(parents=True, exist_ok=True)
        vuln_path = context.reports_dir / self.config.vulnerability_report
        secret_path = context.reports_dir / self.config.secret_report

        self._run_scanner(context, self.config.vulnerability_command, vuln_path)
        self._run_scanner(context, self.config.secret_command, secret_path)

        try:
            reports = [
                parse_vulnerability_report(vuln_path),
                parse_secret_report(secret_path, self.config.secret_severity),
            ]
        except (json.JSONDecodeError, AttributeError) as exc:
            raise self.fail(f"Unreadable scan report: {exc}") from exc

        report_refs = [
            ExternalArtifact(
                kind=ArtifactKind.REPORT,
                ref=report.report_path,
                description=f"{report.scanner}: {report.severity_counts() or 'no findings'}",
            )
            for report in reports
        ]

        threshold = self.config.severity_threshold
        blocking_counts = {r.scanner: r.count_at_least(threshold) for r in reports}
        total = sum(blocking_counts.values())
        summary = ", ".join(f"{k}={v}" for k, v in blocking_counts.items())

        if total and self.config.blocking:
            raise self.fail(
                f"{total} finding(s) at or above {threshold.value} ({summary})",
                reports=report_refs,
            )
        if total:
            logger.warning(
                f"{total} finding(s) at or above {threshold.value} ({summary}); "
                f"advisory policy, continuing"
            )
        return StageOutcome(
            reports=report_refs,
            message=f"Scan complete: {summary} at or above {threshold.value}",
        )
