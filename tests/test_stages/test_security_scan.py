"""Tests for the security-scan stage: report parsing and findings policy."""

import json
from pathlib import Path

import pytest
from conftest import FakeRunner, ok_result

from delivery_pipeline.config import ScanConfig
from delivery_pipeline.models.execution import ArtifactKind
from delivery_pipeline.models.reports import Severity
from delivery_pipeline.pipeline.errors import ScanFindingError
from delivery_pipeline.stages.security_scan import (
    SecurityScanStage,
    parse_secret_report,
    parse_vulnerability_report,
)

VULNERABILITY_REPORT = {
    "SchemaVersion": 2,
    "Results": [
        {
            "Target": "pom.xml",
            "Vulnerabilities": [
                {
                    "VulnerabilityID": "CVE-2022-22965",
                    "PkgName": "org.springframework:spring-beans",
                    "Severity": "CRITICAL",
                    "Title": "Spring4Shell",
                },
                {
                    "VulnerabilityID": "CVE-2023-0001",
                    "PkgName": "com.fasterxml.jackson.core:jackson-databind",
                    "Severity": "medium",
                    "Title": "Denial of service",
                },
            ],
        },
        {"Target": "Dockerfile", "Vulnerabilities": None},
    ],
}

SECRET_REPORT = [
    {
        "RuleID": "generic-api-key",
        "File": "src/main/resources/application.properties",
        "StartLine": 12,
        "Description": "Generic API Key",
    }
]


def _writer(flag: str, payload):
    """Runner handler that writes *payload* to the path following *flag*."""

    def handler(command, env):
        path = Path(command[command.index(flag) + 1])
        path.write_text(json.dumps(payload))
        return ok_result(command)

    return handler


def _runner(vulns=None, leaks=None) -> FakeRunner:
    return FakeRunner(
        {
            "trivy": _writer("--output", vulns if vulns is not None else {"Results": []}),
            "gitleaks": _writer("--report-path", leaks if leaks is not None else []),
        }
    )


class TestReportParsing:
    def test_vulnerability_report(self, tmp_path):
        path = tmp_path / "trivy.json"
        path.write_text(json.dumps(VULNERABILITY_REPORT))
        report = parse_vulnerability_report(path)

        assert [f.rule_id for f in report.findings] == ["CVE-2022-22965", "CVE-2023-0001"]
        assert report.findings[1].severity == Severity.MEDIUM
        assert report.count_at_least(Severity.HIGH) == 1
        assert report.severity_counts() == {"CRITICAL": 1, "MEDIUM": 1}

    def test_secret_report_uses_configured_severity(self, tmp_path):
        path = tmp_path / "gitleaks.json"
        path.write_text(json.dumps(SECRET_REPORT))
        report = parse_secret_report(path, Severity.CRITICAL)

        assert report.findings[0].severity == Severity.CRITICAL
        assert report.findings[0].target == "src/main/resources/application.properties:12"

    def test_empty_reports(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text("")
        assert parse_vulnerability_report(path).findings == []
        assert parse_secret_report(path, Severity.HIGH).findings == []


class TestSecurityScanStage:
    def test_clean_scan_succeeds(self, make_context):
        runner = _runner()
        outcome = SecurityScanStage(ScanConfig()).execute(make_context(runner=runner))

        assert [c[0] for c in runner.calls] == ["trivy", "gitleaks"]
        assert len(outcome.reports) == 2
        assert all(r.kind == ArtifactKind.REPORT for r in outcome.reports)
        assert "no findings" in outcome.reports[0].description

    def test_advisory_policy_passes_with_findings(self, make_context):
        runner = _runner(VULNERABILITY_REPORT, SECRET_REPORT)
        outcome = SecurityScanStage(ScanConfig(blocking=False)).execute(
            make_context(runner=runner)
        )

        assert outcome.message == "Scan complete: vulnerability=1, secret=1 at or above HIGH"
        assert "CRITICAL" in outcome.reports[0].description

    def test_blocking_policy_fails_with_reports(self, make_context):
        runner = _runner(VULNERABILITY_REPORT, SECRET_REPORT)
        with pytest.raises(ScanFindingError, match="2 finding") as exc_info:
            SecurityScanStage(ScanConfig(blocking=True)).execute(make_context(runner=runner))
        assert len(exc_info.value.reports) == 2

    def test_blocking_policy_counts_only_at_threshold(self, make_context):
        runner = _runner(VULNERABILITY_REPORT, [])
        config = ScanConfig(blocking=True, severity_threshold=Severity.CRITICAL)
        with pytest.raises(ScanFindingError, match=r"vulnerability=1, secret=0"):
            SecurityScanStage(config).execute(make_context(runner=runner))

    def test_blocking_policy_below_threshold_passes(self, make_context):
        vulns = {
            "Results": [
                {
                    "Target": "pom.xml",
                    "Vulnerabilities": [
                        {"VulnerabilityID": "CVE-1", "PkgName": "x", "Severity": "LOW"}
                    ],
                }
            ]
        }
        config = ScanConfig(blocking=True, severity_threshold=Severity.HIGH)
        outcome = SecurityScanStage(config).execute(make_context(runner=_runner(vulns, [])))
        assert "vulnerability=0" in outcome.message

    def test_missing_report_is_tool_failure(self, make_context):
        runner = FakeRunner({"gitleaks": _writer("--report-path", [])})
        with pytest.raises(ScanFindingError, match="produced no report"):
            SecurityScanStage(ScanConfig()).execute(make_context(runner=runner))

    def test_stale_report_removed_before_scan(self, make_context, tmp_path):
        reports_dir = tmp_path / "reports"
        reports_dir.mkdir()
        (reports_dir / "gitleaks-report.json").write_text(json.dumps(SECRET_REPORT))
        runner = FakeRunner({"trivy": _writer("--output", {"Results": []})})

        with pytest.raises(ScanFindingError, match="gitleaks"):
            SecurityScanStage(ScanConfig()).execute(make_context(runner=runner))

    def test_unreadable_report(self, make_context):
        def garbage(command, env):
            Path(command[command.index("--output") + 1]).write_text("{not json")
            return ok_result(command)

        runner = FakeRunner({"trivy": garbage, "gitleaks": _writer("--report-path", [])})
        with pytest.raises(ScanFindingError, match="Unreadable"):
            SecurityScanStage(ScanConfig()).execute(make_context(runner=runner))
