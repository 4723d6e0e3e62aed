"""Test stage: run the automated test suite and read its JUnit reports."""

from pathlib import Path
from xml.etree import ElementTree

from loguru import logger

from delivery_pipeline.config import TestConfig
from delivery_pipeline.models.execution import ArtifactKind, ExternalArtifact, StageOutcome
from delivery_pipeline.models.reports import TestReport
from delivery_pipeline.pipeline.context import StageContext
from delivery_pipeline.pipeline.errors import TestFailure
from delivery_pipeline.pipeline.redaction import tail
from delivery_pipeline.stages.base import BaseStage


def parse_junit_reports(paths: list[Path]) -> TestReport:
    """Aggregate ``<testsuite>`` totals and failing case names across files.

    Accepts both a bare ``<testsuite>`` root and a ``<testsuites>`` wrapper.
    """
    report = TestReport()
    for path in paths:
        root = ElementTree.parse(path).getroot()
        suites = [root] if root.tag == "testsuite" else root.iter("testsuite")
        for suite in suites:
            report.tests += int(suite.get("tests", 0))
            report.failures += int(suite.get("failures", 0))
            report.errors += int(suite.get("errors", 0))
            report.skipped += int(suite.get("skipped", 0))
            for case in suite.iter("testcase"):
                if case.find("failure") is not None or case.find("error") is not None:
                    report.failed_cases.append(
                        f"{case.get('classname', '')}.{case.get('name', '')}"
                    )
    return report


class TestStage(BaseStage):
    """Fails on a non-zero test command exit or any failing/erroring case."""

    __test__ = False

    error_type = TestFailure

    def __init__(self, config: TestConfig, name: str = "test", **kwargs) -> None:
        super().__init__(name, **kwargs)
        self.config = config

    def execute(self, context: StageContext) -> StageOutcome:
        result = context.runner.run(self.config.command, timeout=self.config.timeout)

        paths = sorted(context.workspace.glob(self.config.reports_glob))
        try:
            report = parse_junit_reports(paths)
        except ElementTree.ParseError as exc:
            raise self.fail(f"Unreadable test report: {exc}") from exc
        reports = [
            ExternalArtifact(kind=ArtifactKind.REPORT, ref=str(p)) for p in paths
        ]
        summary = (
            f"{report.tests} tests, {report.failures} failures, "
            f"{report.errors} errors, {report.skipped} skipped"
        )

        if result.timed_out:
            raise self.fail(f"Test suite timed out after {self.config.timeout}s", reports=reports)
        if not report.passed:
            failing = ", ".join(report.failed_cases[:10])
            raise self.fail(f"{summary}. Failing: {failing}", reports=reports)
        if not result.ok:
            raise self.fail(
                f"Test command exited with {result.exit_code}: "
                f"{tail(result.stderr or result.stdout)}",
                reports=reports,
            )

        logger.info(summary)
        return StageOutcome(reports=reports, message=summary)
