"""Tests for stage ordering, short-circuit on failure, and secret scoping."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import FakeRunner, RecordingStage
from loguru import logger

from delivery_pipeline.models.execution import ArtifactKind, ExternalArtifact, StageOutcome
from delivery_pipeline.models.pipeline import PipelineRun, RunStatus, StageStatus
from delivery_pipeline.pipeline.context import SecretStore
from delivery_pipeline.pipeline.errors import (
    BuildError,
    PipelineDefinitionError,
    QualityGateRejection,
    TestFailure,
)
from delivery_pipeline.pipeline.sequencer import StageSequencer, linear_chain, order_stages

DELIVERY_STAGES = ["build", "security_scan", "test", "quality_gate", "image", "deploy"]


def _chain(log, failing=None, error=None):
    stages = [
        RecordingStage(name, log, error=error if name == failing else None)
        for name in DELIVERY_STAGES
    ]
    return linear_chain(stages)


def _sequencer(stages, tmp_path, secrets=None, **kwargs):
    return StageSequencer(
        stages,
        runner=FakeRunner(),
        secrets=SecretStore(secrets or {}),
        workspace=tmp_path,
        reports_dir=tmp_path / "reports",
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Graph validation and ordering
# ---------------------------------------------------------------------------


class TestOrderStages:
    def test_linear_chain_keeps_declaration_order(self):
        stages = _chain([])
        assert [s.name for s in order_stages(stages)] == DELIVERY_STAGES

    def test_linear_chain_sets_previous_stage_dependency(self):
        stages = _chain([])
        assert stages[0].depends_on == []
        assert stages[1].depends_on == ["build"]
        assert stages[-1].depends_on == ["image"]

    def test_dependencies_run_before_dependents(self):
        log: list[str] = []
        stages = [
            RecordingStage("deploy", log, depends_on=["image"]),
            RecordingStage("image", log, depends_on=["build"]),
            RecordingStage("build", log),
        ]
        assert [s.name for s in order_stages(stages)] == ["build", "image", "deploy"]

    def test_empty_pipeline_rejected(self):
        with pytest.raises(PipelineDefinitionError, match="at least one stage"):
            order_stages([])

    def test_duplicate_names_rejected(self):
        stages = [RecordingStage("build", []), RecordingStage("build", [])]
        with pytest.raises(PipelineDefinitionError, match="Duplicate"):
            order_stages(stages)

    def test_unknown_dependency_rejected(self):
        stages = [RecordingStage("deploy", [], depends_on=["image"])]
        with pytest.raises(PipelineDefinitionError, match="unknown stage 'image'"):
            order_stages(stages)

    def test_cycle_rejected_before_anything_runs(self, tmp_path):
        log: list[str] = []
        stages = [
            RecordingStage("a", log, depends_on=["b"]),
            RecordingStage("b", log, depends_on=["a"]),
            RecordingStage("c", log),
        ]
        with pytest.raises(PipelineDefinitionError, match="cycle"):
            _sequencer(stages, tmp_path)
        assert log == []


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestSequencerRun:
    def test_all_stages_succeed(self, tmp_path):
        log: list[str] = []
        run, cause = _sequencer(_chain(log), tmp_path).run(PipelineRun(run_id="r1"))

        assert log == DELIVERY_STAGES
        assert run.status == RunStatus.SUCCEEDED
        assert [r.stage for r in run.results] == DELIVERY_STAGES
        assert all(r.status == StageStatus.SUCCESS for r in run.results)
        assert run.failed_stage is None
        assert cause is None

    def test_test_failure_halts_before_quality_gate(self, tmp_path):
        """Three results: build, the combined security_scan stage, and test."""
        log: list[str] = []
        error = TestFailure("2 tests, 1 failures, 0 errors")
        run, cause = _sequencer(_chain(log, "test", error), tmp_path).run(PipelineRun(run_id="r2"))

        assert log == ["build", "security_scan", "test"]
        assert run.status == RunStatus.FAILED
        assert run.failed_stage == "test"
        assert len(run.results) == 3
        failed = run.result_for("test")
        assert failed.status == StageStatus.FAILURE
        assert failed.error_class == "test_failure"
        assert run.result_for("quality_gate") is None
        assert cause is error
        assert cause.stage == "test"

    def test_quality_gate_rejection_blocks_image_and_deploy(self, tmp_path):
        """Four results: build, the combined security_scan stage, test, and quality_gate."""
        log: list[str] = []
        gate_report = ExternalArtifact(kind=ArtifactKind.QUALITY_GATE, ref="AY-1")
        error = QualityGateRejection("Quality gate ERROR", reports=[gate_report])
        run, _ = _sequencer(_chain(log, "quality_gate", error), tmp_path).run(
            PipelineRun(run_id="r3")
        )

        assert "image" not in log
        assert "deploy" not in log
        assert run.failed_stage == "quality_gate"
        assert len(run.results) == 4
        assert run.result_for("quality_gate").reports == (gate_report,)

    def test_first_stage_failure_records_single_result(self, tmp_path):
        log: list[str] = []
        run, _ = _sequencer(_chain(log, "build", BuildError("mvn exited 1")), tmp_path).run(
            PipelineRun(run_id="r4")
        )
        assert log == ["build"]
        assert [r.stage for r in run.results] == ["build"]

    def test_unexpected_exception_becomes_failure(self, tmp_path):
        log: list[str] = []
        stages = _chain(log, "image", KeyError("digest"))
        run, cause = _sequencer(stages, tmp_path).run(PipelineRun(run_id="r5"))

        result = run.result_for("image")
        assert result.status == StageStatus.FAILURE
        assert result.error_class == "KeyError"
        assert "deploy" not in log
        assert isinstance(cause, KeyError)

    def test_artifacts_flow_downstream(self, tmp_path):
        log: list[str] = []
        jar = ExternalArtifact(kind=ArtifactKind.PACKAGE, ref="/ws/target/app.jar")
        build = RecordingStage("build", log, outcome=StageOutcome(artifacts=[jar]))
        image = RecordingStage("image", log)
        _sequencer(linear_chain([build, image]), tmp_path).run(PipelineRun(run_id="r6"))

        assert image.contexts[0].artifact(ArtifactKind.PACKAGE) == "/ws/target/app.jar"

    def test_callbacks_fire_in_order(self, tmp_path):
        log: list[str] = []
        callback = MagicMock()
        stages = _chain(log, "security_scan", BuildError("boom"))
        _sequencer(stages, tmp_path, callback=callback).run(PipelineRun(run_id="r7"))

        assert callback.on_stage_start.call_count == 2
        callback.on_stage_complete.assert_called_once()
        stage, error_class, message, suggestion = callback.on_stage_fail.call_args.args
        assert stage == "security_scan"
        assert error_class == "build_error"
        assert message == "boom"
        assert suggestion == BuildError.suggestion

    def test_record_persisted_after_each_stage(self, tmp_path):
        snapshots: list[tuple[str, int]] = []
        log: list[str] = []
        stages = linear_chain([RecordingStage("build", log), RecordingStage("test", log)])
        _sequencer(
            stages, tmp_path, on_record=lambda r: snapshots.append((r.status.value, len(r.results)))
        ).run(PipelineRun(run_id="r8"))

        assert snapshots == [
            ("running", 0),
            ("running", 1),
            ("running", 2),
            ("succeeded", 2),
        ]

    def test_terminal_run_cannot_be_rerun(self, tmp_path):
        sequencer = _sequencer(_chain([]), tmp_path)
        run, _ = sequencer.run(PipelineRun(run_id="r9"))
        with pytest.raises(RuntimeError):
            sequencer.run(run)


# ---------------------------------------------------------------------------
# Secret scoping
# ---------------------------------------------------------------------------


class TestSecretScoping:
    def test_stage_sees_only_declared_secrets(self, tmp_path):
        log: list[str] = []
        build = RecordingStage("build", log)
        gate = RecordingStage("quality_gate", log, secrets=["sonar_token"])
        secrets = {"sonar_token": "squ_abc123", "registry_password": "pw-registry"}
        _sequencer(linear_chain([build, gate]), tmp_path, secrets=secrets).run(
            PipelineRun(run_id="s1")
        )

        assert dict(build.contexts[0].secrets) == {}
        assert dict(gate.contexts[0].secrets) == {"sonar_token": "squ_abc123"}

    def test_missing_secret_fails_only_that_stage(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DP_TEST_UNSET_TOKEN", raising=False)
        log: list[str] = []
        build = RecordingStage("build", log)
        gate = RecordingStage("quality_gate", log, secrets=["sonar_token"])
        run, _ = _sequencer(
            linear_chain([build, gate]),
            tmp_path,
            secrets={"sonar_token": "$DP_TEST_UNSET_TOKEN"},
        ).run(PipelineRun(run_id="s2"))

        assert log == ["build"]
        assert run.failed_stage == "quality_gate"
        assert run.result_for("quality_gate").error_class == "missing_secret"

    def test_secret_masked_in_failure_message(self, tmp_path):
        log: list[str] = []
        error = QualityGateRejection("token squ_abc123 rejected")
        gate = RecordingStage("quality_gate", log, error=error, secrets=["sonar_token"])
        run, _ = _sequencer([gate], tmp_path, secrets={"sonar_token": "squ_abc123"}).run(
            PipelineRun(run_id="s3")
        )

        message = run.result_for("quality_gate").message
        assert "squ_abc123" not in message
        assert "****" in message

    def test_secrets_never_in_run_record(self, tmp_path):
        log: list[str] = []
        gate = RecordingStage("quality_gate", log, secrets=["sonar_token"])
        run, _ = _sequencer([gate], tmp_path, secrets={"sonar_token": "squ_abc123"}).run(
            PipelineRun(run_id="s4")
        )
        path = Path(tmp_path) / "run.json"
        run.save(path)
        assert "squ_abc123" not in path.read_text()

    def test_secret_masked_in_success_message(self, tmp_path):
        outcome = StageOutcome(message="Logged in with squ_abc123")
        gate = RecordingStage("quality_gate", [], outcome=outcome, secrets=["sonar_token"])
        run, _ = _sequencer([gate], tmp_path, secrets={"sonar_token": "squ_abc123"}).run(
            PipelineRun(run_id="s5")
        )
        assert run.result_for("quality_gate").message == "Logged in with ****"

    def test_secret_masked_in_unexpected_error_log(self, tmp_path):
        messages: list[str] = []
        sink_id = logger.add(messages.append, level="DEBUG", format="{message}")
        try:
            gate = RecordingStage(
                "quality_gate",
                [],
                error=RuntimeError("bad token squ_abc123"),
                secrets=["sonar_token"],
            )
            run, _ = _sequencer([gate], tmp_path, secrets={"sonar_token": "squ_abc123"}).run(
                PipelineRun(run_id="s6")
            )
        finally:
            logger.remove(sink_id)

        logged = "".join(messages)
        assert "Traceback" in logged
        assert "squ_abc123" not in logged
        assert "squ_abc123" not in run.result_for("quality_gate").message
