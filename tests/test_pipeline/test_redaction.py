"""Tests for secret masking in tool output."""

from delivery_pipeline.pipeline.redaction import MASK, redact, redact_command, tail


class TestRedact:
    def test_masks_every_occurrence(self):
        text = "login with hunter2pw ... retry hunter2pw"
        assert redact(text, ["hunter2pw"]) == f"login with {MASK} ... retry {MASK}"

    def test_longer_secret_masked_first(self):
        text = "token=abcd1234efgh"
        assert redact(text, ["abcd", "abcd1234efgh"]) == f"token={MASK}"

    def test_short_values_ignored(self):
        assert redact("a b c", ["a"]) == "a b c"

    def test_empty_text(self):
        assert redact("", ["secret"]) == ""

    def test_no_secrets(self):
        assert redact("plain output", []) == "plain output"

    def test_redact_command_masks_arguments(self):
        command = ["mvn", "sonar:sonar", "-Dsonar.token=squ_abc123"]
        assert redact_command(command, ["squ_abc123"]) == [
            "mvn",
            "sonar:sonar",
            f"-Dsonar.token={MASK}",
        ]


class TestTail:
    def test_short_text_unchanged(self):
        assert tail("  error: x  ") == "error: x"

    def test_long_text_keeps_end(self):
        text = "x" * 600 + "[ERROR] compilation failure"
        result = tail(text, limit=50)
        assert result.startswith("...")
        assert result.endswith("[ERROR] compilation failure")
        assert len(result) == 53
