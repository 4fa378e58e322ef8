"""Tests for preflight checks."""

from unittest.mock import patch

from agentbus.preflight import PreflightOptions, format_error, run_preflight


def which_only(*available):
    return lambda name: f"/usr/bin/{name}" if name in available else None


class TestFormatError:
    def test_with_recovery_steps(self):
        message = format_error(
            "claude CLI not installed",
            "Agents need the claude command.",
            ["Install it", "Authenticate"],
        )

        lines = message.splitlines()
        assert lines[0] == "❌ claude CLI not installed"
        assert "To fix:" in message
        assert "1. Install it" in message
        assert "2. Authenticate" in message

    def test_without_recovery_steps(self):
        message = format_error("Broken", "Something is off.", [])

        assert message.startswith("❌ Broken")
        assert "To fix:" not in message


class TestRunPreflight:
    def test_all_tools_present(self):
        with patch("agentbus.preflight.shutil.which", which_only("claude", "gh")):
            result = run_preflight(PreflightOptions(providers={"claude"}))

        assert result.valid
        assert result.errors == []
        assert result.warnings == []

    def test_missing_provider_cli(self):
        with patch("agentbus.preflight.shutil.which", which_only("gh")):
            result = run_preflight(PreflightOptions(providers={"claude", "anthropic"}))

        assert not result.valid
        # Both provider names map to the same binary
        assert len(result.errors) == 1
        assert "claude CLI not installed" in result.errors[0]
        assert "To fix:" in result.errors[0]

    def test_unknown_provider(self):
        with patch("agentbus.preflight.shutil.which", which_only("gh")):
            result = run_preflight(PreflightOptions(providers={"mystery"}))

        assert not result.valid
        assert "Unknown provider 'mystery'" in result.errors[0]

    def test_missing_gh_is_warning_unless_required(self):
        with patch("agentbus.preflight.shutil.which", which_only("gemini")):
            optional = run_preflight(PreflightOptions(providers={"gemini"}))
            required = run_preflight(PreflightOptions(providers={"gemini"}, require_gh=True))

        assert optional.valid
        assert len(optional.warnings) == 1
        assert not required.valid
        assert "GitHub CLI (gh) not installed" in required.errors[0]

    def test_missing_docker_when_required(self):
        with patch("agentbus.preflight.shutil.which", which_only("codex", "gh")):
            result = run_preflight(PreflightOptions(providers={"codex"}, require_docker=True))

        assert not result.valid
        assert "Docker not installed" in result.errors[0]
