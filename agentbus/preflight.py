"""Preflight checks run before a cluster may start."""

import shutil
from dataclasses import dataclass, field

from .logging_config import get_logger

logger = get_logger(__name__)

# provider -> (binary, install hint, login hint)
PROVIDER_CLIS: dict[str, tuple[str, str, str | None]] = {
    "claude": ("claude", "npm install -g @anthropic-ai/claude-code", "claude login"),
    "anthropic": ("claude", "npm install -g @anthropic-ai/claude-code", "claude login"),
    "google": ("gemini", "npm install -g @google/gemini-cli", None),
    "gemini": ("gemini", "npm install -g @google/gemini-cli", None),
    "opencode": ("opencode", "npm install -g opencode-ai", None),
    "codex": ("codex", "npm install -g @openai/codex", "codex login"),
    "openai": ("codex", "npm install -g @openai/codex", "codex login"),
}


@dataclass
class PreflightOptions:
    """What the upcoming cluster needs from the environment."""

    providers: set[str] = field(default_factory=set)
    require_gh: bool = False
    require_docker: bool = False


@dataclass
class PreflightResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def format_error(title: str, detail: str, recovery_steps: list[str]) -> str:
    """Render an error with numbered recovery steps."""
    lines = [f"❌ {title}", "", f"   {detail}"]
    if recovery_steps:
        lines.extend(["", "   To fix:"])
        lines.extend(f"     {i}. {step}" for i, step in enumerate(recovery_steps, start=1))
    return "\n".join(lines)


def _check_provider(provider: str) -> str | None:
    known = PROVIDER_CLIS.get(provider.lower())
    if known is None:
        return format_error(
            f"Unknown provider '{provider}'",
            "No agent CLI is registered for this provider.",
            [f"Use one of: {', '.join(sorted(PROVIDER_CLIS))}"],
        )
    binary, install_hint, login_hint = known
    if shutil.which(binary) is None:
        steps = [f"Install it: {install_hint}"]
        if login_hint:
            steps.append(f"Authenticate: {login_hint}")
        return format_error(
            f"{binary} CLI not installed",
            f"Agents using provider '{provider}' need the '{binary}' command on PATH.",
            steps,
        )
    return None


def run_preflight(options: PreflightOptions) -> PreflightResult:
    """Check that every tool the cluster needs is available."""
    errors: list[str] = []
    warnings: list[str] = []

    checked: set[str] = set()
    for provider in sorted(options.providers):
        binary = PROVIDER_CLIS.get(provider.lower(), (provider,))[0]
        if binary in checked:
            continue
        checked.add(binary)
        error = _check_provider(provider)
        if error:
            errors.append(error)

    if shutil.which("gh") is None:
        message = format_error(
            "GitHub CLI (gh) not installed",
            "Issue intake from GitHub needs the gh command.",
            ["Install it: https://cli.github.com", "Authenticate: gh auth login"],
        )
        if options.require_gh:
            errors.append(message)
        else:
            warnings.append("GitHub CLI (gh) not installed; GitHub issue intake is unavailable")

    if options.require_docker and shutil.which("docker") is None:
        errors.append(
            format_error(
                "Docker not installed",
                "Isolated clusters run inside a Docker container.",
                ["Install Docker: https://docs.docker.com/get-docker/"],
            )
        )

    result = PreflightResult(valid=not errors, errors=errors, warnings=warnings)
    if result.valid:
        logger.info("Preflight checks passed")
    else:
        logger.error("Preflight checks failed with %s error(s)", len(errors))
    return result
