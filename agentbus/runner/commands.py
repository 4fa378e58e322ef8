"""Command lines for the supported agent CLIs."""

import json

from ..models import AgentSpec, OutputFormat


def build_agent_command(agent: AgentSpec, prompt: str) -> tuple[str, list[str]]:
    """Return ``(command, args)`` that run ``agent`` non-interactively."""
    provider = agent.provider.lower()
    model_args: list[str]

    if provider in ("claude", "anthropic"):
        model_args = ["--model", agent.model] if agent.model else []
        args = ["--print", "--output-format", "stream-json", "--verbose", *model_args]
        if agent.output_format is OutputFormat.JSON and agent.json_schema:
            args.extend(["--json-schema", json.dumps(agent.json_schema)])
        return "claude", [*args, prompt]

    if provider in ("google", "gemini"):
        model_args = ["--model", agent.model] if agent.model else []
        return "gemini", ["--output-format", "stream-json", *model_args, "--prompt", prompt]

    if provider == "opencode":
        model_args = ["--model", agent.model] if agent.model else []
        return "opencode", ["run", "--format", "json", *model_args, prompt]

    if provider in ("codex", "openai"):
        model_args = ["--model", agent.model] if agent.model else []
        return "codex", ["exec", "--json", *model_args, prompt]

    raise ValueError(f"Unsupported provider: {agent.provider}")
