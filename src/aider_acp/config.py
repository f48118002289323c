"""Configuration loading for the aider bridge."""

import json
import logging
import os
import shlex
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_AIDER_COMMAND = "aider"
DEFAULT_MODEL = "gemini/gemini-2.5-flash"

# Flags that keep aider's output plain enough to interpret
DEFAULT_AIDER_FLAGS = [
    "--no-pretty",
    "--no-fancy-input",
    "--no-check-update",
    "--no-show-release-notes",
]


@dataclass
class ModelInfo:
    """A model the client may select."""

    model_id: str
    name: str
    description: str = ""


DEFAULT_MODELS = [
    ModelInfo(DEFAULT_MODEL, "Gemini 2.5 Flash"),
    ModelInfo("gemini/gemini-2.5-pro", "Gemini 2.5 Pro"),
    ModelInfo("anthropic/claude-sonnet-4-20250514", "Claude Sonnet 4"),
    ModelInfo("openai/gpt-4.1", "GPT-4.1"),
    ModelInfo("deepseek/deepseek-chat", "DeepSeek Chat"),
]


@dataclass
class AgentConfig:
    """aider-acp configuration.

    Loads from the environment:
    - AIDER_ACP_COMMAND: aider executable (default: aider)
    - AIDER_MODEL: model for new sessions
    - AIDER_MODELS: JSON list of {"modelId", "name", "description"} objects
    - AIDER_ACP_EXTRA_ARGS: extra aider flags, shell-quoted
    """

    aider_command: str = DEFAULT_AIDER_COMMAND
    model: str = DEFAULT_MODEL
    available_models: list[ModelInfo] = field(default_factory=lambda: list(DEFAULT_MODELS))
    extra_args: list[str] = field(default_factory=list)
    stop_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Build configuration from environment variables."""
        available = parse_models(os.getenv("AIDER_MODELS")) or list(DEFAULT_MODELS)
        model = os.getenv("AIDER_MODEL") or available[0].model_id
        extra_args = shlex.split(os.getenv("AIDER_ACP_EXTRA_ARGS", ""))

        return cls(
            aider_command=os.getenv("AIDER_ACP_COMMAND", DEFAULT_AIDER_COMMAND),
            model=model,
            available_models=available,
            extra_args=extra_args,
        )

    def build_command(self, model: str) -> list[str]:
        """Build the aider command line for a session."""
        return [self.aider_command, "--model", model, *DEFAULT_AIDER_FLAGS, *self.extra_args]

    def has_model(self, model_id: str) -> bool:
        return any(m.model_id == model_id for m in self.available_models)


def parse_models(raw: str | None) -> list[ModelInfo]:
    """Parse the AIDER_MODELS JSON value.

    Invalid JSON or malformed entries are logged and skipped.
    """
    if not raw:
        return []

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring AIDER_MODELS: invalid JSON ({e})")
        return []

    if not isinstance(data, list):
        logger.warning("Ignoring AIDER_MODELS: expected a JSON list")
        return []

    models = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("modelId"):
            logger.warning(f"Skipping malformed AIDER_MODELS entry: {entry!r}")
            continue
        models.append(
            ModelInfo(
                model_id=str(entry["modelId"]),
                name=str(entry.get("name") or entry["modelId"]),
                description=str(entry.get("description", "")),
            )
        )
    return models
