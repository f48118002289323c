"""Preflight checks and diagnostics."""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, field

from rich.console import Console
from rich.text import Text

from aider_acp.config import AgentConfig

logger = logging.getLogger(__name__)

INSTALL_INSTRUCTIONS = "python -m pip install aider-install && aider-install"

# API key variables aider reads, by model-name prefix
PROVIDER_KEYS: dict[str, tuple[str, ...]] = {
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "claude": ("ANTHROPIC_API_KEY",),
    "openai": ("OPENAI_API_KEY",),
    "gpt": ("OPENAI_API_KEY",),
    "o1": ("OPENAI_API_KEY",),
    "o3": ("OPENAI_API_KEY",),
    "deepseek": ("DEEPSEEK_API_KEY",),
    "openrouter": ("OPENROUTER_API_KEY",),
}


@dataclass
class AiderCheckResult:
    """Result of checking the aider installation."""

    command: str
    cli_found: bool
    cli_path: str = ""
    version: str = ""
    error: str = ""


@dataclass
class ModelCheckResult:
    """Whether credentials for the configured model are present."""

    model: str
    key_names: tuple[str, ...] = ()
    key_found: bool = True


@dataclass
class PreflightResult:
    """Result of preflight checks.

    Attributes:
        passed: Whether the aider executable is usable.
        errors: List of error messages.
        warnings: List of warning messages.
    """

    passed: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def get_cli_path(command: str) -> str:
    """Get the full path to a CLI command."""
    path = shutil.which(command)
    return path if path else ""


async def get_cli_version(command: str) -> str:
    """Get the first line of ``<command> --version``."""
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=30)
    except (OSError, asyncio.TimeoutError) as e:
        logger.debug(f"Version check for {command} failed: {e}")
        return ""

    if proc.returncode != 0:
        return ""
    return stdout.decode(errors="replace").strip().split("\n")[0].strip()


async def check_aider(command: str) -> AiderCheckResult:
    """Check that aider is installed and runnable."""
    result = AiderCheckResult(command=command, cli_found=False)

    result.cli_path = get_cli_path(command)
    result.cli_found = bool(result.cli_path)
    if not result.cli_found:
        result.error = f"CLI '{command}' not found on PATH"
        return result

    result.version = await get_cli_version(command)
    return result


def check_model_credentials(model: str) -> ModelCheckResult:
    """Check that an API key for the model's provider is set.

    Models with an unrecognized prefix are assumed to be configured.
    """
    prefix = model.split("/", 1)[0].split("-", 1)[0].lower()
    key_names = PROVIDER_KEYS.get(prefix, ())
    if not key_names:
        return ModelCheckResult(model=model)

    found = any(os.getenv(name) for name in key_names)
    return ModelCheckResult(model=model, key_names=key_names, key_found=found)


async def run_preflight(config: AgentConfig, skip: bool = False) -> PreflightResult:
    """Run preflight checks.

    Args:
        config: Agent configuration to check.
        skip: If True, skip all checks and return passed.

    Returns:
        PreflightResult with status and issues.
    """
    if skip:
        return PreflightResult(passed=True)

    aider = await check_aider(config.aider_command)
    credentials = check_model_credentials(config.model)

    errors: list[str] = []
    warnings: list[str] = []

    if not aider.cli_found:
        errors.append(f"{aider.error}. Install: {INSTALL_INSTRUCTIONS}")

    if not credentials.key_found:
        warnings.append(
            f"No API key for {credentials.model}. Set one of: {', '.join(credentials.key_names)}"
        )

    return PreflightResult(passed=not errors, errors=errors, warnings=warnings)


def run_doctor(config: AgentConfig, console: Console | None = None) -> int:
    """Run diagnostics and print results.

    Always runs to completion, showing all issues.

    Returns:
        0 if aider is usable, 2 if it is not.
    """
    console = console or Console()
    console.print(Text("aider-acp Doctor - System Check", style="bold"))
    console.print("=" * 31)
    console.print()

    aider = asyncio.run(check_aider(config.aider_command))

    console.print(Text("aider", style="bold"))
    if not aider.cli_found:
        console.print(Text(f"  ✗ Not installed ({config.aider_command})", style="red"))
        console.print(f"  → Install: {INSTALL_INSTRUCTIONS}", highlight=False)
    else:
        console.print(Text(f"  ✓ Installed: {aider.cli_path}", style="green"))
        if aider.version:
            console.print(Text(f"  ✓ Version: {aider.version}", style="green"))
        else:
            console.print(Text("  ⚠ Version: unable to detect", style="yellow"))
    console.print()

    console.print(Text("models", style="bold"))
    for info in config.available_models:
        marker = " (default)" if info.model_id == config.model else ""
        credentials = check_model_credentials(info.model_id)
        if credentials.key_found:
            console.print(Text(f"  ✓ {info.model_id}{marker}", style="green"))
        else:
            console.print(Text(f"  ⚠ {info.model_id}{marker}: no API key", style="yellow"))
            console.print(f"  → Set one of: {', '.join(credentials.key_names)}", highlight=False)
    console.print()

    if aider.cli_found:
        console.print("aider-acp is ready to serve.")
        return 0

    console.print(Text("aider is not available. Install it to use aider-acp.", style="red"))
    return 2
