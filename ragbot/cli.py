"""CLI entry point for the ragbot package."""

from __future__ import annotations

import asyncio
import logging
import platform
import shutil
import sys

from pydantic import ValidationError

from .agent_config import SAMPLE_AGENT_CONFIG, load_agent_config
from .config import Settings, get_settings
from .errors import AgentConfigError

MIN_PYTHON = (3, 10)

SAMPLE_ENV = """\
PROVIDER=openrouter
OPENROUTER_API_KEY=YOUR_KEY_HERE
LLM_MODEL=openai/gpt-4o-mini
CHANNEL=console
KNOWLEDGE_BACKEND=vault
VAULT_PATH=./notes
AGENT_CONFIG=agent.yaml
"""


def _python_version_str() -> str:
    return ".".join(str(part) for part in sys.version_info[:3])


def _print_help() -> None:
    print("ragbot CLI")
    print()
    print("Usage:")
    print("  ragbot               Run the agent (same as `ragbot run`)")
    print("  ragbot run           Run the agent on the configured channel")
    print("  ragbot setup         Print a sample .env and agent config")
    print("  ragbot doctor        Print environment and configuration diagnostics")
    print()


def _print_setup(settings: Settings) -> None:
    print()
    print("ragbot setup")
    print(f"Provider: {settings.provider_name}  |  Channel: {settings.channel}")
    print()
    print("1. Create a .env file in this folder with something like:")
    print()
    for line in SAMPLE_ENV.splitlines():
        print(f"   {line}")
    print()
    print(f"2. Create {settings.agent_config_path} describing your agent:")
    print()
    for line in SAMPLE_AGENT_CONFIG.splitlines():
        print(f"   {line}")
    print()
    print("3. Run: ragbot")
    print()


def _print_doctor(settings: Settings) -> None:
    print("ragbot doctor")
    print()
    print(f"Platform:  {platform.platform()}")
    print(f"Python:    {_python_version_str()}")
    print(f"Exe:       {sys.executable}")
    print(f"In venv:   {'yes' if sys.prefix != sys.base_prefix else 'no'}")
    print(f"PATH bin:  {shutil.which('ragbot') or 'not found'}")
    print()
    print(f"Provider:  {settings.provider_name} (model: {settings.llm_model or 'default'})")
    print(f"Channel:   {settings.channel}")
    print(f"Knowledge: {settings.knowledge_backend}")
    print(f"Storage:   {settings.context_store}")
    try:
        agent = load_agent_config(settings.agent_config_path)
    except AgentConfigError as exc:
        first_line = str(exc).splitlines()[0]
        print(f"Agent:     not loaded ({first_line})")
    else:
        print(f"Agent:     {agent.name} ({settings.agent_config_path})")
    if sys.version_info < MIN_PYTHON:
        print(f"Issue: Python is below required minimum {MIN_PYTHON[0]}.{MIN_PYTHON[1]}.")


def _configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level, logging.INFO)
    # Keep the console conversation readable.
    if settings.channel == "console" and level < logging.WARNING:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(settings: Settings) -> None:
    from .runtime import run

    _configure_logging(settings)
    try:
        agent_config = load_agent_config(settings.agent_config_path)
        asyncio.run(run(settings, agent_config))
    except AgentConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        pass


def main() -> None:
    """Run the agent or handle setup/doctor/help commands."""
    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        sys.exit(2)

    subcommand = sys.argv[1].strip().lower() if len(sys.argv) > 1 else "run"
    if subcommand in {"-h", "--help", "help"}:
        _print_help()
        sys.exit(0)
    if subcommand == "setup":
        _print_setup(settings)
        sys.exit(0)
    if subcommand == "doctor":
        _print_doctor(settings)
        sys.exit(0)
    if subcommand == "run":
        _run(settings)
        sys.exit(0)

    print(f"Unknown command: {subcommand}", file=sys.stderr)
    _print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
