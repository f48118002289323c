"""CLI entry point for aider-acp."""

import argparse
import asyncio
import logging
import sys
from typing import NoReturn

from aider_acp import __version__
from aider_acp.config import AgentConfig

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Large enough for base64-encoded embedded resources
STDIO_LIMIT = 16 * 1024 * 1024


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="aider-acp",
        description="Agent Client Protocol bridge for aider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  aider-acp
  aider-acp --model anthropic/claude-sonnet-4-20250514
  aider-acp --verbose --log-file /tmp/aider-acp.log
  aider-acp doctor
        """,
    )

    parser.add_argument(
        "--version", "-V", action="version", version=f"%(prog)s {__version__}"
    )

    parser.add_argument("command", nargs="?", choices=["serve", "doctor"], default="serve",
                        help="serve over stdio (default) or check the environment")
    parser.add_argument("--model", "-m", help="Model for new sessions (overrides AIDER_MODEL)")
    parser.add_argument("--aider-command", help="aider executable (overrides AIDER_ACP_COMMAND)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--skip-preflight", action="store_true", help="Skip environment checks")

    return parser


def configure_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Send logs to stderr; stdout carries the protocol."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def build_config(args: argparse.Namespace) -> AgentConfig:
    """Load configuration from the environment, then apply flags."""
    config = AgentConfig.from_env()
    if args.aider_command:
        config.aider_command = args.aider_command
    if args.model:
        config.model = args.model
    return config


async def serve(config: AgentConfig, skip_preflight: bool = False) -> None:
    """Serve ACP over stdin/stdout until the client disconnects."""
    from acp import run_agent, stdio_streams

    from aider_acp.agent import AiderAcpAgent
    from aider_acp.preflight import run_preflight

    preflight = await run_preflight(config, skip=skip_preflight)
    for warning in preflight.warnings:
        logger.warning(warning)
    for error in preflight.errors:
        logger.error(error)

    agent = AiderAcpAgent(config=config)
    output_stream, input_stream = await stdio_streams(limit=STDIO_LIMIT)
    try:
        await run_agent(agent, input_stream=input_stream, output_stream=output_stream)
    finally:
        await agent.shutdown()


def main() -> NoReturn:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    configure_logging(verbose=args.verbose, log_file=args.log_file)
    config = build_config(args)

    if args.command == "doctor":
        from aider_acp.preflight import run_doctor

        sys.exit(run_doctor(config))

    logger.info(f"Starting aider-acp {__version__} (model {config.model})")
    try:
        asyncio.run(serve(config, skip_preflight=args.skip_preflight))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)

    sys.exit(0)


if __name__ == "__main__":
    main()
