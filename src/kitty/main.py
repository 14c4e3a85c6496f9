"""
main.py — Kitty Entry Point

Usage:
    kitty                                   # REPL, default settings
    kitty --model gpt-4o                    # pick a model for this session
    kitty --log-level DEBUG                 # verbose logging
    kitty --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from dotenv import load_dotenv


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="kitty",
        description="Kitty, a terminal chat client that plans, uses tools and keeps its context in budget",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $KITTY_CONFIG or .kitty/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Override the model from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from kitty.config.settings import ConfigError, load_settings
    from kitty.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix your config file or .env and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except ConfigError as exc:
        print(f"\n❌  {exc}\n", file=sys.stderr)
        sys.exit(1)
    except OSError as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    if args.model:
        settings.llm.model = args.model

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("kitty.main")
    return settings, log


async def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    settings, log = bootstrap(args)

    from kitty import __version__
    from kitty.agent import Agent
    from kitty.brain import LLMClientFactory
    from kitty.brain.llm_client import LLMError
    from kitty.interfaces.cli import CLIInterface

    log.info(
        "kitty.starting",
        version=__version__,
        model=settings.model,
        base_url=settings.openai_base_url or "default",
    )

    # ── LLM client ────────────────────────────────────────────────────────────
    try:
        client = LLMClientFactory.from_settings(settings)
    except LLMError as e:
        log.error("kitty.llm_init_failed", error=str(e), error_type=type(e).__name__)
        print(f"\n❌  Failed to initialize the LLM client: {e}\n", file=sys.stderr)
        return 1

    if not await client.health_check():
        # Not fatal: some compatible servers don't expose /models
        log.warning("kitty.llm_health_check_failed", base_url=settings.openai_base_url)
        print(
            "⚠️  Could not reach the model endpoint. Check your API key and "
            "OPENAI_BASE_URL; requests may fail.",
            file=sys.stderr,
        )

    # ── Agent + interface ─────────────────────────────────────────────────────
    agent = Agent.from_settings(settings, llm_client=client)
    await agent.initialize()
    log.info("kitty.agent_ready", model=agent.current_model, context_window=agent.token_budget.max_tokens)

    await CLIInterface(settings, agent).start()
    log.info("kitty.stopped")
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
