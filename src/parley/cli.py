"""Command-line front end: run one prompt through the conversation loop."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from parley.config import Config
from parley.conversation import Conversation
from parley.errors import ConfigurationError, IterationLimitExceededError, ParleyError
from parley.providers import connect
from parley.tools import FunctionToolRegistry

_PROVIDER_CHOICES = ("openai", "anthropic", "gemini", "openrouter")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="parley",
        description="Send one prompt to an LLM backend and print the answer.",
    )
    parser.add_argument("prompt", help="Prompt text to send.")
    parser.add_argument(
        "--provider",
        choices=_PROVIDER_CHOICES,
        default=None,
        help="Backend to use (default: derived from the model).",
    )
    parser.add_argument("--model", default=None, help="Model id or alias.")
    parser.add_argument(
        "--fallback",
        action="append",
        choices=_PROVIDER_CHOICES,
        default=[],
        help="Backend to try if the first one fails to initialize. Repeatable.",
    )
    parser.add_argument(
        "--stream", action="store_true", help="Print text as it arrives."
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging."
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Disable prompt caching on backends that support it.",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the scripted mock backend instead of a real API.",
    )
    parser.add_argument(
        "--system", default=None, help="Optional system prompt."
    )
    return parser


def build_config_or_exit(args: argparse.Namespace) -> Config:
    """Build Config from parsed args, exiting with a concise actionable error."""
    try:
        return Config.from_env(
            provider=args.provider,
            model=args.model,
            streaming=True if args.stream else None,
            verbose=True if args.verbose else None,
            enable_prompt_caching=False if args.no_cache else None,
            use_mock=True if args.mock else None,
        )
    except ConfigurationError as exc:
        hint = f" Hint: {exc.hint}" if exc.hint else ""
        print(f"Configuration error: {exc}.{hint}", file=sys.stderr)
        raise SystemExit(2) from exc


async def run_prompt(
    prompt: str,
    *,
    config: Config,
    fallbacks: list[str],
    system_prompt: str | None = None,
) -> int:
    provider = await connect(config, fallbacks)
    try:
        conversation = Conversation(
            provider,
            FunctionToolRegistry(),
            config=config,
            system_prompt=system_prompt,
        )
        on_chunk = _write_chunk if config.streaming else None
        result = await conversation.send(prompt, on_chunk=on_chunk)
    finally:
        await provider.aclose()

    if config.streaming:
        sys.stdout.write("\n")
    else:
        print(result.content)
    return 1 if result.aborted else 0


def _write_chunk(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = build_config_or_exit(args)

    try:
        code = asyncio.run(
            run_prompt(
                args.prompt,
                config=config,
                fallbacks=args.fallback,
                system_prompt=args.system,
            )
        )
    except IterationLimitExceededError as exc:
        if exc.partial_content:
            print(exc.partial_content)
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    except ParleyError as exc:
        hint = f" Hint: {exc.hint}" if exc.hint else ""
        print(f"Error: {exc}.{hint}", file=sys.stderr)
        raise SystemExit(1) from exc
    raise SystemExit(code)


if __name__ == "__main__":
    main()
