"""
Sifter console - a line-oriented consumer of the query dispatcher.

Reads one query per line from stdin and prints the results of the most
recent query. Useful for trying settings and templates without a UI.

Usage:
  python -m sifter [--settings PATH] [--verbose]
  echo "7/3" | python -m sifter
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

from loguru import logger

from sifter.search.dispatcher import QueryDispatcher
from sifter.search.handlers import (
    AppSearchHandler,
    CalculatorHandler,
    CustomCommandsHandler,
    SearchProvidersHandler,
    VaultHandler,
)
from sifter.services.app_index import AppIndexService
from sifter.utils.helpers import load_settings

# Provider search needs PyGObject, which is optional
try:
    from sifter.services.bus import SessionBus
    HAS_BUS = True
except (ImportError, ValueError):
    HAS_BUS = False

RESULT_WAIT_S = 15.0


def build_dispatcher(settings) -> QueryDispatcher:
    """Wire every backend from settings."""
    index_service = AppIndexService(settings.index_directories, settings.cache_path)
    providers = None
    if HAS_BUS:
        providers = SearchProvidersHandler(
            SessionBus(),
            blacklist=settings.provider_blacklist,
            timeout_ms=settings.provider_timeout_ms,
        )
    else:
        logger.info("PyGObject not installed, search providers disabled")

    return QueryDispatcher(
        settings,
        app_search=AppSearchHandler(index_service, settings.max_results),
        calculator=CalculatorHandler(),
        commands=CustomCommandsHandler(
            settings.command_templates,
            debounce_ms=settings.debounce_ms,
            timeout_s=settings.command_timeout_s,
            max_results=settings.max_results,
        ),
        providers=providers,
        vault=VaultHandler(settings.vault_path),
    )


def _print_results(generation: int, results: list) -> None:
    print(f"-- query {generation}: {len(results)} results")
    for result in results:
        description = f"  ({result.description})" if result.description else ""
        print(f"  [{result.result_type}] {result.title}{description}")
    sys.stdout.flush()


async def run_console(settings) -> None:
    loop = asyncio.get_running_loop()
    dispatcher = build_dispatcher(settings)
    delivered = {}

    def on_results(generation: int, results: list) -> None:
        # Consumers compare against the latest generation before rendering
        if generation != dispatcher.generation:
            return
        _print_results(generation, results)
        event = delivered.get(generation)
        if event is not None:
            event.set()

    dispatcher.subscribe(on_results)

    # Index and provider discovery are ready before the first query
    await dispatcher.start()

    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            event = asyncio.Event()
            generation = dispatcher.generation + 1
            delivered[generation] = event
            dispatcher.submit(line.rstrip("\n"))
            try:
                await asyncio.wait_for(event.wait(), timeout=RESULT_WAIT_S)
            except asyncio.TimeoutError:
                logger.warning(f"No results for query {generation} within {RESULT_WAIT_S}s")
            delivered.pop(generation, None)
    finally:
        dispatcher.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="sifter", description=__doc__.splitlines()[1])
    parser.add_argument("--settings", help="path to settings.toml")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    args = parser.parse_args(argv)

    level = "DEBUG" if args.verbose else os.environ.get("SIFTER_LOG_LEVEL", "WARNING")
    logger.remove()
    logger.add(sys.stderr, level=level)

    settings = load_settings(Path(args.settings) if args.settings else None)

    try:
        asyncio.run(run_console(settings))
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
