"""
CLI entry point.

Commands:
- init: Initialize data directory and database
- ingest <persona> <text>: Store a memory
- search <persona> <query>: Ranked recall
- consolidate [persona]: Run one consolidation pass now
- run: Run the consolidation loop until interrupted
- health: Check embedding provider connectivity

Flags:
- --debug: Enable debug logging to file
"""

import asyncio
import logging
import signal
import sys

from mnemo.core.config import Settings, get_settings
from mnemo.core.errors import MnemoError
from mnemo.core.logging import get_logger, setup_logging

USAGE = """Usage: mnemo [--debug] <command>
Commands:
  init                      Create data directory and database
  ingest <persona> <text>   Store a memory
  search <persona> <query>  Ranked recall
  consolidate [persona]     Run one consolidation pass now
  run                       Run the consolidation loop until interrupted
  health                    Check embedding provider connectivity"""


def main() -> int:
    """Main entry point."""
    settings = get_settings()

    # Parse --debug flag (enables verbose DEBUG traces)
    debug_mode = "--debug" in sys.argv
    if debug_mode:
        sys.argv.remove("--debug")

    log_level = logging.DEBUG if debug_mode else logging.INFO
    log_file = settings.data_dir / "mnemo.log"
    setup_logging(level=log_level, log_file=log_file)
    logger = get_logger("cli")

    if len(sys.argv) < 2:
        print(USAGE)
        return 1

    command, args = sys.argv[1], sys.argv[2:]

    try:
        if command == "init":
            return asyncio.run(_init(settings))
        if command == "ingest" and len(args) >= 2:
            return asyncio.run(_ingest(settings, args[0], " ".join(args[1:])))
        if command == "search" and len(args) >= 2:
            return asyncio.run(_search(settings, args[0], " ".join(args[1:])))
        if command == "consolidate":
            return asyncio.run(_consolidate(settings, args[0] if args else None))
        if command == "run":
            logger.info("Starting consolidation loop")
            return asyncio.run(_run(settings))
        if command == "health":
            return asyncio.run(_health_check(settings))
    except MnemoError as e:
        logger.error(f"{command} failed: {e}")
        print(f"Error: {e}")
        return 2 if e.retryable else 1

    print(USAGE)
    return 1


def _service(settings: Settings):
    from mnemo.core.memory_service import MemoryService

    return MemoryService(settings)


async def _init(settings: Settings) -> int:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    service = _service(settings)
    await service.store.connect()
    await service.store.close()
    print(f"Created: {settings.db_path}")
    return 0


async def _ingest(settings: Settings, persona_id: str, text: str) -> int:
    service = _service(settings)
    await service.start(run_scheduler=False)
    try:
        fragment_id = await service.ingest(text, persona_id, source="cli")
        await service.writer.drain()
        fragment = await service.get(fragment_id)
        status = "degraded" if fragment and fragment.degraded else "embedded"
        print(f"{fragment_id} ({status})")
    finally:
        await service.stop()
    return 0


async def _search(settings: Settings, persona_id: str, query: str) -> int:
    service = _service(settings)
    await service.start(run_scheduler=False)
    try:
        results = await service.search(query, persona_id)
        if not results:
            print("No memories found.")
        for result in results:
            fragment = result.fragment
            print(
                f"{result.score:6.3f}  [{fragment.tier.value}] "
                f"{fragment.timestamp:%Y-%m-%d %H:%M}  {fragment.content}"
            )
    finally:
        await service.stop()
    return 0


async def _consolidate(settings: Settings, persona_id: str | None) -> int:
    service = _service(settings)
    await service.start(run_scheduler=False)
    try:
        reports = await service.consolidate(persona_id)
        for report in reports:
            print(
                f"{report.persona_id}: scanned={report.scanned} promoted={report.promoted} "
                f"evicted={len(report.evicted)} failed={len(report.failed)}"
            )
    finally:
        await service.stop()
    return 0


async def _run(settings: Settings) -> int:
    """Run the consolidation loop until SIGINT/SIGTERM."""
    logger = get_logger("cli.run")
    service = _service(settings)
    shutdown = asyncio.Event()

    def handle_shutdown_signal(signum: int, frame: object | None) -> None:
        """Handle shutdown signals."""
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating graceful shutdown")
        shutdown.set()

    signal.signal(signal.SIGINT, handle_shutdown_signal)
    signal.signal(signal.SIGTERM, handle_shutdown_signal)

    try:
        await service.start()
        print("Consolidation running. Press Ctrl+C to stop.")

        while not shutdown.is_set():
            await asyncio.sleep(0.5)

        print("\nShutting down gracefully...")
    finally:
        await service.stop()
    return 0


async def _health_check(settings: Settings) -> int:
    """Check embedding provider connectivity."""
    from mnemo.embedding import create_provider

    provider = create_provider(settings)
    try:
        healthy = await provider.health_check()
    finally:
        await provider.close()

    status = "OK" if healthy else "UNAVAILABLE"
    print(f"Embedding provider ({provider.name}, {settings.embedding_model}): {status}")
    return 0 if healthy else 1


if __name__ == "__main__":
    sys.exit(main())
