"""Main entry point for Detectify chatbot detection."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .analyzer.confidence import ConfidenceCalculator
from .analyzer.detector import ChatbotDetector
from .analyzer.fetcher import Fetcher
from .analyzer.heuristic_fallback import HeuristicFallbackDetector
from .analyzer.metrics import metrics
from .analyzer.pattern_store import PatternStore
from .cache import ResultCache
from .config import Config, load_config, validate_config
from .monitoring.health import HealthServer
from .monitoring.notifier import ResultNotifier
from .pipeline.batch import BatchAnalyzer, BatchReport
from .storage import Database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


class DetectifyService:
    """Wires the detector, cache, notifier and health server together."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False
        self._started_at = datetime.now(timezone.utc)

        self.database = Database(config.database_path)
        self.notifier = ResultNotifier()
        self.cache = ResultCache(
            database=self.database,
            notifier=self.notifier,
            ttl_seconds=config.cache_ttl_seconds,
        )
        self.pattern_store = PatternStore(
            patterns_file=config.patterns_file,
            ttl_seconds=config.pattern_refresh_seconds,
            extra_false_positive_domains=config.false_positive_domains,
        )
        self.fetcher = Fetcher(
            timeout=config.fetch_timeout,
            max_attempts=config.fetch_max_attempts,
            backoff_base=config.fetch_backoff_base,
            backoff_max=config.fetch_backoff_max,
            max_redirects=config.fetch_max_redirects,
            max_bytes=config.fetch_max_bytes,
        )
        self.detector = ChatbotDetector(
            self.fetcher,
            self.pattern_store,
            cache=self.cache,
            calculator=ConfidenceCalculator(),
            max_attempts=config.analysis_max_attempts,
            retry_delay=config.analysis_retry_delay,
            single_flight=config.single_flight,
        )
        self.batch = BatchAnalyzer(
            self.detector,
            batch_size=config.batch_size,
            batch_delay=config.batch_delay,
            fallback=HeuristicFallbackDetector(
                keywords=config.fallback_keywords,
                enabled=config.heuristic_fallback_enabled,
            ),
            cache=self.cache,
        )
        self.health_server = HealthServer(
            host=config.health_host,
            port=config.health_port,
            status_provider=self._health_snapshot,
            result_lookup=self.cache.lookup,
            enabled=config.health_enabled,
        )

    def _health_snapshot(self) -> dict:
        """Provide a lightweight status dict for health endpoints."""
        uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()
        library = self.pattern_store.get()
        return {
            "status": "ok" if self._running else "stopped",
            "uptime_seconds": round(uptime, 1),
            "patterns_version": library.version,
            "pattern_signatures": len(library.signatures),
            "subscribers": self.notifier.subscriber_count,
            "cache": self.cache.stats(),
            "detection": metrics.get_summary(),
        }

    async def start(self):
        logger.info("Starting Detectify...")
        self._running = True
        await self.database.connect()
        logger.info("Database connected")
        self.pattern_store.ensure_fresh()
        await self.health_server.start()

    async def stop(self):
        logger.info("Stopping Detectify...")
        self._running = False
        self.batch.cancel()
        await self.health_server.stop()
        await self.database.close()
        logger.info("Detectify stopped")

    async def run(self, urls: list[str]) -> BatchReport:
        return await self.batch.analyze(urls)

    async def wait_for(self, url: str) -> Optional[dict]:
        """Poll the stored row for ``url`` until it settles (or polling gives up)."""
        return await self.notifier.poll(
            url,
            self.cache.lookup,
            interval=self.config.poll_interval,
            max_attempts=self.config.poll_max_attempts,
        )


def _read_urls(args: argparse.Namespace) -> list[str]:
    urls = list(args.urls or [])
    if args.file:
        for line in Path(args.file).read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                urls.append(line)
    return urls


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Detect chatbot widgets on websites")
    parser.add_argument("urls", nargs="*", help="URLs to analyze")
    parser.add_argument("-f", "--file", help="File with one URL per line")
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Keep the health/result server running after the batch completes",
    )
    parser.add_argument("--diagnostics", action="store_true", help="Include per-stage diagnostics in output")
    return parser.parse_args(argv)


async def run_detectify(argv: list[str] | None = None) -> int:
    """Run a batch (and optionally keep serving results)."""
    args = _parse_args(argv)
    config = load_config()

    errors = validate_config(config)
    if errors:
        for error in errors:
            logger.error("Configuration error: %s", error)
        return 1

    urls = _read_urls(args)
    if not urls and not args.serve:
        logger.error("No URLs given (pass URLs or --file)")
        return 1

    service = DetectifyService(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    await service.start()
    try:
        if urls:
            report = await service.run(urls)
            output = {
                "summary": report.summary(),
                "results": [
                    r.to_dict() if args.diagnostics else r.to_record()
                    for r in report.results
                ],
            }
            print(json.dumps(output, indent=2, default=str))
        if args.serve:
            logger.info("Serving results until interrupted")
            await stop_event.wait()
    finally:
        await service.stop()
    return 0


def main():
    """Main entry point."""
    sys.exit(asyncio.run(run_detectify()))


if __name__ == "__main__":
    main()
