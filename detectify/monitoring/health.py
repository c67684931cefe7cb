"""Minimal health/metrics/result-lookup server for Detectify."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from aiohttp import web

logger = logging.getLogger(__name__)


class HealthServer:
    """Serves lightweight health, metrics and result lookup endpoints."""

    def __init__(
        self,
        host: str,
        port: int,
        status_provider: Callable[[], dict],
        result_lookup: Optional[Callable[[str], Awaitable[Optional[dict]]]] = None,
        enabled: bool = True,
    ):
        self.host = host
        self.port = port
        self.status_provider = status_provider
        self.result_lookup = result_lookup
        self.enabled = enabled
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/results", self._handle_result)
        return app

    async def start(self):
        """Start the health server."""
        if not self.enabled:
            logger.info("Health server disabled")
            return

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info("Health server listening on %s:%s", self.host, self.port)

    async def stop(self):
        """Stop the health server."""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None

    def _snapshot(self) -> dict:
        try:
            return dict(self.status_provider() or {})
        except Exception as exc:
            logger.warning("Health status provider failed: %s", exc)
            return {"status": "error", "message": str(exc)}

    async def _handle_health(self, request):  # noqa: ANN001
        """Return JSON health status."""
        payload = self._snapshot()
        payload.setdefault("status", "ok")
        return web.json_response(payload, headers={"Access-Control-Allow-Origin": "*"})

    async def _handle_metrics(self, request):  # noqa: ANN001
        """Expose numeric status fields as text metrics (Prometheus-ish)."""
        data = self._snapshot()

        lines = []
        for key, value in _flatten(data):
            if isinstance(value, bool):
                value = int(value)
            if isinstance(value, (int, float)):
                lines.append(f"detectify_{key} {value}")
        if not lines:
            lines.append('detectify_status{state="empty"} 1')

        return web.Response(text="\n".join(lines) + "\n")

    async def _handle_result(self, request):  # noqa: ANN001
        """Point lookup of one stored result, for pollers."""
        url = (request.query.get("url") or "").strip()
        if not url:
            return web.json_response({"error": "url parameter is required"}, status=400)
        if self.result_lookup is None:
            return web.json_response({"error": "result lookup unavailable"}, status=503)

        row = await self.result_lookup(url)
        if row is None:
            return web.json_response({"url": url, "error": "not found"}, status=404)
        return web.json_response(row, headers={"Access-Control-Allow-Origin": "*"})


def _flatten(data: dict, prefix: str = ""):
    for key, value in data.items():
        metric_key = f"{prefix}{key}".replace(".", "_").replace("-", "_").replace(" ", "_").lower()
        if isinstance(value, dict):
            yield from _flatten(value, f"{metric_key}_")
        else:
            yield metric_key, value
