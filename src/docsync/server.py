"""HTTP trigger surface: manual syncs, status queries and GitHub push webhooks."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from docsync.errors import FatalRunError, SourceNotFoundError
from docsync.sync.orchestrator import SyncOptions

if TYPE_CHECKING:
    from docsync.config import SyncSettings
    from docsync.entities.results import RunReport
    from docsync.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

STATUS_PARTIAL = 207


class SyncServer:
    """aiohttp server exposing the orchestrator over HTTP.

    Push webhooks are answered immediately; the syncs they trigger run as
    background tasks.
    """

    def __init__(self, orchestrator: SyncOrchestrator, settings: SyncSettings) -> None:
        self._orchestrator = orchestrator
        self._settings = settings
        self._background: set[asyncio.Task[Any]] = set()
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/sync", self._handle_sync_all)
        app.router.add_post("/sync/{source_id}", self._handle_sync_one)
        app.router.add_get("/sources", self._handle_sources)
        app.router.add_get("/snapshot/status", self._handle_status_list)
        app.router.add_get("/snapshot/status/{run_id}", self._handle_status_one)
        app.router.add_post("/webhook", self._handle_webhook)
        app.router.add_get("/health", self._handle_health)
        app.on_shutdown.append(self._on_shutdown)
        return app

    @staticmethod
    async def _read_options(request: web.Request, source_filter: str | None = None) -> SyncOptions:
        body: dict[str, Any] = {}
        text = await request.text()
        if text.strip():
            try:
                body = json.loads(text)
            except json.JSONDecodeError as e:
                raise web.HTTPBadRequest(text=f"Invalid JSON body: {e}") from e
            if not isinstance(body, dict):
                raise web.HTTPBadRequest(text="JSON body must be an object")

        flags = {"reset": body.get("reset", False), "push": body.get("push", True)}
        for name, value in flags.items():
            if not isinstance(value, bool):
                raise web.HTTPBadRequest(text=f"'{name}' must be true or false, got {value!r}")
        return SyncOptions(reset=flags["reset"], push=flags["push"], source_filter=source_filter)

    async def _run(self, options: SyncOptions) -> RunReport:
        try:
            return await self._orchestrator.run(options)
        except SourceNotFoundError as e:
            raise web.HTTPNotFound(text=json.dumps({"error": str(e)}), content_type="application/json") from e
        except FatalRunError as e:
            raise web.HTTPInternalServerError(
                text=json.dumps({"error": str(e)}), content_type="application/json"
            ) from e

    async def _handle_sync_all(self, request: web.Request) -> web.Response:
        """Sync every configured source."""
        report = await self._run(await self._read_options(request))
        status = 200 if report.success else STATUS_PARTIAL
        return web.json_response(report.to_dict(), status=status)

    async def _handle_sync_one(self, request: web.Request) -> web.Response:
        """Sync a single source by id."""
        source_id = request.match_info["source_id"]
        report = await self._run(await self._read_options(request, source_filter=source_id))
        status = 200 if report.success else 502
        return web.json_response(report.to_dict(), status=status)

    async def _handle_sources(self, _request: web.Request) -> web.Response:
        return web.json_response(self._orchestrator.registry.describe())

    async def _handle_status_list(self, request: web.Request) -> web.Response:
        dispatcher = self._orchestrator.dispatcher
        if dispatcher is None:
            return web.json_response({"runs": []})
        try:
            limit = int(request.query.get("limit", "20"))
        except ValueError as e:
            raise web.HTTPBadRequest(text="limit must be an integer") from e
        records = dispatcher.status.list_recent(limit=limit)
        return web.json_response({"runs": [r.model_dump(mode="json", by_alias=True) for r in records]})

    async def _handle_status_one(self, request: web.Request) -> web.Response:
        run_id = request.match_info["run_id"]
        dispatcher = self._orchestrator.dispatcher
        record = dispatcher.status.get(run_id) if dispatcher else None
        if record is None:
            return web.json_response({"error": f"No publish for run {run_id}"}, status=404)
        return web.json_response(record.model_dump(mode="json", by_alias=True))

    def _verify_signature(self, payload: bytes, signature: str) -> bool:
        """Verify GitHub webhook HMAC signature."""
        secret = self._settings.webhook_secret
        if not secret:
            return True

        if not signature.startswith("sha256="):
            logger.warning("Invalid signature format: %s", signature)
            return False

        computed = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(computed, signature[len("sha256="):])

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        """Sync the sources that pull from the pushed repository and branch."""
        event_type = request.headers.get("X-GitHub-Event", "")
        if event_type != "push":
            logger.debug("Ignoring non-push event: %s", event_type)
            return web.json_response({"ignored": event_type})

        payload = await request.read()

        signature = request.headers.get("X-Hub-Signature-256", "")
        if not self._verify_signature(payload, signature):
            logger.warning("Webhook signature verification failed")
            return web.Response(text="Forbidden", status=403)

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.exception("Failed to parse webhook JSON")
            return web.Response(text="Bad Request", status=400)

        repo = data.get("repository", {}).get("full_name")
        ref = data.get("ref", "")
        if not repo:
            logger.warning("Missing repo info in webhook payload")
            return web.Response(text="Bad Request", status=400)

        branch = ref.removeprefix("refs/heads/")
        matched = [
            s.id
            for s in self._orchestrator.registry.find_by_repo(repo)
            if not branch
            or s.branch == branch
            or any(a.repo.lower() == repo.lower() and a.branch == branch for a in s.additional_syncs)
        ]
        logger.info(
            "Received push event for %s@%s (commit: %s), %d source(s) match",
            repo,
            branch,
            data.get("after"),
            len(matched),
        )

        for source_id in matched:
            task = asyncio.create_task(self._sync_from_webhook(source_id), name=f"webhook-sync-{source_id}")
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        return web.json_response({"repo": repo, "branch": branch, "sources": matched}, status=202)

    async def _sync_from_webhook(self, source_id: str) -> None:
        try:
            report = await self._orchestrator.run(SyncOptions(source_filter=source_id))
        except FatalRunError:
            logger.exception("Webhook sync of %s aborted", source_id)
            return
        except Exception:
            logger.exception("Webhook sync of %s crashed", source_id)
            return
        if not report.success:
            logger.warning("Webhook sync of %s failed: %s", source_id, report.results[0].error)

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({"status": "ok", "sources": len(self._orchestrator.registry)})

    async def _on_shutdown(self, _app: web.Application) -> None:
        await self.drain()

    async def drain(self) -> None:
        """Wait for webhook-triggered syncs and their publishes to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if self._orchestrator.dispatcher is not None:
            await self._orchestrator.dispatcher.drain()

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self._settings.server_host, self._settings.server_port)
        await self._site.start()

        logger.info("Sync server started on %s:%d", self._settings.server_host, self._settings.server_port)

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()

        logger.info("Sync server stopped")

    async def run_forever(self) -> None:
        """Start server and run until cancelled."""
        await self.start()
        try:
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            await self.stop()
