from dataclasses import dataclass
import logging
from typing import Callable, Optional

from sanic import Sanic, response, Request
import aiohttp
from sanic.log import logger
import sanic.log
import cachetools
from prometheus_client import core
from prometheus_client.exposition import generate_latest

from alps.cache import GitHubDataCache
from alps.config import SETTINGS, Settings
from alps.crypto import TokenCipher
from alps.exceptions import AlpsError, DecryptionError
from alps.github import client_for_token
from alps.logger import get_log_handlers
from alps.metric import error_counter, request_counter
from alps.stats import DatabaseStatsOrchestrator, LiveStatsOrchestrator, TokenResolver
from alps.storage import AccessTokenStore, BuildStore, TestResultStore, WorkflowRunStore


@dataclass
class Services:
    settings: Settings
    build_store: BuildStore
    run_store: WorkflowRunStore
    test_store: TestResultStore
    token_store: AccessTokenStore
    token_resolver: TokenResolver
    data_cache: GitHubDataCache

    def database_orchestrator(
        self, api_factory: Callable
    ) -> DatabaseStatsOrchestrator:
        return DatabaseStatsOrchestrator(
            token_resolver=self.token_resolver,
            api_factory=api_factory,
            build_store=self.build_store,
            run_store=self.run_store,
            test_store=self.test_store,
            config=self.settings,
        )

    def live_orchestrator(self, api_factory: Callable) -> LiveStatsOrchestrator:
        return LiveStatsOrchestrator(
            token_resolver=self.token_resolver,
            api_factory=api_factory,
            build_store=self.build_store,
            cache=self.data_cache,
            config=self.settings,
        )


def create_services(settings: Settings = SETTINGS) -> Services:
    db_path = settings.ALPS_DB_PATH
    build_store = BuildStore(db_path)
    build_store.initialize()
    token_store = AccessTokenStore(db_path)

    cipher: Optional[TokenCipher] = None
    if settings.ALPS_ENCRYPTION_KEY:
        cipher = TokenCipher.from_settings(settings)
    else:
        logger.warning("ALPS_ENCRYPTION_KEY not set, saved access tokens unavailable")

    return Services(
        settings=settings,
        build_store=build_store,
        run_store=WorkflowRunStore(db_path),
        test_store=TestResultStore(db_path),
        token_store=token_store,
        token_resolver=TokenResolver(token_store, cipher),
        data_cache=GitHubDataCache(),
    )


def _api_factory(app) -> Callable:
    def factory(token: str):
        return client_for_token(
            app.ctx.aiohttp_session,
            token,
            cache=app.ctx.http_cache,
            settings=app.ctx.services.settings,
        )

    return factory


async def build_stats_response(app, build_id: str, live: bool = False):
    services: Services = app.ctx.services
    build = services.build_store.get(build_id)
    if build is None:
        return response.json({"error": f"Build {build_id} not found"}, status=404)

    if live:
        orchestrator = services.live_orchestrator(_api_factory(app))
    else:
        orchestrator = services.database_orchestrator(_api_factory(app))

    try:
        stats = await orchestrator.compute_statistics(build)
    except DecryptionError:
        error_counter.labels(context="token_decryption").inc()
        return response.json({"error": "Access token could not be decrypted"}, status=500)
    except AlpsError as e:
        error_counter.labels(context="stats").inc()
        return response.json({"error": str(e)}, status=502)

    return response.json(stats.model_dump(mode="json"))


async def build_details_response(app, build_id: str):
    services: Services = app.ctx.services
    build = services.build_store.get(build_id)
    if build is None:
        return response.json({"error": f"Build {build_id} not found"}, status=404)

    orchestrator = services.database_orchestrator(_api_factory(app))
    try:
        details = await orchestrator.compute_details(build)
    except DecryptionError:
        error_counter.labels(context="token_decryption").inc()
        return response.json({"error": "Access token could not be decrypted"}, status=500)
    except AlpsError as e:
        error_counter.labels(context="details").inc()
        return response.json({"error": str(e)}, status=502)

    return response.json(details.model_dump(mode="json"))


logging.basicConfig(
    format="%(asctime)s %(name)s %(levelname)s - %(message)s", level=logging.INFO
)


def create_app(settings: Settings = SETTINGS):
    app = Sanic("alps")

    logging.getLogger().setLevel(settings.OVERRIDE_LOGGING)
    sanic.log.logger.setLevel(settings.OVERRIDE_LOGGING)
    get_log_handlers(sanic.log.logger, settings)

    app.ctx.services = create_services(settings)
    app.ctx.http_cache = cachetools.LRUCache(maxsize=settings.GITHUB_HTTP_CACHE_SIZE)

    @app.listener("before_server_start")
    async def init(app, loop):
        logger.debug("Creating aiohttp session")
        app.ctx.aiohttp_session = aiohttp.ClientSession()

    @app.listener("after_server_stop")
    async def close(app, loop):
        await app.ctx.services.token_resolver.drain()
        await app.ctx.aiohttp_session.close()

    @app.on_request
    async def on_request(request: Request):
        if request.path == "/metrics":
            return
        request_counter.labels(path=request.path).inc()

    @app.get("/status")
    async def status(request):
        logger.debug("status check")
        return response.text("ok")

    @app.get("/builds")
    async def builds(request):
        tenant_id = request.args.get("tenant")
        return response.json(
            [
                {
                    "id": b.id,
                    "tenant_id": b.tenant_id,
                    "name": b.name,
                    "repository": b.full_name,
                    "label": b.label,
                    "selectors": [str(s) for s in b.selectors],
                }
                for b in app.ctx.services.build_store.list(tenant_id)
            ]
        )

    @app.get("/builds/<build_id>/stats")
    async def stats(request, build_id: str):
        live = request.args.get("live", "0") in ("1", "true", "yes")
        return await build_stats_response(app, build_id, live=live)

    @app.get("/builds/<build_id>/details")
    async def details(request, build_id: str):
        return await build_details_response(app, build_id)

    @app.get("/metrics")
    async def metrics(request):
        data = generate_latest(core.REGISTRY)
        return response.raw(data)

    return app
