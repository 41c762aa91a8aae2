"""
Armory Gateway: World of Warcraft data gateway over Battle.net, Warcraft Logs
and Raider.IO.
"""

import json
import secrets
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Depends, Request, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import RedirectResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import GatewayException, ValidationError

from .adapters.battlenet_client import BattleNetClient, default_limiter
from .adapters.oauth import ClientCredentials
from .adapters.raiderio_client import RaiderIOClient
from .adapters.warcraftlogs_client import WarcraftLogsClient
from .caching.response_cache import ResponseCache
from .domain.models import CharacterOptions, CharacterParsesOptions, UserToken
from .domain.params import bearer_token, character_options, parses_options, region_param, season_param
from .domain.results import Found
from .ratelimit.point_budget import PointBudget
from .ratelimit.token_bucket import TokenBucket

SERVICE_NAME = "armory"
DEFAULT_PORT = 9090
SESSION_COOKIE = "oauth"
STATE_BYTES = 48  # 64 url-safe characters
PARTITIONS_CACHE_KEY = "/api/warcraftlogs/partitions"


class ArmoryGatewayService(BaseService):
    """HTTP surface of the gateway: validation, caching and upstream dispatch."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        battlenet: Optional[BattleNetClient] = None,
        warcraftlogs: Optional[WarcraftLogsClient] = None,
        raiderio: Optional[RaiderIOClient] = None,
        cache: Optional[ResponseCache] = None,
    ):
        super().__init__(SERVICE_NAME, DEFAULT_PORT, config or get_config(SERVICE_NAME, DEFAULT_PORT))
        cfg = self.config
        timeout = cfg.upstream_timeout_seconds

        self.battlenet = battlenet or BattleNetClient(
            cfg.bnet_client_id,
            cfg.bnet_client_secret,
            cfg.bnet_redirect_url,
            oauth_url=cfg.bnet_oauth_url,
            api_url=cfg.bnet_api_url,
            limiter=default_limiter(cfg.bnet_requests_per_hour, cfg.bnet_requests_per_second),
            token_check_timeout=cfg.token_check_timeout_seconds,
            metrics=self.metrics,
            default_timeout=timeout,
        )
        self.warcraftlogs = warcraftlogs or WarcraftLogsClient(
            ClientCredentials(cfg.wl_client_id, cfg.wl_client_secret, cfg.wl_token_url),
            api_url=cfg.wl_api_url,
            points=PointBudget(cfg.wl_points_per_hour, name="warcraftlogs"),
            metrics=self.metrics,
            default_timeout=timeout,
        )
        self.raiderio = raiderio or RaiderIOClient(
            api_url=cfg.rio_api_url,
            limiter=TokenBucket(cfg.rio_requests_per_minute, 60.0, penalty=60.0, name="raiderio_per_minute"),
            metrics=self.metrics,
            default_timeout=timeout,
        )
        self.cache = cache or ResponseCache(
            cfg.redis_url,
            metrics=self.metrics,
            connect_timeout=cfg.redis_connect_timeout_seconds,
            socket_timeout=cfg.redis_socket_timeout_seconds,
        )

        @self.app.on_event("startup")
        async def _startup():
            self.warcraftlogs.points.start()
            if cfg.warm_reference_data:
                await self._warm_reference_data()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.warcraftlogs.points.stop()
            await self.battlenet.close()
            await self.warcraftlogs.close()
            await self.raiderio.close()
            await self.cache.close()

        self._setup_auth_routes()
        self._setup_battlenet_routes()
        self._setup_warcraftlogs_routes()
        self._setup_raiderio_routes()

        self.app.state.armory_service = self

    def _setup_middleware(self):
        super()._setup_middleware()
        self.app.add_middleware(
            SessionMiddleware,
            secret_key=self.config.session_key,
            session_cookie=SESSION_COOKIE,
            https_only=self.config.session_https_only,
        )

    async def _warm_reference_data(self) -> None:
        """Sync the points budget and fetch the expansion snapshot ahead of traffic."""
        try:
            await self.warcraftlogs.initialize()
            self.logger.info("Warcraft Logs reference data warmed")
        except GatewayException as exc:
            self.logger.warning("Failed to warm Warcraft Logs reference data", error=exc.message)

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"redis": await self.cache.ping()}

    async def _cached_json(
        self,
        key: str,
        ttl: int,
        produce: Callable[[], Awaitable[Any]],
    ) -> Response:
        """Serve ``key`` from the response cache, or produce, store and serve it."""
        cached = await self.cache.get(key)
        if cached is not None:
            return Response(content=cached, media_type="application/json")

        payload = json.dumps(await produce())
        self.cache.set(key, payload, ttl)
        return Response(content=payload, media_type="application/json")

    def _setup_auth_routes(self):
        """OAuth authorization-code flow against Battle.net."""

        @self.app.get("/api/healthcheck")
        async def healthcheck():
            return {"status": "ok"}

        @self.app.get("/api/auth/battlenet")
        async def authorize(request: Request):
            state = secrets.token_urlsafe(STATE_BYTES)
            request.session["state"] = state
            return RedirectResponse(self.battlenet.authorization_url(state), status_code=307)

        @self.app.get("/api/auth/battlenet/callback")
        async def callback(request: Request, state: str = "", code: str = ""):
            if not request.session:
                raise ValidationError("no session found for this request")

            expected = request.session.get("state")
            if not isinstance(expected, str):
                raise ValidationError("failed to read state from session")
            if expected.lower() != state.lower():
                raise ValidationError("callback state mismatch")
            del request.session["state"]

            token = await self.battlenet.exchange_code(code)
            check = await self.battlenet.check_token(token)
            info = await self.battlenet.user_info(token)
            self.logger.info("OAuth callback completed", user_name=check.user_name, battletag=info.battletag)
            return token.model_dump(mode="json")

    def _setup_battlenet_routes(self):
        """Battle.net profile and game data."""
        character_ttl = self.config.character_cache_ttl_seconds
        reference_ttl = self.config.reference_cache_ttl_seconds

        @self.app.get("/api/{region}/wow/profile")
        async def account_profile(
            region: str = Depends(region_param),
            token: UserToken = Depends(bearer_token),
        ):
            return await self.battlenet.account_profile_summary(token, region)

        @self.app.get("/api/{region}/wow/realms")
        async def realms(request: Request, region: str = Depends(region_param)):
            return await self._cached_json(
                request.url.path, reference_ttl, lambda: self.battlenet.realms_by_region(region)
            )

        def character_route(path: str, fetch: Callable[[CharacterOptions], Awaitable[Dict[str, Any]]]):
            async def handler(request: Request, options: CharacterOptions = Depends(character_options)):
                return await self._cached_json(request.url.path, character_ttl, lambda: fetch(options))

            handler.__name__ = f"character_{fetch.__name__}"
            self.app.get(f"/api/{{region}}/wow/{{realm}}/{{character}}{path}")(handler)

        character_route("", self.battlenet.character_summary)
        character_route("/status", self.battlenet.character_status)
        character_route("/equipment", self.battlenet.character_equipment)
        character_route("/character-media", self.battlenet.character_media)
        character_route("/character-statistics", self.battlenet.character_statistics)
        character_route("/mythic-keystone-index", self.battlenet.mythic_keystone_index)
        character_route("/encounters/dungeons", self.battlenet.character_dungeon_encounters)
        character_route("/encounters/raids", self.battlenet.character_raid_encounters)

        @self.app.get("/api/{region}/wow/{realm}/{character}/mythic-keystone-index/season/{season_id}")
        async def mythic_keystone_season(
            request: Request,
            options: CharacterOptions = Depends(character_options),
            season: int = Depends(season_param),
        ):
            async def produce():
                result = await self.battlenet.mythic_keystone_season(options, season)
                if isinstance(result, Found):
                    return {**result.data, "character_played_season": True}
                return {"character_played_season": False}

            return await self._cached_json(request.url.path, character_ttl, produce)

    def _setup_warcraftlogs_routes(self):
        """Warcraft Logs reference data and character parses."""

        @self.app.delete("/api/warcraftlogs")
        async def clear_cached_expansion(request: Request):
            if self.config.admin_header not in request.headers:
                raise StarletteHTTPException(status_code=404)

            await self.warcraftlogs.clear_partitioned_expansion()
            self.cache.delete(PARTITIONS_CACHE_KEY)
            self.logger.info("Cleared partitioned expansion")
            return Response(status_code=204)

        @self.app.get("/api/warcraftlogs/partitions")
        async def partitions(request: Request):
            async def produce():
                expansion = await self.warcraftlogs.get_expansion_encounters()
                return expansion.model_dump(mode="json", by_alias=True)

            return await self._cached_json(request.url.path, self.config.reference_cache_ttl_seconds, produce)

        @self.app.get("/api/warcraftlogs/{region}/{realm}/{character}/parses")
        async def character_parses(
            request: Request,
            options: CharacterParsesOptions = Depends(parses_options),
        ):
            key = request.url.path
            if request.url.query:
                key = f"{key}?{request.url.query}"

            async def produce():
                parses = await self.warcraftlogs.get_parses_for_character(options)
                return parses.model_dump(mode="json", by_alias=True)

            return await self._cached_json(key, self.config.character_cache_ttl_seconds, produce)

    def _setup_raiderio_routes(self):
        """Raider.IO Mythic+ profile."""

        @self.app.get("/api/raiderio/{region}/{realm}/{character}")
        async def raiderio_profile(request: Request, options: CharacterOptions = Depends(character_options)):
            return await self._cached_json(
                request.url.path,
                self.config.character_cache_ttl_seconds,
                lambda: self.raiderio.character_profile(options),
            )


def create_app():
    """Create FastAPI application."""
    service = ArmoryGatewayService()
    return service.app


def main():
    """Run the gateway with uvicorn."""
    ArmoryGatewayService().run()


if __name__ == "__main__":
    main()
