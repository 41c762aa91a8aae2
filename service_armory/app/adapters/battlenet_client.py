"""
Battle.net client.

Two kinds of calls go out from here: public character and realm data fetched
with the gateway's own client-credentials token, and account calls made on
behalf of a user with the token they obtained through the authorization-code
flow. Both kinds share one tiered admission budget (per hour, then per
second).
"""

from typing import Any, Dict, Optional

import httpx

from shared.errors import AuthenticationError, DecodeError, MissingScopeError, RateLimitError, UpstreamHTTPError

from ..domain.models import CharacterOptions, CheckTokenResponse, UserInfoResponse, UserToken
from ..domain.results import Found, LookupResult, resolve_not_found
from ..ratelimit.token_bucket import TieredTokenBucket, TokenBucket
from .oauth import ClientCredentials, ClientCredentialsTokenSource, basic_auth
from .upstream import UpstreamClient

BNET_OAUTH_URL = "https://oauth.battle.net"
BNET_API_URL = "https://{region}.api.blizzard.com"

REQUIRED_SCOPES = ("wow.profile", "openid")
DEFAULT_LOCALE = "en_US"
TOKEN_CHECK_TIMEOUT = 30.0

PROFILE_NAMESPACE = "profile"
DYNAMIC_NAMESPACE = "dynamic"


def default_limiter(requests_per_hour: int = 36000, requests_per_second: int = 100) -> TieredTokenBucket:
    """Hourly tier first so a long wait is discovered before a short one is spent."""
    return TieredTokenBucket(
        TokenBucket(requests_per_hour, 3600.0, penalty=3600.0, name="battlenet_per_hour"),
        TokenBucket(requests_per_second, 1.0, penalty=60.0, name="battlenet_per_second"),
    )


class BattleNetClient(UpstreamClient):
    """Battle.net OAuth and World of Warcraft profile/data API client."""

    service_name = "battlenet"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        *,
        oauth_url: str = BNET_OAUTH_URL,
        api_url: str = BNET_API_URL,
        limiter: Optional[TieredTokenBucket] = None,
        token_check_timeout: float = TOKEN_CHECK_TIMEOUT,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url
        self.oauth_url = oauth_url.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.limiter = limiter or default_limiter()
        self.token_check_timeout = token_check_timeout

        self.credentials = ClientCredentials(client_id, client_secret, f"{self.oauth_url}/token")
        self.token_source = ClientCredentialsTokenSource(
            self.credentials,
            service_name=self.service_name,
            http_client=self._client,
            metrics=self.metrics,
            default_timeout=self.default_timeout,
        )

    # ------------------------------------------------------------------
    # OAuth (authorization-code flow)
    # ------------------------------------------------------------------

    def authorization_url(self, state: str) -> str:
        """URL the browser is redirected to in order to grant access."""
        url = httpx.URL(
            f"{self.oauth_url}/authorize",
            params={
                "client_id": self.client_id,
                "redirect_uri": self.redirect_url,
                "response_type": "code",
                "scope": " ".join(REQUIRED_SCOPES),
                "state": state,
            },
        )
        return str(url)

    async def exchange_code(self, code: str, timeout: Optional[float] = None) -> UserToken:
        """Trade an authorization code for a user token."""
        request = self._client.build_request(
            "POST",
            f"{self.oauth_url}/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_url,
            },
        )
        response = await self._admit_and_execute(request, timeout, auth=basic_auth(self.credentials))
        payload = self._decode_json(response)
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise DecodeError(self.service_name, "token response missing 'access_token'")
        return UserToken.from_token_response(payload)

    async def check_token(self, token: UserToken, timeout: Optional[float] = None) -> CheckTokenResponse:
        """Validate ``token`` upstream and ensure it carries every required scope."""
        request = self._client.build_request(
            "POST",
            f"{self.oauth_url}/oauth/check_token",
            params={"region": "us", "token": token.access_token},
        )
        timeout = self.token_check_timeout if timeout is None else timeout
        response = await self._user_request(token, request, timeout)
        result = self._decode_model(self._decode_json(response), CheckTokenResponse, "/oauth/check_token")

        for scope in REQUIRED_SCOPES:
            if scope not in result.scope:
                self.logger.warning("Token is missing a required scope", scope=scope)
                raise MissingScopeError(scope)
        return result

    async def user_info(self, token: UserToken, timeout: Optional[float] = None) -> UserInfoResponse:
        request = self._client.build_request(
            "GET",
            f"{self.oauth_url}/oauth/userinfo",
            params={"region": "us"},
        )
        response = await self._user_request(token, request, timeout)
        return self._decode_model(self._decode_json(response), UserInfoResponse, "/oauth/userinfo")

    async def account_profile_summary(
        self,
        token: UserToken,
        region: str,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Account-level WoW profile of the token's owner."""
        request = self._prepare_request(region, PROFILE_NAMESPACE, "/profile/user/wow")
        response = await self._user_request(token, request, timeout)
        return self._decode_json(response)

    # ------------------------------------------------------------------
    # Public character data (client credentials)
    # ------------------------------------------------------------------

    async def character_summary(self, options: CharacterOptions, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._character_resource(options, "", timeout)

    async def character_status(self, options: CharacterOptions, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._character_resource(options, "/status", timeout)

    async def character_equipment(self, options: CharacterOptions, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._character_resource(options, "/equipment", timeout)

    async def character_media(self, options: CharacterOptions, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._character_resource(options, "/character-media", timeout)

    async def character_statistics(self, options: CharacterOptions, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._character_resource(options, "/statistics", timeout)

    async def character_dungeon_encounters(
        self, options: CharacterOptions, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        return await self._character_resource(options, "/encounters/dungeons", timeout)

    async def character_raid_encounters(
        self, options: CharacterOptions, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        return await self._character_resource(options, "/encounters/raids", timeout)

    async def mythic_keystone_index(self, options: CharacterOptions, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._character_resource(options, "/mythic-keystone-profile", timeout)

    async def mythic_keystone_season(
        self,
        options: CharacterOptions,
        season: int,
        timeout: Optional[float] = None,
    ) -> LookupResult[Dict[str, Any]]:
        """Season details, or NotFound when the character did not play that season."""
        try:
            data = await self._character_resource(
                options,
                f"/mythic-keystone-profile/season/{season}",
                timeout,
                params={"seasonId": str(season)},
            )
        except UpstreamHTTPError as exc:
            return resolve_not_found("mythic_keystone_season", exc)
        return Found(data)

    async def realms_by_region(self, region: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        request = self._prepare_request(region, DYNAMIC_NAMESPACE, "/data/wow/realm/index")
        response = await self._client_request(request, timeout)
        payload = self._decode_json(response)
        if isinstance(payload, dict):
            payload["region"] = region
        return payload

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def regional_url(self, region: str) -> str:
        return self.api_url.replace("{region}", region)

    def _prepare_request(
        self,
        region: str,
        namespace: str,
        endpoint: str,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Request:
        query = {
            "region": region,
            "namespace": f"{namespace}-{region}",
            "locale": DEFAULT_LOCALE,
        }
        if params:
            query.update(params)
        return self._client.build_request("GET", f"{self.regional_url(region)}{endpoint}", params=query)

    async def _character_resource(
        self,
        options: CharacterOptions,
        suffix: str,
        timeout: Optional[float],
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        endpoint = f"/profile/wow/character/{options.realm}/{options.character}{suffix}"
        request = self._prepare_request(options.region, PROFILE_NAMESPACE, endpoint, params)
        response = await self._client_request(request, timeout)
        return self._decode_json(response)

    async def _client_request(self, request: httpx.Request, timeout: Optional[float]) -> httpx.Response:
        """Send with the gateway's own client-credentials token."""
        timeout = self._timeout(timeout)
        await self._admit(timeout)
        access_token = await self.token_source.token(timeout)
        request.headers["Authorization"] = f"Bearer {access_token}"
        try:
            return await self._execute(request, timeout=timeout, on_throttled=self.limiter.drain)
        except UpstreamHTTPError as exc:
            if exc.upstream_status == 401:
                self.token_source.invalidate()
            raise

    async def _user_request(self, token: UserToken, request: httpx.Request, timeout: Optional[float]) -> httpx.Response:
        """Send on behalf of a user; an invalid token fails before admission."""
        if not token.is_valid():
            raise AuthenticationError("the provided token is invalid")
        request.headers["Authorization"] = token.authorization_header()
        return await self._admit_and_execute(request, timeout)

    async def _admit_and_execute(
        self,
        request: httpx.Request,
        timeout: Optional[float],
        auth: Optional[httpx.Auth] = None,
    ) -> httpx.Response:
        timeout = self._timeout(timeout)
        await self._admit(timeout)
        return await self._execute(request, timeout=timeout, on_throttled=self.limiter.drain, auth=auth)

    async def _admit(self, timeout: float) -> None:
        try:
            await self.limiter.wait(timeout)
        except RateLimitError:
            self._record_denial()
            raise
