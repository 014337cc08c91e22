from typing import MutableMapping, Optional

import aiohttp
from gidgethub import aiohttp as gh_aiohttp

from alps.config import SETTINGS, Settings
from alps.github.api import API


def client_for_token(
    session: aiohttp.ClientSession,
    token: str,
    cache: Optional[MutableMapping] = None,
    settings: Settings = SETTINGS,
) -> API:
    base_url = settings.GITHUB_API_URL.rstrip("/")
    gh = gh_aiohttp.GitHubAPI(
        session,
        settings.GITHUB_USER_AGENT,
        oauth_token=token,
        cache=cache,
        base_url=base_url,
    )
    return API(gh, graphql_endpoint=f"{base_url}/graphql")


__all__ = ["API", "client_for_token"]
