import asyncio
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional
from urllib.parse import urlencode

import gidgethub
from gidgethub.abc import GitHubAPI
from sanic.log import logger

from alps.exceptions import GitHubAPIError, GitHubAuthenticationError
from alps.github.model import (
    ActionsRun,
    Commit,
    Contributor,
    FileActivity,
    LastCommit,
)
from alps.metric import record_api_call

COMMIT_HISTORY_QUERY = """
query($owner: String!, $repo: String!, $since: GitTimestamp, $until: GitTimestamp) {
  repository(owner: $owner, name: $repo) {
    defaultBranchRef {
      target {
        ... on Commit {
          history(since: $since, until: $until) {
            totalCount
          }
        }
      }
    }
  }
}
"""

# number of recent commits inspected when ranking files by update count
FILE_ACTIVITY_COMMIT_SAMPLE = 30


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _query(**params) -> str:
    params = {k: v for k, v in params.items() if v is not None}
    if not params:
        return ""
    return "?" + urlencode(params, safe=":><=")


@contextmanager
def _translate_errors(url: str):
    try:
        yield
    except gidgethub.BadRequest as e:
        status = int(e.status_code)
        if status == 401:
            raise GitHubAuthenticationError(
                "Invalid or expired Personal Access Token", status_code=status
            ) from e
        raise GitHubAPIError(
            f"GitHub API request failed for {url}: {e}", status_code=status
        ) from e
    except gidgethub.GitHubBroken as e:
        raise GitHubAPIError(
            f"GitHub API unavailable for {url}: {e}", status_code=int(e.status_code)
        ) from e
    except gidgethub.GraphQLAuthorizationFailure as e:
        raise GitHubAuthenticationError(
            "Invalid or expired Personal Access Token", status_code=401
        ) from e
    except gidgethub.GraphQLException as e:
        raise GitHubAPIError(f"GitHub GraphQL query failed: {e}") from e


class API:
    """Read-only view of a GitHub repository's runs, commits and contributors."""

    gh: GitHubAPI
    graphql_endpoint: str

    call_count: int

    def __init__(
        self, gh: GitHubAPI, graphql_endpoint: str = "https://api.github.com/graphql"
    ):
        self.gh = gh
        self.graphql_endpoint = graphql_endpoint
        self.call_count = 0

    def _count(self, url: str) -> None:
        self.call_count += 1
        record_api_call(url)

    async def _getitem(self, url: str):
        self._count(url)
        with _translate_errors(url):
            return await self.gh.getitem(url)

    async def _getiter(self, url: str, iterable_key: str = "items") -> AsyncIterator:
        self._count(url)
        with _translate_errors(url):
            async for item in self.gh.getiter(url, iterable_key=iterable_key):
                yield item

    async def workflow_runs(
        self, org: str, repo: str, since: datetime, limit: int = 100
    ) -> List[ActionsRun]:
        url = f"/repos/{org}/{repo}/actions/runs" + _query(
            per_page=min(limit, 100), created=f">={_iso(since)}"
        )
        logger.debug("Get workflow runs %s", url)
        runs = []
        async for item in self._getiter(url, iterable_key="workflow_runs"):
            runs.append(ActionsRun.model_validate(item))
            if len(runs) >= limit:
                break
        return runs

    async def latest_commit(self, org: str, repo: str) -> Optional[LastCommit]:
        url = f"/repos/{org}/{repo}/commits" + _query(per_page=1)
        logger.debug("Get latest commit %s", url)
        try:
            data = await self._getitem(url)
        except GitHubAPIError as e:
            # empty repositories answer with 409 Conflict
            if e.status_code == 409:
                return None
            raise
        if not data:
            return None
        return LastCommit.from_commit(Commit.model_validate(data[0]))

    async def tags(self, org: str, repo: str, limit: int = 50) -> List[str]:
        url = f"/repos/{org}/{repo}/tags" + _query(per_page=min(limit, 100))
        logger.debug("Get tags %s", url)
        names = []
        async for item in self._getiter(url):
            names.append(item["name"])
            if len(names) >= limit:
                break
        return names

    async def commit_count(
        self,
        org: str,
        repo: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> int:
        self._count(f"/repos/{org}/{repo}/commits")
        with _translate_errors(self.graphql_endpoint):
            data = await self.gh.graphql(
                COMMIT_HISTORY_QUERY,
                endpoint=self.graphql_endpoint,
                owner=org,
                repo=repo,
                since=_iso(since) if since is not None else None,
                until=_iso(until) if until is not None else None,
            )
        ref = (data.get("repository") or {}).get("defaultBranchRef")
        if ref is None:
            return 0
        return int(ref["target"]["history"]["totalCount"])

    async def contributor_count(
        self, org: str, repo: str, since: Optional[datetime] = None
    ) -> int:
        url = f"/repos/{org}/{repo}/commits" + _query(
            per_page=100, since=_iso(since) if since is not None else None
        )
        logins = set()
        async for item in self._getiter(url):
            author = item.get("author") or {}
            if author.get("login"):
                logins.add(author["login"])
        return len(logins)

    async def total_contributors(self, org: str, repo: str) -> int:
        url = f"/repos/{org}/{repo}/contributors" + _query(per_page=100, anon=1)
        count = 0
        async for _ in self._getiter(url):
            count += 1
        return count

    async def contributors_list(
        self, org: str, repo: str, limit: int = 50
    ) -> List[Contributor]:
        url = f"/repos/{org}/{repo}/contributors" + _query(per_page=min(limit, 100))
        contributors = []
        async for item in self._getiter(url):
            contributors.append(
                Contributor(
                    login=item["login"],
                    avatar_url=item.get("avatar_url"),
                    contributions=item.get("contributions", 0),
                    profile_url=item.get("html_url"),
                )
            )
            if len(contributors) >= limit:
                break
        return contributors

    async def commits_with_dates(
        self, org: str, repo: str, since: datetime, until: datetime
    ) -> List[datetime]:
        url = f"/repos/{org}/{repo}/commits" + _query(
            per_page=100, since=_iso(since), until=_iso(until)
        )
        dates = []
        async for item in self._getiter(url):
            commit = Commit.model_validate(item)
            if commit.date is not None:
                dates.append(commit.date)
        return dates

    async def most_active_files(
        self, org: str, repo: str, limit: int = 10
    ) -> List[FileActivity]:
        url = f"/repos/{org}/{repo}/commits" + _query(
            per_page=FILE_ACTIVITY_COMMIT_SAMPLE
        )
        data = await self._getitem(url)
        shas = [item["sha"] for item in data[:FILE_ACTIVITY_COMMIT_SAMPLE]]

        details = await asyncio.gather(
            *[self._getitem(f"/repos/{org}/{repo}/commits/{sha}") for sha in shas]
        )

        counts: Counter = Counter()
        last_updated: Dict[str, Optional[datetime]] = {}
        for detail in details:
            date = Commit.model_validate(detail).date
            for f in detail.get("files") or []:
                path = f["filename"]
                counts[path] += 1
                previous = last_updated.get(path)
                if previous is None or (date is not None and date > previous):
                    last_updated[path] = date

        return [
            FileActivity(path=path, update_count=count, last_updated=last_updated[path])
            for path, count in counts.most_common(limit)
        ]
