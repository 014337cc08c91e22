import asyncio
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import secrets
from typing import List, Optional

import aiohttp
import cachetools
import humanize
import pydantic
from tabulate import tabulate
import typer
import yaml

from alps.config import SETTINGS
from alps.crypto import TokenCipher
from alps.db_migrations import migrate_db
from alps.github import client_for_token
from alps.logger import get_log_handlers
from alps.model import Build, Selector
from alps.stats.types import BuildStatistics
from alps.storage import AccessTokenRow
from alps.web import Services, create_services


logging.basicConfig(
    format="%(asctime)s %(name)s %(levelname)s - %(message)s", level=logging.INFO
)
logger = logging.getLogger("alps")

app = typer.Typer()
httpcache = cachetools.LRUCache(maxsize=SETTINGS.GITHUB_HTTP_CACHE_SIZE)


@app.callback()
def init():
    logging.getLogger().setLevel(SETTINGS.OVERRIDE_LOGGING)
    logger.setLevel(SETTINGS.OVERRIDE_LOGGING)
    get_log_handlers(logger)


def generate_build_id() -> str:
    return secrets.token_hex(16)


def parse_selector(value: str) -> Selector:
    kind, sep, pattern = value.partition(":")
    if not sep:
        raise typer.BadParameter(
            f"Selector '{value}' must look like kind:pattern, e.g. branch:main"
        )
    try:
        return Selector(type=kind.strip(), pattern=pattern)
    except pydantic.ValidationError as e:
        raise typer.BadParameter(str(e)) from e


def _load_build(services: Services, build_id: str) -> Build:
    build = services.build_store.get(build_id)
    if build is None:
        typer.echo(f"Build {build_id} not found", err=True)
        raise typer.Exit(1)
    return build


def _print_summary(build: Build, stats: BuildStatistics) -> None:
    typer.echo(f"{build.name} ({build.full_name})")
    rows = [
        ("Health", f"{stats.health_percentage}% ({stats.health_badge.value})"),
        (
            "Executions",
            f"{stats.total_executions} total, {stats.successful_executions} ok, "
            f"{stats.failed_executions} failed",
        ),
        ("Last tag", stats.last_tag or "-"),
        (
            "Commits (7d)",
            f"{stats.commits_last_7_days} by {stats.contributors_last_7_days} contributors",
        ),
        ("Total commits", humanize.intcomma(stats.total_commits)),
        ("Total contributors", humanize.intcomma(stats.total_contributors)),
    ]
    if stats.last_commit is not None:
        when = (
            humanize.naturaltime(datetime.now(timezone.utc) - stats.last_commit.date)
            if stats.last_commit.date is not None
            else "-"
        )
        rows.append(
            (
                "Last commit",
                f"{stats.last_commit.sha[:7]} {stats.last_commit.author}, {when}",
            )
        )
    if stats.test_stats is not None:
        t = stats.test_stats
        rows.append(
            (
                "Tests",
                f"{t.total_tests} total, {t.passed_tests} passed, "
                f"{t.failed_tests} failed, {t.skipped_tests} skipped",
            )
        )
    typer.echo(tabulate(rows, tablefmt="plain"))
    typer.echo()
    typer.echo(
        tabulate(
            [(d.date, d.success_count, d.failure_count) for d in stats.last_7_days],
            headers=["Day", "Success", "Failure"],
        )
    )


@app.command()
def stats(
    build_id: str,
    live: bool = typer.Option(False, help="Fetch runs from GitHub instead of the database"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    services = create_services(SETTINGS)
    build = _load_build(services, build_id)

    async def handle():
        async with aiohttp.ClientSession() as session:

            def factory(token: str):
                return client_for_token(session, token, cache=httpcache)

            if live:
                orchestrator = services.live_orchestrator(factory)
            else:
                orchestrator = services.database_orchestrator(factory)
            result = await orchestrator.compute_statistics(build)
            await services.token_resolver.drain()
            return result

    result = asyncio.run(handle())
    if as_json:
        typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        _print_summary(build, result)


@app.command()
def details(
    build_id: str,
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    services = create_services(SETTINGS)
    build = _load_build(services, build_id)

    async def handle():
        async with aiohttp.ClientSession() as session:
            orchestrator = services.database_orchestrator(
                lambda token: client_for_token(session, token, cache=httpcache)
            )
            result = await orchestrator.compute_details(build)
            await services.token_resolver.drain()
            return result

    result = asyncio.run(handle())
    if as_json:
        typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    _print_summary(build, result)
    typer.echo()
    typer.echo(
        tabulate(
            [
                (m.month, m.total_count, m.success_count, m.failure_count, d.avg_duration)
                for m, d in zip(result.monthly_stats, result.duration_trends)
            ],
            headers=["Month", "Runs", "Success", "Failure", "Avg ms"],
        )
    )
    if result.contributors:
        typer.echo()
        typer.echo(
            tabulate(
                [(c.login, c.contributions) for c in result.contributors[:10]],
                headers=["Contributor", "Commits"],
            )
        )


@app.command()
def add_build(
    name: str = typer.Option(...),
    tenant: str = typer.Option(...),
    organization: str = typer.Option(..., "--org"),
    repository: str = typer.Option(..., "--repo"),
    selector: List[str] = typer.Option(..., help="kind:pattern, may be repeated"),
    token_id: Optional[str] = typer.Option(None, help="Saved access token id"),
    token: Optional[str] = typer.Option(None, help="Inline personal access token"),
    cache_minutes: int = typer.Option(60),
    label: Optional[str] = typer.Option(None),
):
    try:
        build = Build(
            id=generate_build_id(),
            tenant_id=tenant,
            name=name,
            organization=organization,
            repository=repository,
            selectors=[parse_selector(s) for s in selector],
            access_token_id=token_id,
            personal_access_token=token,
            cache_expiration_minutes=cache_minutes,
            label=label,
        )
    except pydantic.ValidationError as e:
        typer.echo(f"Invalid build: {e}", err=True)
        raise typer.Exit(1)

    services = create_services(SETTINGS)
    services.build_store.add(build)
    typer.echo(build.id)


@app.command()
def import_builds(path: Path):
    """Add builds from a YAML file with a top level ``builds`` list."""
    with path.open() as fh:
        data = yaml.safe_load(fh) or {}

    services = create_services(SETTINGS)
    imported = 0
    for i, item in enumerate(data.get("builds", [])):
        item = dict(item)
        item.setdefault("id", generate_build_id())
        try:
            build = Build.model_validate(item)
        except pydantic.ValidationError as e:
            typer.echo(f"Skipping entry {i}: {e}", err=True)
            continue
        services.build_store.add(build)
        logger.info("Imported %s", build)
        imported += 1
    typer.echo(f"Imported {imported} build(s)")


@app.command()
def add_token(
    name: str = typer.Option(...),
    tenant: str = typer.Option(...),
    created_by: Optional[str] = typer.Option(None),
):
    value = typer.prompt("Token", hide_input=True).strip()
    if not value:
        typer.echo("Token cannot be empty", err=True)
        raise typer.Exit(1)
    cipher = TokenCipher.from_settings(SETTINGS)

    services = create_services(SETTINGS)
    row = AccessTokenRow(
        id=secrets.token_hex(16),
        tenant_id=tenant,
        name=name,
        encrypted_token=cipher.encrypt(value),
        created_by=created_by,
    )
    services.token_store.add(row)
    typer.echo(row.id)


@app.command()
def migrate(revision: str = typer.Option("head")):
    migrate_db(SETTINGS.ALPS_DB_PATH, revision=revision)
    typer.echo(f"Migrated {SETTINGS.ALPS_DB_PATH} to {revision}")
