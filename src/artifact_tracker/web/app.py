from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from aiohttp import web

from artifact_tracker.artifacts.changes import (
    CHANGELOG_FORMATS,
    ChangelogService,
    render_html,
    render_json,
    render_markdown,
)
from artifact_tracker.artifacts.issues import IssueService, filter_issues, issue_stats
from artifact_tracker.artifacts.query import build_response, parse_query
from artifact_tracker.artifacts.service import ArtifactService
from artifact_tracker.config.models import AppConfig
from artifact_tracker.core.errors import InvalidQueryError, UpstreamAuthError
from artifact_tracker.core.timeutils import Clock, format_rfc3339, utc_now
from artifact_tracker.upstream.client import GitHubClient
from artifact_tracker.web.errors import error_middleware, error_response

logger = logging.getLogger(__name__)

ISSUE_STATE_FILTERS = ("open", "closed")
ISSUE_SEVERITY_FILTERS = ("high", "medium", "low")


@dataclass(slots=True)
class Services:
    config: AppConfig
    client: GitHubClient
    artifacts: ArtifactService
    issues: IssueService
    changelog: ChangelogService


SERVICES_KEY = web.AppKey("services", Services)


def build_services(config: AppConfig, *, client: Optional[GitHubClient] = None, clock: Clock = utc_now) -> Services:
    client = client or GitHubClient(config.github)
    artifacts = ArtifactService(config.artifacts, client, clock=clock)
    return Services(
        config=config,
        client=client,
        artifacts=artifacts,
        issues=IssueService(config.issues, client, artifacts, clock=clock),
        changelog=ChangelogService(config.changelog, config.artifacts, client, clock=clock),
    )


def _choice(request: web.Request, name: str, allowed: tuple[str, ...]) -> Optional[str]:
    raw = request.query.get(name, "").strip().lower()
    if not raw:
        return None
    if raw not in allowed:
        raise InvalidQueryError(f"Invalid {name}: {raw}. Expected one of: {', '.join(allowed)}")
    return raw


async def get_artifacts(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    query = parse_query(request.query, services.config.artifacts)
    try:
        snapshot = await services.artifacts.get_snapshot()
    except UpstreamAuthError as e:
        # A credentials problem on this endpoint is an operator issue, not the caller's.
        logger.error("Artifact refresh failed on authentication. error=%s", e)
        return error_response(500, str(e))
    return web.json_response(build_response(snapshot, query, policy=services.artifacts.policy))


async def get_artifact_issues(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    if not services.client.has_token:
        return error_response(
            500,
            "GitHub token not configured. Please set the APP__GITHUB__TOKEN environment variable.",
        )

    version = request.query.get("version", "").strip() or None
    state = _choice(request, "state", ISSUE_STATE_FILTERS)
    severity = _choice(request, "severity", ISSUE_SEVERITY_FILTERS)

    snapshot = await services.issues.get_issues()
    selected = filter_issues(snapshot.issues, version=version, state=state, severity=severity)
    return web.json_response(
        {
            "data": [issue.to_payload() for issue in selected],
            "metadata": {
                "total": len(selected),
                "stats": issue_stats(snapshot.issues),
                "cache": {
                    "timestamp": snapshot.fetched_at,
                    "age": round(snapshot.age_seconds, 3),
                    "stale": snapshot.stale,
                },
            },
        }
    )


async def get_artifact_changes(request: web.Request) -> web.StreamResponse:
    services = request.app[SERVICES_KEY]
    version = request.query.get("version", "").strip()
    if not version:
        raise InvalidQueryError("Version parameter is required")
    if not version.isdigit():
        raise InvalidQueryError(f"Invalid version: {version}")
    output_format = _choice(request, "format", CHANGELOG_FORMATS) or "json"
    include_diffs = request.query.get("includeDiffs", "").strip().lower() == "true"

    changelog = await services.changelog.get_changelog(version)
    if output_format == "markdown":
        return web.Response(text=render_markdown(changelog, include_diffs=include_diffs), content_type="text/markdown")
    if output_format == "html":
        return web.Response(text=render_html(changelog, include_diffs=include_diffs), content_type="text/html")
    return web.json_response(render_json(changelog, include_diffs=include_diffs))


async def get_health(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    cached = services.artifacts.cache.get()
    return web.json_response(
        {
            "status": "ok",
            "artifacts": {
                "cached": cached is not None,
                "fresh": bool(cached and cached.is_fresh),
                "timestamp": format_rfc3339(cached.timestamp) if cached else None,
                "refreshing": services.artifacts.refresh_in_flight,
            },
        }
    )


async def _close_client(app: web.Application) -> None:
    await app[SERVICES_KEY].client.close()


def create_app(config: AppConfig, *, services: Optional[Services] = None) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[SERVICES_KEY] = services or build_services(config)
    app.router.add_get("/api/artifacts", get_artifacts, name="artifacts")
    app.router.add_get("/api/artifacts/check", get_artifact_issues, name="artifact_issues")
    app.router.add_get("/api/artifacts/changes", get_artifact_changes, name="artifact_changes")
    app.router.add_get("/healthz", get_health, name="health")
    app.on_cleanup.append(_close_client)
    return app
