import unittest
from typing import Any

from aiohttp.test_utils import AioHTTPTestCase

from artifact_tracker.config.models import AppConfig, ArtifactSettings
from artifact_tracker.web.app import build_services, create_app
from artifact_tracker.web.errors import TIMEOUT_MESSAGE

from fakes import BASE_URL, FakeClock, FakeGitHub, day, start_fake_github


class _RoutesTestCase(AioHTTPTestCase):
    token = "test-token"
    artifact_settings: dict[str, Any] = {}

    async def get_application(self):
        self.fake = FakeGitHub()
        self.fake.add_tag("v1.0.0.7300", "sha7300", day(20))
        self.fake.add_tag("v1.0.0.7200", "sha7200", day(10))
        self.fake.add_tag("v1.0.0.7100", "sha7100", day(0))
        self.github_server, github_client = await start_fake_github(self.fake, token=self.token, max_attempts=1)

        settings = {"download_base_url": BASE_URL, "batch_pause_seconds": 0.0, **self.artifact_settings}
        self.config = AppConfig(artifacts=ArtifactSettings(**settings))
        self.services = build_services(self.config, client=github_client, clock=FakeClock(day(21)))
        return create_app(self.config, services=self.services)

    async def asyncTearDown(self) -> None:
        await super().asyncTearDown()
        await self.github_server.close()


class ArtifactsRouteTests(_RoutesTestCase):
    async def test_lists_classified_artifacts(self) -> None:
        resp = await self.client.get("/api/artifacts")
        self.assertEqual(resp.status, 200)
        body = await resp.json()

        self.assertEqual(list(body["data"]["windows"]), ["7300", "7200", "7100"])
        entry = body["data"]["linux"]["7200"]
        self.assertEqual(entry["supportStatus"], "recommended")
        self.assertTrue(entry["recommended"])
        self.assertEqual(entry["published_at"], "2024-01-11T00:00:00Z")
        self.assertTrue(entry["download_urls"]["zip"].endswith("/7200-sha7200/fx.tar.xz"))
        self.assertEqual(body["metadata"]["cache"]["source"], "upstream")
        self.assertEqual(body["metadata"]["latest"]["windows"]["version"], "7300")

    async def test_second_request_is_served_from_cache(self) -> None:
        await self.client.get("/api/artifacts")
        resp = await self.client.get("/api/artifacts?platform=windows&limit=1")
        body = await resp.json()

        self.assertEqual(body["metadata"]["cache"]["source"], "cache")
        self.assertEqual(list(body["data"]["windows"]), ["7300"])
        self.assertEqual(body["metadata"]["pagination"]["totalPages"], 3)
        self.assertEqual(self.fake.count("tags"), 1)

    async def test_invalid_query(self) -> None:
        resp = await self.client.get("/api/artifacts?limit=ten")

        self.assertEqual(resp.status, 400)
        self.assertIn("limit", (await resp.json())["error"])

    async def test_upstream_auth_failure_on_cold_start_serves_fallback(self) -> None:
        self.fake.fail("tags", 401)

        resp = await self.client.get("/api/artifacts")
        body = await resp.json()

        self.assertEqual(resp.status, 200)
        self.assertEqual(body["metadata"]["cache"]["source"], "fallback")
        self.assertIn("6683", body["data"]["windows"])

    async def test_health(self) -> None:
        resp = await self.client.get("/healthz")
        body = await resp.json()
        self.assertEqual(body["status"], "ok")
        self.assertFalse(body["artifacts"]["cached"])

        await self.client.get("/api/artifacts")
        body = await (await self.client.get("/healthz")).json()
        self.assertTrue(body["artifacts"]["fresh"])
        self.assertEqual(body["artifacts"]["timestamp"], "2024-01-22T00:00:00Z")


class ArtifactsWithoutFallbackTests(_RoutesTestCase):
    artifact_settings = {"use_fallback": False}

    async def test_auth_failure_is_reported_as_configuration_problem(self) -> None:
        self.fake.fail("tags", 403)

        resp = await self.client.get("/api/artifacts")
        body = await resp.json()

        self.assertEqual(resp.status, 500)
        self.assertIn("token", body["error"])

    async def test_transient_failure(self) -> None:
        self.fake.fail("tags", 502)

        resp = await self.client.get("/api/artifacts")

        self.assertEqual(resp.status, 500)
        self.assertEqual((await resp.json())["error"], "Failed to retrieve artifacts data. Please try again later.")


class ArtifactsTimeoutTests(_RoutesTestCase):
    artifact_settings = {"aggregation_timeout_seconds": 0.05}

    async def test_slow_refresh_times_out(self) -> None:
        self.fake.commit_delay = 0.3

        resp = await self.client.get("/api/artifacts")

        self.assertEqual(resp.status, 504)
        self.assertEqual((await resp.json())["error"], TIMEOUT_MESSAGE)

        snapshot = await self.services.artifacts.refresh()
        self.assertEqual(snapshot.source, "upstream")


class IssuesRouteTests(_RoutesTestCase):
    async def test_lists_artifact_issues(self) -> None:
        self.fake.issues["open"] = [
            {
                "number": 11,
                "title": "artifact 7300 crashes on boot",
                "state": "open",
                "labels": [{"name": "critical"}],
                "updated_at": "2024-01-21T00:00:00Z",
            },
            {"number": 12, "title": "artifact 1234 is old", "state": "open", "labels": []},
        ]

        resp = await self.client.get("/api/artifacts/check?severity=high")
        body = await resp.json()

        self.assertEqual(resp.status, 200)
        self.assertEqual([issue["number"] for issue in body["data"]], [11])
        self.assertEqual(body["data"][0]["artifact_version"], "7300")
        self.assertEqual(body["metadata"]["stats"]["total"], 1)
        self.assertFalse(body["metadata"]["cache"]["stale"])

    async def test_invalid_filters(self) -> None:
        resp = await self.client.get("/api/artifacts/check?state=pending")
        self.assertEqual(resp.status, 400)

    async def test_auth_failure_maps_to_401(self) -> None:
        self.fake.fail("issues", 401, 401)

        resp = await self.client.get("/api/artifacts/check")

        self.assertEqual(resp.status, 401)
        self.assertIn("token", (await resp.json())["error"])

    async def test_rate_limit_maps_to_429(self) -> None:
        self.fake.failure_headers = {"X-RateLimit-Reset": "4102444800"}
        self.fake.fail("issues", 429, 429)

        resp = await self.client.get("/api/artifacts/check")

        self.assertEqual(resp.status, 429)
        self.assertGreater(int(resp.headers["Retry-After"]), 0)


class IssuesWithoutTokenTests(_RoutesTestCase):
    token = ""

    async def test_missing_token(self) -> None:
        resp = await self.client.get("/api/artifacts/check")

        self.assertEqual(resp.status, 500)
        self.assertIn("GitHub token not configured", (await resp.json())["error"])
        self.assertEqual(self.fake.count("issues"), 0)


class ChangesRouteTests(_RoutesTestCase):
    async def test_version_is_required_and_numeric(self) -> None:
        for query in ("", "?version=", "?version=abc"):
            with self.subTest(query=query):
                resp = await self.client.get(f"/api/artifacts/changes{query}")
                self.assertEqual(resp.status, 400)

    async def test_unknown_format(self) -> None:
        resp = await self.client.get("/api/artifacts/changes?version=7300&format=pdf")
        self.assertEqual(resp.status, 400)

    async def test_unknown_build(self) -> None:
        resp = await self.client.get("/api/artifacts/changes?version=9999")
        self.assertEqual(resp.status, 404)

    async def test_markdown_changelog(self) -> None:
        self.fake.compares["v1.0.0.7200...v1.0.0.7300"] = {
            "commits": [{"sha": "abcdef0123", "html_url": "u", "commit": {"message": "feat: new natives"}}],
            "files": [],
        }

        resp = await self.client.get("/api/artifacts/changes?version=7300&format=markdown")
        text = await resp.text()

        self.assertEqual(resp.status, 200)
        self.assertEqual(resp.content_type, "text/markdown")
        self.assertIn("Comparing 7200 to 7300", text)
        self.assertIn("feat: new natives", text)


if __name__ == "__main__":
    unittest.main()
