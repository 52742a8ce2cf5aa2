import unittest

from bs4 import BeautifulSoup

from artifact_tracker.artifacts.aggregator import TagRef
from artifact_tracker.artifacts.changes import (
    Changelog,
    ChangelogService,
    CommitChange,
    FileChange,
    categorize_commit,
    find_adjacent_tags,
    render_html,
    render_json,
    render_markdown,
)
from artifact_tracker.config.models import ArtifactSettings, ChangelogSettings
from artifact_tracker.core.errors import UpstreamNotFound

from fakes import FakeClock, FakeGitHub, start_fake_github


def _changelog() -> Changelog:
    return Changelog(
        from_version="7100",
        to_version="7200",
        tag="v1.0.0.7200",
        commits=[
            CommitChange(
                sha="aaaaaaa",
                message="feat: <script>alert(1)</script> support\n\nlong body",
                author_name="Dev",
                author_email="dev@example.test",
                date="2024-01-02T00:00:00Z",
                url="https://github.example.test/commit/aaaaaaa",
                additions=10,
                deletions=2,
                total=12,
            ),
            CommitChange(
                sha="bbbbbbb",
                message="fix: crash on join",
                author_name="Dev",
                author_email="dev@example.test",
                date="2024-01-03T00:00:00Z",
                url="https://github.example.test/commit/bbbbbbb",
            ),
            CommitChange(
                sha="ccccccc",
                message="tweak(build): bump toolchain",
                author_name="Dev",
                author_email="dev@example.test",
                date="2024-01-04T00:00:00Z",
                url="https://github.example.test/commit/ccccccc",
            ),
        ],
        files=[
            FileChange("src/new.cpp", "added", 40, 0, 40, "blob/new", "raw/new"),
            FileChange("src/main.cpp", "modified", 5, 3, 8, "blob/main", "raw/main", patch="@@ -1 +1 @@\n-a\n+b"),
            FileChange("src/old.cpp", "removed", 0, 12, 12, "blob/old", "raw/old"),
        ],
    )


class CategorizeTests(unittest.TestCase):
    def test_markers(self) -> None:
        self.assertEqual(categorize_commit("feat: new native"), "features")
        self.assertEqual(categorize_commit("Feature: scripting"), "features")
        self.assertEqual(categorize_commit("fix: crash"), "fixes")
        self.assertEqual(categorize_commit("bug: leak"), "fixes")
        self.assertEqual(categorize_commit("tweak(server): cleanup"), "other")


class AdjacentTagsTests(unittest.TestCase):
    TAGS = [
        TagRef("v1.0.0.7300", "7300", "c"),
        TagRef("v1.0.0.7100", "7100", "a"),
        TagRef("v1.0.0.7200", "7200", "b"),
    ]

    def test_previous_is_the_nearest_lower_build(self) -> None:
        previous, current = find_adjacent_tags(self.TAGS, "7300")
        self.assertEqual((previous.version, current.version), ("7200", "7300"))

    def test_missing_build_or_predecessor(self) -> None:
        with self.assertRaises(UpstreamNotFound):
            find_adjacent_tags(self.TAGS, "9999")
        with self.assertRaises(UpstreamNotFound):
            find_adjacent_tags(self.TAGS, "7100")


class RenderTests(unittest.TestCase):
    def test_json_summary(self) -> None:
        body = render_json(_changelog(), include_diffs=False)

        metadata = body["data"]["metadata"]
        self.assertEqual((metadata["from"], metadata["to"]), ("7100", "7200"))
        self.assertEqual(metadata["summary"]["features"], 1)
        self.assertEqual(metadata["summary"]["fixes"], 1)
        self.assertEqual(metadata["summary"]["other"], 1)
        self.assertEqual(metadata["stats"], {"additions": 45, "deletions": 15, "changes": 60})
        self.assertNotIn("patch", body["data"]["files"][1])

        with_diffs = render_json(_changelog(), include_diffs=True)
        self.assertEqual(with_diffs["data"]["files"][1]["patch"], "@@ -1 +1 @@\n-a\n+b")

    def test_markdown(self) -> None:
        text = render_markdown(_changelog(), include_diffs=True)

        self.assertTrue(text.startswith("# Changelog for artifact 7200\n"))
        self.assertIn("- `src/new.cpp` (+40)", text)
        self.assertIn("- `src/old.cpp` (-12)", text)
        self.assertIn("```diff\n@@ -1 +1 @@", text)
        self.assertIn("### Features", text)
        self.assertIn("- [bbbbbbb](https://github.example.test/commit/bbbbbbb) fix: crash on join", text)
        self.assertNotIn("long body", text)

    def test_html_escapes_commit_text(self) -> None:
        html = render_html(_changelog(), include_diffs=False)

        self.assertNotIn("<script>", html)
        self.assertIn("&lt;script&gt;", html)
        soup = BeautifulSoup(html, "html.parser")
        self.assertEqual(soup.h1.get_text(), "Changelog for artifact 7200")
        links = [a["href"] for a in soup.find_all("a")]
        self.assertIn("https://github.example.test/commit/aaaaaaa", links)
        self.assertIsNone(soup.find("pre"))


class ChangelogServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.fake = FakeGitHub()
        self.fake.add_tag("v1.0.0.7200", "sha7200")
        self.fake.add_tag("v1.0.0.7100", "sha7100")
        self.fake.compares["v1.0.0.7100...v1.0.0.7200"] = {
            "commits": [
                {
                    "sha": "0123456789abcdef",
                    "html_url": "https://github.example.test/commit/0123456",
                    "commit": {
                        "message": "fix: voice chat",
                        "author": {"name": "Dev", "email": "dev@example.test", "date": "2024-01-02T00:00:00Z"},
                    },
                }
            ],
            "files": [
                {
                    "filename": "code/voice.cpp",
                    "status": "modified",
                    "additions": 3,
                    "deletions": 1,
                    "changes": 4,
                    "blob_url": "blob",
                    "raw_url": "raw",
                    "patch": "@@",
                }
            ],
        }
        self.server, self.client = await start_fake_github(self.fake, max_attempts=1)
        self.clock = FakeClock()
        self.service = ChangelogService(ChangelogSettings(), ArtifactSettings(), self.client, clock=self.clock)

    async def asyncTearDown(self) -> None:
        await self.client.close()
        await self.server.close()

    async def test_compares_with_the_previous_build(self) -> None:
        changelog = await self.service.get_changelog("7200")

        self.assertEqual((changelog.from_version, changelog.to_version, changelog.tag), ("7100", "7200", "v1.0.0.7200"))
        self.assertEqual(changelog.commits[0].sha, "0123456")
        self.assertEqual(changelog.commits[0].category, "fixes")
        self.assertEqual(changelog.files[0].filename, "code/voice.cpp")

    async def test_changelog_is_cached_per_build_pair(self) -> None:
        first = await self.service.get_changelog("7200")
        second = await self.service.get_changelog("7200")

        self.assertIs(first, second)
        self.assertEqual(self.fake.count("compare"), 1)

    async def test_unknown_build(self) -> None:
        with self.assertRaises(UpstreamNotFound):
            await self.service.get_changelog("9999")


if __name__ == "__main__":
    unittest.main()
