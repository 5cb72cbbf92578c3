"""Tests for GitHub URL parsing and the repository snapshot fetcher."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from sprintpilot.repo.snapshot import (
    MAX_README_CHARS,
    README_MISSING,
    ParsedRepo,
    RepoSnapshotFetcher,
    count_extensions,
    parse_github_repo_url,
    read_readme,
)

REPO = {
    "full_name": "acme/app",
    "description": "Acme web app",
    "default_branch": "main",
    "topics": ["web"],
    "open_issues_count": 4,
    "stargazers_count": 12,
    "forks_count": 1,
    "license": {"name": "MIT License"},
}

COMMITS = [
    {"commit": {"message": "Add login form\n\nlong body", "author": {"name": "Sam"}}},
    {"commit": {"message": "Initial commit"}},
    "garbage",
]


def _github(routes: dict[str, httpx.Response]) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return routes.get(request.url.path, httpx.Response(404))

    return httpx.MockTransport(handler), seen


def _fetcher(transport: httpx.MockTransport, token: str = "") -> RepoSnapshotFetcher:
    return RepoSnapshotFetcher(token=token, client=httpx.AsyncClient(transport=transport))


# ---------------------------------------------------------------------------
# parse_github_repo_url
# ---------------------------------------------------------------------------


class TestParseUrl:
    @pytest.mark.parametrize("url", [
        "https://github.com/acme/app",
        "https://github.com/acme/app.git",
        "git@github.com:acme/app.git",
        "https://github.com/acme/app/tree/main/src",
    ])
    def test_variants(self, url: str) -> None:
        assert parse_github_repo_url(url) == ParsedRepo("acme", "app")

    @pytest.mark.parametrize("url", ["", "https://gitlab.com/acme/app", "https://github.com/acme"])
    def test_rejects(self, url: str) -> None:
        assert parse_github_repo_url(url) is None

    def test_canonical_url(self) -> None:
        parsed = ParsedRepo("acme", "app")
        assert parsed.url == "https://github.com/acme/app"
        assert parsed.full_name == "acme/app"


# ---------------------------------------------------------------------------
# GitHub API path
# ---------------------------------------------------------------------------


class TestFetchFromApi:
    @pytest.mark.asyncio
    async def test_full_snapshot(self) -> None:
        transport, seen = _github({
            "/repos/acme/app": httpx.Response(200, json=REPO),
            "/repos/acme/app/languages": httpx.Response(200, json={"Python": 9000}),
            "/repos/acme/app/readme": httpx.Response(200, text="# Acme\n" + "x" * 5000),
            "/repos/acme/app/contents": httpx.Response(200, json=[{"name": "src"}, {"name": "README.md"}]),
            "/repos/acme/app/commits": httpx.Response(200, json=COMMITS),
        })
        fetcher = _fetcher(transport, token="ghp_test")
        snap = await fetcher.fetch(ParsedRepo("acme", "app"))

        assert snap["repo"]["name"] == "acme/app"
        assert snap["repo"]["license"] == "MIT License"
        assert snap["repo"]["stars"] == 12
        assert snap["languages"] == {"Python": 9000}
        assert snap["top_level"] == ["src", "README.md"]
        assert snap["recent_commits"] == ["Add login form (by Sam)", "Initial commit"]
        assert len(snap["readme_excerpt"]) == MAX_README_CHARS
        assert all(r.headers["Authorization"] == "Bearer ghp_test" for r in seen)
        readme_req = next(r for r in seen if r.url.path.endswith("/readme"))
        assert readme_req.headers["Accept"] == "application/vnd.github.raw"

    @pytest.mark.asyncio
    async def test_optional_endpoints_tolerate_errors(self) -> None:
        transport, _ = _github({"/repos/acme/app": httpx.Response(200, json={})})
        snap = await _fetcher(transport).fetch(ParsedRepo("acme", "app"))

        assert snap["repo"]["name"] == "app"
        assert snap["languages"] == {}
        assert snap["top_level"] == []
        assert snap["recent_commits"] == []
        assert snap["readme_excerpt"] == README_MISSING

    @pytest.mark.asyncio
    async def test_no_token_no_auth_header(self) -> None:
        transport, seen = _github({"/repos/acme/app": httpx.Response(200, json=REPO)})
        await _fetcher(transport).fetch(ParsedRepo("acme", "app"))
        assert "Authorization" not in seen[0].headers
        assert seen[0].headers["User-Agent"] == "sprintpilot"


class TestCloneFallback:
    @pytest.mark.asyncio
    async def test_api_failure_falls_back(self, monkeypatch) -> None:
        transport, _ = _github({"/repos/acme/app": httpx.Response(403)})
        fetcher = _fetcher(transport)
        calls: list[tuple[ParsedRepo, str | None]] = []

        async def fake_clone(parsed: ParsedRepo, api_error: str | None = None) -> dict:
            calls.append((parsed, api_error))
            return {"repo": {"name": parsed.full_name}}

        monkeypatch.setattr(fetcher, "_fetch_from_clone", fake_clone)
        snap = await fetcher.fetch(ParsedRepo("acme", "app"))

        assert snap == {"repo": {"name": "acme/app"}}
        assert calls == [(ParsedRepo("acme", "app"), "GitHub repo lookup failed (403).")]


# ---------------------------------------------------------------------------
# Working-tree helpers
# ---------------------------------------------------------------------------


class TestWorkingTree:
    def test_count_extensions(self, tmp_path: Path) -> None:
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "a.py").write_text("")
        (tmp_path / "src" / "b.PY").write_text("")
        (tmp_path / "Makefile").write_text("")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "HEAD").write_text("")
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "node_modules" / "x.js").write_text("")

        assert count_extensions(tmp_path) == {".py": 2, "unknown": 1}

    def test_count_extensions_limit(self, tmp_path: Path) -> None:
        for i in range(5):
            (tmp_path / f"f{i}.txt").write_text("")
        assert count_extensions(tmp_path, limit=3) == {".txt": 3}

    def test_read_readme(self, tmp_path: Path) -> None:
        assert read_readme(tmp_path) == README_MISSING
        (tmp_path / "README.rst").write_text("Hello")
        assert read_readme(tmp_path) == "Hello"
