"""Repository snapshot: GitHub metadata gathered for the repo analyzer.

The GitHub REST API is tried first. If the repository lookup fails (rate
limit, private repo without a token, network), a shallow clone is taken
with git and the same shape is filled from the working tree.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from sprintpilot.models.project import GITHUB_REPO_RE

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
MAX_README_CHARS = 3000
MAX_COMMITS = 10
MAX_FILE_SCAN = 600
README_MISSING = "README not available."
CLONE_TIMEOUT_S = 120.0


@dataclass(frozen=True)
class ParsedRepo:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}"


def parse_github_repo_url(value: str) -> ParsedRepo | None:
    """Pull owner/repo out of a GitHub URL. Returns None for anything else."""
    match = GITHUB_REPO_RE.search(value or "")
    if not match:
        return None
    owner, repo = match.group(1), match.group(2)
    if repo.lower().endswith(".git"):
        repo = repo[:-4]
    if not owner or not repo:
        return None
    return ParsedRepo(owner=owner, repo=repo)


async def _run_git(*args: str, cwd: str | Path | None = None, timeout: float = 60.0) -> str:
    """Run a git command and return stdout."""
    cmd = ["git"] + list(args)
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise RuntimeError(f"git {args[0]} timed out after {timeout:.0f}s")
    if proc.returncode != 0:
        raise RuntimeError(
            f"git {' '.join(args)} failed (rc={proc.returncode}): {stderr.decode().strip()}"
        )
    return stdout.decode().strip()


def _first_line(message: str) -> str:
    return message.split("\n", 1)[0]


class RepoSnapshotFetcher:
    """Collects repo metadata, languages, top-level layout, commits and a README excerpt."""

    def __init__(
        self,
        token: str = "",
        client: httpx.AsyncClient | None = None,
        api_url: str = GITHUB_API,
        timeout: float = 20.0,
    ) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, accept: str = "application/vnd.github+json") -> dict[str, str]:
        headers = {"User-Agent": "sprintpilot", "Accept": accept}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def fetch(self, parsed: ParsedRepo) -> dict[str, Any]:
        try:
            return await self._fetch_from_api(parsed)
        except (httpx.HTTPError, RuntimeError) as exc:
            logger.warning(
                "GitHub API unavailable for %s (%s), falling back to a shallow clone",
                parsed.full_name, exc,
            )
            return await self._fetch_from_clone(parsed, api_error=str(exc))

    # ------------------------------------------------------------------
    # GitHub REST API
    # ------------------------------------------------------------------

    async def _get(self, path: str, **kwargs: Any) -> httpx.Response:
        headers = kwargs.pop("headers", None) or self._headers()
        return await self._client.get(f"{self.api_url}{path}", headers=headers, **kwargs)

    async def _fetch_from_api(self, parsed: ParsedRepo) -> dict[str, Any]:
        base = f"/repos/{parsed.owner}/{parsed.repo}"
        resp = await self._get(base)
        if resp.status_code != 200:
            raise RuntimeError(f"GitHub repo lookup failed ({resp.status_code}).")
        data = resp.json()

        languages, readme, top_level, commits = await asyncio.gather(
            self._languages(base),
            self._readme(base),
            self._top_level(base),
            self._commits(base),
        )
        license_info = data.get("license") or {}
        return {
            "repo": {
                "name": data.get("full_name") or parsed.repo,
                "description": data.get("description"),
                "default_branch": data.get("default_branch"),
                "topics": data.get("topics") if isinstance(data.get("topics"), list) else [],
                "open_issues": data.get("open_issues_count") or 0,
                "stars": data.get("stargazers_count") or 0,
                "forks": data.get("forks_count") or 0,
                "license": license_info.get("name"),
            },
            "languages": languages,
            "top_level": top_level,
            "recent_commits": commits,
            "readme_excerpt": readme,
        }

    async def _languages(self, base: str) -> dict[str, int]:
        resp = await self._get(f"{base}/languages")
        if resp.status_code != 200:
            return {}
        return resp.json()

    async def _readme(self, base: str) -> str:
        resp = await self._get(
            f"{base}/readme", headers=self._headers("application/vnd.github.raw"),
        )
        if resp.status_code != 200:
            return README_MISSING
        return resp.text[:MAX_README_CHARS]

    async def _top_level(self, base: str) -> list[str]:
        resp = await self._get(f"{base}/contents")
        if resp.status_code != 200:
            return []
        data = resp.json()
        if not isinstance(data, list):
            return []
        return [item["name"] for item in data if isinstance(item, dict) and isinstance(item.get("name"), str)]

    async def _commits(self, base: str) -> list[str]:
        resp = await self._get(f"{base}/commits", params={"per_page": MAX_COMMITS})
        if resp.status_code != 200:
            return []
        data = resp.json()
        if not isinstance(data, list):
            return []
        lines = []
        for item in data:
            if not isinstance(item, dict):
                continue
            commit = item.get("commit") or {}
            message = commit.get("message")
            if not isinstance(message, str):
                continue
            author = (commit.get("author") or {}).get("name")
            lines.append(f"{_first_line(message)} (by {author})" if author else _first_line(message))
        return lines

    # ------------------------------------------------------------------
    # Shallow clone fallback
    # ------------------------------------------------------------------

    async def _fetch_from_clone(self, parsed: ParsedRepo, api_error: str | None = None) -> dict[str, Any]:
        tmp = Path(tempfile.mkdtemp(prefix="sprintpilot-repo-"))
        try:
            await _run_git("clone", "--depth", "1", parsed.url, str(tmp), timeout=CLONE_TIMEOUT_S)
            try:
                log = await _run_git("log", "-n", str(MAX_COMMITS), "--pretty=format:%s", cwd=tmp)
                commits = [line for line in log.split("\n") if line]
            except RuntimeError:
                commits = []
            return {
                "repo": {
                    "name": parsed.full_name,
                    "description": f"GitHub API unavailable: {api_error}" if api_error else None,
                    "default_branch": "main",
                    "topics": [],
                    "open_issues": 0,
                    "stars": 0,
                    "forks": 0,
                    "license": None,
                },
                "languages": count_extensions(tmp),
                "top_level": sorted(p.name for p in tmp.iterdir() if p.name != ".git"),
                "recent_commits": commits,
                "readme_excerpt": read_readme(tmp),
            }
        finally:
            shutil.rmtree(tmp, ignore_errors=True)


def read_readme(root: Path) -> str:
    for entry in sorted(root.iterdir()):
        if entry.is_file() and entry.name.lower().startswith("readme"):
            try:
                return entry.read_text(encoding="utf-8", errors="replace")[:MAX_README_CHARS]
            except OSError:
                return README_MISSING
    return README_MISSING


def count_extensions(root: Path, limit: int = MAX_FILE_SCAN) -> dict[str, int]:
    """File counts per extension, skipping hidden entries and node_modules."""
    counts: dict[str, int] = {}
    scanned = 0
    stack = [root]
    while stack and scanned < limit:
        current = stack.pop()
        try:
            entries = sorted(current.iterdir())
        except OSError:
            continue
        for entry in entries:
            if scanned >= limit:
                break
            if entry.name.startswith(".") or entry.name == "node_modules":
                continue
            if entry.is_dir():
                stack.append(entry)
            else:
                scanned += 1
                ext = entry.suffix.lower() or "unknown"
                counts[ext] = counts.get(ext, 0) + 1
    return counts
