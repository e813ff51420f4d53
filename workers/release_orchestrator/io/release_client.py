"""
Release hosting clients.

``GitHubReleaseClient`` talks to the GitHub Releases REST API: one call
creates the release, one call per file uploads an asset.  If any upload
fails the half-made release is deleted again, so a rejected publish never
leaves a partial release behind.

``DirectoryReleaseClient`` "publishes" into a local directory (one
sub-directory per tag).  Used for local runs and for testing.
"""
from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Optional, Protocol, Sequence

import httpx

from release_orchestrator.errors import (
    PublishError,
    ReleaseConflictError,
    ReleaseNetworkError,
    UnauthorizedError,
)
from release_orchestrator.io.schema import PublishedRelease, Release, ReleaseFile

log = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
ASSET_CONTENT_TYPE = "application/x-xz"


class ReleaseClient(Protocol):
    def create_release(
        self,
        tag: str,
        title: str,
        draft: bool,
        body: str,
        files: Sequence[ReleaseFile],
    ) -> PublishedRelease:
        ...

    def close(self) -> None:
        ...


# ─── GitHub ──────────────────────────────────────────────────────────────────

def _raise_for_response(resp: httpx.Response, action: str) -> None:
    """Translate a non-2xx response into the PublishError family."""
    if resp.is_success:
        return
    try:
        payload = resp.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    message = payload.get("message") or resp.text[:500]
    detail = f"{action} failed ({resp.status_code}): {message}"

    if resp.status_code in (401, 403):
        raise UnauthorizedError(detail, status_code=resp.status_code)
    if resp.status_code == 422:
        codes = {e.get("code") for e in payload.get("errors", []) if isinstance(e, dict)}
        if "already_exists" in codes:
            raise ReleaseConflictError(detail, status_code=resp.status_code)
    raise PublishError(detail, status_code=resp.status_code)


class GitHubReleaseClient:
    """Creates a release and uploads its assets."""

    def __init__(
        self,
        token: str,
        repository: str,
        api_url: str = "https://api.github.com",
        uploads_url: str = "https://uploads.github.com",
        timeout: float = 300.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.uploads_url = uploads_url.rstrip("/")
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubReleaseClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, url: str, action: str, **kwargs) -> httpx.Response:
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise ReleaseNetworkError(f"{action} failed: {e}") from e
        _raise_for_response(resp, action)
        return resp

    def create_release(
        self,
        tag: str,
        title: str,
        draft: bool,
        body: str,
        files: Sequence[ReleaseFile],
    ) -> PublishedRelease:
        resp = self._request(
            "POST",
            f"{self.api_url}/repos/{self.repository}/releases",
            "create release",
            json={"tag_name": tag, "name": title, "body": body, "draft": draft},
        )
        data = resp.json()
        release_id = data["id"]
        log.info("Created release %s (id=%s, draft=%s)", tag, release_id, draft)

        try:
            for f in files:
                with f.path.open("rb") as fh:
                    self._request(
                        "POST",
                        f"{self.uploads_url}/repos/{self.repository}/releases/{release_id}/assets",
                        f"upload {f.filename}",
                        params={"name": f.filename},
                        headers={"Content-Type": ASSET_CONTENT_TYPE},
                        content=fh,
                    )
                log.info("Uploaded %s to release %s", f.filename, tag)
        except PublishError:
            self._delete_release(release_id, tag)
            raise
        except OSError as e:
            self._delete_release(release_id, tag)
            raise PublishError(f"could not read release file: {e}") from e

        return PublishedRelease(
            release=Release(tag=tag, title=title, draft=draft, body=body, files=tuple(files)),
            url=data.get("html_url", ""),
            release_id=release_id,
        )

    def _delete_release(self, release_id: int, tag: str) -> None:
        try:
            self._request(
                "DELETE",
                f"{self.api_url}/repos/{self.repository}/releases/{release_id}",
                "delete partial release",
            )
            log.warning("Deleted partial release %s after failed upload", tag)
        except PublishError as e:
            log.error("Could not delete partial release %s: %s", tag, e)


# ─── Local directory ─────────────────────────────────────────────────────────

class DirectoryReleaseClient:
    """Writes ``<root>/<tag>/release.json`` plus a copy of every file."""

    def __init__(self, root: Path):
        self.root = root

    def close(self) -> None:
        pass

    def create_release(
        self,
        tag: str,
        title: str,
        draft: bool,
        body: str,
        files: Sequence[ReleaseFile],
    ) -> PublishedRelease:
        dest = self.root / tag
        if dest.exists():
            raise ReleaseConflictError(f"release {tag} already exists at {dest}")
        staging = self.root / f".{tag}.partial"
        shutil.rmtree(staging, ignore_errors=True)
        staging.mkdir(parents=True)
        try:
            for f in files:
                shutil.copyfile(f.path, staging / f.filename)
            meta = {
                "tag": tag,
                "title": title,
                "draft": draft,
                "body": body,
                "files": [f.filename for f in files],
            }
            (staging / "release.json").write_text(
                json.dumps(meta, indent=2, sort_keys=True) + "\n", encoding="utf-8"
            )
            staging.rename(dest)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise PublishError(f"could not write release {tag}: {e}") from e

        log.info("Published %s to %s", tag, dest)
        return PublishedRelease(
            release=Release(tag=tag, title=title, draft=draft, body=body, files=tuple(files)),
            url=dest.resolve().as_uri(),
        )
