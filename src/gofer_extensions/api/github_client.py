"""GitHub Checks API client authenticated as a GitHub App installation."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

import httpx
import jwt
import structlog

log = structlog.get_logger()

DEFAULT_API_URL = "https://api.github.com"

# Installation tokens last an hour; refresh a little early.
_TOKEN_REFRESH_MARGIN = 60


class GithubError(Exception):
    """A GitHub API call failed."""


def _timestamp(moment: datetime | None = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class GithubAppClient:
    """Creates and updates check runs on behalf of a GitHub App installation."""

    def __init__(
        self,
        app_id: int,
        installation_id: int,
        private_key: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.app_id = app_id
        self.installation_id = installation_id
        self._private_key = private_key
        self._token: str | None = None
        self._token_expires = 0.0
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def app_jwt(self, now: float | None = None) -> str:
        """Short-lived RS256 JWT identifying the app itself."""
        now = int(now if now is not None else time.time())
        payload = {"iat": now - 60, "exp": now + 9 * 60, "iss": str(self.app_id)}
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    async def _send(
        self, method: str, path: str, token: str, body: dict[str, Any] | None = None
    ) -> dict:
        try:
            response = await self._client.request(
                method, path, json=body, headers={"Authorization": token}
            )
        except httpx.TransportError as e:
            raise GithubError(f"{method} {path}: {e}") from e
        if not response.is_success:
            raise GithubError(f"{method} {path} returned {response.status_code}: {response.text[:200]}")
        try:
            data = response.json()
        except ValueError as e:
            raise GithubError(f"{method} {path}: body is not JSON") from e
        if not isinstance(data, dict):
            raise GithubError(f"{method} {path}: expected a JSON object")
        return data

    async def _installation_token(self) -> str:
        if self._token and time.time() < self._token_expires - _TOKEN_REFRESH_MARGIN:
            return self._token

        path = f"/app/installations/{self.installation_id}/access_tokens"
        data = await self._send("POST", path, f"Bearer {self.app_jwt()}")
        try:
            token = str(data["token"])
            expires_at = data.get("expires_at")
            if expires_at:
                expires = datetime.fromisoformat(expires_at.replace("Z", "+00:00")).timestamp()
            else:
                expires = time.time() + 3600
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise GithubError(f"malformed installation token response: {e}") from e
        self._token, self._token_expires = token, expires
        log.debug("github installation token refreshed", installation_id=self.installation_id)
        return self._token

    async def _request(self, method: str, path: str, body: dict[str, Any]) -> dict:
        token = await self._installation_token()
        return await self._send(method, path, f"token {token}", body)

    async def create_check_run(
        self, owner: str, repo: str, name: str, head_sha: str, title: str, summary: str
    ) -> int:
        """Open an ``in_progress`` check run. Returns its id."""
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/check-runs",
            {
                "name": name,
                "head_sha": head_sha,
                "status": "in_progress",
                "started_at": _timestamp(),
                "output": {"title": title, "summary": summary},
            },
        )
        try:
            return int(data["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise GithubError(f"check run response missing id: {e}") from e

    async def update_check_run(
        self,
        owner: str,
        repo: str,
        check_run_id: int,
        name: str,
        conclusion: str,
        details_url: str,
        title: str,
        summary: str,
    ) -> None:
        """Mark a check run completed with ``conclusion``."""
        await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/check-runs/{check_run_id}",
            {
                "name": name,
                "details_url": details_url,
                "status": "completed",
                "completed_at": _timestamp(),
                "conclusion": conclusion,
                "output": {"title": title, "summary": summary},
            },
        )
