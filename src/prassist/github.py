from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from prassist.errors import GitHubAuthError, GitHubError, MissingRepositoryError

GITHUB_API_URL = "https://api.github.com"
DEVICE_CODE_URL = "https://github.com/login/device/code"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
MIN_POLL_INTERVAL = 5.0
SLOW_DOWN_STEP = 5.0

SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
REMOTE_SLUG_PATTERN = re.compile(
    r"github\.com[:/](?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?/?$"
)


def split_slug(slug: str) -> tuple[str, str]:
    cleaned = slug.strip()
    if not SLUG_PATTERN.match(cleaned):
        raise MissingRepositoryError(f"Repo must be in owner/repo format, got {slug!r}.")
    owner, repo = cleaned.split("/", 1)
    return owner, repo


def parse_github_slug(remote_url: str | None) -> str | None:
    """``owner/repo`` from an https or ssh GitHub remote, else ``None``."""

    if not remote_url:
        return None
    match = REMOTE_SLUG_PATTERN.search(remote_url.strip())
    if match is None:
        return None
    return f"{match.group('owner')}/{match.group('repo')}"


def is_https_github_origin(remote_url: str | None) -> bool:
    return bool(remote_url) and remote_url.strip().startswith("https://github.com/")


class GitHubClient:
    def __init__(
        self,
        token: str,
        *,
        api_url: str = GITHUB_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            transport=self.transport,
            timeout=self.timeout,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self.token}",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    async def create_pull_request(
        self,
        slug: str,
        *,
        title: str,
        head: str,
        base: str,
        body: str = "",
    ) -> str:
        owner, repo = split_slug(slug)
        async with self._client() as client:
            try:
                response = await client.post(
                    f"/repos/{owner}/{repo}/pulls",
                    json={"title": title, "head": head, "base": base, "body": body},
                )
            except httpx.HTTPError as exc:
                raise GitHubError(f"Could not reach GitHub: {exc}") from exc
        if response.status_code >= 400:
            raise GitHubError(_error_message(response))
        payload = response.json()
        url = payload.get("html_url") if isinstance(payload, dict) else None
        if not isinstance(url, str) or not url:
            raise GitHubError("GitHub did not return a pull request URL.")
        return url


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    detail = payload.get("message") if isinstance(payload, dict) else None
    return f"HTTP {response.status_code}: {detail or response.text.strip() or 'no details'}"


@dataclass(frozen=True, slots=True)
class DeviceCode:
    device_code: str
    user_code: str
    verification_uri: str
    interval: float


class GitHubDeviceFlow:
    """OAuth device authorization: show a code, poll until the user approves it."""

    def __init__(
        self,
        client_id: str,
        *,
        scope: str = "repo",
        timeout_seconds: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client_id = client_id
        self.scope = scope
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.sleep = sleep
        self.clock = clock

    async def _post_form(self, url: str, data: dict[str, str]) -> dict[str, Any]:
        async with httpx.AsyncClient(transport=self.transport, timeout=30.0) as client:
            try:
                response = await client.post(url, data=data, headers={"Accept": "application/json"})
            except httpx.HTTPError as exc:
                raise GitHubAuthError(f"Could not reach GitHub: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise GitHubAuthError("Unexpected response from GitHub.") from exc
        if not isinstance(payload, dict):
            raise GitHubAuthError("Unexpected response from GitHub.")
        return payload

    async def start(self) -> DeviceCode:
        payload = await self._post_form(
            DEVICE_CODE_URL, {"client_id": self.client_id, "scope": self.scope}
        )
        device_code = payload.get("device_code")
        user_code = payload.get("user_code")
        verification_uri = payload.get("verification_uri")
        if not device_code or not user_code or not verification_uri:
            raise GitHubAuthError("Failed to start GitHub device login.")
        return DeviceCode(
            device_code=str(device_code),
            user_code=str(user_code),
            verification_uri=str(verification_uri),
            interval=float(payload.get("interval") or MIN_POLL_INTERVAL),
        )

    async def poll(self, device: DeviceCode) -> str:
        deadline = self.clock() + self.timeout_seconds
        interval = max(device.interval, MIN_POLL_INTERVAL)
        while self.clock() < deadline:
            payload = await self._post_form(
                ACCESS_TOKEN_URL,
                {
                    "client_id": self.client_id,
                    "device_code": device.device_code,
                    "grant_type": DEVICE_GRANT_TYPE,
                },
            )
            token = payload.get("access_token")
            if token:
                return str(token)

            error = payload.get("error")
            if not error or error == "authorization_pending":
                await self.sleep(interval)
                continue
            if error == "slow_down":
                interval += SLOW_DOWN_STEP
                await self.sleep(interval)
                continue
            if error == "expired_token":
                raise GitHubAuthError("GitHub device code expired. Please try again.")
            if error == "access_denied":
                raise GitHubAuthError("GitHub access denied.")
            raise GitHubAuthError(f"GitHub login failed: {error}")

        raise GitHubAuthError("GitHub login timed out.")
