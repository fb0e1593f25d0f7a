"""
GitHub contents API fetcher for the remote schema file.

Each fetch opens its own client, so concurrent fetches share no state.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional

import httpx

from driftgate.core.models import SchemaArtifact, SourceSettings, utcnow
from driftgate.utils.diagnostics import FetchError


class GitHubSchemaFetcher:
    """Reads one file from a GitHub repository and returns it as a SchemaArtifact."""

    def __init__(
        self,
        settings: SourceSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: str = "driftgate",
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._user_agent = user_agent

    @property
    def descriptor(self) -> str:
        return self.settings.descriptor

    @property
    def contents_url(self) -> str:
        base = self.settings.api_url.rstrip("/")
        path = self.settings.path.lstrip("/")
        return f"{base}/repos/{self.settings.owner}/{self.settings.repo}/contents/{path}"

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": self._user_agent,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.settings.access_token is not None:
            headers["Authorization"] = f"Bearer {self.settings.access_token.get_secret_value()}"
        return headers

    async def fetch(self) -> SchemaArtifact:
        params = {"ref": self.settings.ref} if self.settings.ref else None

        try:
            async with httpx.AsyncClient(timeout=self.settings.timeout_s, transport=self._transport) as client:
                response = await client.get(self.contents_url, headers=self._headers(), params=params)
        except httpx.HTTPError as exc:
            raise FetchError(f"Request failed: {exc}", step="fetch", source=self.descriptor) from exc

        if response.status_code != 200:
            raise FetchError(
                f"GitHub responded with HTTP {response.status_code}",
                step="fetch",
                source=self.descriptor,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError("Response body is not JSON", step="fetch", source=self.descriptor) from exc

        return SchemaArtifact(
            content=self._decode_content(payload),
            retrieved_at=utcnow(),
            source=self.descriptor,
        )

    def _decode_content(self, payload: Any) -> str:
        if not isinstance(payload, dict) or payload.get("type", "file") != "file":
            raise FetchError("Target path is not a file", step="fetch", source=self.descriptor)

        content = payload.get("content")
        if not isinstance(content, str):
            raise FetchError("Response has no file content", step="fetch", source=self.descriptor)

        encoding = payload.get("encoding", "base64")
        if encoding != "base64":
            return content

        try:
            return base64.b64decode(content).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise FetchError(f"Unable to decode file content: {exc}", step="fetch", source=self.descriptor) from exc
