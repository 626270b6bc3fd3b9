"""
Build trigger dispatch: optional auto-commit, then webhook notifications.

Every configured webhook receives one POST per dispatch. Requests run
concurrently and each failure is logged on its own without affecting the
others. Nothing is retried and nothing is persisted; the returned report only
exists for the caller's logs and tests.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from .configuration import CMSConfig
from .git_ops import CommitOutcome, GitCli, VersionControl, auto_commit
from .models import ChangeEvent

logger = logging.getLogger(__name__)

GITHUB_SERVICE = "github"
EVENT_TYPE = "markdown_file_change"
DISPATCH_TRIGGER = "api_file_change"


@dataclass
class WebhookResult:
    service: str
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class DispatchReport:
    event: ChangeEvent
    commit: Optional[CommitOutcome] = None
    webhooks: List[WebhookResult] = field(default_factory=list)

    @property
    def failed(self) -> List[WebhookResult]:
        return [result for result in self.webhooks if not result.ok]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class BuildDispatcher:
    """
    Sends build notifications for a change event.

    Attributes:
        webhooks: Service name -> URL, only services with a URL
        store_root: Markdown directory; changed file names are resolved against it
        auto_commit_enabled: Whether markdown changes are committed and pushed first
    """

    def __init__(
        self,
        webhooks: Mapping[str, str],
        store_root: Path,
        github_token: Optional[str] = None,
        auto_commit_enabled: bool = False,
        vcs: Optional[VersionControl] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.webhooks = {service: url for service, url in webhooks.items() if url}
        self.store_root = store_root
        self.auto_commit_enabled = auto_commit_enabled
        self._github_token = github_token
        self._vcs = vcs if vcs is not None else GitCli(store_root)
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: CMSConfig, **kwargs: Any) -> BuildDispatcher:
        kwargs.setdefault("vcs", GitCli(settings.markdown_path, remote=settings.git.remote))
        return cls(
            webhooks=settings.configured_webhooks(),
            store_root=settings.markdown_path,
            github_token=settings.github_token,
            auto_commit_enabled=settings.git.auto_commit,
            timeout=settings.webhook_timeout_seconds,
            **kwargs,
        )

    @property
    def services(self) -> List[str]:
        return list(self.webhooks)

    def build_request(self, service: str, event: ChangeEvent, timestamp: str) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """Return (json payload, headers) for one webhook."""
        if service == GITHUB_SERVICE:
            payload = {
                "event_type": EVENT_TYPE,
                "client_payload": {
                    "changeType": event.change_type.value,
                    "fileName": event.file_name,
                    "timestamp": timestamp,
                    "trigger": DISPATCH_TRIGGER,
                },
            }
            headers = {
                "Authorization": f"Bearer {self._github_token or ''}",
                "Accept": "application/vnd.github.v3+json",
                "Content-Type": "application/json",
            }
            return payload, headers

        payload = {
            "trigger": EVENT_TYPE,
            "changeType": event.change_type.value,
            "fileName": event.file_name,
            "timestamp": timestamp,
        }
        return payload, {"Content-Type": "application/json"}

    async def dispatch(self, event: ChangeEvent) -> DispatchReport:
        logger.info("File change detected: %s - %s", event.change_type.value, event.file_name)
        report = DispatchReport(event=event)

        if self.auto_commit_enabled and event.concerns_markdown:
            report.commit = await auto_commit(self._vcs, event, self.store_root / event.file_name)

        if not self.webhooks:
            logger.warning(
                "No build webhooks configured. Set NETLIFY_BUILD_HOOK_URL, VERCEL_BUILD_HOOK_URL, "
                "GITHUB_BUILD_HOOK_URL + GITHUB_TOKEN or CUSTOM_BUILD_HOOK_URL to enable auto-deployment."
            )
            return report

        timestamp = _timestamp()
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            report.webhooks = list(
                await asyncio.gather(
                    *(self._post(client, service, url, event, timestamp) for service, url in self.webhooks.items())
                )
            )

        logger.info(
            "Build triggers sent: %d succeeded, %d failed",
            len(report.webhooks) - len(report.failed),
            len(report.failed),
        )
        return report

    async def _post(
        self,
        client: httpx.AsyncClient,
        service: str,
        url: str,
        event: ChangeEvent,
        timestamp: str,
    ) -> WebhookResult:
        logger.info("Triggering %s build...", service)
        payload, headers = self.build_request(service, event, timestamp)
        try:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error("Failed to trigger %s build: HTTP %s: %s", service, status, exc.response.text[:500])
            return WebhookResult(service=service, ok=False, status_code=status, error=str(exc))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("Failed to trigger %s build: %s", service, exc)
            return WebhookResult(service=service, ok=False, error=str(exc))
        return WebhookResult(service=service, ok=True, status_code=response.status_code)
