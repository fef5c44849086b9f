"""Slack notifications about garbage-collected clusters."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

import requests
from requests import Session
from requests import exceptions as requests_exceptions


logger = logging.getLogger(__name__)


class SlackNotifier:
    """Post GC summaries to Slack through the Web API."""

    BASE_URL = "https://slack.com/api/chat.postMessage"

    def __init__(self, token: str, *, channel: str = "#ephfleet", session: Session | None = None) -> None:
        self._token = token
        self._channel = channel
        self._session = session or requests.Session()
        headers = getattr(self._session, "headers", None)
        if headers is not None:
            headers.update({"User-Agent": "ephfleet/0.1"})

    def notify(self, owner: str, clusters: Sequence[str], *, dry_run: bool) -> None:
        verb = "will be destroyed" if dry_run else "were destroyed"
        text = f"{owner}: expired clusters {verb}: " + ", ".join(sorted(clusters))
        logger.info("Posting GC summary to Slack", extra={"owner": owner, "clusters": len(clusters)})
        try:
            response = self._session.post(
                self.BASE_URL,
                headers={"Authorization": f"Bearer {self._token}"},
                json={"channel": self._channel, "text": text},
                timeout=15,
            )
        except requests_exceptions.RequestException as exc:
            logger.error("Slack request failed", exc_info=exc)
            raise RuntimeError("Slack request failed") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise RuntimeError(f"Slack responded with status {response.status_code}") from exc
        if not payload.get("ok"):
            logger.error("Slack responded with failure", extra={"response": payload})
            raise RuntimeError(f"Slack notification failed: {payload.get('error', 'unknown error')}")

    def notify_all(self, by_owner: Mapping[str, Sequence[str]], *, dry_run: bool) -> None:
        """Send one message per owner; failures are logged and never raised."""

        for owner, clusters in sorted(by_owner.items()):
            try:
                self.notify(owner, clusters, dry_run=dry_run)
            except RuntimeError as exc:
                logger.warning("Could not notify owner", extra={"owner": owner}, exc_info=exc)
