"""Tests for the Slack GC notifier."""

from __future__ import annotations

import unittest
from typing import Any

from requests import exceptions as requests_exceptions

from services.notify import SlackNotifier


class _Response:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeSession:
    def __init__(self, responses: list[Any]) -> None:
        self.headers: dict[str, str] = {}
        self.responses = list(responses)
        self.posts: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> _Response:
        self.posts.append({"url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class SlackNotifierTests(unittest.TestCase):
    def test_posts_summary_with_bearer_token(self) -> None:
        session = _FakeSession([_Response({"ok": True})])
        notifier = SlackNotifier("xoxb-1", channel="#gc", session=session)

        notifier.notify("alice", ["alice-b", "alice-a"], dry_run=True)

        post = session.posts[0]
        self.assertEqual(SlackNotifier.BASE_URL, post["url"])
        self.assertEqual("Bearer xoxb-1", post["headers"]["Authorization"])
        self.assertEqual("#gc", post["json"]["channel"])
        self.assertEqual("alice: expired clusters will be destroyed: alice-a, alice-b", post["json"]["text"])
        self.assertIn("ephfleet", session.headers["User-Agent"])

    def test_failure_payload_raises(self) -> None:
        session = _FakeSession([_Response({"ok": False, "error": "channel_not_found"})])
        with self.assertRaises(RuntimeError) as ctx:
            SlackNotifier("xoxb-1", session=session).notify("alice", ["alice-a"], dry_run=False)
        self.assertIn("channel_not_found", str(ctx.exception))

    def test_non_json_response_raises(self) -> None:
        session = _FakeSession([_Response(ValueError("not json"), status_code=502)])
        with self.assertRaises(RuntimeError) as ctx:
            SlackNotifier("xoxb-1", session=session).notify("alice", ["alice-a"], dry_run=False)
        self.assertIn("502", str(ctx.exception))

    def test_notify_all_continues_after_failure(self) -> None:
        session = _FakeSession(
            [requests_exceptions.ConnectionError("offline"), _Response({"ok": True})]
        )
        notifier = SlackNotifier("xoxb-1", session=session)

        with self.assertLogs("services.notify", level="WARNING"):
            notifier.notify_all({"bob": ["bob-x"], "alice": ["alice-a"]}, dry_run=False)

        self.assertEqual(2, len(session.posts))
        self.assertTrue(session.posts[1]["json"]["text"].startswith("bob: expired clusters were destroyed"))


if __name__ == "__main__":  # pragma: no cover - convenience
    unittest.main()
