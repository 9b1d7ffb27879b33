"""Minimal ASGI receiver for the change-management service's custom webhook."""

from __future__ import annotations

import argparse
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

STARTUP_COMMAND = "uvicorn migration_bot.webhook.app:app --host 127.0.0.1 --port 8787"


def summarize_event(issue: dict[str, Any]) -> str:
    return (
        f"Received webhook for issue {issue.get('name', '')} "
        f"with type {issue.get('type', '')} status {issue.get('status', '')}."
    )


def _acknowledgement(code: int, message: str) -> dict[str, Any]:
    return {"code": code, "message": message}


class WebhookRelay:
    """Acknowledges webhook deliveries; the service expects HTTP 200 with a ``code`` field."""

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope.get("type") != "http":
            await self._respond(send, _acknowledgement(500, "unsupported_scope"), status=500)
            return

        if scope.get("method", "GET") != "POST":
            await self._respond(send, _acknowledgement(405, "Method Not Allowed"))
            return

        issue = self._event_issue(await self._read_body(receive))
        if issue is None:
            await self._respond(send, _acknowledgement(400, "Invalid JSON"))
            return

        summary = summarize_event(issue)
        logger.info("%s", summary)
        await self._respond(send, _acknowledgement(0, summary))

    async def _read_body(self, receive: Any) -> bytes:
        body = bytearray()
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            if message["type"] == "http.request":
                body.extend(message.get("body", b""))
                more_body = bool(message.get("more_body", False))
        return bytes(body)

    def _event_issue(self, body: bytes) -> dict[str, Any] | None:
        """Return the event's ``issue`` object, or None when the delivery is unusable."""

        try:
            event = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        logger.debug("webhook payload: %s", event)
        issue = event.get("issue") if isinstance(event, dict) else None
        return issue if isinstance(issue, dict) else None

    async def _respond(self, send: Any, payload: dict[str, Any], status: int = 200) -> None:
        encoded = json.dumps(payload).encode("utf-8")
        headers = [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(encoded)).encode("ascii")),
        ]
        await send({"type": "http.response.start", "status": status, "headers": headers})
        await send({"type": "http.response.body", "body": encoded})


app = WebhookRelay()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Acknowledge change-management webhooks")
    parser.add_argument(
        "--print-startup",
        action="store_true",
        help="print the uvicorn command that serves the relay",
    )
    if parser.parse_args(argv).print_startup:
        print(STARTUP_COMMAND)
    else:
        parser.print_usage()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
