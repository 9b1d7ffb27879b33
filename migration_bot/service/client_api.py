"""Change-management REST API client implementation."""

from __future__ import annotations

import logging
from typing import Any, Iterator

import requests

from migration_bot.service.auth import ServiceAuth, build_headers
from migration_bot.service.errors import RemoteRejectionError
from migration_bot.service.models import (
    Issue,
    Plan,
    PlanStep,
    Rollout,
    Sheet,
    decode_content,
    encode_content,
)

logger = logging.getLogger(__name__)


class ChangeServiceAPIClient:
    def __init__(
        self,
        base_url: str,
        project_id: str,
        token: str | None = None,
        extra_headers: dict[str, str] | None = None,
        session: requests.Session | None = None,
        timeout_s: float = 30,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self.headers = build_headers(token, extra_headers)
        self.session = session or requests.Session()
        self.timeout_s = timeout_s
        logger.debug(
            "Service client for %s (project %s), auth %s",
            self.base_url,
            project_id,
            ServiceAuth(token).redacted(),
        )

    @property
    def project_url(self) -> str:
        return f"{self.base_url}/v1/projects/{self.project_id}"

    def iter_issue_pages(self) -> Iterator[list[Issue]]:
        return self._iter_issue_pages(f"{self.project_url}/issues")

    def list_issues(self, title: str | None = None) -> list[Issue]:
        issues: list[Issue] = []
        for page in self.iter_issue_pages():
            issues.extend(issue for issue in page if title is None or issue.title == title)
        return issues

    def search_issues(self, filter: str, query: str | None = None) -> list[Issue]:
        params = {"filter": filter}
        if query:
            params["query"] = query
        issues: list[Issue] = []
        for page in self._iter_issue_pages(f"{self.project_url}/issues:search", params=params):
            issues.extend(page)
        return issues

    def approve_issue(self, issue_uid: str, comment: str = "") -> dict[str, Any]:
        payload = self._request(
            "POST",
            f"{self.base_url}/v1/projects/-/issues/{issue_uid}:approve",
            json={"comment": comment},
        )
        return payload if isinstance(payload, dict) else {}

    def create_issue(self, issue: dict[str, Any]) -> Issue:
        logger.debug("Creating issue with request body: %s", issue)
        return Issue.model_validate(
            self._request("POST", f"{self.project_url}/issues", json=issue)
        )

    def get_plan(self, plan_uid: str) -> Plan:
        return Plan.model_validate(self._request("GET", f"{self.project_url}/plans/{plan_uid}"))

    def create_plan(self, plan: dict[str, Any]) -> Plan:
        logger.debug("Creating plan with request body: %s", plan)
        return Plan.model_validate(self._request("POST", f"{self.project_url}/plans", json=plan))

    def update_plan_steps(self, plan_uid: str, steps: list[PlanStep]) -> Plan:
        payload = self._request(
            "PATCH",
            f"{self.project_url}/plans/{plan_uid}",
            json={"steps": [step.to_wire() for step in steps]},
            params={"update_mask": "steps"},
        )
        return Plan.model_validate(payload)

    def create_rollout(self, plan_name: str) -> Rollout:
        return Rollout.model_validate(
            self._request("POST", f"{self.project_url}/rollouts", json={"plan": plan_name})
        )

    def get_rollout(self, rollout_uid: str) -> Rollout:
        return Rollout.model_validate(
            self._request("GET", f"{self.project_url}/rollouts/{rollout_uid}")
        )

    def create_sheet(self, title: str, database: str, content: str) -> Sheet:
        body = {
            "database": database,
            "title": title,
            "content": encode_content(content),
            "type": "TYPE_SQL",
        }
        return Sheet.model_validate(self._request("POST", f"{self.project_url}/sheets", json=body))

    def get_sheet_content(self, sheet_uid: str) -> str:
        payload = self._request(
            "GET", f"{self.project_url}/sheets/{sheet_uid}", params={"raw": "true"}
        )
        return decode_content(str((payload or {}).get("content") or ""))

    def _iter_issue_pages(
        self, url: str, params: dict[str, str] | None = None
    ) -> Iterator[list[Issue]]:
        query = dict(params or {})
        while True:
            payload = self._request("GET", url, params=query)
            rows = payload.get("issues") if isinstance(payload, dict) else None
            yield [Issue.model_validate(row) for row in rows or [] if isinstance(row, dict)]

            next_token = ""
            if isinstance(payload, dict):
                next_token = str(
                    payload.get("next_page_token") or payload.get("nextPageToken") or ""
                )
            if not next_token:
                return
            query = {**query, "page_token": next_token}

    def _request(
        self,
        method: str,
        url: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        response = self.session.request(
            method=method,
            url=url,
            headers=dict(self.headers),
            json=json,
            params=params or None,
            timeout=self.timeout_s,
        )

        payload: Any = {}
        if response.content:
            try:
                payload = response.json()
            except ValueError:
                payload = {}

        if isinstance(payload, dict) and payload.get("message"):
            raise RemoteRejectionError(
                str(payload["message"]),
                code=_coerce_code(payload.get("code")),
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise RemoteRejectionError(
                f"{method} {url} failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return payload


def _coerce_code(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
