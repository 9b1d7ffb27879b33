"""Change-management client contract and factory helpers."""

from __future__ import annotations

from typing import Any, Iterator, Protocol

import requests

from migration_bot.service.models import Issue, Plan, PlanStep, Rollout, Sheet
from migration_bot.shared.settings import ServiceSettings


class ChangeServiceClient(Protocol):
    """Contract shared by the HTTP client and the in-memory test double."""

    def iter_issue_pages(self) -> Iterator[list[Issue]]: ...

    def list_issues(self, title: str | None = None) -> list[Issue]: ...

    def search_issues(self, filter: str, query: str | None = None) -> list[Issue]: ...

    def approve_issue(self, issue_uid: str, comment: str = "") -> dict[str, Any]: ...

    def create_issue(self, issue: dict[str, Any]) -> Issue: ...

    def get_plan(self, plan_uid: str) -> Plan: ...

    def create_plan(self, plan: dict[str, Any]) -> Plan: ...

    def update_plan_steps(self, plan_uid: str, steps: list[PlanStep]) -> Plan: ...

    def create_rollout(self, plan_name: str) -> Rollout: ...

    def get_rollout(self, rollout_uid: str) -> Rollout: ...

    def create_sheet(self, title: str, database: str, content: str) -> Sheet: ...

    def get_sheet_content(self, sheet_uid: str) -> str: ...


def build_client(
    settings: ServiceSettings,
    session: requests.Session | None = None,
) -> ChangeServiceClient:
    from migration_bot.service.client_api import ChangeServiceAPIClient

    return ChangeServiceAPIClient(
        base_url=settings.url,
        project_id=settings.project_id,
        token=settings.token,
        extra_headers=settings.extra_headers,
        session=session,
    )


__all__ = ["ChangeServiceClient", "build_client"]
