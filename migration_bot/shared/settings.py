"""Runtime settings read from the GitHub Actions runner environment."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from migration_bot.service.errors import PreconditionError


@dataclass(frozen=True)
class PullRequestRef:
    owner: str
    repo: str
    number: int
    html_url: str = ""


@dataclass(frozen=True)
class ActionContext:
    """Where the runner put the repository, the event payload, and the step outputs."""

    repository: str
    event_path: Path | None
    output_path: Path | None
    workspace: Path
    annotate: bool

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "ActionContext":
        source = os.environ if env is None else env
        event_path = _clean(source.get("GITHUB_EVENT_PATH"))
        output_path = _clean(source.get("GITHUB_OUTPUT"))
        return cls(
            repository=_clean(source.get("GITHUB_REPOSITORY")) or "",
            event_path=Path(event_path) if event_path else None,
            output_path=Path(output_path) if output_path else None,
            workspace=Path(_clean(source.get("GITHUB_WORKSPACE")) or "."),
            annotate=(source.get("GITHUB_ACTIONS") or "").strip().lower() == "true",
        )

    def load_event(self) -> dict[str, Any]:
        if self.event_path is None or not self.event_path.exists():
            return {}
        with self.event_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return payload if isinstance(payload, dict) else {}

    def pull_request(self) -> PullRequestRef:
        event = self.load_event()
        pull_request = event.get("pull_request") if isinstance(event, dict) else None
        number = pull_request.get("number") if isinstance(pull_request, dict) else None
        if not number:
            raise PreconditionError(
                "Could not get PR number from the context; "
                "this action should only be run on pull_request events.",
                reason_code="pull_request_required",
            )

        owner, _, repo = self.repository.partition("/")
        if not repo:
            repository = event.get("repository") if isinstance(event, dict) else None
            if isinstance(repository, dict):
                owner = str((repository.get("owner") or {}).get("login", ""))
                repo = str(repository.get("name", ""))
        if not owner or not repo:
            raise PreconditionError(
                "Could not determine the repository; set GITHUB_REPOSITORY=<owner>/<repo>.",
                reason_code="repository_required",
            )
        return PullRequestRef(
            owner=owner,
            repo=repo,
            number=int(number),
            html_url=str(pull_request.get("html_url") or ""),
        )


@dataclass(frozen=True)
class ServiceSettings:
    url: str
    token: str
    project_id: str
    extra_headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "url", self.url.rstrip("/"))

    @property
    def project_url(self) -> str:
        return f"{self.url}/v1/projects/{self.project_id}"

    def issue_url(self, issue_uid: str) -> str:
        return f"{self.url}/projects/{self.project_id}/issues/{issue_uid}"


def parse_extra_headers(raw: str | None) -> dict[str, str]:
    """Parse the optional ``headers`` input; JSON objects and YAML mappings are both accepted."""

    if raw is None or not raw.strip():
        return {}
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise PreconditionError(
            f"Invalid headers input: {exc}", reason_code="invalid_headers"
        ) from exc
    if not isinstance(parsed, dict):
        raise PreconditionError(
            "Invalid headers input: expected a mapping of header names to values.",
            reason_code="invalid_headers",
        )
    return {str(key): str(value) for key, value in parsed.items()}


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
