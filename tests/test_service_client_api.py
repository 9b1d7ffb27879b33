from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

import pytest

from migration_bot.service.auth import ServiceAuth, build_headers, login
from migration_bot.service.client import build_client
from migration_bot.service.client_api import ChangeServiceAPIClient
from migration_bot.service.errors import PreconditionError, RemoteRejectionError
from migration_bot.shared.settings import ServiceSettings


@dataclass
class FakeResponse:
    status_code: int
    payload: Any

    @property
    def content(self) -> bytes:
        if self.payload is None:
            return b""
        return b"json"

    def json(self) -> Any:
        return self.payload


class FakeSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = responses
        self.calls: list[dict[str, Any]] = []

    def request(self, **kwargs: Any) -> FakeResponse:
        self.calls.append(kwargs)
        if not self.responses:
            raise RuntimeError("No fake response left")
        return self.responses.pop(0)


def _client(session: FakeSession, **kwargs: Any) -> ChangeServiceAPIClient:
    return ChangeServiceAPIClient(
        base_url="https://bytebase.example.com/",
        project_id="example",
        token="svc-token",
        session=session,
        **kwargs,
    )


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def test_builtin_headers_win_over_caller_headers() -> None:
    headers = build_headers(
        "svc-token",
        {"Content-Type": "text/plain", "Authorization": "Basic x", "CF-Access-Client-Id": "cf"},
    )

    assert headers["Content-Type"] == "application/json"
    assert headers["Authorization"] == "Bearer svc-token"
    assert headers["CF-Access-Client-Id"] == "cf"


def test_build_client_uses_settings() -> None:
    client = build_client(
        ServiceSettings(
            url="https://bytebase.example.com/",
            token="svc-token",
            project_id="example",
            extra_headers={"X-Trace": "1"},
        )
    )

    assert isinstance(client, ChangeServiceAPIClient)
    assert client.project_url == "https://bytebase.example.com/v1/projects/example"
    assert client.headers["X-Trace"] == "1"


def test_list_issues_follows_page_tokens_and_filters_by_title() -> None:
    session = FakeSession(
        [
            FakeResponse(
                200,
                {
                    "issues": [
                        {"name": "projects/example/issues/1", "uid": "1", "title": "[pr#6] add"},
                        {"name": "projects/example/issues/2", "uid": "2", "title": "other"},
                    ],
                    "next_page_token": "page-2",
                },
            ),
            FakeResponse(
                200,
                {
                    "issues": [
                        {"name": "projects/example/issues/3", "uid": "3", "title": "[pr#6] add"}
                    ]
                },
            ),
        ]
    )

    issues = _client(session).list_issues(title="[pr#6] add")

    assert [issue.uid for issue in issues] == ["1", "3"]
    assert session.calls[0]["url"] == "https://bytebase.example.com/v1/projects/example/issues"
    assert session.calls[0]["params"] is None
    assert session.calls[1]["params"] == {"page_token": "page-2"}
    assert session.calls[0]["headers"]["Authorization"] == "Bearer svc-token"


def test_search_issues_passes_filter_and_query() -> None:
    session = FakeSession([FakeResponse(200, {"issues": []})])

    issues = _client(session).search_issues('status="OPEN" && database=db', query="title")

    assert issues == []
    assert session.calls[0]["url"].endswith("/v1/projects/example/issues:search")
    assert session.calls[0]["params"] == {
        "filter": 'status="OPEN" && database=db',
        "query": "title",
    }


def test_remote_message_is_raised_verbatim() -> None:
    session = FakeSession(
        [FakeResponse(400, {"code": 3, "message": "cannot add specs to plan", "details": []})]
    )

    with pytest.raises(RemoteRejectionError) as exc_info:
        _client(session).get_plan("132")

    assert str(exc_info.value) == "cannot add specs to plan"
    assert exc_info.value.code == 3
    assert exc_info.value.status_code == 400
    assert exc_info.value.reason_code == "remote_rejected"


def test_http_error_without_message_is_rejected() -> None:
    session = FakeSession([FakeResponse(502, None)])

    with pytest.raises(RemoteRejectionError) as exc_info:
        _client(session).get_rollout("122")

    assert exc_info.value.status_code == 502


def test_sheet_content_is_fetched_raw_and_decoded() -> None:
    session = FakeSession(
        [FakeResponse(200, {"name": "projects/example/sheets/251", "content": _b64("SELECT 1;")})]
    )

    content = _client(session).get_sheet_content("251")

    assert content == "SELECT 1;"
    assert session.calls[0]["params"] == {"raw": "true"}


def test_create_sheet_sends_base64_content() -> None:
    session = FakeSession([FakeResponse(200, {"name": "projects/example/sheets/300"})])

    sheet = _client(session).create_sheet("title", "instances/prod/databases/db", "CREATE;")

    assert sheet.name == "projects/example/sheets/300"
    body = session.calls[0]["json"]
    assert body["content"] == _b64("CREATE;")
    assert body["database"] == "instances/prod/databases/db"
    assert session.calls[0]["method"] == "POST"


def test_update_plan_steps_patches_steps_and_keeps_unknown_fields() -> None:
    plan_payload = {
        "name": "projects/example/plans/132",
        "uid": "132",
        "steps": [
            {
                "title": "",
                "specs": [
                    {
                        "id": "ch-ci-example-pr11-1001",
                        "changeDatabaseConfig": {
                            "target": "instances/prod/databases/example",
                            "sheet": "projects/example/sheets/251",
                            "type": "MIGRATE",
                            "schemaVersion": "1001",
                            "rollbackEnabled": False,
                        },
                    }
                ],
            }
        ],
    }
    session = FakeSession([FakeResponse(200, plan_payload), FakeResponse(200, plan_payload)])
    client = _client(session)

    plan = client.get_plan("132")
    plan.steps[0].specs[0].change_database_config.sheet = "projects/example/sheets/300"
    client.update_plan_steps("132", plan.steps)

    patch = session.calls[1]
    assert patch["method"] == "PATCH"
    assert patch["params"] == {"update_mask": "steps"}
    config = patch["json"]["steps"][0]["specs"][0]["changeDatabaseConfig"]
    assert config["sheet"] == "projects/example/sheets/300"
    assert config["schemaVersion"] == "1001"
    assert config["rollbackEnabled"] is False


def test_approve_issue_uses_wildcard_project() -> None:
    session = FakeSession([FakeResponse(200, {"name": "projects/example/issues/129"})])

    _client(session).approve_issue("129", "lgtm")

    assert session.calls[0]["url"] == (
        "https://bytebase.example.com/v1/projects/-/issues/129:approve"
    )
    assert session.calls[0]["json"] == {"comment": "lgtm"}


def test_login_returns_token_and_rejects_missing_token() -> None:
    session = FakeSession([FakeResponse(200, {"token": "jwt"}), FakeResponse(401, {})])

    assert login("https://bytebase.example.com", "ci@service", "key", session=session) == "jwt"
    assert session.calls[0]["url"] == "https://bytebase.example.com/v1/auth/login"
    assert session.calls[0]["json"] == {"email": "ci@service", "password": "key"}

    with pytest.raises(PreconditionError) as exc_info:
        login("https://bytebase.example.com", "ci@service", "bad", session=session)
    assert exc_info.value.reason_code == "login_failed"
    assert "ci@service" in str(exc_info.value)


def test_service_auth_redacts_token() -> None:
    assert ServiceAuth("abcd1234efgh5678").redacted() == {"token": "abcd...5678"}
    assert ServiceAuth("short").redacted() == {"token": "***"}
    assert ServiceAuth(None).redacted() == {"token": "unset"}


def test_update_plan_steps_sends_back_only_fetched_fields() -> None:
    fetched_steps = [
        {
            "specs": [
                {
                    "id": "ch-ci-example-pr11-1001",
                    "changeDatabaseConfig": {
                        "target": "instances/prod/databases/example",
                        "sheet": "projects/example/sheets/251",
                    },
                },
                {
                    "id": "ch-ci-example-pr11-1002",
                    "changeDatabaseConfig": {
                        "target": "instances/prod/databases/example",
                        "sheet": "projects/example/sheets/252",
                        "type": "DATA",
                    },
                },
            ]
        }
    ]
    plan_payload = {"name": "projects/example/plans/132", "steps": fetched_steps}
    session = FakeSession([FakeResponse(200, plan_payload), FakeResponse(200, plan_payload)])
    client = _client(session)

    plan = client.get_plan("132")
    plan.steps[0].specs[0].change_database_config.sheet = "projects/example/sheets/300"
    client.update_plan_steps("132", plan.steps)

    sent = session.calls[1]["json"]["steps"]
    expected = [
        {
            "specs": [
                {
                    "id": "ch-ci-example-pr11-1001",
                    "changeDatabaseConfig": {
                        "target": "instances/prod/databases/example",
                        "sheet": "projects/example/sheets/300",
                    },
                },
                fetched_steps[0]["specs"][1],
            ]
        }
    ]
    assert sent == expected


def test_sheet_content_with_invalid_utf8_is_decoded_leniently() -> None:
    encoded = base64.b64encode(b"caf\xe9").decode("ascii")
    session = FakeSession([FakeResponse(200, {"content": encoded})])

    assert _client(session).get_sheet_content("251") == "caf\ufffd"
