from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from migration_bot.github.pull_files import PullRequestFilesClient


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

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise RuntimeError(f"HTTP {self.status_code}")


class FakeSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = responses
        self.calls: list[dict[str, Any]] = []

    def request(self, **kwargs: Any) -> FakeResponse:
        self.calls.append(kwargs)
        if not self.responses:
            raise RuntimeError("No fake response left")
        return self.responses.pop(0)


def test_changed_files_are_paged_until_an_empty_page() -> None:
    session = FakeSession(
        [
            FakeResponse(200, [{"filename": "migrations/1001_init.sql"}, {"filename": "a.py"}]),
            FakeResponse(200, [{"filename": "migrations/1002_change.sql"}, {"sha": "x"}]),
            FakeResponse(200, []),
        ]
    )
    client = PullRequestFilesClient(token="gh-token", session=session, per_page=2)

    files = client.list_changed_files("acme", "ci-example", 11)

    assert files == ["migrations/1001_init.sql", "a.py", "migrations/1002_change.sql"]
    assert [call["params"]["page"] for call in session.calls] == ["1", "2", "3"]
    assert all(call["params"]["per_page"] == "2" for call in session.calls)
    assert session.calls[0]["url"] == "https://api.github.com/repos/acme/ci-example/pulls/11/files"
    assert session.calls[0]["headers"]["Authorization"] == "Bearer gh-token"


def test_changed_files_iteration_is_lazy() -> None:
    session = FakeSession(
        [
            FakeResponse(200, [{"filename": "one.sql"}]),
            FakeResponse(200, [{"filename": "two.sql"}]),
            FakeResponse(200, []),
        ]
    )
    client = PullRequestFilesClient(session=session)

    iterator = client.iter_changed_files("acme", "ci-example", 3)

    assert next(iterator) == "one.sql"
    assert len(session.calls) == 1
    assert "Authorization" not in session.calls[0]["headers"]
