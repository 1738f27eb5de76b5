"""X-Request-ID handling across grading requests.

Every response carries the id, including 401s and 422 grading failures,
and log lines written while grading see the same id.
"""

from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from app.api.gradebook import SAMPLE_COURSE_ID
from app.middleware.request_context import request_id_var
from tests.conftest import auth

DUPLICATE_WEIGHTS = {
    "configs": [
        {"category": "quiz", "weight": 50},
        {"category": "quiz", "weight": 50},
    ]
}


class _RequestIdCapture(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.seen: list[tuple[str, str]] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.seen.append((record.getMessage(), request_id_var.get()))


@pytest.fixture
def gradebook_log():
    handler = _RequestIdCapture()
    log = logging.getLogger("app.api.gradebook")
    log.addHandler(handler)
    yield handler
    log.removeHandler(handler)


def test_request_id_generated_for_quiz_read(client: TestClient, token: str) -> None:
    resp = client.get("/v1/quizzes/python-basics", headers=auth(token))
    assert resp.status_code == 200
    uuid.UUID(resp.headers["x-request-id"])


def test_request_id_present_on_unauthenticated_request(client: TestClient) -> None:
    resp = client.get("/v1/quizzes/python-basics")
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_request_id_echoed_on_grading_failure(
    client: TestClient, instructor_token: str
) -> None:
    resp = client.put(
        f"/v1/gradebook/{SAMPLE_COURSE_ID}/config",
        json=DUPLICATE_WEIGHTS,
        headers={**auth(instructor_token), "X-Request-ID": "grade-req-42"},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"]["kind"] == "ConfigurationError"
    assert resp.headers["x-request-id"] == "grade-req-42"


def test_grading_failure_is_logged_under_the_request_id(
    client: TestClient, instructor_token: str, gradebook_log: _RequestIdCapture
) -> None:
    client.put(
        f"/v1/gradebook/{SAMPLE_COURSE_ID}/config",
        json=DUPLICATE_WEIGHTS,
        headers={**auth(instructor_token), "X-Request-ID": "grade-req-43"},
    )
    failures = [rid for msg, rid in gradebook_log.seen if "Grading failure" in msg]
    assert failures == ["grade-req-43"]
    # The id is scoped to the request.
    assert request_id_var.get() == "-"


def test_rejected_quiz_answers_carry_request_id(
    client: TestClient, token: str
) -> None:
    attempt = client.post(
        "/v1/quizzes/python-basics/attempts", headers=auth(token)
    ).json()
    resp = client.put(
        f"/v1/quizzes/python-basics/attempts/{attempt['id']}/answers",
        json={"answers": [{"question_id": "q-types", "selected_option_ids": ["x"]}]},
        headers={**auth(token), "X-Request-ID": "save-req-7"},
    )
    assert resp.status_code == 422
    assert resp.headers["x-request-id"] == "save-req-7"
