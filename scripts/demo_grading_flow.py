"""Demo: take the sample quiz, grade a late assignment, export the gradebook.

Run with:
    python scripts/demo_grading_flow.py
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from app.main import app
from app.services import token_service

COURSE = "intro-to-python"
QUIZ = "python-basics"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def main() -> None:
    client = TestClient(app)

    student = token_service.create_access_token(sub="demo-student", name="Doe, Jane")
    instructor = token_service.create_access_token(
        sub="demo-instructor", roles=["instructor"]
    )

    # ── Step 1: read the quiz ───────────────────────────────────────
    r = client.get(f"/v1/quizzes/{QUIZ}", headers=_bearer(student))
    quiz = r.json()
    print(
        f"1. GET  /v1/quizzes/{QUIZ}        → {r.status_code}  "
        f"{len(quiz['questions'])} questions, pass at {quiz['passing_score']}%"
    )

    # ── Step 2: start an attempt ────────────────────────────────────
    r = client.post(f"/v1/quizzes/{QUIZ}/attempts", headers=_bearer(student))
    attempt_id = r.json()["id"]
    print(f"2. POST .../attempts     → {r.status_code}  id={attempt_id[:8]}…")

    # ── Step 3: save one answer, submit the other ───────────────────
    r = client.put(
        f"/v1/quizzes/{QUIZ}/attempts/{attempt_id}/answers",
        json={
            "answers": [
                {"question_id": "q-types", "selected_option_ids": ["q-types-tuple"]}
            ]
        },
        headers=_bearer(student),
    )
    print(f"3. PUT  .../answers                → {r.status_code}  (progress saved)")

    r = client.post(
        f"/v1/quizzes/{QUIZ}/attempts/{attempt_id}/submit",
        json={
            "answers": [
                {"question_id": "q-falsy", "selected_option_ids": ["q-falsy-zero"]}
            ]
        },
        headers=_bearer(student),
    )
    result = r.json()
    print(
        f"4. POST .../submit                 → {r.status_code}  "
        f"score={result['score']}/{result['max_score']}  passed={result['passed']}"
    )

    # ── Step 5: record a late assignment ────────────────────────────
    r = client.post(
        f"/v1/gradebook/{COURSE}/assignments",
        json={
            "student_id": "demo-student",
            "label": "Homework 1",
            "raw_score": 90,
            "max_score": 100,
            "submitted_at": "2024-01-12T00:00:00Z",
            "due_at": "2024-01-10T00:00:00Z",
            "percent_per_day": 0.1,
        },
        headers=_bearer(instructor),
    )
    item = r.json()
    print(
        f"5. POST /v1/gradebook/.../assignments → {r.status_code}  "
        f"raw={item['raw_score']} adjusted={item['adjusted_score']}"
    )

    # ── Step 6: student view ────────────────────────────────────────
    r = client.get(f"/v1/gradebook/{COURSE}/me", headers=_bearer(student))
    me = r.json()
    print(
        f"6. GET  /v1/gradebook/.../me       → {r.status_code}  "
        f"overall={me['overall_percentage']:.2f} letter={me['letter_grade']}"
    )

    # ── Step 7: CSV export ──────────────────────────────────────────
    r = client.get(f"/v1/gradebook/{COURSE}/export", headers=_bearer(instructor))
    print(f"7. GET  /v1/gradebook/.../export   → {r.status_code}\n")
    print(r.text)

    print("All steps completed.")


if __name__ == "__main__":
    main()
