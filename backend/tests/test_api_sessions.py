"""HTTP-level tests for the session, entitlement and proctoring routes."""

from tests.conftest import new_user_id

INTERNAL = {"X-Internal-Token": "test-internal-token"}


def _headers(user_id):
    return {"X-User-Id": user_id}


def _create(client, user_id, **body):
    payload = {"kind": "skills_test", "category": "technical", "difficulty": "easy", "question_count": 3, "seed": 21}
    payload.update(body)
    return client.post("/api/v1/sessions", json=payload, headers=_headers(user_id))


def _answer_payload(question):
    if question["question_type"] == "coding":
        return {"question_id": question["id"], "code": "def solve(x):\n    return x\n", "time_spent_seconds": 30}
    return {"question_id": question["id"], "answer_text": "42", "time_spent_seconds": 10}


# ---------------------------------------------------------------------------
# Identity and validation
# ---------------------------------------------------------------------------

def test_missing_identity_is_unauthorized(client):
    resp = client.post("/api/v1/sessions", json={"kind": "skills_test"})
    assert resp.status_code == 401


def test_invalid_create_payload_is_rejected(client):
    resp = _create(client, new_user_id(), language="java")
    assert resp.status_code == 422
    resp = _create(client, new_user_id(), question_count=50)
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

def test_create_session_hides_answer_keys(client):
    resp = _create(client, new_user_id())
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["status"] == "in_progress"
    assert body["question_count"] == 3
    assert 0 < body["time_remaining_seconds"] <= 1800
    assert "result" not in body
    for q in body["questions"]:
        assert "correct_answer" not in q
        assert "test_cases" not in q
        assert "sample_answer" not in q
        for example in q.get("examples", []):
            assert "expected" not in example


def test_session_is_invisible_to_other_users(client):
    session_id = _create(client, new_user_id()).json()["id"]
    resp = client.get(f"/api/v1/sessions/{session_id}", headers=_headers(new_user_id()))
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "session_not_found"


def test_full_flow_answers_complete_and_reveal(client):
    user_id = new_user_id()
    body = _create(client, user_id).json()
    session_id = body["id"]

    for q in body["questions"]:
        resp = client.post(f"/api/v1/sessions/{session_id}/answers", json=_answer_payload(q), headers=_headers(user_id))
        assert resp.status_code == 200, resp.text
        assert resp.json()["accepted"] is True
        assert resp.json()["scored"] is True

    first_q = body["questions"][0]
    resp = client.get(f"/api/v1/sessions/{session_id}/questions/{first_q['id']}", headers=_headers(user_id))
    assert resp.status_code == 200
    assert resp.json()["answered"] is True
    assert resp.json()["sub_score"] is not None

    resp = client.post(f"/api/v1/sessions/{session_id}/complete", headers=_headers(user_id))
    assert resp.status_code == 200, resp.text
    result = resp.json()
    assert result["status"] == "completed"
    assert 0 <= result["overall_score"] <= 100
    assert len(result["questions"]) == 3

    again = client.post(f"/api/v1/sessions/{session_id}/complete", headers=_headers(user_id))
    assert again.json() == result

    detail = client.get(f"/api/v1/sessions/{session_id}", headers=_headers(user_id)).json()
    assert detail["status"] == "completed"
    assert detail["result"]["overall_score"] == result["overall_score"]
    assert all("correct_answer" in q for q in detail["questions"])

    stats = client.get("/api/v1/entitlements/me", headers=_headers(user_id)).json()
    assert stats["sessions_scored"] == 1


def test_answer_requires_content(client):
    user_id = new_user_id()
    body = _create(client, user_id).json()
    resp = client.post(
        f"/api/v1/sessions/{body['id']}/answers",
        json={"question_id": body["questions"][0]["id"]},
        headers=_headers(user_id),
    )
    assert resp.status_code == 422


def test_incomplete_session_needs_final_submission(client):
    user_id = new_user_id()
    session_id = _create(client, user_id).json()["id"]

    resp = client.post(f"/api/v1/sessions/{session_id}/complete", headers=_headers(user_id))
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "session_incomplete"
    assert resp.json()["error"]["unanswered"] == [1, 2, 3]

    resp = client.post(
        f"/api/v1/sessions/{session_id}/complete",
        json={"final_submission": True},
        headers=_headers(user_id),
    )
    assert resp.status_code == 200
    assert resp.json()["overall_score"] == 0


def test_violations_terminate_session(client):
    user_id = new_user_id()
    body = _create(client, user_id).json()
    session_id = body["id"]

    for i in range(5):
        resp = client.post(
            f"/api/v1/sessions/{session_id}/violations",
            json={"violation_type": "tab_switch"},
            headers=_headers(user_id),
        )
        assert resp.status_code == 200
    assert resp.json()["terminated"] is True

    resp = client.post(
        f"/api/v1/sessions/{session_id}/answers",
        json=_answer_payload(body["questions"][0]),
        headers=_headers(user_id),
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "session_terminated"
    assert resp.json()["error"]["status"] == "terminated_for_integrity"


def test_unknown_violation_type_is_rejected(client):
    user_id = new_user_id()
    session_id = _create(client, user_id).json()["id"]
    resp = client.post(
        f"/api/v1/sessions/{session_id}/violations",
        json={"violation_type": "window_resize"},
        headers=_headers(user_id),
    )
    assert resp.status_code == 422


def test_time_list_and_cancel(client):
    user_id = new_user_id()
    session_id = _create(client, user_id, duration_seconds=600).json()["id"]

    timer = client.get(f"/api/v1/sessions/{session_id}/time", headers=_headers(user_id)).json()
    assert timer["status"] == "in_progress"
    assert 0 < timer["time_remaining_seconds"] <= 600
    assert timer["deadline"] is not None

    listed = client.get("/api/v1/sessions", headers=_headers(user_id)).json()
    assert [s["id"] for s in listed] == [session_id]
    assert "questions" not in listed[0]

    resp = client.post(f"/api/v1/sessions/{session_id}/cancel", headers=_headers(user_id))
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["overall_score"] is None


def test_second_live_session_conflicts(client):
    user_id = new_user_id()
    first = _create(client, user_id).json()
    resp = _create(client, user_id)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "active_session_exists"
    assert resp.json()["error"]["session_id"] == first["id"]


def test_session_creation_is_rate_limited_per_user(client):
    user_id = new_user_id()
    statuses = [_create(client, user_id).status_code for _ in range(11)]
    assert statuses[0] == 201
    assert statuses[1:10] == [409] * 9
    assert statuses[10] == 429
    # Another caller has its own bucket.
    assert _create(client, new_user_id()).status_code == 201


# ---------------------------------------------------------------------------
# Entitlements
# ---------------------------------------------------------------------------

def test_exhausted_entitlement_requires_payment(client):
    user_id = new_user_id()
    first = _create(client, user_id, kind="mock_interview", category="behavioral").json()
    client.post(f"/api/v1/sessions/{first['id']}/cancel", headers=_headers(user_id))

    resp = _create(client, user_id, kind="mock_interview", category="behavioral")
    assert resp.status_code == 402
    assert resp.json()["error"]["code"] == "entitlement_exhausted"
    assert resp.json()["error"]["requires_payment"] is True


def test_credit_grant_requires_internal_token(client):
    resp = client.post(
        f"/api/v1/entitlements/{new_user_id()}/credits",
        json={"count": 1, "payment_verified": True, "idempotency_key": "pay-1"},
    )
    assert resp.status_code == 403


def test_credit_grant_is_idempotent_and_unlocks_sessions(client):
    user_id = new_user_id()
    first = _create(client, user_id, kind="mock_interview", category="behavioral").json()
    client.post(f"/api/v1/sessions/{first['id']}/cancel", headers=_headers(user_id))

    grant = {"count": 2, "payment_verified": True, "idempotency_key": "pay-abc", "metadata": {"provider": "test"}}
    resp = client.post(f"/api/v1/entitlements/{user_id}/credits", json=grant, headers=INTERNAL)
    assert resp.status_code == 200, resp.text
    assert resp.json()["created"] is True
    assert resp.json()["credits_balance"] == 2

    resp = client.post(f"/api/v1/entitlements/{user_id}/credits", json=grant, headers=INTERNAL)
    assert resp.json()["created"] is False
    assert resp.json()["credits_balance"] == 2

    resp = _create(client, user_id, kind="mock_interview", category="behavioral")
    assert resp.status_code == 201
    me = client.get("/api/v1/entitlements/me", headers=_headers(user_id)).json()
    assert me["credits_balance"] == 1
    assert me["free_remaining"]["mock_interview"] == 0


def test_unverified_payment_is_rejected(client):
    resp = client.post(
        f"/api/v1/entitlements/{new_user_id()}/credits",
        json={"count": 1, "payment_verified": False, "idempotency_key": "pay-2"},
        headers=INTERNAL,
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "payment_not_verified"


# ---------------------------------------------------------------------------
# Ambient endpoints
# ---------------------------------------------------------------------------

def test_proctoring_policy(client):
    body = client.get("/api/v1/proctoring/policy").json()
    assert body["violation_threshold"] == 5
    assert "tab_switch" in body["reportable_violations"]
    assert "Ctrl+V" in body["blocked_shortcuts"]


def test_health_reports_service(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["service"] == "assessment-engine"
    assert body["integrations"]["code_execution_backend"] == "subprocess"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
