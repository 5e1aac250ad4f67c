"""
API tests for `api/chat.py` and `api/analysis.py` using FastAPI's TestClient.

Covers:
- POST /api/chat for general chat, the analysis path, fallback on model failure, empty input and
  follow-up turns (server transcript or a client "messages" list)
- POST /api/analyze success, partial failure, and 400 on missing code / invalid aspects
- GET and POST /api/analysis history round trip, score normalization and the 400/500 error mapping

The app is built with `create_app()` around an in-memory session store and a `ScriptedGateway`, so
no model endpoint or file is touched. The retention scheduler is disabled.
"""

from fastapi.testclient import TestClient

from conftest import FailingBackend, ScriptedGateway, model_payload
from main import create_app
from services.persistence import InMemorySnapshotBackend
from services.session_store import SessionStore
from shared.errors import ModelError

LOGIN_CODE = "function login(u,p){ return db.query(\"SELECT * FROM users WHERE u='\"+u+\"'\"); }"

gateway = ScriptedGateway({
    "security": model_payload(score=25, findings=[{
        "severity": "critical",
        "issue": "SQL injection through string concatenation",
        "line": 1,
        "suggestion": "Use parameterized queries",
    }]),
    "performance": model_payload(score=85),
    "quality": ModelError("quality model timed out"),
    "chat": "Happy to help with your code!",
})
store = SessionStore(InMemorySnapshotBackend())
app = create_app(store=store, primary_gateway=gateway, enable_scheduler=False)

client = TestClient(app)


def test_chat_general_message():
    response = client.post("/api/chat", json={"message": "hello there", "sessionId": "chat-1"})

    assert response.status_code == 200
    body = response.json()
    assert body == {
        "message": "Happy to help with your code!",
        "type": "text",
        "sessionId": "chat-1",
        "isAnalysis": False,
    }


def test_chat_code_message_returns_report():
    response = client.post(
        "/api/chat",
        json={"message": f"Please check this:\n```js\n{LOGIN_CODE}\n```", "sessionId": "chat-2"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["isAnalysis"] is True
    assert body["type"] == "analysis"
    assert "SQL injection" in body["message"]
    assert body["report"]["sessionId"] == "chat-2"


def test_chat_without_session_uses_default():
    response = client.post("/api/chat", json={"message": "hello there"})

    assert response.json()["sessionId"] == "default-session"


def test_chat_empty_message_is_rejected():
    response = client.post("/api/chat", json={"message": "   "})

    assert response.status_code == 400
    assert "error" in response.json()


def test_chat_model_failure_returns_fallback():
    failing_app = create_app(
        store=SessionStore(InMemorySnapshotBackend()),
        primary_gateway=ScriptedGateway({"chat": ModelError("down")}),
        enable_scheduler=False,
    )

    response = TestClient(failing_app).post("/api/chat", json={"message": "hello there"})

    assert response.status_code == 200
    assert response.json()["type"] == "error"
    assert response.json()["message"] == "I'm having trouble processing your request. Please try again."


def test_chat_follow_up_carries_earlier_turns():
    chat_gateway = ScriptedGateway({"chat": "Nice to meet you, Ada."})
    chat_client = TestClient(create_app(
        store=SessionStore(InMemorySnapshotBackend()),
        primary_gateway=chat_gateway,
        enable_scheduler=False,
    ))

    chat_client.post("/api/chat", json={"message": "My name is Ada.", "sessionId": "ada"})
    chat_client.post("/api/chat", json={"message": "What is my name?", "sessionId": "ada"})

    assert chat_gateway.calls[-1]["user_prompt"] == "What is my name?"
    assert chat_gateway.calls[-1]["history"] == [
        {"role": "user", "content": "My name is Ada."},
        {"role": "assistant", "content": "Nice to meet you, Ada."},
    ]


def test_chat_messages_list_answers_last_user_turn():
    chat_gateway = ScriptedGateway({"chat": "Your name is Ada."})
    chat_client = TestClient(create_app(
        store=SessionStore(InMemorySnapshotBackend()),
        primary_gateway=chat_gateway,
        enable_scheduler=False,
    ))

    response = chat_client.post("/api/chat", json={
        "sessionId": "ada-2",
        "messages": [
            {"role": "user", "content": "My name is Ada."},
            {"role": "assistant", "content": "Nice to meet you, Ada."},
            {"role": "user", "content": "What is my name?"},
        ],
    })

    assert response.status_code == 200
    assert response.json()["message"] == "Your name is Ada."
    call = chat_gateway.calls[-1]
    assert call["user_prompt"] == "What is my name?"
    assert [turn["role"] for turn in call["history"]] == ["user", "assistant"]


def test_chat_messages_without_user_turn_is_rejected():
    response = client.post("/api/chat", json={"messages": [{"role": "assistant", "content": "Hi"}]})

    assert response.status_code == 400


def test_analyze_returns_report_with_partial_failure():
    response = client.post("/api/analyze", json={
        "code": LOGIN_CODE,
        "language": "javascript",
        "sessionId": "analyze-1",
    })

    assert response.status_code == 200
    report = response.json()
    result = report["result"]
    assert result["securityIssues"][0]["severity"] == "critical"
    assert result["qualityIssues"][0]["issue"] == "Quality analysis failed: quality model timed out"
    # Mean of the succeeded aspects only: (25 + 85) / 2
    assert result["overallScore"] == 55
    assert report["totalIssues"] == 2
    assert report["criticalIssues"] == 1
    assert report["analysisId"]
    assert report["recommendations"]


def test_analyze_selected_aspects_only():
    response = client.post("/api/analyze", json={"code": LOGIN_CODE, "aspects": ["security"]})

    assert response.status_code == 200
    result = response.json()["result"]
    assert result["performanceIssues"] == []
    assert result["qualityIssues"] == []
    assert result["overallScore"] < 100


def test_analyze_missing_code_is_rejected():
    response = client.post("/api/analyze", json={"aspects": ["security"]})

    assert response.status_code == 400
    assert "error" in response.json()


def test_analyze_invalid_aspects_are_rejected():
    assert client.post("/api/analyze", json={"code": "x = 1", "aspects": []}).status_code == 400
    assert client.post("/api/analyze", json={"code": "x = 1", "aspects": ["style"]}).status_code == 400


def test_analyze_writes_through_to_history():
    client.post("/api/analyze", json={"code": LOGIN_CODE, "aspects": ["security"], "sessionId": "history-1"})

    response = client.get("/api/analysis", params={"session_id": "history-1"})

    assert response.status_code == 200
    history = response.json()
    assert len(history) == 1
    assert history[0]["overallScore"] == 25


def test_post_analysis_normalizes_score():
    payload = {"securityIssues": [], "performanceIssues": [], "qualityIssues": [], "overallScore": 150}

    response = client.post("/api/analysis", params={"session_id": "manual-1"}, json=payload)

    assert response.status_code == 200
    assert response.json() == {"success": True}
    history = client.get("/api/analysis", params={"session_id": "manual-1"}).json()
    assert history[-1]["overallScore"] == 50


def test_post_analysis_without_session_is_rejected():
    response = client.post("/api/analysis", json={"overallScore": 70})

    assert response.status_code == 400


def test_post_analysis_without_body_is_rejected():
    response = client.post("/api/analysis", params={"session_id": "manual-2"})

    assert response.status_code == 400


def test_post_analysis_storage_failure_maps_to_500():
    broken_app = create_app(
        store=SessionStore(FailingBackend()),
        primary_gateway=ScriptedGateway(),
        enable_scheduler=False,
    )

    response = TestClient(broken_app).post(
        "/api/analysis", params={"session_id": "s-1"}, json={"overallScore": 70},
    )

    assert response.status_code == 500
    assert "error" in response.json()


def test_get_analysis_unknown_session_is_empty():
    response = client.get("/api/analysis", params={"session_id": "nobody", "limit": 5})

    assert response.status_code == 200
    assert response.json() == []
