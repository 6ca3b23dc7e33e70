from unittest.mock import AsyncMock, Mock, patch

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.runnables import RunnableLambda

from api.auth import require_auth
from api.routers.chat import get_completion_service
from rag_chat.client.streaming import SSEBuffer, StreamingReply
from rag_chat.exception.custom_exception import ERROR_CODES, RagChatException
from rag_chat.src.document_chat.completion import CompletionService

CONVERSATION_ID = "0b7e4a52-5d0c-4c1c-9f3e-2f4f8a8d1c11"
BASE = "/api/chat/conversations"


def _provider_down(_):
    raise RuntimeError("provider down")


@pytest.fixture
def retrieval(make_source):
    r = Mock()
    r.search = AsyncMock(return_value=[make_source()])
    return r


@pytest.fixture
def completion(app, retrieval):
    service = CompletionService(
        retrieval=retrieval, llm=FakeListChatModel(responses=["Paris."])
    )
    app.dependency_overrides[get_completion_service] = lambda: service
    return service


@pytest.fixture
def repo(make_conversation, make_message):
    repo = Mock()
    repo.get_conversations = AsyncMock(return_value=[])
    repo.get_conversation = AsyncMock(
        return_value=make_conversation(
            messages=[
                make_message("user", "hi", id="m1"),
                make_message("assistant", "hello", id="m2"),
            ]
        )
    )
    repo.create_conversation = AsyncMock(return_value=make_conversation())
    repo.update_conversation_settings = AsyncMock(return_value=1)
    repo.delete_conversation = AsyncMock(return_value=1)

    async def add_message(db, conversation_id, role, content, sources=None):
        return make_message(role, content, sources, id=f"{role}-msg")

    repo.add_message = AsyncMock(side_effect=add_message)
    with patch("api.routers.chat.ChatRepository", return_value=repo):
        yield repo


@pytest.fixture
def stream_db():
    session = AsyncMock()
    with patch("api.routers.chat.AsyncSessionLocal", return_value=session):
        yield session


class TestConversations:
    def test_list_includes_latest_message_only(self, client, repo, make_conversation, make_message):
        repo.get_conversations.return_value = [
            (make_conversation(), make_message("assistant", "latest")),
            (make_conversation(id="c2"), None),
        ]

        r = client.get(BASE)

        assert r.status_code == 200
        data = r.json()["data"]
        assert [len(c["messages"]) for c in data] == [1, 0]
        assert data[0]["messages"][0]["content"] == "latest"

    def test_create_returns_201(self, client, repo):
        r = client.post(BASE, json={"title": "Research"})

        assert r.status_code == 201
        assert r.json()["success"] is True
        assert repo.create_conversation.await_args.kwargs["title"] == "Research"

    def test_create_stores_camel_case_settings(self, client, repo):
        client.post(BASE, json={"settings": {"topK": 3, "threshold": 0.5}})

        assert repo.create_conversation.await_args.kwargs["settings"] == {
            "topK": 3,
            "threshold": 0.5,
        }

    def test_get_unknown_conversation_is_404(self, client, repo):
        repo.get_conversation.return_value = None

        r = client.get(f"{BASE}/{CONVERSATION_ID}")

        assert r.status_code == 404
        assert r.json() == {
            "success": False,
            "error": {
                "message": "Conversation not found",
                "code": ERROR_CODES["CONVERSATION_NOT_FOUND"],
            },
        }

    def test_get_is_scoped_to_user(self, client, repo, fake_user):
        client.get(f"{BASE}/{CONVERSATION_ID}")
        repo.get_conversation.assert_awaited_once()
        assert repo.get_conversation.await_args.args[1:] == (CONVERSATION_ID, fake_user.id)

    def test_malformed_id_is_validation_error(self, client, repo):
        r = client.get(f"{BASE}/not-a-uuid")
        assert r.status_code == 400
        assert r.json()["error"]["code"] == ERROR_CODES["VALIDATION_ERROR"]

    def test_delete(self, client, repo):
        r = client.delete(f"{BASE}/{CONVERSATION_ID}")
        assert r.status_code == 200
        repo.delete_conversation.assert_awaited_once()

    def test_update_settings(self, client, repo):
        r = client.patch(f"{BASE}/{CONVERSATION_ID}/settings", json={"topK": 8, "threshold": 0.3})

        assert r.status_code == 200
        assert repo.update_conversation_settings.await_args.args[3] == {"topK": 8, "threshold": 0.3}

    def test_update_settings_out_of_range(self, client, repo):
        r = client.patch(f"{BASE}/{CONVERSATION_ID}/settings", json={"topK": 50})
        assert r.status_code == 400

    def test_update_settings_unknown_conversation(self, client, repo):
        repo.update_conversation_settings.return_value = 0
        r = client.patch(f"{BASE}/{CONVERSATION_ID}/settings", json={"topK": 2})
        assert r.status_code == 404


class TestSendMessage:
    def test_answer_and_both_messages_persisted(self, client, repo, completion, retrieval):
        r = client.post(f"{BASE}/{CONVERSATION_ID}/messages", json={"content": "Capital?"})

        assert r.status_code == 200
        data = r.json()["data"]
        assert data["userMessage"]["content"] == "Capital?"
        assert data["assistantMessage"]["content"] == "Paris."
        assert data["sources"][0]["documentId"]
        roles = [c.args[2] for c in repo.add_message.await_args_list]
        assert roles == ["user", "assistant"]

    def test_conversation_settings_drive_retrieval(self, client, repo, completion, retrieval, make_conversation):
        doc_id = "6a1f2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"
        repo.get_conversation.return_value = make_conversation(
            settings={"topK": 2, "threshold": 0.4, "documentIds": [doc_id]}
        )

        client.post(f"{BASE}/{CONVERSATION_ID}/messages", json={"content": "Capital?"})

        kwargs = retrieval.search.await_args.kwargs
        assert (kwargs["top_k"], kwargs["threshold"], kwargs["document_ids"]) == (2, 0.4, [doc_id])

    def test_empty_message_rejected(self, client, repo, completion):
        r = client.post(f"{BASE}/{CONVERSATION_ID}/messages", json={"content": ""})
        assert r.status_code == 400
        repo.add_message.assert_not_awaited()

    def test_completion_failure(self, client, repo, completion):
        completion._llm = RunnableLambda(_provider_down)

        r = client.post(f"{BASE}/{CONVERSATION_ID}/messages", json={"content": "Capital?"})

        assert r.status_code == 500
        assert r.json()["error"]["code"] == ERROR_CODES["OPENAI_ERROR"]


class TestStreamMessage:
    def _read(self, response):
        reply = StreamingReply()
        reply.start()
        buffer = SSEBuffer()
        events = []
        for text in response.iter_text():
            events.extend(buffer.feed(text))
        for event in events:
            reply.apply(event)
        return events, reply

    def test_stream_events_and_persisted_answer(self, client, repo, completion, stream_db):
        with client.stream(
            "POST", f"{BASE}/{CONVERSATION_ID}/messages/stream", json={"content": "Capital?"}
        ) as r:
            assert r.status_code == 200
            assert r.headers["content-type"].startswith("text/event-stream")
            events, reply = self._read(r)

        assert [e["type"] for e in events][0] == "sources"
        assert reply.state == "done"
        assert reply.content == "Paris."
        assert reply.message_id == "assistant-msg"

        user_call, assistant_call = repo.add_message.await_args_list
        assert user_call.args[2:4] == ("user", "Capital?")
        assert assistant_call.args[0] is stream_db
        assert assistant_call.args[2:4] == ("assistant", "Paris.")
        assert assistant_call.args[4][0]["documentId"]
        stream_db.close.assert_awaited()

    def test_history_excludes_new_message(self, client, repo, completion, stream_db):
        captured = {}
        original = completion._inputs

        def spy(user_message, history, sources):
            captured["history"] = history
            return original(user_message, history, sources)

        completion._inputs = spy
        with client.stream(
            "POST", f"{BASE}/{CONVERSATION_ID}/messages/stream", json={"content": "Capital?"}
        ) as r:
            self._read(r)

        assert captured["history"] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_retrieval_failure_before_stream_is_http_error(
        self, client, repo, completion, retrieval, stream_db
    ):
        retrieval.search.side_effect = RagChatException(
            "Embedding request failed", 500, ERROR_CODES["EMBEDDING_ERROR"]
        )

        r = client.post(f"{BASE}/{CONVERSATION_ID}/messages/stream", json={"content": "Capital?"})

        assert r.status_code == 500
        assert r.json()["error"]["code"] == ERROR_CODES["EMBEDDING_ERROR"]
        stream_db.close.assert_awaited()

    def test_model_failure_mid_stream_is_error_event(self, client, repo, completion, stream_db):
        completion._llm = RunnableLambda(_provider_down)

        with client.stream(
            "POST", f"{BASE}/{CONVERSATION_ID}/messages/stream", json={"content": "Capital?"}
        ) as r:
            events, reply = self._read(r)

        assert events[-1]["type"] == "error"
        assert reply.state == "error"
        assert reply.error == "Chat completion failed"
        # only the user message was saved
        assert len(repo.add_message.await_args_list) == 1

    def test_unknown_conversation_is_404(self, client, repo, completion, stream_db):
        repo.get_conversation.return_value = None

        r = client.post(f"{BASE}/{CONVERSATION_ID}/messages/stream", json={"content": "x"})

        assert r.status_code == 404


class TestQuickChat:
    def test_quick_uses_defaults_and_persists_nothing(self, client, repo, completion, retrieval):
        r = client.post("/api/chat/quick", json={"content": "Capital?"})

        assert r.status_code == 200
        assert r.json()["data"]["content"] == "Paris."
        kwargs = retrieval.search.await_args.kwargs
        assert (kwargs["top_k"], kwargs["threshold"]) == (5, 0.7)
        repo.add_message.assert_not_awaited()

    def test_quick_overrides(self, client, completion, retrieval):
        client.post("/api/chat/quick", json={"content": "Capital?", "topK": 9, "threshold": 0.1})

        kwargs = retrieval.search.await_args.kwargs
        assert (kwargs["top_k"], kwargs["threshold"]) == (9, 0.1)


def test_routes_require_auth(app, client):
    del app.dependency_overrides[require_auth]

    r = client.get(BASE)

    assert r.status_code == 401
    assert r.json()["error"]["code"] == ERROR_CODES["UNAUTHORIZED"]
