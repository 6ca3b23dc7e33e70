from typing import Any, Dict, Iterator, List, Optional

import requests

from rag_chat.client.streaming import SSEBuffer
from rag_chat.logger import GLOBAL_LOGGER as log


class ApiError(Exception):
    def __init__(self, message: str, status_code: int = 0, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


def _error_from_response(r: requests.Response) -> ApiError:
    try:
        err = r.json().get("error") or {}
        return ApiError(err.get("message") or r.reason, r.status_code, err.get("code"))
    except ValueError:
        return ApiError(r.reason or "Request failed", r.status_code)


class ChatApiClient:
    """
    HTTP client for the chat backend, used by the Streamlit UI.
    Unwraps the {"success", "data"} envelope and raises ApiError on failures.
    """

    def __init__(self, base_url: str = "http://localhost:3001", timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = requests.Session()

    # -------------------------------------------------
    # plumbing
    # -------------------------------------------------
    def set_token(self, token: Optional[str]) -> None:
        if token:
            self.http.headers["Authorization"] = f"Bearer {token}"
        else:
            self.http.headers.pop("Authorization", None)

    def request(self, method: str, path: str, **kwargs) -> Any:
        try:
            r = self.http.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise ApiError(f"Backend connection error: {e}") from e
        if not r.ok:
            raise _error_from_response(r)
        if r.status_code == 204:
            return None
        return r.json().get("data")

    # -------------------------------------------------
    # auth
    # -------------------------------------------------
    def sign_up(self, email: str, password: str, name: Optional[str] = None) -> Dict:
        data = self.request(
            "POST", "/api/auth/sign-up/email", json={"email": email, "password": password, "name": name}
        )
        self.set_token(data["token"])
        return data

    def sign_in(self, email: str, password: str) -> Dict:
        data = self.request(
            "POST", "/api/auth/sign-in/email", json={"email": email, "password": password}
        )
        self.set_token(data["token"])
        return data

    def sign_out(self) -> None:
        self.request("POST", "/api/auth/sign-out")
        self.set_token(None)

    # -------------------------------------------------
    # conversations
    # -------------------------------------------------
    def get_conversations(self) -> List[Dict]:
        return self.request("GET", "/api/chat/conversations")

    def get_conversation(self, conversation_id: str) -> Dict:
        return self.request("GET", f"/api/chat/conversations/{conversation_id}")

    def create_conversation(self, title: Optional[str] = None, settings: Optional[Dict] = None) -> Dict:
        body: Dict[str, Any] = {}
        if title:
            body["title"] = title
        if settings:
            body["settings"] = settings
        return self.request("POST", "/api/chat/conversations", json=body)

    def delete_conversation(self, conversation_id: str) -> None:
        self.request("DELETE", f"/api/chat/conversations/{conversation_id}")

    def update_settings(self, conversation_id: str, settings: Dict) -> None:
        self.request("PATCH", f"/api/chat/conversations/{conversation_id}/settings", json=settings)

    def send_message(self, conversation_id: str, content: str) -> Dict:
        return self.request(
            "POST", f"/api/chat/conversations/{conversation_id}/messages", json={"content": content}
        )

    def quick_chat(self, content: str, **settings) -> Dict:
        return self.request("POST", "/api/chat/quick", json={"content": content, **settings})

    def stream_message(self, conversation_id: str, content: str) -> Iterator[Dict[str, Any]]:
        """
        POST to the streaming endpoint and yield SSE events as they arrive.
        """
        url = f"{self.base_url}/api/chat/conversations/{conversation_id}/messages/stream"
        try:
            r = self.http.post(url, json={"content": content}, stream=True, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ApiError(f"Backend connection error: {e}") from e

        with r:
            if not r.ok:
                raise _error_from_response(r)
            r.encoding = "utf-8"
            buffer = SSEBuffer()
            try:
                for text in r.iter_content(chunk_size=None, decode_unicode=True):
                    yield from buffer.feed(text)
            except requests.exceptions.RequestException as e:
                log.warning("Stream interrupted | conversation_id=%s | error=%s", conversation_id, e)
                raise ApiError(f"Stream interrupted: {e}") from e
            log.debug("Stream closed | conversation_id=%s", conversation_id)

    # -------------------------------------------------
    # documents
    # -------------------------------------------------
    def get_documents(self) -> List[Dict]:
        return self.request("GET", "/api/documents")

    def get_document_stats(self) -> Dict:
        return self.request("GET", "/api/documents/stats")

    def upload_document(
        self, filename: str, data: bytes, mime_type: str, title: Optional[str] = None
    ) -> Dict:
        form = {"title": title} if title else {}
        return self.request(
            "POST",
            "/api/documents/upload",
            files={"file": (filename, data, mime_type)},
            data=form,
        )

    def delete_document(self, document_id: str) -> None:
        self.request("DELETE", f"/api/documents/{document_id}")
