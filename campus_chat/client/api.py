"""
Chatbot REST API

Request/response fallback for the chatbot when a websocket is not wanted:
``POST /api/chatbot/message`` with a bearer token.
"""

import logging
from typing import Any, Callable, Dict, Optional

import requests

from campus_chat.shared.constants import CHAT_REST_PATH, DEFAULT_REQUEST_TIMEOUT
from campus_chat.shared.exceptions import ApiError, AuthenticationError, CampusChatError
from campus_chat.shared.models import ChatEvent, ConnectionState, Sender


logger = logging.getLogger(__name__)


class ChatbotApi:
    """Thin ``requests`` client for the chatbot REST endpoint."""

    def __init__(self,
                 base_url: str,
                 token: Optional[str] = None,
                 timeout: float = DEFAULT_REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None) -> None:
        """
        Initialize the API client.

        Args:
            base_url: REST API base URL, e.g. ``http://localhost:8000``.
            token: Bearer token.
            timeout: Request timeout in seconds.
            session: Optional pre-configured ``requests`` session.
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session or requests.Session()

    def send_message(self, message: str) -> ChatEvent:
        """
        Ask the chatbot a question and wait for the full answer.

        Args:
            message: Question text.

        Returns:
            The assistant's reply.

        Raises:
            AuthenticationError: If no token is set or the token is rejected.
            ApiError: For transport failures or unexpected responses.
        """
        if not self.token:
            raise AuthenticationError("Not logged in", token_present=False)

        data = self._post(CHAT_REST_PATH, {"message": message})
        response = data.get("response")
        if not isinstance(response, str):
            raise ApiError("Chatbot response missing 'response' field")

        related = data.get("related_questions")
        return ChatEvent(
            content=response,
            sender=Sender.ASSISTANT,
            source=data.get("source") if isinstance(data.get("source"), str) else None,
            related_questions=[str(q) for q in related] if isinstance(related, list) else None,
        )

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        headers = {"Authorization": f"Bearer {self.token}"}

        try:
            response = self._session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise ApiError(f"Request to {url} timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise ApiError(f"Request to {url} failed: {e}")

        if response.status_code in (401, 403):
            raise AuthenticationError(f"Chatbot API rejected token ({response.status_code})")

        if response.status_code != 200:
            logger.error(f"Chatbot API returned {response.status_code}: {response.text[:200]}")
            raise ApiError(
                f"Chatbot API returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ApiError(f"Chatbot API returned invalid JSON: {e}", status_code=response.status_code)

        if not isinstance(data, dict):
            raise ApiError("Chatbot API returned a non-object body", status_code=response.status_code)
        return data


class RestChatSender:
    """
    Delivers chat messages over the REST endpoint with the same callback
    contract as the websocket session, for backends without websocket support.
    """

    def __init__(self,
                 api: ChatbotApi,
                 on_message: Optional[Callable[[ChatEvent], None]] = None,
                 on_error: Optional[Callable[[str], None]] = None) -> None:
        self.api = api
        self.on_message = on_message
        self.on_error = on_error

    @property
    def is_connected(self) -> bool:
        return bool(self.api.token)

    @property
    def has_token(self) -> bool:
        return bool(self.api.token)

    @property
    def state(self) -> ConnectionState:
        """Each request stands alone, so holding a token counts as connected."""
        return ConnectionState.CONNECTED if self.api.token else ConnectionState.DISCONNECTED

    def update_callbacks(self,
                         on_message: Optional[Callable[[ChatEvent], None]] = None,
                         on_error: Optional[Callable[[str], None]] = None) -> None:
        self.on_message = on_message
        self.on_error = on_error

    def update_token(self, token: Optional[str]) -> None:
        self.api.token = token

    def send_message(self, text: str) -> bool:
        """Ask the chatbot and deliver the reply through ``on_message``."""
        if not self.is_connected:
            return False

        try:
            reply = self.api.send_message(text)
        except CampusChatError as e:
            logger.warning(f"REST chat request failed: {e}")
            if self.on_error:
                self.on_error(str(e))
            return True

        if reply.content and self.on_message:
            self.on_message(reply)
        return True

    def reconnect(self) -> None:
        """Nothing to reconnect; each request opens its own connection."""

    def close(self) -> None:
        self.api.close()
