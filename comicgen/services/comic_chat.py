"""One chat conversation with the comic agent, as a web page or CLI would hold it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from comicgen.core.settings import settings
from comicgen.schemas.comic import Panel
from comicgen.schemas.events import generate_comic_id, generate_session_id, generate_user_id
from comicgen.services.agent_client import AgentClient
from comicgen.services.media_upload import upload_panel_media
from comicgen.services.reconcile import extract_panels, final_response
from comicgen.services.storage import BucketStore

logger = logging.getLogger(__name__)


def fallback_reply(backend_url: str | None = None) -> str:
    url = backend_url or settings.agent_backend_url
    return f"Sorry, I encountered an error. Please make sure the agent backend is running on {url}."


@dataclass
class ChatMessage:
    role: str
    content: str


@dataclass
class ChatTurn:
    reply: str
    error: bool = False
    title: str = ""
    panels: list[Panel] = field(default_factory=list)
    comic_id: str | None = None


class ComicChatSession:
    def __init__(
        self,
        client: AgentClient,
        store: BucketStore,
        user_id: str | None = None,
        session_id: str | None = None,
        account_id: str | None = None,
        media_http: httpx.AsyncClient | None = None,
    ):
        self.client = client
        self.store = store
        self.user_id = user_id or generate_user_id()
        self.session_id = session_id or generate_session_id()
        # Set only for signed-in users; anonymous comics are never persisted.
        self.account_id = account_id
        self.media_http = media_http or client.http
        self.session_created = False
        self.messages: list[ChatMessage] = []
        self.panels: list[Panel] = []
        self.title = ""

    async def send_message(self, message: str) -> ChatTurn:
        self.messages.append(ChatMessage(role="user", content=message))
        try:
            turn = await self._send(message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("chat_turn_failed session_id=%s error=%s", self.session_id, exc)
            turn = ChatTurn(reply=fallback_reply(), error=True, title=self.title, panels=self.panels)
        if turn.reply:
            self.messages.append(ChatMessage(role="assistant", content=turn.reply))
        return turn

    async def _send(self, message: str) -> ChatTurn:
        if not self.session_created:
            await self.client.create_session(self.user_id, self.session_id)
            self.session_created = True

        events = await self.client.run(message, self.user_id, self.session_id)
        reply = final_response(events)

        comic = extract_panels(events)
        comic_id = None
        if comic.panels:
            if comic.title:
                self.title = comic.title
            self.panels = comic.panels
            if self.account_id is not None:
                comic_id = generate_comic_id()
                self.panels = await upload_panel_media(
                    self.panels,
                    comic_id,
                    self.account_id,
                    self.store,
                    self.media_http,
                )

        return ChatTurn(reply=reply, title=self.title, panels=self.panels, comic_id=comic_id)

    def new_chat(self) -> None:
        self.messages = []
        self.panels = []
        self.title = ""
        self.session_id = generate_session_id()
        self.session_created = False
