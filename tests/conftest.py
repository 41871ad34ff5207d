"""
Shared fixtures. Run with: pytest tests/
"""
from typing import Dict, List, Optional
import pytest

from octto.application.websocket.schema.events import ResponseMessage
from octto.domain.session.session_coordinator import SessionCoordinator
from octto.infrastructure.config.settings import Settings


class FakeTransport:
    """In-memory stand-in for TransportSession that records what it sends"""

    _next_port = 41000

    def __init__(self, session_id: str, handler, title: Optional[str] = None):
        self.session_id = session_id
        self.handler = handler
        self.title = title
        self.port: Optional[int] = None
        self.live = False
        self.started = False
        self.stopped = False
        self.sent: List[dict] = []

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    @property
    def connected(self) -> bool:
        return self.live

    async def start(self) -> int:
        FakeTransport._next_port += 1
        self.port = FakeTransport._next_port
        self.started = True
        return self.port

    async def stop(self):
        self.stopped = True
        self.live = False

    async def send_event(self, event) -> bool:
        if not self.live:
            return False
        self.sent.append(event.to_wire())
        return True

    async def connect(self):
        self.live = True
        await self.handler.handle_connect(self.session_id)

    def disconnect(self):
        self.live = False
        self.handler.handle_disconnect(self.session_id)

    def respond(self, question_id: str, answer):
        self.handler.handle_message(self.session_id, ResponseMessage(id=question_id, answer=answer))

    def sent_of_type(self, message_type: str) -> List[dict]:
        return [m for m in self.sent if m["type"] == message_type]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(answer_timeout=5.0, state_dir=str(tmp_path / "state"), skip_browser=True)


@pytest.fixture
def transports() -> Dict[str, FakeTransport]:
    return {}


@pytest.fixture
def transport_factory(transports):
    """Factory that builds FakeTransports and indexes them by session id"""
    def factory(session_id, handler, title):
        transport = FakeTransport(session_id, handler, title)
        transports[session_id] = transport
        return transport

    return factory


@pytest.fixture
def coordinator(settings, transport_factory) -> SessionCoordinator:
    return SessionCoordinator(settings=settings, skip_browser=True, transport_factory=transport_factory)

