from typing import Optional, Protocol, Union
from fastapi import WebSocket
import asyncio
import contextlib
import socket
import uvicorn
import structlog

from octto.domain.errors import TransportFailure
from .schema.events import ServerEvent, ResponseMessage, ConnectedMessage
from .ws_server import create_transport_app

logger = structlog.get_logger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 5.0


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves the host process's signal handlers alone"""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


class TransportHandler(Protocol):
    """Receiver of transport callbacks, normally the session coordinator"""

    async def handle_connect(self, session_id: str) -> None:
        ...

    def handle_disconnect(self, session_id: str) -> None:
        ...

    def handle_message(self, session_id: str, message: Union[ResponseMessage, ConnectedMessage]) -> None:
        ...


class TransportSession:
    """
    Network endpoint for one session.

    Serves the UI document and a WebSocket on an ephemeral local port and
    tracks exactly one live connection. A newer connection replaces the
    tracked one; disconnects never touch session state beyond telling the
    handler the client is gone.
    """

    def __init__(
        self,
        session_id: str,
        handler: TransportHandler,
        host: str = "127.0.0.1",
        port: int = 0,
        title: Optional[str] = None,
    ):
        self.session_id = session_id
        self.handler = handler
        self.host = host
        self.requested_port = port
        self.title = title
        self.port: Optional[int] = None
        self.websocket: Optional[WebSocket] = None
        self.app = create_transport_app(self)
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def connected(self) -> bool:
        return self.websocket is not None

    async def start(self) -> int:
        """
        Bind the listener and start serving.

        Returns:
            The bound port

        Raises:
            TransportFailure: If the listener cannot be bound or the server fails to start
        """

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.requested_port))
        except OSError as e:
            sock.close()
            raise TransportFailure(f"Could not bind {self.host}:{self.requested_port}: {e}") from e

        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        self._server = EmbeddedServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._serve_task.done():
                error = None if self._serve_task.cancelled() else self._serve_task.exception()
                sock.close()
                raise TransportFailure(f"Transport for {self.session_id} failed to start: {error}")
            await asyncio.sleep(0.01)

        logger.info("Transport started", session_id=self.session_id, url=self.url)
        return self.port

    async def stop(self):
        """Close the live connection, if any, and shut the listener down"""

        websocket = self.websocket
        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                logger.error("Error closing WebSocket", session_id=self.session_id, error=str(e))

        if self._server is not None and self._serve_task is not None:
            self._server.should_exit = True
            try:
                await asyncio.wait_for(self._serve_task, timeout=SHUTDOWN_TIMEOUT_SECONDS)
            except Exception as e:
                logger.error("Error stopping transport", session_id=self.session_id, error=str(e))

        self._server = None
        self._serve_task = None
        logger.info("Transport stopped", session_id=self.session_id)

    async def attach(self, websocket: WebSocket):
        """Accept a connection and make it the tracked one"""

        await websocket.accept()

        previous = self.websocket
        self.websocket = websocket
        if previous is not None:
            logger.info("Replacing tracked connection", session_id=self.session_id)

        logger.info("WebSocket connected", session_id=self.session_id)
        await self.handler.handle_connect(self.session_id)

    def detach(self, websocket: WebSocket):
        """Forget a connection; ignored unless it is the tracked one"""

        if self.websocket is not websocket:
            return

        self.websocket = None
        self.handler.handle_disconnect(self.session_id)
        logger.info("WebSocket disconnected", session_id=self.session_id)

    def dispatch(self, message: Union[ResponseMessage, ConnectedMessage]):
        self.handler.handle_message(self.session_id, message)

    async def send_event(self, event: ServerEvent) -> bool:
        """Send an event to the tracked connection"""

        websocket = self.websocket
        if websocket is None:
            logger.warning("Attempted to send to disconnected session", session_id=self.session_id)
            return False

        try:
            await websocket.send_json(event.to_wire())
            return True

        except Exception as e:
            logger.error("Failed to send event", session_id=self.session_id, error=str(e))
            self.detach(websocket)
            return False
