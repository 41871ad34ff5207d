from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse
from pydantic import ValidationError
from typing import TYPE_CHECKING
from datetime import datetime, timezone
import structlog

from .schema.events import parse_client_message
from .ui_document import render_document
from octto.infrastructure.config.settings import get_settings
from octto.infrastructure.observability.logging import setup_logging

if TYPE_CHECKING:
    from .connection_manager import TransportSession

# Setup logging
_settings = get_settings()
setup_logging(_settings.log_level, _settings.log_format)
logger = structlog.get_logger(__name__)

WEBSOCKET_PATH = "/ws"


def create_transport_app(transport: "TransportSession") -> FastAPI:
    """Build the per-session application: UI document, health and WebSocket"""

    app = FastAPI(title=f"octto session {transport.session_id}")

    @app.get("/", response_class=HTMLResponse)
    async def ui_document():
        """Serve the browser client"""
        return HTMLResponse(render_document(transport.title or "octto"))

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "session_id": transport.session_id,
            "connected": transport.connected,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.websocket(WEBSOCKET_PATH)
    async def session_websocket(websocket: WebSocket):
        """Duplex channel to the respondent's browser"""

        await transport.attach(websocket)

        try:
            while True:
                data = await websocket.receive_text()

                try:
                    message = parse_client_message(data)
                except ValidationError as e:
                    logger.warning(
                        "Ignoring malformed client message",
                        session_id=transport.session_id,
                        errors=e.error_count()
                    )
                    continue

                try:
                    transport.dispatch(message)
                except Exception as e:
                    logger.error(
                        "Error processing message",
                        session_id=transport.session_id,
                        error=str(e)
                    )

        except WebSocketDisconnect:
            logger.info("Client disconnected", session_id=transport.session_id)
        except Exception as e:
            logger.error("WebSocket error", error=str(e), session_id=transport.session_id)
        finally:
            transport.detach(websocket)

    return app
