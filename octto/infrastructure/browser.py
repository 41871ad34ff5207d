import asyncio
import webbrowser
import structlog

logger = structlog.get_logger(__name__)


async def open_browser(url: str) -> None:
    """Open ``url`` in the user's browser without blocking the event loop"""

    opened = await asyncio.to_thread(webbrowser.open, url)
    if not opened:
        logger.warning("No browser available", url=url)
    else:
        logger.info("Opened browser", url=url)
