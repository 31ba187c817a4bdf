"""Detection of the portal's generic server-error page."""

import re
import time
from pathlib import Path
from typing import Optional, Union

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ...core.exceptions import UpstreamUnavailableError

SERVER_ERROR_PATTERNS = [
    re.compile(r"oops!\s*something went wrong on the server", re.IGNORECASE),
    re.compile(r"i-s\s*oops", re.IGNORECASE),
]

_BODY_TEXT_JS = "() => (document && document.body && document.body.innerText) || ''"


def is_server_error_text(text: str) -> bool:
    """Check whether rendered page text is the server-error page."""
    return any(pattern.search(text or "") for pattern in SERVER_ERROR_PATTERNS)


async def page_shows_server_error(page: Page) -> bool:
    """Read the page's visible text; an unreadable page counts as no error."""
    try:
        text = await page.evaluate(_BODY_TEXT_JS)
    except PlaywrightError:
        return False
    return is_server_error_text(text)


async def capture_screenshot(
    page: Page, screenshots_dir: Union[str, Path], prefix: str = "portal-server-oops"
) -> Optional[str]:
    """
    Save a full-page screenshot for diagnostics.

    Returns:
        Screenshot path, or None when it could not be taken
    """
    directory = Path(screenshots_dir)
    path = directory / f"{prefix}-{int(time.time() * 1000)}.png"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        await page.screenshot(path=str(path), full_page=True)
    except (PlaywrightError, OSError) as e:
        logger.warning(f"Could not capture screenshot: {e}")
        return None
    logger.info(f"Screenshot saved: {path}")
    return str(path)


async def raise_if_server_error(page: Page, where: str, screenshots_dir: Union[str, Path]) -> None:
    """
    Abort the attempt when the portal shows its server-error page.

    Args:
        page: Current page
        where: Login step, reported in the error
        screenshots_dir: Directory for the diagnostic screenshot

    Raises:
        UpstreamUnavailableError: If the error page is displayed
    """
    if not await page_shows_server_error(page):
        return
    logger.warning(f"Server error page detected at: {where}")
    screenshot = await capture_screenshot(page, screenshots_dir)
    raise UpstreamUnavailableError(where, screenshot)
