"""Opening the authorization URL for the user."""

from __future__ import annotations

import logging
import webbrowser

logger = logging.getLogger(__name__)


def open_browser(url: str) -> bool:
    """Open ``url`` in the default browser.

    Failure is not an error: the URL is logged so the user can open it by
    hand. Returns whether a browser was launched.
    """
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as e:
        logger.warning(f"Failed to open browser: {e}")
        opened = False

    if not opened:
        logger.warning(f"Please open the following URL in your browser: {url}")
    return opened
