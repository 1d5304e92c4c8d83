"""
System browser adapter.
"""

import logging
import webbrowser


logger = logging.getLogger(__name__)


class SystemBrowser:
    """Opens URLs in the user's default browser."""

    def open(self, url: str) -> bool:
        """
        Open ``url`` in a new browser tab.

        Returns:
            True if a browser was launched, False otherwise
        """
        opened = webbrowser.open(url, new=2)
        if not opened:
            logger.warning("No browser available to open the sign-in page")
        return opened
