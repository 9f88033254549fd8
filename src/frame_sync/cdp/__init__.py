"""
CDP Module - Chrome DevTools Protocol client and page session.
"""
from frame_sync.cdp.client import CDPClient, get_page_ws_url, setup_logging
from frame_sync.cdp.session import PageSession

__all__ = [
    "CDPClient",
    "get_page_ws_url",
    "setup_logging",
    "PageSession",
]
