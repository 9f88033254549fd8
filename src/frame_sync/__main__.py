#!/usr/bin/env python3
"""
Watch a running Chrome page: print its frame tree, then stream frame,
console and load events until interrupted.

Chrome must already be running with --remote-debugging-port.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional

from frame_sync.cdp.client import setup_logging
from frame_sync.core.errors import FrameSyncError
from frame_sync.core.events import PageEvent
from frame_sync.core.frames import Frame
from frame_sync.page import Page, PageConfig


def format_tree(frame: Frame, indent: int = 0) -> List[str]:
    """Render a frame and its descendants, one line per frame."""
    label = f"{frame.name} " if frame.name else ""
    lines = [f"{'  ' * indent}{label}{frame.url or 'about:blank'}"]
    for child in frame.child_frames:
        lines.extend(format_tree(child, indent + 1))
    return lines


async def watch(config: PageConfig, url: Optional[str], duration: Optional[float]) -> None:
    async with Page(config) as page:
        page.on(PageEvent.FRAME_ATTACHED, lambda frame: print(f"+ attached   {frame!r}"))
        page.on(PageEvent.FRAME_NAVIGATED, lambda frame: print(f"> navigated  {frame.url}"))
        page.on(PageEvent.FRAME_DETACHED, lambda frame: print(f"- detached   {frame!r}"))
        page.on(PageEvent.CONSOLE, lambda message: print(f"[{message.type.value}] {message.text}"))
        page.on(PageEvent.LOAD, lambda _: print("* load"))

        if url:
            print(f"Navigating to {url}")
            await page.goto(url)

        print("Frame tree:")
        if page.main_frame is not None:
            for line in format_tree(page.main_frame, 1):
                print(line)
        print()

        closed = asyncio.ensure_future(page.wait_for_event(PageEvent.CLOSE, timeout=0))
        try:
            await asyncio.wait_for(asyncio.shield(closed), timeout=duration)
            print("Page closed")
        except asyncio.TimeoutError:
            pass
        finally:
            closed.cancel()


def main(argv: Optional[List[str]] = None) -> bool:
    """
    Run the watcher.

    Returns:
        True on a clean exit, False if connecting or watching failed.
    """
    parser = argparse.ArgumentParser(description="Stream frame and console events from a Chrome page.")
    parser.add_argument("--host", default="localhost", help="Chrome remote debugging host")
    parser.add_argument("--port", type=int, default=9222, help="Chrome remote debugging port")
    parser.add_argument("--url", help="Navigate to this URL before watching")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    parser.add_argument("--debug", action="store_true", help="Log CDP traffic")
    args = parser.parse_args(argv)

    setup_logging(debug=args.debug)
    config = PageConfig(host=args.host, port=args.port, debug=args.debug)

    try:
        asyncio.run(watch(config, args.url, args.duration))
    except KeyboardInterrupt:
        print("\nStopped")
    except FrameSyncError as e:
        print(f"❌ {e}")
        return False
    return True


def cli() -> None:
    sys.exit(0 if main() else 1)


if __name__ == "__main__":
    cli()
