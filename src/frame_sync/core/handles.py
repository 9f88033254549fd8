"""
Remote value handles.

A JSHandle wraps a CDP RemoteObject captured at event time. Primitive values
travel inside the payload; objects only carry an objectId and must be fetched
from the page on demand, which fails once the page has dropped them.
"""
from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Dict, Optional

from frame_sync.core.errors import (
    CDPConnectionError,
    CDPProtocolError,
    CDPTimeoutError,
    StaleRemoteObjectError,
)

if TYPE_CHECKING:
    from frame_sync.cdp.session import PageSession

logger = logging.getLogger("frame_sync")

_UNSERIALIZABLE = {
    "NaN": math.nan,
    "Infinity": math.inf,
    "-Infinity": -math.inf,
    "-0": -0.0,
}

_RETURN_THIS = "function() { return this; }"


def value_from_remote_object(remote_object: Dict[str, Any]) -> Any:
    """Decode the by-value part of a RemoteObject."""
    unserializable = remote_object.get("unserializableValue")
    if unserializable is not None:
        if unserializable in _UNSERIALIZABLE:
            return _UNSERIALIZABLE[unserializable]
        if unserializable.endswith("n"):
            return int(unserializable[:-1])
        return unserializable
    return remote_object.get("value")


def preview_remote_object(remote_object: Dict[str, Any]) -> str:
    """Render a RemoteObject the way console text shows it."""
    if remote_object.get("objectId"):
        kind = remote_object.get("subtype") or remote_object.get("type", "object")
        return f"JSHandle@{kind}"

    kind = remote_object.get("type")
    if kind == "undefined":
        return "undefined"
    if "unserializableValue" in remote_object:
        value = remote_object["unserializableValue"]
        return value[:-1] if kind == "bigint" else value

    value = remote_object.get("value")
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class JSHandle:
    """Lazily resolved reference to a value living in the page."""

    def __init__(self, session: Optional[PageSession], remote_object: Dict[str, Any],
                 context_id: Optional[int] = None):
        self._session = session
        self._remote_object = remote_object
        self._context_id = context_id
        self._disposed = False

    @property
    def remote_object(self) -> Dict[str, Any]:
        return self._remote_object

    @property
    def object_id(self) -> Optional[str]:
        return self._remote_object.get("objectId")

    @property
    def context_id(self) -> Optional[int]:
        return self._context_id

    @property
    def type(self) -> str:
        return self._remote_object.get("subtype") or self._remote_object.get("type", "undefined")

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def mark_stale(self) -> None:
        """The owning execution context or connection went away."""
        self._disposed = True

    async def json_value(self) -> Any:
        """
        Resolve the handle to a JSON-compatible Python value.

        Raises:
            StaleRemoteObjectError: the remote object was disposed or the
                connection is gone.
        """
        object_id = self.object_id
        if object_id is None:
            return value_from_remote_object(self._remote_object)
        if self._disposed or self._session is None:
            raise StaleRemoteObjectError(
                "Remote object has been disposed",
                object_id=object_id,
                method="JSHandle.json_value",
            )
        try:
            result = await self._session.call_function_on(
                object_id, _RETURN_THIS, return_by_value=True,
            )
        except (CDPProtocolError, CDPConnectionError, CDPTimeoutError) as e:
            self._disposed = True
            raise StaleRemoteObjectError(
                f"Remote object is no longer available: {e.message}",
                object_id=object_id,
                method="JSHandle.json_value",
            ) from e
        return value_from_remote_object(result)

    async def dispose(self) -> None:
        """Release the remote object. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        object_id = self.object_id
        if object_id is None or self._session is None:
            return
        try:
            await self._session.release_object(object_id)
        except (CDPProtocolError, CDPConnectionError, CDPTimeoutError) as e:
            logger.debug(f"releaseObject failed: {e}", extra={"object_id": object_id})

    def __str__(self) -> str:
        return preview_remote_object(self._remote_object)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self}>"
