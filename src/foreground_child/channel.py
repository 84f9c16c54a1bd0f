"""Message channel between a process and its controller.

A channel is one end of a UNIX stream socket. Each message travels as a
frame: a 4-byte big-endian length followed by the UTF-8 JSON payload. An
optional file descriptor (the message "handle") rides along as SCM_RIGHTS
ancillary data on the first chunk of the frame.

A process started with a channel finds its descriptor number in the
``FOREGROUND_CHILD_CHANNEL_FD`` environment variable.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import socket
import struct
from typing import Any, Callable, Optional

__all__ = ["CHANNEL_FD_ENV", "MessageChannel", "MessageListener"]

logger = logging.getLogger(__name__)

CHANNEL_FD_ENV = "FOREGROUND_CHILD_CHANNEL_FD"

_HEADER = struct.Struct(">I")

MessageListener = Callable[[Any, Optional[int]], None]


def _fileno(handle: Any) -> int:
    return handle if isinstance(handle, int) else handle.fileno()


class MessageChannel:
    """JSON message channel over a UNIX socket.

    Example:
        ```python
        parent_end, child_end = MessageChannel.pair()

        parent_end.send({"type": "ping"})
        message, handle = child_end.recv()   # ({"type": "ping"}, None)
        ```

    Inside an event loop, ``start()`` registers the socket with the loop and
    every complete frame is dispatched to the ``on_message`` listeners as
    ``(message, handle)``; ``handle`` is a received file descriptor or None.
    """

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._listeners: list[MessageListener] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    @classmethod
    def pair(cls) -> tuple[MessageChannel, MessageChannel]:
        """Create two connected channels."""
        a, b = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
        return cls(a), cls(b)

    @classmethod
    def from_environment(cls) -> Optional[MessageChannel]:
        """Adopt the channel advertised in ``FOREGROUND_CHILD_CHANNEL_FD``.

        The variable is removed from ``os.environ`` so it does not leak into
        grandchildren.

        Returns:
            The channel, or None when the process was started without one
        """
        value = os.environ.pop(CHANNEL_FD_ENV, None)
        if not value:
            return None
        try:
            fd = int(value)
            sock = socket.socket(fileno=fd)
        except (ValueError, OSError) as e:
            logger.warning(f"Ignoring invalid {CHANNEL_FD_ENV}={value!r}: {e}")
            return None
        logger.debug(f"Adopted message channel fd={fd}")
        return cls(sock)

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        return self._sock.fileno()

    def send(self, message: Any, handle: Any = None) -> None:
        """Send one message, optionally with a file descriptor.

        Args:
            message: JSON-serializable payload
            handle: file descriptor (int or object with ``fileno()``) or None
        """
        payload = json.dumps(message).encode("utf-8")
        frame = _HEADER.pack(len(payload)) + payload
        fds = [] if handle is None else [_fileno(handle)]
        sent = socket.send_fds(self._sock, [frame], fds)
        if sent < len(frame):
            self._sock.sendall(frame[sent:])

    def recv(self) -> tuple[Any, Optional[int]]:
        """Receive one message (blocking).

        Returns:
            ``(message, handle)`` where handle is a new descriptor or None

        Raises:
            EOFError: if the peer closed the channel
        """
        data, fds, _flags, _addr = socket.recv_fds(self._sock, _HEADER.size, 1)
        if not data:
            raise EOFError("message channel closed")
        header = data + self._recv_exact(_HEADER.size - len(data))
        (length,) = _HEADER.unpack(header)
        payload = self._recv_exact(length)
        handle = fds[0] if fds else None
        return json.loads(payload.decode("utf-8")), handle

    def _recv_exact(self, size: int) -> bytes:
        chunks: list[bytes] = []
        while size > 0:
            chunk = self._sock.recv(size)
            if not chunk:
                raise EOFError("message channel closed mid-frame")
            chunks.append(chunk)
            size -= len(chunk)
        return b"".join(chunks)

    def on_message(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Dispatch incoming messages to listeners from the event loop."""
        if self._loop is not None or self._closed:
            return
        self._loop = loop or asyncio.get_running_loop()
        self._loop.add_reader(self._sock.fileno(), self._on_readable)

    def _on_readable(self) -> None:
        try:
            message, handle = self.recv()
        except (EOFError, ConnectionError) as e:
            logger.debug(f"Message channel disconnected: {e}")
            self._stop_reading()
            return

        for listener in list(self._listeners):
            listener(message, handle)

    def _stop_reading(self) -> None:
        if self._loop is not None:
            self._loop.remove_reader(self._sock.fileno())
            self._loop = None

    def close(self) -> None:
        if self._closed:
            return
        self._stop_reading()
        self._closed = True
        self._sock.close()
