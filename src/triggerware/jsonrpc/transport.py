"""JSON-RPC Transport Layer

This module provides the transport layer abstraction for JSON-RPC communication.
The transport layer is responsible for sending and receiving raw JSON-RPC messages
over a byte stream.

Triggerware servers do not frame their messages: documents are written back to
back on the stream and a reader has to infer where one document ends from the
JSON structure alone. The module defines:
1. A Protocol class that defines the transport interface
2. An incremental splitter that cuts a byte stream into JSON documents
3. A concrete implementation for asyncio streams (e.g. TCP connections)

Custom transports can be implemented by creating classes that implement the
JsonRpcTransport protocol.
"""

import asyncio
import codecs
import logging
from collections import deque
from typing import Protocol

logger = logging.getLogger(__name__)

_OPENERS = "{["
_CLOSERS = "}]"


class JsonRpcTransport(Protocol):
    """Protocol defining the transport layer interface.

    Example:
        ```python
        class MyTransport(JsonRpcTransport):
            async def receive_message(self) -> str:
                # Implementation for receiving messages
                ...

            async def send_message(self, body: str):
                # Implementation for sending messages
                ...

            async def close(self):
                ...
        ```
    """

    async def receive_message(self) -> str:
        """Receive the text of one complete JSON document.

        Returns:
            str: The complete JSON-RPC message as a string

        Raises:
            EOFError: If the peer closed the stream
        """
        ...

    async def send_message(self, body: str):
        """Send a JSON-RPC message.

        Args:
            body (str): The JSON-RPC message to send
        """
        ...

    async def close(self):
        """Release the underlying channel."""
        ...


class JsonDocumentSplitter:
    """Cuts a stream of bytes into the texts of consecutive JSON documents.

    Boundaries are found by tracking the nesting depth of objects and arrays,
    skipping over string literals and their escapes. Whitespace between
    documents is ignored and no separator is required, so ``{"a":1}{"b":2}``
    yields two documents.

    Anything at the top level that does not open an object or an array is
    collected until the next whitespace or opening bracket and emitted as a
    document of its own; the consumer will then fail to parse it (or reject
    it as a non-message) instead of the stream stalling on it.

    Invalid UTF-8 is decoded as U+FFFD, so one bad byte only affects the
    document it occurs in.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pos = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False
        self._in_junk = False
        self._documents: deque[str] = deque()

    def feed(self, data: bytes):
        """Append raw bytes and split off every document they complete."""
        self._buffer += self._decoder.decode(data)
        self._split()

    def pop(self) -> str | None:
        """Return the oldest complete document, or None if there is none yet."""
        if self._documents:
            return self._documents.popleft()
        return None

    @property
    def pending(self) -> str:
        """Text of a document that has started but not completed."""
        return self._buffer.strip()

    def _split(self):
        buf = self._buffer
        pos = self._pos
        start = 0 if self._depth or self._in_junk else pos

        while pos < len(buf):
            char = buf[pos]
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif char == "\\":
                    self._escaped = True
                elif char == '"':
                    self._in_string = False
            elif self._depth > 0:
                if char == '"':
                    self._in_string = True
                elif char in _OPENERS:
                    self._depth += 1
                elif char in _CLOSERS:
                    self._depth -= 1
                    if self._depth == 0:
                        self._documents.append(buf[start : pos + 1])
                        start = pos + 1
            elif self._in_junk:
                if char.isspace() or char in _OPENERS:
                    self._documents.append(buf[start:pos])
                    self._in_junk = False
                    start = pos
                    # the terminating character starts the next document
                    continue
            elif char in _OPENERS:
                start = pos
                self._depth = 1
            elif char.isspace():
                start = pos + 1
            else:
                start = pos
                self._in_junk = True
            pos += 1

        self._buffer = buf[start:]
        self._pos = pos - start


class JsonRpcStreamTransport:
    """Stream-based transport implementation.

    Documents are written as compact JSON with nothing in between, and read
    back with a JsonDocumentSplitter.

    Args:
        reader (asyncio.StreamReader): The stream reader
        writer (asyncio.StreamWriter): The stream writer
        chunk_size (int): Maximum number of bytes requested per read
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        chunk_size: int = 65536,
    ):
        self._reader = reader
        self._writer = writer
        self._chunk_size = chunk_size
        self._splitter = JsonDocumentSplitter()

    async def receive_message(self) -> str:
        """Receive the next complete JSON document from the stream.

        Returns:
            str: The text of the document

        Raises:
            EOFError: If the stream ends
        """
        while True:
            document = self._splitter.pop()
            if document is not None:
                return document

            chunk = await self._reader.read(self._chunk_size)
            if not chunk:
                if self._splitter.pending:
                    logger.warning(
                        "Stream ended inside a document",
                        extra={"pending": self._splitter.pending},
                    )
                raise EOFError("Connection closed by peer")
            self._splitter.feed(chunk)

    async def send_message(self, body: str):
        """Send a JSON-RPC message over the stream.

        Args:
            body (str): The JSON-RPC message to send

        Raises:
            ConnectionError: If there is an error writing to the stream
        """
        self._writer.write(body.encode())
        await self._writer.drain()

    async def close(self):
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError as e:
            logger.debug("Error while closing stream: %s", e)
