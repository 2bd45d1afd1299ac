"""JSON-RPC Connection Management

This module provides the core JSON-RPC connection functionality, including:
1. Connection lifecycle (connect, run loop, close)
2. Request/response correlation
3. Inbound method and notification dispatch
4. The protocol error taxonomy

A connection is both a client and a server: the Triggerware server answers our
calls and also invokes methods on us (subscription and polling callbacks), so
both directions share one stream.

Example:
    ```python
    connection = JsonRpcConnection()
    await connection.connect("localhost", 5221)

    connection.add_method("sub0", lambda params: print(params))
    result = await connection.call("noop")

    await connection.close()
    ```

See Also:
    - transport.py: Transport layer implementations
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Callable

from pydantic import JsonValue, TypeAdapter, ValidationError
from pydantic_core import to_jsonable_python

from .messages import (
    JSONRPC_INTERNAL_ERROR,
    JSONRPC_INVALID_PARAMS,
    JSONRPC_INVALID_REQUEST,
    JSONRPC_METHOD_NOT_FOUND,
    JSONRPC_PARSE_ERROR,
    JSONRPC_SERVER_ERROR,
    JsonRpcError,
    JsonRpcErrorResponse,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResult,
)
from .transport import JsonRpcStreamTransport, JsonRpcTransport

logger = logging.getLogger(__name__)

MethodHandler = Callable[[JsonValue], Any]
"""An inbound handler: called with the request params, returns a value or an awaitable."""


class JsonRpcException(Exception):
    """Exception raised for JSON-RPC specific errors.

    This exception class represents JSON-RPC protocol errors and can be
    converted to and from JSON-RPC error objects. Errors with a standard code
    are raised as one of the subclasses below; any other code produces a plain
    JsonRpcException.

    Args:
        message (str): A human-readable error description
        code (int): The JSON-RPC error code (see messages.py for standard codes)
        data (JsonValue): Optional additional error data

    Example:
        ```python
        try:
            result = await connection.call("execute-query", params)
        except MethodNotFound:
            ...
        except JsonRpcException as e:
            print(f"RPC error {e.code}: {e}")
        ```
    """

    def __init__(self, message: str, code: int, data: JsonValue = None):
        super(JsonRpcException, self).__init__(message)
        self.code = code
        self.data = data

    def to_err(self) -> JsonRpcError:
        """Convert the exception to a JSON-RPC error object.

        Returns:
            JsonRpcError: The error object for the JSON-RPC response
        """
        if self.data is not None:
            return JsonRpcError(code=self.code, message=str(self), data=self.data)
        else:
            return JsonRpcError(code=self.code, message=str(self))

    @staticmethod
    def from_error(err: JsonRpcError) -> "JsonRpcException":
        """Create an exception from a JSON-RPC error object.

        Args:
            err (JsonRpcError): The error object from a JSON-RPC response

        Returns:
            JsonRpcException: The subclass registered for the error code, or
                a plain JsonRpcException for codes outside the standard set
        """
        klass = _EXCEPTIONS_BY_CODE.get(err["code"])
        if klass is not None:
            return klass(err["message"], err.get("data"))
        return JsonRpcException(err["message"], err["code"], err.get("data"))


class _StandardJsonRpcException(JsonRpcException):
    code: int
    default_message: str

    def __init__(self, message: str | None = None, data: JsonValue = None):
        super().__init__(message or self.default_message, type(self).code, data)


class ParseError(_StandardJsonRpcException):
    code = JSONRPC_PARSE_ERROR
    default_message = "Parse error"


class InvalidRequest(_StandardJsonRpcException):
    code = JSONRPC_INVALID_REQUEST
    default_message = "Invalid request"


class MethodNotFound(_StandardJsonRpcException):
    code = JSONRPC_METHOD_NOT_FOUND
    default_message = "Method not found"


class InvalidParams(_StandardJsonRpcException):
    code = JSONRPC_INVALID_PARAMS
    default_message = "Invalid params"


class InternalError(_StandardJsonRpcException):
    code = JSONRPC_INTERNAL_ERROR
    default_message = "Internal error"


class ServerError(_StandardJsonRpcException):
    code = JSONRPC_SERVER_ERROR
    default_message = "Server error"


_EXCEPTIONS_BY_CODE: dict[int, type[_StandardJsonRpcException]] = {
    klass.code: klass
    for klass in (
        ParseError,
        InvalidRequest,
        MethodNotFound,
        InvalidParams,
        InternalError,
        ServerError,
    )
}


class ConnectionNotOpenError(RuntimeError):
    """Raised when a call or notification is issued before the connection was started."""


class ConnectionClosedError(ConnectionError):
    """Raised for calls issued after, or still pending at, connection close."""


def _error_details(e: ValidationError) -> JsonValue:
    return e.errors(include_url=False, include_context=False, include_input=False)


_REQUEST = TypeAdapter(JsonRpcRequest)
_NOTIFICATION = TypeAdapter(JsonRpcNotification)
_RESULT = TypeAdapter(JsonRpcResult)
_ERROR_RESPONSE = TypeAdapter(JsonRpcErrorResponse)


def _validate_message(obj: Any) -> JsonRpcMessage:
    if not isinstance(obj, dict):
        raise InvalidRequest("JSON-RPC messages must be objects")
    if "method" in obj:
        adapter = _REQUEST if "id" in obj else _NOTIFICATION
    elif "error" in obj:
        adapter = _ERROR_RESPONSE
    else:
        adapter = _RESULT
    try:
        return adapter.validate_python(obj)
    except ValidationError as e:
        raise InvalidRequest(e.title, data=_error_details(e)) from e


class JsonRpcConnection:
    """Manages a JSON-RPC connection over a transport layer.

    The connection handles:
    - Message sending and receiving
    - Request/response correlation by id
    - Routing inbound calls and notifications to registered handlers
    - Error handling at the dispatch boundary
    - Settling pending calls when the connection closes

    Args:
        transport (JsonRpcTransport | None): An already established transport.
            If given, the connection still has to be started with start().
            Otherwise connect() establishes one.
    """

    def __init__(self, transport: JsonRpcTransport | None = None):
        self._transport = transport
        self._next_id = 0
        self._pending_requests: dict[int, asyncio.Future] = {}
        self._handler_tasks: set[asyncio.Task] = set()
        self._method_handlers: dict[str, MethodHandler] = {}
        self._queue: asyncio.Queue[JsonRpcMessage | None] = asyncio.Queue()
        self._run_task: asyncio.Task | None = None
        self._started = False
        self._closed = False
        self._close_listeners: list[Callable[[], Any]] = []
        self._error_listeners: list[Callable[[Exception], Any]] = []

    @property
    def is_open(self) -> bool:
        return self._started and not self._closed

    async def connect(self, host: str, port: int):
        """Opens a TCP stream to a server and starts processing messages.

        Args:
            host (str): The server address
            port (int): The server port
        """
        (reader, writer) = await asyncio.open_connection(host, port)
        logger.info("Connected to %s:%d", host, port)
        self.start(JsonRpcStreamTransport(reader, writer))

    def start(self, transport: JsonRpcTransport | None = None):
        """Starts the message loop as a background task.

        Must be called from within a running event loop.

        Args:
            transport (JsonRpcTransport | None): The transport to use, if none
                was given at construction.
        """
        if self._started:
            raise RuntimeError("Connection already started")
        if transport is not None:
            self._transport = transport
        if self._transport is None:
            raise ConnectionNotOpenError("No transport to start the connection on")
        self._started = True
        self._run_task = asyncio.get_running_loop().create_task(self.run())

    def add_close_listener(self, callback: Callable[[], Any]):
        """Registers a callback invoked once when the connection closes."""
        self._close_listeners.append(callback)

    def add_error_listener(self, callback: Callable[[Exception], Any]):
        """Registers a callback invoked with stream and decoding errors."""
        self._error_listeners.append(callback)

    def add_method(self, method_name: str, func: MethodHandler):
        """Registers a handler for an inbound RPC method.

        The same handler serves both calls and notifications of that name. It is
        called with the request's params (None if absent) and may return a value
        or an awaitable.

        Args:
            method_name (str): The name of the RPC method to handle.
            func (MethodHandler): The handler function.

        Raises:
            InternalError: If a handler is already registered under that name.
        """
        if method_name in self._method_handlers:
            raise InternalError(f"Method {method_name} is already registered")
        self._method_handlers[method_name] = func

    def remove_method(self, method_name: str) -> bool:
        """Unregisters the handler for an inbound RPC method.

        Returns:
            bool: True if a handler was registered under that name.
        """
        return self._method_handlers.pop(method_name, None) is not None

    def has_method(self, method_name: str) -> bool:
        return method_name in self._method_handlers

    def _check_open(self):
        if self._closed:
            raise ConnectionClosedError("Connection is closed")
        if not self._started:
            raise ConnectionNotOpenError("Connection has not been established")

    async def _send_obj(
        self,
        obj: JsonRpcMessage,
    ):
        logger.debug("Object sent", extra={"jsonRpcMsg": obj})
        assert self._transport is not None
        await self._transport.send_message(json.dumps(obj, default=to_jsonable_python))

    async def _send_err(self, id: int | str | None, err: JsonRpcError):
        await self._send_obj(JsonRpcErrorResponse(jsonrpc="2.0", id=id, error=err))

    async def call(self, method: str, params: Any = None) -> JsonValue:
        """Sends a JSON-RPC request and waits for the response.

        Args:
            method (str): The name of the RPC method to call.
            params (Any): The request params. Omitted from the request if None.

        Returns:
            JsonValue: The result of the RPC call.

        Raises:
            ConnectionNotOpenError: If the connection was never started.
            ConnectionClosedError: If the connection is or gets closed.
            JsonRpcException: If the server returns an error response.
        """
        self._check_open()

        id = self._next_id
        self._next_id = self._next_id + 1

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._pending_requests[id] = future

        if params is not None:
            req = JsonRpcRequest(jsonrpc="2.0", id=id, method=method, params=params)
        else:
            req = JsonRpcRequest(jsonrpc="2.0", id=id, method=method)

        try:
            await self._send_obj(req)
        except BaseException:
            self._pending_requests.pop(id, None)
            raise
        return await future

    async def notify(self, method: str, params: Any = None):
        """Sends a JSON-RPC notification.

        Args:
            method (str): The name of the notification method.
            params (Any): The notification params. Omitted if None.
        """
        self._check_open()

        if params is not None:
            req = JsonRpcNotification(jsonrpc="2.0", method=method, params=params)
        else:
            req = JsonRpcNotification(jsonrpc="2.0", method=method)

        await self._send_obj(req)

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)
        return task

    async def _send_response(self, id: str | int, coro):
        try:
            res = await coro
            await self._send_obj(JsonRpcResult(jsonrpc="2.0", id=id, result=res))
        except Exception as e:
            await self._send_err(id, self._exception_to_err(e))

    def _exception_to_err(self, e: Exception) -> JsonRpcError:
        if isinstance(e, JsonRpcException):
            return e.to_err()
        if isinstance(e, ValidationError):
            return InvalidParams(str(e), data=_error_details(e)).to_err()
        return InternalError(str(e)).to_err()

    async def _log_failure(self, method: str, coro):
        try:
            await coro
        except Exception:
            logger.warning("Notification handler for %s failed", method, exc_info=True)

    async def _handle_invocation(self, msg: JsonRpcRequest | JsonRpcNotification):
        logger.debug("Handling invocation", extra={"jsonRpcMsg": msg})

        method = msg["method"]
        params = msg.get("params")
        has_id = "id" in msg

        handler = self._method_handlers.get(method)
        if handler is None:
            if has_id:
                await self._send_err(
                    msg["id"], MethodNotFound(f"No method {method} found").to_err()
                )
            else:
                logger.info("Unhandled notification %s", method, extra={"params": params})
            return

        try:
            res = handler(params)
        except Exception as e:
            if has_id:
                await self._send_err(msg["id"], self._exception_to_err(e))
            else:
                logger.warning("Notification handler for %s failed", method, exc_info=True)
            return

        if inspect.isawaitable(res):
            if has_id:
                self._track(self._send_response(msg["id"], res))
            else:
                self._track(self._log_failure(method, res))
        elif has_id:
            try:
                await self._send_obj(JsonRpcResult(jsonrpc="2.0", id=msg["id"], result=res))
            except Exception as e:
                await self._send_err(msg["id"], self._exception_to_err(e))

    def _take_pending(self, id: str | int | None, payload: dict) -> asyncio.Future | None:
        if id is None or id not in self._pending_requests:
            logger.debug("Discarding response for unknown id %s", id, extra=payload)
            return None
        return self._pending_requests.pop(id)

    def _handle_result(self, res: JsonRpcResult):
        logger.debug("Handling result response", extra={"jsonRpcMsg": res})

        future = self._take_pending(res["id"], {"result": res["result"]})
        if future is not None and not future.done():
            future.set_result(res["result"])

    def _handle_error(self, res: JsonRpcErrorResponse):
        logger.debug("Handling error response", extra={"jsonRpcMsg": res})

        future = self._take_pending(res["id"], {"error": res["error"]})
        if future is not None and not future.done():
            future.set_exception(JsonRpcException.from_error(res["error"]))

    async def _receive_one_msg(self) -> JsonRpcMessage:
        assert self._transport is not None
        msg = await self._transport.receive_message()

        try:
            obj = json.loads(msg)
        except json.JSONDecodeError as e:
            raise ParseError(
                e.msg,
                data={
                    "pos": e.pos,
                    "lineno": e.lineno,
                    "colno": e.colno,
                },
            ) from e
        return _validate_message(obj)

    def _report_error(self, error: Exception):
        logger.warning("Connection error: %s", error, exc_info=error)
        for listener in list(self._error_listeners):
            listener(error)

    async def _read_messages(self):
        try:
            while True:
                try:
                    msg = await self._receive_one_msg()
                except JsonRpcException as e:
                    self._report_error(e)
                    await self._send_err(None, e.to_err())
                    continue
                logger.debug("Received message", extra={"jsonRpcMsg": msg})
                await self._queue.put(msg)
        except EOFError:
            logger.info("Connection closed by peer")
        finally:
            self._queue.put_nowait(None)

    async def _dispatch_messages(self):
        while True:
            msg = await self._queue.get()
            try:
                if msg is None:
                    return
                if "method" in msg:
                    await self._handle_invocation(msg)
                elif "error" in msg:
                    self._handle_error(msg)
                else:
                    self._handle_result(msg)
            finally:
                self._queue.task_done()

    async def run(self):
        """Runs the JSON-RPC connection.

        This method starts the message processing loop that handles incoming
        messages and dispatches them to the appropriate handlers. It returns
        once the peer closes the stream or the connection is closed, and always
        leaves the connection closed.
        """
        read = asyncio.create_task(self._read_messages())
        dispatch = asyncio.create_task(self._dispatch_messages())
        try:
            done, pending = await asyncio.wait(
                (read, dispatch), return_when=asyncio.FIRST_EXCEPTION
            )
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    self._report_error(task.exception())
        finally:
            read.cancel()
            dispatch.cancel()
            await self.close()

    async def close(self):
        """Closes the connection.

        Safe to call more than once. Pending calls are rejected with
        ConnectionClosedError, running inbound handlers are cancelled and the
        close listeners are notified exactly once.
        """
        if self._closed:
            return
        self._closed = True

        if self._run_task is not None and self._run_task is not asyncio.current_task():
            self._run_task.cancel()

        try:
            if self._transport is not None:
                await self._transport.close()
        finally:
            for future in self._pending_requests.values():
                if not future.done():
                    future.set_exception(ConnectionClosedError("Connection closed"))
            self._pending_requests.clear()
            for task in list(self._handler_tasks):
                task.cancel()
            self._handler_tasks.clear()

            logger.info("Connection closed")
            for listener in self._close_listeners:
                listener()
