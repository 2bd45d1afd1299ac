from .connection import (
    ConnectionClosedError,
    ConnectionNotOpenError,
    InternalError,
    InvalidParams,
    InvalidRequest,
    JsonRpcConnection,
    JsonRpcException,
    MethodHandler,
    MethodNotFound,
    ParseError,
    ServerError,
)
from .messages import (
    JSONRPC_INTERNAL_ERROR,
    JSONRPC_INVALID_PARAMS,
    JSONRPC_INVALID_REQUEST,
    JSONRPC_METHOD_NOT_FOUND,
    JSONRPC_PARSE_ERROR,
    JSONRPC_SERVER_ERROR,
)
from .transport import JsonDocumentSplitter, JsonRpcStreamTransport, JsonRpcTransport

__all__ = (
    "ConnectionClosedError",
    "ConnectionNotOpenError",
    "InternalError",
    "InvalidParams",
    "InvalidRequest",
    "JsonRpcConnection",
    "JsonRpcException",
    "MethodHandler",
    "MethodNotFound",
    "ParseError",
    "ServerError",
    "JSONRPC_INTERNAL_ERROR",
    "JSONRPC_INVALID_PARAMS",
    "JSONRPC_INVALID_REQUEST",
    "JSONRPC_METHOD_NOT_FOUND",
    "JSONRPC_PARSE_ERROR",
    "JSONRPC_SERVER_ERROR",
    "JsonDocumentSplitter",
    "JsonRpcStreamTransport",
    "JsonRpcTransport",
)
