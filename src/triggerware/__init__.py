import asyncio
import json
import logging
import urllib.parse

import logfire
from pydantic_core import to_jsonable_python

from . import jsonrpc
from .client import TriggerwareClient
from .errors import (
    InvalidScheduleError,
    ParameterBoundsError,
    ParameterModeError,
    ParameterTypeError,
    SubscriptionStateError,
    TriggerwareUsageError,
)
from .models import PollDelta, RelDataElement, RelDataGroup, SignatureElement
from .polled_query import CalendarSchedule, PolledQuery, validate_schedule
from .prepared_query import PreparedQuery
from .query import AbstractQuery, FolQuery, Query, QueryRestriction, SqlQuery
from .result_set import ResultSet
from .subscription import BatchSubscription, Subscription, SubscriptionState
from .view import View

__all__ = (
    "jsonrpc",
    "TriggerwareClient",
    "InvalidScheduleError",
    "ParameterBoundsError",
    "ParameterModeError",
    "ParameterTypeError",
    "SubscriptionStateError",
    "TriggerwareUsageError",
    "PollDelta",
    "RelDataElement",
    "RelDataGroup",
    "SignatureElement",
    "CalendarSchedule",
    "PolledQuery",
    "validate_schedule",
    "PreparedQuery",
    "AbstractQuery",
    "FolQuery",
    "Query",
    "QueryRestriction",
    "SqlQuery",
    "ResultSet",
    "BatchSubscription",
    "Subscription",
    "SubscriptionState",
    "View",
    "main",
)

logger = logging.getLogger(__name__)


async def _run(
    address: urllib.parse.ParseResult,
    query: Query | None,
    restriction: QueryRestriction,
):
    if address.scheme != "tcp":
        raise ValueError(f"Unsupported scheme {address.scheme}")

    client = TriggerwareClient()
    await client.connect(address.hostname or "localhost", address.port or 5221)
    try:
        if query is None:
            groups = await client.get_rel_data()
            elements = [element for group in groups for element in group.elements]
            for i, element in enumerate(elements):
                print(f"{i}: {element.name} {element.description}")
            return

        result_set = await client.execute_query(query, restriction)
        try:
            async for row in result_set:
                print(json.dumps(row, default=to_jsonable_python))
        finally:
            await result_set.close()
    finally:
        await client.close()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        description="Runs a query against a Triggerware server, or lists the relations it knows about."
    )
    parser.add_argument(
        "address",
        help="URI of the server. Example: tcp://localhost:5221",
        type=urllib.parse.urlparse,
    )
    parser.add_argument(
        "query",
        nargs="?",
        help="The query to run. Without one, the server's relations are listed.",
    )
    parser.add_argument(
        "--language", choices=("sql", "fol"), default="fol", help="Query language"
    )
    parser.add_argument("--namespace", default="AP5", help="Query namespace")
    parser.add_argument("--limit", type=int, help="Rows fetched per batch")
    parser.add_argument(
        "--timelimit", type=float, help="Seconds the server may spend per batch"
    )
    parser.add_argument(
        "--enable-logfire",
        action="store_true",
        help="Enables sending logs and spans to Logfire",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log the JSON-RPC traffic"
    )

    args = parser.parse_args()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if args.enable_logfire:
        logfire.configure(scrubbing=False)
        handlers = [logfire.LogfireLoggingHandler()]
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO, handlers=handlers
    )

    logging.info("Starting loop", extra={"cliArgs": vars(args)})
    query = (
        Query(args.query, args.language, args.namespace)
        if args.query is not None
        else None
    )
    restriction = QueryRestriction(limit=args.limit, timelimit=args.timelimit)

    asyncio.run(_run(args.address, query, restriction))
