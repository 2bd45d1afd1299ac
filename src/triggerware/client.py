"""The Triggerware client: a JSON-RPC connection plus the server's query API."""

import itertools
import logging
from collections import defaultdict
from typing import Iterator

from pydantic import JsonValue, TypeAdapter

from .jsonrpc import JsonRpcConnection, JsonRpcTransport
from .models import RelDataGroup
from .query import Query, QueryRestriction
from .result_set import ResultSet
from .view import View

logger = logging.getLogger(__name__)

_REL_DATA = TypeAdapter(list[RelDataGroup])


class TriggerwareClient(JsonRpcConnection):
    """A connection to a Triggerware server.

    Besides the raw ``call``/``notify`` interface inherited from
    JsonRpcConnection it exposes the server's query operations, and it is the
    object every query entity (views, prepared and polled queries,
    subscriptions) is created against.

    Example:
        ```python
        client = TriggerwareClient()
        await client.connect("localhost", 5221)

        for group in await client.get_rel_data():
            for element in group.elements:
                print(element.name, element.description)

        result_set = await client.execute_query(SqlQuery("select * from inflation;"))
        print(await result_set.pull(10))

        await client.close()
        ```

    Args:
        transport (JsonRpcTransport | None): An established transport, for
            use with start() instead of connect().
        default_fetch_size (int | None): Rows requested per batch when a query
            gives no limit of its own.
        default_timelimit (float | None): Seconds per batch when a query gives
            no time limit of its own.
    """

    def __init__(
        self,
        transport: JsonRpcTransport | None = None,
        *,
        default_fetch_size: int | None = 10,
        default_timelimit: float | None = None,
    ):
        super().__init__(transport)
        self.default_fetch_size = default_fetch_size
        self.default_timelimit = default_timelimit
        self._label_counters: defaultdict[str, Iterator[int]] = defaultdict(itertools.count)

    def next_label(self, prefix: str) -> str:
        """Returns a method name unique within this client, e.g. ``sub0``, ``sub1``."""
        return f"{prefix}{next(self._label_counters[prefix])}"

    async def execute_query(
        self, query: Query, restriction: QueryRestriction | None = None
    ) -> ResultSet:
        """Runs a query once and returns a cursor over its results."""
        return await View(self, query, restriction).execute()

    async def validate_query(self, query: Query) -> JsonValue:
        """Asks the server to check a query without running it.

        Raises:
            JsonRpcException: If the server rejects the query.
        """
        return await self.call(
            "validate",
            {"query": query.query, "language": query.language, "namespace": query.namespace},
        )

    async def noop(self):
        """Round trip that does nothing; useful to check the server is alive."""
        await self.call("noop")

    async def runtime(self) -> JsonValue:
        """Server-side resource usage statistics."""
        return await self.call("runtime")

    async def get_rel_data(self) -> list[RelDataGroup]:
        """The catalogue of relations the server can answer queries about."""
        return _REL_DATA.validate_python(await self.call("reldata2017"))
