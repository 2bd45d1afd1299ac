"""Cursors over query results held by the server."""

import logging
from typing import TYPE_CHECKING, Any

from pydantic import JsonValue

from .models import QueryResult, ResultBatch, SignatureElement
from .query import QueryRestriction

if TYPE_CHECKING:
    from .client import TriggerwareClient

logger = logging.getLogger(__name__)


class ResultSet:
    """A forward-only, lazily paged sequence of result tuples.

    The set starts with the first batch returned by ``execute-query`` or
    ``create-resultset`` and asks the server for the next batch only once the
    buffered one has been consumed. Tuples cannot be revisited: iterating a
    second time continues where the first iteration stopped.

    Example:
        ```python
        result_set = await client.execute_query(FolQuery("((x) s.t. (p x))"))
        async for row in result_set:
            print(row)
        await result_set.close()
        ```

    Args:
        client (TriggerwareClient): The client the result set was created on
        result (QueryResult | dict): The server's response creating the set
        restriction (QueryRestriction | None): Row and time limits for later
            batches; missing values fall back to the client's defaults.
    """

    def __init__(
        self,
        client: "TriggerwareClient",
        result: QueryResult | dict[str, Any],
        restriction: QueryRestriction | None = None,
    ):
        if not isinstance(result, QueryResult):
            result = QueryResult.model_validate(result)

        self._client = client
        self.handle = result.handle
        self.signature: list[SignatureElement] = result.signature
        self._cache: list[JsonValue] = list(result.batch.tuples)
        self._cursor = 0
        self._exhausted = result.batch.exhausted

        restriction = restriction or QueryRestriction()
        self._limit = (
            restriction.limit
            if restriction.limit is not None
            else client.default_fetch_size
        )
        self._timelimit = (
            restriction.timelimit
            if restriction.timelimit is not None
            else client.default_timelimit
        )

    @property
    def exhausted(self) -> bool:
        """True once the server has no further batches to send."""
        return self._exhausted or self.handle is None

    def __aiter__(self):
        return self

    async def __anext__(self) -> JsonValue:
        if self._cursor < len(self._cache):
            row = self._cache[self._cursor]
            self._cursor += 1
            return row

        if self.exhausted:
            raise StopAsyncIteration

        await self._fetch_next_batch()
        if not self._cache:
            raise StopAsyncIteration

        self._cursor = 1
        return self._cache[0]

    async def _fetch_next_batch(self):
        params: dict[str, Any] = {"handle": self.handle}
        if self._limit is not None:
            params["limit"] = self._limit
        if self._timelimit is not None:
            params["timelimit"] = self._timelimit

        batch = ResultBatch.model_validate(
            await self._client.call("next-resultset-batch", params)
        )
        logger.debug(
            "Fetched %d tuples for result set %s",
            len(batch.tuples),
            self.handle,
            extra={"exhausted": batch.exhausted},
        )
        self._cache = list(batch.tuples)
        self._cursor = 0
        self._exhausted = batch.exhausted

    async def pull(self, n: int) -> list[JsonValue]:
        """Returns up to n further tuples, fewer only if the set ends first."""
        rows: list[JsonValue] = []
        while len(rows) < n:
            try:
                rows.append(await self.__anext__())
            except StopAsyncIteration:
                break
        return rows

    async def close(self):
        """Releases the server-side cursor.

        The result set must not be iterated afterwards.
        """
        if self.handle is None:
            return
        await self._client.call("close-resultset", {"handle": self.handle})

    def cache_snapshot(self) -> list[JsonValue]:
        """The tuples of the currently buffered batch, consumed or not."""
        return list(self._cache)
