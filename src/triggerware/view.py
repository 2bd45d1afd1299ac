import logfire

from .query import AbstractQuery, QueryRestriction
from .result_set import ResultSet


class View(AbstractQuery):
    """A query that is executed on demand, each execution producing a new result set."""

    async def execute(self, restriction: QueryRestriction | None = None) -> ResultSet:
        restriction = self._effective_restriction(restriction)
        params = self.base_params
        params.update(restriction.to_params())
        params["check-update"] = False

        with logfire.span("execute-query {query=}", query=self.query.query):
            result = await self._client.call("execute-query", params)
        return ResultSet(self._client, result, restriction)
