"""Queries and the parameter handling shared by every query-backed entity."""

import abc
import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Coroutine, Literal

if TYPE_CHECKING:
    from .client import TriggerwareClient

logger = logging.getLogger(__name__)

QueryLanguage = Literal["sql", "fol"]

DEFAULT_NAMESPACE = "AP5"


@dataclass(frozen=True)
class Query:
    """The text of a query together with its language and namespace."""

    query: str
    language: QueryLanguage
    namespace: str = DEFAULT_NAMESPACE

    def __post_init__(self):
        if self.language not in ("sql", "fol"):
            raise ValueError(f"Unsupported query language {self.language!r}")


def FolQuery(query: str, namespace: str = DEFAULT_NAMESPACE) -> Query:
    return Query(query, "fol", namespace)


def SqlQuery(query: str, namespace: str = DEFAULT_NAMESPACE) -> Query:
    return Query(query, "sql", namespace)


@dataclass(frozen=True)
class QueryRestriction:
    """Bounds on how much work the server does per request.

    Attributes:
        limit: Maximum number of tuples returned per batch.
        timelimit: Seconds the server may spend producing a batch. Advisory
            only; the client never enforces it.
    """

    limit: int | None = None
    timelimit: float | None = None

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.limit is not None:
            params["limit"] = self.limit
        if self.timelimit is not None:
            params["timelimit"] = self.timelimit
        return params

    def merged(self, override: "QueryRestriction | None") -> "QueryRestriction":
        """This restriction with every field set in ``override`` taking precedence."""
        if override is None:
            return self
        return QueryRestriction(
            limit=override.limit if override.limit is not None else self.limit,
            timelimit=(
                override.timelimit if override.timelimit is not None else self.timelimit
            ),
        )


class AbstractQuery(abc.ABC):
    """Base class of every entity that registers a query with the server.

    It owns the base request parameters (query text, language, namespace and
    any restriction) and the server handle, which stays None until a derived
    class finishes registering. Derived classes that register from their
    constructor hand the coroutine to ``_register_in_background`` and await
    ``registered()`` before anything that needs the handle.

    Args:
        client (TriggerwareClient): The client the query belongs to
        query (Query): The query text, language and namespace
        restriction (QueryRestriction | None): Optional row and time limits
    """

    def __init__(
        self,
        client: "TriggerwareClient",
        query: Query,
        restriction: QueryRestriction | None = None,
    ):
        self._client = client
        self.query = query
        self.restriction = restriction
        self.handle: int | None = None
        self._base_params: dict[str, Any] = {
            "query": query.query,
            "language": query.language,
            "namespace": query.namespace,
        }
        if restriction is not None:
            self._base_params.update(restriction.to_params())
        self._registration: asyncio.Task | None = None

    @property
    def client(self) -> "TriggerwareClient":
        return self._client

    @property
    def base_params(self) -> dict[str, Any]:
        """A fresh copy of the parameters every request for this query starts from."""
        return dict(self._base_params)

    def _effective_restriction(
        self, override: QueryRestriction | None = None
    ) -> QueryRestriction:
        return (self.restriction or QueryRestriction()).merged(override)

    def _register_in_background(self, coro: Coroutine[Any, Any, None]):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise
        self._registration = loop.create_task(coro)
        self._registration.add_done_callback(self._log_registration_failure)

    def _log_registration_failure(self, task: asyncio.Task):
        if task.cancelled() or task.exception() is None:
            return
        logger.warning(
            "Background registration of %s failed",
            type(self).__name__,
            exc_info=task.exception(),
            extra={"query": self.query.query},
        )

    async def registered(self):
        """Waits for background registration to finish.

        Raises whatever the registration raised.
        """
        if self._registration is not None:
            await self._registration
