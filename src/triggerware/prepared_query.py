"""Prepared statements with typed parameter binding."""

import datetime
import logging
from typing import TYPE_CHECKING, Any, Callable

import logfire

from .errors import ParameterBoundsError, ParameterModeError, ParameterTypeError
from .models import PreparedSignature, SignatureElement
from .query import AbstractQuery, Query, QueryRestriction
from .result_set import ResultSet

if TYPE_CHECKING:
    from .client import TriggerwareClient

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_boolean(value: Any) -> bool:
    return isinstance(value, bool)


def _is_string(value: Any) -> bool:
    return isinstance(value, str)


def _is_temporal(value: Any) -> bool:
    return isinstance(value, (str, datetime.date, datetime.time, datetime.timedelta))


def _always(value: Any) -> bool:
    return True


_TYPE_VALIDATORS: dict[str, Callable[[Any], bool]] = {
    "number": _is_number,
    "double": _is_number,
    "float": _is_number,
    "real": _is_number,
    "numeric": _is_number,
    "decimal": _is_number,
    "integer": _is_integer,
    "int": _is_integer,
    "smallint": _is_integer,
    "bigint": _is_integer,
    "boolean": _is_boolean,
    "string": _is_string,
    "text": _is_string,
    "varchar": _is_string,
    "char": _is_string,
    "casesensitive": _is_string,
    "caseinsensitive": _is_string,
    "stringcase": _is_string,
    "stringnocase": _is_string,
    "date": _is_temporal,
    "time": _is_temporal,
    "timestamp": _is_temporal,
    "interval": _is_temporal,
}


def type_validator(type_name: str) -> Callable[[Any], bool]:
    """The check a value must pass to be bound to a SQL parameter of this type.

    Types the client does not know accept any value.
    """
    return _TYPE_VALIDATORS.get(type_name.lower(), _always)


class PreparedQuery(AbstractQuery):
    """A query with input parameters, prepared once and executable many times.

    Preparation starts when the object is created; the server answers with the
    input signature, which also decides whether parameters are addressed by
    position (0-based index) or by name. Every coroutine method waits for
    preparation first.

    Example:
        ```python
        prepared = PreparedQuery(
            client, SqlQuery("select * from inflation where year1=:y1 and year2=1995;")
        )
        await prepared.set_parameter(":y1", 1980)
        result_set = await prepared.execute()
        ```
    """

    def __init__(
        self,
        client: "TriggerwareClient",
        query: Query,
        restriction: QueryRestriction | None = None,
    ):
        super().__init__(client, query, restriction)
        self._signature: PreparedSignature | None = None
        self._inputs: list[Any] = []
        self._register_in_background(self._prepare())

    async def _prepare(self):
        with logfire.span("prepare-query {query=}", query=self.query.query):
            result = await self._client.call("prepare-query", self.base_params)
        self._signature = PreparedSignature.model_validate(result)
        self.handle = self._signature.handle
        self._inputs = [None] * len(self._signature.input_signature)
        logger.debug(
            "Prepared query %s",
            self.handle,
            extra={"inputSignature": self.input_signature_names},
        )

    def _require_signature(self) -> PreparedSignature:
        if self._signature is None:
            raise RuntimeError("Query has not been prepared yet")
        return self._signature

    @property
    def input_signature_names(self) -> list[str]:
        return [e.attribute for e in self._require_signature().input_signature]

    @property
    def input_signature_types(self) -> list[str]:
        return [e.type for e in self._require_signature().input_signature]

    @property
    def uses_named_parameters(self) -> bool:
        return self._require_signature().uses_named_parameters

    @property
    def signature(self) -> list[SignatureElement]:
        return self._require_signature().signature

    def _resolve(self, position: int | str) -> int:
        signature = self._require_signature()
        names = self.input_signature_names

        if signature.uses_named_parameters:
            if not isinstance(position, str):
                raise ParameterModeError(
                    "This query uses named parameters; address them by name"
                )
            if position not in names:
                raise ParameterBoundsError(f"No parameter named {position!r}")
            return names.index(position)

        if isinstance(position, bool) or not isinstance(position, int):
            raise ParameterModeError(
                "This query uses positional parameters; address them by index"
            )
        if not 0 <= position < len(names):
            raise ParameterBoundsError(
                f"Parameter index {position} out of range for {len(names)} parameters"
            )
        return position

    async def set_parameter(self, position: int | str, value: Any):
        """Binds a value to an input parameter.

        Args:
            position (int | str): A 0-based index, or a name for queries with
                named parameters.
            value (Any): The value to bind.

        Raises:
            ParameterModeError: If the wrong kind of address is used.
            ParameterBoundsError: If there is no such parameter.
            ParameterTypeError: If a SQL query's parameter type rejects the value.
        """
        await self.registered()
        index = self._resolve(position)

        if self.query.language == "sql":
            type_name = self.input_signature_types[index]
            if not type_validator(type_name)(value):
                raise ParameterTypeError(
                    f"Value {value!r} is not valid for parameter {position!r} of type {type_name}"
                )
        self._inputs[index] = value

    async def get_parameter(self, position: int | str) -> Any:
        await self.registered()
        return self._inputs[self._resolve(position)]

    async def clear_parameters(self):
        await self.registered()
        self._inputs = [None] * len(self._inputs)

    async def execute(self, restriction: QueryRestriction | None = None) -> ResultSet:
        """Runs the query with the currently bound parameters.

        Args:
            restriction (QueryRestriction | None): Fields set here override the
                limits given at construction for this execution.
        """
        await self.registered()
        restriction = self._effective_restriction(restriction)

        params: dict[str, Any] = {"handle": self.handle, "inputs": list(self._inputs)}
        params.update(restriction.to_params())
        params["check-update"] = False

        with logfire.span("create-resultset {handle=}", handle=self.handle):
            result = await self._client.call("create-resultset", params)
        return ResultSet(self._client, result, restriction)

    async def clone(self) -> "PreparedQuery":
        """Prepares the same query again, carrying over the bound values."""
        await self.registered()
        clone = PreparedQuery(self._client, self.query, self.restriction)
        await clone.registered()
        clone._inputs = list(self._inputs)
        return clone
