"""Queries the server re-runs on a schedule, reporting what changed."""

import abc
import inspect
import logging
import re
from typing import TYPE_CHECKING, Any, Mapping

import logfire
from pydantic import (
    BaseModel,
    ConfigDict,
    JsonValue,
    PositiveInt,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .errors import InvalidScheduleError
from .models import PollDelta, PollNotification
from .query import AbstractQuery, Query, QueryRestriction

if TYPE_CHECKING:
    from .client import TriggerwareClient

logger = logging.getLogger(__name__)

_FIELD_BOUNDS = {
    "minutes": (0, 59),
    "hours": (0, 23),
    "days": (1, 31),
    "months": (1, 12),
    "weekdays": (0, 6),
}

_ITEM = re.compile(r"^(\d+)(?:-(\d+))?$")
_TIMEZONE = re.compile(r"^[A-Za-z][A-Za-z0-9_+\-]*(/[A-Za-z0-9_+\-]+)*$")


class CalendarSchedule(BaseModel):
    """A cron-like recurrence.

    Each of the calendar fields is either ``"*"`` (every value) or a comma
    separated list of values and ``lo-hi`` ranges, e.g. ``"0,15,30-45"``.
    Unset fields behave like ``"*"``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    minutes: str | None = None
    hours: str | None = None
    days: str | None = None
    months: str | None = None
    weekdays: str | None = None
    timezone: str | None = None

    @field_validator("minutes", "hours", "days", "months", "weekdays")
    @classmethod
    def _check_field(cls, value: str | None, info: ValidationInfo) -> str | None:
        if value is None or value == "*":
            return value
        low, high = _FIELD_BOUNDS[info.field_name]
        for item in value.split(","):
            match = _ITEM.match(item)
            if match is None:
                raise ValueError(f"malformed entry {item!r}")
            start = int(match[1])
            end = int(match[2]) if match[2] is not None else start
            if not low <= start <= end <= high:
                raise ValueError(f"{item!r} is outside {low}-{high}")
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str | None) -> str | None:
        if value is not None and _TIMEZONE.match(value) is None:
            raise ValueError(f"{value!r} is not a time zone name")
        return value


Schedule = PositiveInt | CalendarSchedule | list[CalendarSchedule]
"""An interval in seconds, a calendar schedule, or several calendar schedules."""

_SCHEDULE = TypeAdapter(Schedule)


def validate_schedule(schedule: int | Mapping[str, Any] | CalendarSchedule | list) -> JsonValue:
    """Checks a schedule and returns it in the form sent to the server.

    Raises:
        InvalidScheduleError: If any field is malformed or out of range.
    """
    try:
        validated = _SCHEDULE.validate_python(schedule)
    except ValidationError as e:
        raise InvalidScheduleError(str(e)) from e
    return _SCHEDULE.dump_python(validated, exclude_none=True)


class PolledQuery(AbstractQuery):
    """A query the server executes repeatedly, notifying us of changed results.

    Subclasses override ``handle_notification`` to receive each delta and may
    override ``handle_error`` to receive polling failures. Neither is retried;
    in particular a poll that falls due while the previous one is still running
    is skipped by the server and reported through ``handle_error``.

    Example:
        ```python
        class InflationWatch(PolledQuery):
            def handle_notification(self, delta: PollDelta):
                print("added", delta.added, "deleted", delta.deleted)

        watch = InflationWatch(
            client,
            SqlQuery("select * from inflation;"),
            {"minutes": "0,30", "timezone": "America/New_York"},
            report_initial=True,
        )
        await watch.registered()
        await watch.poll()
        ```

    Args:
        client (TriggerwareClient): The client to register with
        query (Query): The query to poll
        schedule: When to poll; see ``Schedule``. Without one, polling only
            happens through ``poll()``.
        report_initial (bool | None): Report the first result as additions
        report_unchanged (bool | None): Notify even when nothing changed
        delay (bool | None): Delay the first poll until the schedule fires

    Raises:
        InvalidScheduleError: If the schedule is invalid. Nothing is sent to
            the server in that case.
    """

    def __init__(
        self,
        client: "TriggerwareClient",
        query: Query,
        schedule: Any = None,
        *,
        report_initial: bool | None = None,
        report_unchanged: bool | None = None,
        delay: bool | None = None,
        restriction: QueryRestriction | None = None,
    ):
        super().__init__(client, query, restriction)
        self.schedule = validate_schedule(schedule) if schedule is not None else None
        self.method_name = client.next_label("poll")

        params = self.base_params
        params["method"] = self.method_name
        if self.schedule is not None:
            params["schedule"] = self.schedule
        if report_initial is not None:
            params["report-initial"] = report_initial
        if report_unchanged is not None:
            params["report-unchanged"] = report_unchanged
        if delay is not None:
            params["delay"] = delay

        self._register_in_background(self._create(params))
        client.add_method(self.method_name, self._on_poll)

    async def _create(self, params: dict[str, Any]):
        try:
            with logfire.span("create-polled-query {method=}", method=self.method_name):
                self.handle = await self._client.call("create-polled-query", params)
        except BaseException:
            self._client.remove_method(self.method_name)
            raise
        logger.debug("Registered polled query %s as %s", self.handle, self.method_name)

    async def poll(self):
        """Asks the server to poll now, outside the schedule."""
        await self.registered()
        await self._client.call("poll-now", {"handle": self.handle})

    async def _on_poll(self, params: JsonValue):
        notification = PollNotification.model_validate(params)
        if notification.error is not None:
            result = self.handle_error(str(notification.error), notification.timestamp)
        else:
            result = self.handle_notification(notification.delta or PollDelta())
        if inspect.isawaitable(result):
            await result

    @abc.abstractmethod
    def handle_notification(self, delta: PollDelta):
        """Called with the changes found by each poll. May be a coroutine.

        Every subclass must override it.
        """

    def handle_error(self, message: str, timestamp: str | None):
        """Called when the server reports a failed poll. May be a coroutine."""
        logger.warning(
            "Polled query %s failed: %s",
            self.method_name,
            message,
            extra={"timestamp": timestamp},
        )

    def close(self) -> bool:
        """Stops listening for this query's notifications."""
        return self._client.remove_method(self.method_name)
