"""Shapes of the results and notifications a Triggerware server sends."""

from pydantic import BaseModel, ConfigDict, Field, JsonValue


class SignatureElement(BaseModel):
    """One column of a query signature."""

    attribute: str
    type: str


class ResultBatch(BaseModel):
    """One page of result tuples."""

    count: int = 0
    tuples: list[JsonValue] = Field(default_factory=list)
    exhausted: bool = False


class QueryResult(BaseModel):
    """Response to ``execute-query`` and ``create-resultset``.

    ``handle`` is absent (or null) when the whole result fit in the first batch.
    """

    handle: int | None = None
    batch: ResultBatch
    signature: list[SignatureElement] = Field(default_factory=list)


class PreparedSignature(BaseModel):
    """Response to ``prepare-query``."""

    model_config = ConfigDict(populate_by_name=True)

    handle: int
    input_signature: list[SignatureElement] = Field(alias="inputSignature")
    signature: list[SignatureElement] = Field(default_factory=list)
    uses_named_parameters: bool = Field(default=False, alias="usesNamedParameters")


class PollDelta(BaseModel):
    """Tuples that entered and left a polled query's result since the previous poll."""

    added: list[JsonValue] = Field(default_factory=list)
    deleted: list[JsonValue] = Field(default_factory=list)


class PollNotification(BaseModel):
    handle: int | None = None
    timestamp: str | None = None
    delta: PollDelta | None = None
    error: JsonValue = None


class BatchMatch(BaseModel):
    label: str
    tuples: list[JsonValue] = Field(default_factory=list)


class CombinedNotification(BaseModel):
    """Payload sent to a batch: the tuples produced for each member label."""

    matches: list[BatchMatch] = Field(default_factory=list)


class RelDataElement(BaseModel):
    """Description of one relation the server knows about."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = ""
    description: str = ""
    signature_names: list[str] = Field(default_factory=list, alias="signatureNames")
    signature_types: list[str] = Field(default_factory=list, alias="signatureTypes")
    usage: str = ""


class RelDataGroup(BaseModel):
    """A named group of relations, as returned by ``reldata2017``."""

    model_config = ConfigDict(extra="allow")

    name: str = ""
    symbol: str = ""
    description: str = ""
    elements: list[RelDataElement] = Field(default_factory=list)
