"""
Data model for implementor contributions.

Manifesto:
    Fragments arrive from files we did not write and cannot re-request, so
    their shape is checked once, at the broker boundary, and everything past
    that point works with frozen, typed objects. The record content itself
    (rendered HTML, type paths) is opaque: the model never parses or rewrites
    it.

Wire format (as emitted by rustdoc)::

    {"text": "impl Unpin for Project", "synthetic": true,
     "types": ["haybale::project::Project"]}

Tags:
    implspine, models, pydantic, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictBool, StrictStr

__all__ = [
    "ImplementorRecord",
    "Contribution",
    "ConsumerCallback",
    "ConsumerHandle",
]


class ImplementorRecord(BaseModel):
    """One marker-satisfying type for one library.

    Attributes:
        display_fragment: Renderable content (wire key ``text``), passed through untouched
        is_synthetic: True for auto-trait impls derived by the compiler (wire key ``synthetic``)
        constraint_dependencies: Type paths the impl depends on (wire key ``types``)

    Keys the generator adds beyond these are kept as-is and written back by
    :meth:`to_wire`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    display_fragment: StrictStr = Field(alias="text")
    is_synthetic: StrictBool = Field(default=False, alias="synthetic")
    constraint_dependencies: tuple[StrictStr, ...] = Field(default=(), alias="types")

    def to_wire(self) -> dict[str, Any]:
        """Return the record in the generator's key names."""
        return {
            "text": self.display_fragment,
            "synthetic": self.is_synthetic,
            "types": list(self.constraint_dependencies),
            **(self.model_extra or {}),
        }


class Contribution(BaseModel):
    """One delivery event from one source.

    ``source_id`` is the deduplication key (the library name for fragment
    payloads). ``records`` keeps the generator's order. ``source_locator`` is
    diagnostic only.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    source_id: StrictStr = Field(
        min_length=1,
        validation_alias=AliasChoices("source_id", "sourceId"),
    )
    records: tuple[ImplementorRecord, ...]
    source_locator: str | None = None

    @classmethod
    def from_library(
        cls,
        library: str,
        records: Sequence[Any],
        *,
        source_locator: str | None = None,
    ) -> Contribution:
        """Build a contribution from one ``implementors["<library>"]`` entry."""
        return cls.model_validate(
            {"source_id": library, "records": records, "source_locator": source_locator}
        )


ConsumerCallback = Callable[[list[Contribution]], Any]


@dataclass(frozen=True)
class ConsumerHandle:
    """The single consumer of a broker.

    Attributes:
        callback: Called with a batch (list) of contributions
        name: Label used in logs and diagnostics
    """

    callback: ConsumerCallback
    name: str = "consumer"

    @classmethod
    def wrap(cls, consumer: ConsumerHandle | ConsumerCallback) -> ConsumerHandle:
        """Accept either a handle or a bare callable."""
        if isinstance(consumer, ConsumerHandle):
            return consumer
        name = getattr(consumer, "name", None) or getattr(
            consumer, "__qualname__", type(consumer).__name__
        )
        return cls(callback=consumer, name=str(name))

    def deliver(self, batch: list[Contribution]) -> None:
        self.callback(batch)
