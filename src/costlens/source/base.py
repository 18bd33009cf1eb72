from typing import Iterable, Iterator, Protocol

from costlens.models import BillingRecord


class RecordSource(Protocol):
    """
    RecordSource stands as the common protocol for everything the
    analyses read billing records from.

    records() must return a fresh iterator on every call: the
    outlier detector reads the source twice.
    """

    @property
    def name(self) -> "str": ...

    def records(self) -> "Iterator[BillingRecord]": ...


class ListSource:
    """
    ListSource serves records held in memory.
    """

    def __init__(self, records: "Iterable[BillingRecord]", name: "str" = "memory") -> "None":
        self._records: "list[BillingRecord]" = list(records)
        self._name = name

    @property
    def name(self) -> "str":
        return self._name

    def records(self) -> "Iterator[BillingRecord]":
        return iter(self._records)

    def __len__(self) -> "int":
        return len(self._records)
