"""Result sink interface."""

from typing import Protocol, Sequence

from ecom_crawler.models import ProductRecord


class ExportError(Exception):
    """Raised when a sink fails to persist a site's records."""


class ResultSink(Protocol):
    """Persists the final, deduplicated records of one site."""

    def write(self, site_name: str, records: Sequence[ProductRecord]) -> None: ...
