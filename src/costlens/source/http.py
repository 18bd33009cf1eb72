from typing import Iterator

import httpx
import structlog

from costlens.errors import SourceExhaustionError
from costlens.models import BillingRecord

logger = structlog.get_logger()


class HttpSource:
    """
    HttpSource pages through a billing export served over HTTP. Each
    page is a JSON document of the form

        {"data": [row, ...], "has_more": bool, "next_page": "cursor"}

    and rows use the same nested shape as the JSONL export. Transport
    failures and non-2xx responses propagate out of records(), where
    the aggregation engine turns them into SourceExhaustionError.
    """

    def __init__(
        self,
        url: "str",
        token: "str" = "",
        page_size: "int" = 1000,
        timeout: "float" = 30.0,
        client: "httpx.Client | None" = None,
    ) -> "None":
        self._url = url
        self._page_size = page_size
        headers: "dict[str, str]" = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client: "httpx.Client" = client or httpx.Client(
            timeout=timeout,
            headers=headers,
        )
        self.skipped: "int" = 0

    @property
    def name(self) -> "str":
        return self._url

    def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        self._client.close()

    def records(self) -> "Iterator[BillingRecord]":
        self.skipped = 0
        next_page = ""
        page = 0

        # loop instead of recursion until the server reports no more pages
        while True:
            params: "dict[str, str | int]" = {"limit": self._page_size}
            if next_page:
                params["page"] = next_page

            logger.debug("billing_export_fetch", url=self._url, page=page)
            resp = self._client.get(self._url, params=params)
            resp.raise_for_status()
            data = resp.json()

            rows = data.get("data", [])
            for row in rows:
                try:
                    record = BillingRecord.from_export(row)
                except (TypeError, ValueError, AttributeError) as exc:
                    self.skipped += 1
                    logger.warning(
                        "invalid_record_skipped",
                        source=self.name,
                        page=page,
                        error=str(exc),
                    )
                    continue
                yield record

            logger.debug("billing_export_page_done", page=page, rows=len(rows))

            if not data.get("has_more"):
                break

            next_page = data.get("next_page", "")
            if not next_page:
                raise SourceExhaustionError(
                    f"{self._url}: page {page} reports more data but no next_page cursor"
                )
            page += 1
