import json
from pathlib import Path
from typing import Iterator

import structlog

from costlens.errors import SourceExhaustionError
from costlens.models import BillingRecord

logger = structlog.get_logger()


class JsonlSource:
    """
    JsonlSource reads a newline-delimited JSON billing export, one
    row per line in the nested export shape (project, service, sku,
    location and usage as objects).

    Rows that decode but describe an impossible record (negative
    cost, inverted usage interval, non-numeric amounts) are skipped
    and counted; a line that is not JSON at all means the file is
    damaged and aborts the scan.
    """

    def __init__(self, path: "str | Path") -> "None":
        self._path = Path(path)
        # rows skipped during the most recent records() iteration
        self.skipped: "int" = 0

    @property
    def name(self) -> "str":
        return str(self._path)

    def records(self) -> "Iterator[BillingRecord]":
        self.skipped = 0
        with self._path.open(encoding="utf-8") as fh:
            for line_number, line in enumerate(fh, start=1):
                if not line.strip():
                    continue

                try:
                    row = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise SourceExhaustionError(
                        f"{self._path}:{line_number}: invalid JSON: {exc.msg}"
                    ) from exc

                try:
                    record = BillingRecord.from_export(row)
                except (TypeError, ValueError, AttributeError) as exc:
                    self.skipped += 1
                    logger.warning(
                        "invalid_record_skipped",
                        source=self.name,
                        line=line_number,
                        error=str(exc),
                    )
                    continue

                yield record
