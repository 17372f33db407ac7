"""
REDCap API client.

Exports the risk stratification project's records in one form-encoded POST.
See the REDCap API docs ("Export Records") on your instance for the full
parameter list.
"""

from __future__ import annotations

import logging

import httpx

from riskservice.errors import UpstreamError
from riskservice.risk.records import Record
from riskservice.schemas.redcap import REDCAP_FIELD_LIST, REDCAP_RECORD_SCHEMA
from riskservice.services.validation import validate_rows

logger = logging.getLogger(__name__)


class RedcapClient:
    """
    Usage:
        client = RedcapClient("https://redcap.example.org/api/", token)
        records = client.export_records()
    """

    def __init__(
        self,
        endpoint: str,
        token: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not endpoint.endswith("/"):
            endpoint += "/"
        self.endpoint = endpoint
        self._token = token
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def export_records(self) -> list[Record]:
        form = {
            "token": self._token,
            "content": "record",
            "format": "json",
            "returnFormat": "json",
            "type": "flat",
            "fields": ",".join(REDCAP_FIELD_LIST),
        }
        try:
            response = self._client.post(self.endpoint, data=form)
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPError as exc:
            raise UpstreamError(f"REDCap export failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"REDCap returned a non-JSON body: {exc}") from exc

        if not isinstance(rows, list):
            # REDCap reports bad tokens and the like as {"error": "..."}
            detail = rows.get("error") if isinstance(rows, dict) else None
            raise UpstreamError(
                f"REDCap returned {type(rows).__name__} instead of a record list",
                {"error": detail},
            )

        errors = validate_rows(rows, REDCAP_RECORD_SCHEMA)
        if errors:
            raise UpstreamError(
                f"REDCap export has {len(errors)} malformed records",
                {"errors": errors},
            )

        logger.info("Exported %d records from REDCap", len(rows))
        return [Record.from_redcap(row) for row in rows]
