"""
FHIR server client.

Covers the handful of interactions the risk service needs: paging through
searches, finding a patient by MRN, and replacing a patient's risk
assessments.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator

import httpx

from riskservice.errors import UpstreamError

logger = logging.getLogger(__name__)

FHIR_JSON = "application/json"


class FhirClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={"Accept": FHIR_JSON},
        )

    def close(self) -> None:
        self._client.close()

    def patient_reference(self, patient_id: str) -> str:
        return f"{self.base_url}/Patient/{patient_id}"

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                f"Received HTTP {exc.response.status_code} from FHIR server for {method} {url}",
                {"status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"FHIR request {method} {url} failed: {exc}") from exc
        return response

    def _bundle(self, response: httpx.Response) -> dict[str, Any]:
        try:
            bundle = response.json()
        except ValueError as exc:
            raise UpstreamError(f"Couldn't decode FHIR bundle from {response.url}: {exc}") from exc
        if not isinstance(bundle, dict) or bundle.get("resourceType") != "Bundle":
            raise UpstreamError(f"Expected a Bundle from {response.url}")
        return bundle

    def search(self, resource_type: str, params: Any = None) -> dict[str, Any]:
        """Run a search and return the first page of results."""
        response = self._request("GET", f"{self.base_url}/{resource_type}", params=params)
        return self._bundle(response)

    def iter_pages(self, resource_type: str, params: Any = None) -> Iterator[dict[str, Any]]:
        """Yield each Bundle page of a search, following 'next' links until there are none."""
        bundle = self.search(resource_type, params)
        pages = 1
        while True:
            yield bundle
            next_url = next(
                (
                    link.get("url")
                    for link in bundle.get("link", [])
                    if link.get("relation") == "next" and link.get("url")
                ),
                None,
            )
            if next_url is None:
                break
            bundle = self._bundle(self._request("GET", next_url))
            pages += 1
        logger.debug("Read %d page(s) of %s results", pages, resource_type)

    def find_patients_by_identifier(self, identifier: str) -> list[dict[str, Any]]:
        bundle = self.search("Patient", {"identifier": identifier})
        return [
            entry["resource"]
            for entry in bundle.get("entry", [])
            if entry.get("resource", {}).get("resourceType") == "Patient"
        ]

    def find_risk_assessments(self, patient_id: str, method: str) -> list[dict[str, Any]]:
        found = []
        for page in self.iter_pages("RiskAssessment", {"patient": patient_id, "method": method}):
            found.extend(
                entry["resource"]
                for entry in page.get("entry", [])
                if entry.get("resource", {}).get("resourceType") == "RiskAssessment"
            )
        return found

    def create(self, resource: dict[str, Any]) -> None:
        self._request(
            "POST",
            f"{self.base_url}/{resource['resourceType']}",
            json=resource,
            headers={"Content-Type": FHIR_JSON},
        )

    def delete(self, resource_type: str, resource_id: str) -> None:
        self._request("DELETE", f"{self.base_url}/{resource_type}/{resource_id}")
