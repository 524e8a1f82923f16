"""
HTTP client for the scan API and the polling loop that waits for a verdict.

The server never pushes; ``ScanPoller.poll`` keeps fetching a scan every
``interval`` seconds while it is ``processing``. A failed fetch is raised to
the caller and ends polling. There is no attempt limit.
"""

from typing import Any, Callable
import logging
import time

import requests

from scanform.models import ScanRecord
from scanform.settings import SCAN_POLL_INTERVAL_SECONDS

logger = logging.getLogger("scanform.poller")


class ApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ScanClient:
    """Thin wrapper that unwraps the ``{success, data, error}`` envelope."""

    def __init__(self, base_url: str = "", session=None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self.session.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise ApiError(f"Request failed: {exc}") from exc

        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            raise ApiError("Request failed", status)

        if not 200 <= status < 300 or not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            raise ApiError(error or "Request failed", status)
        if body.get("data") is None:
            raise ApiError("Request failed", status)
        return body["data"]

    def submit(
        self,
        filename: str,
        content: bytes,
        mime: str = "application/octet-stream",
        title: str | None = None,
        description: str | None = None,
    ) -> dict:
        form = {}
        if title:
            form["title"] = title
        if description:
            form["description"] = description
        return self._request(
            "POST", "/api/scan", files={"file": (filename, content, mime)}, data=form
        )

    def get_scan(self, scan_id: str) -> ScanRecord:
        return ScanRecord.model_validate(self._request("GET", f"/api/scans/{scan_id}"))

    def list_scans(self, cursor: str | None = None, limit: int | None = None) -> dict:
        params: dict[str, Any] = {}
        if cursor:
            params["cursor"] = cursor
        if limit:
            params["limit"] = limit
        return self._request("GET", "/api/scans", params=params)

    def retry(self, scan_id: str) -> dict:
        return self._request("POST", f"/api/scans/{scan_id}/retry")

    def delete(self, scan_id: str) -> dict:
        return self._request("DELETE", f"/api/scans/{scan_id}")


class ScanPoller:
    def __init__(
        self,
        client: ScanClient,
        interval: float = SCAN_POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.interval = interval
        self.sleep = sleep

    def poll(
        self,
        scan_id: str,
        on_update: Callable[[ScanRecord], None] | None = None,
    ) -> ScanRecord:
        attempt = 0
        while True:
            attempt += 1
            record = self.client.get_scan(scan_id)
            if on_update is not None:
                on_update(record)
            if record.status != "processing":
                logger.debug("Scan %s settled as %s after %d fetches", scan_id, record.status, attempt)
                return record
            self.sleep(self.interval)
