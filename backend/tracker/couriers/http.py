from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from tracker.core.config import settings
from tracker.couriers.errors import CourierApiError, CourierApiUnavailable


logger = logging.getLogger(__name__)


class CourierHttpClient:
    """
    JSON-over-HTTP transport for courier APIs.

    Every call carries a timeout. Failures are split into retryable
    (`CourierApiUnavailable`: network errors, 429, 5xx) and permanent
    (`CourierApiError`: other 4xx, unreadable bodies).
    """

    def __init__(self, *, timeout: Optional[float] = None, session=None) -> None:
        self.timeout = settings.COURIER_HTTP_TIMEOUT_SECONDS if timeout is None else timeout
        self._session = session or requests

    def request_json(
        self,
        courier_id: str,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        try:
            resp = self._session.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise CourierApiUnavailable(courier_id, f"{courier_id} API timed out") from exc
        except requests.ConnectionError as exc:
            raise CourierApiUnavailable(courier_id, f"{courier_id} API unreachable") from exc

        status_code = resp.status_code
        if status_code == 429 or status_code >= 500:
            logger.warning(
                "courier.http.unavailable",
                extra={"courier_id": courier_id, "status_code": status_code},
            )
            raise CourierApiUnavailable(
                courier_id,
                f"{courier_id} API returned {status_code}",
                status_code=status_code,
            )
        if status_code >= 400:
            raise CourierApiError(
                courier_id,
                f"{courier_id} API returned {status_code}",
                status_code=status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise CourierApiError(
                courier_id,
                f"{courier_id} API returned a non-JSON body",
                status_code=status_code,
            ) from exc

    def get_json(self, courier_id: str, url: str, **kwargs) -> Any:
        return self.request_json(courier_id, "GET", url, **kwargs)

    def post_json(self, courier_id: str, url: str, **kwargs) -> Any:
        return self.request_json(courier_id, "POST", url, **kwargs)
