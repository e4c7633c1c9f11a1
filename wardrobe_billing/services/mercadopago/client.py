"""
MercadoPago client wrapper using httpx sync client.
Read-only access to preapprovals and authorized payments; used to fetch ground truth.
"""
import logging
import time
from typing import Any

import httpx
import pybreaker

from wardrobe_billing.services.billing.errors import ExternalServiceError
from wardrobe_billing.utils.metrics import (
    mercadopago_requests_total,
    mercadopago_request_duration_seconds,
)


logger = logging.getLogger(__name__)

MERCADOPAGO_API_BASE = "https://api.mercadopago.com"


class MercadoPagoClient:
    """
    Sync MercadoPago client. The access token is passed in by the caller;
    nothing is read from process-wide state.
    Any transport error, timeout, non-2xx answer or open breaker raises ExternalServiceError.
    """

    def __init__(
        self,
        access_token: str,
        api_base: str = MERCADOPAGO_API_BASE,
        timeout: float = 10.0,
        breaker: pybreaker.CircuitBreaker | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._breaker = breaker
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._api_base,
                timeout=self._timeout,
                headers={"Authorization": f"Bearer {self._access_token}"},
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _record_request(self, endpoint: str, status: str, duration: float) -> None:
        mercadopago_requests_total.labels(endpoint=endpoint, status=status).inc()
        mercadopago_request_duration_seconds.labels(endpoint=endpoint).observe(duration)

    def _get(self, endpoint: str, path: str, params: dict | None = None) -> dict[str, Any]:
        start = time.time()
        try:
            if self._breaker is not None:
                resp = self._breaker.call(self._send, path, params)
            else:
                resp = self._send(path, params)
        except pybreaker.CircuitBreakerError as e:
            self._record_request(endpoint, "circuit_open", time.time() - start)
            logger.warning("mercadopago_circuit_open", extra={"path": path})
            raise ExternalServiceError(detail={"reason": "circuit_open"}) from e
        except httpx.TimeoutException as e:
            self._record_request(endpoint, "timeout", time.time() - start)
            logger.warning("mercadopago_timeout", extra={"path": path, "error": str(e)})
            raise ExternalServiceError(detail={"reason": "timeout"}) from e
        except httpx.HTTPError as e:
            self._record_request(endpoint, "transport_error", time.time() - start)
            logger.warning("mercadopago_transport_error", extra={"path": path, "error": str(e)})
            raise ExternalServiceError(detail={"reason": "transport_error"}) from e
        except ExternalServiceError:
            self._record_request(endpoint, "error", time.time() - start)
            raise

        self._record_request(endpoint, "success", time.time() - start)
        try:
            data = resp.json()
        except ValueError as e:
            logger.error("mercadopago_invalid_json", extra={"path": path})
            raise ExternalServiceError(detail={"reason": "invalid_json"}) from e
        if not isinstance(data, dict):
            logger.error("mercadopago_unexpected_payload", extra={"path": path, "error": type(data).__name__})
            raise ExternalServiceError(detail={"reason": "unexpected_payload"})
        return data

    def _send(self, path: str, params: dict | None) -> httpx.Response:
        resp = self.client.get(path, params=params)
        if resp.is_success:
            return resp
        logger.error(
            "mercadopago_api_error",
            extra={"path": path, "status_code": resp.status_code, "error": resp.text[:500]},
        )
        raise ExternalServiceError(detail={"reason": "http_status", "http_status": resp.status_code})

    def get_preapproval(self, preapproval_id: str) -> dict[str, Any]:
        """GET /preapproval/{id} - the recurring-billing agreement."""
        return self._get("preapproval", f"/preapproval/{preapproval_id}")

    def search_preapproval_id(self, external_reference: str) -> str | None:
        """Find the agreement created for a checkout when we never stored its id."""
        data = self._get(
            "preapproval_search",
            "/preapproval/search",
            params={"external_reference": external_reference},
        )
        results = data.get("results") or []
        if not isinstance(results, list):
            raise ExternalServiceError(detail={"reason": "unexpected_payload"})
        for item in results:
            if not isinstance(item, dict):
                continue
            if str(item.get("external_reference") or "") == external_reference and item.get("id"):
                return str(item["id"])
        return None

    def get_authorized_payment(self, payment_id: str) -> dict[str, Any]:
        """GET /authorized_payments/{id} - one recurring charge of an agreement."""
        return self._get("authorized_payment", f"/authorized_payments/{payment_id}")
