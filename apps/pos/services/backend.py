"""
HTTP implementation of the catalog and sales services.
Talks JSON to the POS backend with the cashier's bearer token.
"""
import json
import logging
from decimal import Decimal
from typing import Dict, List, Optional

import requests
from django.conf import settings

from ..exceptions import (
    AuthExpiredError,
    CatalogError,
    StockConflictError,
    SubmissionError,
)
from .auth import EXPIRED_TOKEN_CODES, CredentialProvider
from .base import BaseCatalogService, BaseSalesService, CheckoutResult

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_URL = 'http://localhost:3001'
DEFAULT_TIMEOUT = 30


class BackendClient:
    """
    Thin JSON client for the POS backend.

    Raises engine errors instead of returning error dicts so the checkout
    state machine can tell the failure kinds apart.
    """

    def __init__(self, credentials: CredentialProvider, base_url: str = '', timeout: Optional[float] = None):
        self.credentials = credentials
        self.base_url = (base_url or getattr(settings, 'POS_BACKEND_URL', '') or DEFAULT_BACKEND_URL).rstrip('/')
        self.timeout = timeout or getattr(settings, 'POS_BACKEND_TIMEOUT', DEFAULT_TIMEOUT)

    def _get_headers(self) -> Dict:
        return {
            'Authorization': f'Bearer {self.credentials.get_token()}',
            'Content-Type': 'application/json',
        }

    def _make_request(self, method: str, endpoint: str, data: Optional[Dict] = None,
                      params: Optional[Dict] = None, error_class=SubmissionError) -> Dict:
        """
        Make a request to the backend and return the decoded JSON body.

        Raises:
            AuthExpiredError: no usable token, or the backend rejected it
            error_class: network failure, non-2xx response, or invalid JSON
        """
        if self.credentials.is_expired:
            raise AuthExpiredError("Session expired. Please login again.")

        url = f"{self.base_url}{endpoint}"

        try:
            response = requests.request(
                method.upper(),
                url,
                headers=self._get_headers(),
                json=data,
                params=params,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            logger.error(f"Backend request timed out: {method.upper()} {endpoint}")
            raise error_class(f"Request to {endpoint} timed out")
        except requests.exceptions.RequestException as e:
            logger.error(f"Backend request error: {method.upper()} {endpoint}: {e}")
            raise error_class(f"Network error: {e}")

        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            body = None

        if response.status_code in (401, 403):
            code = (body or {}).get('code', '') if isinstance(body, dict) else ''
            if code in EXPIRED_TOKEN_CODES:
                self.credentials.mark_expired(code)
                raise AuthExpiredError("Session expired. Please login again.", code=code)

        if not response.ok:
            self._raise_for_error(response, body, error_class)

        if not isinstance(body, dict):
            raise _build_error(
                error_class,
                f"Invalid response from backend for {endpoint}",
                status_code=response.status_code
            )

        return body

    def _raise_for_error(self, response, body, error_class):
        body = body if isinstance(body, dict) else {}
        message = body.get('error') or body.get('message') or f"HTTP {response.status_code}"
        code = body.get('code') or None

        logger.warning(f"Backend rejected request: {response.status_code} {code or ''} {message}")

        if code == StockConflictError.code and issubclass(error_class, SubmissionError):
            raise StockConflictError(message, status_code=response.status_code, data=body)
        raise _build_error(error_class, message, status_code=response.status_code, code=code, data=body)


def _build_error(error_class, message, status_code=None, code=None, data=None):
    if issubclass(error_class, SubmissionError):
        return error_class(message, code=code, status_code=status_code, data=data)
    return error_class(message)


class BackendCatalogService(BaseCatalogService):
    """Product and store lookups against the backend."""

    def __init__(self, client: BackendClient):
        self.client = client

    def _get(self, endpoint, params=None):
        return self.client._make_request('GET', endpoint, params=params, error_class=CatalogError)

    def list_products(self, store_id, category_id='all') -> List[Dict]:
        params = {'store_id': store_id, 'category_id': category_id or 'all'}
        return self._get('/pos/products/category', params).get('products') or []

    def search_products(self, store_id, query: str) -> List[Dict]:
        params = {'query': query, 'store_id': store_id}
        return self._get('/pos/products/search', params).get('products') or []

    def list_stores(self) -> List[Dict]:
        return self._get('/client/stores').get('stores') or []

    def list_categories(self) -> List[Dict]:
        return self._get('/client/categories').get('categories') or []


class BackendSalesService(BaseSalesService):
    """Submits sales to the backend."""

    def __init__(self, client: BackendClient):
        self.client = client

    def submit_sale(self, payload: Dict) -> CheckoutResult:
        logger.info(
            f"Submitting sale for store {payload.get('store_id')}: "
            f"{len(payload.get('line_items', []))} lines, total {payload.get('total_amount')}"
        )
        data = self.client._make_request('POST', '/pos/sales', data=payload)

        if not data.get('receipt_number') and not (data.get('sale') or {}).get('receipt_number'):
            raise SubmissionError("Sales service response is missing a receipt number", data=data)

        result = CheckoutResult.from_response(data, payload)
        logger.info(f"Sale recorded: receipt {result.receipt_number}")
        return result

    def today_summary(self, store_id) -> Dict:
        data = self.client._make_request(
            'GET', '/pos/sales/today', params={'store_id': store_id}, error_class=CatalogError
        )
        sales = data.get('sales') or []
        return {
            'sales': data.get('count', 0) or 0,
            'total': Decimal(str(data.get('total', 0) or 0)),
            'items': sum(int(sale.get('items_count', 0) or 0) for sale in sales),
        }


def get_backend_services(credentials: CredentialProvider):
    """
    Factory for the configured catalog and sales services.

    Returns:
        (catalog_service, sales_service) sharing one BackendClient
    """
    client = BackendClient(credentials)
    return BackendCatalogService(client), BackendSalesService(client)
