# aggregator_client.py
import json
import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..conf import get_aggregator_settings
from ..exceptions import AggregatorTransportError

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class AggregatorClient:
    """
    HTTP transport for one state aggregator.

    Transient failures (connection errors, 429/5xx) are retried with
    exponential backoff by the mounted urllib3 Retry. Anything still failing
    after that is raised as AggregatorTransportError; ordinary rejections
    (4xx with a body) come back as a normal result dict.
    """

    def __init__(self, name, base_url, api_key="", account_id=None, provider_id=None,
                 timeout=30, max_retries=3, backoff_factor=0.5, auth_style="bearer",
                 session=None):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.account_id = account_id
        self.provider_id = provider_id
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.auth_style = auth_style
        self.session = session or self._build_session(max_retries, backoff_factor)

    @property
    def retry_budget(self):
        """
        Upper bound in seconds for one send() including every retry.

        Each attempt may use the full request timeout; urllib3 sleeps
        backoff_factor * 2 ** (n - 1) before the n-th retry.
        """
        attempts = self.max_retries + 1
        backoff = sum(self.backoff_factor * 2 ** n for n in range(self.max_retries))
        return self.timeout * attempts + backoff

    @classmethod
    def from_settings(cls, name, auth_style="bearer"):
        return cls(name=name, auth_style=auth_style, **get_aggregator_settings(name))

    def _build_session(self, max_retries, backoff_factor):
        retry = Retry(
            total=max_retries,
            connect=max_retries,
            read=max_retries,
            status=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=RETRY_STATUS_CODES,
            allowed_methods=frozenset(["GET", "POST"]),
            raise_on_status=False,
        )
        session = requests.Session()
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def _get_headers(self):
        headers = {
            "Cache-Control": "no-cache",
            "Content-Type": "application/json",
        }
        if self.auth_style == "subscription":
            # Sandata / AHCCCS style
            headers["Ocp-Apim-Subscription-Key"] = self.api_key
            if self.account_id:
                headers["Account"] = self.account_id
        elif self.auth_style == "api_key":
            headers["X-API-Key"] = self.api_key
        else:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def send(self, path, method="POST", payload=None, params=None):
        url = f"{self.base_url}{path}"
        headers = self._get_headers()

        logger.info(f"{self.name} API Request: {method} {url}")
        if params:
            logger.info(f"Query params: {params}")
        if payload is not None:
            logger.debug(f"Payload: {json.dumps(payload, indent=2, default=str)[:1000]}...")

        try:
            if method.upper() == "GET":
                response = self.session.get(url, headers=headers, params=params, timeout=self.timeout)
            else:
                response = self.session.post(url, json=payload, headers=headers, params=params,
                                             timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.name} API request exception: {e}")
            raise AggregatorTransportError(self.name, f"Request failed: {e}") from e

        logger.info(f"{self.name} API Response Status: {response.status_code}")

        if response.status_code in RETRY_STATUS_CODES:
            # Retries already exhausted by the adapter
            raise AggregatorTransportError(
                self.name,
                f"Aggregator unavailable (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        return {
            "status_code": response.status_code,
            "response": self._safe_parse_response(response),
            "url": url,
            "method": method,
            "params_used": params,
            "account_id_used": self.account_id,
            "provider_id_used": self.provider_id,
        }

    def _safe_parse_response(self, response):
        if not response.content:
            return {"message": "Empty response received"}

        try:
            return response.json()
        except ValueError:
            return {
                "error": "Invalid JSON response",
                "status_code": response.status_code,
                "content_preview": response.text[:500],
            }

    def get_status(self, entity, transaction_id=None):
        """Status of a previous upload, e.g. get_status("visits", "abc-123")"""
        if transaction_id:
            return self.send(f"/{entity}/status", "GET", params={"id": transaction_id})
        return self.send(f"/{entity}/status", "GET")
