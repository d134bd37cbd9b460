"""
Page fetcher - raw HTML through the ZenRows anti-bot proxy, with retry logic.
"""
import logging
import time
from typing import Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from ..config import ZenRowsConfig, get_config
from ..errors import AntiBotChallenge, SourceFetchError


logger = logging.getLogger(__name__)

# Markers of a challenge page served with a 200
CHALLENGE_MARKERS = ("captcha-delivery.com", "geo.captcha-delivery", "datadome", "cf-chl-bypass")


class ZenRowsFetcher:
    """
    Fetches a page through ZenRows. One retry with a short backoff on
    timeouts, challenges and retryable upstream statuses, all inside the
    caller's time budget. A fresh HTTP session is used per call so
    concurrent searches never share connection state.
    """

    def __init__(self, config: Optional[ZenRowsConfig] = None):
        self.config = config or get_config().zenrows

    def is_available(self) -> bool:
        return bool(self.config.api_key)

    def _is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, (requests.Timeout, requests.ConnectionError, AntiBotChallenge)):
            return True
        if isinstance(exc, SourceFetchError):
            return exc.status in self.config.retryable_statuses
        return False

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(f"Fetch retry attempt {retry_state.attempt_number}: {exc}")

    def fetch_html(
        self,
        source_id: str,
        url: str,
        budget_seconds: float,
        js_render: bool = False,
    ) -> str:
        """
        Fetch a page as HTML.

        Args:
            source_id: Used to tag errors
            url: Target page
            budget_seconds: Time left for every attempt combined
            js_render: Ask the proxy to render JavaScript

        Raises:
            SourceFetchError: Upstream or proxy failure after retries
            AntiBotChallenge: Still challenged after retries
            requests.RequestException: Network failure after retries
        """
        if not self.is_available():
            raise SourceFetchError(source_id, "ZenRows API key not configured")

        give_up_at = time.monotonic() + budget_seconds
        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_attempts) | stop_after_delay(budget_seconds),
            wait=wait_fixed(self.config.backoff_seconds),
            retry=retry_if_exception(self._is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )

        with requests.Session() as session:
            for attempt in retrying:
                with attempt:
                    timeout = max(give_up_at - time.monotonic(), 0.1)
                    return self._fetch_once(session, source_id, url, timeout, js_render)

        # Unreachable: Retrying either returns or reraises
        raise SourceFetchError(source_id, "fetch gave up")

    def _fetch_once(
        self,
        session: requests.Session,
        source_id: str,
        url: str,
        timeout: float,
        js_render: bool,
    ) -> str:
        params = {
            "apikey": self.config.api_key,
            "url": url,
            "premium_proxy": str(self.config.premium_proxy).lower(),
            "proxy_country": self.config.proxy_country,
        }
        if js_render:
            params["js_render"] = "true"

        response = session.get(self.config.base_url, params=params, timeout=timeout)

        if response.status_code in (403, 429):
            raise AntiBotChallenge(source_id, f"blocked with HTTP {response.status_code}", status=response.status_code)
        if response.status_code >= 400:
            raise SourceFetchError(source_id, f"HTTP {response.status_code}", status=response.status_code)

        html = response.text
        if any(marker in html[:20000] for marker in CHALLENGE_MARKERS):
            raise AntiBotChallenge(source_id, "challenge page returned")
        return html
