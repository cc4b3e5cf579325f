"""
Finnhub API client with rate limiting and bounded retry

Every request first takes a slot from the shared rate limiter. HTTP 429,
5xx responses and network failures are retried with a fixed delay; other
4xx responses fail immediately. All failures surface as ``ProviderError``.
"""

from typing import Any, Dict, List, Optional, Union

import aiohttp

from value_screener.config import ScreenerConfig, config as default_config
from value_screener.data_collector.rate_limiter import NoOpRateLimiter, RateLimiter, get_rate_limiter
from value_screener.exceptions import ProviderError
from value_screener.models import CompanyProfile, ExchangeListing, FundamentalSnapshot, Quote
from value_screener.utils.logger import get_logger
from value_screener.utils.retry import RetryConfig, RetryError, async_retry

logger = get_logger(__name__, utility="finnhub")


class FinnhubClient:
    """Async client for the Finnhub REST API"""

    def __init__(
        self,
        rate_limiter: Optional[Union[RateLimiter, NoOpRateLimiter]] = None,
        cfg: Optional[ScreenerConfig] = None,
        api_key: Optional[str] = None,
    ) -> None:
        """
        Args:
            rate_limiter: Shared limiter; every concurrent worker must use the same one
            cfg: Screener configuration (defaults to the module-level config)
            api_key: Finnhub API key (defaults to config)
        """
        self.config = cfg or default_config
        self.api_key = api_key or self.config.API_KEY
        self.base_url = self.config.BASE_URL.rstrip("/")
        self.rate_limiter = rate_limiter or get_rate_limiter(self.config)
        self.retry_config = RetryConfig(
            max_attempts=self.config.MAX_RETRIES,
            base_delay=self.config.RETRY_DELAY,
            backoff_factor=1.0,
            jitter=False,
        )
        self.session: Optional[aiohttp.ClientSession] = None
        self.request_count = 0

    async def __aenter__(self) -> "FinnhubClient":
        if not self.api_key:
            raise ValueError("FINNHUB_API_KEY environment variable is required")
        timeout = aiohttp.ClientTimeout(
            total=self.config.REQUEST_TIMEOUT, connect=self.config.CONNECTION_TIMEOUT
        )
        self.session = aiohttp.ClientSession(
            headers={"User-Agent": "ValueScreener/1.0", "Accept": "application/json"},
            timeout=timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def _make_single_request(self, url: str, params: Dict[str, Any], operation: str) -> Any:
        """
        One rate-limited HTTP GET without retry (wrapped by the retry decorator)

        Raises:
            ProviderError: classified by status code
            aiohttp.ClientConnectionError / asyncio.TimeoutError: network failures
        """
        await self.rate_limiter.acquire(operation)
        self.request_count += 1
        logger.debug(f"[{operation}] GET {url}")

        async with self.session.get(url, params={**params, "token": self.api_key}) as response:
            status = response.status

            if status == 200:
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise ProviderError(
                        "Malformed JSON in response", operation, status, last_cause=e,
                        error_category="malformed",
                    ) from e

            if status == 429:
                logger.warning(f"[{operation}] Rate limit hit - triggering retry")
                raise ProviderError("Rate limit exceeded", operation, status)

            if status == 401:
                raise ProviderError("Invalid API key", operation, status)

            if status == 403:
                raise ProviderError("Access forbidden - check subscription level", operation, status)

            if status >= 500:
                logger.warning(f"[{operation}] Server error {status} - triggering retry")
                raise ProviderError(f"Server error {status}", operation, status)

            body = await response.text()
            raise ProviderError(f"HTTP {status}: {body[:200]}", operation, status)

    async def _request(self, endpoint: str, params: Dict[str, Any], operation: str) -> Any:
        """GET ``endpoint`` with retry; exhaustion becomes a ProviderError carrying the last cause."""
        if not self.session:
            raise RuntimeError("Client session not initialized. Use async context manager.")

        url = f"{self.base_url}{endpoint}"

        @async_retry(config=self.retry_config)
        async def _execute_request() -> Any:
            return await self._make_single_request(url, params, operation)

        try:
            return await _execute_request()
        except RetryError as e:
            last = e.last_exception
            raise ProviderError(
                f"Request to {endpoint} failed after {e.attempts} attempts. Last error: {last}",
                operation,
                status_code=getattr(last, "status_code", None),
                last_cause=last,
                error_category="exhausted",
            ) from e
        except aiohttp.ClientError as e:
            raise ProviderError(str(e), operation, last_cause=e) from e

    @staticmethod
    def _require_dict(data: Any, operation: str) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ProviderError(
                f"Expected JSON object, got {type(data).__name__}", operation,
                error_category="malformed",
            )
        return data

    async def get_quote(self, symbol: str) -> Quote:
        data = await self._request("/quote", {"symbol": symbol}, "getQuote")
        return Quote.model_validate(self._require_dict(data, "getQuote"))

    async def get_profile(self, symbol: str) -> CompanyProfile:
        data = await self._request("/stock/profile2", {"symbol": symbol}, "getProfile")
        return CompanyProfile.model_validate(self._require_dict(data, "getProfile"))

    async def get_fundamentals(self, symbol: str) -> FundamentalSnapshot:
        data = await self._request(
            "/stock/metric", {"symbol": symbol, "metric": "all"}, "getFundamentals"
        )
        return FundamentalSnapshot.from_metric_payload(self._require_dict(data, "getFundamentals"))

    async def get_exchange_rate(self, from_currency: str, to_currency: str = "USD") -> float:
        """
        Units of ``to_currency`` per one unit of ``from_currency``

        Raises:
            ProviderError: with ``error_category="invalid_rate"`` when the rate is
                missing, non-numeric or non-positive
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return 1.0

        data = await self._request(
            "/forex/exchange", {"symbol": f"{from_currency}{to_currency}"}, "getExchangeRate"
        )
        data = self._require_dict(data, "getExchangeRate")
        rate = data.get("rate")
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
            raise ProviderError(
                f"Invalid forex rate received for {from_currency}/{to_currency}: {rate!r}",
                "getExchangeRate",
                response_data=data,
                error_category="invalid_rate",
            )
        logger.info(f"Using forex rate: 1 {from_currency} = {rate} {to_currency}")
        return float(rate)

    async def list_identifiers(self, exchange: str = "US") -> List[ExchangeListing]:
        """All symbols listed on ``exchange``; a non-list payload is an error."""
        data = await self._request("/stock/symbol", {"exchange": exchange}, "listIdentifiers")
        if not isinstance(data, list):
            raise ProviderError(
                "Invalid response format from Finnhub API: expected a list of symbols",
                "listIdentifiers",
                error_category="malformed",
            )

        listings: List[ExchangeListing] = []
        invalid = 0
        for row in data:
            try:
                listings.append(ExchangeListing.model_validate(row))
            except (ValueError, TypeError):
                invalid += 1
        if data and not listings:
            raise ProviderError(
                f"None of the {len(data)} symbol rows could be parsed", "listIdentifiers",
                error_category="malformed",
            )
        if invalid:
            logger.warning(f"Dropped {invalid} malformed symbol rows for exchange {exchange}")
        logger.info(f"Fetched {len(listings)} identifiers for exchange {exchange}")
        return listings
