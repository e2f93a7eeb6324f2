"""Frankfurter historical FX rate API client."""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation

import httpx

from ..exceptions import FXRateAPIError
from ..models import Currency

logger = logging.getLogger(__name__)


class FrankfurterClient:
    """Client for the Frankfurter API (ECB reference rates)."""

    BASE_URL = "https://api.frankfurter.app"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the Frankfurter client."""
        self.client = httpx.Client(
            base_url=base_url or self.BASE_URL,
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def get_rate(
        self,
        on_date: date | None,
        from_currency: Currency,
        to_currency: Currency,
    ) -> tuple[Decimal, date]:
        """
        Get the rate for a currency pair on a date.

        Args:
            on_date: Date to fetch, or None for the latest available rate
            from_currency: Currency to convert FROM
            to_currency: Currency to convert TO

        Returns:
            Tuple of (rate, date the service says the rate applies to).
            The returned date may differ from on_date (weekends and holidays
            snap to the nearest trading day).

        Raises:
            FXRateAPIError: On HTTP failure, unparsable response or missing rate
        """
        path = f"/{on_date.isoformat()}" if on_date else "/latest"
        params = {"from": str(from_currency), "to": str(to_currency)}

        logger.info(
            f"Fetching {from_currency}->{to_currency} rate from Frankfurter "
            f"({on_date.isoformat() if on_date else 'latest'})"
        )

        try:
            response = self.client.get(path, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Frankfurter API error: {e.response.status_code} - {e.response.text}"
            )
            raise FXRateAPIError(
                f"FX service HTTP error: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Network error contacting Frankfurter API: {e}")
            raise FXRateAPIError(f"FX service network error: {e}") from e
        except ValueError as e:
            logger.error(f"Frankfurter API returned invalid JSON: {e}")
            raise FXRateAPIError("FX service returned an unparsable response") from e

        logger.debug(f"Frankfurter response: {data}")

        if not isinstance(data, dict):
            raise FXRateAPIError("FX service returned an unexpected response shape")

        rates = data.get("rates") or {}
        if not isinstance(rates, dict):
            raise FXRateAPIError("FX service returned an unexpected response shape")
        raw_rate = rates.get(str(to_currency))
        if raw_rate is None:
            logger.error(f"Frankfurter API returned no rate for {to_currency}")
            raise FXRateAPIError(f"FX service returned no rate for {to_currency}")

        try:
            rate = Decimal(str(raw_rate))
            rate_date = date.fromisoformat(data["date"])
        except (InvalidOperation, KeyError, TypeError, ValueError) as e:
            raise FXRateAPIError(f"FX service returned a malformed rate: {e}") from e

        if rate <= 0:
            raise FXRateAPIError(f"FX service returned an invalid rate: {rate}")

        return rate, rate_date
