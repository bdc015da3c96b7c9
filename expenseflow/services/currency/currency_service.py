from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional
import logging
import httpx

from expenseflow.core.config import settings

logger = logging.getLogger(__name__)

class CurrencyConverter:
    """
    Converts expense amounts into the company currency for reporting.

    Rates come from EXCHANGE_RATE_API_URL, called as `{url}/{BASE}` and
    expected to answer `{"rates": {"EUR": 0.92, ...}}`. Any failure yields
    None; routing never depends on the converted amount.
    """
    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url: Optional[str] = base_url or settings.EXCHANGE_RATE_API_URL
        self.transport = transport

    async def get_rate(self, from_currency: str, to_currency: str) -> Optional[Decimal]:
        if not self.base_url:
            logger.info("Exchange rate API not configured; skipping conversion.")
            return None

        url = f"{self.base_url.rstrip('/')}/{from_currency.upper()}"
        timeout = httpx.Timeout(settings.EXCHANGE_RATE_TIMEOUT, connect=settings.EXCHANGE_RATE_TIMEOUT)

        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            try:
                r = await client.get(url)
                if not r.is_success:
                    logger.warning("Exchange rate lookup failed: %s | %s", r.status_code, r.text)
                    return None
                rate = r.json().get("rates", {}).get(to_currency.upper())
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Exchange rate lookup error for %s->%s: %s", from_currency, to_currency, e)
                return None

        if rate is None:
            logger.warning("No exchange rate from %s to %s", from_currency, to_currency)
            return None

        try:
            return Decimal(str(rate))
        except InvalidOperation:
            logger.warning("Unusable exchange rate %r for %s->%s", rate, from_currency, to_currency)
            return None

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Optional[Decimal]:
        if from_currency.upper() == to_currency.upper():
            return Decimal(amount)

        rate = await self.get_rate(from_currency, to_currency)
        if rate is None:
            return None
        return (Decimal(amount) * rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
