from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union
from urllib.error import URLError
from urllib.request import Request, urlopen

from sqlalchemy.orm import Session

from config import get_settings
from models import Currency
from repositories import CurrencyRepository


logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal, str]

MICROS = Decimal("1000000")


class CurrencyNotFound(LookupError):
    pass


class ConfigurationError(RuntimeError):
    pass


class ProviderError(RuntimeError):
    pass


def rate_to_micros(rate: Number) -> int:
    return int(
        (Decimal(str(rate)) * MICROS).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )


def micros_to_rate(rate_micros: int) -> Decimal:
    return Decimal(rate_micros) / MICROS


def quantize_cents(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class RateProvider:
    name: str
    url_template: str
    # exchangerate.host reports failures with HTTP 200 and success=false
    requires_success_flag: bool = False

    def url_for(self, base_code: str) -> str:
        return self.url_template.format(base=base_code)


@dataclass
class RateUpdateSummary:
    base: str
    updated: dict[str, Decimal] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    fetched: bool = False


def default_providers() -> list[RateProvider]:
    settings = get_settings()
    return [
        RateProvider("exchangerate-api", settings.fx_primary_url),
        RateProvider(
            "exchangerate.host", settings.fx_fallback_url, requires_success_flag=True
        ),
    ]


def _fetch_json(url: str, *, timeout: float) -> dict:
    req = Request(url, headers={"Accept": "application/json"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            if resp.status != 200:
                raise ProviderError(f"HTTP {resp.status} from {url}")
            return json.loads(resp.read().decode("utf-8"))
    except (URLError, TimeoutError, json.JSONDecodeError) as exc:
        raise ProviderError(f"Failed to fetch {url}") from exc


def _parse_rates(payload: dict, provider: RateProvider) -> dict[str, Decimal]:
    if provider.requires_success_flag and not payload.get("success"):
        raise ProviderError(f"{provider.name} reported failure")
    raw = payload.get("rates")
    if not isinstance(raw, dict) or not raw:
        raise ProviderError(f"{provider.name} returned no rates")
    rates: dict[str, Decimal] = {}
    for code, value in raw.items():
        try:
            rate = Decimal(str(value))
        except InvalidOperation:
            continue
        if rate.is_finite() and rate > 0:
            rates[code.upper()] = rate
    return rates


def fetch_exchange_rates(
    base_code: str,
    providers: Optional[list[RateProvider]] = None,
    *,
    timeout: Optional[float] = None,
) -> Optional[dict[str, Decimal]]:
    """Rates quoted per 1 unit of ``base_code``, or None when every provider fails."""
    providers = providers if providers is not None else default_providers()
    if timeout is None:
        timeout = get_settings().fx_timeout_secs
    base_code = base_code.strip().upper()
    for provider in providers:
        try:
            payload = _fetch_json(provider.url_for(base_code), timeout=timeout)
            rates = _parse_rates(payload, provider)
        except ProviderError as exc:
            logger.warning(f"fx_fetch_failed: provider={provider.name} error={exc}")
            continue
        logger.info(
            f"fx_fetch_ok: provider={provider.name} base={base_code} count={len(rates)}"
        )
        return rates
    logger.error(f"fx_fetch_exhausted: base={base_code} providers={len(providers)}")
    return None


class CurrencyConverter:
    def __init__(
        self, session: Session, providers: Optional[list[RateProvider]] = None
    ) -> None:
        self.session = session
        self.currencies = CurrencyRepository(session)
        self.providers = providers
        self._cache: dict[str, Currency] = {}

    def currency(self, code: str) -> Currency:
        key = code.strip().upper()
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        currency = self.currencies.by_code(key)
        if currency is None:
            raise CurrencyNotFound(f"Currency not found: {key}")
        self._cache[key] = currency
        return currency

    def base_currency(self) -> Currency:
        base = self.currencies.base()
        if base is None:
            raise ConfigurationError("Base currency not configured")
        return base

    def convert(self, amount: Number, from_code: str, to_code: str) -> Decimal:
        value = Decimal(str(amount))
        source = self.currency(from_code)
        target = self.currency(to_code)
        if source.code == target.code:
            return value
        if source.is_base:
            return value * micros_to_rate(target.rate_micros)
        if target.is_base:
            return value / micros_to_rate(source.rate_micros)
        in_base = value / micros_to_rate(source.rate_micros)
        return in_base * micros_to_rate(target.rate_micros)

    def convert_to_base_currency(self, amount: Number, code: str) -> Decimal:
        source = self.currency(code)
        if source.is_base:
            return Decimal(str(amount))
        return self.convert(amount, code, self.base_currency().code)

    def convert_cents(self, amount_cents: int, from_code: str, to_code: str) -> int:
        return quantize_cents(self.convert(amount_cents, from_code, to_code))

    def format_amount(self, amount_cents: int, code: str) -> str:
        currency = self.currency(code)
        sign = "-" if amount_cents < 0 else ""
        return f"{sign}{currency.symbol}{abs(amount_cents) / 100:,.2f}"

    def update_exchange_rates(self) -> RateUpdateSummary:
        base = self.base_currency()
        summary = RateUpdateSummary(base=base.code)
        rates = fetch_exchange_rates(base.code, self.providers)
        if not rates:
            logger.warning("fx_update_skipped: no rates fetched, keeping stored rates")
            return summary
        summary.fetched = True

        for currency in self.currencies.list_all():
            if currency.is_base:
                continue
            rate = rates.get(currency.code)
            if rate is None:
                logger.warning(f"fx_rate_missing: code={currency.code}")
                summary.missing.append(currency.code)
                continue
            self.currencies.set_rate(currency, rate_to_micros(rate))
            summary.updated[currency.code] = rate
            logger.info(f"fx_rate_updated: code={currency.code} rate={rate}")
        self.session.commit()
        self._cache.clear()
        return summary
