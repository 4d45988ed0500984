import logging
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import fx_rates
from database import Base
from fx_rates import (
    ConfigurationError,
    CurrencyConverter,
    CurrencyNotFound,
    ProviderError,
    RateProvider,
    fetch_exchange_rates,
    rate_to_micros,
)
from models import Currency
from reference_data import seed_reference_data


PRIMARY = RateProvider("primary", "https://primary.test/latest/{base}")
FALLBACK = RateProvider(
    "fallback", "https://fallback.test/latest?base={base}", requires_success_flag=True
)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    seed_reference_data(session)
    return session


def test_convert_to_base_currency_divides_by_rate() -> None:
    with _session() as session:
        converter = CurrencyConverter(session)
        assert converter.convert_to_base_currency(Decimal("6.7"), "USD") == 1000
        assert converter.convert_to_base_currency(500, "jpy") == 500


def test_convert_from_base_and_through_pivot() -> None:
    with _session() as session:
        converter = CurrencyConverter(session)
        assert converter.convert(1000, "JPY", "USD") == Decimal("6.7")
        assert converter.convert(Decimal("6.7"), "USD", "EUR") == Decimal("6.2")
        assert converter.convert(42, "EUR", "EUR") == 42
        assert converter.convert_cents(670, "USD", "JPY") == 100000


def test_unknown_currency_raises() -> None:
    with _session() as session:
        converter = CurrencyConverter(session)
        with pytest.raises(CurrencyNotFound):
            converter.convert(1, "XXX", "JPY")
        with pytest.raises(CurrencyNotFound):
            converter.convert_to_base_currency(1, "GBP")


def test_missing_base_currency_is_a_configuration_error() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add(Currency(code="USD", name="US Dollar", symbol="$"))
        session.commit()
        converter = CurrencyConverter(session, providers=[PRIMARY])
        with pytest.raises(ConfigurationError):
            converter.base_currency()
        with pytest.raises(ConfigurationError):
            converter.update_exchange_rates()


def test_format_amount_uses_symbol() -> None:
    with _session() as session:
        converter = CurrencyConverter(session)
        assert converter.format_amount(123456, "USD") == "$1,234.56"
        assert converter.format_amount(-5000, "JPY") == "-¥50.00"


def test_fetch_falls_back_to_secondary_provider(monkeypatch) -> None:
    calls = []

    def fake_fetch(url, *, timeout):
        calls.append((url, timeout))
        if url.startswith("https://primary.test"):
            raise ProviderError("HTTP 503")
        return {"success": True, "rates": {"USD": 0.007, "EUR": "0.0061"}}

    monkeypatch.setattr(fx_rates, "_fetch_json", fake_fetch)

    rates = fetch_exchange_rates("jpy", [PRIMARY, FALLBACK], timeout=3)

    assert rates == {"USD": Decimal("0.007"), "EUR": Decimal("0.0061")}
    assert calls == [
        ("https://primary.test/latest/JPY", 3),
        ("https://fallback.test/latest?base=JPY", 3),
    ]


def test_fetch_returns_none_when_all_providers_fail(monkeypatch, caplog) -> None:
    def fake_fetch(url, *, timeout):
        if url.startswith("https://primary.test"):
            raise ProviderError("timed out")
        # exchangerate.host style failure: HTTP 200 with success=false
        return {"success": False, "rates": {"USD": 0.007}}

    monkeypatch.setattr(fx_rates, "_fetch_json", fake_fetch)

    with caplog.at_level(logging.WARNING):
        rates = fetch_exchange_rates("JPY", [PRIMARY, FALLBACK], timeout=1)

    assert rates is None
    assert "fx_fetch_exhausted" in caplog.text
    error_records = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(error_records) == 1


def test_fetch_ignores_unusable_rates(monkeypatch) -> None:
    monkeypatch.setattr(
        fx_rates,
        "_fetch_json",
        lambda url, *, timeout: {"rates": {"usd": 0.007, "BAD": 0, "NEG": -1, "X": "n/a"}},
    )
    assert fetch_exchange_rates("JPY", [PRIMARY], timeout=1) == {
        "USD": Decimal("0.007")
    }


def test_update_exchange_rates_keeps_missing_currencies(monkeypatch, caplog) -> None:
    monkeypatch.setattr(
        fx_rates,
        "_fetch_json",
        lambda url, *, timeout: {"rates": {"JPY": 1, "USD": 0.007, "EUR": 0.006}},
    )
    with _session() as session:
        converter = CurrencyConverter(session, providers=[PRIMARY])
        with caplog.at_level(logging.WARNING):
            summary = converter.update_exchange_rates()

        assert summary.fetched is True
        assert summary.base == "JPY"
        assert set(summary.updated) == {"USD", "EUR"}
        assert summary.missing == ["MXN"]
        assert "fx_rate_missing: code=MXN" in caplog.text

        assert converter.currency("USD").rate_micros == 7000
        assert converter.currency("EUR").rate_micros == 6000
        assert converter.currency("MXN").rate_micros == rate_to_micros("0.12")
        assert converter.currency("JPY").rate_micros == 1_000_000


def test_update_exchange_rates_without_rates_keeps_stored_values(monkeypatch) -> None:
    def failing_fetch(url, *, timeout):
        raise ProviderError("offline")

    monkeypatch.setattr(fx_rates, "_fetch_json", failing_fetch)
    with _session() as session:
        converter = CurrencyConverter(session, providers=[PRIMARY, FALLBACK])
        summary = converter.update_exchange_rates()

        assert summary.fetched is False
        assert summary.updated == {}
        assert converter.currency("USD").rate_micros == 6700
