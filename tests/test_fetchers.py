import asyncio

from copper_market_dashboard.data.alphavantage_fetcher import AlphaVantageFetcher
from copper_market_dashboard.data.fred_fetcher import FredFetcher
from copper_market_dashboard.data.metals_fetcher import MetalsDevFetcher

from conftest import av_daily, fred_info, fred_observations, metals_latest


def test_fred_without_key_makes_no_calls(settings, providers, fast_policy) -> None:
    async def run():
        async with providers.client() as client:
            fetcher = FredFetcher(settings, client=client, policy=fast_policy)
            return await fetcher.fetch_indicators()

    assert asyncio.run(run()) == []
    assert providers.calls == []


def test_fred_series_skips_missing_markers(make_settings, providers, fast_policy) -> None:
    settings = make_settings(fred_api_key="fred-key")
    providers.fred["DGS10"] = fred_observations(
        ("2024-03-14", "."), ("2024-03-13", "4.30"), ("2024-03-12", "4.00")
    )
    providers.fred_info["DGS10"] = fred_info("Percent", "Daily, Close")

    async def run():
        async with providers.client() as client:
            return await FredFetcher(settings, client=client, policy=fast_policy).fetch_series("DGS10")

    indicator = asyncio.run(run())

    assert indicator is not None
    assert indicator.value == "4.30"
    assert indicator.date == "2024-03-13"
    assert indicator.change_percent == "+7.50%"
    assert indicator.frequency == "Daily, Close"
    assert indicator.source == "FRED"
    assert indicator.name == "10-Year Treasury Yield"
    assert indicator.last_updated


def test_fred_bad_series_is_omitted_not_retried(make_settings, providers, fast_policy) -> None:
    settings = make_settings(fred_api_key="fred-key")
    providers.fred["VIXCLS"] = fred_observations(("2024-03-14", "14.2"), ("2024-03-13", "13.9"))

    async def run():
        async with providers.client() as client:
            fetcher = FredFetcher(settings, client=client, policy=fast_policy)
            return await fetcher.fetch_indicators({"VIXCLS": "VIX", "NOPE": "Missing"})

    indicators = asyncio.run(run())

    assert [i.id for i in indicators] == ["VIXCLS"]
    nope_calls = [r for r in providers.calls if r.url.params.get("series_id") == "NOPE"]
    assert len(nope_calls) == 1


def test_fred_server_errors_exhaust_retries(make_settings, providers, fast_policy) -> None:
    settings = make_settings(fred_api_key="fred-key")
    providers.status["fred:GDP"] = 503

    async def run():
        async with providers.client() as client:
            return await FredFetcher(settings, client=client, policy=fast_policy).fetch_series("GDP")

    assert asyncio.run(run()) is None
    assert len(providers.calls) == 3


def test_alpha_vantage_sequential_tasks(make_settings, providers, fast_policy) -> None:
    settings = make_settings(alpha_vantage_api_key="av-key")
    providers.alpha["USDJPY"] = av_daily(
        "Time Series FX (Daily)", {"2024-03-14": "149.00", "2024-03-13": "148.00"}
    )
    providers.alpha["COPX"] = {"Note": "rate limited"}
    tasks = {
        "usd_jpy": {
            "name": "USD/JPY", "units": "JPY/USD", "frequency": "Daily",
            "function": "FX_DAILY", "from_symbol": "USD", "to_symbol": "JPY",
        },
        "copx": {
            "name": "COPX", "units": "USD", "frequency": "Daily",
            "function": "TIME_SERIES_DAILY", "symbol": "COPX",
        },
    }

    async def run():
        async with providers.client() as client:
            fetcher = AlphaVantageFetcher(settings, client=client, policy=fast_policy, request_delay=0)
            return await fetcher.fetch_indicators(tasks)

    indicators = asyncio.run(run())

    assert [i.id for i in indicators] == ["usd_jpy"]
    assert indicators[0].source == "Alpha Vantage"
    assert indicators[0].change_percent == "+0.68%"
    assert [r.url.params.get("apikey") for r in providers.calls] == ["av-key", "av-key"]


def test_metals_latest_serves_both_indicators_with_one_call(make_settings, providers, fast_policy) -> None:
    settings = make_settings(metals_dev_api_key="metals-key")
    providers.metals["latest"] = metals_latest(9.0, 0.005)

    async def run():
        async with providers.client() as client:
            fetcher = MetalsDevFetcher(settings, client=client, policy=fast_policy)
            return await asyncio.gather(fetcher.fetch_copper_jpy(), fetcher.fetch_usd_jpy())

    copper, usd_jpy = asyncio.run(run())

    assert copper.id == "lme_copper_jpy"
    assert copper.value == "1800000"
    assert copper.units == "JPY/mt"
    assert usd_jpy.value == "200"
    assert len(providers.calls_to("metals.dev")) == 1


def test_metals_copper_falls_back_to_authority(make_settings, providers, fast_policy) -> None:
    settings = make_settings(metals_dev_api_key="metals-key")
    providers.metals["latest"] = {"metals": {}, "currencies": {"JPY": 0.005}}
    providers.metals["currencies"] = {"rates": {"GBP": 0.8, "JPY": 160.0}}
    providers.metals["metal/authority"] = {"rates": {"copper": 7000.0}}

    async def run():
        async with providers.client() as client:
            return await MetalsDevFetcher(settings, client=client, policy=fast_policy).fetch_copper_jpy()

    copper = asyncio.run(run())

    assert copper is not None
    # 7000 GBP/mt * 200 JPY/GBP
    assert copper.value == "1400000"
    assert copper.change_percent == "+0.00%"


def test_metals_without_key(settings, providers, fast_policy) -> None:
    async def run():
        async with providers.client() as client:
            fetcher = MetalsDevFetcher(settings, client=client, policy=fast_policy)
            return await fetcher.fetch_copper_jpy(), await fetcher.fetch_usd_jpy()

    assert asyncio.run(run()) == (None, None)
    assert providers.calls == []
