import httpx
import pytest

from aegis_sentinel.errors import PriceUnavailable
from aegis_sentinel.price_feed import HttpPriceFeed, StaticPriceFeed


def make_feed(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpPriceFeed(client=client, **kwargs)


def test_json_feed_reads_price():
    feed = make_feed(
        lambda request: httpx.Response(200, json={"price": 2640.5, "updatedAt": 1_700_000_000}),
        url="http://feed.test/price",
    )

    sample = feed.latest()

    assert sample.price == 2640.5
    assert sample.updated_at == 1_700_000_000
    assert feed.last_sample == sample


def test_coingecko_feed_reads_asset():
    def handler(request):
        assert request.url.path.endswith("/simple/price")
        assert request.url.params["ids"] == "ethereum"
        return httpx.Response(200, json={"ethereum": {"usd": 2000.0, "last_updated_at": 1_700_000_100}})

    feed = make_feed(handler, url="http://cg.test/api/v3", fmt="coingecko")

    sample = feed.latest()

    assert sample.price == 2000.0
    assert sample.source == "coingecko"


def test_http_error_is_price_unavailable():
    feed = make_feed(lambda request: httpx.Response(500), url="http://feed.test/price")

    with pytest.raises(PriceUnavailable):
        feed.latest()


def test_malformed_document_is_price_unavailable():
    feed = make_feed(lambda request: httpx.Response(200, json={"value": 1}), url="http://feed.test/price")

    with pytest.raises(PriceUnavailable):
        feed.latest()


def test_non_positive_price_is_price_unavailable():
    feed = make_feed(lambda request: httpx.Response(200, json={"price": 0}), url="http://feed.test/price")

    with pytest.raises(PriceUnavailable):
        feed.latest()


def test_unknown_format_rejected():
    with pytest.raises(ValueError):
        HttpPriceFeed(url="http://feed.test/price", fmt="xml")


def test_static_feed_outage_and_recovery():
    feed = StaticPriceFeed(2000.0, clock=lambda: 42.0)
    feed.set_unavailable("oracle down")

    with pytest.raises(PriceUnavailable, match="oracle down"):
        feed.latest()

    feed.set_price(2100.0)
    assert feed.latest().price == 2100.0
    assert feed.latest().updated_at == 42.0


def test_sample_staleness():
    sample = StaticPriceFeed(2000.0, clock=lambda: 1000.0).latest()

    assert not sample.is_stale(now=1000.0 + 3600, max_age_seconds=3600)
    assert sample.is_stale(now=1000.0 + 3601, max_age_seconds=3600)
