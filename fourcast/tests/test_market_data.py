"""
Market intelligence tests against a mocked HTTP transport.
"""
import json
from dataclasses import replace
from decimal import Decimal

import httpx
import pytest

from fourcast.agents.market_data import MarketIntelligenceProvider, extract_prices
from fourcast.agents.schemas import MarketIntelligence, NewsArticle, SocialPost
from fourcast.schemas import Market

GAMMA_MARKETS = [
    {
        "conditionId": "0xaaa",
        "question": "Will the incumbent win?",
        "category": "Politics",
        "outcomes": '["Yes", "No"]',
        "outcomePrices": '["0.62", "0.38"]',
        "volume": "125000.5",
        "liquidity": "4000",
        "endDate": "2026-11-03T00:00:00Z",
    },
    {
        "condition_id": "0xbbb",
        "question": "Will BTC close above 100k?",
        "tokens": [{"outcome": "Yes", "price": 0.2}, {"outcome": "No", "price": 0.8}],
        "volume": 500,
    },
    {"question": "Row without an id"},
]

TWEETS = {
    "data": [
        {
            "id": "1",
            "text": "Odds are moving fast",
            "author_id": "42",
            "created_at": "2026-10-18T10:00:00Z",
            "public_metrics": {"like_count": 10, "retweet_count": 2, "reply_count": 1},
        }
    ]
}

BRAVE = {
    "web": {
        "results": [
            {"title": "Markets rally", "url": "https://news.example/a", "description": "Up", "age": "2h"},
            {"title": "Poll shift", "url": "https://news.example/b"},
        ]
    }
}


class Router:
    """MockTransport handler recording every request."""

    def __init__(self, gamma_status=200, gamma_body=None):
        self.gamma_status = gamma_status
        self.gamma_body = GAMMA_MARKETS if gamma_body is None else gamma_body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "gamma-api.polymarket.com":
            if self.gamma_status != 200:
                return httpx.Response(self.gamma_status, text="upstream error")
            return httpx.Response(200, json=self.gamma_body)
        if host == "api.twitter.com":
            return httpx.Response(200, json=TWEETS)
        if host == "api.search.brave.com":
            return httpx.Response(200, json=BRAVE)
        return httpx.Response(404)

    def hosts(self):
        return [r.url.host for r in self.requests]


def _provider(config, store, router):
    return MarketIntelligenceProvider(config, store, transport=httpx.MockTransport(router))


class TestFetchMarkets:
    """Test market upsert from the Gamma API."""

    @pytest.mark.asyncio
    async def test_markets_upserted_with_snapshots(self, config, store):
        router = Router()
        intelligence = await _provider(config, store, router).collect()

        assert [m.external_id for m in intelligence.markets] == ["0xaaa", "0xbbb"]
        first = await store.get_market_by_external_id("0xaaa")
        assert first.yes_price == Decimal("0.62")
        assert first.no_price == Decimal("0.38")
        assert first.liquidity == Decimal("4000")
        assert first.category == "Politics"
        assert first.end_date.year == 2026
        second = await store.get_market_by_external_id("0xbbb")
        assert second.yes_price == Decimal("0.2")
        assert second.category == "Other"
        assert len(await store.get_market_snapshots(first.id)) == 1

        request = router.requests[0]
        assert request.url.path == "/markets"
        assert request.url.params["limit"] == "50"
        assert request.url.params["closed"] == "false"

    @pytest.mark.asyncio
    async def test_existing_market_is_updated(self, config, store):
        await _provider(config, store, Router()).collect()
        moved = json.loads(json.dumps(GAMMA_MARKETS))
        moved[0]["outcomePrices"] = '["0.70", "0.30"]'
        await _provider(config, store, Router(gamma_body=moved)).collect()

        markets = await store.get_markets()
        assert len(markets) == 2
        market = await store.get_market_by_external_id("0xaaa")
        assert market.yes_price == Decimal("0.70")
        assert len(await store.get_market_snapshots(market.id)) == 2

    @pytest.mark.asyncio
    async def test_wrapped_payload(self, config, store):
        intelligence = await _provider(config, store, Router(gamma_body={"data": GAMMA_MARKETS[:1]})).collect()
        assert len(intelligence.markets) == 1

    @pytest.mark.asyncio
    async def test_api_error_falls_back_to_ledger(self, config, store, seed):
        cached = await seed.market(question="Cached market")
        intelligence = await _provider(config, store, Router(gamma_status=500)).collect()

        assert [m.id for m in intelligence.markets] == [cached.id]
        assert intelligence.errors == ["polymarket: Polymarket API error: HTTP 500"]

    @pytest.mark.asyncio
    async def test_transport_error_is_recorded(self, config, store):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = MarketIntelligenceProvider(config, store, transport=httpx.MockTransport(refuse))
        intelligence = await provider.collect()

        assert intelligence.markets == []
        assert len(intelligence.errors) == 1
        assert intelligence.errors[0].startswith("polymarket:")


class TestContextSources:
    """Test the Twitter and Brave sources."""

    @pytest.mark.asyncio
    async def test_unconfigured_sources_are_skipped(self, config, store):
        router = Router()
        intelligence = await _provider(config, store, router).collect()

        assert intelligence.posts == []
        assert intelligence.news == []
        assert intelligence.errors == []
        assert router.hosts() == ["gamma-api.polymarket.com"]

    @pytest.mark.asyncio
    async def test_posts_and_deduplicated_news(self, config, store):
        cfg = replace(config, twitter_bearer_token="tw-token", brave_api_key="brave-key")
        router = Router()
        intelligence = await _provider(cfg, store, router).collect()

        assert [p.text for p in intelligence.posts] == ["Odds are moving fast"]
        assert intelligence.posts[0].like_count == 10
        # Three queries return the same two URLs
        assert [a.url for a in intelligence.news] == ["https://news.example/a", "https://news.example/b"]
        assert router.hosts().count("api.search.brave.com") == 3

        twitter = next(r for r in router.requests if r.url.host == "api.twitter.com")
        assert twitter.headers["Authorization"] == "Bearer tw-token"
        brave = next(r for r in router.requests if r.url.host == "api.search.brave.com")
        assert brave.headers["X-Subscription-Token"] == "brave-key"


class TestBrief:
    """Test the text brief every agent reads."""

    def test_format_brief(self, config, store):
        cfg = replace(config, brief_market_limit=1)
        markets = [
            Market(
                external_id="0xaaa",
                question="Will the incumbent win?",
                category="Politics",
                yes_price=Decimal("0.62"),
                no_price=Decimal("0.38"),
                liquidity=Decimal("4000"),
            ),
            Market(external_id="0xbbb", question="Hidden by the limit"),
        ]
        intelligence = MarketIntelligence(
            markets=markets,
            posts=[SocialPost(id="1", text="Odds are moving fast", like_count=3)],
            news=[NewsArticle(title="Markets rally", url="https://news.example/a", age="2h")],
        )

        brief = MarketIntelligenceProvider(cfg, store).format_brief(intelligence)

        assert brief.startswith("# Market Intelligence Report")
        assert "## Active Markets (2)" in brief
        assert "### Will the incumbent win?" in brief
        assert "- YES Price: 0.62 | NO Price: 0.38" in brief
        assert "- Liquidity: $4,000" in brief
        assert f"- Market ID: {markets[0].id}" in brief
        assert "Hidden by the limit" not in brief
        assert "## Social Sentiment (1 posts)" in brief
        assert "- **Markets rally**" in brief

    def test_extract_prices_defaults(self):
        assert extract_prices({}) == {"yes_price": Decimal("0.5"), "no_price": Decimal("0.5")}
        prices = extract_prices({"outcomes": ["Yes", "No"], "outcomePrices": ["0.1", "bad"]})
        assert prices == {"yes_price": Decimal("0.1"), "no_price": Decimal("0.5")}
