"""
MarketIntelligenceProvider - Fetch markets, social posts and news for one cycle.

Purpose: Build the shared MarketIntelligence snapshot and its textual brief
Sources (fetched concurrently, each allowed to fail on its own):
- Polymarket Gamma API: active markets, upserted into the ledger
- Twitter recent search: prediction-market chatter
- Brave web search: recent news
"""
import asyncio
import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from .schemas import MarketIntelligence, NewsArticle, SocialPost
from ..config import TradingConfig
from ..errors import IntelligenceError, InvariantViolation, LedgerError
from ..schemas import Market, MarketSnapshot
from ..storage import LedgerStore

logger = logging.getLogger("fourcast.agents.market_data")

TWITTER_QUERY = "polymarket OR prediction market OR election odds -is:retweet lang:en"
NEWS_QUERIES = [
    "prediction market news",
    "polymarket election",
    "crypto market forecast",
]
BRIEF_POST_LIMIT = 10
BRIEF_NEWS_LIMIT = 10


def _decimal(value: Any, default: str = "0") -> Decimal:
    if value in (None, ""):
        return Decimal(default)
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(default)
    return number if number.is_finite() else Decimal(default)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _as_list(value: Any) -> List[Any]:
    # Gamma returns some array fields as JSON-encoded strings.
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    return value if isinstance(value, list) else []


def extract_prices(raw: Dict[str, Any]) -> Dict[str, Decimal]:
    """YES/NO prices from either a tokens list or outcomes + outcomePrices."""
    yes_price, no_price = Decimal("0.5"), Decimal("0.5")

    tokens = raw.get("tokens") or []
    if len(tokens) >= 2:
        for token in tokens:
            outcome = str(token.get("outcome", "")).lower()
            if outcome == "yes":
                yes_price = _decimal(token.get("price"), "0.5")
            elif outcome == "no":
                no_price = _decimal(token.get("price"), "0.5")
        return {"yes_price": yes_price, "no_price": no_price}

    outcomes = [str(o).lower() for o in _as_list(raw.get("outcomes"))]
    prices = _as_list(raw.get("outcomePrices"))
    for outcome, price in zip(outcomes, prices):
        if outcome == "yes":
            yes_price = _decimal(price, "0.5")
        elif outcome == "no":
            no_price = _decimal(price, "0.5")
    return {"yes_price": yes_price, "no_price": no_price}


class MarketIntelligenceProvider:
    """Collects the per-cycle intelligence snapshot."""

    def __init__(
        self,
        config: TradingConfig,
        store: LedgerStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.store = store
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.http_timeout_seconds, transport=self._transport)

    async def collect(self) -> MarketIntelligence:
        """
        Fetch all sources concurrently.

        Returns:
            MarketIntelligence with whatever succeeded; failures listed in errors
        """
        logger.info("Starting data collection cycle")
        errors: List[str] = []

        async with self._client() as client:
            markets, posts, news = await asyncio.gather(
                self._guard("polymarket", self.fetch_markets(client), errors),
                self._guard("twitter", self.fetch_posts(client), errors),
                self._guard("brave", self.fetch_news(client), errors),
            )

        if markets is None:
            markets = await self.store.get_markets()
            logger.info(f"Using {len(markets)} markets already in the ledger")

        intelligence = MarketIntelligence(
            markets=markets,
            posts=posts or [],
            news=news or [],
            errors=errors,
        )
        logger.info(
            f"Data collection complete: {len(intelligence.markets)} markets, "
            f"{len(intelligence.posts)} posts, {len(intelligence.news)} news articles"
        )
        return intelligence

    async def _guard(self, source: str, coro, errors: List[str]):
        try:
            return await coro
        except (LedgerError, InvariantViolation):
            raise
        except Exception as e:
            logger.error(f"Failed to collect {source} data: {e}")
            errors.append(f"{source}: {e}")
            return None

    async def fetch_markets(self, client: httpx.AsyncClient) -> List[Market]:
        response = await client.get(
            f"{self.config.polymarket_gamma_url}/markets",
            params={"limit": self.config.market_limit, "active": "true", "closed": "false"},
        )
        if response.status_code != 200:
            raise IntelligenceError(f"Polymarket API error: HTTP {response.status_code}")

        payload = response.json()
        rows = payload.get("data", []) if isinstance(payload, dict) else payload

        markets: List[Market] = []
        for raw in rows:
            external_id = raw.get("condition_id") or raw.get("conditionId")
            question = raw.get("question")
            if not external_id or not question:
                continue
            markets.append(await self._upsert_market(external_id, question, raw))

        logger.info(f"Collected {len(markets)} markets from Polymarket")
        return markets

    async def _upsert_market(self, external_id: str, question: str, raw: Dict[str, Any]) -> Market:
        prices = extract_prices(raw)
        fields = dict(
            question=question,
            category=raw.get("category") or "Other",
            end_date=_parse_date(raw.get("end_date_iso") or raw.get("endDate")),
            volume=_decimal(raw.get("volume")),
            liquidity=_decimal(raw.get("liquidity")),
            resolved=bool(raw.get("closed", False)),
            **prices,
        )

        existing = await self.store.get_market_by_external_id(external_id)
        if existing:
            market = await self.store.update_market(existing.id, **fields)
        else:
            market = await self.store.create_market(Market(external_id=external_id, **fields))

        await self.store.create_market_snapshot(
            MarketSnapshot(
                market_id=market.id,
                yes_price=market.yes_price,
                no_price=market.no_price,
                volume=market.volume,
            )
        )
        return market

    async def fetch_posts(self, client: httpx.AsyncClient) -> List[SocialPost]:
        if not self.config.twitter_bearer_token:
            logger.warning("Twitter API not configured (TWITTER_BEARER_TOKEN missing)")
            return []

        response = await client.get(
            f"{self.config.twitter_base_url}/tweets/search/recent",
            params={
                "query": TWITTER_QUERY,
                "max_results": 50,
                "tweet.fields": "created_at,public_metrics,author_id",
            },
            headers={"Authorization": f"Bearer {self.config.twitter_bearer_token}"},
        )
        if response.status_code != 200:
            raise IntelligenceError(f"Twitter API error: HTTP {response.status_code}")

        posts = []
        for tweet in response.json().get("data") or []:
            metrics = tweet.get("public_metrics") or {}
            posts.append(
                SocialPost(
                    id=str(tweet.get("id", "")),
                    text=tweet.get("text", ""),
                    author_id=str(tweet.get("author_id", "")),
                    created_at=tweet.get("created_at", ""),
                    like_count=metrics.get("like_count", 0),
                    retweet_count=metrics.get("retweet_count", 0),
                    reply_count=metrics.get("reply_count", 0),
                )
            )
        logger.info(f"Collected {len(posts)} tweets")
        return posts

    async def fetch_news(self, client: httpx.AsyncClient) -> List[NewsArticle]:
        if not self.config.brave_api_key:
            logger.warning("Brave Search API not configured (BRAVE_API_KEY missing)")
            return []

        headers = {"Accept": "application/json", "X-Subscription-Token": self.config.brave_api_key}
        articles: List[NewsArticle] = []
        seen = set()
        for query in NEWS_QUERIES:
            response = await client.get(
                f"{self.config.brave_base_url}/web/search",
                params={"q": query, "count": 10, "freshness": "pd"},
                headers=headers,
            )
            if response.status_code != 200:
                raise IntelligenceError(f"Brave Search API error: HTTP {response.status_code}")

            for result in (response.json().get("web") or {}).get("results") or []:
                url = result.get("url")
                if not url or url in seen:
                    continue
                seen.add(url)
                articles.append(
                    NewsArticle(
                        title=result.get("title", ""),
                        url=url,
                        description=result.get("description") or "",
                        age=result.get("age"),
                    )
                )

        logger.info(f"Collected {len(articles)} news articles from Brave Search")
        return articles

    def format_brief(self, intelligence: MarketIntelligence) -> str:
        """Render the intelligence snapshot as the text every agent reads."""
        lines = [
            "# Market Intelligence Report",
            f"Generated: {intelligence.timestamp.isoformat()}",
            "",
            f"## Active Markets ({len(intelligence.markets)})",
            "",
        ]
        for market in intelligence.markets[: self.config.brief_market_limit]:
            lines.extend([
                f"### {market.question}",
                f"- Category: {market.category}",
                f"- YES Price: {market.yes_price} | NO Price: {market.no_price}",
                f"- Volume: ${market.volume:,.0f}",
                f"- Liquidity: ${market.liquidity:,.0f}",
                f"- Market ID: {market.id}",
                "",
            ])

        if intelligence.posts:
            lines.append(f"## Social Sentiment ({len(intelligence.posts)} posts)")
            lines.append("")
            for post in intelligence.posts[:BRIEF_POST_LIMIT]:
                lines.append(f"- \"{post.text[:200]}\"")
                lines.append(f"  ({post.like_count} likes, {post.retweet_count} RTs)")
            lines.append("")

        if intelligence.news:
            lines.append(f"## Recent News ({len(intelligence.news)} articles)")
            lines.append("")
            for article in intelligence.news[:BRIEF_NEWS_LIMIT]:
                lines.append(f"- **{article.title}**")
                if article.description:
                    lines.append(f"  {article.description[:150]}")
                if article.age:
                    lines.append(f"  ({article.age})")
                lines.append("")

        return "\n".join(lines)
