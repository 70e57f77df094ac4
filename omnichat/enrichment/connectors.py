"""
Context connectors — free-text lookups that enrich a prompt.

Each connector is one row of data (name, trigger phrases, intro line)
plus a `_search` that turns a query into snippet lines. The pipeline
never sees transport errors: `search()` returns [] on any failure.

Connectors, in the order they run:
  youtube     media lookup        (needs api_key)
  github      code-host lookup    (optional token)
  unsplash    stock photos        (needs access_key)
  hackernews  tech news
  weather     Open-Meteo geocode + forecast
  wikipedia   encyclopedia
  coingecko   crypto prices

Adding a connector means a new subclass here + a row in CONNECTORS +
a section under `connectors:` in config.yaml. Nothing else changes.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import re
from urllib.parse import quote

from bs4 import BeautifulSoup

from omnichat.errors import ConnectorError
from omnichat.transport import ResilientTransport

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "search", "the", "youtube", "for", "find", "me", "watch", "video", "videos",
    "on", "about", "play", "spotify", "song", "track", "music", "listen", "to",
    "channel", "playlist", "album", "artist", "github", "repo", "repository",
    "code", "issue", "pr", "unsplash", "stock", "photo", "picture", "image",
    "news", "weather", "wiki", "wikipedia", "price", "cost", "crypto",
})

DEFAULT_MAX_QUERY_CHARS = 200


def strip_stop_words(text: str, max_chars: int = DEFAULT_MAX_QUERY_CHARS) -> str:
    """Original text minus trigger/stop words, bounded in length."""
    words = [w for w in text.split(" ") if w and w.lower() not in STOP_WORDS]
    return " ".join(words)[:max_chars].strip()


class Connector(abc.ABC):
    """Base class: trigger matching, query extraction, block rendering."""

    key: str = ""
    name: str = ""
    intro: str = ""
    triggers: tuple[str, ...] = ()
    prefixes: tuple[str, ...] = ()     # leading phrases that also trigger
    min_query_chars: int = 2

    def __init__(
        self,
        transport: ResilientTransport,
        max_query_chars: int = DEFAULT_MAX_QUERY_CHARS,
        max_retries: int = 0,
    ):
        self.transport = transport
        self.max_query_chars = max_query_chars
        self.max_retries = max_retries
        self._trigger_re = re.compile(
            r"\b(?:" + "|".join(re.escape(t) for t in self.triggers) + r")\b"
        ) if self.triggers else None

    @classmethod
    def from_config(cls, transport: ResilientTransport, cfg: dict, defaults: dict) -> Connector:
        """Every key of the connector's section except `enabled` is a constructor argument."""
        settings = {k: v for k, v in cfg.items() if k != "enabled"}
        return cls(transport, **{**defaults, **settings})

    def is_ready(self) -> bool:
        """Whether the connector's prerequisites (credentials) are met."""
        return True

    def matches(self, lowered: str) -> bool:
        if self._trigger_re is not None and self._trigger_re.search(lowered):
            return True
        return any(lowered.startswith(p) for p in self.prefixes)

    def extract_query(self, text: str) -> str | None:
        query = strip_stop_words(text, self.max_query_chars)
        return query if len(query) >= self.min_query_chars else None

    def render(self, snippets: list[str]) -> str:
        header = f"{self.intro}\n" if self.intro else ""
        return f"\n\n[System ({self.name} Connector)]: {header}" + "\n".join(snippets)

    async def search(self, query: str) -> list[str]:
        """Snippet lines for a query, or [] on any failure."""
        try:
            return await self._search(query)
        except ConnectorError as e:
            logger.warning("Connector failed: %s", e)
        except Exception as e:
            logger.warning("Connector failed: %s", ConnectorError(self.name, str(e) or type(e).__name__))
        return []

    @abc.abstractmethod
    async def _search(self, query: str) -> list[str]:
        ...

    async def _get_json(self, url: str, params: dict | None = None, headers: dict | None = None):
        response = await self.transport.execute(
            "GET", url, params=params, headers=headers, max_retries=self.max_retries,
        )
        if response.status_code >= 400:
            raise ConnectorError(self.name, f"HTTP {response.status_code}")
        return response.json()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} ready={self.is_ready()}>"


# ── Credentialed lookups ──────────────────────────────────────────────────


class YouTubeConnector(Connector):
    key = "youtube"
    name = "YouTube"
    intro = "I found the following YouTube results. Please present them to the user:"
    triggers = ("youtube", "video", "videos", "watch", "channel")

    SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
    LINKS = {
        "video": ("https://www.youtube.com/watch?v={}", "videoId"),
        "channel": ("https://www.youtube.com/channel/{}", "channelId"),
        "playlist": ("https://www.youtube.com/playlist?list={}", "playlistId"),
    }

    def __init__(self, transport, api_key: str = "", max_results: int = 5, **kwargs):
        super().__init__(transport, **kwargs)
        self.api_key = api_key
        self.max_results = max_results

    def is_ready(self) -> bool:
        return bool(self.api_key)

    async def _search(self, query: str) -> list[str]:
        data = await self._get_json(self.SEARCH_URL, params={
            "part": "snippet",
            "maxResults": self.max_results,
            "type": "video,channel,playlist",
            "q": query,
            "key": self.api_key,
        })
        lines = []
        for item in data.get("items") or []:
            ident = item.get("id") or {}
            kind = (ident.get("kind") or "youtube#video").split("#")[-1]
            snippet = item.get("snippet") or {}
            link = ""
            if kind in self.LINKS:
                template, field = self.LINKS[kind]
                link = template.format(ident.get(field, ""))
            lines.append(
                f"- [{kind.upper()}] {snippet.get('title', '')} by {snippet.get('channelTitle', '')} ({link})"
            )
        return lines


class GitHubConnector(Connector):
    key = "github"
    name = "GitHub"
    intro = "I found the following GitHub results. Please summarize or present them:"
    triggers = ("github", "repo", "repository", "issue", "pr")

    SEARCH_URL = "https://api.github.com/search/{kind}"

    def __init__(self, transport, token: str = "", per_page: int = 3, **kwargs):
        super().__init__(transport, **kwargs)
        self.token = token
        self.per_page = per_page

    async def _search(self, query: str) -> list[str]:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        kind = "issues" if "issue" in query.lower() else "repositories"
        data = await self._get_json(
            self.SEARCH_URL.format(kind=kind),
            params={"q": query, "per_page": self.per_page},
            headers=headers,
        )
        lines = []
        for item in data.get("items") or []:
            url = item.get("html_url", "")
            label = "Repo/Issue" if url else "Item"
            title = item.get("full_name") or item.get("title", "")
            description = (item.get("description") or "")[:100]
            lines.append(f"- [{label}] {title} ({url}) - {description}...")
        return lines


class UnsplashConnector(Connector):
    key = "unsplash"
    name = "Unsplash"
    intro = "I found the following stock photos. Display them to the user with credits:"
    triggers = ("unsplash", "stock photo", "wallpaper", "picture of")

    SEARCH_URL = "https://api.unsplash.com/search/photos"

    def __init__(self, transport, access_key: str = "", per_page: int = 5, **kwargs):
        super().__init__(transport, **kwargs)
        self.access_key = access_key
        self.per_page = per_page

    def is_ready(self) -> bool:
        return bool(self.access_key)

    async def _search(self, query: str) -> list[str]:
        data = await self._get_json(self.SEARCH_URL, params={
            "query": query,
            "per_page": self.per_page,
            "client_id": self.access_key,
        })
        lines = []
        for item in data.get("results") or []:
            user = item.get("user") or {}
            lines.append(
                f"![{item.get('alt_description') or 'Image'}]({item['urls']['regular']})\n"
                f"*Photo by [{user.get('name', '')}]({(user.get('links') or {}).get('html', '')}) on Unsplash*"
            )
        return lines


# ── Open lookups ──────────────────────────────────────────────────────────


class HackerNewsConnector(Connector):
    key = "hackernews"
    name = "Hacker News"
    intro = "Top tech stories:"
    triggers = ("hacker news", "tech news")

    BASE_URL = "https://hacker-news.firebaseio.com/v0"
    _NEW = re.compile(r"\b(?:new|newest|latest)\b")

    def __init__(self, transport, max_stories: int = 5, **kwargs):
        super().__init__(transport, **kwargs)
        self.max_stories = max_stories

    def extract_query(self, text: str) -> str | None:
        return "new" if self._NEW.search(text.lower()) else "top"

    async def _search(self, query: str) -> list[str]:
        listing = "newstories" if query == "new" else "topstories"
        story_ids = await self._get_json(f"{self.BASE_URL}/{listing}.json")
        stories = await asyncio.gather(*(
            self._get_json(f"{self.BASE_URL}/item/{story_id}.json")
            for story_id in (story_ids or [])[: self.max_stories]
        ))
        return [self._format(s) for s in stories if s]

    @staticmethod
    def _format(story: dict) -> str:
        # Ask HN / Show HN posts have no external url
        url = story.get("url") or f"https://news.ycombinator.com/item?id={story.get('id')}"
        return (
            f"- {story.get('title', '')} (Score: {story.get('score', 0)}, "
            f"By: {story.get('by', '')}) - {url}"
        )


class WeatherConnector(Connector):
    key = "weather"
    name = "Weather"
    intro = ""
    triggers = ("weather",)

    GEOCODE_URL = "https://geocoding-api.open-meteo.com/v1/search"
    FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
    _CITY = re.compile(r"weather (?:in|for|at)?\s*([a-zA-Z\s]+)", re.IGNORECASE)

    def extract_query(self, text: str) -> str | None:
        match = self._CITY.search(text)
        if not match:
            return None
        city = match.group(1).strip()[: self.max_query_chars]
        return city or None

    async def _search(self, query: str) -> list[str]:
        geo = await self._get_json(self.GEOCODE_URL, params={
            "name": query, "count": 1, "language": "en", "format": "json",
        })
        results = geo.get("results") or []
        if not results:
            return []
        place = results[0]
        forecast = await self._get_json(self.FORECAST_URL, params={
            "latitude": place["latitude"],
            "longitude": place["longitude"],
            "current": "temperature_2m,relative_humidity_2m,apparent_temperature,"
                       "precipitation,weather_code,wind_speed_10m",
            "daily": "weather_code,temperature_2m_max,temperature_2m_min",
            "timezone": "auto",
        })
        current = forecast["current"]
        daily = forecast["daily"]
        return [
            f"Weather for {place.get('name', query)}, {place.get('country', '')}:",
            f"Current: {current['temperature_2m']}°C, Wind: {current['wind_speed_10m']}km/h",
            f"Forecast Max: {daily['temperature_2m_max'][0]}°C, Min: {daily['temperature_2m_min'][0]}°C",
        ]


class WikipediaConnector(Connector):
    key = "wikipedia"
    name = "Wikipedia"
    intro = "I found this info on Wikipedia:"
    triggers = ("wiki", "wikipedia")
    prefixes = ("what is", "who is")
    min_query_chars = 3

    API_URL = "https://en.wikipedia.org/w/api.php"

    def __init__(self, transport, max_results: int = 3, **kwargs):
        super().__init__(transport, **kwargs)
        self.max_results = max_results

    async def _search(self, query: str) -> list[str]:
        data = await self._get_json(self.API_URL, params={
            "action": "query",
            "format": "json",
            "list": "search",
            "srsearch": query,
            "srlimit": self.max_results,
        })
        lines = []
        for item in (data.get("query") or {}).get("search") or []:
            title = item.get("title", "")
            snippet = BeautifulSoup(item.get("snippet", ""), "html.parser").get_text()
            url = f"https://en.wikipedia.org/wiki/{quote(title, safe='')}"
            lines.append(f"- **{title}**: {snippet} ([Link]({url}))")
        return lines


class CoinGeckoConnector(Connector):
    key = "coingecko"
    name = "CoinGecko"
    intro = ""
    triggers = ("price of", "crypto")

    PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"
    COIN_IDS = {"btc": "bitcoin", "eth": "ethereum", "sol": "solana", "doge": "dogecoin"}
    _COIN = re.compile(r"price of\s*([a-zA-Z]+)", re.IGNORECASE)

    def extract_query(self, text: str) -> str | None:
        match = self._COIN.search(text)
        return match.group(1) if match else None

    async def _search(self, query: str) -> list[str]:
        coin_id = self.COIN_IDS.get(query.lower(), query.lower())
        data = await self._get_json(self.PRICE_URL, params={
            "ids": coin_id,
            "vs_currencies": "usd,eur",
            "include_24hr_change": "true",
        })
        price = data.get(coin_id)
        if not price:
            return []
        return [
            f"Price of {query.upper()}:",
            f"USD: ${price['usd']}, EUR: €{price['eur']} "
            f"(24h Change: {float(price.get('usd_24h_change') or 0):.2f}%)",
        ]


# Connector key → class, in run order
CONNECTORS: dict[str, type[Connector]] = {
    cls.key: cls
    for cls in (
        YouTubeConnector,
        GitHubConnector,
        UnsplashConnector,
        HackerNewsConnector,
        WeatherConnector,
        WikipediaConnector,
        CoinGeckoConnector,
    )
}

# Open lookups are on unless config says otherwise
_ENABLED_BY_DEFAULT = {"hackernews", "weather", "wikipedia", "coingecko"}


def build_connectors(connectors_cfg: dict | None, transport: ResilientTransport) -> list[Connector]:
    """Instantiate enabled connectors in table order from the `connectors:` config section."""
    connectors_cfg = connectors_cfg or {}
    if not connectors_cfg.get("enabled", True):
        logger.info("Connectors disabled globally")
        return []

    defaults = {
        "max_query_chars": connectors_cfg.get("max_query_chars", DEFAULT_MAX_QUERY_CHARS),
        "max_retries": connectors_cfg.get("max_retries", 0),
    }
    connectors: list[Connector] = []
    for key, cls in CONNECTORS.items():
        cfg = connectors_cfg.get(key) or {}
        if not cfg.get("enabled", key in _ENABLED_BY_DEFAULT):
            continue
        connectors.append(cls.from_config(transport, cfg, defaults))

    logger.info("Connectors loaded: %s", [c.key for c in connectors])
    return connectors
