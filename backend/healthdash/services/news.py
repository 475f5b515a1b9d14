"""News adapter: NYC DOHMH press releases, NY State of Health news and CDC HAN RSS."""

import asyncio
import hashlib
import logging
from urllib.parse import urljoin

import feedparser
from bs4 import BeautifulSoup
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthdash.config import get_settings
from healthdash.models import NewsAlert
from healthdash.schemas.dashboard import NewsAlertOut, NewsDataOut
from healthdash.services.clock import utcnow
from healthdash.services.dataset_store import replace_snapshot
from healthdash.services.open_data_client import OpenDataClient, UpstreamClientError

logger = logging.getLogger(__name__)
settings = get_settings()

ALERTS_PER_SOURCE = 5
RSS_ACCEPT = "application/rss+xml,application/xml;q=0.9,*/*;q=0.8"


def make_alert_id(region: str, url: str | None, title: str) -> str:
    """Stable across syncs for the same item."""
    digest = hashlib.sha1(f"{url or ''}|{title}".encode("utf-8")).hexdigest()
    return f"{region}-{digest[:12]}"


def _alert(region: str, title: str, summary: str, date: str, source: str, url: str) -> dict:
    return {
        "alert_id": make_alert_id(region, url, title),
        "title": title,
        "summary": summary,
        "date": date,
        "severity": "info",
        "source": source,
        "url": url,
        "region": region,
    }


def parse_nyc_press_releases(html: str, page_url: str) -> list[dict]:
    """Press releases are <p> blocks with a <strong> date and an <a> title link."""
    soup = BeautifulSoup(html, "html.parser")
    alerts = []

    for paragraph in soup.find_all("p"):
        strong = paragraph.find("strong")
        link = paragraph.find("a", href=True)
        if not strong or not link:
            continue

        date_text = strong.get_text(strip=True)
        title = link.get_text(strip=True)
        if not date_text or not title:
            continue

        alerts.append(
            _alert(
                "nyc",
                title,
                "Press Release via NYC Health",
                date_text,
                "NYC Department of Health",
                urljoin(page_url, link["href"]),
            )
        )
        if len(alerts) >= ALERTS_PER_SOURCE:
            break

    return alerts


def parse_nys_news(html: str, page_url: str, today: str) -> list[dict]:
    soup = BeautifulSoup(html, "html.parser")
    alerts = []

    for article in soup.select("article.node--type-news"):
        link = article.select_one("h2.node__title a")
        if link is None:
            continue
        title = link.get_text(strip=True)
        if not title:
            continue

        date_elem = article.select_one(".field--name-field-publication-date time")
        date_text = date_elem.get_text(strip=True) if date_elem else ""

        alerts.append(
            _alert(
                "nys",
                title,
                "News & Events via NY State of Health",
                date_text or today,
                "NY State of Health",
                urljoin(page_url, link.get("href") or ""),
            )
        )
        if len(alerts) >= ALERTS_PER_SOURCE:
            break

    return alerts


def parse_cdc_feed(feed, now_iso: str) -> list[dict]:
    """Alerts from a parsed feedparser result."""
    alerts = []
    for entry in feed.entries[:ALERTS_PER_SOURCE]:
        alerts.append(
            _alert(
                "usa",
                entry.get("title") or "Unknown Alert",
                entry.get("summary", entry.get("description", "")),
                entry.get("published", entry.get("updated")) or now_iso,
                "CDC Health Alert Network",
                entry.get("link", ""),
            )
        )
    return alerts


def dedupe_alerts(alerts: list[dict]) -> list[dict]:
    seen = set()
    unique = []
    for alert in alerts:
        if alert["alert_id"] in seen:
            continue
        seen.add(alert["alert_id"])
        unique.append(alert)
    return unique


def to_schema(row: NewsAlert) -> NewsAlertOut:
    return NewsAlertOut(
        id=row.alert_id,
        title=row.title,
        summary=row.summary,
        date=row.date,
        severity=row.severity,
        source=row.source,
        url=row.url,
        region=row.region,
    )


class NewsService:
    """Sync and read the news_data dataset (regions nyc, nys and usa)."""

    label = "News"

    def __init__(self, db: AsyncSession, client: OpenDataClient | None = None):
        self.db = db
        self.client = client or OpenDataClient()

    async def fetch_nyc_news(self) -> list[dict]:
        html = await self.client.fetch_text(settings.nyc_news_url)
        return parse_nyc_press_releases(html, settings.nyc_news_url)

    async def fetch_nys_news(self) -> list[dict]:
        html = await self.client.fetch_text(settings.nys_news_url)
        return parse_nys_news(html, settings.nys_news_url, utcnow().date().isoformat())

    async def fetch_cdc_news(self) -> list[dict]:
        text = await self.client.fetch_text(settings.cdc_rss_url, accept=RSS_ACCEPT)
        feed = await asyncio.to_thread(feedparser.parse, text)
        if feed.bozo and not feed.entries:
            raise UpstreamClientError(f"Failed to parse RSS feed: {feed.bozo_exception}")
        return parse_cdc_feed(feed, utcnow().isoformat())

    async def sync_data(self) -> int:
        """
        Fetch all feeds concurrently and replace the regions that succeeded.

        A failing feed keeps its region's previous alerts; only when every
        feed fails is the sync reported as failed.
        """
        logger.info("Starting news sync")
        sources = {
            "nyc": self.fetch_nyc_news,
            "nys": self.fetch_nys_news,
            "usa": self.fetch_cdc_news,
        }
        results = await asyncio.gather(
            *(fetch() for fetch in sources.values()), return_exceptions=True
        )

        alerts: list[dict] = []
        succeeded: list[str] = []
        errors: list[str] = []
        for region, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.warning(f"News source failed: region={region} error={result!r}")
                errors.append(f"{region}: {result}")
                continue
            succeeded.append(region)
            alerts.extend(result)

        if not succeeded:
            raise UpstreamClientError(f"All news sources failed: {'; '.join(errors)}")

        rows = dedupe_alerts(alerts)
        count = await replace_snapshot(self.db, NewsAlert, rows, NewsAlert.region.in_(succeeded))
        logger.info(f"Synced {count} news alerts: regions={','.join(succeeded)}")
        return count

    async def get_data(self) -> NewsDataOut:
        result = await self.db.execute(select(NewsAlert).order_by(NewsAlert.id))
        by_region: dict[str, list[NewsAlertOut]] = {"nyc": [], "nys": [], "usa": []}
        for row in result.scalars().all():
            if row.region in by_region:
                by_region[row.region].append(to_schema(row))

        return NewsDataOut(**by_region, last_updated=utcnow().isoformat())
