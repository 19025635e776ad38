"""
RSS feed client for collecting cybersecurity articles.

Fetches RSS 2.0, RSS 1.0 (RDF) and Atom feeds, then deduplicates by URL and
keeps only articles inside the configured time window.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional
from xml.etree import ElementTree

import requests
from bs4 import BeautifulSoup

from .config import FeedEntry


logger = logging.getLogger(__name__)


NAMESPACES = {
    "content": "http://purl.org/rss/1.0/modules/content/",
    "dc": "http://purl.org/dc/elements/1.1/",
    "atom": "http://www.w3.org/2005/Atom",
    "rss1": "http://purl.org/rss/1.0/",
}

ATOM = "{http://www.w3.org/2005/Atom}"

# Browser-like headers to avoid bot detection
REQUEST_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
    "Accept-Language": "en-US,en;q=0.9",
}

# Max characters kept from an item description
SUMMARY_MAX_CHARS = 600


class RSSClientError(Exception):
    """Raised when RSS feed fetching or parsing fails."""
    pass


@dataclass
class Article:
    """A single collected article."""

    id: str
    title: str
    url: str
    summary: str
    published_at: datetime
    source: Optional[str]


@dataclass
class FeedFetchResult:
    """Outcome of collecting several feeds."""

    articles: list[Article] = field(default_factory=list)
    feeds_processed: int = 0
    feeds_failed: int = 0
    errors: list[str] = field(default_factory=list)


def _generate_article_id(url: str) -> str:
    """Generate a unique ID from URL using hash."""
    return hashlib.sha256(url.encode()).hexdigest()[:16]


def _to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_rss_date(date_string: Optional[str]) -> datetime:
    """
    Parse the date formats found in RSS and Atom feeds.

    Handles RFC 822 ("Mon, 15 Jan 2024 10:30:00 GMT") and ISO 8601
    ("2024-01-15T10:30:00Z"). Unparseable or missing dates fall back
    to the current time. The result is always timezone aware (UTC).
    """
    if not date_string:
        return datetime.now(timezone.utc)

    date_string = date_string.strip()

    try:
        return _to_utc(parsedate_to_datetime(date_string))
    except (TypeError, ValueError, IndexError):
        pass

    try:
        return _to_utc(datetime.fromisoformat(date_string.replace("Z", "+00:00")))
    except ValueError:
        pass

    logger.debug(f"Could not parse RSS date: {date_string}")
    return datetime.now(timezone.utc)


def _clean_html(text: Optional[str]) -> str:
    """Reduce HTML markup to normalized plain text."""
    if not text:
        return ""
    plain = BeautifulSoup(text, "html.parser").get_text(" ")
    return " ".join(plain.split())


def _truncate(text: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rsplit(" ", 1)[0] + "..."


def _find_text(element: ElementTree.Element, *paths: str) -> str:
    """Return the text of the first matching child among several paths."""
    for path in paths:
        child = element.find(path, NAMESPACES)
        if child is not None and child.text:
            return child.text.strip()
    return ""


def _parse_rss_item(item: ElementTree.Element, feed_source: str) -> Optional[Article]:
    """Parse an RSS 2.0 / RSS 1.0 <item> element."""
    title = _find_text(item, "title", "rss1:title")
    link = _find_text(item, "link", "rss1:link")

    if not title or not link:
        return None

    description = _find_text(item, "description", "rss1:description", "content:encoded")
    pub_date = _find_text(item, "pubDate", "dc:date")
    source = _find_text(item, "dc:creator", "source") or feed_source
    guid = _find_text(item, "guid")

    return Article(
        id=guid or _generate_article_id(link),
        title=_clean_html(title),
        url=link,
        summary=_truncate(_clean_html(description)),
        published_at=_parse_rss_date(pub_date),
        source=source,
    )


def _atom_link(entry: ElementTree.Element) -> str:
    """Pick the alternate link of an Atom entry."""
    links = entry.findall(f"{ATOM}link") or entry.findall("link")
    for link in links:
        if link.get("rel", "alternate") == "alternate" and link.get("href"):
            return link.get("href").strip()
    for link in links:
        if link.get("href"):
            return link.get("href").strip()
        if link.text:
            return link.text.strip()
    return ""


def _parse_atom_entry(entry: ElementTree.Element, feed_source: str) -> Optional[Article]:
    """Parse an Atom <entry> element."""
    title = _find_text(entry, "atom:title", "title")
    link = _atom_link(entry)

    if not title or not link:
        return None

    summary = _find_text(entry, "atom:summary", "atom:content", "summary", "content")
    pub_date = _find_text(entry, "atom:published", "atom:updated", "published", "updated")
    source = _find_text(entry, "atom:author/atom:name", "author/name") or feed_source
    entry_id = _find_text(entry, "atom:id", "id")

    return Article(
        id=entry_id or _generate_article_id(link),
        title=_clean_html(title),
        url=link,
        summary=_truncate(_clean_html(summary)),
        published_at=_parse_rss_date(pub_date),
        source=source,
    )


def _detect_feed_type(root: ElementTree.Element) -> str:
    """Detect whether the feed is RSS 2.0, RSS 1.0, or Atom."""
    tag = root.tag.split("}")[-1].lower()

    if tag == "rss":
        return "rss2"
    if tag == "rdf":
        return "rss1"
    if tag == "feed":
        return "atom"
    if root.find("channel") is not None:
        return "rss2"
    return "unknown"


def _get_feed_source(root: ElementTree.Element, feed_type: str) -> Optional[str]:
    """Extract the feed title from the feed metadata."""
    if feed_type == "rss2":
        return _find_text(root, "channel/title") or None
    if feed_type == "rss1":
        return _find_text(root, "rss1:channel/rss1:title", "channel/title") or None
    if feed_type == "atom":
        return _find_text(root, "atom:title", "title") or None
    return None


def parse_feed(xml_content: str, feed_name: str = "RSS Feed") -> list[Article]:
    """
    Parse RSS/Atom feed XML content into Article objects.

    Args:
        xml_content: Raw XML string of the feed.
        feed_name: Name to use as source if the feed doesn't specify one.

    Returns:
        Articles in document order. Items without a title or link are skipped.

    Raises:
        RSSClientError: If XML parsing fails.
    """
    try:
        root = ElementTree.fromstring(xml_content)
    except ElementTree.ParseError as e:
        raise RSSClientError(f"Failed to parse RSS feed XML: {e}")

    feed_type = _detect_feed_type(root)
    logger.debug(f"Detected feed type: {feed_type}")

    feed_source = _get_feed_source(root, feed_type) or feed_name

    if feed_type == "rss2":
        items = root.findall("channel/item")
        parsed = [_parse_rss_item(item, feed_source) for item in items]
    elif feed_type == "rss1":
        items = root.findall("rss1:item", NAMESPACES) or root.findall("item")
        parsed = [_parse_rss_item(item, feed_source) for item in items]
    elif feed_type == "atom":
        entries = root.findall("atom:entry", NAMESPACES) or root.findall("entry")
        parsed = [_parse_atom_entry(entry, feed_source) for entry in entries]
    else:
        logger.warning(f"Unknown feed type for root tag: {root.tag}")
        parsed = []

    articles = [article for article in parsed if article is not None]
    logger.info(f"Parsed {len(articles)} articles from {feed_name}")
    return articles


def fetch_rss_feed(
    url: str,
    feed_name: str = "RSS Feed",
    limit: int = 20,
    timeout: int = 30,
) -> list[Article]:
    """
    Fetch and parse an RSS/Atom feed from a URL.

    Returns:
        Articles sorted newest first, at most ``limit`` of them.

    Raises:
        RSSClientError: If fetching or parsing fails.
    """
    logger.info(f"Fetching RSS feed: {feed_name} ({url})")

    try:
        response = requests.get(url, headers=REQUEST_HEADERS, timeout=timeout)
        response.raise_for_status()
    except requests.Timeout:
        raise RSSClientError(f"RSS feed request timed out: {url}")
    except requests.RequestException as e:
        raise RSSClientError(f"Failed to fetch RSS feed {url}: {e}")

    content_type = response.headers.get("Content-Type", "")
    if not any(t in content_type.lower() for t in ["xml", "rss", "atom", "text"]):
        logger.warning(f"Unexpected content type for RSS feed: {content_type}")

    articles = parse_feed(response.text, feed_name)
    articles.sort(key=lambda a: a.published_at, reverse=True)
    return articles[:limit]


def filter_recent(
    articles: list[Article],
    hours_back: int,
    now: Optional[datetime] = None,
) -> list[Article]:
    """Keep articles published within the last ``hours_back`` hours."""
    now = _to_utc(now) if now else datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=hours_back)
    return [a for a in articles if _to_utc(a.published_at) >= cutoff]


def fetch_multiple_feeds(
    feeds: list[FeedEntry],
    hours_back: int = 24,
    deduplicate: bool = True,
    now: Optional[datetime] = None,
) -> FeedFetchResult:
    """
    Collect recent articles from several feeds.

    A failing feed is logged and skipped so that one broken source does not
    stop the run. Duplicates (same URL) are dropped, first occurrence wins.

    Returns:
        FeedFetchResult with articles sorted newest first.

    Raises:
        RSSClientError: If every enabled feed failed.
    """
    result = FeedFetchResult()
    seen_urls: set[str] = set()
    enabled = [feed for feed in feeds if feed.enabled]

    for feed in enabled:
        try:
            articles = fetch_rss_feed(url=feed.url, feed_name=feed.name, limit=feed.limit)
        except RSSClientError as e:
            result.feeds_failed += 1
            result.errors.append(f"{feed.name}: {e}")
            logger.warning(f"Failed to fetch {feed.name}: {e}")
            continue

        result.feeds_processed += 1
        recent = filter_recent(articles, hours_back, now=now)

        for article in recent:
            if deduplicate and article.url in seen_urls:
                continue
            seen_urls.add(article.url)
            result.articles.append(article)

        logger.info(f"{feed.name}: {len(recent)} of {len(articles)} articles within {hours_back}h")

    if enabled and result.feeds_processed == 0:
        raise RSSClientError(f"All RSS feeds failed: {'; '.join(result.errors)}")

    result.articles.sort(key=lambda a: a.published_at, reverse=True)
    logger.info(
        f"Collected {len(result.articles)} unique articles from "
        f"{result.feeds_processed} feeds ({result.feeds_failed} failed)"
    )
    return result
