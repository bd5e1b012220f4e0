from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment
from bs4.builder import ParserRejectedMarkup

from .models import PageRecord
from .urls import hostname_of, is_allowed_host, normalize_url

logger = logging.getLogger(__name__)

HEADING_LEVELS = ("h1", "h2", "h3", "h4", "h5", "h6")

SOCIAL_DOMAINS = (
    "twitter.com",
    "x.com",
    "linkedin.com",
    "facebook.com",
    "instagram.com",
    "youtube.com",
    "tiktok.com",
)

MODIFIED_META_KEYS = (
    "article:modified_time",
    "og:updated_time",
    "last-modified",
    "dcterms.modified",
    "datemodified",
)

_NON_TEXT_TAGS = {"script", "style", "noscript", "template"}


def sanitize_text(text: str) -> str:
    return " ".join(text.split())


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """ISO 8601 と HTTP 日付の両方を受け付け、UTC の aware な datetime にする。"""
    if not value:
        return None
    value = value.strip()
    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class PageParser:
    """HTML からページの構造情報を取り出す。I/O は行わない。"""

    def __init__(self, *, allow_subdomains: bool = False, max_links: int = 100) -> None:
        self.allow_subdomains = allow_subdomains
        self.max_links = max_links

    def parse(
        self,
        html: str,
        url: str,
        status: int,
        *,
        base_url: Optional[str] = None,
        last_modified_header: Optional[str] = None,
    ) -> PageRecord:
        """``base_url`` はリダイレクト後の URL。相対リンクの解決に使う。"""
        base_url = base_url or url
        try:
            soup = BeautifulSoup(html or "", "lxml")
        except ParserRejectedMarkup as exc:
            logger.warning("HTML を解析できませんでした (%s): %s", url, exc)
            return PageRecord(url=url, status=status, headings={level: 0 for level in HEADING_LEVELS})

        title_node = soup.find("title")
        title = sanitize_text(title_node.get_text()) if title_node else ""

        h1_node = soup.find("h1")
        h1 = sanitize_text(h1_node.get_text(separator=" ")) if h1_node else ""

        meta_description = self._meta_content(soup, "description") or ""

        canonical = ""
        canonical_link = soup.find("link", rel="canonical")
        if canonical_link and canonical_link.get("href"):
            canonical = _resolve(base_url, canonical_link["href"].strip()) or ""

        robots_content = self._meta_content(soup, "robots") or ""
        robots_directives = [part.strip().lower() for part in robots_content.split(",") if part.strip()]

        schema_blocks = self._load_json_ld(soup, url)
        schema_types: List[str] = []
        same_as = False
        schema_modified: Optional[str] = None
        for node in _walk_json_ld(schema_blocks):
            for type_name in _as_list(node.get("@type")):
                if isinstance(type_name, str) and type_name not in schema_types:
                    schema_types.append(type_name)
            if node.get("sameAs"):
                same_as = True
            if schema_modified is None and isinstance(node.get("dateModified"), str):
                schema_modified = node["dateModified"]

        headings = {level: len(soup.find_all(level)) for level in HEADING_LEVELS}

        images = soup.find_all("img")
        images_with_alt = sum(1 for node in images if (node.get("alt") or "").strip())

        links, social_links = self._extract_links(soup, base_url)

        last_modified = (
            parse_timestamp(self._modified_meta(soup))
            or parse_timestamp(schema_modified)
            or parse_timestamp(last_modified_header)
        )

        return PageRecord(
            url=url,
            status=status,
            title=title,
            h1=h1,
            meta_description=meta_description.strip(),
            canonical=canonical,
            robots_directives=robots_directives,
            has_schema=bool(schema_blocks),
            schema_types=schema_types,
            schema_has_same_as=same_as,
            word_count=self._word_count(soup),
            image_count=len(images),
            images_with_alt=images_with_alt,
            headings=headings,
            links=links,
            social_links=social_links,
            render_blocking_count=self._render_blocking_count(soup),
            last_modified=last_modified,
        )

    @staticmethod
    def _meta_content(soup: BeautifulSoup, name: str) -> Optional[str]:
        node = soup.find("meta", attrs={"name": lambda value: bool(value) and value.lower() == name})
        if node and node.get("content"):
            return node["content"]
        return None

    @staticmethod
    def _modified_meta(soup: BeautifulSoup) -> Optional[str]:
        for node in soup.find_all("meta"):
            key = node.get("property") or node.get("name") or node.get("itemprop") or node.get("http-equiv")
            if key and key.lower() in MODIFIED_META_KEYS and node.get("content"):
                return node["content"]
        return None

    @staticmethod
    def _load_json_ld(soup: BeautifulSoup, url: str) -> List[Any]:
        blocks: List[Any] = []
        for node in soup.find_all("script", attrs={"type": lambda value: bool(value) and value.lower() == "application/ld+json"}):
            text = node.string or node.get_text()
            if not text or not text.strip():
                continue
            try:
                blocks.append(json.loads(text))
            except ValueError:
                logger.debug("不正な JSON-LD をスキップしました: %s", url)
        return blocks

    @staticmethod
    def _word_count(soup: BeautifulSoup) -> int:
        root = soup.body or soup
        words = 0
        for text in root.find_all(string=True):
            if isinstance(text, Comment) or (text.parent is not None and text.parent.name in _NON_TEXT_TAGS):
                continue
            words += len(text.split())
        return words

    @staticmethod
    def _render_blocking_count(soup: BeautifulSoup) -> int:
        head = soup.head
        if head is None:
            return 0
        count = 0
        for node in head.find_all("script", src=True):
            script_type = (node.get("type") or "").lower()
            if node.has_attr("async") or node.has_attr("defer") or script_type == "module":
                continue
            count += 1
        for node in head.find_all("link", rel="stylesheet"):
            media = (node.get("media") or "all").lower()
            if media in {"all", "screen"}:
                count += 1
        return count

    def _extract_links(self, soup: BeautifulSoup, page_url: str) -> tuple[List[str], List[str]]:
        page_host = hostname_of(page_url)
        links: List[str] = []
        social: List[str] = []
        seen: set[str] = set()
        for node in soup.find_all("a", href=True):
            href = node["href"].strip()
            if not href or href.startswith(("mailto:", "tel:", "javascript:", "#")):
                continue
            absolute = _resolve(page_url, href)
            if absolute is None:
                continue
            host = hostname_of(absolute)
            if _is_social_host(host):
                if absolute not in social:
                    social.append(absolute)
                continue
            if len(links) >= self.max_links:
                continue
            normalized = normalize_url(absolute)
            if normalized is None or normalized in seen:
                continue
            if not is_allowed_host(hostname_of(normalized), page_host, self.allow_subdomains):
                continue
            seen.add(normalized)
            links.append(normalized)
        return links, social


def _resolve(base: str, href: str) -> Optional[str]:
    try:
        return urljoin(base, href)
    except ValueError:
        # "http://[broken" のような壊れた IPv6 表記
        logger.debug("解釈できない URL をスキップしました: %s", href)
        return None


def _is_social_host(host: str) -> bool:
    return any(host == domain or host.endswith(f".{domain}") for domain in SOCIAL_DOMAINS)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _walk_json_ld(blocks: Iterable[Any]) -> Iterable[dict]:
    stack = list(reversed(list(blocks)))
    while stack:
        node = stack.pop()
        if isinstance(node, list):
            stack.extend(reversed(node))
        elif isinstance(node, dict):
            yield node
            graph = node.get("@graph")
            if isinstance(graph, list):
                stack.extend(reversed(graph))
