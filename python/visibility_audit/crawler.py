from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit

from .config import AuditConfig
from .errors import FetchError
from .fetcher import Fetcher, FetchResult
from .models import BatchReport, CrawlState, CrawlStatus, PageRecord, SiteFiles
from .parser import PageParser
from .robots import is_allowed, parse_robots_txt
from .urls import hostname_of, is_allowed_host, normalize_url, path_with_query, url_fingerprint

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    state: CrawlState
    pages: List[PageRecord] = field(default_factory=list)
    report: Optional[BatchReport] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CrawlStateMachine:
    """幅優先クロールを一定件数ずつ進める。

    状態はすべて ``CrawlState`` に持たせ、インスタンスには何も残さない。
    別プロセスで保存済みの状態を読み込んでもそのまま続きから再開できる。
    同じ監査のバッチを同時に二つ走らせてはいけない（呼び出し側で排他すること）。
    """

    def __init__(self, config: AuditConfig, fetcher: Fetcher) -> None:
        self.config = config
        self._fetcher = fetcher

    async def initialize(
        self,
        audit_id: str,
        root_url: str,
        *,
        crawl_limit: int,
        allow_subdomains: bool = False,
    ) -> CrawlState:
        """robots.txt などを一度だけ取得し、最初のクロール状態を作る。"""
        root = normalize_url(root_url)
        if root is None:
            raise ValueError(f"クロールできない URL です: {root_url}")

        homepage, robots, sitemap, llms, plain = await self._fetcher.fetch_all(
            [
                root,
                _site_file(root, "robots.txt"),
                _site_file(root, "sitemap.xml"),
                _site_file(root, "llms.txt"),
                _with_scheme(root, "http"),
            ]
        )

        state = CrawlState(
            audit_id=audit_id,
            root_url=root,
            crawl_limit=crawl_limit,
            allow_subdomains=allow_subdomains,
            updated_at=_utcnow(),
        )

        if isinstance(robots, FetchError):
            logger.error("robots.txt を取得できないためクロールを中止します: %s", robots)
            return state.model_copy(update={"status": CrawlStatus.ERROR, "error": str(robots)})

        site_files = SiteFiles(
            robots_txt=robots.body if _is_text_file(robots) else None,
            sitemap_exists=_looks_like_sitemap(sitemap),
            llms_txt=llms.body if _is_text_file(llms) else None,
        )
        if isinstance(homepage, FetchResult):
            site_files.homepage_status = homepage.status
            site_files.https_enforced = (
                homepage.ok and homepage.final_url.startswith("https://") and _redirects_to_https(plain)
            )

        rules = []
        if site_files.robots_txt is not None:
            policy = parse_robots_txt(site_files.robots_txt, self.config.user_agent)
            rules = policy.rules
            site_files.sitemaps = policy.sitemaps

        frontier: List[str] = []
        seen: List[str] = []
        if is_allowed(path_with_query(root), rules):
            frontier.append(root)
            seen.append(url_fingerprint(root))
        else:
            logger.warning("robots.txt によりトップページのクロールが禁止されています: %s", root)

        status = CrawlStatus.RUNNING if frontier else CrawlStatus.DONE
        return state.model_copy(
            update={
                "frontier": frontier,
                "seen_hashes": seen,
                "robots_rules": rules,
                "site_files": site_files,
                "status": status,
            }
        )

    async def advance(
        self,
        state: CrawlState,
        *,
        batch_size: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """フロンティアの先頭から最大 ``batch_size`` 件を取得して状態を一段進める。

        取得に失敗した URL も 1 件として数える（必ず終了させるため）。
        ``cancel`` がセットされた場合、未着手の URL はフロンティアに残したまま返す。
        """
        if state.done:
            return BatchResult(state=state, report=self._report(state, done=True))

        batch_size = batch_size or self.config.batch_size
        remaining = state.crawl_limit - state.crawled_count
        if not state.frontier or remaining <= 0:
            finished = state.model_copy(update={"status": CrawlStatus.DONE, "updated_at": _utcnow()})
            return BatchResult(state=finished, report=self._report(finished, done=True))

        batch = state.frontier[: min(batch_size, remaining)]
        logger.info(
            "バッチ開始 %s: %d/%d 件取得済み, キュー %d 件, 今回 %d 件",
            state.audit_id,
            state.crawled_count,
            state.crawl_limit,
            len(state.frontier),
            len(batch),
        )
        outcomes = await self._fetcher.fetch_all(batch, cancel=cancel)

        root_host = hostname_of(state.root_url)
        parser = PageParser(allow_subdomains=state.allow_subdomains, max_links=self.config.max_links_per_page)
        seen_hashes = list(state.seen_hashes)
        seen = set(seen_hashes)
        discovered: List[str] = []
        pages: List[PageRecord] = []
        processed = 0
        skipped = 0
        last_cursor = state.last_cursor

        for url, outcome in zip(batch, outcomes):
            if outcome is None:
                break
            processed += 1
            last_cursor = url

            page = self._to_page(url, outcome, parser, root_host, state.allow_subdomains)
            if page is None:
                skipped += 1
                continue
            pages.append(page)

            for link in page.links:
                fingerprint = url_fingerprint(link)
                if fingerprint is None or fingerprint in seen:
                    continue
                if not is_allowed_host(hostname_of(link), root_host, state.allow_subdomains):
                    continue
                if not is_allowed(path_with_query(link), state.robots_rules):
                    continue
                seen.add(fingerprint)
                seen_hashes.append(fingerprint)
                discovered.append(link)

        crawled_count = state.crawled_count + processed
        frontier = state.frontier[processed:] + discovered
        cancelled = processed < len(batch)
        done = crawled_count >= state.crawl_limit or not frontier

        new_state = state.model_copy(
            update={
                "frontier": frontier,
                "seen_hashes": seen_hashes,
                "crawled_count": crawled_count,
                "skipped_count": state.skipped_count + skipped,
                "status": CrawlStatus.DONE if done else CrawlStatus.RUNNING,
                "last_cursor": last_cursor,
                "updated_at": _utcnow(),
            }
        )
        logger.info(
            "バッチ完了 %s: 処理 %d 件, ページ %d 件, スキップ %d 件, 新規 URL %d 件",
            state.audit_id,
            processed,
            len(pages),
            skipped,
            len(discovered),
        )
        report = self._report(
            new_state,
            done=done,
            pages_this_batch=len(pages),
            skipped_this_batch=skipped,
            cancelled=cancelled,
        )
        return BatchResult(state=new_state, pages=pages, report=report)

    def _to_page(
        self,
        url: str,
        outcome: FetchResult | FetchError,
        parser: PageParser,
        root_host: str,
        allow_subdomains: bool,
    ) -> Optional[PageRecord]:
        if isinstance(outcome, FetchError):
            return None
        if not outcome.ok:
            logger.debug("ステータス %d のためスキップ: %s", outcome.status, url)
            return None
        if not outcome.is_html:
            logger.debug("HTML ではないためスキップ: %s (%s)", url, outcome.content_type)
            return None
        if not is_allowed_host(hostname_of(outcome.final_url), root_host, allow_subdomains):
            logger.debug("サイト外へリダイレクトされたためスキップ: %s -> %s", url, outcome.final_url)
            return None
        return parser.parse(
            outcome.body,
            url,
            outcome.status,
            base_url=outcome.final_url,
            last_modified_header=outcome.last_modified,
        )

    @staticmethod
    def _report(state: CrawlState, *, done: bool, **counts) -> BatchReport:
        return BatchReport(
            audit_id=state.audit_id,
            crawled_count=state.crawled_count,
            crawl_limit=state.crawl_limit,
            queue_size=len(state.frontier),
            done=done,
            error=state.error,
            **counts,
        )


def _site_file(root: str, name: str) -> str:
    return f"{root.rstrip('/')}/{name}"


def _is_text_file(outcome: FetchResult | FetchError | None) -> bool:
    # 存在しないパスに 200 で HTML を返すサイトがあるので HTML は除外する
    return isinstance(outcome, FetchResult) and outcome.ok and not outcome.is_html


def _looks_like_sitemap(outcome: FetchResult | FetchError | None) -> bool:
    if not isinstance(outcome, FetchResult) or not outcome.ok:
        return False
    head = outcome.body[:2048].lower()
    return "<urlset" in head or "<sitemapindex" in head


def _with_scheme(url: str, scheme: str) -> str:
    return urlunsplit(urlsplit(url)._replace(scheme=scheme))


def _redirects_to_https(outcome: FetchResult | FetchError | None) -> bool:
    # http で接続できない場合は強制とみなす
    if not isinstance(outcome, FetchResult):
        return True
    return outcome.final_url.startswith("https://")
