import asyncio

import httpx

from conftest import HTML, TEXT, FakeSite, html_page
from visibility_audit.config import AuditConfig
from visibility_audit.crawler import CrawlStateMachine
from visibility_audit.fetcher import Fetcher
from visibility_audit.models import CrawlState, CrawlStatus
from visibility_audit.urls import url_fingerprint

ROOT = "https://example.com"


def _config(**kwargs) -> AuditConfig:
    return AuditConfig(**{"batch_size": 15, "concurrency": 3, **kwargs})


async def _initialize(site: FakeSite, config: AuditConfig, *, limit: int, **kwargs) -> CrawlState:
    async with Fetcher(config, transport=site.transport) as fetcher:
        return await CrawlStateMachine(config, fetcher).initialize("audit-1", ROOT, crawl_limit=limit, **kwargs)


async def _advance(site: FakeSite, config: AuditConfig, state: CrawlState, **kwargs):
    async with Fetcher(config, transport=site.transport) as fetcher:
        return await CrawlStateMachine(config, fetcher).advance(state, **kwargs)


def crawl_to_completion(site: FakeSite, *, limit: int, config: AuditConfig | None = None, max_calls: int = 50):
    """保存と復元をはさみながら done になるまでバッチを回す。"""
    config = config or _config()
    state = asyncio.run(_initialize(site, config, limit=limit))
    pages, reports = [], []
    for _ in range(max_calls):
        # 別プロセスでの再開を想定して JSON を経由させる
        state = CrawlState.model_validate_json(state.model_dump_json())
        result = asyncio.run(_advance(site, config, state))
        state = result.state
        pages.extend(result.pages)
        reports.append(result.report)
        assert state.crawled_count <= state.crawl_limit
        if result.report.done:
            break
    return state, pages, reports


def hub_site(count: int = 10) -> FakeSite:
    site = FakeSite()
    links = tuple(f"/page-{i}" for i in range(count))
    site.add("/", html_page(title="Home", links=links))
    for i in range(count):
        site.add(f"/page-{i}", html_page(title=f"Page {i}", links=("/", f"/page-{(i + 1) % count}")))
    return site


class TestInitialize:
    """初期状態の作成"""

    def test_seeds_root_and_caches_site_files(self):
        site = hub_site()
        site.add("/robots.txt", "User-agent: *\nDisallow: /private\nSitemap: https://example.com/sitemap.xml", content_type=TEXT)
        site.add("/sitemap.xml", '<?xml version="1.0"?><urlset></urlset>', content_type="application/xml")
        site.add("/llms.txt", "# Example\nhttps://example.com/\n", content_type=TEXT)

        state = asyncio.run(_initialize(site, _config(), limit=5))

        assert state.status is CrawlStatus.RUNNING
        assert state.frontier == ["https://example.com/"]
        assert state.seen_hashes == [url_fingerprint("https://example.com/")]
        assert state.site_files.sitemap_exists is True
        assert state.site_files.llms_txt.startswith("# Example")
        assert state.site_files.homepage_status == 200
        assert state.site_files.https_enforced is True
        assert state.site_files.sitemaps == ["https://example.com/sitemap.xml"]
        assert [rule.path for rule in state.robots_rules] == ["/private"]

    def test_plain_http_access_is_not_https_enforced(self):
        site = FakeSite(plain_http=True)
        site.add("/", html_page())

        state = asyncio.run(_initialize(site, _config(), limit=5))

        assert state.site_files.homepage_status == 200
        assert state.site_files.https_enforced is False

    def test_soft_404_html_is_not_treated_as_site_file(self):
        site = hub_site()
        site.add("/llms.txt", html_page(title="Not found"))
        site.add("/sitemap.xml", html_page(title="Not found"))
        state = asyncio.run(_initialize(site, _config(), limit=5))
        assert state.site_files.llms_txt is None
        assert state.site_files.sitemap_exists is False

    def test_robots_transport_failure_is_fatal(self):
        site = hub_site().fail("/robots.txt")
        state = asyncio.run(_initialize(site, _config(), limit=5))
        assert state.status is CrawlStatus.ERROR
        assert state.error
        assert state.frontier == []

    def test_root_disallowed_by_robots_finishes_immediately(self):
        site = hub_site().add("/robots.txt", "User-agent: *\nDisallow: /", content_type=TEXT)
        state = asyncio.run(_initialize(site, _config(), limit=5))
        assert state.frontier == []
        assert state.status is CrawlStatus.DONE


class TestAdvance:
    """バッチ処理の進行"""

    def test_limit_is_respected_and_remainder_discarded(self):
        state, pages, reports = crawl_to_completion(hub_site(10), limit=5)

        assert state.crawled_count == 5
        assert reports[-1].done is True
        assert reports[-1].queue_size > 0
        assert len(pages) == 5

    def test_no_page_is_crawled_twice(self):
        state, pages, _ = crawl_to_completion(hub_site(6), limit=50)

        fingerprints = [url_fingerprint(page.url) for page in pages]
        assert len(fingerprints) == len(set(fingerprints))
        assert len(pages) == 7
        assert state.frontier == []
        assert state.status is CrawlStatus.DONE

    def test_small_batches_resume_in_breadth_first_order(self):
        state, pages, reports = crawl_to_completion(hub_site(4), limit=50, config=_config(batch_size=2))

        assert [page.url for page in pages] == [
            "https://example.com/",
            "https://example.com/page-0",
            "https://example.com/page-1",
            "https://example.com/page-2",
            "https://example.com/page-3",
        ]
        assert [report.pages_this_batch for report in reports] == [1, 2, 2]

    def test_crawl_order_is_reproducible(self):
        first = [page.url for page in crawl_to_completion(hub_site(8), limit=6)[1]]
        second = [page.url for page in crawl_to_completion(hub_site(8), limit=6)[1]]
        assert first == second

    def test_robots_rules_filter_discovered_links(self):
        site = FakeSite()
        site.add("/robots.txt", "User-agent: *\nDisallow: /private\nAllow: /private/ok", content_type=TEXT)
        site.add("/", html_page(links=("/private/secret", "/private/ok", "/public")))
        site.add("/private/ok", html_page())
        site.add("/public", html_page())

        _, pages, _ = crawl_to_completion(site, limit=10)

        assert sorted(page.url for page in pages) == [
            "https://example.com/",
            "https://example.com/private/ok",
            "https://example.com/public",
        ]
        assert "/private/secret" not in site.requested

    def test_failures_consume_a_slot_without_a_page(self):
        site = FakeSite()
        site.add("/", html_page(links=("/slow", "/missing", "/data", "/away", "/fine")))
        site.fail("/slow", httpx.ReadTimeout)
        site.add("/data", "{}", content_type="application/x-custom")
        site.add("/away", "", status=301, headers={"location": "https://other.org/"})
        site.add("/fine", html_page())

        state, pages, reports = crawl_to_completion(site, limit=10)

        assert state.crawled_count == 6
        assert state.skipped_count == 4
        assert sum(report.skipped_this_batch for report in reports) == 4
        assert sorted(page.url for page in pages) == ["https://example.com/", "https://example.com/fine"]

    def test_malformed_link_does_not_stall_crawl(self):
        site = FakeSite()
        site.add("/", html_page(links=("/a",)))
        site.add("/a", html_page(links=("http://[broken/x", "/b")))
        site.add("/b", html_page())

        state, pages, reports = crawl_to_completion(site, limit=10, config=_config(batch_size=1))

        assert reports[-1].done is True
        assert state.status is CrawlStatus.DONE
        assert [page.url for page in pages] == [
            "https://example.com/",
            "https://example.com/a",
            "https://example.com/b",
        ]

    def test_cancel_during_batch_keeps_finished_fetches(self):
        site = hub_site(3)
        config = _config(concurrency=1)
        urls = [f"{ROOT}/page-{i}" for i in range(3)]
        state = CrawlState(
            audit_id="audit-1",
            root_url=f"{ROOT}/",
            frontier=urls,
            seen_hashes=[url_fingerprint(url) for url in [f"{ROOT}/", *urls]],
            crawl_limit=10,
            status=CrawlStatus.RUNNING,
        )

        async def cancelled_after_first_request():
            cancel = asyncio.Event()

            def handler(request: httpx.Request) -> httpx.Response:
                response = site.handler(request)
                cancel.set()
                return response

            async with Fetcher(config, transport=httpx.MockTransport(handler)) as fetcher:
                return await CrawlStateMachine(config, fetcher).advance(state, cancel=cancel)

        result = asyncio.run(cancelled_after_first_request())

        assert result.report.cancelled is True
        assert result.report.done is False
        assert result.report.pages_this_batch == 1
        assert [page.url for page in result.pages] == [urls[0]]
        assert result.state.crawled_count == 1
        assert result.state.frontier[:2] == urls[1:]
        assert site.requested == ["/page-0"]

    def test_cancelled_batch_keeps_state_resumable(self):
        site = hub_site(3)
        config = _config()
        state = asyncio.run(_initialize(site, config, limit=10))

        async def cancelled_batch():
            cancel = asyncio.Event()
            cancel.set()
            return await _advance(site, config, state, cancel=cancel)

        result = asyncio.run(cancelled_batch())

        assert result.report.cancelled is True
        assert result.report.done is False
        assert result.pages == []
        assert result.state.frontier == state.frontier
        assert result.state.crawled_count == 0

        resumed = asyncio.run(_advance(site, config, result.state))
        assert resumed.report.pages_this_batch == 1

    def test_finished_state_is_left_untouched(self):
        state, _, _ = crawl_to_completion(hub_site(2), limit=2)
        again = asyncio.run(_advance(hub_site(2), _config(), state))
        assert again.state is state
        assert again.report.done is True
        assert again.pages == []

    def test_www_and_scheme_variants_are_not_requeued(self):
        site = FakeSite()
        site.add("/", html_page(links=("http://www.example.com/", "https://example.com/#top", "/a/", "/a")))
        site.add("/a", html_page())

        state, pages, _ = crawl_to_completion(site, limit=10)

        assert [page.url for page in pages] == ["https://example.com/", "https://example.com/a"]
        assert len(state.seen_hashes) == 2


def test_fetcher_pool_never_exceeds_concurrency():
    in_flight = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return httpx.Response(200, text="<html></html>", headers={"content-type": HTML})

    async def main():
        config = _config(concurrency=3)
        async with Fetcher(config, transport=httpx.MockTransport(handler)) as fetcher:
            return await fetcher.fetch_all([f"https://example.com/{i}" for i in range(10)])

    results = asyncio.run(main())
    assert len(results) == 10
    assert all(result.ok for result in results)
    assert [result.url for result in results] == [f"https://example.com/{i}" for i in range(10)]
    assert peak <= 3
