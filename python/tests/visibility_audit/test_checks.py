import random
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from visibility_audit.checks import DEFAULT_CATALOG, AuxSignals, CheckEngine, find_homepage
from visibility_audit.models import CheckStatus, PageRecord, SiteFiles
from visibility_audit.scoring import module_scores

AS_OF = datetime(2026, 10, 1, tzinfo=timezone.utc)
ROOT = "https://example.com/"


def make_page(path: str = "/", **fields) -> PageRecord:
    defaults = dict(
        status=200,
        title=f"Title {path}",
        h1="Heading",
        meta_description="Description",
        headings={"h1": 1, "h2": 2, "h3": 0, "h4": 0, "h5": 0, "h6": 0},
        word_count=600,
    )
    defaults.update(fields)
    return PageRecord(url=f"https://example.com{path}", **defaults)


def make_aux(**fields) -> AuxSignals:
    defaults = dict(
        root_url=ROOT,
        robots_txt="User-agent: *\nAllow: /",
        sitemap_exists=True,
        llms_txt="# Example\n> summary\nhttps://example.com/\n",
        https_enforced=True,
        homepage_status=200,
        as_of=AS_OF,
    )
    defaults.update(fields)
    return AuxSignals(**defaults)


def evaluate(pages, aux=None, business_type=None):
    results = CheckEngine().evaluate(pages, aux or make_aux(), business_type)
    return {result.key: result for result in results}


class TestCatalog:
    """チェック定義のテスト"""

    def test_module_counts(self):
        counts = Counter(definition.module for definition in DEFAULT_CATALOG)
        assert counts == {"crawl": 6, "onpage": 6, "entity": 5, "ai_readiness": 5, "offsite": 2, "performance": 3}

    def test_keys_are_unique(self):
        keys = [definition.key for definition in DEFAULT_CATALOG]
        assert len(keys) == len(set(keys))

    def test_empty_page_set_still_produces_every_check(self):
        results = CheckEngine().evaluate([], make_aux())
        assert len(results) == len(DEFAULT_CATALOG)
        assert all(0 <= result.score <= 100 for result in results)


class TestCrawlChecks:
    """crawl モジュール"""

    def test_robots_disallow_all_is_a_warning(self):
        result = evaluate([make_page()], make_aux(robots_txt="Disallow: /"))["robots_exists_and_allows"]
        assert result.status is CheckStatus.WARN
        assert result.score == 50
        assert result.evidence == {"exists": True, "allows_crawl": False}

    def test_disallowing_a_subdirectory_still_allows_crawl(self):
        result = evaluate([make_page()], make_aux(robots_txt="User-agent: *\nDisallow: /admin"))["robots_exists_and_allows"]
        assert result.status is CheckStatus.PASS

    def test_missing_robots_fails(self):
        result = evaluate([make_page()], make_aux(robots_txt=None))["robots_exists_and_allows"]
        assert result.status is CheckStatus.FAIL
        assert result.score == 0

    def test_homepage_status_falls_back_to_site_files(self):
        result = evaluate([], make_aux(homepage_status=503))["homepage_status_200"]
        assert result.status is CheckStatus.FAIL
        assert result.evidence == {"status": 503}
        assert "503" in result.fix

    def test_noindex_on_homepage_fails(self):
        result = evaluate([make_page(robots_directives=["noindex", "follow"])])["noindex_not_present_on_homepage"]
        assert result.status is CheckStatus.FAIL

    def test_cross_path_canonical_is_allowed_but_offsite_is_not(self):
        pages = [
            make_page("/"),
            make_page("/blog?page=2", canonical="https://example.com/blog"),
            make_page("/copy", canonical="https://other.org/original"),
        ]
        result = evaluate(pages)["canonical_redirect_consistency"]
        assert result.evidence["with_canonical"] == 2
        assert result.evidence["offsite_canonicals"] == 1
        assert result.evidence["urls"] == ["https://example.com/copy"]
        assert result.status is CheckStatus.WARN
        assert result.score == 50


class TestOnPageChecks:
    """onpage モジュール"""

    def test_missing_title_and_description(self):
        results = evaluate([make_page(title="", meta_description="")])
        title = results["title_present"]
        meta = results["meta_description_present"]

        assert title.status in (CheckStatus.FAIL, CheckStatus.WARN)
        assert meta.status in (CheckStatus.FAIL, CheckStatus.WARN)
        assert title.evidence["with_title"] == 0
        assert title.evidence["missing_title"] == 1
        assert meta.evidence["with_meta"] == 0
        assert meta.evidence["missing_meta"] == 1
        assert title.evidence["affected_pages"] == [{"url": "https://example.com/", "issue": "title タグがありません"}]
        assert meta.evidence["affected_pages"] == [
            {"url": "https://example.com/", "issue": "meta description がありません"}
        ]

    def test_title_ratio_thresholds(self):
        pages = [make_page(f"/p{i}") for i in range(8)] + [make_page("/x", title=""), make_page("/y", title="")]
        result = evaluate(pages)["title_present"]
        assert result.score == 80
        assert result.status is CheckStatus.WARN

    def test_duplicate_titles_flag_both_pages(self):
        pages = [make_page("/"), make_page("/a", title="Same"), make_page("/b", title="Same")]
        result = evaluate(pages)["duplicate_titles_across_sample"]

        assert result.status is not CheckStatus.PASS
        assert result.evidence["duplicates"] == [
            {"title": "Same", "count": 2, "urls": ["https://example.com/a", "https://example.com/b"]}
        ]
        affected = result.evidence["affected_pages"]
        assert [entry["url"] for entry in affected] == ["https://example.com/a", "https://example.com/b"]
        for entry in affected:
            assert "Same" in entry["issue"]
            assert "2" in entry["issue"]

    def test_heading_hierarchy_requires_single_h1_and_an_h2(self):
        bad = {"h1": 2, "h2": 0, "h3": 0, "h4": 0, "h5": 0, "h6": 0}
        result = evaluate([make_page(headings=bad)])["heading_hierarchy_reasonable"]
        assert result.status is CheckStatus.FAIL
        assert result.evidence == {
            "good_hierarchy": 0,
            "total": 1,
            "affected_pages": [{"url": "https://example.com/", "issue": "H1 が 2 個あります、H2 がありません"}],
        }

    def test_affected_pages_are_capped(self):
        pages = [make_page(f"/p{i:02d}", h1="") for i in range(12)]
        affected = evaluate(pages)["h1_present"].evidence["affected_pages"]
        assert len(affected) == 10
        assert affected[0] == {"url": "https://example.com/p00", "issue": "H1 がありません"}

    def test_thin_content_uses_floor(self):
        pages = [make_page("/"), make_page("/short", word_count=100), make_page("/empty", word_count=0)]
        result = evaluate(pages)["thin_content_pages"]
        assert result.evidence["thin_pages"] == 1
        assert result.evidence["threshold"] == 250


class TestEntityChecks:
    """entity モジュール"""

    def test_missing_organization_schema_lowers_entity_score(self):
        without = CheckEngine().evaluate([make_page()], make_aux())
        with_org = CheckEngine().evaluate([make_page(schema_types=["Organization"], has_schema=True)], make_aux())

        org = {result.key: result for result in without}["organization_schema_present"]
        assert org.status is CheckStatus.FAIL
        assert org.score == 0
        # 0, 30, 40, 40, 30 と 100, 70, 40, 40, 30 の平均
        assert module_scores(without)["entity"] == 28.0
        assert module_scores(with_org)["entity"] == 56.0

    def test_about_and_contact_from_crawled_urls(self):
        pages = [make_page("/"), make_page("/about-us"), make_page("/contact")]
        aux = AuxSignals.build(ROOT, SiteFiles(), pages, as_of=AS_OF)
        assert aux.about_exists is True
        assert aux.contact_exists is True
        assert AuxSignals.build(ROOT, SiteFiles(), [make_page("/aboutness")]).about_exists is False

    def test_policies_detected_from_links(self):
        page = make_page("/", links=["https://example.com/privacy-policy", "https://example.com/terms"])
        result = evaluate([page])["policies_present"]
        assert result.status is CheckStatus.PASS
        assert result.evidence == {"privacy": True, "terms": True}

    def test_same_as_requires_schema(self):
        assert evaluate([make_page()])["schema_has_sameAs"].score == 30
        page = make_page(has_schema=True, schema_has_same_as=True)
        assert evaluate([page])["schema_has_sameAs"].status is CheckStatus.PASS


class TestAIReadinessChecks:
    """ai_readiness モジュール"""

    def test_pricing_required_for_saas(self):
        pages = [make_page("/")]
        assert evaluate(pages, business_type="SaaS")["pricing_or_plans_page_exists"].status is CheckStatus.FAIL
        assert evaluate(pages, business_type="agency")["pricing_or_plans_page_exists"].status is CheckStatus.WARN
        assert evaluate(pages + [make_page("/pricing")])["pricing_or_plans_page_exists"].status is CheckStatus.PASS

    def test_llms_txt_richness(self):
        assert evaluate([], make_aux(llms_txt="one line"))["llms_txt_has_canonical_sources"].score == 50
        assert evaluate([], make_aux(llms_txt=None))["llms_txt_has_canonical_sources"].status is CheckStatus.FAIL
        assert evaluate([])["llms_txt_has_canonical_sources"].status is CheckStatus.PASS

    def test_faq_from_schema(self):
        result = evaluate([make_page("/help", schema_types=["FAQPage"])])["faq_or_qna_page_exists"]
        assert result.status is CheckStatus.PASS

    @pytest.mark.parametrize(
        "ages, status, score",
        [
            ([], CheckStatus.WARN, 40),
            ([10, 30, 400], CheckStatus.PASS, 100),
            ([200, 250, 10], CheckStatus.WARN, 70),
            ([400, 500, 10], CheckStatus.FAIL, 30),
        ],
    )
    def test_content_freshness_windows(self, ages, status, score):
        pages = [make_page("/")] + [
            make_page(f"/p{i}", last_modified=AS_OF - timedelta(days=age)) for i, age in enumerate(ages)
        ]
        result = evaluate(pages)["content_freshness"]
        assert result.status is status
        assert result.score == score
        assert result.evidence["pages_with_dates"] == len(ages)


class TestOffsiteChecks:
    """offsite モジュール"""

    def test_social_links(self):
        page = make_page(social_links=["https://www.linkedin.com/company/acme", "https://x.com/acme"])
        result = evaluate([page])["social_profiles_linked_from_site"]
        assert result.status is CheckStatus.PASS
        assert result.evidence["platforms"] == ["linkedin.com", "x.com"]

    def test_brand_name_in_homepage(self):
        pages = [make_page("/", title="Acme | Widgets"), make_page("/other", title="Nothing")]
        assert evaluate(pages, make_aux(brand_name="acme"))["brand_name_present_in_title_or_h1"].status is CheckStatus.PASS
        missing = evaluate(pages, make_aux(brand_name="Globex"))["brand_name_present_in_title_or_h1"]
        assert missing.status is CheckStatus.WARN
        assert "Globex" in missing.fix


class TestDeterminism:
    """同じ入力からは同じ結果"""

    def test_order_independent(self):
        pages = [make_page(f"/p{i}", title="Dup" if i % 3 == 0 else f"T{i}") for i in range(9)] + [make_page("/")]
        shuffled = list(pages)
        random.Random(7).shuffle(shuffled)

        assert CheckEngine().evaluate(pages, make_aux()) == CheckEngine().evaluate(shuffled, make_aux())

    def test_homepage_found_regardless_of_position(self):
        pages = [make_page("/deep/page"), make_page("/")]
        assert find_homepage(pages, "https://www.example.com").url == "https://example.com/"
        assert find_homepage([make_page("/a/b"), make_page("/c")], ROOT).url == "https://example.com/c"
