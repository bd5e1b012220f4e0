"""
チェックエンジン。

クロールしたページ群と補助シグナル（robots.txt、sitemap.xml、llms.txt など）から、
6 つのモジュールに分かれた固定のチェック群を評価する。各チェックは純粋関数で、
同じ入力からは常に同じ結果を返す（ページの並び順にも依存しない）。
影響度・工数は評価結果ではなくチェック定義側に固定で持たせる。
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from .models import CheckResult, CheckStatus, Level, PageRecord, SiteFiles
from .robots import is_allowed, parse_robots_txt
from .urls import hostname_of, is_allowed_host, url_fingerprint

PASS, WARN, FAIL = CheckStatus.PASS, CheckStatus.WARN, CheckStatus.FAIL
LOW, MEDIUM, HIGH = Level.LOW, Level.MEDIUM, Level.HIGH

ABOUT_PATTERN = re.compile(r"/(about|company|who-we-are|about-us)(/|$|-|\?)", re.IGNORECASE)
CONTACT_PATTERN = re.compile(r"/contact", re.IGNORECASE)
PRIVACY_PATTERN = re.compile(r"/(privacy|privacy-policy)(/|$|-|\?)", re.IGNORECASE)
TERMS_PATTERN = re.compile(r"/(terms|tos|terms-of-service|terms-and-conditions|legal)(/|$|-|\?)", re.IGNORECASE)
PRICING_PATTERN = re.compile(r"(pricing|plans|products)", re.IGNORECASE)
FAQ_PATTERN = re.compile(r"faq", re.IGNORECASE)

ORGANIZATION_TYPES = frozenset({"Organization", "LocalBusiness", "Corporation", "Company"})
FAQ_TYPES = frozenset({"FAQPage", "QAPage"})
PRICING_REQUIRED_TYPES = frozenset({"saas", "ecommerce", "e-commerce"})

MAX_EVIDENCE_URLS = 10


@dataclass(frozen=True)
class AuxSignals:
    """ページ以外の判定材料。"""

    root_url: str
    robots_txt: Optional[str] = None
    sitemap_exists: bool = False
    llms_txt: Optional[str] = None
    https_enforced: bool = False
    homepage_status: Optional[int] = None
    about_exists: bool = False
    contact_exists: bool = False
    brand_name: Optional[str] = None
    allow_subdomains: bool = False
    as_of: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def build(
        cls,
        root_url: str,
        site_files: SiteFiles,
        pages: Iterable[PageRecord],
        *,
        brand_name: Optional[str] = None,
        allow_subdomains: bool = False,
        as_of: Optional[datetime] = None,
    ) -> "AuxSignals":
        urls = [page.url for page in pages]
        return cls(
            root_url=root_url,
            robots_txt=site_files.robots_txt,
            sitemap_exists=site_files.sitemap_exists,
            llms_txt=site_files.llms_txt,
            https_enforced=site_files.https_enforced,
            homepage_status=site_files.homepage_status,
            about_exists=any(ABOUT_PATTERN.search(_path(url)) for url in urls),
            contact_exists=any(CONTACT_PATTERN.search(_path(url)) for url in urls),
            brand_name=brand_name,
            allow_subdomains=allow_subdomains,
            as_of=as_of or datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class CheckContext:
    pages: Tuple[PageRecord, ...]
    homepage: Optional[PageRecord]
    aux: AuxSignals
    business_type: Optional[str]
    thin_content_words: int

    @property
    def total(self) -> int:
        return len(self.pages)

    def ratio(self, matched: int) -> float:
        return matched / self.total if self.total else 0.0


@dataclass(frozen=True)
class Outcome:
    status: CheckStatus
    score: int
    evidence: Dict[str, Any] = field(default_factory=dict)
    fix: str = ""


@dataclass(frozen=True)
class CheckDefinition:
    module: str
    key: str
    impact: Level
    effort: Level
    why: str
    evaluate: Callable[[CheckContext], Outcome]


def _path(url: str) -> str:
    parts = urlsplit(url)
    return parts.path + (f"?{parts.query}" if parts.query else "")


def _pct(ratio: float) -> int:
    return int(round(ratio * 100))


def _tiered(ratio: float, pass_at: float, warn_at: float) -> CheckStatus:
    if ratio >= pass_at:
        return PASS
    if ratio >= warn_at:
        return WARN
    return FAIL


def _tiered_low(ratio: float, pass_below: float, warn_below: float) -> CheckStatus:
    """比率が小さいほど良い指標用。"""
    if ratio <= pass_below:
        return PASS
    if ratio <= warn_below:
        return WARN
    return FAIL


def _sample(urls: Iterable[str]) -> List[str]:
    return sorted(urls)[:MAX_EVIDENCE_URLS]


def _affected(entries: Iterable[Tuple[str, str]]) -> List[Dict[str, str]]:
    """ページごとの指摘を URL 順に並べて上限件数まで返す。"""
    return [{"url": url, "issue": issue} for url, issue in sorted(entries)][:MAX_EVIDENCE_URLS]


# ---------------------------------------------------------------------------
# crawl
# ---------------------------------------------------------------------------


def check_https_enforced(ctx: CheckContext) -> Outcome:
    https = ctx.aux.https_enforced
    return Outcome(
        status=PASS if https else FAIL,
        score=100 if https else 0,
        evidence={"https": https},
        fix="" if https else "SSL 証明書を設定し、すべての HTTP アクセスを HTTPS へリダイレクトしてください。",
    )


def check_robots_exists_and_allows(ctx: CheckContext) -> Outcome:
    robots_txt = ctx.aux.robots_txt
    if robots_txt is None:
        return Outcome(
            status=FAIL,
            score=0,
            evidence={"exists": False, "allows_crawl": True},
            fix="ドメイン直下に robots.txt を作成してください。",
        )
    allows = is_allowed("/", parse_robots_txt(robots_txt, "*").rules)
    return Outcome(
        status=PASS if allows else WARN,
        score=100 if allows else 50,
        evidence={"exists": True, "allows_crawl": allows},
        fix="" if allows else "robots.txt がサイト全体のクロールを禁止しています。Disallow 設定を見直してください。",
    )


def check_sitemap_exists(ctx: CheckContext) -> Outcome:
    exists = ctx.aux.sitemap_exists
    return Outcome(
        status=PASS if exists else WARN,
        score=100 if exists else 30,
        evidence={"exists": exists},
        fix="" if exists else "XML サイトマップを作成し、Google Search Console に送信してください。",
    )


def check_homepage_status_200(ctx: CheckContext) -> Outcome:
    status = ctx.homepage.status if ctx.homepage is not None else ctx.aux.homepage_status
    ok = status == 200
    return Outcome(
        status=PASS if ok else FAIL,
        score=100 if ok else 0,
        evidence={"status": status},
        fix="" if ok else f"トップページがステータス {status} を返しています。サーバー設定を修正してください。",
    )


def check_canonical_redirect_consistency(ctx: CheckContext) -> Outcome:
    # canonical が同じサイト内を指していれば一貫しているとみなす。パスの違いは見ない。
    root_host = hostname_of(ctx.aux.root_url)
    with_canonical = [page for page in ctx.pages if page.canonical]
    inconsistent = [
        page.url
        for page in with_canonical
        if not is_allowed_host(hostname_of(page.canonical), root_host, ctx.aux.allow_subdomains)
    ]
    homepage_mismatch = False
    if ctx.homepage is not None and ctx.homepage.canonical:
        homepage_mismatch = url_fingerprint(ctx.homepage.canonical) != url_fingerprint(ctx.homepage.url)

    if not with_canonical:
        ratio = 1.0
    else:
        ratio = (len(with_canonical) - len(inconsistent)) / len(with_canonical)
    score = _pct(ratio)
    status = _tiered(ratio, 0.9, 0.5)
    if homepage_mismatch and status is PASS:
        status = WARN
        score = min(score, 80)

    fix = ""
    if status is not PASS:
        fix = "canonical タグがページ自身またはサイトの正規ドメインを指すように修正してください。"
    return Outcome(
        status=status,
        score=score,
        evidence={
            "with_canonical": len(with_canonical),
            "offsite_canonicals": len(inconsistent),
            "homepage_canonical_mismatch": homepage_mismatch,
            "urls": _sample(inconsistent),
            "total": ctx.total,
        },
        fix=fix,
    )


def check_noindex_not_present_on_homepage(ctx: CheckContext) -> Outcome:
    homepage = ctx.homepage
    if homepage is None:
        return Outcome(
            status=WARN,
            score=50,
            evidence={"checked": False},
            fix="トップページを取得できなかったため noindex の有無を確認できませんでした。",
        )
    noindex = homepage.noindex
    return Outcome(
        status=FAIL if noindex else PASS,
        score=0 if noindex else 100,
        evidence={"checked": True, "noindex": noindex, "directives": list(homepage.robots_directives)},
        fix="トップページの meta robots から noindex を削除してください。" if noindex else "",
    )


# ---------------------------------------------------------------------------
# onpage
# ---------------------------------------------------------------------------


def check_title_present(ctx: CheckContext) -> Outcome:
    missing_pages = [page.url for page in ctx.pages if not page.title]
    missing = len(missing_pages)
    present = ctx.total - missing
    ratio = ctx.ratio(present)
    return Outcome(
        status=_tiered(ratio, 0.9, 0.7),
        score=_pct(ratio),
        evidence={
            "with_title": present,
            "missing_title": missing,
            "total": ctx.total,
            "affected_pages": _affected((url, "title タグがありません") for url in missing_pages),
        },
        fix=f"{missing} ページで title タグがありません。" if ratio < 0.9 else "",
    )


def check_meta_description_present(ctx: CheckContext) -> Outcome:
    missing_pages = [page.url for page in ctx.pages if not page.meta_description]
    missing = len(missing_pages)
    present = ctx.total - missing
    ratio = ctx.ratio(present)
    return Outcome(
        status=_tiered(ratio, 0.8, 0.5),
        score=_pct(ratio),
        evidence={
            "with_meta": present,
            "missing_meta": missing,
            "total": ctx.total,
            "affected_pages": _affected((url, "meta description がありません") for url in missing_pages),
        },
        fix=f"{missing} ページで meta description がありません。" if ratio < 0.8 else "",
    )


def check_h1_present(ctx: CheckContext) -> Outcome:
    missing_pages = [page.url for page in ctx.pages if not page.h1]
    missing = len(missing_pages)
    present = ctx.total - missing
    ratio = ctx.ratio(present)
    return Outcome(
        status=_tiered(ratio, 0.9, 0.7),
        score=_pct(ratio),
        evidence={
            "with_h1": present,
            "missing_h1": missing,
            "total": ctx.total,
            "affected_pages": _affected((url, "H1 がありません") for url in missing_pages),
        },
        fix=f"{missing} ページで H1 がありません。" if ratio < 0.9 else "",
    )


def _heading_issue(page: PageRecord) -> Optional[str]:
    problems = []
    h1_count = page.headings.get("h1", 0)
    if h1_count != 1:
        problems.append(f"H1 が {h1_count} 個あります")
    if page.headings.get("h2", 0) < 1:
        problems.append("H2 がありません")
    return "、".join(problems) or None


def check_heading_hierarchy_reasonable(ctx: CheckContext) -> Outcome:
    issues = [(page.url, _heading_issue(page)) for page in ctx.pages]
    affected = [(url, issue) for url, issue in issues if issue is not None]
    good = ctx.total - len(affected)
    ratio = ctx.ratio(good)
    return Outcome(
        status=_tiered(ratio, 0.7, 0.4),
        score=_pct(ratio),
        evidence={"good_hierarchy": good, "total": ctx.total, "affected_pages": _affected(affected)},
        fix="H1 は 1 ページに 1 つだけにし、本文は H2〜H6 で構造化してください。" if ratio < 0.7 else "",
    )


def check_duplicate_titles_across_sample(ctx: CheckContext) -> Outcome:
    by_title: Dict[str, List[str]] = defaultdict(list)
    for page in ctx.pages:
        if page.title:
            by_title[page.title].append(page.url)

    titled = sum(len(urls) for urls in by_title.values())
    duplicated = {title: sorted(urls) for title, urls in by_title.items() if len(urls) > 1}
    ratio = (titled - len(by_title)) / titled if titled else 0.0

    duplicates = [
        {"title": title, "count": len(urls), "urls": urls[:MAX_EVIDENCE_URLS]}
        for title, urls in sorted(duplicated.items())
    ]
    affected = _affected(
        (url, f"タイトル「{title}」が {len(urls)} ページで重複しています")
        for title, urls in duplicated.items()
        for url in urls
    )
    status = _tiered_low(ratio, 0.1, 0.2)
    return Outcome(
        status=status,
        score=_pct(1 - ratio),
        evidence={
            "duplicate_ratio": round(ratio, 3),
            "duplicate_groups": len(duplicates),
            "duplicates": duplicates,
            "affected_pages": affected,
            "total": titled,
        },
        fix="ページごとに固有で内容を表すタイトルを付けてください。" if status is not PASS else "",
    )


def check_thin_content_pages(ctx: CheckContext) -> Outcome:
    threshold = ctx.thin_content_words
    thin = [page.url for page in ctx.pages if 0 < page.word_count < threshold]
    ratio = ctx.ratio(len(thin))
    status = _tiered_low(ratio, 0.2, 0.4)
    return Outcome(
        status=status,
        score=_pct(1 - ratio),
        evidence={"thin_pages": len(thin), "threshold": threshold, "total": ctx.total, "urls": _sample(thin)},
        fix="内容の薄いページに価値のある情報を追加するか、ページを統合してください。" if status is not PASS else "",
    )


# ---------------------------------------------------------------------------
# entity
# ---------------------------------------------------------------------------


def check_organization_schema_present(ctx: CheckContext) -> Outcome:
    pages = [page.url for page in ctx.pages if ORGANIZATION_TYPES.intersection(page.schema_types)]
    found = bool(pages)
    return Outcome(
        status=PASS if found else FAIL,
        score=100 if found else 0,
        evidence={"has_org_schema": found, "pages_with_org_schema": len(pages)},
        fix="" if found else "トップページに Organization または LocalBusiness の JSON-LD を追加してください。",
    )


def check_schema_has_same_as(ctx: CheckContext) -> Outcome:
    has_schema = any(page.has_schema for page in ctx.pages)
    has_same_as = any(page.schema_has_same_as for page in ctx.pages)
    if has_same_as:
        status, score, fix = PASS, 100, ""
    elif has_schema:
        status, score, fix = WARN, 70, "Organization スキーマに SNS などのプロフィール URL を sameAs として追加してください。"
    else:
        status, score, fix = WARN, 30, "sameAs を含む構造化データを追加してください。"
    return Outcome(
        status=status,
        score=score,
        evidence={"has_schema": has_schema, "has_same_as": has_same_as},
        fix=fix,
    )


def check_about_page_exists(ctx: CheckContext) -> Outcome:
    exists = ctx.aux.about_exists
    return Outcome(
        status=PASS if exists else WARN,
        score=100 if exists else 40,
        evidence={"exists": exists},
        fix="" if exists else "会社概要・チーム・ミッションを説明する About ページを作成してください。",
    )


def check_contact_page_exists(ctx: CheckContext) -> Outcome:
    exists = ctx.aux.contact_exists
    return Outcome(
        status=PASS if exists else WARN,
        score=100 if exists else 40,
        evidence={"exists": exists},
        fix="" if exists else "住所・電話番号・メールアドレスを記載した Contact ページを作成してください。",
    )


def check_policies_present(ctx: CheckContext) -> Outcome:
    candidates = set()
    for page in ctx.pages:
        candidates.add(page.url)
        candidates.update(page.links)
    paths = [_path(url) for url in candidates]
    privacy = any(PRIVACY_PATTERN.search(path) for path in paths)
    terms = any(TERMS_PATTERN.search(path) for path in paths)
    if privacy and terms:
        status, score, fix = PASS, 100, ""
    elif privacy or terms:
        missing = "利用規約" if privacy else "プライバシーポリシー"
        status, score, fix = WARN, 60, f"{missing}のページを作成し、フッターからリンクしてください。"
    else:
        status, score, fix = WARN, 30, "/privacy と /terms のページを用意し、フッターからリンクしてください。"
    return Outcome(status=status, score=score, evidence={"privacy": privacy, "terms": terms}, fix=fix)


# ---------------------------------------------------------------------------
# ai_readiness
# ---------------------------------------------------------------------------


def check_llms_txt_present(ctx: CheckContext) -> Outcome:
    exists = ctx.aux.llms_txt is not None
    return Outcome(
        status=PASS if exists else FAIL,
        score=100 if exists else 0,
        evidence={"exists": exists},
        fix="" if exists else "ドメイン直下に、ブランドの要点をまとめた llms.txt を作成してください。",
    )


def check_llms_txt_has_canonical_sources(ctx: CheckContext) -> Outcome:
    llms_txt = ctx.aux.llms_txt
    lines = [line for line in (llms_txt or "").splitlines() if line.strip()]
    urls = re.findall(r"https?://\S+", llms_txt or "")
    rich = len(lines) >= 3
    if rich:
        status, score = PASS, 100
    elif llms_txt is not None:
        status, score = WARN, 50
    else:
        status, score = FAIL, 0
    return Outcome(
        status=status,
        score=score,
        evidence={"exists": llms_txt is not None, "non_empty_lines": len(lines), "urls": len(urls), "has_content": rich},
        fix="" if rich else "llms.txt に重要な URL を 3 件以上記載してください。",
    )


def check_pricing_or_plans_page_exists(ctx: CheckContext) -> Outcome:
    required = (ctx.business_type or "").strip().lower() in PRICING_REQUIRED_TYPES
    urls = [page.url for page in ctx.pages if PRICING_PATTERN.search(_path(page.url))]
    if urls:
        status, score = PASS, 100
    elif required:
        status, score = FAIL, 20
    else:
        status, score = WARN, 60
    return Outcome(
        status=status,
        score=score,
        evidence={"found": len(urls), "required": required, "urls": _sample(urls)},
        fix="" if urls else "料金・プラン・製品の専用ページを作成してください。",
    )


def check_faq_or_qna_page_exists(ctx: CheckContext) -> Outcome:
    urls = [
        page.url
        for page in ctx.pages
        if FAQ_PATTERN.search(_path(page.url)) or FAQ_TYPES.intersection(page.schema_types)
    ]
    found = bool(urls)
    return Outcome(
        status=PASS if found else WARN,
        score=100 if found else 40,
        evidence={"found": len(urls), "urls": _sample(urls)},
        fix="" if found else "FAQPage スキーマ付きの FAQ ページを作成してください。",
    )


def check_content_freshness(ctx: CheckContext) -> Outcome:
    six_months_ago = ctx.aux.as_of - timedelta(days=180)
    twelve_months_ago = ctx.aux.as_of - timedelta(days=365)
    dated = [page.last_modified for page in ctx.pages if page.last_modified is not None]
    fresh = sum(1 for value in dated if value >= six_months_ago)
    recent = sum(1 for value in dated if value >= twelve_months_ago)

    if not dated:
        status, score = WARN, 40
        fix = "meta タグ（article:modified_time）や HTTP ヘッダーでページの更新日時を示してください。"
    else:
        fresh_ratio = fresh / len(dated)
        recent_ratio = recent / len(dated)
        if fresh_ratio >= 0.5:
            status, score, fix = PASS, 100, ""
        elif recent_ratio >= 0.5:
            status, score = WARN, 70
            fix = f"直近 6 か月に更新されたページは {_pct(fresh_ratio)}% のみです。古いコンテンツの更新を検討してください。"
        else:
            status, score = FAIL, 30
            fix = "ほとんどのコンテンツが 1 年以上更新されていません。主要ページを定期的に更新してください。"
    return Outcome(
        status=status,
        score=score,
        evidence={
            "pages_with_dates": len(dated),
            "fresh_last_6mo": fresh,
            "recent_last_12mo": recent,
            "total_pages": ctx.total,
        },
        fix=fix,
    )


# ---------------------------------------------------------------------------
# offsite
# ---------------------------------------------------------------------------


def check_social_profiles_linked_from_site(ctx: CheckContext) -> Outcome:
    platforms = sorted({_platform(hostname_of(link)) for page in ctx.pages for link in page.social_links})
    found = bool(platforms)
    return Outcome(
        status=PASS if found else WARN,
        score=100 if found else 40,
        evidence={"has_social_links": found, "platforms": platforms},
        fix="" if found else "サイトのフッターに SNS プロフィールへのリンクを追加してください。",
    )


def _platform(host: str) -> str:
    parts = host.split(".")
    return ".".join(parts[-2:]) if len(parts) >= 2 else host


def check_brand_name_present_in_title_or_h1(ctx: CheckContext) -> Outcome:
    brand = ctx.aux.brand_name
    homepage = ctx.homepage
    if not brand:
        return Outcome(status=PASS, score=100, evidence={"brand": None, "in_title": None, "in_h1": None})
    needle = brand.lower()
    in_title = homepage is not None and needle in homepage.title.lower()
    in_h1 = homepage is not None and needle in homepage.h1.lower()
    present = in_title or in_h1
    return Outcome(
        status=PASS if present else WARN,
        score=100 if present else 50,
        evidence={"brand": brand, "in_title": in_title, "in_h1": in_h1},
        fix="" if present else f"トップページの title または H1 に「{brand}」を含めてください。",
    )


# ---------------------------------------------------------------------------
# performance
# ---------------------------------------------------------------------------


def check_large_images_detected(ctx: CheckContext) -> Outcome:
    average = sum(page.image_count for page in ctx.pages) / max(ctx.total, 1)
    if average < 20:
        status = PASS
    elif average < 40:
        status = WARN
    else:
        status = FAIL
    return Outcome(
        status=status,
        score=max(0, 100 - int(round(average * 2))),
        evidence={"avg_images_per_page": round(average, 1), "total": ctx.total},
        fix="画像を最適化・圧縮し、WebP などの新しい形式を使ってください。" if average >= 20 else "",
    )


def check_render_blocking_assets_detected(ctx: CheckContext) -> Outcome:
    if not ctx.pages:
        return Outcome(
            status=WARN,
            score=70,
            evidence={"note": "ページが取得できなかったため手動での確認を推奨します"},
            fix="スクリプトに async/defer を付け、クリティカル CSS をインライン化してください。",
        )
    average = sum(page.render_blocking_count for page in ctx.pages) / ctx.total
    if average <= 2:
        status = PASS
    elif average <= 5:
        status = WARN
    else:
        status = FAIL
    return Outcome(
        status=status,
        score=max(0, 100 - int(round(average * 10))),
        evidence={"avg_blocking_assets_per_page": round(average, 1), "total": ctx.total},
        fix="スクリプトに async/defer を付け、クリティカル CSS をインライン化してください。" if status is not PASS else "",
    )


def check_pagespeed_mobile(ctx: CheckContext) -> Outcome:
    # PageSpeed Insights API は呼ばないため固定値
    return Outcome(
        status=WARN,
        score=60,
        evidence={"note": "詳細は PageSpeed Insights で計測してください"},
        fix="Google PageSpeed Insights を実行し、Core Web Vitals の指摘に対応してください。",
    )


DEFAULT_CATALOG: Tuple[CheckDefinition, ...] = (
    CheckDefinition("crawl", "https_enforced", HIGH, LOW,
                    "HTTPS は通信の安全性を担保し、検索エンジンの評価要素でもあります。"
                    "トップページが HTTPS で取得でき、http:// へのアクセスが HTTPS へリダイレクトされるかを確認します。",
                    check_https_enforced),
    CheckDefinition("crawl", "robots_exists_and_allows", HIGH, LOW,
                    "robots.txt は検索エンジンにクロールしてよいページを伝えます。", check_robots_exists_and_allows),
    CheckDefinition("crawl", "sitemap_exists", MEDIUM, LOW,
                    "XML サイトマップは検索エンジンが全ページを発見・インデックスする助けになります。", check_sitemap_exists),
    CheckDefinition("crawl", "homepage_status_200", HIGH, MEDIUM,
                    "トップページはユーザーと検索エンジンの双方からアクセスできる必要があります。", check_homepage_status_200),
    CheckDefinition("crawl", "canonical_redirect_consistency", MEDIUM, LOW,
                    "canonical タグは各ページの正しいバージョンを指している必要があります。",
                    check_canonical_redirect_consistency),
    CheckDefinition("crawl", "noindex_not_present_on_homepage", HIGH, LOW,
                    "トップページに noindex があると検索結果に表示されなくなります。", check_noindex_not_present_on_homepage),
    CheckDefinition("performance", "large_images_detected", MEDIUM, MEDIUM,
                    "大きい画像や最適化されていない画像が多いとページの表示が遅くなります。", check_large_images_detected),
    CheckDefinition("performance", "render_blocking_assets_detected", MEDIUM, HIGH,
                    "レンダリングをブロックする CSS や JS はページの表示を遅らせます。",
                    check_render_blocking_assets_detected),
    CheckDefinition("performance", "pagespeed_mobile", HIGH, HIGH,
                    "モバイルの表示速度は検索順位とユーザー体験に影響します。", check_pagespeed_mobile),
    CheckDefinition("onpage", "title_present", HIGH, LOW,
                    "ページタイトルは SEO と検索結果での見え方にとって重要です。", check_title_present),
    CheckDefinition("onpage", "meta_description_present", MEDIUM, LOW,
                    "meta description は検索結果からのクリック率を高めます。", check_meta_description_present),
    CheckDefinition("onpage", "h1_present", MEDIUM, LOW,
                    "H1 は検索エンジンにページの主題を伝えます。", check_h1_present),
    CheckDefinition("onpage", "heading_hierarchy_reasonable", LOW, LOW,
                    "適切な見出し構造は検索エンジンがコンテンツの構成を理解する助けになります。",
                    check_heading_hierarchy_reasonable),
    CheckDefinition("onpage", "duplicate_titles_across_sample", MEDIUM, MEDIUM,
                    "重複したタイトルは検索エンジンを混乱させ、順位を下げる原因になります。",
                    check_duplicate_titles_across_sample),
    CheckDefinition("onpage", "thin_content_pages", MEDIUM, HIGH,
                    "内容の乏しいページは検索エンジンから低品質と見なされることがあります。", check_thin_content_pages),
    CheckDefinition("entity", "organization_schema_present", HIGH, MEDIUM,
                    "Organization スキーマは AI がビジネスの実体を理解する助けになります。",
                    check_organization_schema_present),
    CheckDefinition("entity", "schema_has_sameAs", MEDIUM, LOW,
                    "スキーマの sameAs はブランドと SNS プロフィールや Wikipedia を結び付けます。", check_schema_has_same_as),
    CheckDefinition("entity", "about_page_exists", MEDIUM, MEDIUM,
                    "About ページは信頼性を示し、実体に関する情報を提供します。", check_about_page_exists),
    CheckDefinition("entity", "contact_page_exists", MEDIUM, LOW,
                    "Contact ページは信頼を築き、実在性の裏付けになります。", check_contact_page_exists),
    CheckDefinition("entity", "policies_present", LOW, MEDIUM,
                    "プライバシーポリシーと利用規約は正当性とコンプライアンスを示します。", check_policies_present),
    CheckDefinition("ai_readiness", "llms_txt_present", HIGH, MEDIUM,
                    "llms.txt は AI モデルがブランドを正しく理解し紹介する助けになります。", check_llms_txt_present),
    CheckDefinition("ai_readiness", "llms_txt_has_canonical_sources", HIGH, LOW,
                    "llms.txt には AI が正確な情報を参照できる主要 URL を含めるべきです。",
                    check_llms_txt_has_canonical_sources),
    CheckDefinition("ai_readiness", "pricing_or_plans_page_exists", MEDIUM, MEDIUM,
                    "明確な料金情報があると、AI が提供内容に関する質問に正確に答えられます。",
                    check_pricing_or_plans_page_exists),
    CheckDefinition("ai_readiness", "faq_or_qna_page_exists", HIGH, MEDIUM,
                    "FAQ ページは AI が正確な回答を引用する主要な情報源になります。", check_faq_or_qna_page_exists),
    CheckDefinition("ai_readiness", "content_freshness", HIGH, MEDIUM,
                    "生成 AI 検索は最近更新されたコンテンツを優先します。", check_content_freshness),
    CheckDefinition("offsite", "social_profiles_linked_from_site", LOW, LOW,
                    "SNS プロフィールへのリンクは各プラットフォームでのブランドの存在を裏付けます。",
                    check_social_profiles_linked_from_site),
    CheckDefinition("offsite", "brand_name_present_in_title_or_h1", MEDIUM, LOW,
                    "トップページの title や H1 にブランド名を含めるとブランド認知が強まります。",
                    check_brand_name_present_in_title_or_h1),
)


def find_homepage(pages: Sequence[PageRecord], root_url: str) -> Optional[PageRecord]:
    root = url_fingerprint(root_url)
    for page in pages:
        if url_fingerprint(page.url) == root:
            return page
    if not pages:
        return None
    # ルートが取得できていない場合は最も浅いページで代用する
    return min(pages, key=lambda page: (_path(page.url).count("/"), len(page.url), page.url))


class CheckEngine:
    def __init__(
        self,
        catalog: Sequence[CheckDefinition] = DEFAULT_CATALOG,
        *,
        thin_content_words: int = 250,
    ) -> None:
        self.catalog = tuple(catalog)
        self.thin_content_words = thin_content_words

    def evaluate(
        self,
        pages: Iterable[PageRecord],
        aux: AuxSignals,
        business_type: Optional[str] = None,
    ) -> List[CheckResult]:
        ordered = tuple(sorted(pages, key=lambda page: page.url))
        ctx = CheckContext(
            pages=ordered,
            homepage=find_homepage(ordered, aux.root_url),
            aux=aux,
            business_type=business_type,
            thin_content_words=self.thin_content_words,
        )
        results: List[CheckResult] = []
        for definition in self.catalog:
            outcome = definition.evaluate(ctx)
            results.append(
                CheckResult(
                    module=definition.module,
                    key=definition.key,
                    status=outcome.status,
                    score=max(0, min(100, outcome.score)),
                    evidence=outcome.evidence,
                    why=definition.why,
                    fix=outcome.fix,
                    impact=definition.impact,
                    effort=definition.effort,
                )
            )
        return results
