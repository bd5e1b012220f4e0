from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

MODULES = ("crawl", "performance", "onpage", "entity", "ai_readiness", "offsite")


class AuditStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CrawlStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class Level(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Audit(BaseModel):
    id: str
    domain: str
    brand_name: Optional[str] = None
    business_type: Optional[str] = None
    crawl_limit: int
    status: AuditStatus = AuditStatus.PENDING
    overall_score: Optional[float] = None
    module_scores: Dict[str, float] = Field(default_factory=dict)
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class RobotsRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    allow: bool


class SiteFiles(BaseModel):
    """init 時に一度だけ取得するサイト直下のファイル群。"""

    robots_txt: Optional[str] = None
    sitemap_exists: bool = False
    llms_txt: Optional[str] = None
    homepage_status: Optional[int] = None
    https_enforced: bool = False
    sitemaps: List[str] = Field(default_factory=list)


class CrawlState(BaseModel):
    """バッチ間で永続化されるクロール状態。

    同一監査に対して同時に走らせてよいバッチは一つだけ。呼び出し側が排他を保証する。
    """

    audit_id: str
    root_url: str
    frontier: List[str] = Field(default_factory=list)
    seen_hashes: List[str] = Field(default_factory=list)
    crawled_count: int = 0
    skipped_count: int = 0
    crawl_limit: int
    allow_subdomains: bool = False
    robots_rules: List[RobotsRule] = Field(default_factory=list)
    site_files: SiteFiles = Field(default_factory=SiteFiles)
    status: CrawlStatus = CrawlStatus.PENDING
    error: Optional[str] = None
    last_cursor: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.status in (CrawlStatus.DONE, CrawlStatus.ERROR)


class PageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    status: int
    title: str = ""
    h1: str = ""
    meta_description: str = ""
    canonical: str = ""
    robots_directives: List[str] = Field(default_factory=list)
    has_schema: bool = False
    schema_types: List[str] = Field(default_factory=list)
    schema_has_same_as: bool = False
    word_count: int = 0
    image_count: int = 0
    images_with_alt: int = 0
    headings: Dict[str, int] = Field(default_factory=dict)
    links: List[str] = Field(default_factory=list)
    social_links: List[str] = Field(default_factory=list)
    render_blocking_count: int = 0
    last_modified: Optional[datetime] = None

    @property
    def noindex(self) -> bool:
        return "noindex" in self.robots_directives or "none" in self.robots_directives


class CheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    module: str
    key: str
    status: CheckStatus
    score: int = Field(ge=0, le=100)
    evidence: Dict[str, Any] = Field(default_factory=dict)
    why: str
    fix: str = ""
    impact: Level
    effort: Level


class InitResult(BaseModel):
    audit_id: str
    queue_size: int
    crawl_limit: int
    status: CrawlStatus
    error: Optional[str] = None


class BatchReport(BaseModel):
    audit_id: str
    crawled_count: int
    crawl_limit: int
    queue_size: int
    pages_this_batch: int = 0
    skipped_this_batch: int = 0
    cancelled: bool = False
    done: bool
    error: Optional[str] = None


class ScoreReport(BaseModel):
    audit_id: str
    overall_score: float
    module_scores: Dict[str, float]
    top_fixes: List[CheckResult]
    checks: List[CheckResult]
    pages_crawled: int
    crawl_done: bool
