from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx
from pydantic import ValidationError

from .checks import AuxSignals, CheckEngine
from .config import AuditConfig, InitRequest
from .crawler import CrawlStateMachine
from .errors import AuditConfigError, CrawlStateNotFoundError
from .fetcher import Fetcher
from .models import (
    Audit,
    AuditStatus,
    BatchReport,
    CrawlStatus,
    InitResult,
    ScoreReport,
)
from .scoring import Scorer
from .storage import AuditStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditService:
    """init / continue / score の 3 操作を提供する。

    どの操作も保存済みの状態だけを入力にするので、別プロセスから個別に呼び出せる。
    同じ監査の continue を並行して呼ばないこと。
    """

    def __init__(
        self,
        store: AuditStore,
        config: Optional[AuditConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        engine: Optional[CheckEngine] = None,
        scorer: Optional[Scorer] = None,
    ) -> None:
        self.store = store
        self.config = config or AuditConfig()
        self._transport = transport
        self.engine = engine or CheckEngine(thin_content_words=self.config.thin_content_words)
        self.scorer = scorer or Scorer()

    def _fetcher(self) -> Fetcher:
        return Fetcher(self.config, transport=self._transport)

    async def init_audit(self, request: InitRequest | dict) -> InitResult:
        if isinstance(request, dict):
            try:
                request = InitRequest(**request)
            except ValidationError as exc:
                raise AuditConfigError(f"監査の入力値が不正です: {exc}") from exc

        crawl_limit = self.config.effective_crawl_limit(request.crawl_limit)
        now = _utcnow()
        audit = Audit(
            id=uuid.uuid4().hex,
            domain=request.host,
            brand_name=request.brand_name,
            business_type=request.business_type,
            crawl_limit=crawl_limit,
            status=AuditStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.store.create_audit(audit)
        logger.info("監査を作成しました: %s (%s, 上限 %d ページ)", audit.id, audit.domain, crawl_limit)

        async with self._fetcher() as fetcher:
            machine = CrawlStateMachine(self.config, fetcher)
            state = await machine.initialize(
                audit.id,
                request.domain,
                crawl_limit=crawl_limit,
                allow_subdomains=request.allow_subdomains,
            )
        self.store.save_crawl_state(audit.id, state)

        if state.status is CrawlStatus.ERROR:
            self.store.update_audit(
                audit.id,
                status=AuditStatus.FAILED,
                error_message=state.error,
                updated_at=_utcnow(),
            )
        else:
            self.store.update_audit(audit.id, status=AuditStatus.RUNNING, updated_at=_utcnow())

        return InitResult(
            audit_id=audit.id,
            queue_size=len(state.frontier),
            crawl_limit=crawl_limit,
            status=state.status,
            error=state.error,
        )

    async def continue_audit(self, audit_id: str, *, cancel: Optional[asyncio.Event] = None) -> BatchReport:
        audit = self.store.load_audit(audit_id)
        state = self.store.load_crawl_state(audit_id)
        if state is None:
            message = str(CrawlStateNotFoundError(audit_id))
            self.store.update_audit(
                audit_id,
                status=AuditStatus.FAILED,
                error_message=message,
                updated_at=_utcnow(),
            )
            raise CrawlStateNotFoundError(audit_id)

        async with self._fetcher() as fetcher:
            machine = CrawlStateMachine(self.config, fetcher)
            result = await machine.advance(state, cancel=cancel)

        if result.pages:
            self.store.append_pages(audit.id, result.pages)
        if result.state is not state:
            self.store.save_crawl_state(audit.id, result.state)
        return result.report

    async def score_audit(self, audit_id: str, *, as_of: Optional[datetime] = None) -> ScoreReport:
        audit = self.store.load_audit(audit_id)
        state = self.store.load_crawl_state(audit_id)
        if state is None:
            raise CrawlStateNotFoundError(audit_id)

        if as_of is not None and as_of.tzinfo is None:
            as_of = as_of.replace(tzinfo=timezone.utc)

        pages = self.store.load_pages(audit_id)
        aux = AuxSignals.build(
            state.root_url,
            state.site_files,
            pages,
            brand_name=audit.brand_name,
            allow_subdomains=state.allow_subdomains,
            as_of=as_of,
        )
        checks = self.engine.evaluate(pages, aux, audit.business_type)
        scorecard = self.scorer.score(checks)
        self.store.append_checks(audit_id, checks)

        crawl_done = state.status is CrawlStatus.DONE
        changes = {
            "overall_score": scorecard.overall_score,
            "module_scores": scorecard.module_scores,
            "updated_at": _utcnow(),
        }
        if crawl_done:
            changes["status"] = AuditStatus.COMPLETED
            changes["completed_at"] = _utcnow()
        self.store.update_audit(audit_id, **changes)
        logger.info("スコア算出 %s: %.1f 点 (%d ページ)", audit_id, scorecard.overall_score, len(pages))

        return ScoreReport(
            audit_id=audit_id,
            overall_score=scorecard.overall_score,
            module_scores=scorecard.module_scores,
            top_fixes=scorecard.top_fixes,
            checks=checks,
            pages_crawled=len(pages),
            crawl_done=crawl_done,
        )

    async def run_audit(
        self,
        request: InitRequest | dict,
        *,
        on_batch: Optional[Callable[[BatchReport], None]] = None,
        as_of: Optional[datetime] = None,
    ) -> ScoreReport:
        init = await self.init_audit(request)
        if init.status is not CrawlStatus.ERROR:
            while True:
                report = await self.continue_audit(init.audit_id)
                if on_batch is not None:
                    on_batch(report)
                if report.done:
                    break
        return await self.score_audit(init.audit_id, as_of=as_of)
