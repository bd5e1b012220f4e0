from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import AuditNotFoundError
from .models import Audit, CheckResult, CrawlState, PageRecord
from .urls import url_fingerprint


class AuditStore(ABC):
    """監査データの永続化層。

    ページは URL のフィンガープリント単位で上書き、チェック結果は監査単位で丸ごと置き換える。
    """

    @abstractmethod
    def create_audit(self, audit: Audit) -> None: ...

    @abstractmethod
    def load_audit(self, audit_id: str) -> Audit: ...

    @abstractmethod
    def update_audit(self, audit_id: str, **changes: Any) -> Audit: ...

    @abstractmethod
    def load_crawl_state(self, audit_id: str) -> Optional[CrawlState]: ...

    @abstractmethod
    def save_crawl_state(self, audit_id: str, state: CrawlState) -> None: ...

    @abstractmethod
    def append_pages(self, audit_id: str, pages: Iterable[PageRecord]) -> None: ...

    @abstractmethod
    def load_pages(self, audit_id: str) -> List[PageRecord]: ...

    @abstractmethod
    def append_checks(self, audit_id: str, checks: Iterable[CheckResult]) -> None: ...

    @abstractmethod
    def load_checks(self, audit_id: str) -> List[CheckResult]: ...


def _merge_pages(existing: Dict[str, PageRecord], pages: Iterable[PageRecord]) -> None:
    for page in pages:
        key = url_fingerprint(page.url) or page.url
        existing[key] = page


class MemoryAuditStore(AuditStore):
    def __init__(self) -> None:
        self._audits: Dict[str, Audit] = {}
        self._states: Dict[str, CrawlState] = {}
        self._pages: Dict[str, Dict[str, PageRecord]] = {}
        self._checks: Dict[str, List[CheckResult]] = {}

    def create_audit(self, audit: Audit) -> None:
        self._audits[audit.id] = audit
        self._pages.setdefault(audit.id, {})

    def load_audit(self, audit_id: str) -> Audit:
        try:
            return self._audits[audit_id]
        except KeyError:
            raise AuditNotFoundError(audit_id) from None

    def update_audit(self, audit_id: str, **changes: Any) -> Audit:
        audit = self.load_audit(audit_id).model_copy(update=changes)
        self._audits[audit_id] = audit
        return audit

    def load_crawl_state(self, audit_id: str) -> Optional[CrawlState]:
        return self._states.get(audit_id)

    def save_crawl_state(self, audit_id: str, state: CrawlState) -> None:
        self._states[audit_id] = state

    def append_pages(self, audit_id: str, pages: Iterable[PageRecord]) -> None:
        _merge_pages(self._pages.setdefault(audit_id, {}), pages)

    def load_pages(self, audit_id: str) -> List[PageRecord]:
        return list(self._pages.get(audit_id, {}).values())

    def append_checks(self, audit_id: str, checks: Iterable[CheckResult]) -> None:
        self._checks[audit_id] = list(checks)

    def load_checks(self, audit_id: str) -> List[CheckResult]:
        return list(self._checks.get(audit_id, []))


class JsonAuditStore(AuditStore):
    """監査ごとのディレクトリに JSON ファイルとして保存する。

    <directory>/<audit_id>/audit.json, crawl_state.json, pages.json, checks.json
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _audit_dir(self, audit_id: str) -> Path:
        return self.directory / audit_id

    def _read(self, path: Path) -> Any:
        with path.open("r", encoding="utf-8") as fp:
            return json.load(fp)

    def _write(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fp:
            json.dump(data, fp, ensure_ascii=False, indent=2)
        os.replace(tmp_path, path)

    def create_audit(self, audit: Audit) -> None:
        self._write(self._audit_dir(audit.id) / "audit.json", audit.model_dump(mode="json"))

    def load_audit(self, audit_id: str) -> Audit:
        path = self._audit_dir(audit_id) / "audit.json"
        if not path.exists():
            raise AuditNotFoundError(audit_id)
        return Audit.model_validate(self._read(path))

    def update_audit(self, audit_id: str, **changes: Any) -> Audit:
        audit = Audit.model_validate({**self.load_audit(audit_id).model_dump(), **changes})
        self._write(self._audit_dir(audit_id) / "audit.json", audit.model_dump(mode="json"))
        return audit

    def load_crawl_state(self, audit_id: str) -> Optional[CrawlState]:
        path = self._audit_dir(audit_id) / "crawl_state.json"
        if not path.exists():
            return None
        return CrawlState.model_validate(self._read(path))

    def save_crawl_state(self, audit_id: str, state: CrawlState) -> None:
        self._write(self._audit_dir(audit_id) / "crawl_state.json", state.model_dump(mode="json"))

    def append_pages(self, audit_id: str, pages: Iterable[PageRecord]) -> None:
        existing = {url_fingerprint(page.url) or page.url: page for page in self.load_pages(audit_id)}
        _merge_pages(existing, pages)
        self._write(
            self._audit_dir(audit_id) / "pages.json",
            [page.model_dump(mode="json") for page in existing.values()],
        )

    def load_pages(self, audit_id: str) -> List[PageRecord]:
        path = self._audit_dir(audit_id) / "pages.json"
        if not path.exists():
            return []
        return [PageRecord.model_validate(item) for item in self._read(path)]

    def append_checks(self, audit_id: str, checks: Iterable[CheckResult]) -> None:
        self._write(
            self._audit_dir(audit_id) / "checks.json",
            [check.model_dump(mode="json") for check in checks],
        )

    def load_checks(self, audit_id: str) -> List[CheckResult]:
        path = self._audit_dir(audit_id) / "checks.json"
        if not path.exists():
            return []
        return [CheckResult.model_validate(item) for item in self._read(path)]
