from __future__ import annotations

import re
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

_HOST_PATTERN = re.compile(r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")


class StorageConfig(BaseModel):
    directory: Path = Field(default=Path("./reports/audits"))


class AuditConfig(BaseModel):
    user_agent: str = "VisibilityAuditBot/1.0"
    request_timeout: float = 10
    concurrency: int = 5
    batch_size: int = 15
    default_crawl_limit: int = 25
    max_crawl_limit: int = 500
    max_links_per_page: int = 100
    thin_content_words: int = 250
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("request_timeout")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("request_timeout は 0 より大きい値を指定してください。")
        return value

    @field_validator("concurrency", "batch_size", "default_crawl_limit", "max_crawl_limit")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("1 以上を指定してください。")
        return value

    def effective_crawl_limit(self, requested: Optional[int]) -> int:
        if requested is None:
            requested = self.default_crawl_limit
        return min(requested, self.max_crawl_limit)


def normalize_domain(domain: str) -> str:
    """入力されたドメインを ``https://<host>`` 形式にそろえる。"""
    value = domain.strip().lower()
    if "://" not in value:
        value = f"https://{value}"
    parts = urlsplit(value)
    if parts.scheme not in {"http", "https"}:
        raise ValueError(f"http(s) 以外のスキームは扱えません: {domain}")
    host = parts.hostname or ""
    if host.startswith("www."):
        host = host[4:]
    if not _HOST_PATTERN.match(host):
        raise ValueError(f"ドメインの形式が不正です: {domain}")
    return f"https://{host}"


class InitRequest(BaseModel):
    domain: str
    brand_name: Optional[str] = None
    business_type: Optional[str] = None
    crawl_limit: Optional[int] = None
    allow_subdomains: bool = False

    @field_validator("domain")
    @classmethod
    def _validate_domain(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("domain は必須です。")
        return normalize_domain(value)

    @field_validator("crawl_limit")
    @classmethod
    def _validate_crawl_limit(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("crawl_limit は 1 以上を指定してください。")
        return value

    @field_validator("brand_name", "business_type")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value.strip() if value else value

    @property
    def host(self) -> str:
        return urlsplit(self.domain).hostname or ""
