from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import httpx

from .config import AuditConfig
from .errors import FetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status: int
    body: str
    content_type: str = ""
    last_modified: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_html(self) -> bool:
        return "html" in self.content_type.lower()


FetchOutcome = Union[FetchResult, FetchError, None]


class Fetcher:
    """タイムアウト付きの GET と、上限付き並列取得を提供する。

    ``async with Fetcher(config) as fetcher:`` の形で使う。
    """

    def __init__(
        self,
        config: AuditConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "Fetcher":
        headers = {"User-Agent": self._config.user_agent}
        self._client = httpx.AsyncClient(
            headers=headers,
            follow_redirects=True,
            timeout=self._config.request_timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> FetchResult:
        if self._client is None:
            raise RuntimeError("Fetcher は async with の中で使用してください。")

        timeout = self._config.request_timeout
        try:
            response = await asyncio.wait_for(self._client.get(url), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise FetchError(url, "timeout", str(exc)) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FetchError(url, "network", str(exc)) from exc

        return FetchResult(
            url=url,
            final_url=str(response.url),
            status=response.status_code,
            body=response.text,
            content_type=response.headers.get("content-type", ""),
            last_modified=response.headers.get("last-modified"),
        )

    async def fetch_all(
        self,
        urls: Sequence[str],
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> List[FetchOutcome]:
        """``urls`` と同じ並びで結果を返す。

        同時実行数は ``concurrency`` まで。``cancel`` がセットされた後は新しい取得を
        始めず、未着手の URL の結果は None になる。取り出しは先頭から順に行うので、
        None になるのは常に末尾側の連続した区間。
        """
        results: List[FetchOutcome] = [None] * len(urls)
        queue: asyncio.Queue[tuple[int, str]] = asyncio.Queue()
        for index, url in enumerate(urls):
            queue.put_nowait((index, url))

        async def worker() -> None:
            while True:
                if cancel is not None and cancel.is_set():
                    return
                try:
                    index, url = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    results[index] = await self.fetch(url)
                except FetchError as exc:
                    logger.warning("%s", exc)
                    results[index] = exc
                finally:
                    queue.task_done()

        worker_count = min(self._config.concurrency, len(urls))
        workers = [asyncio.create_task(worker()) for _ in range(worker_count)]
        if workers:
            await asyncio.gather(*workers)
        return results
