from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import httpx
import pytest

HTML = "text/html; charset=utf-8"
TEXT = "text/plain; charset=utf-8"


def html_page(
    *,
    title: Optional[str] = "Example",
    description: Optional[str] = "説明文",
    h1: Optional[str] = "見出し",
    body: str = "",
    head: str = "",
    links: Tuple[str, ...] = (),
) -> str:
    head_parts = [head]
    if title is not None:
        head_parts.append(f"<title>{title}</title>")
    if description is not None:
        head_parts.append(f'<meta name="description" content="{description}">')
    body_parts = []
    if h1 is not None:
        body_parts.append(f"<h1>{h1}</h1>")
    body_parts.append(body)
    body_parts.extend(f'<a href="{href}">{href}</a>' for href in links)
    return f"<html><head>{''.join(head_parts)}</head><body>{''.join(body_parts)}</body></html>"


class FakeSite:
    """example.com をメモリ上で再現する MockTransport。他のホストには固定の HTML を返す。

    http へのアクセスは ``plain_http`` が False の間 https へリダイレクトする。
    """

    def __init__(self, host: str = "example.com", *, plain_http: bool = False) -> None:
        self.host = host
        self.plain_http = plain_http
        self.routes: Dict[str, Tuple[int, str, Dict[str, str]]] = {}
        self.errors: Dict[str, type] = {}
        self.requested: List[str] = []

    def add(
        self,
        path: str,
        body: str,
        *,
        status: int = 200,
        content_type: str = HTML,
        headers: Optional[Dict[str, str]] = None,
    ) -> "FakeSite":
        merged = {"content-type": content_type}
        merged.update(headers or {})
        self.routes[path] = (status, body, merged)
        return self

    def fail(self, path: str, error: type = httpx.ConnectError) -> "FakeSite":
        self.errors[path] = error
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query.decode()}"
        self.requested.append(path)
        if request.url.host not in {self.host, f"www.{self.host}"}:
            return httpx.Response(200, text="<html><body>elsewhere</body></html>", headers={"content-type": HTML})
        if request.url.scheme == "http" and not self.plain_http:
            return httpx.Response(301, headers={"location": str(request.url.copy_with(scheme="https"))})
        if path in self.errors:
            raise self.errors[path]("simulated failure", request=request)
        if path not in self.routes:
            return httpx.Response(404, text="not found", headers={"content-type": TEXT})
        status, body, headers = self.routes[path]
        return httpx.Response(status, text=body, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()
