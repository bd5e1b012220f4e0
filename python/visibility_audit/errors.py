from __future__ import annotations


class AuditError(Exception):
    """監査処理で発生するエラーの基底クラス。"""


class AuditConfigError(AuditError):
    """入力値や設定が不正なため監査を作成できない。"""


class AuditNotFoundError(AuditError):
    def __init__(self, audit_id: str) -> None:
        super().__init__(f"監査が見つかりません: {audit_id}")
        self.audit_id = audit_id


class CrawlStateNotFoundError(AuditError):
    def __init__(self, audit_id: str) -> None:
        super().__init__(f"クロール状態が見つかりません。再度 init してください: {audit_id}")
        self.audit_id = audit_id


class FetchError(AuditError):
    """HTTP 通信そのものに失敗した（タイムアウト、DNS、接続拒否など）。"""

    def __init__(self, url: str, reason: str, detail: str = "") -> None:
        message = f"{url} の取得に失敗しました ({reason})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.url = url
        self.reason = reason
