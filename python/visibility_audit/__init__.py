"""
Visibility Audit パッケージ。

サイトを一定ページ数だけクロールし、検索エンジンと AI 検索の両方から見た
発見されやすさをチェック・採点するモジュール群をまとめる。
"""

__all__ = [
    "config",
    "errors",
    "models",
    "urls",
    "robots",
    "fetcher",
    "parser",
    "crawler",
    "checks",
    "scoring",
    "storage",
    "service",
    "reporting",
    "cli",
]
