from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, List

from .models import Audit, CheckResult, PageRecord, ScoreReport

MODULE_LABELS = {
    "crawl": "クロール",
    "performance": "パフォーマンス",
    "onpage": "オンページ",
    "entity": "エンティティ",
    "ai_readiness": "AI 対応",
    "offsite": "オフサイト",
}

STATUS_LABELS = {"pass": "OK", "warn": "注意", "fail": "NG"}


def render_markdown(audit: Audit, report: ScoreReport) -> str:
    lines = [
        f"# サイト可視性監査レポート: {audit.domain}",
        "",
        f"- 総合スコア: {report.overall_score:.1f}",
        f"- 取得ページ数: {report.pages_crawled}",
        f"- クロール完了: {'はい' if report.crawl_done else 'いいえ（途中結果）'}",
        "",
        "## モジュール別スコア",
        "",
        "| モジュール | スコア |",
        "| --- | ---: |",
    ]
    for module, score in report.module_scores.items():
        lines.append(f"| {MODULE_LABELS.get(module, module)} | {score:.1f} |")

    lines.extend(["", "## 優先して対応すべき項目", ""])
    if report.top_fixes:
        for index, check in enumerate(report.top_fixes, start=1):
            lines.append(f"{index}. **{check.key}** ({check.impact.value} / {check.effort.value}): {check.fix}")
    else:
        lines.append("(対応が必要な項目はありません)")

    lines.extend(["", "## チェック一覧", ""])
    lines.extend(_render_checks(report.checks))
    return "\n".join(lines) + "\n"


def _render_checks(checks: Iterable[CheckResult]) -> List[str]:
    lines: List[str] = []
    for check in checks:
        status = STATUS_LABELS.get(check.status.value, check.status.value)
        lines.append(f"- [{status}] {MODULE_LABELS.get(check.module, check.module)} / {check.key}: {check.score}")
    return lines


def export_markdown(audit: Audit, report: ScoreReport, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_markdown(audit, report), encoding="utf-8")


def export_pages_csv(pages: Iterable[PageRecord], path: Path) -> None:
    fieldnames = [
        "url",
        "status",
        "title",
        "h1",
        "meta_description",
        "word_count",
        "image_count",
        "images_with_alt",
        "schema_types",
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as fp:
        writer = csv.DictWriter(fp, fieldnames=fieldnames)
        writer.writeheader()
        for page in pages:
            writer.writerow(
                {
                    "url": page.url,
                    "status": page.status,
                    "title": page.title,
                    "h1": page.h1,
                    "meta_description": page.meta_description,
                    "word_count": page.word_count,
                    "image_count": page.image_count,
                    "images_with_alt": page.images_with_alt,
                    "schema_types": " ".join(page.schema_types),
                }
            )
