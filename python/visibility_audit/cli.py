from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import AuditConfig, InitRequest
from .errors import AuditError
from .models import BatchReport, ScoreReport
from .reporting import MODULE_LABELS, export_markdown, export_pages_csv
from .service import AuditService
from .storage import JsonAuditStore

app = typer.Typer(help="検索エンジンと AI 検索向けのサイト可視性監査ツール")
console = Console()


def load_config_from_path(path: Optional[Path]) -> dict:
    if path is None:
        return {}
    if not path.exists():
        raise typer.BadParameter(f"設定ファイルが見つかりません: {path}")
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise typer.BadParameter("設定ファイルの形式が不正です。")
    return data


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML形式の設定ファイル"),
    store_dir: Optional[Path] = typer.Option(None, "--store-dir", help="監査データの保存先の上書き"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="詳細ログを表示する"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    try:
        config = AuditConfig(**load_config_from_path(config_path))
    except ValueError as exc:
        raise typer.BadParameter(f"設定の読み込みに失敗しました: {exc}") from exc

    if store_dir is not None:
        config = config.model_copy(update={"storage": config.storage.model_copy(update={"directory": store_dir})})
    ctx.obj = config


def _service(ctx: typer.Context) -> AuditService:
    config: AuditConfig = ctx.obj
    return AuditService(JsonAuditStore(config.storage.directory), config)


def _build_request(
    domain: str,
    brand: Optional[str],
    business_type: Optional[str],
    limit: Optional[int],
    allow_subdomains: bool,
) -> InitRequest:
    try:
        return InitRequest(
            domain=domain,
            brand_name=brand,
            business_type=business_type,
            crawl_limit=limit,
            allow_subdomains=allow_subdomains,
        )
    except ValueError as exc:
        raise typer.BadParameter(f"入力値が不正です: {exc}") from exc


def _run(coro):
    try:
        return asyncio.run(coro)
    except AuditError as exc:
        console.print(f"[red]監査に失敗しました:[/] {exc}")
        raise typer.Exit(code=1) from exc


@app.command()
def init(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="監査対象のドメイン"),
    brand: Optional[str] = typer.Option(None, "--brand", help="ブランド名"),
    business_type: Optional[str] = typer.Option(None, "--business-type", help="業種 (saas, ecommerce など)"),
    limit: Optional[int] = typer.Option(None, "--limit", help="クロールするページ数の上限"),
    allow_subdomains: bool = typer.Option(False, "--allow-subdomains", help="サブドメインもクロール対象にする"),
) -> None:
    request = _build_request(domain, brand, business_type, limit, allow_subdomains)
    result = _run(_service(ctx).init_audit(request))
    console.print(f"監査ID: [bold]{result.audit_id}[/]")
    console.print(f"キュー: {result.queue_size} 件 / 上限: {result.crawl_limit} ページ / 状態: {result.status.value}")
    if result.error:
        console.print(f"[red]エラー:[/] {result.error}")
        raise typer.Exit(code=1)


@app.command("continue")
def continue_(
    ctx: typer.Context,
    audit_id: str = typer.Argument(..., help="監査ID"),
) -> None:
    report = _run(_service(ctx).continue_audit(audit_id))
    _print_batch(report)


@app.command()
def score(
    ctx: typer.Context,
    audit_id: str = typer.Argument(..., help="監査ID"),
    markdown: Optional[Path] = typer.Option(None, "--markdown", help="Markdown レポートの出力先"),
    pages_csv: Optional[Path] = typer.Option(None, "--pages-csv", help="ページ一覧 CSV の出力先"),
) -> None:
    service = _service(ctx)
    report = _run(service.score_audit(audit_id))
    _print_score(report)
    _export(service, audit_id, report, markdown, pages_csv)


@app.command()
def run(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="監査対象のドメイン"),
    brand: Optional[str] = typer.Option(None, "--brand", help="ブランド名"),
    business_type: Optional[str] = typer.Option(None, "--business-type", help="業種 (saas, ecommerce など)"),
    limit: Optional[int] = typer.Option(None, "--limit", help="クロールするページ数の上限"),
    allow_subdomains: bool = typer.Option(False, "--allow-subdomains", help="サブドメインもクロール対象にする"),
    markdown: Optional[Path] = typer.Option(None, "--markdown", help="Markdown レポートの出力先"),
    pages_csv: Optional[Path] = typer.Option(None, "--pages-csv", help="ページ一覧 CSV の出力先"),
) -> None:
    request = _build_request(domain, brand, business_type, limit, allow_subdomains)
    service = _service(ctx)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]クロール中...[/] {task.completed}/{task.total} ページ"),
        console=console,
        transient=True,
    )
    with progress:
        task_id = progress.add_task("crawl", total=None)

        def on_batch(batch: BatchReport) -> None:
            progress.update(task_id, completed=batch.crawled_count, total=batch.crawl_limit)

        report = _run(service.run_audit(request, on_batch=on_batch))

    _print_score(report)
    _export(service, report.audit_id, report, markdown, pages_csv)


def _export(
    service: AuditService,
    audit_id: str,
    report: ScoreReport,
    markdown: Optional[Path],
    pages_csv: Optional[Path],
) -> None:
    if markdown is not None:
        export_markdown(service.store.load_audit(audit_id), report, markdown)
        console.print(f"[green]レポートを出力しました: {markdown}[/]")
    if pages_csv is not None:
        export_pages_csv(service.store.load_pages(audit_id), pages_csv)
        console.print(f"[green]ページ一覧を出力しました: {pages_csv}[/]")


def _print_batch(report: BatchReport) -> None:
    table = Table(title="バッチ結果")
    table.add_column("項目")
    table.add_column("値", justify="right")
    table.add_row("取得済み", f"{report.crawled_count}/{report.crawl_limit}")
    table.add_row("キュー", str(report.queue_size))
    table.add_row("今回のページ", str(report.pages_this_batch))
    table.add_row("今回のスキップ", str(report.skipped_this_batch))
    table.add_row("完了", "はい" if report.done else "いいえ")
    console.print(table)
    if report.error:
        console.print(f"[red]エラー:[/] {report.error}")


def _print_score(report: ScoreReport) -> None:
    console.print(f"総合スコア: [bold]{report.overall_score:.1f}[/] （{report.pages_crawled} ページ）")

    modules = Table(title="モジュール別スコア")
    modules.add_column("モジュール")
    modules.add_column("スコア", justify="right")
    for module, value in report.module_scores.items():
        modules.add_row(MODULE_LABELS.get(module, module), f"{value:.1f}")
    console.print(modules)

    fixes = Table(title="優先対応項目")
    fixes.add_column("#", justify="right")
    fixes.add_column("チェック")
    fixes.add_column("影響/工数")
    fixes.add_column("対応内容")
    for index, check in enumerate(report.top_fixes, start=1):
        fixes.add_row(str(index), check.key, f"{check.impact.value}/{check.effort.value}", check.fix)
    console.print(fixes)


if __name__ == "__main__":
    app()
