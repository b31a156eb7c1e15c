"""
CLI メインモジュール

contract-cli コマンドのエントリーポイント。
"""

import logging
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from contract_dataset.core import (
    ConfigError,
    InputError,
    get_connection,
    get_db_stats,
    init_db,
    read_address_list,
    read_dataset,
    read_metadata_csv,
    require_api_key,
    settings,
    summarize_dataset,
)
from contract_dataset.core.database import create_schema
from contract_dataset.ingest import (
    EtherscanClient,
    FetchResult,
    ImportPipeline,
    ImportResult,
    RateLimiter,
    run_fetch,
    run_fetch_to_db,
)

console = Console()


def setup_logging(level: str = "INFO") -> None:
    """ログ設定"""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def build_client(api_key: str | None) -> EtherscanClient:
    """設定からEtherscanクライアントを生成"""
    key = require_api_key(api_key)
    return EtherscanClient(
        api_key=key,
        base_url=settings.etherscan_api_url,
        timeout=settings.etherscan_request_timeout,
        max_retries=settings.etherscan_max_retries,
        rate_limiter=RateLimiter.per_second(settings.etherscan_requests_per_second),
        resolve_proxies=settings.resolve_proxies,
    )


@contextmanager
def progress_reporter(description: str) -> Generator:
    """
    パイプラインに渡す進捗コールバックを生成

    タスクは開始通知（現在位置 0）の時点で作成し、最初のアドレスの取得中からバーを表示する。
    """
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TextColumn("[dim]{task.fields[current]}"),
        console=console,
    ) as progress:
        task_id = None

        def on_progress(index: int, total: int, current: str) -> None:
            nonlocal task_id
            if task_id is None:
                task_id = progress.add_task(description, total=total, current="")
            progress.update(task_id, completed=index, current=current)

        yield on_progress


@contextmanager
def stop_on_interrupt() -> Generator[threading.Event, None, None]:
    """Ctrl-C を次のアドレスの手前での停止要求に変換"""
    stop_event = threading.Event()

    def handler(signum, frame):
        if stop_event.is_set():
            raise KeyboardInterrupt
        console.print("[yellow]停止要求を受け付けました（現在のアドレス処理後に停止します）[/yellow]")
        stop_event.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield stop_event
    finally:
        signal.signal(signal.SIGINT, previous)


def print_fetch_result(result: FetchResult, title: str = "取得結果") -> None:
    """取得結果を表示"""
    table = Table(title=title)
    table.add_column("項目", style="cyan")
    table.add_column("件数", justify="right")

    table.add_row("対象", str(result.attempted))
    table.add_row("[green]取得[/green]", str(result.fetched))
    table.add_row("[red]失敗[/red]", str(result.failed))
    for kind, count in sorted(result.failures_by_kind.items()):
        table.add_row(f"  {kind}", str(count))
    table.add_row("書き出し", str(result.written))
    if result.duplicates:
        table.add_row("[dim]重複スキップ[/dim]", str(result.duplicates))

    if result.import_result is not None:
        table.add_section()
        table.add_row("[green]新規[/green]", str(result.import_result.inserted))
        table.add_row("[yellow]更新[/yellow]", str(result.import_result.updated))
        table.add_row("[red]保存失敗[/red]", str(result.import_result.failed))

    console.print(table)

    if result.stopped:
        console.print(f"[yellow]⚠ 中断しました ({result.attempted}/{result.total}件処理済み)[/yellow]")


def print_import_result(result: ImportResult) -> None:
    """インポート結果を表示"""
    table = Table(title="インポート結果")
    table.add_column("バッチ", justify="right", style="cyan")
    table.add_column("件数", justify="right")
    table.add_column("新規", justify="right", style="green")
    table.add_column("更新", justify="right", style="yellow")
    table.add_column("状態")

    for batch in result.batches:
        if batch.ok:
            table.add_row(
                str(batch.index),
                str(batch.size),
                str(batch.stats.inserted),
                str(batch.stats.updated),
                "[green]✓[/green]",
            )
        else:
            table.add_row(str(batch.index), str(batch.size), "-", "-", f"[red]✗ {batch.error}[/red]")

    table.add_section()
    table.add_row(
        "[bold]合計[/bold]",
        str(result.attempted),
        str(result.inserted),
        str(result.updated),
        f"失敗: {result.failed}",
    )
    console.print(table)


@click.group()
@click.option("--debug", is_flag=True, help="デバッグモードを有効化")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Etherscan コントラクトデータセット CLI"""
    ctx.ensure_object(dict)
    log_level = "DEBUG" if debug else settings.log_level
    setup_logging(log_level)


# =============================================================================
# db コマンドグループ
# =============================================================================


@cli.group()
def db() -> None:
    """データベース管理"""
    pass


@db.command("init")
@click.option("--database-url", default=None, help="データベースURL（環境変数 DATABASE_URL も可）")
def db_init(database_url: str | None) -> None:
    """データベースを初期化"""
    try:
        init_db(database_url)
        console.print("[green]✓[/green] データベースを初期化しました")
    except ConfigError as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


@db.command("stats")
@click.option("--database-url", default=None, help="データベースURL（環境変数 DATABASE_URL も可）")
def db_stats(database_url: str | None) -> None:
    """データベースの統計情報を表示"""
    try:
        stats = get_db_stats(database_url)
        table = Table(title="データベース統計")
        table.add_column("項目", style="cyan")
        table.add_column("件数", justify="right", style="green")

        table.add_row("contracts", str(stats["contracts"]))
        table.add_row("proxies", str(stats["proxies"]))
        for chain, chain_id, count in stats["by_chain"]:
            table.add_row(f"  {chain} ({chain_id})", str(count))

        console.print(table)
    except Exception as e:
        console.print(f"[red]エラー:[/red] {e}")
        console.print("[yellow]ヒント:[/yellow] `contract-cli db init` を実行してください")
        sys.exit(1)


# =============================================================================
# fetch コマンド
# =============================================================================


@cli.command()
@click.option("--input", "-i", "input_path", type=click.Path(path_type=Path),
              default="curated-addresses.txt", help="アドレスリスト")
@click.option("--output", "-o", "output_path", type=click.Path(path_type=Path),
              default="contracts.csv", help="出力CSVファイル")
@click.option("--api-key", "-a", default=None, help="Etherscan APIキー（環境変数 ETHERSCAN_API_KEY も可）")
def fetch(input_path: Path, output_path: Path, api_key: str | None) -> None:
    """Etherscanからコントラクトを取得してCSVに保存"""
    try:
        client = build_client(api_key)
        console.print(f"[dim]アドレスリスト: {input_path}[/dim]")

        with client, stop_on_interrupt() as stop_event, progress_reporter("取得中") as on_progress:
            result = run_fetch(
                input_path,
                output_path,
                client,
                on_progress=on_progress,
                stop_event=stop_event,
            )

        print_fetch_result(result)
        console.print(f"[green]✓[/green] {output_path} に保存しました ({result.written}件)")

    except (ConfigError, InputError) as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


@cli.command("fetch-to-db")
@click.option("--input", "-i", "input_path", type=click.Path(path_type=Path),
              default="curated-addresses.txt", help="アドレスリスト")
@click.option("--api-key", "-a", default=None, help="Etherscan APIキー（環境変数 ETHERSCAN_API_KEY も可）")
@click.option("--database-url", "-d", default=None, help="データベースURL（環境変数 DATABASE_URL も可）")
@click.option("--batch-size", "-b", type=click.IntRange(min=1), default=None, help="1トランザクションの件数")
def fetch_to_db(input_path: Path, api_key: str | None, database_url: str | None, batch_size: int | None) -> None:
    """CSVを介さずに取得結果を直接DBへ保存"""
    try:
        client = build_client(api_key)
        entries = read_address_list(input_path)
        _fetch_into_store(client, entries, database_url, batch_size)
    except (ConfigError, InputError) as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


@cli.command("fetch-from-metadata-csv")
@click.option("--input", "-i", "input_path", type=click.Path(path_type=Path),
              default="contracts-metadata.csv", help="メタデータCSV")
@click.option("--api-key", "-a", default=None, help="Etherscan APIキー（環境変数 ETHERSCAN_API_KEY も可）")
@click.option("--database-url", "-d", default=None, help="データベースURL（環境変数 DATABASE_URL も可）")
@click.option("--batch-size", "-b", type=click.IntRange(min=1), default=None, help="1トランザクションの件数")
def fetch_from_metadata_csv(
    input_path: Path,
    api_key: str | None,
    database_url: str | None,
    batch_size: int | None,
) -> None:
    """メタデータCSVのアドレスについてソース・ABIを取得してDBへ保存"""
    try:
        client = build_client(api_key)
        entries = read_metadata_csv(input_path)
        _fetch_into_store(client, entries, database_url, batch_size)
    except (ConfigError, InputError) as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


def _fetch_into_store(client, entries, database_url: str | None, batch_size: int | None) -> None:
    console.print(f"[dim]対象アドレス: {len(entries)}件[/dim]")
    with client, get_connection(database_url) as conn:
        create_schema(conn)
        with stop_on_interrupt() as stop_event, progress_reporter("取得中") as on_progress:
            result = run_fetch_to_db(
                entries,
                client,
                conn,
                batch_size=batch_size or settings.import_batch_size,
                on_progress=on_progress,
                stop_event=stop_event,
            )
    print_fetch_result(result)


# =============================================================================
# import コマンド
# =============================================================================


@cli.command("import")
@click.option("--input", "-i", "input_path", type=click.Path(path_type=Path),
              default="contracts.csv", help="入力CSVファイル")
@click.option("--database-url", "-d", default=None, help="データベースURL（環境変数 DATABASE_URL も可）")
@click.option("--batch-size", "-b", type=click.IntRange(min=1), default=None, help="1トランザクションの件数")
def import_cmd(input_path: Path, database_url: str | None, batch_size: int | None) -> None:
    """CSVのコントラクトをDBへインポート"""
    try:
        # DB接続より先にデータセットを読み込んで検証する
        console.print(f"[dim]データセット: {input_path}[/dim]")
        records = read_dataset(input_path)
        console.print(f"[dim]{len(records)}件のレコードを読み込みました[/dim]")

        with get_connection(database_url) as conn:
            create_schema(conn)
            with progress_reporter("インポート中") as on_progress:
                pipeline = ImportPipeline(
                    conn,
                    batch_size=batch_size or settings.import_batch_size,
                    on_progress=on_progress,
                )
                result = pipeline.import_records(records)

        print_import_result(result)

    except (ConfigError, InputError) as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)


# =============================================================================
# stats コマンド
# =============================================================================


@cli.command()
@click.option("--input", "-i", "input_path", type=click.Path(path_type=Path),
              default="contracts.csv", help="入力CSVファイル")
def stats(input_path: Path) -> None:
    """CSVデータセットの統計情報を表示"""
    try:
        records = read_dataset(input_path)
    except InputError as e:
        console.print(f"[red]エラー:[/red] {e}")
        sys.exit(1)

    summary = summarize_dataset(records)

    table = Table(title="コントラクト統計")
    table.add_column("項目", style="cyan")
    table.add_column("件数", justify="right", style="green")
    table.add_row("総数", str(summary.total))
    table.add_row("シンボルあり", str(summary.with_symbol))
    table.add_row("プロキシ", str(summary.proxies))
    table.add_row("プロトコルあり", str(summary.with_protocol))
    console.print(table)

    if summary.by_protocol:
        table = Table(title="プロトコル別")
        table.add_column("プロトコル", style="cyan")
        table.add_column("件数", justify="right")
        for protocol, count in summary.by_protocol:
            table.add_row(protocol, str(count))
        console.print(table)

    table = Table(title="チェーン別")
    table.add_column("チェーン", style="cyan")
    table.add_column("件数", justify="right")
    for chain_id, chain, count in summary.by_chain:
        table.add_row(f"{chain} ({chain_id})", str(count))
    console.print(table)


# =============================================================================
# エントリーポイント
# =============================================================================


def main() -> None:
    """CLIエントリーポイント"""
    cli()


if __name__ == "__main__":
    main()
