import os
import json
from typing import Any, Dict, List, Sequence
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# CLI çıktı modunu kontrol eden ortam değişkeni
# İzin verilen değerler: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LENDING_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _print_rows(title: str, columns: Sequence[str], rows: List[Dict[str, Any]], plain_line, empty: str) -> None:
    """Satırları mevcut çıktı moduna göre yazdır.
    - plain: her kayıt için tek satır
    - json: JSON dizisi
    - rich: Rich tablosu
    """
    if not rows:
        print(empty)
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for col in columns:
            table.add_column(col.replace("_", " ").title())
        for row in rows:
            table.add_row(*(str(row.get(col, "")) for col in columns))
        _console.print(table)
    else:
        for row in rows:
            print(plain_line(row))


def print_book_list(books: List[Any]) -> None:
    _print_rows(
        "📚 Books",
        ("id", "isbn", "title", "author", "stock", "rating"),
        [b.to_dict() for b in books],
        lambda r: f"[{r['id']}] {r['isbn']} - {r['title']} by {r['author']} (stock: {r['stock']}, rating: {r['rating']:.2f})",
        "No books in library.",
    )


def print_reservation_list(reservations: List[Any]) -> None:
    _print_rows(
        "🔖 Reservations",
        ("id", "book_id", "user_id", "status", "expires_at", "check_in_requested"),
        [r.to_dict() for r in reservations],
        lambda r: f"[{r['id']}] book={r['book_id']} user={r['user_id']} {r['status']} until {r['expires_at']}",
        "No reservations.",
    )


def print_borrow_list(borrows: List[Any]) -> None:
    _print_rows(
        "📖 Borrows",
        ("id", "book_id", "user_id", "status", "due_at", "return_requested"),
        [b.to_dict() for b in borrows],
        lambda r: f"[{r['id']}] book={r['book_id']} user={r['user_id']} {r['status']} due {r['due_at']}",
        "No borrows.",
    )


def print_stats_result(stats: Dict[str, Any]) -> None:
    """İstatistikleri mevcut çıktı moduna göre yazdır."""
    if not stats:
        print("No statistics available.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k.replace('_', ' ').title()}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').title()}: {value}")
