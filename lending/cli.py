import logging
import os
import subprocess
import sys
from typing import Optional

import typer

from lending.config import settings
from lending.desk import LendingDesk
from lending.errors import LendingError
from lending.seed import seed_demo_data
from lending.ui_helpers import (
    print_book_list,
    print_borrow_list,
    print_reservation_list,
    print_stats_result,
    set_output_mode,
)

logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = typer.Typer(help="Library lending CLI")

_state = {"db": None}


def _desk() -> LendingDesk:
    return LendingDesk(db_file=_state["db"])


def _fail(exc: Exception) -> None:
    print(f"Error: {exc}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Çıktı formatı: plain | json | rich (varsayılan: plain)"
    ),
    db: Optional[str] = typer.Option(None, "--db", help="Veritabanı dosyası (varsayılan: LENDING_DB_FILE)"),
):
    """CLI için genel seçenekler."""
    if output:
        set_output_mode(output)
    _state["db"] = db


@app.command("init-db")
def cli_init_db():
    """Veritabanını ve tabloları oluştur."""
    desk = _desk()
    print(f"Database ready: {desk.db_file}")


@app.command("seed")
def cli_seed():
    """İlk SystemAdmin hesabını ve demo kitapları ekle (tekrar çalıştırılabilir)."""
    created = seed_demo_data(_desk())
    print(f"Seeded {created['users']} user(s) and {created['books']} book(s).")


@app.command("sweep")
def cli_sweep():
    """Süresi dolan rezervasyonları ve gecikmiş ödünçleri işaretle."""
    try:
        result = _desk().sweep()
    except LendingError as exc:
        _fail(exc)
    print(f"Expired reservations: {result['expired_reservations']}")
    print(f"Overdue borrows: {result['overdue_borrows']}")


@app.command("books")
def cli_books(
    sort: str = typer.Option("title", "--sort", "-s", help="title | new | rating"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Başlık, yazar, ISBN veya kategori"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Yalnızca bu kategori"),
):
    """Kitapları listele ya da ara."""
    try:
        books = _desk().books.search_books(query, sort=sort, category=category)
    except LendingError as exc:
        _fail(exc)
    print_book_list(books)


@app.command("categories")
def cli_categories():
    """Katalogdaki kategorileri listele."""
    names = _desk().books.categories()
    if not names:
        print("No categories.")
    for name in names:
        print(name)


@app.command("top")
def cli_top(count: int = typer.Option(10, "--count", "-n", help="Gösterilecek kitap sayısı")):
    """En yüksek puanlı kitapları göster."""
    try:
        books = _desk().books.top_rated(count)
    except LendingError as exc:
        _fail(exc)
    print_book_list(books)


@app.command("stats")
def cli_stats():
    """Katalog ve ödünç istatistiklerini göster."""
    print_stats_result(_desk().statistics())


@app.command("reservations")
def cli_reservations(
    user: Optional[int] = typer.Option(None, "--user", "-u", help="Yalnızca bu kullanıcının rezervasyonları"),
    requests: bool = typer.Option(False, "--requests", help="Yalnızca teslim alma talepleri"),
):
    """Aktif rezervasyonları listele."""
    service = _desk().reservations
    if requests:
        items = service.list_check_in_requests()
    elif user is not None:
        items = service.list_for_user(user)
    else:
        items = service.list_all_active()
    print_reservation_list(items)


@app.command("borrows")
def cli_borrows(
    user: Optional[int] = typer.Option(None, "--user", "-u", help="Yalnızca bu kullanıcının ödünçleri"),
    requests: bool = typer.Option(False, "--requests", help="Yalnızca iade talepleri"),
):
    """İade edilmemiş ödünçleri listele."""
    service = _desk().borrows
    if requests:
        items = service.list_return_requests()
    elif user is not None:
        items = service.list_for_user(user)
    else:
        items = service.list_all_active()
    print_borrow_list(items)


@app.command("serve")
def cli_serve(
    reload: bool = typer.Option(False, "--reload", help="Kod değişikliklerinde yeniden yükle"),
):
    """Uvicorn ile HTTP API'yi başlat."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [sys.executable, "-m", "uvicorn", "lending.api:app", "--host", host, "--port", str(port)]
    if reload:
        args.append("--reload")
    env = dict(os.environ)
    if _state["db"]:
        env["LENDING_DB_FILE"] = _state["db"]
    completed = subprocess.run(args, env=env)
    if completed.returncode:
        raise typer.Exit(code=completed.returncode)


if __name__ == "__main__":
    app()
