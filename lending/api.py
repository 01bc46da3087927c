import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Security
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from lending import database
from lending.access import ensure_staff
from lending.config import settings
from lending.desk import LendingDesk
from lending.errors import (
    AuthorizationError,
    ConflictError,
    DeliveryError,
    ExpiredError,
    LendingError,
    LimitExceededError,
    NotFoundError,
    StateError,
    UnavailableError,
    ValidationError,
)
from lending.models import Book, Role, User

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# İlk istekte ya da lifespan içinde oluşturulur; testler doğrudan değiştirir
desk: Optional[LendingDesk] = None


def get_desk() -> LendingDesk:
    global desk
    if desk is None:
        desk = LendingDesk()
    return desk


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_desk()
    logger.info("%s %s başlatıldı (veritabanı: %s)", settings.app_name, settings.app_version, database.DATABASE_FILE)
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- Hata eşlemesi ---
STATUS_CODES = {
    NotFoundError: 404,
    ValidationError: 400,
    ConflictError: 409,
    UnavailableError: 409,
    LimitExceededError: 409,
    AuthorizationError: 403,
    StateError: 409,
    ExpiredError: 410,
    DeliveryError: 502,
}


@app.exception_handler(LendingError)
async def lending_error_handler(request: Request, exc: LendingError):
    status_code = next((STATUS_CODES[cls] for cls in type(exc).__mro__ if cls in STATUS_CODES), 400)
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})


# --- Güvenlik ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """API anahtarını doğrulamak için bağımlılık."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def get_current_user(
    x_user_id: int = Header(..., alias="X-User-Id"),
    desk: LendingDesk = Depends(get_desk),
) -> User:
    """Kimliği dış kimlik doğrulama katmanı çözmüştür; burada yalnızca yüklenir."""
    user = desk.users.get_user(x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Your account is not active yet.")
    return user


def get_staff_user(user: User = Depends(get_current_user)) -> User:
    try:
        ensure_staff(user)
    except AuthorizationError:
        logger.warning("Personel olmayan kullanıcı %s personel uç noktasını çağırdı", user.id)
        raise
    return user


# --- Modeller ---
class BookModel(BaseModel):
    id: int
    title: str
    author: str
    isbn: str
    stock: int
    is_active: bool
    category: str = ""
    cover_url: str | None = None
    rating: float = 0.0
    rating_count: int = 0
    created_at: str | None = None


class BookCreateModel(BaseModel):
    title: str
    author: str
    isbn: str
    stock: int = Field(default=0, description="Rafta bulunan kopya sayısı")
    category: str = ""
    cover_url: str | None = None
    is_active: bool = True


class BookUpdateModel(BaseModel):
    title: str | None = None
    author: str | None = None
    isbn: str | None = None
    stock: int | None = None
    category: str | None = None
    cover_url: str | None = None
    is_active: bool | None = None


class UserModel(BaseModel):
    id: int
    username: str
    email: str
    role: str
    role_display: str
    is_active: bool
    created_at: str | None = None


class UserCreateModel(BaseModel):
    username: str
    email: str
    role: Role


class ReservationModel(BaseModel):
    id: int
    book_id: int
    user_id: int
    reserved_at: str
    expires_at: str
    status: str
    check_in_requested: bool
    check_in_requested_at: str | None = None
    checked_in_at: str | None = None


class ReservationCreateModel(BaseModel):
    book_id: int
    hold_hours: int | None = Field(default=None, description="Varsayılan: RESERVATION_HOLD_HOURS")


class CheckInModel(BaseModel):
    borrow_days: int | None = Field(default=None, description="Varsayılan: BORROW_DAYS")


class BorrowModel(BaseModel):
    id: int
    book_id: int
    user_id: int
    borrowed_at: str
    due_at: str
    status: str
    return_requested: bool
    return_requested_at: str | None = None
    returned_at: str | None = None
    approved_by: int | None = None
    return_accepted_by: int | None = None


class BorrowCreateModel(BaseModel):
    book_id: int
    user_id: int
    borrow_days: int | None = None


class RatingCreateModel(BaseModel):
    value: float


class RatingModel(BaseModel):
    book_id: int
    user_id: int
    value: float
    created_at: str | None = None
    updated_at: str | None = None


class StatsModel(BaseModel):
    total_books: int
    active_books: int
    total_stock: int
    unique_authors: int
    active_reservations: int
    active_borrows: int
    overdue_borrows: int


class SweepModel(BaseModel):
    expired_reservations: int
    overdue_borrows: int


class LoginModel(BaseModel):
    email: str
    password: str


class PasswordSetModel(BaseModel):
    email: str
    token: str
    password: str


class ForgotPasswordModel(BaseModel):
    email: str


def _book(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


def _user(user: User) -> UserModel:
    return UserModel(**user.to_dict())


def _days(days: Optional[int]) -> Optional[timedelta]:
    return None if days is None else timedelta(days=days)


# --- Sağlık Kontrolü ---
@app.get("/health")
def health(desk: LendingDesk = Depends(get_desk)):
    """Hafif sağlık uç noktası; hızlı bir veritabanı bağlantı denemesi yapar."""
    db_ok = True
    try:
        conn = database.get_db_connection()
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except sqlite3.Error:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Katalog ---
@app.get("/books", response_model=List[BookModel])
def list_books(
    q: Optional[str] = Query(None, description="Başlık, yazar, ISBN veya kategori araması"),
    category: Optional[str] = Query(None, description="Tam kategori eşleşmesi"),
    sort: str = Query("title", description="Sıralama: title|new|rating"),
    desk: LendingDesk = Depends(get_desk),
):
    return [_book(b) for b in desk.books.search_books(q, sort=sort, category=category)]


@app.get("/books/categories", response_model=List[str])
def list_categories(desk: LendingDesk = Depends(get_desk)):
    return desk.books.categories()


@app.get("/books/top", response_model=List[BookModel])
def top_rated_books(count: int = Query(10, ge=1, le=100), desk: LendingDesk = Depends(get_desk)):
    return [_book(b) for b in desk.books.top_rated(count)]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int, desk: LendingDesk = Depends(get_desk)):
    book = desk.books.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found.")
    return _book(book)


@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel, staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    book = desk.books.add_book(Book(**payload.model_dump()))
    return _book(book)


@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(
    book_id: int,
    payload: BookUpdateModel,
    staff: User = Depends(get_staff_user),
    desk: LendingDesk = Depends(get_desk),
):
    # Gönderilmeyen alanlar korunur; açıkça null gönderilen alan temizlenir
    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    return _book(desk.books.update_book(book_id, **fields))


@app.delete("/books/{book_id}/cover", response_model=BookModel, dependencies=[Depends(get_api_key)])
def remove_book_cover(book_id: int, staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    return _book(desk.books.remove_cover(book_id))


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: int, staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    if not desk.books.delete_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found.")
    return {"message": "Book removed."}


@app.get("/stats", response_model=StatsModel)
def get_stats(desk: LendingDesk = Depends(get_desk)):
    return StatsModel(**desk.statistics())


# --- Puanlama ---
@app.post("/books/{book_id}/rating", response_model=BookModel, dependencies=[Depends(get_api_key)])
def rate_book(
    book_id: int,
    payload: RatingCreateModel,
    user: User = Depends(get_current_user),
    desk: LendingDesk = Depends(get_desk),
):
    return _book(desk.ratings.rate(book_id, user.id, payload.value))


@app.get("/books/{book_id}/rating", response_model=RatingModel)
def get_my_rating(book_id: int, user: User = Depends(get_current_user), desk: LendingDesk = Depends(get_desk)):
    rating = desk.ratings.get_user_rating(book_id, user.id)
    if rating is None:
        raise HTTPException(status_code=404, detail="You have not rated this book.")
    return RatingModel(**rating.to_dict())


# --- Rezervasyonlar ---
@app.post("/reservations", response_model=ReservationModel, status_code=201, dependencies=[Depends(get_api_key)])
def reserve_book(
    payload: ReservationCreateModel,
    user: User = Depends(get_current_user),
    desk: LendingDesk = Depends(get_desk),
):
    hold = None if payload.hold_hours is None else timedelta(hours=payload.hold_hours)
    reservation = desk.reservations.reserve(payload.book_id, user.id, hold_duration=hold)
    return ReservationModel(**reservation.to_dict())


@app.get("/reservations/me", response_model=List[ReservationModel])
def my_reservations(
    active: bool = Query(False, description="Yalnızca aktif rezervasyonlar"),
    user: User = Depends(get_current_user),
    desk: LendingDesk = Depends(get_desk),
):
    if active:
        items = desk.reservations.list_active_for_user(user.id)
    else:
        items = desk.reservations.list_for_user(user.id)
    return [ReservationModel(**r.to_dict()) for r in items]


@app.get("/reservations", response_model=List[ReservationModel])
def active_reservations(staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    return [ReservationModel(**r.to_dict()) for r in desk.reservations.list_all_active()]


@app.get("/reservations/check-in-requests", response_model=List[ReservationModel])
def check_in_requests(staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    return [ReservationModel(**r.to_dict()) for r in desk.reservations.list_check_in_requests()]


@app.post("/reservations/{reservation_id}/check-in-request", response_model=ReservationModel,
          dependencies=[Depends(get_api_key)])
def request_check_in(reservation_id: int, user: User = Depends(get_current_user), desk: LendingDesk = Depends(get_desk)):
    return ReservationModel(**desk.reservations.request_check_in(reservation_id, user.id).to_dict())


@app.post("/reservations/{reservation_id}/check-in", response_model=BorrowModel, dependencies=[Depends(get_api_key)])
def accept_check_in(
    reservation_id: int,
    payload: Optional[CheckInModel] = None,
    staff: User = Depends(get_staff_user),
    desk: LendingDesk = Depends(get_desk),
):
    days = payload.borrow_days if payload else None
    borrow = desk.reservations.accept_check_in(reservation_id, staff.id, borrow_duration=_days(days))
    return BorrowModel(**borrow.to_dict())


@app.post("/reservations/{reservation_id}/cancel", response_model=ReservationModel, dependencies=[Depends(get_api_key)])
def cancel_reservation(reservation_id: int, user: User = Depends(get_current_user), desk: LendingDesk = Depends(get_desk)):
    return ReservationModel(**desk.reservations.cancel(reservation_id, user.id).to_dict())


# --- Ödünçler ---
@app.post("/borrows", response_model=BorrowModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_borrow(payload: BorrowCreateModel, staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    borrow = desk.borrows.create_borrow(
        payload.book_id, payload.user_id, staff.id, borrow_duration=_days(payload.borrow_days)
    )
    return BorrowModel(**borrow.to_dict())


@app.get("/borrows/me", response_model=List[BorrowModel])
def my_borrows(
    active: bool = Query(False, description="Yalnızca iade edilmemiş ödünçler"),
    user: User = Depends(get_current_user),
    desk: LendingDesk = Depends(get_desk),
):
    items = desk.borrows.list_active_for_user(user.id) if active else desk.borrows.list_for_user(user.id)
    return [BorrowModel(**b.to_dict()) for b in items]


@app.get("/borrows", response_model=List[BorrowModel])
def active_borrows(staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    return [BorrowModel(**b.to_dict()) for b in desk.borrows.list_all_active()]


@app.get("/borrows/return-requests", response_model=List[BorrowModel])
def return_requests(staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    return [BorrowModel(**b.to_dict()) for b in desk.borrows.list_return_requests()]


@app.post("/borrows/{borrow_id}/return-request", response_model=BorrowModel, dependencies=[Depends(get_api_key)])
def request_return(borrow_id: int, user: User = Depends(get_current_user), desk: LendingDesk = Depends(get_desk)):
    return BorrowModel(**desk.borrows.request_return(borrow_id, user.id).to_dict())


@app.post("/borrows/{borrow_id}/return", response_model=BorrowModel, dependencies=[Depends(get_api_key)])
def accept_return(borrow_id: int, staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    return BorrowModel(**desk.borrows.accept_return(borrow_id, staff.id).to_dict())


@app.post("/admin/sweep", response_model=SweepModel, dependencies=[Depends(get_api_key)])
def run_sweep(staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    return SweepModel(**desk.sweep())


# --- Kullanıcılar ---
@app.post("/users", response_model=UserModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_user(payload: UserCreateModel, creator: User = Depends(get_current_user), desk: LendingDesk = Depends(get_desk)):
    user = desk.users.create_user(creator.id, payload.username, payload.email, payload.role)
    return _user(user)


@app.get("/users", response_model=List[UserModel])
def list_users(staff: User = Depends(get_staff_user), desk: LendingDesk = Depends(get_desk)):
    return [_user(u) for u in desk.users.list_users()]


@app.get("/users/me", response_model=UserModel)
def who_am_i(user: User = Depends(get_current_user)):
    return _user(user)


@app.get("/users/me/creatable-roles")
def my_creatable_roles(user: User = Depends(get_current_user), desk: LendingDesk = Depends(get_desk)):
    return [{"role": r.value, "display_name": r.display_name} for r in desk.users.creatable_roles(user.role)]


# --- Hesap / şifre ---
@app.post("/account/login", response_model=UserModel, dependencies=[Depends(get_api_key)])
def login(payload: LoginModel, desk: LendingDesk = Depends(get_desk)):
    user = desk.users.authenticate(payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    return _user(user)


@app.post("/account/create-password", response_model=UserModel, dependencies=[Depends(get_api_key)])
def create_password(payload: PasswordSetModel, desk: LendingDesk = Depends(get_desk)):
    return _user(desk.users.create_password(payload.email, payload.token, payload.password))


@app.post("/account/forgot-password", dependencies=[Depends(get_api_key)])
def forgot_password(payload: ForgotPasswordModel, desk: LendingDesk = Depends(get_desk)):
    desk.users.request_password_reset(payload.email)
    return {"message": "Password reset link sent."}


@app.post("/account/reset-password", response_model=UserModel, dependencies=[Depends(get_api_key)])
def reset_password(payload: PasswordSetModel, desk: LendingDesk = Depends(get_desk)):
    return _user(desk.users.reset_password(payload.email, payload.token, payload.password))
