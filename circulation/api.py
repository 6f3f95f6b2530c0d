import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, Security
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from circulation import qr
from circulation.config import settings
from circulation.errors import CirculationError, ErrorKind
from circulation.ledger import loan_status
from circulation.library import Library
from circulation.models import BookStatus, MembershipType, MemberStatus, Role, Transaction

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 422,
    ErrorKind.MALFORMED_PAYLOAD: 422,
    ErrorKind.STORE_UNAVAILABLE: 503,
}


def status_for(kind: ErrorKind) -> int:
    """Rule refusals and conflicts are 409; see STATUS_BY_KIND for the rest."""
    return STATUS_BY_KIND.get(kind, 409)


# --- Models ---
class AuthorModel(BaseModel):
    id: str
    name: str


class AuthorCreateModel(BaseModel):
    name: str


class CategoryModel(BaseModel):
    id: str
    name: str
    description: Optional[str] = None


class CategoryCreateModel(BaseModel):
    name: str
    description: Optional[str] = None


class BookModel(BaseModel):
    id: str
    title: str
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    pages: Optional[int] = None
    language: str = "English"
    description: Optional[str] = None
    location: Optional[str] = None
    author_id: Optional[str] = None
    category_id: Optional[str] = None
    total_copies: int
    available_copies: int
    status: str
    created_at: Optional[str] = None
    author_name: Optional[str] = None
    category_name: Optional[str] = None


class BookCreateModel(BaseModel):
    title: str
    total_copies: int = Field(default=1, ge=0)
    isbn: Optional[str] = None
    author_id: Optional[str] = None
    category_id: Optional[str] = None
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    pages: Optional[int] = Field(default=None, ge=1)
    language: str = "English"
    description: Optional[str] = None
    location: Optional[str] = None


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    total_copies: Optional[int] = Field(default=None, ge=0)
    isbn: Optional[str] = None
    author_id: Optional[str] = None
    category_id: Optional[str] = None
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    pages: Optional[int] = Field(default=None, ge=1)
    language: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None


class BookStatusModel(BaseModel):
    status: BookStatus


class ProfileModel(BaseModel):
    id: str
    full_name: str
    email: str
    phone: Optional[str] = None
    role: str


class ProfileCreateModel(BaseModel):
    full_name: str
    email: str
    phone: Optional[str] = None
    role: Role = Role.MEMBER


class MemberModel(BaseModel):
    id: str
    membership_number: str
    membership_type: str
    status: str
    join_date: Optional[str] = None
    expiry_date: Optional[str] = None
    max_books_allowed: int
    current_books_issued: int
    fine_amount: str
    profile_id: Optional[str] = None
    profile: Optional[ProfileModel] = None


class MemberCreateModel(BaseModel):
    """Either point at an existing profile or give the details of a new one."""

    profile_id: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    membership_type: MembershipType = MembershipType.STANDARD
    max_books_allowed: Optional[int] = Field(default=None, ge=1)


class PaymentModel(BaseModel):
    amount: Decimal = Field(gt=0)


class TransactionModel(BaseModel):
    id: str
    transaction_type: str
    book_id: str
    member_id: str
    librarian_id: Optional[str] = None
    checkout_date: Optional[str] = None
    due_date: Optional[str] = None
    return_date: Optional[str] = None
    fine_amount: str
    notes: Optional[str] = None
    created_at: Optional[str] = None
    book_title: Optional[str] = None
    membership_number: Optional[str] = None
    member_name: Optional[str] = None
    status: str


class CheckoutModel(BaseModel):
    member_id: str
    book_id: str
    librarian_id: Optional[str] = None
    notes: Optional[str] = None


class ReservationCreateModel(BaseModel):
    member_id: str
    book_id: str
    notes: Optional[str] = None


class SummaryModel(BaseModel):
    total_books: int
    books_issued: int
    active_members: int
    total_fines: str
    overdue_books: int
    total_reservations: int
    circulation_rate: float
    overdue_rate: float
    books_per_member: float
    loans_per_member: float


class QRPayloadModel(BaseModel):
    payload: str


class ScanRequest(BaseModel):
    data: str


class ScanResultModel(BaseModel):
    kind: str
    id: Optional[str] = None
    label: str
    data: Dict[str, Any] = {}
    raw: str


# --- Helpers ---
def _txn(txn: Transaction) -> TransactionModel:
    return TransactionModel(**txn.to_dict(), status=loan_status(txn))


def _page(response: Response, items: List[Any], limit: Optional[int], offset: int) -> List[Any]:
    limit = min(limit or settings.default_page_size, settings.max_page_size)
    response.headers["X-Total-Count"] = str(len(items))
    return items[offset : offset + limit]


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_library(request: Request) -> Library:
    """The Library lives on app.state; it is opened lazily from settings when none was injected."""
    if getattr(request.app.state, "library", None) is None:
        request.app.state.library = Library.from_settings()
    return request.app.state.library


def get_api_key(request: Request, api_key: Optional[str] = Security(api_key_header)):
    """Dependency that validates the API key."""
    expected = get_library(request).settings.api_key
    if api_key and api_key == expected:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def create_app(library: Optional[Library] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            if app.state.library is not None:
                app.state.library.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)
    app.state.library = library

    @app.exception_handler(CirculationError)
    async def circulation_error_handler(request: Request, exc: CirculationError):
        status = status_for(exc.kind)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status, content=exc.to_dict())

    protected = [Depends(get_api_key)]

    # --- Health Check ---
    @app.get("/health")
    def health(lib: Library = Depends(get_library)):
        """Lightweight health endpoint that also probes the store."""
        store_ok = True
        total_books = 0
        try:
            total_books = len(lib.catalog.list_books())
        except CirculationError:
            store_ok = False
        return {
            "status": "healthy" if store_ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "store": type(lib.store).__name__,
            "store_ok": store_ok,
            "total_books": total_books,
        }

    # --- Catalog ---
    @app.get("/books", response_model=List[BookModel])
    def list_books(
        response: Response,
        q: Optional[str] = Query(None, description="Title, ISBN, publisher or author"),
        available_only: bool = Query(False),
        limit: Optional[int] = Query(None, ge=1),
        offset: int = Query(0, ge=0),
        lib: Library = Depends(get_library),
    ):
        books = lib.catalog.list_books(search=q, available_only=available_only)
        return [BookModel(**b.to_dict()) for b in _page(response, books, limit, offset)]

    @app.post("/books", response_model=BookModel, status_code=201, dependencies=protected)
    def add_book(payload: BookCreateModel, lib: Library = Depends(get_library)):
        data = payload.model_dump()
        title = data.pop("title")
        copies = data.pop("total_copies")
        book = lib.catalog.add_book(title, copies, **data)
        return BookModel(**book.to_dict())

    @app.get("/books/{book_id}", response_model=BookModel)
    def get_book(book_id: str, lib: Library = Depends(get_library)):
        return BookModel(**lib.catalog.get_book(book_id).to_dict())

    @app.put("/books/{book_id}", response_model=BookModel, dependencies=protected)
    def update_book(book_id: str, update: BookUpdateModel, lib: Library = Depends(get_library)):
        fields = update.model_dump(exclude_none=True)
        if not fields:
            raise HTTPException(status_code=400, detail="Provide at least one field to update.")
        return BookModel(**lib.catalog.update_book(book_id, **fields).to_dict())

    @app.put("/books/{book_id}/status", response_model=BookModel, dependencies=protected)
    def set_book_status(book_id: str, payload: BookStatusModel, lib: Library = Depends(get_library)):
        return BookModel(**lib.catalog.set_status(book_id, payload.status).to_dict())

    @app.delete("/books/{book_id}", dependencies=protected)
    def delete_book(book_id: str, lib: Library = Depends(get_library)):
        lib.catalog.remove_book(book_id)
        return {"message": "Book removed."}

    @app.get("/authors", response_model=List[AuthorModel])
    def list_authors(lib: Library = Depends(get_library)):
        return [AuthorModel(**a.to_dict()) for a in lib.catalog.list_authors()]

    @app.post("/authors", response_model=AuthorModel, status_code=201, dependencies=protected)
    def add_author(payload: AuthorCreateModel, lib: Library = Depends(get_library)):
        return AuthorModel(**lib.catalog.add_author(payload.name).to_dict())

    @app.get("/categories", response_model=List[CategoryModel])
    def list_categories(lib: Library = Depends(get_library)):
        return [CategoryModel(**c.to_dict()) for c in lib.catalog.list_categories()]

    @app.post("/categories", response_model=CategoryModel, status_code=201, dependencies=protected)
    def add_category(payload: CategoryCreateModel, lib: Library = Depends(get_library)):
        return CategoryModel(**lib.catalog.add_category(payload.name, payload.description).to_dict())

    # --- Profiles & members ---
    @app.post("/profiles", response_model=ProfileModel, status_code=201, dependencies=protected)
    def add_profile(payload: ProfileCreateModel, lib: Library = Depends(get_library)):
        profile = lib.members.add_profile(payload.full_name, payload.email, payload.phone, payload.role)
        return ProfileModel(**profile.to_dict())

    @app.get("/profiles/unassigned", response_model=List[ProfileModel])
    def unassigned_profiles(lib: Library = Depends(get_library)):
        return [ProfileModel(**p.to_dict()) for p in lib.members.unassigned_profiles()]

    @app.get("/members", response_model=List[MemberModel])
    def list_members(
        response: Response,
        q: Optional[str] = Query(None, description="Name, email or membership number"),
        status: Optional[MemberStatus] = Query(None),
        limit: Optional[int] = Query(None, ge=1),
        offset: int = Query(0, ge=0),
        lib: Library = Depends(get_library),
    ):
        members = lib.members.list_members(search=q, status=status.value if status else None)
        return [MemberModel(**m.to_dict()) for m in _page(response, members, limit, offset)]

    @app.post("/members", response_model=MemberModel, status_code=201, dependencies=protected)
    def add_member(payload: MemberCreateModel, lib: Library = Depends(get_library)):
        profile_id = payload.profile_id
        if not profile_id:
            if not payload.full_name or not payload.email:
                raise HTTPException(status_code=422, detail="Provide profile_id or full_name and email.")
            profile_id = lib.members.add_profile(payload.full_name, payload.email, payload.phone).id
        member = lib.members.register_member(profile_id, payload.membership_type, payload.max_books_allowed)
        return MemberModel(**member.to_dict())

    @app.get("/members/expiring", response_model=List[MemberModel])
    def expiring_members(lib: Library = Depends(get_library)):
        return [MemberModel(**m.to_dict()) for m in lib.members.expiring_soon()]

    @app.post("/members/expire", response_model=List[MemberModel], dependencies=protected)
    def expire_members(lib: Library = Depends(get_library)):
        return [MemberModel(**m.to_dict()) for m in lib.members.expire_lapsed()]

    @app.get("/members/{member_id}", response_model=MemberModel)
    def get_member(member_id: str, lib: Library = Depends(get_library)):
        return MemberModel(**lib.members.get(member_id).to_dict())

    @app.post("/members/{member_id}/suspend", response_model=MemberModel, dependencies=protected)
    def suspend_member(member_id: str, lib: Library = Depends(get_library)):
        return MemberModel(**lib.members.suspend(member_id).to_dict())

    @app.post("/members/{member_id}/activate", response_model=MemberModel, dependencies=protected)
    def activate_member(member_id: str, lib: Library = Depends(get_library)):
        return MemberModel(**lib.members.activate(member_id).to_dict())

    @app.post("/members/{member_id}/renew", response_model=MemberModel, dependencies=protected)
    def renew_membership(member_id: str, lib: Library = Depends(get_library)):
        return MemberModel(**lib.members.renew_membership(member_id).to_dict())

    @app.post("/members/{member_id}/pay", response_model=MemberModel, dependencies=protected)
    def pay_fine(member_id: str, payload: PaymentModel, lib: Library = Depends(get_library)):
        return MemberModel(**lib.desk.pay_fine(member_id, payload.amount).to_dict())

    # --- Circulation ---
    @app.get("/transactions", response_model=List[TransactionModel])
    def list_transactions(
        response: Response,
        q: Optional[str] = Query(None, description="Member name, title, membership number or ISBN"),
        type: Optional[str] = Query(None, description="checkout|return|renewal|reservation"),
        limit: Optional[int] = Query(None, ge=1),
        offset: int = Query(0, ge=0),
        lib: Library = Depends(get_library),
    ):
        if type and type not in ("checkout", "return", "renewal", "reservation"):
            raise HTTPException(status_code=400, detail="Invalid type. Allowed: checkout, return, renewal, reservation")
        items = lib.ledger.history(search=q, transaction_type=type)
        return [_txn(t) for t in _page(response, items, limit, offset)]

    @app.post("/transactions/checkout", response_model=TransactionModel, status_code=201, dependencies=protected)
    def checkout(payload: CheckoutModel, lib: Library = Depends(get_library)):
        loan = lib.desk.checkout(payload.member_id, payload.book_id, payload.librarian_id, payload.notes)
        return _txn(loan)

    @app.post("/transactions/{transaction_id}/return", response_model=TransactionModel, dependencies=protected)
    def return_book(transaction_id: str, lib: Library = Depends(get_library)):
        return _txn(lib.desk.return_book(transaction_id))

    @app.post("/transactions/{transaction_id}/renew", response_model=TransactionModel, dependencies=protected)
    def renew_loan(transaction_id: str, lib: Library = Depends(get_library)):
        return _txn(lib.desk.renew(transaction_id))

    @app.get("/reservations", response_model=List[TransactionModel])
    def list_reservations(
        book_id: Optional[str] = Query(None),
        member_id: Optional[str] = Query(None),
        lib: Library = Depends(get_library),
    ):
        return [_txn(t) for t in lib.ledger.open_reservations(book_id=book_id, member_id=member_id)]

    @app.post("/reservations", response_model=TransactionModel, status_code=201, dependencies=protected)
    def reserve(payload: ReservationCreateModel, lib: Library = Depends(get_library)):
        return _txn(lib.desk.reserve(payload.member_id, payload.book_id, notes=payload.notes))

    @app.post("/reservations/{transaction_id}/cancel", response_model=TransactionModel, dependencies=protected)
    def cancel_reservation(transaction_id: str, lib: Library = Depends(get_library)):
        return _txn(lib.desk.cancel_reservation(transaction_id))

    # --- Reports ---
    @app.get("/reports/summary", response_model=SummaryModel)
    def report_summary(lib: Library = Depends(get_library)):
        stats = lib.reports.summary()
        stats["total_fines"] = str(stats["total_fines"])
        return SummaryModel(**stats)

    @app.get("/reports/overdue")
    def report_overdue(lib: Library = Depends(get_library)):
        return lib.reports.overdue_rows()

    @app.get("/reports/export/{kind}")
    def export_report(
        kind: str,
        format: str = Query("csv", description="csv|json"),
        lib: Library = Depends(get_library),
    ):
        if format not in ("csv", "json"):
            raise HTTPException(status_code=400, detail="Invalid format. Allowed: csv, json")
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        if format == "json":
            return JSONResponse(
                content=lib.reports.export_rows(kind),
                headers={"Content-Disposition": f"attachment; filename={kind}_report_{stamp}.json"},
            )
        return Response(
            content=lib.reports.export_csv(kind),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={kind}_report_{stamp}.csv"},
        )

    # --- QR ---
    @app.get("/qr/books/{book_id}", response_model=QRPayloadModel)
    def book_qr(book_id: str, lib: Library = Depends(get_library)):
        return QRPayloadModel(payload=qr.book_payload(lib.catalog.get_book(book_id)))

    @app.get("/qr/members/{member_id}", response_model=QRPayloadModel)
    def member_qr(member_id: str, lib: Library = Depends(get_library)):
        return QRPayloadModel(payload=qr.member_payload(lib.members.get(member_id)))

    @app.post("/qr/scan", response_model=ScanResultModel)
    def scan(payload: ScanRequest):
        return ScanResultModel(**qr.interpret_scan(payload.data).to_dict())

    return app


logging.basicConfig(level=settings.log_level)
app = create_app()
