import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from config import configure_logging, settings
from errors import (
    AlreadyReturnedError,
    BookInUseError,
    DuplicateLoanError,
    InvalidArgumentError,
    InvalidCredentialsError,
    InvariantViolationError,
    LendingError,
    NotFoundError,
    OutOfStockError,
    UsernameTakenError,
)
from identity_store import AccountService
from lending import LendingLedger

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: 404,
    InvalidArgumentError: 400,
    InvalidCredentialsError: 401,
    InvariantViolationError: 409,
    OutOfStockError: 409,
    DuplicateLoanError: 409,
    BookInUseError: 409,
    AlreadyReturnedError: 409,
    UsernameTakenError: 409,
}


# --- Models ---
class BookModel(BaseModel):
    id: int
    title: str
    author: str
    quantity: int
    available: int


class BookCreateModel(BaseModel):
    title: str
    author: str
    quantity: int = Field(default=1, description="Total copies owned")


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    quantity: Optional[int] = None


class IssueCreateModel(BaseModel):
    user_id: int
    book_id: int


class IssueModel(BaseModel):
    id: int
    user_id: int
    book_id: int
    issue_date: str
    return_date: Optional[str] = None
    book_title: Optional[str] = None
    book_author: Optional[str] = None
    username: Optional[str] = None


class StatsModel(BaseModel):
    total_titles: int
    total_copies: int
    issued_copies: int
    active_borrowers: int


class LoginModel(BaseModel):
    username: str
    password: str


class RegisterModel(BaseModel):
    username: str
    password: str
    full_name: str


class UserModel(BaseModel):
    id: int
    username: str
    role: str
    full_name: str


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Dependency that checks the API key on catalog-changing endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Dependencies ---
def get_ledger(request: Request) -> LendingLedger:
    return request.app.state.ledger


def get_accounts(request: Request) -> AccountService:
    return request.app.state.accounts


def create_app(ledger: Optional[LendingLedger] = None) -> FastAPI:
    """Build the HTTP application around a ledger.

    Without an explicit ledger one is opened on startup from ``settings``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        app.state.ledger = ledger or LendingLedger()
        app.state.accounts = AccountService(app.state.ledger.db_file)
        yield

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LendingError)
    async def lending_error_handler(request: Request, exc: LendingError):
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
        return JSONResponse(status_code=status, content={"detail": str(exc), "code": exc.code})

    # --- Health ---
    @app.get("/health")
    def health(ledger: LendingLedger = Depends(get_ledger)):
        """Lightweight health check: touches the database and reports counters."""
        stats = ledger.get_statistics()
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "total_titles": stats["total_titles"],
        }

    # --- Books ---
    @app.get("/books", response_model=List[BookModel])
    def list_books(ledger: LendingLedger = Depends(get_ledger)):
        return [book.to_dict() for book in ledger.list_books()]

    @app.get("/books/{book_id}", response_model=BookModel)
    def get_book(book_id: int, ledger: LendingLedger = Depends(get_ledger)):
        return ledger.get_book(book_id).to_dict()

    @app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
    def add_book(payload: BookCreateModel, ledger: LendingLedger = Depends(get_ledger)):
        return ledger.add_book(payload.title, payload.author, payload.quantity).to_dict()

    @app.patch("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
    def update_book(book_id: int, payload: BookUpdateModel, ledger: LendingLedger = Depends(get_ledger)):
        return ledger.update_book(
            book_id, title=payload.title, author=payload.author, quantity=payload.quantity
        ).to_dict()

    @app.delete("/books/{book_id}", status_code=204, dependencies=[Depends(get_api_key)])
    def delete_book(book_id: int, ledger: LendingLedger = Depends(get_ledger)):
        ledger.delete_book(book_id)
        return Response(status_code=204)

    # --- Issues ---
    @app.post("/issues", response_model=IssueModel, status_code=201)
    def issue_book(payload: IssueCreateModel, ledger: LendingLedger = Depends(get_ledger)):
        return ledger.issue_book(payload.user_id, payload.book_id).to_dict()

    @app.post("/issues/{issue_id}/return", status_code=204)
    def return_book(issue_id: int, ledger: LendingLedger = Depends(get_ledger)):
        ledger.return_book(issue_id)
        return Response(status_code=204)

    @app.get("/issues", response_model=List[IssueModel])
    def list_all_issues(ledger: LendingLedger = Depends(get_ledger)):
        return [record.to_dict() for record in ledger.list_all_issues()]

    @app.get("/issues/recent", response_model=List[IssueModel])
    def recent_issues(limit: Optional[int] = None, ledger: LendingLedger = Depends(get_ledger)):
        return [record.to_dict() for record in ledger.recent_issues(limit)]

    @app.get("/users/{user_id}/issues", response_model=List[IssueModel])
    def list_issues_for_user(user_id: int, ledger: LendingLedger = Depends(get_ledger)):
        return [record.to_dict() for record in ledger.list_issues_for_user(user_id)]

    @app.get("/stats", response_model=StatsModel)
    def get_stats(ledger: LendingLedger = Depends(get_ledger)):
        return ledger.get_statistics()

    # --- Auth (pass-through to the identity store) ---
    @app.post("/auth/login", response_model=UserModel)
    def login(payload: LoginModel, accounts: AccountService = Depends(get_accounts)):
        return accounts.authenticate(payload.username, payload.password).to_dict()

    @app.post("/auth/register", response_model=UserModel, status_code=201)
    def register(payload: RegisterModel, accounts: AccountService = Depends(get_accounts)):
        return accounts.register(payload.username, payload.password, payload.full_name).to_dict()

    return app


app = create_app()
