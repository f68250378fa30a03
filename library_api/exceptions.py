from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


class LibraryException(Exception):
    """Base exception for library-related errors."""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def content(self) -> dict:
        return {"message": self.message}


class NotFoundError(LibraryException):
    """Raised when an entity is absent or a lookup yields nothing."""

    status_code = 404


class BookNotFoundError(NotFoundError):
    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__("Book not found")


class BorrowerNotFoundError(NotFoundError):
    def __init__(self, borrower_id: int):
        self.borrower_id = borrower_id
        super().__init__("Borrower not found")


class BorrowingNotFoundError(NotFoundError):
    def __init__(self, borrowing_id: int):
        self.borrowing_id = borrowing_id
        super().__init__("Borrowing not found")


class InvalidIdError(LibraryException):
    """Raised when a path id does not parse as an integer."""

    def __init__(self, raw_id: str):
        self.raw_id = raw_id
        super().__init__("Please provide a valid id")


class UnprocessableError(LibraryException):
    status_code = 422


class DuplicateFieldError(UnprocessableError):
    """Raised when a unique field collides with an existing record."""

    def __init__(self, field: str, label: str):
        self.field = field
        super().__init__(f"{label} must be unique")

    def content(self) -> dict:
        return {self.field: self.message}


class BookOutOfStockError(UnprocessableError):
    """Raised when a book has no copies at all."""

    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__("Book is not available")


class BookNotAvailableError(LibraryException):
    """Raised when every copy of a book is already lent out."""

    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__("Book is not available")


class BookBorrowedError(LibraryException):
    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__("Cannot delete a book that is borrowed")


class BorrowerHasLoansError(LibraryException):
    def __init__(self, borrower_id: int):
        self.borrower_id = borrower_id
        super().__init__("Cannot delete a borrower with borrowed books")


class DatabaseError(LibraryException):
    status_code = 500

    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Database error during {operation}")


# Messages reported for failed request fields, keyed by their wire name
VALIDATION_MESSAGES = {
    "title": "title must be at least 3 characters long",
    "author": "author must be at least 3 characters long",
    "isbn": "ISBN must be 13 characters long",
    "quantity": "quantity must be a non-negative number",
    "name": "name must be at least 3 characters long",
    "email": "email must be a valid email address",
    "bookId": "bookId must be a number",
    "borrowerId": "borrowerId must be a number",
    "borrowFrom": "borrowFrom must be a date",
    "borrowTo": "borrowTo must be a date",
    "startDate": "startDate must be a date",
    "endDate": "endDate must be a date",
}


def validation_errors_by_field(errors) -> dict:
    fields = {}
    for error in errors:
        loc = [str(part) for part in error["loc"] if part not in ("body", "query", "path")]
        field = loc[0] if loc else "body"
        fields.setdefault(field, VALIDATION_MESSAGES.get(field, error["msg"]))
    return fields


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
    if exc.status_code == 404:
        return PlainTextResponse("Nothing here...", status_code=404)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content=validation_errors_by_field(exc.errors()),
    )


async def library_exception_handler(request: Request, exc: LibraryException):
    if isinstance(exc, DatabaseError):
        logger.error(f"Library error: {exc} ({exc.details})")
    else:
        logger.error(f"Library error: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.content())


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"message": "An unexpected error occurred. Please contact support."},
    )


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(LibraryException, library_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
