"""Borrowing lifecycle: lending, returning and reporting on borrowed books.

A ``Borrowing`` row exists exactly as long as the book is out. Lending adds a
row, returning deletes it, and availability is always derived by counting the
rows for a book, never stored.
"""
import logging
from datetime import datetime, timedelta
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy.exc import SQLAlchemyError
from typing import List, Optional

from library_api import models, schemas
from library_api.config import settings
from library_api.crud import contains_ignore_case, count_open_borrowings
from library_api.exceptions import (
    BookNotAvailableError,
    BookNotFoundError,
    BookOutOfStockError,
    BorrowerNotFoundError,
    BorrowingNotFoundError,
    DatabaseError,
    InvalidIdError,
    LibraryException,
    NotFoundError,
    UnprocessableError,
)
from library_api.models import utcnow
from library_api.schemas import to_naive_utc

logger = logging.getLogger(__name__)


def parse_id(raw_id: str) -> int:
    try:
        return int(raw_id)
    except (TypeError, ValueError):
        raise InvalidIdError(raw_id)


def borrow_book(
    db: Session, borrow_request: schemas.BorrowingCreate
) -> models.Borrowing:
    """Lend one copy of a book to a borrower.

    Checks run in a fixed order: borrower exists, book exists, book has stock,
    book has a copy that is not already lent out. The book row is locked for
    the rest of the transaction and the open count is checked again after the
    insert, so two concurrent requests can never both take the last copy.
    """
    try:
        borrower = (
            db.query(models.Borrower)
            .filter(models.Borrower.id == borrow_request.borrower_id)
            .first()
        )
        if borrower is None:
            raise BorrowerNotFoundError(borrow_request.borrower_id)

        book = (
            db.query(models.Book)
            .filter(models.Book.id == borrow_request.book_id)
            .with_for_update()
            .first()
        )
        if book is None:
            raise BookNotFoundError(borrow_request.book_id)

        if book.quantity <= 0:
            raise BookOutOfStockError(book.id)

        if count_open_borrowings(db, book.id) >= book.quantity:
            raise BookNotAvailableError(book.id)

        borrowing = models.Borrowing(
            book_id=book.id,
            borrower_id=borrower.id,
            borrow_from=borrow_request.borrow_from or utcnow(),
            borrow_to=borrow_request.borrow_to,
            status=borrow_request.status,
        )
        db.add(borrowing)
        db.flush()

        # Another transaction may have taken the last copy since the check
        if count_open_borrowings(db, book.id) > book.quantity:
            raise BookNotAvailableError(book.id)

        db.commit()
        db.refresh(borrowing)
    except LibraryException:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("borrow", str(e))

    logger.info(
        f"Borrower {borrowing.borrower_id} borrowed book {borrowing.book_id} "
        f"until {borrowing.borrow_to:%Y-%m-%d}"
    )
    return borrowing


def return_book(db: Session, raw_id: str) -> str:
    borrowing_id = parse_id(raw_id)
    try:
        borrowing = (
            db.query(models.Borrowing)
            .filter(models.Borrowing.id == borrowing_id)
            .first()
        )
        if borrowing is None:
            raise BorrowingNotFoundError(borrowing_id)
        db.delete(borrowing)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("return", str(e))
    logger.info(f"Borrowing {borrowing_id} returned")
    return "Book returned successfully"


def _with_parties(query):
    return query.options(
        joinedload(models.Borrowing.borrower), joinedload(models.Borrowing.book)
    )


def list_borrowings(db: Session) -> List[models.Borrowing]:
    try:
        borrowings = (
            _with_parties(db.query(models.Borrowing))
            .order_by(models.Borrowing.id)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if not borrowings:
        raise NotFoundError("No borrowings are in the DB yet")
    return borrowings


def overdue_threshold(
    now: Optional[datetime] = None, grace_days: Optional[int] = None
) -> datetime:
    """Latest ``borrow_to`` that still counts as overdue at ``now``."""
    if now is None:
        now = utcnow()
    if grace_days is None:
        grace_days = settings.overdue_grace_days
    return to_naive_utc(now) - timedelta(days=grace_days)


def get_overdue_borrowings(
    db: Session, now: Optional[datetime] = None, grace_days: Optional[int] = None
) -> List[models.Borrowing]:
    threshold = overdue_threshold(now, grace_days)
    try:
        borrowings = (
            _with_parties(db.query(models.Borrowing))
            .filter(models.Borrowing.borrow_to < threshold)
            .order_by(models.Borrowing.borrow_to)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if not borrowings:
        raise NotFoundError("No books are overdue")
    return borrowings


def get_borrowings_in_range(
    db: Session, start_date: datetime, end_date: datetime
) -> List[models.Borrowing]:
    start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)
    if end_date < start_date:
        raise UnprocessableError("endDate must not be before startDate")
    try:
        return (
            _with_parties(db.query(models.Borrowing))
            .filter(
                models.Borrowing.borrow_from >= start_date,
                models.Borrowing.borrow_to <= end_date,
            )
            .order_by(models.Borrowing.borrow_from, models.Borrowing.id)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def update_borrowing(
    db: Session, raw_id: str, borrowing_update: schemas.BorrowingUpdate
) -> str:
    borrowing_id = parse_id(raw_id)
    update_data = {
        key: value
        for key, value in borrowing_update.model_dump(exclude_unset=True).items()
        if key == "status" or value is not None
    }
    try:
        borrowing = (
            db.query(models.Borrowing)
            .options(joinedload(models.Borrowing.book))
            .filter(models.Borrowing.id == borrowing_id)
            .first()
        )
        if borrowing is None:
            raise BorrowingNotFoundError(borrowing_id)
        title = borrowing.book.title
        for key, value in update_data.items():
            setattr(borrowing, key, value)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("update", str(e))
    logger.info(f"Updated borrowing {borrowing_id}: {sorted(update_data)}")
    return f"Borrowing of book {title} updated successfully"


def get_borrower_loans(
    db: Session,
    raw_user_id: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
) -> models.Borrower:
    """A borrower, found by id or else by partial name/email, with their loans."""
    try:
        user_id = int(raw_user_id)
    except (TypeError, ValueError):
        raise UnprocessableError("User Id must be a number")

    try:
        query = db.query(models.Borrower).options(
            selectinload(models.Borrower.borrowings).selectinload(
                models.Borrowing.book
            )
        )
        borrower = query.filter(models.Borrower.id == user_id).first()
        if borrower is None and (name or email):
            if name:
                query = query.filter(contains_ignore_case(models.Borrower.name, name))
            if email:
                query = query.filter(
                    contains_ignore_case(models.Borrower.email, email)
                )
            borrower = query.order_by(models.Borrower.id).first()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))

    if borrower is None:
        raise NotFoundError("User not found")
    if not borrower.borrowings:
        raise NotFoundError("User haven't borrowed books")
    return borrower
