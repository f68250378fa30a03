import logging
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import Callable, Dict, List, Optional

from library_api import models, schemas
from library_api.exceptions import (
    BookBorrowedError,
    BookNotFoundError,
    BorrowerHasLoansError,
    BorrowerNotFoundError,
    DatabaseError,
    DuplicateFieldError,
    NotFoundError,
    UnprocessableError,
)

logger = logging.getLogger(__name__)


def contains_ignore_case(column, value: str):
    return func.lower(column).like(f"%{value.lower()}%")


# Searchable book fields and how each one is matched
BOOK_SEARCH_FIELDS: Dict[str, Callable] = {
    "title": contains_ignore_case,
    "author": contains_ignore_case,
    "isbn": contains_ignore_case,
}


def _present_fields(update: schemas.CamelModel) -> dict:
    return {
        key: value
        for key, value in update.model_dump(exclude_unset=True).items()
        if value is not None
    }


def count_open_borrowings(db: Session, book_id: int) -> int:
    return (
        db.query(func.count(models.Borrowing.id))
        .filter(models.Borrowing.book_id == book_id)
        .scalar()
    )


# Books


def list_books(db: Session) -> List[models.Book]:
    """Every book, each carrying ``available_count`` computed in the same query."""
    try:
        open_counts = (
            db.query(
                models.Borrowing.book_id,
                func.count(models.Borrowing.id).label("open_count"),
            )
            .group_by(models.Borrowing.book_id)
            .subquery()
        )
        rows = (
            db.query(models.Book, func.coalesce(open_counts.c.open_count, 0))
            .outerjoin(open_counts, open_counts.c.book_id == models.Book.id)
            .order_by(models.Book.id)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))

    if not rows:
        raise NotFoundError("No books are in the DB yet")

    books = []
    for book, open_count in rows:
        book.available_count = book.quantity - open_count
        books.append(book)
    return books


def get_available_count(db: Session, book_id: int) -> int:
    try:
        open_count = (
            select(func.count(models.Borrowing.id))
            .where(models.Borrowing.book_id == models.Book.id)
            .correlate(models.Book)
            .scalar_subquery()
        )
        available = (
            db.query(models.Book.quantity - open_count)
            .filter(models.Book.id == book_id)
            .scalar()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if available is None:
        raise BookNotFoundError(book_id)
    return available


def get_book(db: Session, book_id: int) -> models.Book:
    try:
        book = db.query(models.Book).filter(models.Book.id == book_id).first()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if book is None:
        raise BookNotFoundError(book_id)
    return book


def search_books(
    db: Session,
    title: Optional[str] = None,
    author: Optional[str] = None,
    isbn: Optional[str] = None,
) -> List[models.Book]:
    criteria = {"title": title, "author": author, "isbn": isbn}
    try:
        query = db.query(models.Book)
        for field, match in BOOK_SEARCH_FIELDS.items():
            value = criteria.get(field)
            if value:
                query = query.filter(match(getattr(models.Book, field), value))
        books = query.order_by(models.Book.id).all()
    except SQLAlchemyError as e:
        raise DatabaseError("search", str(e))
    if not books:
        raise NotFoundError("No books match the search criteria")
    return books


def _ensure_unique_isbn(db: Session, isbn: str, book_id: Optional[int] = None):
    query = db.query(models.Book.id).filter(models.Book.isbn == isbn)
    if book_id is not None:
        query = query.filter(models.Book.id != book_id)
    if query.first() is not None:
        raise DuplicateFieldError("isbn", "ISBN")


def create_book(db: Session, item: schemas.BookCreate) -> models.Book:
    try:
        _ensure_unique_isbn(db, item.isbn)
        db_item = models.Book(**item.model_dump())
        db.add(db_item)
        db.commit()
        db.refresh(db_item)
    except IntegrityError:
        db.rollback()
        raise DuplicateFieldError("isbn", "ISBN")
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("create", str(e))
    logger.info(f"Created book {db_item.id}: {db_item.title}")
    return db_item


def update_book(db: Session, book_id: int, book_update: schemas.BookUpdate):
    book = get_book(db, book_id)
    update_data = _present_fields(book_update)
    try:
        if "isbn" in update_data:
            _ensure_unique_isbn(db, update_data["isbn"], book_id)
        if "quantity" in update_data:
            if update_data["quantity"] < count_open_borrowings(db, book_id):
                raise UnprocessableError(
                    "quantity cannot be lower than the number of borrowed copies"
                )
        for key, value in update_data.items():
            setattr(book, key, value)
        db.commit()
        db.refresh(book)
    except IntegrityError:
        db.rollback()
        raise DuplicateFieldError("isbn", "ISBN")
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("update", str(e))
    logger.info(f"Updated book {book.id}: {sorted(update_data)}")
    return book


def delete_book(db: Session, book_id: int) -> str:
    book = get_book(db, book_id)
    message = f"Book {book.title} deleted successfully"
    try:
        borrowed = (
            db.query(models.Borrowing.id)
            .filter(models.Borrowing.book_id == book_id)
            .first()
        )
        if borrowed is not None:
            raise BookBorrowedError(book_id)
        db.delete(book)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("delete", str(e))
    logger.info(f"Deleted book {book_id}")
    return message


# Borrowers


def list_borrowers(db: Session) -> List[models.Borrower]:
    try:
        borrowers = db.query(models.Borrower).order_by(models.Borrower.id).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if not borrowers:
        raise NotFoundError("No Borrowers are in the DB yet")
    return borrowers


def get_borrower(db: Session, borrower_id: int) -> models.Borrower:
    try:
        borrower = (
            db.query(models.Borrower)
            .filter(models.Borrower.id == borrower_id)
            .first()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if borrower is None:
        raise BorrowerNotFoundError(borrower_id)
    return borrower


def _ensure_unique_email(db: Session, email: str, borrower_id: Optional[int] = None):
    query = db.query(models.Borrower.id).filter(
        func.lower(models.Borrower.email) == email.lower()
    )
    if borrower_id is not None:
        query = query.filter(models.Borrower.id != borrower_id)
    if query.first() is not None:
        raise DuplicateFieldError("email", "Email")


def create_borrower(db: Session, borrower: schemas.BorrowerCreate) -> models.Borrower:
    try:
        _ensure_unique_email(db, borrower.email)
        db_borrower = models.Borrower(**borrower.model_dump())
        db.add(db_borrower)
        db.commit()
        db.refresh(db_borrower)
    except IntegrityError:
        db.rollback()
        raise DuplicateFieldError("email", "Email")
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("create", str(e))
    logger.info(f"Created borrower {db_borrower.id}")
    return db_borrower


def update_borrower(
    db: Session, borrower_id: int, borrower_update: schemas.BorrowerUpdate
) -> models.Borrower:
    borrower = get_borrower(db, borrower_id)
    update_data = _present_fields(borrower_update)
    try:
        if "email" in update_data:
            _ensure_unique_email(db, update_data["email"], borrower_id)
        for key, value in update_data.items():
            setattr(borrower, key, value)
        db.commit()
        db.refresh(borrower)
    except IntegrityError:
        db.rollback()
        raise DuplicateFieldError("email", "Email")
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("update", str(e))
    logger.info(f"Updated borrower {borrower.id}: {sorted(update_data)}")
    return borrower


def delete_borrower(db: Session, borrower_id: int) -> str:
    borrower = get_borrower(db, borrower_id)
    message = (
        f"A borrower {borrower.name} with email {borrower.email} deleted successfully"
    )
    try:
        borrowed = (
            db.query(models.Borrowing.id)
            .filter(models.Borrowing.borrower_id == borrower_id)
            .first()
        )
        if borrowed is not None:
            raise BorrowerHasLoansError(borrower_id)
        db.delete(borrower)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("delete", str(e))
    logger.info(f"Deleted borrower {borrower_id}")
    return message
