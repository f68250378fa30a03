from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()

DEFAULT_SHELF_LOCATION = "Storage Room"


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_books_quantity"),)

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    isbn = Column(String(13), unique=True, nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    shelf_location = Column(String, nullable=False, default=DEFAULT_SHELF_LOCATION)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Borrower(Base):
    __tablename__ = "borrowers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Borrowing(Base):
    __tablename__ = "borrowings"

    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    borrower_id = Column(
        Integer, ForeignKey("borrowers.id"), nullable=False, index=True
    )
    borrow_from = Column(DateTime, nullable=False, default=utcnow)
    borrow_to = Column(DateTime, nullable=False)
    status = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    book = relationship("Book", back_populates="borrowings")
    borrower = relationship("Borrower", back_populates="borrowings")


Book.borrowings = relationship("Borrowing", back_populates="book")
Borrower.borrowings = relationship("Borrowing", back_populates="borrower")
