from datetime import datetime, timezone
from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional

from library_api.models import DEFAULT_SHELF_LOCATION


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class MessageSchema(BaseModel):
    message: str


# Books


class BookBase(CamelModel):
    title: str = Field(min_length=3)
    author: str = Field(min_length=3)
    isbn: str = Field(min_length=13, max_length=13)
    quantity: int = Field(ge=0)
    shelf_location: str = DEFAULT_SHELF_LOCATION


class BookCreate(BookBase):
    pass


class BookUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=3)
    author: Optional[str] = Field(None, min_length=3)
    isbn: Optional[str] = Field(None, min_length=13, max_length=13)
    quantity: Optional[int] = Field(None, ge=0)
    shelf_location: Optional[str] = None


class BookSchema(BookBase):
    id: int


class BookAvailabilitySchema(BookSchema):
    available_count: int


class BookSearchParams(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None


# Borrowers


class BorrowerBase(CamelModel):
    name: str = Field(min_length=3)
    email: EmailStr


class BorrowerCreate(BorrowerBase):
    pass


class BorrowerUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=3)
    email: Optional[EmailStr] = None


class BorrowerSchema(BorrowerBase):
    id: int


# Borrowings


class BorrowingCreate(CamelModel):
    book_id: int
    borrower_id: int
    borrow_from: Optional[datetime] = None
    borrow_to: datetime
    status: Optional[str] = None

    @field_validator("borrow_from", "borrow_to")
    @classmethod
    def normalize_dates(cls, value):
        return to_naive_utc(value)


class BorrowingUpdate(CamelModel):
    status: Optional[str] = None
    borrow_to: Optional[datetime] = None

    @field_validator("borrow_to")
    @classmethod
    def normalize_dates(cls, value):
        return to_naive_utc(value)


class BorrowingSchema(CamelModel):
    id: int
    book_id: int
    borrower_id: int
    borrow_from: datetime
    borrow_to: datetime
    status: Optional[str] = None


class BorrowerSummary(CamelModel):
    id: int
    name: str


class BookSummary(CamelModel):
    id: int
    title: str


class BorrowingDetailSchema(BorrowingSchema):
    borrower: BorrowerSummary
    book: BookSummary


# Analytics


class BorrowerContact(BorrowerSummary):
    email: str


class BookReference(BookSummary):
    isbn: str


class BorrowingReportSchema(BorrowingSchema):
    borrower: BorrowerContact
    book: BookReference


class AnalyticsSchema(CamelModel):
    start_date: datetime
    end_date: datetime
    count: int
    borrowings: list[BorrowingReportSchema] = []
    export_link: Optional[str] = None


# Borrower loans


class LoanBook(BookReference):
    author: str


class LoanSchema(CamelModel):
    id: int
    borrow_from: datetime
    borrow_to: datetime
    status: Optional[str] = None
    book: LoanBook


class BorrowerLoansSchema(BorrowerSchema):
    borrowings: list[LoanSchema] = []
