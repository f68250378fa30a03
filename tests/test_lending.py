import pytest
from datetime import datetime, timedelta, timezone

from library_api import crud, lending
from library_api.exceptions import (
    BookNotAvailableError,
    BookNotFoundError,
    BookOutOfStockError,
    BorrowerNotFoundError,
    InvalidIdError,
    NotFoundError,
    UnprocessableError,
)
from library_api.models import Borrowing, utcnow
from library_api.schemas import BookCreate, BorrowingCreate, BorrowingUpdate


def make_request(book_id, borrower_id, days=14, **kwargs):
    return BorrowingCreate(
        book_id=book_id,
        borrower_id=borrower_id,
        borrow_to=utcnow() + timedelta(days=days),
        **kwargs,
    )


@pytest.fixture
def single_copy_book(db_session):
    return crud.create_book(
        db_session,
        BookCreate(title="Only Copy", author="Author 1", isbn="5555555555555", quantity=1),
    )


def test_available_count_tracks_open_borrowings(db_session, test_book, test_borrower):
    assert crud.get_available_count(db_session, test_book.id) == 10

    borrowing = lending.borrow_book(
        db_session, make_request(test_book.id, test_borrower.id)
    )
    assert crud.get_available_count(db_session, test_book.id) == 9

    lending.return_book(db_session, str(borrowing.id))
    assert crud.get_available_count(db_session, test_book.id) == 10


def test_available_count_unknown_book(db_session):
    with pytest.raises(BookNotFoundError):
        crud.get_available_count(db_session, 999)


def test_list_books_computes_available_count(db_session, test_book, test_borrowing):
    books = crud.list_books(db_session)
    assert [book.available_count for book in books] == [9]


def test_borrow_precedence(db_session, test_book, test_borrower):
    with pytest.raises(BorrowerNotFoundError):
        lending.borrow_book(db_session, make_request(999, 999))
    with pytest.raises(BookNotFoundError):
        lending.borrow_book(db_session, make_request(999, test_borrower.id))


def test_borrow_zero_quantity_always_fails(db_session, test_borrower):
    book = crud.create_book(
        db_session,
        BookCreate(title="No Stock", author="Author 1", isbn="4444444444444", quantity=0),
    )
    with pytest.raises(BookOutOfStockError):
        lending.borrow_book(db_session, make_request(book.id, test_borrower.id))


def test_borrow_last_copy_then_fail(db_session, single_copy_book, test_borrower):
    lending.borrow_book(db_session, make_request(single_copy_book.id, test_borrower.id))
    with pytest.raises(BookNotAvailableError):
        lending.borrow_book(
            db_session, make_request(single_copy_book.id, test_borrower.id)
        )
    assert crud.count_open_borrowings(db_session, single_copy_book.id) == 1


def test_borrow_rechecks_count_after_insert(
    db_session, single_copy_book, test_borrower, monkeypatch
):
    lending.borrow_book(db_session, make_request(single_copy_book.id, test_borrower.id))

    real_count = crud.count_open_borrowings
    calls = []

    def stale_first_read(db, book_id):
        calls.append(book_id)
        if len(calls) == 1:
            return 0
        return real_count(db, book_id)

    monkeypatch.setattr(lending, "count_open_borrowings", stale_first_read)

    with pytest.raises(BookNotAvailableError):
        lending.borrow_book(
            db_session, make_request(single_copy_book.id, test_borrower.id)
        )
    assert len(calls) == 2
    assert real_count(db_session, single_copy_book.id) == 1


def test_return_book_invalid_id(db_session):
    with pytest.raises(InvalidIdError):
        lending.return_book(db_session, "twelve")


def test_overdue_policy_without_grace(db_session, test_book, test_borrower):
    now = utcnow()
    for days_late in (1, 40):
        db_session.add(
            Borrowing(
                book_id=test_book.id,
                borrower_id=test_borrower.id,
                borrow_from=now - timedelta(days=60),
                borrow_to=now - timedelta(days=days_late),
            )
        )
    db_session.commit()

    overdue = lending.get_overdue_borrowings(db_session, now=now, grace_days=0)
    assert len(overdue) == 2


def test_overdue_policy_with_grace(db_session, test_book, test_borrower):
    now = utcnow()
    for days_late in (1, 40):
        db_session.add(
            Borrowing(
                book_id=test_book.id,
                borrower_id=test_borrower.id,
                borrow_from=now - timedelta(days=60),
                borrow_to=now - timedelta(days=days_late),
            )
        )
    db_session.commit()

    overdue = lending.get_overdue_borrowings(db_session, now=now, grace_days=30)
    assert len(overdue) == 1
    assert overdue[0].borrow_to == now - timedelta(days=40)
    assert overdue[0].book.title == "Book 1"
    assert overdue[0].borrower.name == "Jane Doe"


def test_overdue_threshold():
    now = utcnow()
    assert lending.overdue_threshold(now, 0) == now
    assert lending.overdue_threshold(now, 30) == now - timedelta(days=30)


def test_overdue_none(db_session, test_borrowing):
    with pytest.raises(NotFoundError):
        lending.get_overdue_borrowings(db_session, grace_days=0)


def test_borrowings_in_range_is_inclusive(db_session, test_book, test_borrower):
    start = utcnow().replace(microsecond=0)
    end = start + timedelta(days=10)
    db_session.add_all(
        [
            Borrowing(
                book_id=test_book.id,
                borrower_id=test_borrower.id,
                borrow_from=start,
                borrow_to=end,
            ),
            Borrowing(
                book_id=test_book.id,
                borrower_id=test_borrower.id,
                borrow_from=start - timedelta(days=1),
                borrow_to=end,
            ),
            Borrowing(
                book_id=test_book.id,
                borrower_id=test_borrower.id,
                borrow_from=start,
                borrow_to=end + timedelta(days=1),
            ),
        ]
    )
    db_session.commit()

    borrowings = lending.get_borrowings_in_range(db_session, start, end)
    assert len(borrowings) == 1
    assert borrowings[0].borrow_from == start


def test_borrowings_in_range_rejects_reversed_dates(db_session):
    start = utcnow()
    with pytest.raises(UnprocessableError):
        lending.get_borrowings_in_range(db_session, start, start - timedelta(days=1))


def test_update_borrowing_keeps_unset_fields(db_session, test_borrowing):
    borrow_to = test_borrowing.borrow_to
    message = lending.update_borrowing(
        db_session, str(test_borrowing.id), BorrowingUpdate(status="renewed")
    )
    assert message == "Borrowing of book Book 1 updated successfully"
    db_session.refresh(test_borrowing)
    assert test_borrowing.status == "renewed"
    assert test_borrowing.borrow_to == borrow_to


def test_borrower_loans_prefers_id(db_session, test_borrower, test_borrowing):
    borrower = lending.get_borrower_loans(
        db_session, str(test_borrower.id), name="nobody"
    )
    assert borrower.id == test_borrower.id
    assert borrower.borrowings[0].book.title == "Book 1"


def test_borrower_loans_requires_numeric_id(db_session):
    with pytest.raises(UnprocessableError):
        lending.get_borrower_loans(db_session, "abc")


def test_search_table_drives_filters(db_session, test_book):
    assert set(crud.BOOK_SEARCH_FIELDS) == {"title", "author", "isbn"}
    assert crud.search_books(db_session, author="AUTHOR") == [test_book]
    with pytest.raises(NotFoundError):
        crud.search_books(db_session, title="book", isbn="000")


def test_timezone_aware_dates_are_stored_as_utc(db_session, test_book, test_borrower):
    borrow_to = datetime(2030, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    borrowing = lending.borrow_book(
        db_session,
        BorrowingCreate(
            book_id=test_book.id, borrower_id=test_borrower.id, borrow_to=borrow_to
        ),
    )
    assert borrowing.borrow_to == datetime(2030, 1, 1, 10, 0)
