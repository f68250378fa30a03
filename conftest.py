import pytest
from datetime import timedelta
from fastapi.testclient import TestClient

from library_api.main import app, get_db
from library_api.models import Borrowing, utcnow
from library_api.crud import create_book, create_borrower
from library_api.schemas import BookCreate, BorrowerCreate
from library_api.storage import Storage

# Use an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite://"


@pytest.fixture(scope="function")
def storage():
    test_storage = Storage(SQLALCHEMY_DATABASE_URL)
    test_storage.create_schema()
    yield test_storage
    test_storage.drop_schema()
    test_storage.dispose()


@pytest.fixture(scope="function")
def db_session(storage):
    session = storage.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(storage):
    app.state.testing = True

    def override_get_db():
        try:
            db = storage.session()
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.testing = False


@pytest.fixture(scope="function")
def test_book(db_session):
    book_data = BookCreate(
        title="Book 1",
        author="Author 1",
        isbn="1234567890123",
        quantity=10,
    )
    return create_book(db_session, book_data)


@pytest.fixture(scope="function")
def test_borrower(db_session):
    borrower_data = BorrowerCreate(name="Jane Doe", email="jane@example.com")
    return create_borrower(db_session, borrower_data)


@pytest.fixture(scope="function")
def test_borrowing(db_session, test_book, test_borrower):
    borrowing = Borrowing(
        book_id=test_book.id,
        borrower_id=test_borrower.id,
        borrow_from=utcnow(),
        borrow_to=utcnow() + timedelta(days=30),
    )
    db_session.add(borrowing)
    db_session.commit()
    db_session.refresh(borrowing)
    return borrowing
