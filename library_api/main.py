from contextlib import asynccontextmanager
from datetime import datetime
import logging
from fastapi import FastAPI, Depends, Query, Request, Response, status
from pydantic import EmailStr
from sqlalchemy.orm import Session

from library_api import crud, lending
from library_api.config import settings
from library_api.exceptions import add_exception_handlers
from library_api.reports import (
    XLSX_MEDIA_TYPE,
    build_borrowings_workbook,
    report_filename,
)
from library_api.schemas import (
    AnalyticsSchema,
    BookAvailabilitySchema,
    BookCreate,
    BookSchema,
    BookSearchParams,
    BookUpdate,
    BorrowerCreate,
    BorrowerLoansSchema,
    BorrowerSchema,
    BorrowerUpdate,
    BorrowingCreate,
    BorrowingDetailSchema,
    BorrowingSchema,
    BorrowingUpdate,
    MessageSchema,
)
from library_api.storage import Storage

from typing import List, Optional

# Set up logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    if not app.state.testing:
        logger.info("Initializing database connection")
        storage = Storage(settings.database_url)
        storage.create_schema()
        app.state.storage = storage
    yield
    if not app.state.testing:
        app.state.storage.dispose()


app = FastAPI(
    title="Library API",
    lifespan=lifespan,
    description="Books, borrowers and borrowing transactions for a library",
    version="1.0.0",
)

add_exception_handlers(app)


def get_db(request: Request):
    db = request.app.state.storage.session()
    try:
        yield db
    finally:
        db.close()


@app.get("/health")
def health():
    return {"status": "ok"}


# Books
@app.get("/books", response_model=List[BookAvailabilitySchema])
def list_books(db: Session = Depends(get_db)):
    return crud.list_books(db)


@app.get("/books/search", response_model=List[BookSchema])
def search_books(params: BookSearchParams = Depends(), db: Session = Depends(get_db)):
    return crud.search_books(db, params.title, params.author, params.isbn)


@app.post("/books", response_model=BookSchema, status_code=status.HTTP_201_CREATED)
def create_book(book: BookCreate, db: Session = Depends(get_db)):
    return crud.create_book(db, book)


@app.put("/books/{book_id}", response_model=BookSchema)
def update_book(book_id: int, book_update: BookUpdate, db: Session = Depends(get_db)):
    return crud.update_book(db, book_id, book_update)


@app.delete("/books/{book_id}", response_model=MessageSchema)
def delete_book(book_id: int, db: Session = Depends(get_db)):
    return {"message": crud.delete_book(db, book_id)}


# Borrowers
@app.get("/borrowers", response_model=List[BorrowerSchema])
def list_borrowers(db: Session = Depends(get_db)):
    return crud.list_borrowers(db)


@app.post(
    "/borrowers", response_model=BorrowerSchema, status_code=status.HTTP_201_CREATED
)
def create_borrower(borrower: BorrowerCreate, db: Session = Depends(get_db)):
    return crud.create_borrower(db, borrower)


@app.put("/borrowers/{borrower_id}", response_model=BorrowerSchema)
def update_borrower(
    borrower_id: int, borrower_update: BorrowerUpdate, db: Session = Depends(get_db)
):
    return crud.update_borrower(db, borrower_id, borrower_update)


@app.delete("/borrowers/{borrower_id}", response_model=MessageSchema)
def delete_borrower(borrower_id: int, db: Session = Depends(get_db)):
    return {"message": crud.delete_borrower(db, borrower_id)}


@app.get("/borrowers/borrowed/{user_id}", response_model=BorrowerLoansSchema)
def borrowed_books(
    user_id: str,
    name: Optional[str] = Query(None, min_length=3),
    email: Optional[EmailStr] = Query(None),
    db: Session = Depends(get_db),
):
    return lending.get_borrower_loans(db, user_id, name, email)


# Borrowing
@app.post(
    "/borrowing", response_model=BorrowingSchema, status_code=status.HTTP_201_CREATED
)
def borrow_book(borrow_request: BorrowingCreate, db: Session = Depends(get_db)):
    return lending.borrow_book(db, borrow_request)


@app.get("/borrowing", response_model=List[BorrowingDetailSchema])
def list_borrowings(db: Session = Depends(get_db)):
    return lending.list_borrowings(db)


@app.get("/borrowing/overdue", response_model=List[BorrowingDetailSchema])
def overdue_borrowings(db: Session = Depends(get_db)):
    return lending.get_overdue_borrowings(db)


@app.get("/borrowing/analytics", response_model=AnalyticsSchema)
def borrowing_analytics(
    request: Request,
    start_date: datetime = Query(alias="startDate"),
    end_date: datetime = Query(alias="endDate"),
    export_data: bool = Query(False, alias="exportData"),
    db: Session = Depends(get_db),
):
    borrowings = lending.get_borrowings_in_range(db, start_date, end_date)
    export_link = None
    if export_data:
        export_link = str(
            request.url_for("export_borrowings").include_query_params(
                startDate=request.query_params["startDate"],
                endDate=request.query_params["endDate"],
            )
        )
    return {
        "start_date": start_date,
        "end_date": end_date,
        "count": len(borrowings),
        "borrowings": borrowings,
        "export_link": export_link,
    }


@app.get("/borrowing/export", name="export_borrowings")
def export_borrowings(
    start_date: datetime = Query(alias="startDate"),
    end_date: datetime = Query(alias="endDate"),
    db: Session = Depends(get_db),
):
    borrowings = lending.get_borrowings_in_range(db, start_date, end_date)
    filename = report_filename("borrowings")
    logger.info(f"Exporting {len(borrowings)} borrowings to {filename}")
    return Response(
        content=build_borrowings_workbook(borrowings),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.put("/borrowing/{borrowing_id}", response_model=MessageSchema)
def update_borrowing(
    borrowing_id: str,
    borrowing_update: BorrowingUpdate,
    db: Session = Depends(get_db),
):
    return {"message": lending.update_borrowing(db, borrowing_id, borrowing_update)}


@app.delete("/borrowing/{borrowing_id}", response_model=MessageSchema)
def return_book(borrowing_id: str, db: Session = Depends(get_db)):
    return {"message": lending.return_book(db, borrowing_id)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
