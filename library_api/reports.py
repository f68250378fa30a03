from datetime import datetime, timezone
from io import BytesIO
from typing import Iterable

from openpyxl import Workbook

from library_api import models

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

BORROWING_HEADERS = [
    "#",
    "Book Title",
    "Borrower Name",
    "Borrower Email",
    "Borrow From",
    "Borrow To",
]


def borrowing_rows(borrowings: Iterable[models.Borrowing]):
    for number, borrowing in enumerate(borrowings, start=1):
        yield [
            number,
            borrowing.book.title,
            borrowing.borrower.name,
            borrowing.borrower.email,
            borrowing.borrow_from.strftime("%Y-%m-%d"),
            borrowing.borrow_to.strftime("%Y-%m-%d"),
        ]


def build_borrowings_workbook(borrowings: Iterable[models.Borrowing]) -> bytes:
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = "Borrowings"
    worksheet.append(BORROWING_HEADERS)
    for row in borrowing_rows(borrowings):
        worksheet.append(row)

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def report_filename(name: str) -> str:
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"report-{millis}-{name}.xlsx"
