import csv
import io
from datetime import date

from app.models import MpesaTransaction

TRANSACTION_CSV_HEADER = ["Date", "Phone", "Amount", "Receipt", "Status", "Reference", "Description"]


def transactions_csv_filename(today: date | None = None) -> str:
    return f"mpesa-transactions-{(today or date.today()).isoformat()}.csv"


def transactions_to_csv(rows: list[MpesaTransaction]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(TRANSACTION_CSV_HEADER)
    for tx in rows:
        writer.writerow(
            [
                tx.created_at.isoformat() if tx.created_at else "",
                tx.phone_number,
                tx.amount,
                tx.mpesa_receipt_number or "",
                tx.status.value if hasattr(tx.status, "value") else str(tx.status),
                tx.account_reference,
                tx.transaction_desc,
            ]
        )
    return buffer.getvalue()
