"""
Generate test data for the orphan cleanup: MongoDB records plus blob files.

This script creates:
- MongoDB: 8 statements, 9 file records, 25 transactions
- Blob directory: 7 PDFs laid out as statements/<year>/<month>/<name>
  (mount or copy it as the SFTP root, e.g. /uploads on sftp-server)

Expected reconciliation results (scope=all, --include-blobs):
- Valid statements: 6
- Orphaned statements: 2 (their PDFs were never written) -> 7 transactions
- Orphaned file records: 3 (2 behind the orphaned statements + 1 unreferenced)
- Orphaned blobs: 1 (stray upload with no file record)

Usage:
    python generate_test_data.py --blob-dir ./sftp_data/uploads
"""

import argparse
import random
from datetime import datetime, timedelta
from pathlib import Path

from bson import ObjectId
from pymongo import MongoClient

from config.settings import settings

VALID_STATEMENTS = [
    # (account, bank, month, year, stored name)
    ("Operating", "Chase", 1, 2024, "chase-operating-2024-01.pdf"),
    ("Operating", "Chase", 2, 2024, "chase-operating-2024-02.pdf"),
    ("Payroll", "Wells Fargo", 3, 2024, "wf-payroll-2024-03.pdf"),
    ("Payroll", "Wells Fargo", 4, 2024, "wf-payroll-2024-04.pdf"),
    ("Savings", "Citi", 11, 2023, "citi-savings-2023-11.pdf"),
    ("Savings", "Citi", 12, 2023, "citi-savings-2023-12.pdf"),
]

MISSING_BLOB_STATEMENTS = [
    # Upload failed after the database rows were written
    ("Operating", "Chase", 3, 2024, "missing.pdf", 3),
    ("Escrow", "BofA", 5, 2025, "bofa-escrow-2025-05.pdf", 4),
]

UNREFERENCED_FILE = ("orphan-upload.pdf", 2024, 6)
STRAY_BLOB = ("stray-scan.pdf", 2024, 7)

PDF_BYTES = b"%PDF-1.4\n% test statement\n%%EOF\n"


def blob_path(year, month, name):
    return f"{settings.STORAGE_PREFIX}/{year}/{month}/{name}"


def file_document(name, year, month, uploaded_by):
    return {
        "_id": ObjectId(),
        "originalName": name,
        "fileName": name,
        "path": blob_path(year, month, name),
        "storageProvider": settings.STORAGE_PROVIDER,
        "mimeType": "application/pdf",
        "size": len(PDF_BYTES),
        "uploadedBy": uploaded_by,
        "createdAt": datetime.now(),
        "updatedAt": datetime.now(),
    }


def transaction_documents(statement_id, year, month, count):
    balance = round(random.uniform(5000, 20000), 2)
    start = datetime(year, month, 1)
    docs = []
    for i in range(count):
        amount = round(random.uniform(10, 2500), 2)
        direction = random.choice(["debit", "credit"])
        balance = round(balance - amount if direction == "debit" else balance + amount, 2)
        docs.append({
            "statement": statement_id,
            "txnDate": start + timedelta(days=i),
            "description": f"Test transaction {i + 1}",
            "amount": amount,
            "direction": direction,
            "balance": balance,
            "createdAt": datetime.now(),
            "updatedAt": datetime.now(),
        })
    return docs


def generate_records():
    """Build statement, file and transaction documents."""
    uploaded_by = ObjectId()
    statements, files, transactions = [], [], []
    blobs = []

    for account, bank, month, year, name in VALID_STATEMENTS:
        file_doc = file_document(name, year, month, uploaded_by)
        statement_id = ObjectId()
        files.append(file_doc)
        blobs.append(file_doc["path"])
        statements.append({
            "_id": statement_id,
            "accountName": account,
            "bankName": bank,
            "month": month,
            "year": year,
            "sourceFile": file_doc["_id"],
            "status": "parsed",
        })
        transactions.extend(transaction_documents(statement_id, year, month, 3))

    for account, bank, month, year, name, txn_count in MISSING_BLOB_STATEMENTS:
        file_doc = file_document(name, year, month, uploaded_by)
        statement_id = ObjectId()
        files.append(file_doc)
        statements.append({
            "_id": statement_id,
            "accountName": account,
            "bankName": bank,
            "month": month,
            "year": year,
            "sourceFile": file_doc["_id"],
            "status": "parsed",
        })
        transactions.extend(transaction_documents(statement_id, year, month, txn_count))

    name, year, month = UNREFERENCED_FILE
    unreferenced = file_document(name, year, month, uploaded_by)
    files.append(unreferenced)
    blobs.append(unreferenced["path"])

    name, year, month = STRAY_BLOB
    blobs.append(blob_path(year, month, name))

    return statements, files, transactions, blobs


def write_blobs(blob_dir, paths):
    for path in paths:
        target = Path(blob_dir) / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(PDF_BYTES)
    print(f"Wrote {len(paths)} blobs under {blob_dir}")


def insert_records(statements, files, transactions):
    """Insert documents into MongoDB, replacing existing test data."""
    client = MongoClient(settings.MONGO_URI, serverSelectionTimeoutMS=5000)
    client.admin.command("ping")
    print(f"Connected to MongoDB at {settings.MONGO_URI}")

    db = client[settings.DB_NAME]
    for name, docs in (
        (settings.STATEMENTS_COLLECTION, statements),
        (settings.FILES_COLLECTION, files),
        (settings.TRANSACTIONS_COLLECTION, transactions),
    ):
        db[name].delete_many({})
        db[name].insert_many(docs)
        print(f"Inserted {len(docs)} documents into {settings.DB_NAME}.{name}")

    client.close()


def main():
    parser = argparse.ArgumentParser(description="Seed MongoDB and a blob directory with drifted test data.")
    parser.add_argument("--blob-dir", default="./sftp_data/uploads")
    args = parser.parse_args()

    print("=" * 70)
    print("GENERATING TEST DATA FOR ORPHAN CLEANUP")
    print("=" * 70)

    statements, files, transactions, blobs = generate_records()
    write_blobs(args.blob_dir, blobs)
    insert_records(statements, files, transactions)

    print("=" * 70)
    print("EXPECTED RECONCILIATION RESULTS:")
    print("=" * 70)
    print(f"Statements: {len(statements)} (6 valid, 2 orphaned)")
    print("Would delete: 2 statements, 3 file records, 7 transactions")
    print("Orphaned blobs (with --include-blobs): 1")
    print("=" * 70)


if __name__ == "__main__":
    main()
