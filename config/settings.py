import os


class Settings:
    """Configuration settings for the orphan reconciliation process."""

    # MongoDB Configuration
    MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    DB_NAME = os.getenv("MONGO_DB_NAME", "portal")
    STATEMENTS_COLLECTION = os.getenv("STATEMENTS_COLLECTION", "statements")
    FILES_COLLECTION = os.getenv("FILES_COLLECTION", "files")
    TRANSACTIONS_COLLECTION = os.getenv("TRANSACTIONS_COLLECTION", "transactions")
    RECONCILIATION_COLLECTION = os.getenv("RECONCILIATION_COLLECTION", "reconciliation_runs")

    # Storage layout
    STORAGE_PROVIDER = os.getenv("STORAGE_PROVIDER", "sftp")
    STORAGE_PREFIX = os.getenv("STORAGE_PREFIX", "statements")
    STORAGE_YEARS = [y.strip() for y in os.getenv("STORAGE_YEARS", "2023,2024,2025").split(",") if y.strip()]
    STORAGE_PAGE_SIZE = int(os.getenv("STORAGE_PAGE_SIZE", "100"))
    STORAGE_TIMEOUT_SECONDS = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "30"))

    # Reconciliation run defaults
    BATCH_SIZE = int(os.getenv("RECON_BATCH_SIZE", "50"))
    MAX_RECORDS = int(os.getenv("RECON_MAX_RECORDS", "1000"))
    WORKERS = int(os.getenv("RECON_WORKERS", "1"))
    TIMEOUT_SECONDS = float(os.getenv("RECON_TIMEOUT_SECONDS", "0")) or None
    STATUS_SAMPLE_SIZE = int(os.getenv("RECON_STATUS_SAMPLE_SIZE", "10"))

    # SFTP Configuration
    SFTP_HOST = os.getenv("SFTP_HOST", "sftp-server")
    SFTP_PORT = int(os.getenv("SFTP_PORT", "22"))
    SFTP_USERNAME = os.getenv("SFTP_USERNAME", "testuser")
    SFTP_PASSWORD = os.getenv("SFTP_PASSWORD", "testpass")
    SFTP_ROOT = os.getenv("SFTP_ROOT", "/uploads")

    # S3 Configuration
    S3_BUCKET = os.getenv("S3_BUCKET_NAME", "statements-uploads")
    S3_REGION = os.getenv("S3_REGION", "us-east-1")
    S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT") or None
    S3_ACCESS_KEY_ID = os.getenv("S3_ACCESS_KEY_ID") or None
    S3_SECRET_ACCESS_KEY = os.getenv("S3_SECRET_ACCESS_KEY") or None

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


# Create a singleton instance
settings = Settings()
