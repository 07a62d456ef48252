from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class CleanupScope(str, Enum):
    ALL = "all"
    STATEMENTS = "statements"
    FILES = "files"

    @classmethod
    def parse(cls, value) -> "CleanupScope":
        if isinstance(value, cls):
            return value
        aliases = {"statementsonly": cls.STATEMENTS, "filesonly": cls.FILES}
        key = str(value).strip().lower()
        if key in aliases:
            return aliases[key]
        return cls(key)

    @property
    def includes_statements(self) -> bool:
        return self in (CleanupScope.ALL, CleanupScope.STATEMENTS)

    @property
    def includes_files(self) -> bool:
        return self in (CleanupScope.ALL, CleanupScope.FILES)


class RunState(str, Enum):
    IDLE = "idle"
    INDEXING = "indexing"
    SCANNING = "scanning"
    DRY_RUN_COMPLETE = "dry_run_complete"
    DELETING = "deleting"
    COMPLETE = "complete"
    ERROR = "error"


class ClassificationStatus(str, Enum):
    VALID = "VALID"
    ORPHANED = "ORPHANED"
    UNVERIFIED = "UNVERIFIED"
    SKIPPED = "SKIPPED"


@dataclass
class FileRecord:
    id: str
    original_name: Optional[str] = None
    stored_name: Optional[str] = None
    storage_path: Optional[str] = None
    storage_provider: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None
    uploaded_by: Optional[str] = None

    @property
    def path(self) -> Optional[str]:
        # Older uploads only recorded the stored file name
        return self.storage_path or self.stored_name or None

    @property
    def display_name(self) -> str:
        return self.original_name or self.stored_name or "Unknown"


@dataclass
class StatementRecord:
    id: str
    account_name: Optional[str] = None
    bank_name: Optional[str] = None
    month: Optional[int] = None
    year: Optional[int] = None
    file_id: Optional[str] = None
    file: Optional[FileRecord] = None
    status: Optional[str] = None


@dataclass
class TransactionRecord:
    id: str
    statement_id: Optional[str]
    txn_date: Optional[datetime] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    direction: Optional[str] = None
    balance: Optional[float] = None


@dataclass(frozen=True)
class StorageBlob:
    path: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None


@dataclass(frozen=True)
class Classification:
    status: ClassificationStatus
    reason: str = ""

    @classmethod
    def valid(cls, reason=""):
        return cls(ClassificationStatus.VALID, reason)

    @classmethod
    def orphaned(cls, reason):
        return cls(ClassificationStatus.ORPHANED, reason)

    @property
    def is_orphaned(self) -> bool:
        return self.status is ClassificationStatus.ORPHANED


@dataclass
class OrphanRecord:
    type: str
    id: str
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "id": self.id, "reason": self.reason, "details": self.details}


@dataclass
class DeleteCounts:
    statements: int = 0
    files: int = 0
    transactions: int = 0
    blobs: int = 0

    def add(self, other: "DeleteCounts") -> None:
        self.statements += other.statements
        self.files += other.files
        self.transactions += other.transactions
        self.blobs += other.blobs

    @property
    def total(self) -> int:
        return self.statements + self.files + self.transactions + self.blobs

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)
