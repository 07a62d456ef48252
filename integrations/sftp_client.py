import logging
import posixpath
import stat
import threading
from datetime import datetime, timezone
from typing import Dict, Iterator, List

import paramiko

from core.errors import BlobNotFound, ListingError, StorageError
from core.models import StorageBlob
from integrations.storage import StorageProvider

logger = logging.getLogger(__name__)


class SFTPStorage(StorageProvider):
    """Statement blobs kept on an SFTP server below ``root``."""

    name = "sftp"

    def __init__(self, host, port, username, password, root="/uploads", timeout=30.0):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.root = root.rstrip("/") or "/"
        self.timeout = timeout
        self.ssh_client = None
        self.sftp_client = None
        # paramiko multiplexes one channel; serialise requests from worker threads
        self._lock = threading.RLock()

    def is_configured(self):
        return bool(self.host and self.username)

    def connect(self):
        try:
            self.ssh_client = paramiko.SSHClient()
            # Security: Only accept known hosts (not AutoAddPolicy which accepts any host)
            self.ssh_client.set_missing_host_key_policy(paramiko.WarningPolicy())

            self.ssh_client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
            )
            self.sftp_client = self.ssh_client.open_sftp()
            self.sftp_client.get_channel().settimeout(self.timeout)

            logger.info(f"Connected to SFTP server {self.host}:{self.port}")
            return True

        except (paramiko.SSHException, OSError) as e:
            logger.error(f"SFTP connection failed: {e}")
            self.close()
            return False

    def close(self):
        if self.sftp_client:
            self.sftp_client.close()
            self.sftp_client = None

        if self.ssh_client:
            self.ssh_client.close()
            self.ssh_client = None

    def _sftp(self):
        if self.sftp_client is None and not self.connect():
            raise StorageError(f"Cannot connect to SFTP server {self.host}:{self.port}")
        return self.sftp_client

    def _remote(self, path):
        return posixpath.join(self.root, path.lstrip("/"))

    @staticmethod
    def _entry(attr) -> Dict:
        modified = None
        if attr.st_mtime is not None:
            modified = datetime.fromtimestamp(attr.st_mtime, tz=timezone.utc)
        return {"name": attr.filename, "size": attr.st_size, "last_modified": modified}

    def _listdir(self, remote):
        # Sorted so offset paging is stable between calls
        return sorted(
            (a for a in self._sftp().listdir_attr(remote) if a.filename not in (".", "..")),
            key=lambda a: a.filename,
        )

    def list(self, prefix: str, limit: int, offset: int = 0) -> List[Dict]:
        remote = self._remote(prefix)
        with self._lock:
            try:
                attrs = self._listdir(remote)
            except (IOError, paramiko.SSHException) as e:
                raise ListingError(prefix, str(e)) from e

        files = [a for a in attrs if not stat.S_ISDIR(a.st_mode or 0)]
        page = [self._entry(a) for a in files[offset:offset + limit]]
        logger.debug(f"Listed {len(page)} entries in {remote} (offset {offset})")
        return page

    def list_tree(self, prefix: str) -> Iterator[StorageBlob]:
        pending = [prefix.strip("/")]
        while pending:
            current = pending.pop()
            with self._lock:
                try:
                    attrs = self._listdir(self._remote(current))
                except (IOError, paramiko.SSHException) as e:
                    raise ListingError(current, str(e)) from e

            for attr in attrs:
                path = f"{current}/{attr.filename}" if current else attr.filename
                if stat.S_ISDIR(attr.st_mode or 0):
                    pending.append(path)
                else:
                    entry = self._entry(attr)
                    yield StorageBlob(path=path, size=entry["size"], last_modified=entry["last_modified"])

    def download(self, path: str) -> bytes:
        with self._lock:
            try:
                with self._sftp().open(self._remote(path), "rb") as handle:
                    return handle.read()
            except FileNotFoundError as e:
                raise BlobNotFound(path) from e
            except (IOError, paramiko.SSHException) as e:
                raise StorageError(f"Failed to download {path}: {e}") from e

    def exists(self, path: str) -> bool:
        with self._lock:
            try:
                self._sftp().stat(self._remote(path))
            except FileNotFoundError:
                return False
            except (IOError, paramiko.SSHException) as e:
                raise StorageError(f"Failed to stat {path}: {e}") from e
        return True

    def delete(self, path: str) -> None:
        with self._lock:
            try:
                self._sftp().remove(self._remote(path))
                logger.info(f"Deleted {path} from SFTP storage")
            except FileNotFoundError:
                logger.debug(f"{path} already absent from SFTP storage")
            except (IOError, paramiko.SSHException) as e:
                raise StorageError(f"Failed to delete {path}: {e}") from e
