"""In-memory inventory of blobs under the ``prefix/year/month`` layout."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Tuple

from .cancellation import CancelToken
from .errors import ListingError
from .models import StorageBlob

logger = logging.getLogger(__name__)

MONTHS = [str(m) for m in range(1, 13)]


class StorageIndex:
    """Best-effort snapshot of blob paths.

    Membership is advisory: a miss must be confirmed with an existence probe
    before anything is treated as missing.
    """

    def __init__(self, blobs: Optional[Dict[str, StorageBlob]] = None, skipped_partitions=None):
        self.blobs = dict(blobs or {})
        self.skipped_partitions = list(skipped_partitions or [])

    @property
    def paths(self):
        return set(self.blobs)

    def __contains__(self, path):
        return path in self.blobs

    def __len__(self):
        return len(self.blobs)

    def __iter__(self):
        return iter(self.blobs)


def _list_partition(storage, prefix: str, page_size: int, cancel: CancelToken) -> List[StorageBlob]:
    blobs = []
    offset = 0
    while True:
        cancel.check(f"listing {prefix}")
        entries = storage.list(prefix, limit=page_size, offset=offset)
        for entry in entries:
            if entry.get("name"):
                blobs.append(StorageBlob(
                    path=f"{prefix}/{entry['name']}",
                    size=entry.get("size"),
                    last_modified=entry.get("last_modified"),
                ))
        if len(entries) < page_size:
            return blobs
        offset += page_size


def _safe_list_partition(storage, prefix, page_size, cancel) -> Tuple[str, Optional[List[StorageBlob]]]:
    try:
        return prefix, _list_partition(storage, prefix, page_size, cancel)
    except ListingError as e:
        # Missing year/month folders are normal
        logger.debug(f"Partition {prefix} skipped: {e}")
        return prefix, None


def build_storage_index(
    storage,
    roots: Iterable[str],
    prefix: str = "statements",
    partitions: Iterable[str] = MONTHS,
    page_size: int = 100,
    cancel: Optional[CancelToken] = None,
    workers: int = 1,
) -> StorageIndex:
    cancel = cancel or CancelToken()
    partitions = list(partitions)
    prefixes = [f"{prefix}/{root}/{part}" for root in roots for part in partitions]

    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda p: _safe_list_partition(storage, p, page_size, cancel), prefixes))
    else:
        results = [_safe_list_partition(storage, p, page_size, cancel) for p in prefixes]

    index = StorageIndex()
    for partition, blobs in results:
        if blobs is None:
            index.skipped_partitions.append(partition)
            continue
        for blob in blobs:
            index.blobs[blob.path] = blob

    logger.info(
        f"Indexed {len(index)} blobs across {len(prefixes) - len(index.skipped_partitions)} partitions "
        f"({len(index.skipped_partitions)} skipped)"
    )
    return index
