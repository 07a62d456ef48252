import logging
from typing import Callable, List, Optional

from .cancellation import CancelToken

logger = logging.getLogger(__name__)


def scan(
    fetch_page: Callable[[int, int], List],
    batch_size: int,
    max_records: Optional[int],
    visit: Callable,
    cancel: Optional[CancelToken] = None,
    on_page: Optional[Callable[[List], None]] = None,
    on_batch: Optional[Callable[[int], None]] = None,
) -> int:
    """Page through a collection and visit each record.

    ``fetch_page(skip, limit)`` returns at most ``limit`` records; a short
    page is not taken as the end. Stops on an empty page or once
    ``max_records`` records were visited.
    Only one page is held at a time. Returns the number visited.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    cancel = cancel or CancelToken()
    processed = 0
    skip = 0

    while max_records is None or processed < max_records:
        cancel.check("batch scan")

        limit = batch_size if max_records is None else min(batch_size, max_records - processed)
        page = fetch_page(skip, limit)
        if not page:
            break

        page = page[:limit]
        if on_page:
            on_page(page)
        for record in page:
            visit(record)
            processed += 1

        logger.debug(f"Scanned batch at offset {skip}: {len(page)} records ({processed} total)")
        if on_batch:
            on_batch(processed)

        skip += len(page)

    return processed
