# This file is part of awsmgr. See LICENSE file for license information.
"""Run the same query against many regions at once."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

log = logging.getLogger(__name__)

Row = TypeVar("Row")

DEFAULT_MAX_WORKERS = 16


def scan_regions(
    regions: Iterable[str],
    query: Callable[[str], Optional[Sequence[Row]]],
    *,
    max_workers: Optional[int] = None,
) -> List[Row]:
    """Call ``query(region)`` for every region concurrently.

    Regions whose query raises or returns nothing are left out of the
    result. There are no retries. Rows are ordered by region name, keeping
    the order ``query`` returned them in within a region.

    Args:
        regions: region names, duplicates are scanned once
        query: callable returning the rows found in one region
        max_workers: thread pool size, defaults to DEFAULT_MAX_WORKERS

    Returns:
        list of rows from every region that returned some
    """
    regions = list(dict.fromkeys(regions))
    if not regions:
        return []

    found: List[Tuple[str, List[Row]]] = []
    lock = threading.Lock()

    def scan(region: str):
        try:
            rows = query(region)
        except Exception as e:  # pylint: disable=broad-except
            log.debug("Skipping region %s: %s", region, e)
            return
        if not rows:
            return
        with lock:
            found.append((region, list(rows)))

    workers = min(max_workers or DEFAULT_MAX_WORKERS, len(regions))
    log.debug("Scanning %d regions with %d workers", len(regions), workers)
    with ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix="awsmgr-scan"
    ) as executor:
        list(executor.map(scan, regions))

    found.sort(key=lambda item: item[0])
    return [row for _, rows in found for row in rows]
