"""Paginated initial load of a remote table."""

import logging
from typing import Any, Callable

from ..backend.base import RemoteBackend, ScopedQuery
from ..errors import RemoteTransportError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000

RowIngest = Callable[[dict[str, Any]], Any]


class PageFetcher:
    """Loads every row in scope, one fixed-size window at a time."""

    def __init__(self, backend: RemoteBackend, page_size: int = DEFAULT_PAGE_SIZE):
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.backend = backend
        self.page_size = page_size

    async def load(self, query: ScopedQuery, ingest: RowIngest) -> int:
        """Count the rows in scope, then fetch and ingest them page by page.

        A failed count or fetch is logged and ends the load; rows already
        ingested stay in place and nothing is retried.

        Args:
            query: Table, prefilter and conditions to scope by.
            ingest: Called once per fetched row.

        Returns:
            Number of rows passed to ``ingest``.
        """
        try:
            count = await self.backend.count(query)
        except RemoteTransportError as e:
            logger.warning(f"Count failed for {query.schema}.{query.table}: {e}")
            return 0

        if not count:
            logger.debug(f"No rows to load for {query.schema}.{query.table}")
            return 0

        ingested = 0
        offset = 0
        while offset < count:
            end = min(offset + self.page_size, count) - 1
            logger.debug(f"Fetching {query.table} rows [{offset}, {end}]")
            try:
                rows = await self.backend.fetch_page(query, offset, end - offset + 1)
            except RemoteTransportError as e:
                logger.warning(
                    f"Fetch failed for {query.schema}.{query.table} at offset {offset}: {e}"
                )
                return ingested

            for row in rows:
                ingest(row)
                ingested += 1

            offset += self.page_size

        logger.info(f"Loaded {ingested} of {count} rows from {query.schema}.{query.table}")
        return ingested
