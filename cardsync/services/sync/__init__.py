"""Bulk sync engine: fetch, paginate, persist and track provider data.

Public API:
  - SyncOrchestrator – runs one sync across many targets
  - Paginator / StopReason – page iteration and why it ended
  - ConcurrencyController – fetch and write slot bounds
  - CancellationToken – cooperative cancellation from ``sync_control``
  - UpsertBatcher – dedupe, chunk and persist records
  - StatusTracker – per-target status lifecycle
  - JsonApiSource / CsvFeedSource – provider sources
"""

from .batcher import (DEFAULT_CHUNK_SIZE, BatchOutcome, UpsertBatcher,
                      chunked, dedupe_records, default_batch_retry)
from .cancellation import CancellationToken, control_table_reader
from .concurrency import ConcurrencyController
from .csv_feed import (RowFilter, normalize_product_row, normalize_rows,
                       parse_csv_rows)
from .envelope import (Envelope, Page, UnrecognizedShape, extract_envelope,
                       page_from_body)
from .errors import (BatchWriteError, SlotTimeout, SyncConfigurationError,
                     SyncError, TargetNotFoundError)
from .orchestrator import (SyncOrchestrator, SyncResult, SyncSummary,
                           TargetResult, storage_writer)
from .paginator import PaginationMode, Paginator, StopReason
from .sources import (CSV_FEED, JSON_API, SOURCES, CsvFeedSource,
                      JsonApiSource, RecordSource, SourceFetch, normalize_card)
from .status import (StatusTracker, get_status, list_statuses, list_stuck,
                     reset_status)

__all__ = [
    # === Orchestration
    "SyncOrchestrator",
    "SyncResult",
    "SyncSummary",
    "TargetResult",
    "storage_writer",
    # === Pagination & envelopes
    "Envelope",
    "Page",
    "PaginationMode",
    "Paginator",
    "StopReason",
    "UnrecognizedShape",
    "extract_envelope",
    "page_from_body",
    # === Concurrency & cancellation
    "CancellationToken",
    "ConcurrencyController",
    "control_table_reader",
    # === Persistence
    "BatchOutcome",
    "DEFAULT_CHUNK_SIZE",
    "UpsertBatcher",
    "chunked",
    "dedupe_records",
    "default_batch_retry",
    # === Status
    "StatusTracker",
    "get_status",
    "list_statuses",
    "list_stuck",
    "reset_status",
    # === Sources
    "CSV_FEED",
    "CsvFeedSource",
    "JSON_API",
    "JsonApiSource",
    "RecordSource",
    "RowFilter",
    "SOURCES",
    "SourceFetch",
    "normalize_card",
    "normalize_product_row",
    "normalize_rows",
    "parse_csv_rows",
    # === Errors
    "BatchWriteError",
    "SlotTimeout",
    "SyncConfigurationError",
    "SyncError",
    "TargetNotFoundError",
]
