"""Application constants."""

USER_AGENT = "returnsync/1.0 (+seller-returns reconciliation)"
STAGES = (
    "crawl",
    "match",
    "enrich",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20

ID_FIELD = "return_id"
KEY_FIELD = "return_sn"
RECORD_LIST_FIELD = "exceptional_case_list"
CURSOR_TYPE = 1
ADDRESS_EVENT_TYPE = "SHOPEE_ADDRESS_EXTRACTED"

WAREHOUSE_UNKNOWN = "unknown"
WAREHOUSE_OTHER = "other"
ADDRESS_TIMEOUT = "timeout"
ADDRESS_BLOCKED = "blocked"
ADDRESS_NOT_FOUND = "address not found"
ADDRESS_CANCELLED = "cancelled"

JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "event",
    "status",
    "page",
    "rows_in",
    "rows_out",
    "key",
    "error_code",
    "duration_ms",
    "message",
)
