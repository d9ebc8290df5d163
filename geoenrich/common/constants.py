"""Application constants."""

USER_AGENT = "geoenrich/1.0 (+hotspot-enrichment)"

UNRESOLVED_MUNICIPALITY = "N/A"
UNASSOCIATED_REGION = "NÃO ASSOCIADO"
COORDINATE_PRECISION = 5

DEFAULT_BATCH_SIZE = 55
DEFAULT_MAX_CONCURRENT_BATCHES = 6
DEFAULT_REQUESTS_PER_WINDOW = 600
DEFAULT_WINDOW_DURATION_MS = 60000
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_MS = 1000

UNRESOLVED_POLICIES = ("drop", "null")
ESCALATION_MODES = ("all", "unresolved")

EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "tier",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "message",
)
