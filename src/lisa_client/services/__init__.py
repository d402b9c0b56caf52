from .models import (
    AffectedFile,
    Issue,
    Position,
    Range,
    ScanFile,
    ScanRecord,
    ScanRequest,
    ScanStartResponse,
    ScanStatus,
    Severity,
    summarize_issues,
)
from .notifications import ChangeEmitter, LoggingNotifier, Notifier, NullStatusIndicator, StatusIndicator
from .poll_scheduler import PollScheduler
from .result_store import ResultStore
from .scan_api_client import (
    ScanApiClient,
    ScanApiClientError,
    ScanApiConnectionError,
    ScanApiRequestError,
    ScanRejectedError,
)
from .scan_service import (
    NoValidFilesError,
    NotAuthenticatedError,
    ScanService,
    ScanSubmissionError,
    display_file_name,
    filter_scannable,
    generate_scan_title,
)

__all__ = [
    "AffectedFile",
    "ChangeEmitter",
    "Issue",
    "LoggingNotifier",
    "NoValidFilesError",
    "NotAuthenticatedError",
    "Notifier",
    "NullStatusIndicator",
    "PollScheduler",
    "Position",
    "Range",
    "ResultStore",
    "ScanApiClient",
    "ScanApiClientError",
    "ScanApiConnectionError",
    "ScanApiRequestError",
    "ScanFile",
    "ScanRecord",
    "ScanRejectedError",
    "ScanRequest",
    "ScanService",
    "ScanStartResponse",
    "ScanStatus",
    "ScanSubmissionError",
    "Severity",
    "StatusIndicator",
    "display_file_name",
    "filter_scannable",
    "generate_scan_title",
    "summarize_issues",
]
