"""Health subsystem — check engine, JSON-lines history, cycle scheduler."""

from .engine import check_api_health, check_stream, classify_error, head_with_ttfb
from .history import HistoryStore
from .outcomes import ApiHealthOutcome, ErrorKind, FailureStep, HistoryRecord, StreamFailure, StreamSuccess
from .scheduler import CycleScheduler, SchedulerState
