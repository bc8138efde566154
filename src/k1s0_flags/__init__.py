"""k1s0 flags library."""

from .client import FlagsClient
from .configuration import (
    Configuration,
    FlagDefinition,
    FlagRule,
    FlagValueType,
    Segment,
    SegmentOperator,
    SegmentRule,
    parse_configuration,
)
from .evaluator import FlagEvaluator, evaluate_flag
from .events import FlagsEvent, FlagsEventType, FlagsListener
from .exceptions import (
    ApiError,
    AuthenticationError,
    ConfigError,
    FlagsError,
    FlagsErrorCodes,
    ParseError,
    RequestTimeoutError,
    TypeMismatchError,
    ValidationError,
)
from .logger import new_logger
from .models import (
    ClientState,
    ErrorCode,
    EvaluatedFlag,
    EvaluationContext,
    FlagSnapshot,
    ResolutionDetails,
    ResolutionReason,
)
from .settings import FlagsConfig, load_config
from .storage import FileKeyValueStore, InMemoryKeyValueStore, KeyValueStore
from .store import ConfigurationStore
from .streaming import EventSource, EventSourceFactory, HttpEventSource, SseMessage
from .sync import SyncController

__all__ = [
    "FlagsClient",
    "FlagsConfig",
    "load_config",
    "new_logger",
    "Configuration",
    "FlagDefinition",
    "FlagRule",
    "FlagValueType",
    "Segment",
    "SegmentOperator",
    "SegmentRule",
    "parse_configuration",
    "ConfigurationStore",
    "FlagEvaluator",
    "evaluate_flag",
    "SyncController",
    "EvaluationContext",
    "EvaluatedFlag",
    "FlagSnapshot",
    "ResolutionDetails",
    "ResolutionReason",
    "ErrorCode",
    "ClientState",
    "FlagsEvent",
    "FlagsEventType",
    "FlagsListener",
    "EventSource",
    "EventSourceFactory",
    "HttpEventSource",
    "SseMessage",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "FileKeyValueStore",
    "FlagsError",
    "FlagsErrorCodes",
    "ValidationError",
    "AuthenticationError",
    "ApiError",
    "RequestTimeoutError",
    "TypeMismatchError",
    "ParseError",
    "ConfigError",
]
