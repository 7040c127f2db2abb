"""
TinyURL - URL shortener with reputation checks.

This package shortens long URLs into six character keys and redirects on
lookup. Submissions pass a layered reputation gate (domain whitelist, SURBL
spam domain lookup and a live reachability probe) backed by a short-lived
decision cache.
"""

__version__ = "0.1.0"
__author__ = "TinyURL Team"

from tinyurl.exceptions import (
    TinyURLError,
    InvalidInputError,
    ReputationDeniedError,
    WhitelistMissError,
    SpamDomainError,
    UnreachableError,
    CollisionExhaustedError,
    SourceUnavailableError,
    StorageError,
    AccessDenied,
)
from tinyurl.enums import (
    CheckType,
    Decision,
    SurblStatus,
    GateState,
    LogLevel,
)
from tinyurl.config import (
    TimeoutConfig,
    WhitelistConfig,
    SurblConfig,
    CacheConfig,
    StorageConfig,
    ServerConfig,
    LoggingConfig,
    SystemConfig,
    parse_check_flags,
    format_check_flags,
)
from tinyurl.models import (
    UrlRecord,
    ReputationDecision,
    DerivedKey,
    SubmissionResult,
    KEY_LENGTH,
    is_valid_key,
)
from tinyurl.audit_logger import (
    AuditLogger,
    LogEntry,
    request_context,
)
from tinyurl.key_deriver import (
    KeyDeriver,
    hash_url,
)
from tinyurl.persistence import (
    Persistence,
    MemoryStorage,
    SqliteStorage,
    create_storage,
)
from tinyurl.decision_cache import (
    DecisionCache,
)
from tinyurl.whitelist import (
    WhitelistMatcher,
    WhitelistSnapshot,
)
from tinyurl.surbl import (
    SurblChecker,
    TldTable,
    query_domain,
)
from tinyurl.reachability import (
    ReachabilityProbe,
)
from tinyurl.gate import (
    ReputationGate,
    GateOutcome,
)
from tinyurl.dump_key import (
    generate_dump_key,
    write_dump_key,
)
from tinyurl.service import (
    ShortenerService,
    build_service,
)
from tinyurl.web import (
    create_app,
)
from tinyurl.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Exceptions
    "TinyURLError",
    "InvalidInputError",
    "ReputationDeniedError",
    "WhitelistMissError",
    "SpamDomainError",
    "UnreachableError",
    "CollisionExhaustedError",
    "SourceUnavailableError",
    "StorageError",
    "AccessDenied",
    # Enums
    "CheckType",
    "Decision",
    "SurblStatus",
    "GateState",
    "LogLevel",
    # Configuration
    "TimeoutConfig",
    "WhitelistConfig",
    "SurblConfig",
    "CacheConfig",
    "StorageConfig",
    "ServerConfig",
    "LoggingConfig",
    "SystemConfig",
    "parse_check_flags",
    "format_check_flags",
    # Models
    "UrlRecord",
    "ReputationDecision",
    "DerivedKey",
    "SubmissionResult",
    "KEY_LENGTH",
    "is_valid_key",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    "request_context",
    # Key Deriver
    "KeyDeriver",
    "hash_url",
    # Persistence
    "Persistence",
    "MemoryStorage",
    "SqliteStorage",
    "create_storage",
    # Decision Cache
    "DecisionCache",
    # Whitelist
    "WhitelistMatcher",
    "WhitelistSnapshot",
    # SURBL
    "SurblChecker",
    "TldTable",
    "query_domain",
    # Reachability
    "ReachabilityProbe",
    # Reputation Gate
    "ReputationGate",
    "GateOutcome",
    # Dump Key
    "generate_dump_key",
    "write_dump_key",
    # Service
    "ShortenerService",
    "build_service",
    # Web
    "create_app",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
]
