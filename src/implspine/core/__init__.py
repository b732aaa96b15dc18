"""Core aggregation primitives: models, broker, idempotency, rejects, errors.

Modules
-------
models       ImplementorRecord, Contribution, ConsumerHandle
broker       Broker -- buffer/flush/at-most-once merge point, page lifetime
idempotency  SourceLedger -- first-write-wins source bookkeeping
rejects      Reject, RejectLog -- diagnostic channel for refused input
errors       ImplSpineError hierarchy
logging      structlog configuration
settings     ImplSpineSettings (pydantic-settings)
"""

from .broker import (
    Broker,
    BrokerStats,
    ContributeOutcome,
    contribute,
    contribute_payload,
    get_broker,
    page_broker,
    register_consumer,
    reset_broker,
    set_broker,
)
from .errors import (
    ConfigError,
    ConsumerAlreadyRegisteredError,
    ErrorCategory,
    FragmentParseError,
    FragmentReadError,
    ImplSpineError,
    MalformedContributionError,
)
from .idempotency import SourceLedger
from .models import ConsumerHandle, Contribution, ImplementorRecord
from .rejects import Reject, RejectLog, RejectReason

__all__ = [
    "Broker",
    "BrokerStats",
    "ContributeOutcome",
    "contribute",
    "contribute_payload",
    "get_broker",
    "page_broker",
    "register_consumer",
    "reset_broker",
    "set_broker",
    "ConfigError",
    "ConsumerAlreadyRegisteredError",
    "ErrorCategory",
    "FragmentParseError",
    "FragmentReadError",
    "ImplSpineError",
    "MalformedContributionError",
    "SourceLedger",
    "ConsumerHandle",
    "Contribution",
    "ImplementorRecord",
    "Reject",
    "RejectLog",
    "RejectReason",
]
