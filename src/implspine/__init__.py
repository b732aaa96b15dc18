"""implspine - order-independent aggregation of rustdoc implementor fragments.

Each documented library ships one fragment per marker trait listing its
implementors. Fragments load independently and in any order; the
:class:`~implspine.core.broker.Broker` merges them for the marker page's
single consumer, delivering every library exactly once.

Quick start::

    from implspine import ImplementorCollector, page_broker
    from implspine.fragments import load_fragments_sync

    with page_broker(marker="core::marker::Unpin") as broker:
        collector = ImplementorCollector()
        broker.register_consumer(collector)
        load_fragments_sync(paths, broker)
        print(collector.source_ids)
"""

from implspine.consumers import ImplementorCollector
from implspine.core import (
    Broker,
    ConsumerHandle,
    ContributeOutcome,
    Contribution,
    ImplementorRecord,
    contribute,
    contribute_payload,
    get_broker,
    page_broker,
    register_consumer,
    reset_broker,
)

__version__ = "0.1.0"

__all__ = [
    "Broker",
    "ConsumerHandle",
    "ContributeOutcome",
    "Contribution",
    "ImplementorCollector",
    "ImplementorRecord",
    "contribute",
    "contribute_payload",
    "get_broker",
    "page_broker",
    "register_consumer",
    "reset_broker",
    "__version__",
]
