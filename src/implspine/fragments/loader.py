"""
Asynchronous fragment loader.

Plays the part of the page's resource loader: every fragment is read
concurrently and handed to the broker as soon as *its* read completes, so the
broker sees contributions in completion order, not in the order the paths
were given. Reads happen in worker threads; the broker is only ever called
from the event loop, one fragment per turn.

A fragment that cannot be read or decoded is recorded as a reject on the
broker and reported in the :class:`LoadReport`; the other fragments load
normally.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from implspine.core.broker import Broker, ContributeOutcome
from implspine.core.errors import ConfigError, FragmentParseError, FragmentReadError
from implspine.core.logging import LogContext, get_logger
from implspine.core.rejects import Reject, RejectReason
from implspine.core.settings import ImplSpineSettings, get_settings
from implspine.fragments.parser import parse_payload_text

__all__ = ["LoadReport", "load_fragments", "load_fragments_sync"]

logger = get_logger(__name__)

FragmentReader = Callable[[Path], Awaitable[str]]


@dataclass
class LoadReport:
    """Outcome of one :func:`load_fragments` call.

    Attributes:
        loaded: Fragment paths contributed to the broker, in completion order
        failed: Fragment path -> error message for unreadable/undecodable files
        outcomes: (path, per-library outcomes) in completion order
    """

    loaded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    outcomes: list[tuple[str, list[ContributeOutcome]]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def count(self, outcome: ContributeOutcome) -> int:
        return sum(results.count(outcome) for _, results in self.outcomes)


def _concurrency_setting() -> int:
    try:
        return get_settings().max_concurrent_loads
    except ConfigError as e:
        logger.warning("settings_invalid_using_defaults", **e.to_dict())
        return ImplSpineSettings.model_fields["max_concurrent_loads"].default


async def _read_text(path: Path) -> str:
    return await asyncio.to_thread(path.read_text, encoding="utf-8")


async def load_fragments(
    paths: Iterable[str | Path],
    broker: Broker,
    *,
    max_concurrency: int | None = None,
    reader: FragmentReader | None = None,
) -> LoadReport:
    """Read fragments concurrently and contribute each one as it completes.

    Args:
        paths: Fragment files (rustdoc ``.js`` scripts or JSON payloads)
        broker: Page broker receiving the contributions
        max_concurrency: Concurrent read limit (defaults to the
            ``max_concurrent_loads`` setting)
        reader: Coroutine used to read a path; defaults to a threaded
            ``Path.read_text``
    """
    limit = max_concurrency or _concurrency_setting()
    semaphore = asyncio.Semaphore(limit)
    read = reader or _read_text
    report = LoadReport()

    async def fetch(path: Path) -> tuple[Path, str | FragmentReadError]:
        async with semaphore:
            try:
                return path, await read(path)
            except Exception as e:
                return path, FragmentReadError(
                    f"Cannot read fragment: {e}", cause=e
                ).with_context(source_locator=str(path))

    fragment_paths = [Path(p) for p in paths]

    async with LogContext(marker=broker.marker):
        logger.info("fragments_loading", count=len(fragment_paths), concurrency=limit)

        tasks = [asyncio.create_task(fetch(p)) for p in fragment_paths]
        for next_done in asyncio.as_completed(tasks):
            path, text = await next_done
            locator = str(path)

            if isinstance(text, FragmentReadError):
                _record_failure(broker, report, locator, text, "READ", RejectReason.FRAGMENT_READ_ERROR)
                continue

            try:
                payload = parse_payload_text(text, source_locator=locator)
            except FragmentParseError as e:
                _record_failure(broker, report, locator, e, "PARSE", RejectReason.FRAGMENT_PARSE_ERROR)
                continue

            outcomes = broker.contribute_payload(payload, source_locator=locator)
            report.loaded.append(locator)
            report.outcomes.append((locator, outcomes))

        logger.info(
            "fragments_loaded",
            loaded=len(report.loaded),
            failed=len(report.failed),
        )

    return report


def load_fragments_sync(
    paths: Iterable[str | Path],
    broker: Broker,
    *,
    max_concurrency: int | None = None,
) -> LoadReport:
    """Blocking wrapper around :func:`load_fragments` for synchronous callers."""
    return asyncio.run(load_fragments(paths, broker, max_concurrency=max_concurrency))


def _record_failure(
    broker: Broker,
    report: LoadReport,
    locator: str,
    error: FragmentReadError | FragmentParseError,
    stage: str,
    reason_code: str,
) -> None:
    report.failed[locator] = error.message
    broker.rejects.write(
        Reject(
            stage=stage,
            reason_code=reason_code,
            reason_detail=error.message,
            source_locator=locator,
        )
    )
    logger.warning("fragment_failed", reason_code=reason_code, **error.to_dict())
