"""
Shared pytest fixtures for implspine tests.

This module provides:
- Page-broker / settings / logging reset between tests
- Sample rustdoc fragment text
- A helper that writes fragments into a temporary ``implementors/`` tree
"""

import sys
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import structlog

# Ensure implspine and the tests helpers are importable
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

from implspine.core.broker import reset_broker
from implspine.core.settings import clear_settings_cache
from tests._support.fragments import UNPIN_FRAGMENT


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_global_state(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Each test gets a fresh page broker, default settings and default logging."""
    for name in (
        "IMPLSPINE_STRICT_REGISTRATION",
        "IMPLSPINE_MAX_CONCURRENT_LOADS",
        "IMPLSPINE_LOG_LEVEL",
        "IMPLSPINE_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_broker()
    clear_settings_cache()
    yield
    reset_broker()
    clear_settings_cache()
    structlog.reset_defaults()


# =============================================================================
# Sample data
# =============================================================================


@pytest.fixture
def unpin_fragment() -> str:
    return UNPIN_FRAGMENT


@pytest.fixture
def fragment_dir(tmp_path: Path) -> Callable[[str, str], Path]:
    """Return a writer: ``write(doc_root, text)`` -> path of the written fragment.

    Each doc root gets its own ``implementors/core/marker/`` tree, the way
    separately documented libraries do.
    """

    def write(doc_root: str, text: str, filename: str = "trait.Unpin.js") -> Path:
        target = tmp_path / doc_root / "implementors" / "core" / "marker"
        target.mkdir(parents=True, exist_ok=True)
        path = target / filename
        path.write_text(text, encoding="utf-8")
        return path

    return write
