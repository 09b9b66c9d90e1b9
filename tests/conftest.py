from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover
    sys.path.append(str(ROOT))

from common.config import RunConfig  # noqa: E402
from rabbit.models import JobStatus  # noqa: E402
from storage.filesystem import LocalObjectStorage  # noqa: E402


class FakeResponse:
    def __init__(self, status: int, url: str) -> None:
        self.status = status
        self.url = url


class FakePage:
    def __init__(self) -> None:
        self.url: Optional[str] = None
        self.closed = False

    def is_closed(self) -> bool:
        return self.closed


class FakeSessions:
    """Stands in for RenderSessionManager.

    ``outcomes`` maps a url to what navigating to it yields: an HTTP status,
    an exception to raise, or a list of those consumed one per attempt.
    Urls without a scripted outcome answer 200.
    """

    def __init__(self, outcomes: Optional[Dict[str, Any]] = None) -> None:
        self._outcomes = dict(outcomes or {})
        self.navigations: List[Tuple[str, int]] = []
        self.pages: List[FakePage] = []
        self.launches = 0
        self.recycles = 0
        self.closed = False

    async def launch(self) -> None:
        self.launches += 1

    async def recycle(self) -> None:
        self.recycles += 1

    async def close(self) -> None:
        self.closed = True

    async def new_page(self) -> FakePage:
        page = FakePage()
        self.pages.append(page)
        return page

    async def navigate(self, page: FakePage, url: str, timeout_ms: int) -> FakeResponse:
        self.navigations.append((url, timeout_ms))
        page.url = url

        outcome = self._outcomes.get(url, 200)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if outcome else 200
        if isinstance(outcome, BaseException):
            raise outcome
        return FakeResponse(outcome, url)

    async def capture(self, page: FakePage) -> bytes:
        return f"png of {page.url}".encode()

    async def close_page(self, page: FakePage) -> None:
        page.closed = True

    async def __aenter__(self) -> "FakeSessions":
        await self.launch()
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()

    def attempts_of(self, url: str) -> List[int]:
        return [timeout for target, timeout in self.navigations if target == url]


class RecordingReporter:
    def __init__(self) -> None:
        self.events: List[Tuple[Any, ...]] = []
        self.details: List[Optional[str]] = []

    async def on_started(self, job_id: str, urls_count: int) -> None:
        self.events.append(("started", job_id, urls_count))

    async def on_progress(self, job_id: str, completed: int) -> None:
        self.events.append(("progress", job_id, completed))

    async def on_terminal(
            self,
            job_id: str,
            status: JobStatus,
            s3_key: Optional[str] = None,
            detail: Optional[str] = None,
    ) -> None:
        self.events.append(("terminal", job_id, status, s3_key))
        self.details.append(detail)

    @property
    def progress(self) -> List[int]:
        return [event[2] for event in self.events if event[0] == "progress"]

    @property
    def terminals(self) -> List[Tuple[Any, ...]]:
        return [event for event in self.events if event[0] == "terminal"]


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def run_config() -> RunConfig:
    return RunConfig(
        max_attempts=3,
        initial_timeout_ms=1_000,
        timeout_multiplier=2,
        base_delay_ms=0,
        jitter_ms=0,
        circuit_failure_threshold=5,
        circuit_reset_timeout_ms=60_000,
    )


@pytest.fixture()
def storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "objects")


@pytest.fixture()
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()
