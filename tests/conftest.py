"""Pytest configuration for the ChatBridge test suite."""

from __future__ import annotations

from dataclasses import dataclass
from collections.abc import Iterator, Mapping, Sequence

import pytest

from chatbridge.chat.content_types import BUILTIN_CONTENT_TYPES, ContentTypeRegistry
from chatbridge.chat.orchestrator import AgentRunOrchestrator
from chatbridge.settings import AppSettings
from chatbridge.state_store import InMemoryStateStore
from tests.chat_utils import ManualDispatcher, ManualPollTimer, RecordingBackend


@pytest.fixture(autouse=True)
def _isolated_log_dir(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> None:
    """Keep log files written by ``configure_logging`` out of the home directory."""

    monkeypatch.setenv("CHATBRIDGE_LOG_DIR", str(tmp_path_factory.mktemp("logs")))


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def dispatcher() -> ManualDispatcher:
    return ManualDispatcher()


@pytest.fixture
def timer() -> ManualPollTimer:
    return ManualPollTimer()


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def registry() -> ContentTypeRegistry:
    """Fresh registry so tests never mutate the process-wide default."""

    return ContentTypeRegistry(BUILTIN_CONTENT_TYPES)


@pytest.fixture
def orchestrator(
    store: InMemoryStateStore,
    backend: RecordingBackend,
    timer: ManualPollTimer,
    dispatcher: ManualDispatcher,
    registry: ContentTypeRegistry,
) -> Iterator[AgentRunOrchestrator]:
    orchestrator = AgentRunOrchestrator(
        store=store,
        backend=backend,
        timer=timer,
        dispatcher=dispatcher,
        registry=registry,
        settings=AppSettings(),
    )
    orchestrator.attach()
    yield orchestrator
    orchestrator.detach()


def _normalise_marker_name(name: str) -> str:
    return name.replace("-", "_")


_SUITE_STASH_KEY = pytest.StashKey["SuiteDefinition"]()


@dataclass(frozen=True)
class SuiteDefinition:
    """Describe how a logical test suite should filter collected tests."""

    name: str
    include_any: Sequence[str] = ()
    exclude_any: Sequence[str] = ()
    include_by_default: bool = True
    description: str = ""

    def should_run(self, item: pytest.Item) -> bool:
        markers = {_normalise_marker_name(marker.name) for marker in item.iter_markers()}
        include = {_normalise_marker_name(name) for name in self.include_any}
        exclude = {_normalise_marker_name(name) for name in self.exclude_any}
        if include and markers & include:
            return True
        if not self.include_by_default:
            return False
        return not markers & exclude


SUITES: Mapping[str, SuiteDefinition] = {
    "core": SuiteDefinition(
        name="core",
        description="All unit tests (default)",
    ),
    "smoke": SuiteDefinition(
        name="smoke",
        include_any=("smoke",),
        include_by_default=False,
        description="End-to-end chat scenarios only",
    ),
}


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--suite",
        action="store",
        choices=sorted(SUITES),
        help="Select the logical test suite to run",
    )


def pytest_configure(config: pytest.Config) -> None:
    suite_name = config.getoption("--suite")
    if suite_name is None:
        return
    config.stash[_SUITE_STASH_KEY] = SUITES[suite_name]


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    suite = config.stash.get(_SUITE_STASH_KEY, None)
    if suite is None:
        return

    selected: list[pytest.Item] = []
    deselected: list[pytest.Item] = []
    for item in items:
        if suite.should_run(item):
            selected.append(item)
        else:
            deselected.append(item)

    if deselected:
        config.hook.pytest_deselected(items=deselected)
        items[:] = selected
