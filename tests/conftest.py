"""Shared pytest fixtures for ralph tests."""

from datetime import datetime, timedelta, timezone

import pytest

from ralph.lib.clock import to_iso
from ralph.state.models import Story
from ralph.state.store import StateStore
from ralph.workflow.evidence import write_evidence

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Injectable clock; call it like utc_now."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def project_root(tmp_path):
    return tmp_path


@pytest.fixture
def state_dir(project_root):
    path = project_root / "scripts" / "ralph" / "state"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def store(state_dir) -> StateStore:
    return StateStore(state_dir)


@pytest.fixture
def seed(store):
    """Write story records: seed(("US-001", []), ("US-002", ["US-001"]))."""
    def _seed(*specs) -> list[Story]:
        stories = []
        for story_id, deps in specs:
            story = Story(id=story_id, title=f"Story {story_id}", depends_on=list(deps))
            store.save_story(story)
            stories.append(story)
        workflow = store.load_workflow()
        workflow.story_order = [s.id for s in stories]
        store.save_workflow(workflow)
        return stories
    return _seed


@pytest.fixture
def make_evidence(project_root, clock):
    """Write a signed artifact under verification/ and return its project-relative ref."""
    def _make(story_id: str, kind: str, result: str = "PASS", age: float = 0, detail=None) -> str:
        ref = f"verification/{story_id}/{kind}.json"
        write_evidence(
            project_root / ref,
            result,
            detail=detail or [],
            story_id=story_id,
            kind=kind,
            producer="pytest",
            timestamp=to_iso(clock.now - timedelta(seconds=age)),
        )
        return ref
    return _make
