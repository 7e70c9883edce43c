"""
Dependency-aware story scheduling.

Stories are considered in declared order. A story is ready when it has
not passed, is not blocked, and every story it depends on has passed.
Scheduling is a pure read; callers re-poll rather than wait.
"""

import logging
from typing import Iterable, Sequence

from ralph.state.models import Story

logger = logging.getLogger(__name__)


class StoryGraphError(Exception):
    """The story graph is unusable. Fatal at load time."""


class DependencyCycleError(StoryGraphError):
    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle: {' -> '.join(cycle)}")


class UnknownDependencyError(StoryGraphError):
    def __init__(self, story_id: str, dependency: str):
        self.story_id = story_id
        self.dependency = dependency
        super().__init__(f"Story '{story_id}' depends on unknown story '{dependency}'")


class DuplicateStoryError(StoryGraphError):
    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(f"Duplicate story id '{story_id}'")


def detect_cycle(stories: Iterable[Story]) -> list[str] | None:
    """Return one dependency cycle as [a, b, ..., a], or None if acyclic.

    Iterative three-colour DFS over dependsOn edges. Edges to unknown
    stories are ignored here; check_graph reports them separately.
    """
    graph = {s.id: list(s.depends_on) for s in stories}
    WHITE, GREY, BLACK = 0, 1, 2
    colour = {sid: WHITE for sid in graph}

    for root in graph:
        if colour[root] != WHITE:
            continue
        path = [root]
        colour[root] = GREY
        iters = [iter(graph[root])]
        while iters:
            advanced = False
            for dep in iters[-1]:
                if dep not in graph:
                    continue
                if colour[dep] == GREY:
                    return path[path.index(dep):] + [dep]
                if colour[dep] == WHITE:
                    colour[dep] = GREY
                    path.append(dep)
                    iters.append(iter(graph[dep]))
                    advanced = True
                    break
            if not advanced:
                colour[path.pop()] = BLACK
                iters.pop()
    return None


def check_graph(stories: Sequence[Story]) -> None:
    """Validate the story graph once at load time.

    Raises:
        DuplicateStoryError, UnknownDependencyError, DependencyCycleError
    """
    seen: set[str] = set()
    for story in stories:
        if story.id in seen:
            raise DuplicateStoryError(story.id)
        seen.add(story.id)

    for story in stories:
        for dep in story.depends_on:
            if dep not in seen:
                raise UnknownDependencyError(story.id, dep)

    cycle = detect_cycle(stories)
    if cycle:
        raise DependencyCycleError(cycle)


def _is_ready(story: Story, passed: set[str]) -> bool:
    if story.passes or story.blocked_reason:
        return False
    return all(dep in passed for dep in story.depends_on)


def next_ready(stories: Sequence[Story]) -> Story | None:
    """First story in declared order whose dependencies have all passed."""
    passed = {s.id for s in stories if s.passes}
    for story in stories:
        if _is_ready(story, passed):
            logger.debug(f"[SCHED] next ready: {story.id}")
            return story
    logger.debug("[SCHED] no story ready")
    return None


def ready_batch(stories: Sequence[Story]) -> list[Story]:
    """Every currently ready story, for fanning work out in parallel."""
    passed = {s.id for s in stories if s.passes}
    batch = [s for s in stories if _is_ready(s, passed)]
    logger.debug(f"[SCHED] ready batch: {[s.id for s in batch]}")
    return batch


def pending_dependencies(story: Story, stories: Sequence[Story]) -> list[str]:
    """Dependencies of story that have not passed (unknown ids count as pending)."""
    passed = {s.id for s in stories if s.passes}
    return [dep for dep in story.depends_on if dep not in passed]
