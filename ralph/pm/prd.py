"""
Story graph source: prd.json.

v3 documents nest stories under tasks[].stories[]; older documents may
list stories[] at the top level. Declared order is task order, then story
order within a task.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ralph.lib.config import ProjectPolicy, load_project_policy
from ralph.lib.validate import validate_file
from ralph.state.models import Story
from ralph.workflow.scheduler import check_graph

logger = logging.getLogger(__name__)


@dataclass
class PrdDocument:
    path: Path
    version: str
    project: str
    policy: ProjectPolicy
    stories: list[Story] = field(default_factory=list)


def _first(data: dict, *keys, default=None):
    for key in keys:
        if key in data:
            return data[key]
    return default


def _dedupe(items: list[str]) -> list[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def story_from_prd(entry: dict) -> Story:
    """Build a Story from one prd.json story entry."""
    return Story(
        id=entry["id"],
        title=entry.get("title", ""),
        depends_on=_dedupe(list(_first(entry, "dependsOn", "depends_on", default=[]))),
        acceptance_criteria=list(_first(entry, "acceptanceCriteria", "acceptance_criteria", default=[])),
    )


def iter_story_entries(data: dict) -> list[dict]:
    entries = []
    for task in data.get("tasks", []) or []:
        entries.extend(task.get("stories", []) or [])
    entries.extend(data.get("stories", []) or [])
    return entries


def load_prd(path: Path) -> PrdDocument:
    """
    Load, validate and graph-check prd.json.

    Raises:
        ValidationError: if the file is missing or does not match the schema
        StoryGraphError: on duplicate ids, unknown dependencies or a cycle
    """
    data = validate_file(path, "prd")
    stories = [story_from_prd(entry) for entry in iter_story_entries(data)]
    check_graph(stories)

    doc = PrdDocument(
        path=path,
        version=str(data.get("version", "2.0")),
        project=data.get("project", ""),
        policy=load_project_policy(data.get("config")),
        stories=stories,
    )
    logger.info(f"Loaded {len(stories)} stories from {path} (v{doc.version})")
    return doc


def read_prd_config(path: Path) -> dict:
    """The raw config section of prd.json, or {} if unavailable."""
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read config from {path}: {e}")
        return {}
    config = data.get("config") if isinstance(data, dict) else None
    return config if isinstance(config, dict) else {}
