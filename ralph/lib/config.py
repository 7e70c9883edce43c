"""
Configuration loaders for the workflow engine.

Engine settings come from ralph.env in the state directory; project
policy comes from the config section of prd.json.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from . import envparse
from .constants import (
    DEFAULT_FRESHNESS_WINDOW_SECONDS,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_ITERATIONS,
    CheckpointKind,
    required_checkpoints,
)

logger = logging.getLogger(__name__)

ENV_FILENAME = "ralph.env"


@dataclass
class EngineConfig:
    """Engine-level settings from ralph.env"""
    state_dir: Path
    project_root: Path
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    freshness_window_seconds: int = DEFAULT_FRESHNESS_WINDOW_SECONDS
    lock_timeout: int = DEFAULT_LOCK_TIMEOUT


@dataclass
class ProjectPolicy:
    """Per-project policy from the prd.json config section"""
    max_attempts_per_story: int | None = None
    enable_whitebox: bool = True
    cleanup_per_story: bool = True
    parallel_build: bool = True
    parallel_validate: bool = True

    def required_checkpoints(self) -> list[CheckpointKind]:
        return required_checkpoints(self.enable_whitebox, self.cleanup_per_story)


def load_engine_config(state_dir: Path, project_root: Path | None = None) -> EngineConfig:
    """Load ralph.env (if present) and return EngineConfig."""
    env = envparse.load_env(state_dir / ENV_FILENAME, missing_ok=True)

    root = Path(env["PROJECT_ROOT"]) if env.get("PROJECT_ROOT") else (project_root or Path.cwd())

    return EngineConfig(
        state_dir=state_dir,
        project_root=root,
        max_iterations=envparse.get_int(env, "MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS, minimum=1),
        freshness_window_seconds=envparse.get_int(
            env, "FRESHNESS_WINDOW_SECONDS", DEFAULT_FRESHNESS_WINDOW_SECONDS, minimum=1
        ),
        lock_timeout=envparse.get_int(env, "LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT, minimum=1),
    )


def load_project_policy(prd_config: dict | None) -> ProjectPolicy:
    """Build ProjectPolicy from a prd.json config section."""
    cfg = prd_config or {}

    max_attempts = cfg.get("max_attempts_per_story")
    if max_attempts is not None and (not isinstance(max_attempts, int) or max_attempts < 1):
        logger.warning(f"Ignoring invalid max_attempts_per_story: {max_attempts!r}")
        max_attempts = None

    return ProjectPolicy(
        max_attempts_per_story=max_attempts,
        enable_whitebox=bool(cfg.get("enable_whitebox", True)),
        cleanup_per_story=bool(cfg.get("cleanup_per_story", True)),
        parallel_build=bool(cfg.get("parallel_build", True)),
        parallel_validate=bool(cfg.get("parallel_validate", True)),
    )


def effective_max_iterations(config: EngineConfig, policy: ProjectPolicy) -> int:
    """Project policy wins over ralph.env when it sets a bound."""
    if policy.max_attempts_per_story is not None:
        return policy.max_attempts_per_story
    return config.max_iterations
