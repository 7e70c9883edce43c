"""
Story graph source for the engine.

Loads and graph-checks prd.json and upgrades older documents to v3.
"""

from ralph.pm.migrate import MigrationReport, migrate_document, migrate_prd
from ralph.pm.prd import PrdDocument, load_prd, read_prd_config, story_from_prd

__all__ = [
    "PrdDocument",
    "load_prd",
    "read_prd_config",
    "story_from_prd",
    "MigrationReport",
    "migrate_document",
    "migrate_prd",
]
