"""
ralph migrate - upgrade prd.json to v3.
"""

from pathlib import Path

from ralph.pm.migrate import TARGET_VERSION, migrate_prd


def cmd_migrate(args) -> int:
    path = Path(args.prd)
    report = migrate_prd(path, dry_run=args.dry_run)

    print(f"Current version: {report.from_version}")
    if not report.migrated:
        print(f"Already at v{TARGET_VERSION} - no migration needed")
        return 0

    for change in report.changes:
        print(f"  + {change}")
    if report.dry_run:
        print("Dry run: nothing written")
    else:
        print(f"Backup: {report.backup_path}")
        print(f"Saved migrated {path}")
    return 0
