"""
ralph scan - advisory content scan. Findings never block anything.
"""

import json

from ralph.lib.advisory import scan_paths


def cmd_scan(args) -> int:
    findings = scan_paths(args.paths)
    if args.json:
        print(json.dumps([f.to_dict() for f in findings], indent=2))
        return 0

    for f in findings:
        print(f"{f.path}:{f.line}: [{f.rule}] {f.text}")
    print(f"{len(findings)} advisory finding(s)")
    return 0
