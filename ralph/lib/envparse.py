"""
Safe KEY=value config parser.

Reads ralph.env without shell execution. Values that look like shell
expansion or command chaining are refused outright.
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

FORBIDDEN_PATTERNS = [
    re.compile(r'`'),
    re.compile(r'\$\('),
    re.compile(r'\$\{'),
    re.compile(r';'),
    re.compile(r'&&'),
    re.compile(r'\|'),
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def parse_env_text(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse KEY=value lines into a dict.

    Raises:
        ValueError: on bad syntax, bad key, or a forbidden pattern
    """
    result: dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue

        key, sep, value = line.partition('=')
        if not sep:
            raise ValueError(f"{source}:{lineno}: expected KEY=value")

        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        if not KEY_PATTERN.match(key):
            raise ValueError(f"{source}:{lineno}: invalid key '{key}'")

        value = _unquote(value.strip())
        if any(p.search(value) for p in FORBIDDEN_PATTERNS):
            raise ValueError(f"{source}:{lineno}: forbidden pattern in value for {key}")

        result[key] = value
    return result


def load_env(path: Path, missing_ok: bool = False) -> dict[str, str]:
    """Load an env file. Returns {} for a missing file when missing_ok."""
    if not path.exists():
        if missing_ok:
            return {}
        raise FileNotFoundError(f"Env file not found: {path}")
    return parse_env_text(path.read_text(), source=str(path))


def get_int(env: dict[str, str], key: str, default: int, minimum: int = 0) -> int:
    """Read an integer setting, falling back to default on bad input."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {key}: '{raw}', using default {default}")
        return default
    if value < minimum:
        logger.warning(f"{key}={value} is below minimum {minimum}, using default {default}")
        return default
    return value

