"""
Safe .env file parser.

Parses KEY=value files without shell execution. Values that look like
shell expansions are rejected rather than evaluated, since project.env
lives in the repository and is not trusted input.
"""

import os
import re
from pathlib import Path
from typing import Mapping, Optional

FORBIDDEN_PATTERNS = [
    re.compile(r'`'),
    re.compile(r'\$\('),
    re.compile(r'\$\{'),
    re.compile(r';'),
    re.compile(r'&&'),
    re.compile(r'\|'),
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')


def parse_env(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse KEY=value lines.

    Blank lines and '#' comments are skipped, an optional leading
    'export ' is ignored, and matching single/double quotes are stripped.

    Raises:
        ValueError: on malformed lines, invalid keys or forbidden patterns
    """
    result = {}

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue

        if line.startswith('export '):
            line = line[len('export '):].lstrip()

        if '=' not in line:
            raise ValueError(f"{source}:{lineno}: invalid syntax (no '=')")

        key, _, value = line.partition('=')
        key = key.strip()
        value = value.strip()

        if not KEY_PATTERN.match(key):
            raise ValueError(f"{source}:{lineno}: invalid key '{key}'")

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        for pattern in FORBIDDEN_PATTERNS:
            if pattern.search(value):
                raise ValueError(f"{source}:{lineno}: forbidden pattern in value of {key}")

        result[key] = value

    return result


def load_env(filepath: Path) -> dict[str, str]:
    """
    Parse an env file.

    Raises:
        FileNotFoundError: if file doesn't exist
        ValueError: if syntax invalid or forbidden pattern found
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {filepath}")
    return parse_env(path.read_text(), source=str(path))


def load_env_optional(filepath: Path) -> dict[str, str]:
    """Parse an env file, returning {} when it does not exist."""
    path = Path(filepath)
    if not path.exists():
        return {}
    return load_env(path)


def apply_overrides(
    values: dict[str, str],
    prefix: str,
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Overlay <PREFIX><KEY> environment variables onto parsed values.

    DEVSTORY_DEFAULT_BRANCH=develop overrides DEFAULT_BRANCH from the file.
    """
    environ = os.environ if environ is None else environ
    merged = dict(values)
    for name, value in environ.items():
        if name.startswith(prefix):
            key = name[len(prefix):]
            if KEY_PATTERN.match(key):
                merged[key] = value
    return merged
