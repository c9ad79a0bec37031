"""Tolerant reader/writer for the emulator's ``configs.*.ini`` files.

The emulator's INI dialect uses ``::`` inside section names and expects keys
verbatim, so :mod:`configparser` (which lowercases keys, interpolates ``%``
and rejects malformed lines) is not used. Files are handled as text lines
instead.
"""

import re

_SECTION_RE = re.compile(r"^\[([^\]]+)\]$")
_COMMENT_PREFIXES = ("#", ";")

IniSections = dict[str, dict[str, str]]


def parse_ini(text: str) -> IniSections:
    """Parse INI text into ``{section: {key: value}}``.

    Keys and values are trimmed and matched case-sensitively. Lines before
    the first section, comments, blank lines and lines without ``=`` are
    skipped. A repeated key keeps its last value.
    """
    sections: IniSections = {}
    current: dict[str, str] | None = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(_COMMENT_PREFIXES):
            continue

        m = _SECTION_RE.match(line)
        if m:
            current = sections.setdefault(m.group(1).strip(), {})
            continue

        if current is None or "=" not in line:
            continue

        key, _, value = line.partition("=")
        key = key.strip()
        if key:
            current[key] = value.strip()

    return sections


def parse_key_value_lines(text: str) -> list[tuple[str, str]]:
    """Parse section-less ``key=value`` lines, as in the legacy ``DLC.txt``."""
    pairs = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(_COMMENT_PREFIXES) or "=" not in line:
            continue
        key, _, value = line.partition("=")
        if key.strip():
            pairs.append((key.strip(), value.strip()))
    return pairs


def format_ini(sections: IniSections) -> str:
    """Render sections in the given order, each followed by a blank line."""
    lines: list[str] = []
    for section, values in sections.items():
        lines.append(f"[{section}]")
        lines.extend(f"{key}={value}" for key, value in values.items())
        lines.append("")
    return "\n".join(lines) + ("\n" if lines else "")


def parse_bool(value: str | None) -> bool | None:
    """Interpret ``0``/``1`` style flags. Returns None when unrecognized."""
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    return None


def format_bool(value: bool) -> str:
    return "1" if value else "0"
