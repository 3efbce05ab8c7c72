"""
Log Patterns
============
The pluggable pattern set used by the Log Analyzer.

Two kinds of patterns:
    1. WARNING PATTERNS — recognise an analyzer warning on one log line.
       Each regex MUST define a named group `code` and MAY define
       `description`. The first pattern that matches a line wins, so a line
       is counted at most once.
    2. ERROR PATTERNS — recognise the line a failure excerpt is anchored on.

Built-in defaults cover MSBuild/Roslyn (`warning CA1822: ...`), ruff/flake8
and pylint output. A YAML file can extend or replace them:

    replace_defaults: false        # true drops the built-in patterns
    warning_patterns:
      - name: eslint
        regex: '^\\s*\\d+:\\d+\\s+warning\\s+(?P<description>.+?)\\s+(?P<code>[\\w/-]+)$'
    error_patterns:
      - name: gradle
        regex: '^FAILURE: Build failed'

Deterministic: patterns are evaluated in declaration order.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pattern types
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LogPattern:
    """A named, compiled regular expression."""
    name: str
    regex: re.Pattern


@dataclass(frozen=True)
class WarningMatch:
    code: str
    description: str
    pattern: str


@dataclass(frozen=True)
class PatternSet:
    warning_patterns: tuple[LogPattern, ...]
    error_patterns: tuple[LogPattern, ...]

    def match_warning(self, line: str) -> Optional[WarningMatch]:
        """Return the first warning match on `line`, or None."""
        for pattern in self.warning_patterns:
            m = pattern.regex.search(line)
            if not m:
                continue
            code = (m.group("code") or "").strip()
            if not code:
                continue
            groups = m.groupdict()
            description = (groups.get("description") or "").strip()
            return WarningMatch(code=code, description=description, pattern=pattern.name)
        return None

    def is_error_line(self, line: str) -> bool:
        return any(p.regex.search(line) for p in self.error_patterns)


# ---------------------------------------------------------------------------
# 1. Built-in warning patterns
# ---------------------------------------------------------------------------
# Each entry: (name, regex, flags)
_DEFAULT_WARNING_SPECS: list[tuple[str, str, int]] = [
    # MSBuild / Roslyn / .NET analyzers:
    #   src/Foo.cs(12,5): warning CA1822: Member 'Bar' ... [src/Foo.csproj]
    ("msbuild",
     r"\b(?i:warning)\s+(?P<code>[A-Z]{1,6}\d{2,5})\s*:\s*(?P<description>.*?)(?:\s+\[[^\]]*\])?\s*$",
     0),
    # pylint: path:line:col: W0611: Unused import os (unused-import)
    ("pylint",
     r"^\S+?:\d+:\d+:\s+(?P<code>[CRWEF]\d{4}):\s+(?P<description>.+?)(?:\s+\([\w-]+\))?\s*$",
     0),
    # ruff / flake8: path:line:col: F401 [*] `os` imported but unused
    ("ruff",
     r"^\S+?:\d+:\d+:\s+(?P<code>[A-Z]{1,3}\d{3,4})\s+(?:\[\*\]\s+)?(?P<description>.+?)\s*$",
     0),
]


# ---------------------------------------------------------------------------
# 2. Built-in error patterns (excerpt anchors)
# ---------------------------------------------------------------------------
_DEFAULT_ERROR_SPECS: list[tuple[str, str, int]] = [
    ("msbuild_error",     r"\berror\s+[A-Z]{1,6}\d{2,5}\s*:",            re.I),
    ("assertion",         r"\bassert(?:ion)?\s*(?:failed|error)\b",      re.I),
    ("python_traceback",  r"^Traceback \(most recent call last\):",      0),
    ("pytest_failed",     r"^FAILED\s+\S",                               0),
    ("dotnet_test",       r"^\s*Failed\s+[\w.]+",                        0),
    ("npm_error",         r"^npm ERR!",                                  0),
    ("generic_error",     r"^(?:ERROR\b|Error:|error:)",                 0),
    ("actions_error",     r"^##\[error\]",                               0),
]


def _compile(name: str, regex: str, flags: int = 0, require_code: bool = False) -> LogPattern:
    try:
        compiled = re.compile(regex, flags)
    except re.error as exc:
        raise ValueError(f"pattern {name!r} is not a valid regex: {exc}") from exc
    if require_code and "code" not in compiled.groupindex:
        raise ValueError(f"warning pattern {name!r} must define a (?P<code>...) group")
    return LogPattern(name=name, regex=compiled)


def default_pattern_set() -> PatternSet:
    return PatternSet(
        warning_patterns=tuple(
            _compile(n, r, f, require_code=True) for n, r, f in _DEFAULT_WARNING_SPECS
        ),
        error_patterns=tuple(_compile(n, r, f) for n, r, f in _DEFAULT_ERROR_SPECS),
    )


def _parse_entries(entries: Any, kind: str, require_code: bool) -> list[LogPattern]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValueError(f"{kind} must be a list")
    patterns: list[LogPattern] = []
    for index, entry in enumerate(entries):
        if isinstance(entry, str):
            name, regex, ignore_case = f"{kind}[{index}]", entry, False
        elif isinstance(entry, dict) and "regex" in entry:
            name = str(entry.get("name") or f"{kind}[{index}]")
            regex = str(entry["regex"])
            ignore_case = bool(entry.get("ignore_case", False))
        else:
            raise ValueError(f"{kind}[{index}] must be a string or a mapping with 'regex'")
        patterns.append(_compile(name, regex, re.I if ignore_case else 0, require_code))
    return patterns


def parse_pattern_config(config: dict[str, Any]) -> PatternSet:
    """Build a PatternSet from an already-parsed YAML mapping."""
    if not isinstance(config, dict):
        raise ValueError("pattern configuration must be a mapping")

    warnings = _parse_entries(config.get("warning_patterns"), "warning_patterns", True)
    errors = _parse_entries(config.get("error_patterns"), "error_patterns", False)

    if config.get("replace_defaults", False):
        return PatternSet(warning_patterns=tuple(warnings), error_patterns=tuple(errors))

    defaults = default_pattern_set()
    # Configured patterns take precedence over the built-ins
    return PatternSet(
        warning_patterns=tuple(warnings) + defaults.warning_patterns,
        error_patterns=tuple(errors) + defaults.error_patterns,
    )


def load_pattern_set(path: str = "") -> PatternSet:
    """
    Load the pattern set from a YAML file, or the defaults when `path` is empty.

    Raises
    ------
    ValueError
        The file is not a valid pattern configuration.
    OSError
        The file cannot be read.
    """
    if not path:
        return default_pattern_set()

    with open(path, "r", encoding="utf-8") as f:
        try:
            config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"invalid YAML in {path}: {exc}") from exc

    pattern_set = parse_pattern_config(config)
    logger.info(
        "Loaded %d warning / %d error pattern(s) from %s",
        len(pattern_set.warning_patterns), len(pattern_set.error_patterns), path,
    )
    return pattern_set
