"""
Line ending resolution from .gitattributes files.

Parses ``eol=lf`` / ``eol=crlf`` rules out of attribute files, finds the
nearest attribute file above a given file inside a project tree, and picks
the line ending the file should be saved with.
"""

import enum
import logging
import os
import re
from functools import lru_cache
from typing import Callable, Dict, Optional, Tuple

import pathspec

logger = logging.getLogger("EolKeeper.attributes")

CONFIG_FILE = ".gitattributes"

# Ordered glob -> "lf" | "crlf"; iteration order is the file order.
RuleSet = Dict[str, str]

_COMMENT_RE = re.compile(r"#.*")
# A lone CR ends the rule text, so only the first directive on it counts
_RULE_RE = re.compile(r"^(\S*)[^\r\n]*eol=(lf|crlf)", re.IGNORECASE)


class LineEnding(str, enum.Enum):
    """Line ending directive for a file."""

    LF = "lf"
    CRLF = "crlf"
    PLATFORM_DEFAULT = "platform-default"

    @property
    def terminator(self) -> str:
        if self is LineEnding.LF:
            return "\n"
        if self is LineEnding.CRLF:
            return "\r\n"
        return os.linesep


class ConfigReadError(OSError):
    """An attribute file could not be opened or decoded."""


class ConfigParseError(ValueError):
    """An attribute file could not be parsed at all."""


ConfigReader = Callable[[str], RuleSet]


def remove_comments(content: Optional[str]) -> str:
    """Drop everything from '#' to the end of each line.

    Quoting is not taken into account, so a pattern containing '#' is cut
    short at that character.
    """
    return _COMMENT_RE.sub("", content or "")


def parse_gitattributes(content: Optional[str]) -> RuleSet:
    """
    Parse attribute file text into an ordered mapping of glob -> eol.

    Only lines carrying an ``eol=lf`` or ``eol=crlf`` attribute produce a
    rule; every other line is ignored. A pattern repeated later in the file
    replaces the earlier directive.
    """
    try:
        eol_patterns: RuleSet = {}
        for line in remove_comments(content).split("\n"):
            match = _RULE_RE.match(line.strip())
            if match:
                eol_patterns[match.group(1)] = match.group(2).lower()
        return eol_patterns
    except Exception as e:  # pylint: disable=broad-exception-caught
        raise ConfigParseError(str(e)) from e


def read_config(directory: str, config_file_name: Optional[str] = None) -> RuleSet:
    """Read and parse the attribute file located in ``directory``."""
    file_path = os.path.join(directory, config_file_name or CONFIG_FILE)
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            content: str = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigReadError(f"Cannot read {file_path}: {e}") from e

    try:
        return parse_gitattributes(content)
    except ConfigParseError as e:
        logger.error("Error parsing %s. Details: %s", file_path, str(e))
        raise


def relative_directory(project_root: str, full_path: str) -> Optional[str]:
    """
    Return the directory of ``full_path`` relative to ``project_root``.

    Segments are joined with '/', and a file directly in the root yields an
    empty string. Returns None when the file is not inside the project.
    """
    root: str = os.path.abspath(project_root)
    path: str = os.path.abspath(full_path)
    try:
        rel_path: str = os.path.relpath(path, root)
    except ValueError:
        # Different drives on Windows
        return None

    if (
        rel_path == os.curdir
        or rel_path == os.pardir
        or rel_path.startswith(os.pardir + os.sep)
        or os.path.isabs(rel_path)
    ):
        return None

    return os.path.dirname(rel_path).replace(os.sep, "/")


def lookup_and_load(
    project_root: str,
    rel_dir: Optional[str],
    read_config: ConfigReader = read_config,  # pylint: disable=redefined-outer-name
) -> RuleSet:
    """
    Find the nearest attribute file from ``rel_dir`` up to the project root.

    Each directory level is read at most once, deepest first. The first
    readable file wins and its rules are returned as they are; nothing is
    merged from further up. An empty rule set is returned when no level
    has a readable file, or when ``rel_dir`` is None (no read is made).
    ConfigParseError raised by ``read_config`` is passed on to the caller.
    """
    if rel_dir is None:
        return {}

    segments: Tuple[str, ...] = tuple(
        part for part in rel_dir.split("/") if part and part != os.curdir
    )
    for depth in range(len(segments), -1, -1):
        directory: str = os.path.join(project_root, *segments[:depth])
        try:
            rules: RuleSet = read_config(directory)
        except ConfigReadError as e:
            logger.debug("No attribute file in %s: %s", directory, str(e))
            continue
        logger.debug("Using attribute file from %s", directory)
        return rules

    return {}


@lru_cache(maxsize=256)
def _compile(pattern: str) -> pathspec.GitIgnoreSpec:
    return pathspec.GitIgnoreSpec.from_lines([pattern])


def matches(pattern: str, full_path: str) -> bool:
    """
    Test a glob against a path with base-name matching.

    A pattern without '/' is compared with the file's base name, so it
    applies anywhere in the tree. A pattern with '/' is compared with the
    whole path. Directory patterns (trailing '/') never match a file, and
    '*' also matches names starting with a dot, as in git.
    """
    if not pattern or pattern.endswith("/"):
        return False

    target: str = full_path if "/" in pattern else os.path.basename(full_path)
    try:
        return _compile(pattern).match_file(target)
    except ValueError as e:
        logger.error("Invalid pattern '%s': %s", pattern, str(e))
        return False


def resolve_line_ending(full_path: str, rules: RuleSet) -> LineEnding:
    """Return the directive of the first rule matching ``full_path``."""
    for glob, eol in rules.items():
        if matches(glob, full_path):
            logger.debug("%s matched '%s' (eol=%s)", full_path, glob, eol)
            return LineEnding(eol)
    return LineEnding.PLATFORM_DEFAULT


def resolve_for_file(
    full_path: str,
    project_root: str,
    read_config: ConfigReader = read_config,  # pylint: disable=redefined-outer-name
    fallback_rules: Optional[RuleSet] = None,
) -> LineEnding:
    """
    Work out the line ending for a file in a project.

    ``fallback_rules`` are user configured patterns, used only when no
    attribute file with eol rules is found for the file.
    """
    rel_dir: Optional[str] = relative_directory(project_root, full_path)
    rules: RuleSet = lookup_and_load(project_root, rel_dir, read_config)
    if not rules and fallback_rules:
        rules = fallback_rules
    return resolve_line_ending(full_path, rules)
