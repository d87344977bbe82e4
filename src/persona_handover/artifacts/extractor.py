"""Regex-based artifact reference extraction.

Recovers file and URL references a child persona printed to stdout.  This
is best-effort text mining: there is no structured channel between parent
and child beyond plain text.

Recognised references
---------------------
- PATH    — tokens starting with ``/``, ``./`` or ``../`` that end in an extension
- URL     — ``http://`` and ``https://`` URLs
- LABEL   — the value after ``Created:``, ``Generated:``, ``Saved:``,
            ``Output:``, ``File:`` or ``Path:`` (case-insensitive)

Classes
-------
- ArtifactExtractor — extract de-duplicated references from text
"""
from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Compiled patterns
# ---------------------------------------------------------------------------

_PATH_RE = re.compile(r"(?:^|\s)((?:\./|\.\./|/)\S+\.[a-zA-Z0-9]+)", re.MULTILINE)

_URL_RE = re.compile(r"https?://\S+")

_LABEL_RE = re.compile(
    r"(?:Created|Generated|Saved|Output|File|Path):\s*(\S+)",
    re.IGNORECASE,
)

# Version-control directories, dependency directories, local dev servers.
_NOISE_SUBSTRINGS: tuple[str, ...] = (
    "/.git/",
    "/.hg/",
    "/.svn/",
    "node_modules",
    "site-packages",
    "/.venv/",
)
_NOISE_PREFIXES: tuple[str, ...] = (
    "http://localhost",
    "https://localhost",
    "http://127.0.0.1",
    "https://127.0.0.1",
)

_MIN_LENGTH = 4


class ArtifactExtractor:
    """Extract artifact references from captured process output.

    Example
    -------
    ::

        extractor = ArtifactExtractor()
        extractor.extract("Created: output.csv\\nsee https://example.org/run/1")
        # ['https://example.org/run/1', 'output.csv']
    """

    def extract(self, text: str) -> list[str]:
        """Return references found in ``text`` in discovery order.

        Paths are collected first, then URLs, then labelled values.
        Duplicates and noise (VCS or dependency directories, localhost
        URLs, tokens shorter than four characters) are dropped.

        Parameters
        ----------
        text:
            Captured standard output of a child process.

        Returns
        -------
        list[str]
            Unique references, first occurrence wins.
        """
        if not text:
            return []

        candidates: list[str] = []
        candidates.extend(match.group(1) for match in _PATH_RE.finditer(text))
        candidates.extend(match.group(0) for match in _URL_RE.finditer(text))
        candidates.extend(match.group(1) for match in _LABEL_RE.finditer(text))

        seen: set[str] = set()
        artifacts: list[str] = []
        for candidate in candidates:
            if candidate in seen or self.is_noise(candidate):
                continue
            seen.add(candidate)
            artifacts.append(candidate)
        return artifacts

    @staticmethod
    def is_noise(candidate: str) -> bool:
        """Return True if ``candidate`` should never be reported."""
        if len(candidate) < _MIN_LENGTH:
            return True
        if any(marker in candidate for marker in _NOISE_SUBSTRINGS):
            return True
        return candidate.startswith(_NOISE_PREFIXES)
