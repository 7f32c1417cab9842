"""
recordhistory Shared Utilities - naming helpers used by schema building and generators.
"""

from __future__ import annotations

import re


def to_snake(name: str) -> str:
    """
    Convert CamelCase (or PascalCase) to snake_case.

    Examples:
        to_snake("Rolle")             → "rolle"
        to_snake("LandmarkVersion")   → "landmark_version"
        to_snake("HTMLPage")          → "html_page"
    """
    s1 = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


def revision_slug(text: str, max_len: int = 40) -> str:
    """Filesystem-safe lowercase slug for generated migration file names."""
    slug = re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_")
    return slug[:max_len] or "history"
