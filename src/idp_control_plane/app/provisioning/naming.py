"""Deterministic slugs for stack, repository and template names."""

from __future__ import annotations

import re

# Split camelCase / PascalCase runs before lower-casing: "MyApp" -> "My-App".
_CAMEL_BOUNDARY_RE = re.compile(r'(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])')
_NON_SLUG_RE = re.compile(r'[^a-z0-9]+')


def normalize_name(raw: str) -> str:
    """Return the kebab-case slug for ``raw``.

    Lower-case ASCII letters and digits separated by single hyphens, with no
    leading or trailing hyphen. Idempotent: ``normalize_name(normalize_name(x))
    == normalize_name(x)``. Returns ``''`` when ``raw`` has no slug-safe
    characters.
    """
    split = _CAMEL_BOUNDARY_RE.sub('-', (raw or '').strip())
    return _NON_SLUG_RE.sub('-', split.lower()).strip('-')
