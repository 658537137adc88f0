"""Structural fingerprint of a document, independent of its text."""

from __future__ import annotations

import hashlib

from bs4 import BeautifulSoup, Tag

from pricehunt.extraction.models import StructureFingerprint

DEFAULT_DEPTH = 10


def compute_fingerprint(soup: BeautifulSoup, depth: int = DEFAULT_DEPTH) -> StructureFingerprint:
    """MD5 over ``tag[first three sorted classes]:`` tokens below ``<body>``.

    ``<body>`` itself sits at depth 0; elements at ``depth`` or deeper are
    not emitted.
    """
    tokens: list[str] = []
    body = soup.body
    if body is not None:
        stack: list[tuple[Tag, int]] = [(body, 0)]
        while stack:
            element, level = stack.pop()
            if level >= depth:
                continue
            classes = ",".join(sorted(element.get("class") or [])[:3])
            tokens.append(f"{element.name}[{classes}]:")
            children = [c for c in element.children if isinstance(c, Tag)]
            stack.extend((child, level + 1) for child in reversed(children))
    digest = hashlib.md5("".join(tokens).encode(), usedforsecurity=False).hexdigest()
    return StructureFingerprint(value=digest[:16], depth=depth)
