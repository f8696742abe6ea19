"""
Content fingerprints for incremental embedding.

The embedding text is built deterministically from an entity's type, name,
summary and content. The fingerprint covers the untrimmed fields, so any
change to an entity's stored content marks it for re-embedding.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ctxkb.models import Entity

MAX_CONTENT_LINES = 80


def build_embedding_content(entity: "Entity") -> str:
    """
    Build the text that is sent to the embedding provider.

    Content lines are left-stripped, blank lines dropped and only the first
    80 lines kept.
    """
    parts = [f"{entity.type}: {entity.name}"]

    if entity.summary:
        parts.append(entity.summary)

    if entity.content:
        lines = [line.lstrip() for line in entity.content.split("\n")]
        stripped = [line for line in lines if line][:MAX_CONTENT_LINES]
        parts.append("\n".join(stripped))

    return "\n\n".join(parts)


def hash_content(content: str) -> str:
    """First 16 hex characters of the SHA-256 of a string."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def hash_entity_content(entity: "Entity") -> str:
    """Fingerprint over the untrimmed type, name, summary and content."""
    return hash_content(
        "\n\n".join(
            [f"{entity.type}: {entity.name}", entity.summary or "", entity.content or ""]
        )
    )
