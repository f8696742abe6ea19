"""
ctxkb - Code knowledge base

Indexes a source tree into an entity catalog, an embedding store and a
relationship graph, and keeps all three cheap to refresh.
"""

__version__ = "0.1.0"
__all__ = [
    "Config",
    "KnowledgeBaseService",
    "load_config",
]

from ctxkb.config import Config, load_config
from ctxkb.service import KnowledgeBaseService
