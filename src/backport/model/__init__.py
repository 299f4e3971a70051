"""LLM model wrappers."""

from backport.model.resolver import ConflictResolver, create_llm_auto_fix

__all__ = [
    "ConflictResolver",
    "create_llm_auto_fix",
]
