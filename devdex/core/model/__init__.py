from .model import create_llm, clear_cache

__all__ = ["create_llm", "clear_cache"]
