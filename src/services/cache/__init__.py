from .generation_cache import CacheEntry, GenerationCache, compute_fingerprint, normalize_prompt

__all__ = ["CacheEntry", "GenerationCache", "compute_fingerprint", "normalize_prompt"]
