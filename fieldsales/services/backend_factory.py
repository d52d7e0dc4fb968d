from __future__ import annotations

from functools import lru_cache

from fieldsales.config import settings
from fieldsales.services.memory_backend import MemoryBackend
from fieldsales.services.supabase_backend import SupabaseBackend


@lru_cache(maxsize=1)
def get_backend():
    provider = settings.backend_provider.strip().lower()
    if provider == 'memory':
        return MemoryBackend()
    return SupabaseBackend()
