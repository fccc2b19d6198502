from quotecase.infra.repositories import (
    InMemoryRepository,
    QuoteRepository,
    SupabaseRepository,
    build_repository,
)

__all__ = [
    "QuoteRepository",
    "InMemoryRepository",
    "SupabaseRepository",
    "build_repository",
]
