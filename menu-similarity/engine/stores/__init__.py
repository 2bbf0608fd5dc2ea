from .embedding_store import EmbeddingRecord, EmbeddingStore, SupabaseEmbeddingStore
from .product_repository import Product, ProductRepository, SupabaseProductRepository

__all__ = [
    "EmbeddingRecord",
    "EmbeddingStore",
    "Product",
    "ProductRepository",
    "SupabaseEmbeddingStore",
    "SupabaseProductRepository",
]
