from .connection import close_global_pool, get_global_pool, init_global_pool
from .repository import PostgresStockRepository, StockRepository

__all__ = [
    "close_global_pool",
    "get_global_pool",
    "init_global_pool",
    "PostgresStockRepository",
    "StockRepository",
]
