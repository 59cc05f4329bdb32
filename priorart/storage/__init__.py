"""
检索记录存储模块 - 提供检索结果的持久化能力
"""
from .search_storage import SearchStorage, get_search_storage, reset_storage_instance

__all__ = [
    "SearchStorage",
    "get_search_storage",
    "reset_storage_instance",
]
