import threading
from typing import Dict
from priorart.search_clients.base import BaseSearchClient
from priorart.search_clients.google_patents import GooglePatentsClient


class SearchClientFactory:
    _instances: Dict[str, BaseSearchClient] = {}
    _lock = threading.Lock()

    @staticmethod
    def get_client(provider: str = "google_patents") -> BaseSearchClient:
        provider = provider.lower().strip()

        # 双重检查锁定 (Double-Checked Locking)
        if provider not in SearchClientFactory._instances:
            with SearchClientFactory._lock:
                if provider not in SearchClientFactory._instances:
                    if provider in ("google_patents", "serpapi"):
                        SearchClientFactory._instances[provider] = GooglePatentsClient()
                    else:
                        raise ValueError(f"Unknown search provider: {provider}")

        return SearchClientFactory._instances[provider]
