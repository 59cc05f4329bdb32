import os
from pathlib import Path
from dotenv import load_dotenv

# 加载 .env 环境变量
load_dotenv()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class Settings:
    # --- 基础路径配置 ---
    BASE_DIR = Path(__file__).resolve().parent
    DATA_DIR = Path(os.getenv("DATA_DIR", BASE_DIR / "data"))
    OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", BASE_DIR / "output"))
    SEARCH_DB_PATH = Path(os.getenv("SEARCH_DB_PATH", DATA_DIR / "prior_art.db"))

    # --- LLM 配置 (OpenAI 兼容接口) ---
    LLM_API_KEY = os.getenv("LLM_API_KEY")
    LLM_BASE_URL = os.getenv("LLM_BASE_URL")
    LLM_MODEL = os.getenv("LLM_MODEL", "gemini-2.0-flash")
    # 排序环节使用的轻量模型
    LLM_MODEL_FAST = os.getenv("LLM_MODEL_FAST", "gemini-2.0-flash")
    LLM_TEMPERATURE = _env_float("LLM_TEMPERATURE", 0.8)
    LLM_MAX_TOKENS = _env_int("LLM_MAX_TOKENS", 20000)

    # --- 专利检索配置 (SerpApi / Google Patents) ---
    SERPAPI_KEY = os.getenv("SERPAPI_KEY")
    SERPAPI_BASE_URL = os.getenv("SERPAPI_BASE_URL", "https://serpapi.com/search")
    SEARCH_PROVIDER = os.getenv("SEARCH_PROVIDER", "google_patents")
    SEARCH_RESULTS_PER_QUERY = _env_int("SEARCH_RESULTS_PER_QUERY", 20)
    SEARCH_TIMEOUT_SECONDS = _env_int("SEARCH_TIMEOUT_SECONDS", 120)

    # --- 流水线参数 ---
    MAX_DESCRIPTION_LENGTH = _env_int("MAX_DESCRIPTION_LENGTH", 240000)
    PARTIAL_DESCRIPTION_CHARS = _env_int("PARTIAL_DESCRIPTION_CHARS", 40000)
    SUMMARY_CAPACITY = _env_int("SUMMARY_CAPACITY", 60)

    # 任务完成后内存中保留的秒数，过期后只能从数据库读取
    JOB_RETENTION_SECONDS = _env_float("JOB_RETENTION_SECONDS", 3600)

    # --- 服务配置 ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = _env_int("PORT", 7860)

    @property
    def llm_configured(self) -> bool:
        return bool(self.LLM_API_KEY)

    @property
    def search_configured(self) -> bool:
        return bool(self.SERPAPI_KEY)


settings = Settings()
