# priorart/llm.py
import threading
from typing import Optional
from openai import OpenAI
from loguru import logger
from config import settings
from priorart.errors import UpstreamFailure


class LLMService:
    """统一的 LLM 服务类：提示词输入，纯文本输出"""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        """
        初始化 LLM 服务。

        Args:
            api_key: 可选，指定的 API Key。如果不传，则使用 config.settings.LLM_API_KEY
            base_url: 可选，指定的 Base URL。如果不传，则使用 config.settings.LLM_BASE_URL
        """
        final_api_key = api_key or settings.LLM_API_KEY
        final_base_url = base_url or settings.LLM_BASE_URL

        self.model = settings.LLM_MODEL
        self.fast_model = settings.LLM_MODEL_FAST

        if final_api_key:
            self.text_client = OpenAI(api_key=final_api_key, base_url=final_base_url)
        else:
            self.text_client = None
            logger.warning("[LLM] LLM_API_KEY not configured, text generation will be unavailable")

    @property
    def configured(self) -> bool:
        return self.text_client is not None

    def generate(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        fast: bool = False,
    ) -> str:
        """
        单轮文本生成

        Args:
            prompt: 完整提示词
            temperature: 温度参数，不传则使用 settings.LLM_TEMPERATURE
            fast: 是否使用轻量模型 (排序环节)

        Returns:
            模型返回的文本；模型成功返回但内容为空时返回 ""

        Raises:
            UpstreamFailure: 客户端未初始化或上游调用失败
        """
        if not self.text_client:
            raise UpstreamFailure("Text generation client is not initialized. Check LLM_API_KEY.")

        model = self.fast_model if fast else self.model
        try:
            response = self.text_client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=settings.LLM_TEMPERATURE if temperature is None else temperature,
                max_tokens=settings.LLM_MAX_TOKENS,
                top_p=0.95,
            )
        except Exception as e:
            logger.error(f"[LLM] Text generation failed ({model}): {e}")
            raise UpstreamFailure(f"Text generation error: {e}") from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


_llm_instance: Optional[LLMService] = None
_llm_lock = threading.Lock()


def get_llm_service() -> LLMService:
    """获取 LLM 服务实例 (首次调用时创建)"""
    global _llm_instance
    if _llm_instance is None:
        with _llm_lock:
            if _llm_instance is None:
                _llm_instance = LLMService()
    return _llm_instance
