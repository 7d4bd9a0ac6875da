"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (gemini_client、openai_client)。
"""

from typing import Literal, Optional

from advisor_core.config.settings import settings
from advisor_core.providers.base import ProviderClient
from advisor_core.providers.gemini_client import GeminiClient
from advisor_core.providers.openai_client import OpenAICompatClient


DefaultProviderName = Literal["gemini", "openai"]


def create_provider(name: Optional[DefaultProviderName] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "gemini")).lower()
    if provider_name == "openai":
        return OpenAICompatClient(settings)
    return GeminiClient(settings)
