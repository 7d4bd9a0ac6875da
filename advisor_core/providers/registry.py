"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "advisor-chat"。
- provider_model：厂商实际提供的模型 ID，例如 "gemini-1.5-flash"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置，便于后续升级或切换。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]

    def model(self, logical_name: str) -> ModelConfig:
        """按逻辑名取模型配置；未登记的名字直接当作厂商模型 ID 使用。"""

        cfg = self.models.get(logical_name)
        if cfg is not None:
            return cfg
        default = next(iter(self.models.values()))
        return ModelConfig(
            logical_name=logical_name,
            provider_model=logical_name,
            max_tokens=default.max_tokens,
            default_temperature=default.default_temperature,
        )


# Gemini 配置（默认 Provider，快速模型）
GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    models={
        "advisor-chat": ModelConfig(
            logical_name="advisor-chat",
            provider_model="gemini-1.5-flash",
            max_tokens=2048,
            default_temperature=0.5,
        )
    },
)

# OpenAI 兼容接口配置
OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    models={
        "advisor-chat": ModelConfig(
            logical_name="advisor-chat",
            provider_model="gpt-4o-mini",
            max_tokens=2048,
            default_temperature=0.5,
        )
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
