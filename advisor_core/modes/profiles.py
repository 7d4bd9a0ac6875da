"""模式配置表。

把 Mode 映射到系统提示词与生成参数：

- probe: 输出上限很低，温度略低，只问一个问题，避免在需求未收集完之前
  输出长篇内容。
- final: 输出上限高，温度适中，给出结构化的完整方案。

约定：probe.max_output_tokens < final.max_output_tokens，
probe.temperature <= final.temperature。
"""

from types import MappingProxyType
from typing import Any, Mapping

from advisor_core.domain.advisor import DEFAULT_MODE, Mode, ModeProfile, coerce_mode
from advisor_core.prompts import load_system_prompt


def _instruction(rules_name: str) -> str:
    return f"{load_system_prompt('advisor_context')}\n\n{load_system_prompt(rules_name)}\n"


PROBE_PROFILE = ModeProfile(
    instruction_text=_instruction("probe_rules"),
    max_output_tokens=120,
    temperature=0.4,
    top_p=0.9,
)

FINAL_PROFILE = ModeProfile(
    instruction_text=_instruction("final_rules"),
    max_output_tokens=2048,
    temperature=0.5,
    top_p=0.9,
)

MODE_PROFILES: Mapping[str, ModeProfile] = MappingProxyType({
    "probe": PROBE_PROFILE,
    "final": FINAL_PROFILE,
})


def resolve(mode: Any) -> ModeProfile:
    """返回模式对应的 ModeProfile；未知值按 probe 处理。"""

    key: Mode = coerce_mode(mode) or DEFAULT_MODE
    return MODE_PROFILES[key]
