"""回复模式：识别 (classifier) 与配置表 (profiles)。"""

from advisor_core.modes.classifier import classify
from advisor_core.modes.profiles import MODE_PROFILES, resolve

__all__ = ["classify", "resolve", "MODE_PROFILES"]
