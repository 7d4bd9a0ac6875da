"""回复模式识别。

调用方没有显式指定 mode 时，根据用户输入判断本轮是追问（probe）
还是交付完整方案（final）。这是启发式判断：漏判为 probe 可以接受，
客户端下一轮可以显式传 mode="final" 纠正。
"""

import re
from typing import Any, Tuple

from advisor_core.domain.advisor import DEFAULT_MODE, Mode


# "generate a report" / "make me a plan" / "prepare the summaries" ...
_DELIVERABLE_RE = re.compile(
    r"\b(?:generate|give|show|create|prepare|make|write|draft)\s+"
    r"(?:me\s+)?(?:(?:a|an|the|my)\s+)?"
    r"(?:report|solution|plan|summary|summaries|recommendation|analysis)s?\b",
    re.IGNORECASE,
)

_COMPLETION_WORD_RE = re.compile(
    r"\b(?:final(?:ise|ize)?|full|detailed)\b",
    re.IGNORECASE,
)

FINAL_INTENT_PATTERNS: Tuple[re.Pattern, ...] = (_DELIVERABLE_RE, _COMPLETION_WORD_RE)


def classify(text: Any) -> Mode:
    """推断回复模式；无法判断时保守返回 "probe"。"""

    if not isinstance(text, str) or not text.strip():
        return DEFAULT_MODE
    for pattern in FINAL_INTENT_PATTERNS:
        if pattern.search(text):
            return "final"
    return DEFAULT_MODE
