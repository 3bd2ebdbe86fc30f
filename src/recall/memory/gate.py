"""Retrieval gating: decide whether an utterance needs stored memories."""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def _compile(*patterns: str) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def _term_pattern(terms: list[str]) -> re.Pattern:
    """Match any term; ASCII terms must sit on word boundaries."""
    parts = []
    for term in terms:
        if term.isascii():
            parts.append(r"\b" + re.escape(term) + r"\b")
        else:
            parts.append(re.escape(term))
    return re.compile("|".join(parts), re.IGNORECASE)


def _any(patterns: list[re.Pattern]) -> Callable[[str], bool]:
    return lambda message: any(p.search(message) for p in patterns)


GREETING_PATTERNS = _compile(
    r"^(你好|您好|嗨|早上好|下午好|晚上好|hi|hello|hey|good (morning|afternoon|evening))[\s！!。.,，~]*$",
    r"^(谢谢|感谢|再见|拜拜|好的|bye|goodbye|thanks|thank you|ok|okay)[\s！!。.,，~]*$",
)

MATH_PATTERNS = _compile(
    r"^\d+\s*[+\-*/×÷]\s*\d+\s*[=＝]?\s*$",
    r"^计算\s*\d+",
    r"^(calculate|compute)\s*[\d\s+\-*/×÷().]+[=＝?]?\s*$",
    r"^[\d\s+\-*/×÷().]+[=＝]?\s*$",
)

DEFINITION_PATTERNS = _compile(
    r"^(什么是|定义|解释)\s*[^，,。.！!？?]*[？?。.！!]*$",
    r"^[^，,。.！!？?]*是什么[？?。.！!]*$",
    r"^如何理解\s*[^，,。.！!？?]*[？?。.！!]*$",
    r"^(what is|what's|what are)\s+(a|an)\s+[\w\s-]+\??$",
    r"^(what is|what's)\s+[\w-]+\??$",
    r"^define\s+[\w\s-]+\??$",
    r"^what does\s+[\w\s-]+\s+mean\??$",
)

PERSONAL_REFERENCE = _term_pattern(["我", "咱", "my", "our", "me", "we", "i"])

TIME_PATTERNS = _compile(
    r"^(现在|当前|今天|明天|昨天)\s*(的)?\s*(时间|日期|几点|几号|星期几)",
    r"^(现在)?(几点了?|多少号|几号|星期几)[？?。.！!\s]*$",
    r"^(what time is it|what's the time|what is the time)\b",
    r"^(what day is (it|today)|what's the date|what is (the|today's) date)\b",
)

WEATHER_PATTERNS = _compile(
    r"(天气|气温|下雨|下雪|晴天|阴天|湿度|刮风)",
    r"\b(weather|temperature|forecast|humidity)\b",
    r"\b(will|is) it (rain|snow)",
)

TRANSIT_PATTERNS = _compile(
    r"^(交通|路况|堵车|地铁|公交|打车)\s*[怎么样如何]*[？?。.！!]*$",
    r"^(怎么去|如何到|路线|导航)",
    r"^(how (do|can) i get to|directions to|route to|navigate to)\b",
    r"\btraffic\b",
)

NEARBY_PATTERNS = _compile(
    r"^(附近|周边)\s*(的)?\s*(餐厅|商店|医院|银行|超市|加油站)",
    r"^(推荐|介绍)\s*(一下|个|些)?\s*(餐厅|美食|景点|酒店)",
    r"\b(near me|nearby)\b",
)

PERSONAL_STATE_PATTERNS = _compile(
    r"^(我|咱们|我们)\s*(应该|需要|要不要|可以)",
    r"^(适合|建议|推荐)",
    r"^(should|can|do) (i|we)\b",
)

SCHEDULE_PATTERNS = _compile(
    r"^(今天|明天|这周|下周)\s*(的)?\s*(安排|计划|日程|会议)",
    r"^(什么时候|几点)\s*(开始|结束|到|去)",
    r"\b(my|our) (schedule|calendar|agenda)\b",
)

RECALL_TERMS = [
    "之前", "上次", "记得", "还记得", "前面", "刚才",
    "我的", "我们的", "项目", "偏好", "习惯", "设置",
    "继续", "接着", "基于", "根据之前", "按照之前",
    "像之前", "和之前", "按之前", "参考之前",
    "before", "last time", "earlier", "previously", "as usual",
    "my", "our", "project", "preference", "preferences", "habit", "habits",
    "settings", "continue", "you said", "we discussed",
]

# Kept separate from CREATION_TERMS so retrieval and creation can evolve apart.
RETRIEVAL_CREATION_TERMS = [
    "记住", "别忘了", "不要忘记", "必须", "应该", "不能", "禁止",
    "remember", "don't forget", "do not forget", "must", "never",
]

CREATION_TERMS = [
    "记住", "请记住", "别忘了", "不要忘记",
    "必须", "应该", "不能", "禁止",
    "重要", "关键", "注意", "牢记",
    "remember", "don't forget", "do not forget", "keep in mind",
    "must", "never", "always", "important",
]

REASONING_PATTERNS = _compile(
    r"帮我.*分析",
    r"根据.*情况",
    r"结合.*来看",
    r"考虑到.*因素",
    r"在.*基础上",
    r"针对.*问题",
    r"关于.*的建议",
    r"\bbased on\b.+",
    r"\bhelp me analy[sz]e\b",
    r"\bconsidering\b.+",
    r"\bin light of\b.+",
)

CLAUSE_PUNCTUATION = "，。？！；,;?!"
LONG_UTTERANCE_CHARS = 20

LOCATION_PATTERNS = _compile(
    r"^(现在|今天|明天|昨天)?.{0,8}(天气|气温|下雨|下雪|晴天|阴天|湿度)",
    r"^(交通|路况|堵车|地铁|公交)",
    r"^(附近|周边)\s*(的)?\s*(餐厅|商店|医院|银行)",
    r"^(推荐|介绍)\s*(一下|个|些)?\s*(餐厅|美食|景点)",
    r"\b(weather|temperature|forecast|traffic|near me|nearby)\b",
)

_RECALL = _term_pattern(RECALL_TERMS)
_RETRIEVAL_CREATION = _term_pattern(RETRIEVAL_CREATION_TERMS)
_CREATION = _term_pattern(CREATION_TERMS)


def _is_definition(message: str) -> bool:
    if PERSONAL_REFERENCE.search(message):
        return False
    return any(p.search(message) for p in DEFINITION_PATTERNS)


def _is_context_dependent(message: str) -> bool:
    return any(
        p.search(message)
        for group in (
            WEATHER_PATTERNS,
            TRANSIT_PATTERNS,
            NEARBY_PATTERNS,
            PERSONAL_STATE_PATTERNS,
            SCHEDULE_PATTERNS,
        )
        for p in group
    )


def _is_long_compound(message: str) -> bool:
    return len(message) > LONG_UTTERANCE_CHARS and any(
        ch in message for ch in CLAUSE_PUNCTUATION
    )


@dataclass(frozen=True)
class GateRule:
    """A named classification rule; the first matching rule decides."""

    name: str
    retrieve: bool
    matches: Callable[[str], bool]


# Evaluated top to bottom; first match wins.
RETRIEVAL_RULES: list[GateRule] = [
    GateRule("greeting", False, _any(GREETING_PATTERNS)),
    GateRule("arithmetic", False, _any(MATH_PATTERNS)),
    GateRule("definition", False, _is_definition),
    GateRule("date_time", False, _any(TIME_PATTERNS)),
    GateRule("context_dependent", True, _is_context_dependent),
    GateRule("recall_cue", True, lambda m: bool(_RECALL.search(m))),
    GateRule("creation_cue", True, lambda m: bool(_RETRIEVAL_CREATION.search(m))),
    GateRule("contextual_reasoning", True, _any(REASONING_PATTERNS)),
    GateRule("long_compound", True, _is_long_compound),
]


def normalize(utterance: str) -> str:
    return utterance.lower().strip()


class RetrievalGate:
    """
    Pure classifier deciding whether retrieval (or creation) is warranted.

    Rules (first match wins):
    1. greeting / farewell / courtesy -> skip
    2. bare arithmetic -> skip
    3. generic definition question without personal reference -> skip
    4. pure date/time query -> skip
    5. weather, traffic, nearby, personal-state, schedule -> retrieve
    6. recall cue term -> retrieve
    7. creation cue term -> retrieve (avoid duplicate creation)
    8. reasoning over context -> retrieve
    9. long utterance with clause punctuation -> retrieve
    otherwise -> skip
    """

    def __init__(self, rules: Optional[list[GateRule]] = None):
        self.rules = rules if rules is not None else RETRIEVAL_RULES

    def matching_rule(self, utterance: str) -> Optional[GateRule]:
        """First rule matching the utterance, or None when no rule applies."""
        message = normalize(utterance)
        for rule in self.rules:
            if rule.matches(message):
                return rule
        return None

    def should_retrieve_memory(self, utterance: str) -> bool:
        rule = self.matching_rule(utterance)
        if rule is None:
            return False
        logger.debug("Retrieval gate: rule %s -> %s", rule.name, rule.retrieve)
        return rule.retrieve

    def should_create_memory(self, utterance: str) -> bool:
        """Explicit remember/must/important vocabulary."""
        return bool(_CREATION.search(normalize(utterance)))

    def is_location_dependent(self, utterance: str) -> bool:
        """Geo, weather or transit shaped queries."""
        message = normalize(utterance)
        return any(p.search(message) for p in LOCATION_PATTERNS)
