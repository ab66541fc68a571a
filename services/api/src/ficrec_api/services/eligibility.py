"""内容准入校验。"""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ficrec_api.schemas.metadata import WorkMetadata
from ficrec_api.services.locks import has_override

DEFAULT_REQUIRED_CATEGORY = "Supernatural (TV 2005)"
DEFAULT_CANONICAL_PAIRING = "Castiel/Dean Winchester"

_DEMOTED_PAIRING = re.compile(r"\b(past|minor)\b", re.IGNORECASE)


def _fold(value: str) -> str:
    return " ".join(value.split()).lower()


@dataclass(frozen=True)
class EligibilityPolicy:
    """准入策略参数。"""

    required_category: str = DEFAULT_REQUIRED_CATEGORY
    canonical_pairing: str = DEFAULT_CANONICAL_PAIRING

    @property
    def protected_entities(self) -> tuple[str, ...]:
        """规范配对两侧的角色名（已小写）。"""
        return tuple(_fold(part) for part in self.canonical_pairing.split("/") if part.strip())

    def canonical_pattern(self) -> re.Pattern[str]:
        # 容忍双斜杠与斜杠两侧空白。
        left, _, right = self.canonical_pairing.partition("/")
        return re.compile(
            rf"^\s*{re.escape(left.strip())}\s*//?\s*{re.escape(right.strip())}\s*$",
            re.IGNORECASE,
        )


@dataclass(frozen=True)
class EligibilityResult:
    valid: bool
    reason: str | None = None


EligibilityPredicate = Callable[[WorkMetadata, EligibilityPolicy], EligibilityResult]


def check_eligibility(metadata: WorkMetadata, policy: EligibilityPolicy) -> EligibilityResult:
    """按类别与配对标签判定作品是否可入库。

    1) 缺少必需类别标签则拒绝
    2) 无配对标签视为无配对作品，放行
    3) 唯一的配对标签为规范配对时放行
    4) 逐个检查配对标签：友情标签与 past/minor 标签忽略，
       受保护角色与规范伴侣以外的人配对则拒绝
    """
    required = _fold(policy.required_category)
    if not any(_fold(tag) == required for tag in metadata.fandom_tags):
        return EligibilityResult(valid=False, reason=f"Missing {policy.required_category} fandom tag.")

    relationships = [tag for tag in metadata.relationship_tags if tag.strip()]
    if not relationships:
        return EligibilityResult(valid=True)

    canonical = policy.canonical_pattern()
    if len(relationships) == 1 and canonical.match(relationships[0]):
        return EligibilityResult(valid=True)

    protected = set(policy.protected_entities)
    for tag in relationships:
        if "&" in tag or _DEMOTED_PAIRING.search(tag):
            continue
        if canonical.match(tag):
            continue
        parties = {_fold(part) for part in tag.split("/") if part.strip()}
        if parties & protected:
            # 同时包含两侧但人数更多的多人配对同样拒绝。
            return EligibilityResult(valid=False, reason=f"Detected multishipping: {tag.strip()}")
    return EligibilityResult(valid=True)


class EligibilityGate:
    """准入门禁，主体存在豁免时跳过校验。"""

    def __init__(
        self,
        policy: EligibilityPolicy | None = None,
        predicate: EligibilityPredicate = check_eligibility,
    ):
        self.policy = policy or EligibilityPolicy()
        self.predicate = predicate

    def evaluate(self, db: Session, subject_keys: Iterable[str], metadata: WorkMetadata) -> EligibilityResult:
        if has_override(db, subject_keys):
            return EligibilityResult(valid=True)
        return self.predicate(metadata, self.policy)
