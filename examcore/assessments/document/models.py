"""
Assessment Document Models

This module defines the immutable structural model of one assessment
version: ordered sections of items, subtests (weighted item groups), grading
rules, and outcome rules. A document is loaded once from the content store
and shared read-only by every session that realizes it.
"""

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Tuple

from examcore.common.exceptions import DocumentError
from examcore.assessments.document.formula import Formula
from examcore.assessments.document.templates import ItemTemplate


class AssessmentType(enum.Enum):
    """Kinds of assessment, using the records store's one-letter codes."""
    UNIT = "U"
    FINAL = "F"
    REVIEW = "R"
    QUIZ = "Q"


class ActionType(enum.Enum):
    """Things an outcome rule can award."""
    PLACEMENT = "placement"
    CREDIT = "credit"
    LICENSED = "licensed"


@dataclass(frozen=True)
class DocumentItem:
    """
    One item slot in a section.

    ``templates`` is the pool of interchangeable templates for the slot; one is
    chosen when the document is realized for a student.

    ``weight`` is informational and carried through realization; scoring
    uses the weight on each subtest reference instead.
    """
    item_id: int
    templates: Tuple[ItemTemplate, ...]
    name: Optional[str] = None
    weight: float = 1.0

    def __post_init__(self):
        if not self.templates:
            raise DocumentError(f"Item {self.item_id} has no templates")


@dataclass(frozen=True)
class Section:
    name: str
    items: Tuple[DocumentItem, ...]
    short_name: Optional[str] = None


@dataclass(frozen=True)
class SubtestItem:
    item_id: int
    weight: float = 1.0


@dataclass(frozen=True)
class Subtest:
    name: str
    items: Tuple[SubtestItem, ...]


@dataclass(frozen=True)
class GradingRule:
    """
    A named pass/fail rule.

    The rule passes when any of its conditions evaluates true; conditions are
    tried in order.
    """
    name: str
    conditions: Tuple[Formula, ...]


@dataclass(frozen=True)
class OutcomeValidation:
    formula: Formula
    how_validated: str


@dataclass(frozen=True)
class OutcomeAction:
    action_type: ActionType
    course: Optional[str] = None


@dataclass(frozen=True)
class OutcomeRule:
    condition: Formula
    prerequisites: Tuple[Formula, ...] = ()
    validations: Tuple[OutcomeValidation, ...] = ()
    actions: Tuple[OutcomeAction, ...] = ()
    log_denial: bool = False


@dataclass(frozen=True)
class AssessmentDocument:
    """
    Immutable model of one assessment version.

    Item identifiers must be unique across all sections, and every subtest
    must reference existing items.
    """
    version: str
    sections: Tuple[Section, ...]
    course: Optional[str] = None
    unit: Optional[int] = None
    assessment_type: AssessmentType = AssessmentType.UNIT
    title: Optional[str] = None
    instructions: Optional[str] = None
    allowed_seconds: Optional[int] = None
    mastery_score: Optional[int] = None
    subtests: Tuple[Subtest, ...] = ()
    grading_rules: Tuple[GradingRule, ...] = ()
    outcomes: Tuple[OutcomeRule, ...] = ()
    _index: Dict[int, DocumentItem] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.version:
            raise DocumentError("Assessment document has no version")
        if self.allowed_seconds is not None and self.allowed_seconds <= 0:
            raise DocumentError(f"Assessment {self.version} has a non-positive time limit")

        index: Dict[int, DocumentItem] = {}
        for section in self.sections:
            for item in section.items:
                if item.item_id in index:
                    raise DocumentError(f"Duplicate item id {item.item_id} in assessment {self.version}")
                index[item.item_id] = item

        for subtest in self.subtests:
            for ref in subtest.items:
                if ref.item_id not in index:
                    raise DocumentError(
                        f"Subtest '{subtest.name}' references unknown item {ref.item_id}")

        # Frozen dataclass: the lookup index is filled in once here
        object.__setattr__(self, "_index", index)

    def items(self) -> Iterator[Tuple[int, DocumentItem]]:
        """Yield (section index, item) in presentation order."""
        for section_index, section in enumerate(self.sections):
            for item in section.items:
                yield section_index, item

    def item(self, item_id: int) -> Optional[DocumentItem]:
        return self._index.get(item_id)

    @property
    def item_count(self) -> int:
        return len(self._index)

    def subtest(self, name: str) -> Optional[Subtest]:
        for subtest in self.subtests:
            if subtest.name == name:
                return subtest
        return None

    def has_grading_rule(self, name: str) -> bool:
        return any(rule.name == name for rule in self.grading_rules)
