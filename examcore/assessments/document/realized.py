"""
Realized Documents

A realized document is one student's bound copy of an assessment: each item
slot has a single selected template, the student's response, and (after
scoring) its correctness and score. It also carries the attempt's serial
number and realization/completion timestamps.
"""

import random
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Optional

from examcore.assessments.document.models import AssessmentDocument
from examcore.assessments.document.templates import AutoCorrectItemTemplate, ItemTemplate, Response


@dataclass
class RealizedItem:
    """
    One presented item with its selected template and the student's response.

    ``weight`` is copied from the document item for display; it does not
    affect scoring.
    """
    item_id: int
    section_index: int
    template: ItemTemplate
    name: Optional[str] = None
    weight: float = 1.0
    response: Optional[Response] = None
    correct: Optional[bool] = None
    score: Optional[float] = None

    @property
    def auto_correct(self) -> bool:
        return isinstance(self.template, AutoCorrectItemTemplate)

    @property
    def answered(self) -> bool:
        return self.template.is_answered(self.response)

    def bind(self) -> None:
        """Compute correctness and score of the current response."""
        self.correct = self.template.is_correct(self.response)
        self.score = self.template.score(self.response) if self.correct else 0.0


@dataclass
class RealizedDocument:
    document: AssessmentDocument
    serial_number: int
    realized_at: float
    items: List[RealizedItem] = field(default_factory=list)
    completed_at: Optional[float] = None

    @property
    def version(self) -> str:
        return self.document.version

    def __len__(self) -> int:
        return len(self.items)

    def item_at(self, index: int) -> Optional[RealizedItem]:
        if 0 <= index < len(self.items):
            return self.items[index]
        return None

    def item(self, item_id: int) -> Optional[RealizedItem]:
        for realized in self.items:
            if realized.item_id == item_id:
                return realized
        return None

    def by_id(self) -> Dict[int, RealizedItem]:
        return {realized.item_id: realized for realized in self.items}

    def answered_count(self) -> int:
        return sum(1 for realized in self.items if realized.answered)


def realize(
    document: AssessmentDocument,
    serial_number: int,
    realized_at: float,
    auto_correct_ids: Collection[int] = (),
    rng: Optional[random.Random] = None,
) -> RealizedDocument:
    """
    Bind a document for one attempt.

    Args:
        document: Assessment to realize
        serial_number: Serial number of the attempt
        realized_at: Realization time (epoch seconds)
        auto_correct_ids: Items to replace with an auto-correct template
        rng: Random source used to pick one template from each item's pool

    Returns:
        The realized document, in presentation order
    """
    rng = rng or random.Random()
    items = []
    for section_index, item in document.items():
        if item.item_id in auto_correct_ids:
            template: ItemTemplate = AutoCorrectItemTemplate()
        elif len(item.templates) == 1:
            template = item.templates[0]
        else:
            template = rng.choice(item.templates)
        items.append(RealizedItem(
            item_id=item.item_id,
            section_index=section_index,
            template=template,
            name=item.name,
            weight=item.weight,
        ))
    return RealizedDocument(
        document=document,
        serial_number=serial_number,
        realized_at=realized_at,
        items=items,
    )
