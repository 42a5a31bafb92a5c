"""
Presentation State

JSON view models describing what the student should see. Rendering them as
pages is the caller's business; these models carry only data.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field

from examcore.assessments.document.templates import (
    AutoCorrectItemTemplate,
    ChoiceItemTemplate,
    NumericItemTemplate,
)
from examcore.assessments.session.states import Instructions, Item, Solution, SubmitConfirm


class ItemView(BaseModel):
    """One item as presented (or reviewed)."""
    index: int
    item_id: int
    name: Optional[str] = None
    kind: str
    prompt: str = ""
    choices: List[str] = Field(default_factory=list)
    multiple: bool = False
    response: Optional[List[str]] = None
    auto_correct: bool = False
    # Only filled when reviewing solutions
    correct: Optional[bool] = None
    solution: Optional[List[str]] = None


class SessionView(BaseModel):
    """Presentation state for one session."""
    interaction_id: str
    assessment_id: str
    student_id: str
    title: Optional[str] = None
    state: str
    current_item: int = -1
    item_count: int = 0
    started: bool = False
    eligible: bool = True
    reasons: List[str] = Field(default_factory=list)
    holds: List[str] = Field(default_factory=list)
    deadline: Optional[float] = None
    time_remaining: Optional[float] = None
    instructions: Optional[str] = None
    review: bool = False
    item: Optional[ItemView] = None
    answered: List[bool] = Field(default_factory=list)
    score: Optional[int] = None
    mastery: Optional[int] = None
    passed: Optional[bool] = None
    grading_error: Optional[str] = None
    notice: Optional[str] = None
    closed: bool = False
    redirect: Optional[str] = None

    @classmethod
    def from_session(cls, session: Any, now: float) -> "SessionView":
        """Build the view for a session's current state."""
        state = session.state
        realized = session.realized
        review = isinstance(state, Solution)

        view = cls(
            interaction_id=session.interaction_id,
            assessment_id=session.assessment_id,
            student_id=session.student_id,
            title=session.document.title,
            state=state.name,
            current_item=session.current_item,
            item_count=session.item_count,
            started=session.started,
            eligible=not session.ineligible_reasons,
            reasons=list(session.ineligible_reasons),
            holds=list(session.holds),
            deadline=session.deadline or None,
            time_remaining=session.time_remaining(now),
            review=review,
            score=session.score,
            mastery=session.mastery,
            passed=session.passed,
            grading_error=session.grading_error,
            closed=session.closed,
            redirect=session.redirect if session.closed else None,
        )

        if realized is not None:
            view.answered = [item.answered for item in realized.items]

        if isinstance(state, Instructions) or (review and state.index is None):
            view.instructions = session.document.instructions or ""
        elif isinstance(state, (Item, Solution)) and realized is not None:
            view.item = item_view(realized, state.index, review)
        elif isinstance(state, SubmitConfirm) and realized is not None:
            unanswered = len(realized) - realized.answered_count()
            if unanswered:
                view.notice = f"{unanswered} question(s) have not been answered."

        return view


def item_view(realized, index: int, review: bool) -> Optional[ItemView]:
    """Describe one realized item; answers are revealed only in review."""
    item = realized.item_at(index)
    if item is None:
        return None

    template = item.template
    view = ItemView(
        index=index,
        item_id=item.item_id,
        name=item.name,
        kind=template.kind,
        response=list(item.response) if item.response is not None else None,
        auto_correct=item.auto_correct,
    )
    if isinstance(template, ChoiceItemTemplate):
        view.prompt = template.prompt
        view.choices = list(template.choices)
        view.multiple = template.multiple
        if review:
            view.solution = [c for c in template.choices if c in template.correct]
    elif isinstance(template, NumericItemTemplate):
        view.prompt = template.prompt
        if review:
            view.solution = [repr(template.answer)]
    elif isinstance(template, AutoCorrectItemTemplate):
        view.prompt = "This question was answered correctly on earlier attempts."

    if review:
        view.correct = item.correct if item.correct is not None else template.is_correct(item.response)
    return view
