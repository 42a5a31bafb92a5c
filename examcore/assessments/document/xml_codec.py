"""
Assessment Document XML Codec

Loads and dumps assessment documents in the content store's XML format::

    <assessment version="171UE" course="M 117" unit="1" type="U"
                allowed-seconds="3600" mastery="8">
      <title>Unit 1 Exam</title>
      <instructions>Answer every question.</instructions>
      <section name="Main" short-name="Q">
        <item id="1" name="Question 1" weight="1">
          <template kind="choice" id="171.1a" multiple="false">...</template>
        </item>
      </section>
      <subtest name="score"><subtest-item id="1" weight="1"/></subtest>
      <grading-rule name="passed"><condition>score &gt;= 8</condition></grading-rule>
      <outcome log-denial="true">
        <condition>passed</condition>
        <prerequisite>true</prerequisite>
        <validation how="P">proctored</validation>
        <action type="placement" course="M 117"/>
      </outcome>
    </assessment>

The same element is embedded in persisted sessions, so dump/load must be
lossless for every attribute the scoring pipeline reads.
"""

import xml.etree.ElementTree as ET
from typing import List, Optional

from examcore.common.exceptions import DocumentError, FormulaError
from examcore.assessments.document.formula import Formula
from examcore.assessments.document.models import (
    ActionType,
    AssessmentDocument,
    AssessmentType,
    DocumentItem,
    GradingRule,
    OutcomeAction,
    OutcomeRule,
    OutcomeValidation,
    Section,
    Subtest,
    SubtestItem,
)
from examcore.assessments.document.templates import template_from_xml


def document_to_xml(document: AssessmentDocument) -> ET.Element:
    """Serialize a document as an ``<assessment>`` element."""
    attrs = {"version": document.version, "type": document.assessment_type.value}
    if document.course is not None:
        attrs["course"] = document.course
    if document.unit is not None:
        attrs["unit"] = str(document.unit)
    if document.allowed_seconds is not None:
        attrs["allowed-seconds"] = str(document.allowed_seconds)
    if document.mastery_score is not None:
        attrs["mastery"] = str(document.mastery_score)
    root = ET.Element("assessment", attrs)

    if document.title:
        ET.SubElement(root, "title").text = document.title
    if document.instructions:
        ET.SubElement(root, "instructions").text = document.instructions

    for section in document.sections:
        section_attrs = {"name": section.name}
        if section.short_name:
            section_attrs["short-name"] = section.short_name
        section_elem = ET.SubElement(root, "section", section_attrs)
        for item in section.items:
            item_attrs = {"id": str(item.item_id), "weight": repr(item.weight)}
            if item.name:
                item_attrs["name"] = item.name
            item_elem = ET.SubElement(section_elem, "item", item_attrs)
            for template in item.templates:
                item_elem.append(template.to_xml())

    for subtest in document.subtests:
        subtest_elem = ET.SubElement(root, "subtest", {"name": subtest.name})
        for ref in subtest.items:
            ET.SubElement(subtest_elem, "subtest-item", {"id": str(ref.item_id), "weight": repr(ref.weight)})

    for rule in document.grading_rules:
        rule_elem = ET.SubElement(root, "grading-rule", {"name": rule.name})
        for condition in rule.conditions:
            ET.SubElement(rule_elem, "condition").text = condition.source

    for outcome in document.outcomes:
        outcome_elem = ET.SubElement(root, "outcome", {"log-denial": "true" if outcome.log_denial else "false"})
        ET.SubElement(outcome_elem, "condition").text = outcome.condition.source
        for prereq in outcome.prerequisites:
            ET.SubElement(outcome_elem, "prerequisite").text = prereq.source
        for validation in outcome.validations:
            ET.SubElement(outcome_elem, "validation", {"how": validation.how_validated}).text = \
                validation.formula.source
        for action in outcome.actions:
            action_attrs = {"type": action.action_type.value}
            if action.course:
                action_attrs["course"] = action.course
            ET.SubElement(outcome_elem, "action", action_attrs)

    return root


def document_from_xml(root: ET.Element) -> AssessmentDocument:
    """
    Build a document from an ``<assessment>`` element.

    Raises:
        DocumentError: On any structural problem, including unparseable formulas
    """
    if root.tag != "assessment":
        raise DocumentError(f"Expected 'assessment', found '{root.tag}'")

    version = root.get("version")
    if not version:
        raise DocumentError("'assessment' is missing 'version'")

    try:
        assessment_type = AssessmentType(root.get("type", AssessmentType.UNIT.value))
    except ValueError:
        raise DocumentError(f"Unknown assessment type '{root.get('type')}' in {version}")

    try:
        sections = tuple(_section_from_xml(elem) for elem in root.findall("section"))
        subtests = tuple(_subtest_from_xml(elem) for elem in root.findall("subtest"))
        rules = tuple(_grading_rule_from_xml(elem) for elem in root.findall("grading-rule"))
        outcomes = tuple(_outcome_from_xml(elem) for elem in root.findall("outcome"))
    except FormulaError as e:
        raise DocumentError(f"Invalid formula in assessment {version}: {e.message}", e)

    return AssessmentDocument(
        version=version,
        sections=sections,
        course=root.get("course"),
        unit=_optional_int(root, "unit"),
        assessment_type=assessment_type,
        title=root.findtext("title"),
        instructions=root.findtext("instructions"),
        allowed_seconds=_optional_int(root, "allowed-seconds"),
        mastery_score=_optional_int(root, "mastery"),
        subtests=subtests,
        grading_rules=rules,
        outcomes=outcomes,
    )


def document_to_string(document: AssessmentDocument) -> str:
    root = document_to_xml(document)
    ET.indent(root)
    return ET.tostring(root, encoding="unicode")


def document_from_string(text: str) -> AssessmentDocument:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise DocumentError(f"Unparseable assessment XML: {e}", e)
    return document_from_xml(root)


def _section_from_xml(elem: ET.Element) -> Section:
    items = []
    for item_elem in elem.findall("item"):
        item_id = _required_int(item_elem, "id")
        templates = tuple(template_from_xml(t) for t in item_elem.findall("template"))
        items.append(DocumentItem(
            item_id=item_id,
            templates=templates,
            name=item_elem.get("name"),
            weight=_float(item_elem, "weight", 1.0),
        ))
    return Section(name=elem.get("name", ""), items=tuple(items), short_name=elem.get("short-name"))


def _subtest_from_xml(elem: ET.Element) -> Subtest:
    name = elem.get("name")
    if not name:
        raise DocumentError("'subtest' is missing 'name'")
    refs = tuple(
        SubtestItem(item_id=_required_int(ref, "id"), weight=_float(ref, "weight", 1.0))
        for ref in elem.findall("subtest-item")
    )
    return Subtest(name=name, items=refs)


def _grading_rule_from_xml(elem: ET.Element) -> GradingRule:
    name = elem.get("name")
    if not name:
        raise DocumentError("'grading-rule' is missing 'name'")
    conditions = tuple(Formula(c.text or "") for c in elem.findall("condition"))
    if not conditions:
        raise DocumentError(f"Grading rule '{name}' has no condition")
    return GradingRule(name=name, conditions=conditions)


def _outcome_from_xml(elem: ET.Element) -> OutcomeRule:
    condition_elem = elem.find("condition")
    if condition_elem is None:
        raise DocumentError("'outcome' is missing 'condition'")

    validations: List[OutcomeValidation] = []
    for valid in elem.findall("validation"):
        how = valid.get("how")
        if not how:
            raise DocumentError("'validation' is missing 'how'")
        validations.append(OutcomeValidation(formula=Formula(valid.text or ""), how_validated=how))

    actions: List[OutcomeAction] = []
    for action in elem.findall("action"):
        try:
            action_type = ActionType(action.get("type"))
        except ValueError:
            raise DocumentError(f"Unknown outcome action '{action.get('type')}'")
        if action_type != ActionType.LICENSED and not action.get("course"):
            raise DocumentError(f"Outcome action '{action_type.value}' requires a course")
        actions.append(OutcomeAction(action_type=action_type, course=action.get("course")))

    return OutcomeRule(
        condition=Formula(condition_elem.text or ""),
        prerequisites=tuple(Formula(p.text or "") for p in elem.findall("prerequisite")),
        validations=tuple(validations),
        actions=tuple(actions),
        log_denial=elem.get("log-denial", "false").lower() == "true",
    )


def _optional_int(elem: ET.Element, attr: str) -> Optional[int]:
    value = elem.get(attr)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise DocumentError(f"Attribute '{attr}' on '{elem.tag}' is not an integer: {value!r}")


def _required_int(elem: ET.Element, attr: str) -> int:
    value = _optional_int(elem, attr)
    if value is None:
        raise DocumentError(f"'{elem.tag}' is missing '{attr}'")
    return value


def _float(elem: ET.Element, attr: str, default: float) -> float:
    value = elem.get(attr)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise DocumentError(f"Attribute '{attr}' on '{elem.tag}' is not a number: {value!r}")
