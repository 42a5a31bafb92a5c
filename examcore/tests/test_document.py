"""Tests for item templates, document models, realization, the XML codec and catalogs."""

import random
import unittest

import pytest

from examcore.common.exceptions import DocumentError
from examcore.assessments.document.catalog import DirectoryDocumentCatalog, InMemoryDocumentCatalog
from examcore.assessments.document.formula import Formula
from examcore.assessments.document.models import (
    ActionType,
    AssessmentDocument,
    AssessmentType,
    DocumentItem,
    OutcomeAction,
    OutcomeRule,
    OutcomeValidation,
    Section,
    Subtest,
    SubtestItem,
)
from examcore.assessments.document.realized import realize
from examcore.assessments.document.templates import (
    AutoCorrectItemTemplate,
    ChoiceItemTemplate,
    NumericItemTemplate,
)
from examcore.assessments.document.xml_codec import document_from_string, document_to_string
from examcore.tests.factories import choice_template, make_document, rule


class TestChoiceItemTemplate(unittest.TestCase):

    def setUp(self):
        self.template = ChoiceItemTemplate(
            template_id="t1",
            choices=("A", "B", "C", "D"),
            correct=frozenset({"A", "C"}),
            multiple=True,
        )

    def test_exact_selection_required(self):
        self.assertTrue(self.template.is_correct(("A", "C")))
        self.assertFalse(self.template.is_correct(("A",)))
        self.assertFalse(self.template.is_correct(("A", "B", "C")))
        self.assertFalse(self.template.is_correct(None))
        self.assertEqual(self.template.score(("A",)), 0.0)
        self.assertEqual(self.template.score(("C", "A")), 1.0)

    def test_extract_response_keeps_document_order(self):
        response = self.template.extract_response({"answer": ["D", "A", "Z"]})
        self.assertEqual(response, ("A", "D"))
        self.assertIsNone(self.template.extract_response({"answer": "Z"}))
        self.assertIsNone(self.template.extract_response({}))

    def test_single_selection_keeps_first_choice(self):
        single = choice_template("t2")
        self.assertEqual(single.extract_response({"answer": ["C", "B"]}), ("C",))

    def test_invalid_definitions(self):
        with self.assertRaises(DocumentError):
            ChoiceItemTemplate(template_id="t", choices=("A",), correct=frozenset({"B"}))
        with self.assertRaises(DocumentError):
            ChoiceItemTemplate(template_id="t", choices=("A", "B"), correct=frozenset({"A", "B"}))
        with self.assertRaises(DocumentError):
            ChoiceItemTemplate(template_id="t", choices=(), correct=frozenset())


class TestOtherTemplates(unittest.TestCase):

    def test_numeric_tolerance(self):
        template = NumericItemTemplate(template_id="n1", answer=2.5, tolerance=0.1)
        self.assertTrue(template.is_correct(("2.45",)))
        self.assertFalse(template.is_correct(("2.7",)))
        self.assertFalse(template.is_correct(("two",)))
        self.assertFalse(template.is_correct(("nan",)))
        self.assertEqual(template.extract_response({"answer": [" 3 ", "4"]}), ("3",))

    def test_negative_tolerance_rejected(self):
        with self.assertRaises(DocumentError):
            NumericItemTemplate(template_id="n1", answer=1.0, tolerance=-1.0)

    def test_auto_correct(self):
        template = AutoCorrectItemTemplate(value=2.0)
        self.assertTrue(template.is_answered(None))
        self.assertTrue(template.is_correct(None))
        self.assertEqual(template.score(None), 2.0)
        self.assertIsNone(template.extract_response({"answer": "A"}))


def test_duplicate_item_ids_rejected():
    item = DocumentItem(item_id=1, templates=(choice_template("a"),))
    with pytest.raises(DocumentError, match="Duplicate item id 1"):
        AssessmentDocument(version="X", sections=(Section(name="S", items=(item, item)),))


def test_subtest_must_reference_existing_items():
    item = DocumentItem(item_id=1, templates=(choice_template("a"),))
    with pytest.raises(DocumentError):
        AssessmentDocument(
            version="X",
            sections=(Section(name="S", items=(item,)),),
            subtests=(Subtest(name="score", items=(SubtestItem(2),)),),
        )


def test_document_lookup_helpers():
    document = make_document(item_count=3, grading_rules=[rule("honors", "score >= 3")])
    assert document.item_count == 3
    assert document.item(2).name == "Question 2"
    assert document.item(9) is None
    assert document.subtest("score") is not None
    assert document.has_grading_rule("honors")
    assert not document.has_grading_rule("passed")
    assert [item.item_id for _, item in document.items()] == [1, 2, 3]


def test_realize_selects_one_template_per_item():
    pool = (choice_template("p1"), choice_template("p2"), choice_template("p3"))
    document = AssessmentDocument(
        version="POOL",
        sections=(Section(name="S", items=(DocumentItem(item_id=1, templates=pool),
                                           DocumentItem(item_id=2, templates=(choice_template("q"),)))),),
    )
    realized = realize(document, serial_number=7, realized_at=100.0, rng=random.Random(3))
    assert len(realized) == 2
    assert realized.items[0].template in pool
    assert realized.items[1].template.template_id == "q"
    assert realized.serial_number == 7
    assert realized.answered_count() == 0


def test_realize_auto_corrects_mastered_items():
    realized = realize(make_document(), serial_number=1, realized_at=0.0, auto_correct_ids={2})
    assert not realized.item(1).auto_correct
    assert realized.item(2).auto_correct
    assert realized.answered_count() == 1


class TestXmlCodec(unittest.TestCase):

    def full_document(self) -> AssessmentDocument:
        items = (
            DocumentItem(item_id=1, templates=(choice_template("c1"), choice_template("c2", correct="D")),
                         name="Pick one", weight=2.0),
            DocumentItem(item_id=2, templates=(NumericItemTemplate(template_id="n1", answer=0.5, tolerance=0.01,
                                                                   prompt="Half?"),)),
        )
        return AssessmentDocument(
            version="171FE",
            sections=(Section(name="Main", items=items, short_name="Q"),),
            course="M 117",
            unit=4,
            assessment_type=AssessmentType.FINAL,
            title="Final Exam",
            instructions="Work carefully.",
            allowed_seconds=5400,
            mastery_score=2,
            subtests=(Subtest(name="score", items=(SubtestItem(1, 2.0), SubtestItem(2))),),
            grading_rules=(rule("honors", "score >= 3", "proctored"),),
            outcomes=(
                OutcomeRule(
                    condition=Formula("passed"),
                    prerequisites=(Formula("true"),),
                    validations=(OutcomeValidation(Formula("proctored"), "P"),),
                    actions=(OutcomeAction(ActionType.PLACEMENT, "M 118"), OutcomeAction(ActionType.LICENSED)),
                    log_denial=True,
                ),
            ),
        )

    def test_dump_and_load_preserve_document(self):
        document = self.full_document()
        text = document_to_string(document)
        self.assertIn('version="171FE"', text)
        self.assertEqual(document_from_string(text), document)

    def test_rejects_bad_documents(self):
        bad = [
            "<assessment><section/></assessment>",
            '<assessment version="X" type="Z"/>',
            '<exam version="X"/>',
            '<assessment version="X"><grading-rule name="r"><condition>score &gt;</condition></grading-rule>'
            '</assessment>',
            '<assessment version="X"><outcome><condition>true</condition><action type="credit"/></outcome>'
            '</assessment>',
            '<assessment version="X"><section><item id="one"><template kind="auto-correct"/></item></section>'
            '</assessment>',
            '<assessment version="X"',
        ]
        for text in bad:
            with self.assertRaises(DocumentError, msg=text):
                document_from_string(text)

    def test_unknown_template_kind(self):
        text = '<assessment version="X"><section><item id="1"><template kind="essay" id="e"/></item></section>' \
               '</assessment>'
        with self.assertRaises(DocumentError):
            document_from_string(text)


def test_in_memory_catalog():
    catalog = InMemoryDocumentCatalog([make_document("A1"), make_document("B2")])
    assert catalog.get("A1").version == "A1"
    assert catalog.versions() == ["A1", "B2"]
    with pytest.raises(DocumentError):
        catalog.get("C3")


def test_directory_catalog_loads_and_caches(tmp_path):
    (tmp_path / "171UE.xml").write_text(document_to_string(make_document("171UE")), encoding="utf-8")
    (tmp_path / "WRONG.xml").write_text(document_to_string(make_document("OTHER")), encoding="utf-8")
    catalog = DirectoryDocumentCatalog(str(tmp_path))

    document = catalog.get("171UE")
    assert document.item_count == 2
    assert catalog.get("171UE") is document
    assert catalog.versions() == ["171UE", "WRONG"]

    with pytest.raises(DocumentError, match="declares version"):
        catalog.get("WRONG")
    with pytest.raises(DocumentError):
        catalog.get("MISSING")
    with pytest.raises(DocumentError):
        catalog.get("../171UE")
