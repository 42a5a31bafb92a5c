"""
Assessment Documents

Immutable structural models of assessments, the formula language used by
their grading and outcome rules, item templates, and the XML codec used by
catalogs and session persistence.
"""

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
from examcore.assessments.document.templates import (
    AutoCorrectItemTemplate,
    ChoiceItemTemplate,
    ItemTemplate,
    NumericItemTemplate,
)
from examcore.assessments.document.realized import RealizedDocument, RealizedItem, realize
from examcore.assessments.document.catalog import DirectoryDocumentCatalog, InMemoryDocumentCatalog
from examcore.assessments.document.xml_codec import (
    document_from_string,
    document_from_xml,
    document_to_string,
    document_to_xml,
)

__all__ = [
    "Formula",
    "ActionType",
    "AssessmentDocument",
    "AssessmentType",
    "DocumentItem",
    "GradingRule",
    "OutcomeAction",
    "OutcomeRule",
    "OutcomeValidation",
    "Section",
    "Subtest",
    "SubtestItem",
    "AutoCorrectItemTemplate",
    "ChoiceItemTemplate",
    "ItemTemplate",
    "NumericItemTemplate",
    "RealizedDocument",
    "RealizedItem",
    "realize",
    "DirectoryDocumentCatalog",
    "InMemoryDocumentCatalog",
    "document_from_string",
    "document_from_xml",
    "document_to_string",
    "document_to_xml",
]
