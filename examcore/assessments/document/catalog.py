"""
Document Catalogs

Sources of assessment documents keyed by version. Documents are immutable
once loaded, so catalogs cache them for the life of the process.
"""

import os
import threading
from typing import Dict, Iterable, List, Optional

from examcore.common.exceptions import DocumentError
from examcore.common.logger import app_logger
from examcore.assessments.document.models import AssessmentDocument
from examcore.assessments.document.xml_codec import document_from_string

logger = app_logger.getChild("catalog")


class InMemoryDocumentCatalog:
    """Catalog over documents supplied at construction."""

    def __init__(self, documents: Iterable[AssessmentDocument] = ()):
        self._documents: Dict[str, AssessmentDocument] = {}
        for document in documents:
            self.add(document)

    def add(self, document: AssessmentDocument) -> None:
        self._documents[document.version] = document

    def get(self, version: str) -> AssessmentDocument:
        document = self._documents.get(version)
        if document is None:
            raise DocumentError(f"No assessment with version '{version}'")
        return document

    def versions(self) -> List[str]:
        return sorted(self._documents)


class DirectoryDocumentCatalog:
    """
    Catalog that loads ``<version>.xml`` files from a directory on first use.

    Args:
        directory: Directory holding assessment XML files
    """

    def __init__(self, directory: str):
        self.directory = directory
        self._cache: Dict[str, AssessmentDocument] = {}
        self._lock = threading.Lock()

    def _path_for(self, version: str) -> Optional[str]:
        # Versions become file names; refuse anything that could escape the directory
        if not version or os.sep in version or version.startswith("."):
            return None
        return os.path.join(self.directory, f"{version}.xml")

    def get(self, version: str) -> AssessmentDocument:
        with self._lock:
            cached = self._cache.get(version)
        if cached is not None:
            return cached

        path = self._path_for(version)
        if path is None or not os.path.isfile(path):
            raise DocumentError(f"No assessment with version '{version}'")

        try:
            with open(path, "r", encoding="utf-8") as f:
                document = document_from_string(f.read())
        except OSError as e:
            raise DocumentError(f"Unable to read assessment '{version}': {e}", e)

        if document.version != version:
            raise DocumentError(
                f"File for '{version}' declares version '{document.version}'")

        logger.info(f"Loaded assessment {version} with {document.item_count} items")
        with self._lock:
            return self._cache.setdefault(version, document)

    def versions(self) -> List[str]:
        if not os.path.isdir(self.directory):
            return []
        return sorted(name[:-4] for name in os.listdir(self.directory) if name.endswith(".xml"))
