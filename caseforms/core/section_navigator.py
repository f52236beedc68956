"""
Section Navigator - Locally owned section navigation and submission gating

One navigator per open form screen. It holds only the current section
index; the document it gates is always passed in.
"""

import logging
from typing import Any, Dict, List, Optional

from caseforms.contracts import SectionInfo, SubmissionCheck
from caseforms.core.completion_rules import CompletionRules

logger = logging.getLogger(__name__)


class SectionNavigator:
    """Steps through a variant's sections in ruleset order"""

    def __init__(self, rules: CompletionRules, start: Optional[str] = None):
        """
        Args:
            rules: Completion rules of the form's variant
            start: Section id to open on (defaults to the first section)

        Raises:
            ValueError: If start is not a section id
        """
        self.rules = rules
        self.sections: List[SectionInfo] = list(rules.sections)
        self._index = 0
        if start is not None:
            self.go_to(start)

    @property
    def current(self) -> SectionInfo:
        return self.sections[self._index]

    @property
    def index(self) -> int:
        return self._index

    @property
    def is_first(self) -> bool:
        return self._index == 0

    @property
    def is_last(self) -> bool:
        return self._index == len(self.sections) - 1

    def next(self) -> SectionInfo:
        """Advance one section (stays put on the last section)"""
        if not self.is_last:
            self._index += 1
        return self.current

    def previous(self) -> SectionInfo:
        """Go back one section (stays put on the first section)"""
        if not self.is_first:
            self._index -= 1
        return self.current

    def go_to(self, section_id: str) -> SectionInfo:
        """
        Jump to a section by id.

        Raises:
            ValueError: If section_id doesn't exist
        """
        for i, section in enumerate(self.sections):
            if section.id == section_id:
                self._index = i
                return section
        raise ValueError(f"Section {section_id} does not exist")

    def section_for_path(self, path: str) -> Optional[str]:
        return self.rules.section_for_path(path)

    def gate_submission(self, document: Dict[str, Any]) -> SubmissionCheck:
        """
        Run the submission checklist and jump to the first failing section.

        Args:
            document: Root document

        Returns:
            SubmissionCheck: ok, missing field labels and the section
                navigated to (None when ok)
        """
        failed = self.rules.failed_checks(document)
        if not failed:
            return SubmissionCheck(ok=True)

        first_path = failed[0][0]
        section_id = self.section_for_path(first_path)
        if section_id is not None:
            self.go_to(section_id)

        missing = tuple(label for _, label in failed)
        logger.warning(f"Submission gate failed: {', '.join(missing)}")
        return SubmissionCheck(ok=False, missing_fields=missing, first_failing_section=section_id)

    def section_progress(self, document: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Per-section completeness for a progress indicator.

        Returns:
            list: [{'id', 'title', 'part', 'missing': int, 'complete': bool}]
        """
        missing = self.rules.missing_by_section(document)
        return [
            {
                'id': section.id,
                'title': section.title,
                'part': section.part,
                'missing': len(missing.get(section.id, [])),
                'complete': section.id not in missing,
            }
            for section in self.sections
        ]
