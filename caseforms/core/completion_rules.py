"""
Completion Rules - Declarative status derivation and submission checklist

Responsibilities:
- Derive CompletionStatus from which required fields are satisfied
- Evaluate DSL conditions for conditionally-required fields
- Run the one-shot submission checklist
- Map document paths to navigation sections

Design principles:
- Stateless: All state comes from the document parameter
- Deterministic: Same input always produces same output
- Total: status derivation never raises, missing paths are unsatisfied
- Fail fast: Validate ruleset on initialization

Ruleset format (caseforms/data/<variant>_ruleset.json):
    section_order: [{id, title, part, paths: [...]}]
    conditions: {name: DSL}
    status_levels: [{status, label, required: [path | {path, condition}]}]
    submission_checklist: [{path, label, check: 'present' | 'is_true'}]
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from caseforms.contracts import CompletionStatus, FormVariant, SectionInfo
from caseforms.core.path_merge import lookup

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / 'data'

DERIVABLE_LEVELS = (
    CompletionStatus.PART_ONE_COMPLETE,
    CompletionStatus.PART_TWO_COMPLETE,
    CompletionStatus.COMPLETED,
)

CHECK_TYPES = ('present', 'is_true')

_MISSING = object()


def is_satisfied(value: Any) -> bool:
    """
    Whether a required field value counts as filled in.

    Rules:
    - None / missing: not satisfied
    - str: non-empty after trim
    - bool, int, float: explicitly set (any non-None value)
    - dict: non-empty and every leaf satisfied
    - list: non-empty
    """
    if value is None or value is _MISSING:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, dict):
        return bool(value) and all(is_satisfied(v) for v in value.values())
    if isinstance(value, list):
        return len(value) > 0
    return True


class CompletionRules:
    """
    Stateless status derivation for one form variant.

    Does not track any state internally - all state comes from the
    document passed to each call.
    """

    def __init__(self, ruleset_path: str):
        """
        Initialize rules from ruleset file.

        Args:
            ruleset_path: Path to <variant>_ruleset.json

        Raises:
            FileNotFoundError: If ruleset doesn't exist
            ValueError: If ruleset missing required keys or has invalid references
        """
        self.ruleset_path = Path(ruleset_path)

        if not self.ruleset_path.exists():
            raise FileNotFoundError(f"Ruleset not found: {ruleset_path}")

        with open(self.ruleset_path, 'r', encoding='utf-8') as f:
            self.ruleset = json.load(f)

        self.conditions = self.ruleset.get("conditions", {})
        self.status_levels = self.ruleset.get("status_levels", [])
        self.submission_checklist = self.ruleset.get("submission_checklist", [])
        self._section_defs = self.ruleset.get("section_order", [])

        self._validate_ruleset()

        self.variant = FormVariant(self.ruleset["variant"])
        self.sections: List[SectionInfo] = [
            SectionInfo(
                id=s["id"],
                title=s.get("title", s["id"]),
                part=s.get("part", ""),
                paths=tuple(s["paths"]),
            )
            for s in self._section_defs
        ]

        logger.info(
            f"Completion rules initialized for {self.variant.value}: "
            f"{len(self.sections)} sections, {len(self.status_levels)} status levels"
        )

    @classmethod
    def for_variant(cls, variant: Union[FormVariant, str], data_dir: Optional[str] = None) -> 'CompletionRules':
        """Load the bundled ruleset for variant"""
        variant = FormVariant(variant)
        base = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        return cls(str(base / f"{variant.value}_ruleset.json"))

    # =========================================================================
    # Public API
    # =========================================================================

    def compute_completion_status(self, document: Dict[str, Any]) -> CompletionStatus:
        """
        Derive completion status from field contents.

        A level is reached only if every applicable required field of that
        level and of all prior levels is satisfied. Never returns
        SUBMITTED (submission is an explicit transition, not derived).

        Args:
            document: Root document

        Returns:
            CompletionStatus: Highest fully-satisfied level, DRAFT if none
        """
        if not isinstance(document, dict):
            return CompletionStatus.DRAFT

        reached = CompletionStatus.DRAFT
        for level in self.status_levels:
            if self._missing_for_level(level, document):
                break
            reached = CompletionStatus(level["status"])
        return reached

    def missing_for_status(self, document: Dict[str, Any], status: Union[CompletionStatus, str]) -> List[str]:
        """
        Required paths still unsatisfied for one level (not including prior levels).

        Args:
            document: Root document
            status: A derivable level

        Returns:
            list: Dotted paths, in ruleset order

        Raises:
            ValueError: If status is not a level of this ruleset
        """
        status = CompletionStatus(status)
        for level in self.status_levels:
            if level["status"] == status.value:
                return self._missing_for_level(level, document)
        raise ValueError(f"Status '{status.value}' is not a level of the {self.variant.value} ruleset")

    def missing_required(self, document: Dict[str, Any]) -> List[str]:
        """All applicable required paths that are unsatisfied, across every level"""
        missing: List[str] = []
        for level in self.status_levels:
            missing.extend(self._missing_for_level(level, document))
        return missing

    def validate_for_submission(self, document: Dict[str, Any]) -> List[str]:
        """
        Run the submission checklist.

        Returns:
            list: Labels of failed checks, in checklist order (empty = ok)
        """
        return [label for _, label in self.failed_checks(document)]

    def failed_checks(self, document: Dict[str, Any]) -> List[Tuple[str, str]]:
        """Failed checklist items as (path, label) pairs, in checklist order"""
        failed = []
        for item in self.submission_checklist:
            value = lookup(document, item["path"])
            if item.get("check", "present") == "is_true":
                passed = value is True
            else:
                passed = is_satisfied(value)
            if not passed:
                failed.append((item["path"], item["label"]))
        return failed

    def section_for_path(self, path: str) -> Optional[str]:
        """
        Section id owning path (longest matching section path wins).

        Returns:
            str or None if no section covers the path
        """
        best_id = None
        best_len = -1
        for section in self.sections:
            for prefix in section.paths:
                if path == prefix or path.startswith(prefix + '.'):
                    if len(prefix) > best_len:
                        best_id, best_len = section.id, len(prefix)
        return best_id

    def missing_by_section(self, document: Dict[str, Any]) -> Dict[str, List[str]]:
        """
        Unsatisfied required paths grouped by section id.

        Sections with nothing missing are omitted. Paths no section covers
        are grouped under '_unassigned'.
        """
        grouped: Dict[str, List[str]] = {}
        for path in self.missing_required(document):
            section_id = self.section_for_path(path) or '_unassigned'
            grouped.setdefault(section_id, []).append(path)
        return grouped

    def referenced_paths(self) -> List[str]:
        """Every document path the ruleset refers to (for template cross-checks)"""
        paths: List[str] = []
        for section in self.sections:
            paths.extend(section.paths)
        for level in self.status_levels:
            for requirement in level.get("required", []):
                paths.append(requirement if isinstance(requirement, str) else requirement["path"])
        for item in self.submission_checklist:
            paths.append(item["path"])
        for dsl in self.conditions.values():
            paths.extend(self._dsl_paths(dsl))
        return paths

    # =========================================================================
    # Condition Evaluation
    # =========================================================================

    def _missing_for_level(self, level: Dict[str, Any], document: Dict[str, Any]) -> List[str]:
        missing = []
        for requirement in level.get("required", []):
            if isinstance(requirement, str):
                path, condition = requirement, None
            else:
                path, condition = requirement["path"], requirement.get("condition")

            if condition and not self._evaluate_condition(condition, document):
                continue
            if not is_satisfied(lookup(document, path, _MISSING)):
                missing.append(path)
        return missing

    def _evaluate_condition(self, condition_name: str, document: Dict[str, Any]) -> bool:
        """
        Evaluate named condition from ruleset.

        Args:
            condition_name: Name of condition in ruleset
            document: Root document

        Returns:
            bool: Condition result (False if condition undefined)
        """
        condition_def = self.conditions.get(condition_name)

        if condition_def is None:
            logger.warning(f"Undefined condition: {condition_name}")
            return False

        return self._evaluate_dsl(condition_def, document)

    def _evaluate_dsl(self, dsl: dict, document: Dict[str, Any]) -> bool:
        """
        Evaluate DSL condition structure over dotted document paths.

        Supports: all, any, eq, ne, is_true, is_false, exists, gte, gt, lte, lt

        Args:
            dsl: DSL condition dict
            document: Root document

        Returns:
            bool: Evaluation result
        """
        if not dsl:
            return True  # Empty condition is vacuously true

        # Logical operators
        if "all" in dsl:
            conditions = dsl["all"]
            if not conditions:
                return True
            return all(self._evaluate_dsl(sub, document) for sub in conditions)

        if "any" in dsl:
            conditions = dsl["any"]
            if not conditions:
                return False
            return any(self._evaluate_dsl(sub, document) for sub in conditions)

        # Comparison operators
        if "eq" in dsl:
            path, expected = dsl["eq"]
            return lookup(document, path) == expected

        if "ne" in dsl:
            path, expected = dsl["ne"]
            return lookup(document, path) != expected

        # Boolean operators
        if "is_true" in dsl:
            return lookup(document, dsl["is_true"]) is True

        if "is_false" in dsl:
            return lookup(document, dsl["is_false"]) is False

        # Existence operator
        if "exists" in dsl:
            return lookup(document, dsl["exists"]) is not None

        # Numeric comparison operators
        for op, compare in (
            ("gte", lambda a, b: a >= b),
            ("gt", lambda a, b: a > b),
            ("lte", lambda a, b: a <= b),
            ("lt", lambda a, b: a < b),
        ):
            if op in dsl:
                path, threshold = dsl[op]
                value = lookup(document, path)
                if value is None:
                    return False
                try:
                    return compare(float(value), float(threshold))
                except (TypeError, ValueError):
                    return False

        # Unknown operator
        logger.warning(f"Unknown DSL operator: {list(dsl.keys())}")
        return False

    def _dsl_paths(self, dsl: Any) -> List[str]:
        if not isinstance(dsl, dict):
            return []
        paths = []
        for op, arg in dsl.items():
            if op in ("all", "any"):
                for sub in arg:
                    paths.extend(self._dsl_paths(sub))
            elif op in ("is_true", "is_false", "exists"):
                paths.append(arg)
            elif isinstance(arg, list) and arg:
                paths.append(arg[0])
        return paths

    # =========================================================================
    # Ruleset Validation
    # =========================================================================

    def _validate_ruleset(self):
        """
        Validate ruleset structure on initialization.

        Checks:
        - variant is a known FormVariant
        - section_order exists, section ids unique, every section has paths
        - status_levels are derivable statuses in ascending order
        - All condition references exist
        - submission_checklist items have path, label and a known check type

        Raises:
            ValueError: If validation fails
        """
        errors = []

        try:
            FormVariant(self.ruleset.get("variant"))
        except ValueError:
            errors.append(f"Unknown variant {self.ruleset.get('variant')!r}")

        # Check section_order
        if not self._section_defs:
            errors.append("Missing 'section_order' in ruleset")
        seen_sections = set()
        for i, section in enumerate(self._section_defs):
            section_id = section.get("id")
            if not section_id:
                errors.append(f"Section at index {i} missing 'id'")
                continue
            if section_id in seen_sections:
                errors.append(f"Duplicate section id '{section_id}'")
            seen_sections.add(section_id)
            if not section.get("paths"):
                errors.append(f"Section '{section_id}' has no paths")

        # Check status levels
        if not self.status_levels:
            errors.append("Missing 'status_levels' in ruleset")
        last_rank = 0
        for i, level in enumerate(self.status_levels):
            try:
                status = CompletionStatus(level.get("status"))
            except ValueError:
                errors.append(f"Status level at index {i} has unknown status {level.get('status')!r}")
                continue
            if status not in DERIVABLE_LEVELS:
                errors.append(f"Status '{status.value}' cannot be derived from field contents")
            elif status.rank <= last_rank:
                errors.append(f"Status level '{status.value}' is out of order")
            else:
                last_rank = status.rank

            for requirement in level.get("required", []):
                if isinstance(requirement, str):
                    continue
                if not isinstance(requirement, dict) or "path" not in requirement:
                    errors.append(f"Requirement {requirement!r} in '{status.value}' missing 'path'")
                    continue
                condition_name = requirement.get("condition")
                if condition_name and condition_name not in self.conditions:
                    errors.append(
                        f"Requirement '{requirement['path']}' references "
                        f"undefined condition '{condition_name}'"
                    )

        # Check submission checklist
        for i, item in enumerate(self.submission_checklist):
            if "path" not in item or "label" not in item:
                errors.append(f"Checklist item at index {i} missing 'path' or 'label'")
            if item.get("check", "present") not in CHECK_TYPES:
                errors.append(f"Checklist item at index {i} has unknown check {item.get('check')!r}")

        if errors:
            error_msg = "Ruleset validation failed:\n  - " + "\n  - ".join(errors)
            raise ValueError(error_msg)

        logger.info("Ruleset validation passed")
