"""
Document State Manager - Clinical document state for one form

Responsibilities:
- Own one root document (P3 official, P3 simplified or PRC MOH 363)
- Apply path-scoped partial updates without disturbing siblings
- Add, update and remove repeating sub-records
- Re-derive completion status after every change
- Gate the explicit submit transition on the submission checklist

Design principles:
- Document is replaced, never mutated in place (readers holding an
  earlier document keep seeing it unchanged)
- Sibling sub-trees are shared between successive documents
- Validation before merge: a rejected patch leaves the document untouched
- No-op patches are no-ops (no timestamp bump)
- Reads return deep copies

Status bookkeeping:
- document['status'] is the currently satisfied level and may regress
  if a required field is cleared
- highest_status_reached is pinned and never regresses
- 'submitted' is only ever set by submit(); afterwards every mutation
  raises DocumentSubmittedError
"""

import logging
from typing import Any, Dict, List, Optional, Union

from caseforms.contracts import CompletionStatus, FormVariant
from caseforms.core.completion_rules import CompletionRules
from caseforms.core.form_schema import METADATA_FIELDS, FormSchema, OptionalSpec
from caseforms.core.path_merge import (
    Path,
    deep_copy,
    get_at_path,
    join_path,
    lookup,
    replace_at_path,
    split_path,
)
from caseforms.errors import (
    DocumentSubmittedError,
    PatchRejected,
    RecordNotFound,
    SubmissionBlocked,
    UnknownSectionPath,
)
from caseforms.utils.helpers import generate_form_id, recompute_serial_numbers, utc_now_iso

logger = logging.getLogger(__name__)


class DocumentStateManager:
    """Manages the state of one clinical form document"""

    # Engine bookkeeping carried in snapshots but excluded from the
    # clinical JSON export.
    #
    # - snapshot(): INCLUDES these fields (needed to restore the engine)
    # - export_for_json(): EXCLUDES these fields (clinical output only)
    OPERATIONAL_FIELDS = {
        'highest_status_reached',
        'schema_version',
    }

    def __init__(
        self,
        variant: Union[FormVariant, str],
        form_id: Optional[str] = None,
        case_id: str = "",
        incident_id: str = "",
        data_dir: Optional[str] = None,
    ):
        """
        Initialize an empty document for variant.

        Args:
            variant: Form variant (FormVariant or its string value)
            form_id: Document id (generated if omitted)
            case_id: Owning case reference
            incident_id: Owning incident reference
            data_dir: Override directory for templates and rulesets

        Raises:
            ValueError: If variant is unknown or its data files are malformed
            FileNotFoundError: If the variant's data files are missing
        """
        self.variant = FormVariant(variant)
        self.schema = FormSchema.for_variant(self.variant, data_dir)
        self.rules = CompletionRules.for_variant(self.variant, data_dir)
        self._check_rules_against_schema()

        now = utc_now_iso()
        document: Dict[str, Any] = {
            'id': form_id or generate_form_id(),
            'variant': self.variant.value,
            'case_id': case_id,
            'incident_id': incident_id,
            'status': CompletionStatus.DRAFT.value,
            'created_at': now,
            'updated_at': now,
            'submitted_at': None,
        }
        document.update(self.schema.build_document_parts())

        self.document: Dict[str, Any] = document
        self.highest_status_reached = CompletionStatus.DRAFT
        self._refresh_status()

        logger.info(f"Form {self.form_id} created ({self.variant.value}, schema v{self.schema.version})")

    @property
    def form_id(self) -> str:
        return self.document['id']

    @property
    def is_submitted(self) -> bool:
        return self.document['status'] == CompletionStatus.SUBMITTED.value

    # ========================
    # Private Helpers
    # ========================

    def _check_rules_against_schema(self) -> None:
        """
        Every path the ruleset names must exist in the template.

        Raises:
            ValueError: Listing every unresolvable path
        """
        errors = [
            f"Ruleset path '{path}' is not in the {self.variant.value} template"
            for path in self.rules.referenced_paths()
            if not self.schema.has_path(path)
        ]
        if errors:
            raise ValueError("Ruleset/template mismatch:\n  - " + "\n  - ".join(errors))

    def _ensure_editable(self) -> None:
        if self.is_submitted:
            logger.warning(f"Form {self.form_id}: edit attempted after submission")
            raise DocumentSubmittedError(self.form_id)

    def _ensure_part_path(self, parts: List[str]) -> None:
        if parts[0] in METADATA_FIELDS:
            raise UnknownSectionPath(join_path(parts), "is document metadata and cannot be patched")
        if parts[0] not in self.schema.part_names:
            raise UnknownSectionPath(join_path(parts), f"is not a part of {self.variant.value}")

    def _materialise_path(self, document: Dict[str, Any], parts: List[str]) -> Dict[str, Any]:
        """
        Create any null $optional objects along parts (inclusive).

        Returns:
            dict: Document with every object on the path present (may be
                the same object if nothing needed creating)
        """
        for depth in range(1, len(parts) + 1):
            prefix = parts[:depth]
            node = get_at_path(document, prefix)
            if node is not None:
                continue
            spec = self.schema.spec_at(prefix)
            if not isinstance(spec, OptionalSpec):
                raise UnknownSectionPath(join_path(parts), f"passes through null field '{join_path(prefix)}'")
            document = replace_at_path(document, prefix, self.schema.materialise(spec))
            logger.debug(f"Form {self.form_id}: materialised {join_path(prefix)}")
        return document

    def _commit(self, document: Dict[str, Any]) -> None:
        """Install a new document, bump updated_at and re-derive status"""
        document = dict(document)
        document['updated_at'] = utc_now_iso()
        self.document = document
        self._refresh_status()

    def _refresh_status(self) -> None:
        if self.is_submitted:
            return

        previous = self.document['status']
        status = self.rules.compute_completion_status(self.document)
        self.document['status'] = status.value

        if status.rank > self.highest_status_reached.rank:
            self.highest_status_reached = status
        if previous != status.value:
            logger.info(f"Form {self.form_id}: status {previous} -> {status.value}")

    def _record_list(self, list_path: Path):
        """
        Resolve a record list for mutation.

        Returns:
            tuple: (parts, list spec, document with parents materialised, current list)
        """
        parts = split_path(list_path)
        self._ensure_part_path(parts)
        spec = self.schema.record_list_spec_at(parts)
        document = self._materialise_path(self.document, parts[:-1]) if len(parts) > 1 else self.document
        records = get_at_path(document, parts)
        if not isinstance(records, list):
            raise UnknownSectionPath(join_path(parts), "is not a record list")
        return parts, spec, document, records

    @staticmethod
    def _check_index(parts: List[str], records: List[Any], index: Any) -> None:
        if isinstance(index, bool) or not isinstance(index, int) or index < 0 or index >= len(records):
            raise RecordNotFound(join_path(parts), index, len(records))

    # ========================
    # Section Updates
    # ========================

    def patch(self, section_path: Path, partial: Dict[str, Any]) -> Dict[str, Any]:
        """
        Shallow-merge partial into the section (or sub-section) at section_path.

        Keys present in partial overwrite, keys absent are untouched.
        Nested object values replace the existing object and are filled
        out with template defaults.

        Args:
            section_path: Dotted path, e.g. 'part_two.medical_history'
            partial: Keys to change

        Returns:
            dict: Deep copy of the updated document

        Raises:
            UnknownSectionPath: If path is unknown or not an object
            PatchRejected: If partial fails validation (document untouched)
            DocumentSubmittedError: If the document was submitted
        """
        self._ensure_editable()
        parts = split_path(section_path)
        self._ensure_part_path(parts)
        path = join_path(parts)

        errors = self.schema.validate_partial(parts, partial)
        if errors:
            logger.warning(f"Form {self.form_id}: patch to {path} rejected ({len(errors)} problems)")
            raise PatchRejected(path, errors)

        document = self._materialise_path(self.document, parts)
        current = get_at_path(document, parts)
        merged = dict(current)
        merged.update(self.schema.conform_partial(parts, partial))

        if merged == current and document is self.document:
            logger.debug(f"Form {self.form_id}: patch to {path} changed nothing")
            return self.get_document()

        self._commit(replace_at_path(document, parts, merged))
        logger.debug(f"Form {self.form_id}: patched {path} ({', '.join(partial.keys())})")
        return self.get_document()

    # ========================
    # Repeating Records
    # ========================

    def new_record(self, list_path: Path, **fields) -> Dict[str, Any]:
        """
        Build (but do not append) a record for list_path.

        Args:
            list_path: Dotted path of the record list
            **fields: Field values overriding template defaults

        Returns:
            dict: Record with defaults, id and serial number filled in

        Raises:
            UnknownSectionPath: If list_path is not a record list
            PatchRejected: If fields fail validation
        """
        parts, _, _, records = self._record_list(list_path)
        return self.schema.new_record(parts, existing_count=len(records), **fields)

    def append_record(self, list_path: Path, record: Optional[Dict[str, Any]] = None) -> int:
        """
        Append a record to the list at list_path.

        Missing fields take template defaults; an empty id or serial number
        is assigned as in new_record().

        Args:
            list_path: Dotted path of the record list
            record: Record fields (None = all defaults)

        Returns:
            int: Index of the new record

        Raises:
            UnknownSectionPath: If list_path is not a record list
            PatchRejected: If record fails validation
            DocumentSubmittedError: If the document was submitted
        """
        self._ensure_editable()
        parts, spec, document, records = self._record_list(list_path)
        path = join_path(parts)
        record = {} if record is None else record

        errors = self.schema.validate_record(parts, record)
        if errors:
            logger.warning(f"Form {self.form_id}: record for {path} rejected ({len(errors)} problems)")
            raise PatchRejected(path, errors)

        item = self.schema.assign_identity(spec, self.schema.conform(spec.item, deep_copy(record)), len(records))
        self._commit(replace_at_path(document, parts, records + [item]))

        index = len(records)
        logger.info(f"Form {self.form_id}: appended record {index} to {path}")
        return index

    def update_record(self, list_path: Path, index: int, partial: Dict[str, Any]) -> Dict[str, Any]:
        """
        Shallow-merge partial into the record at index.

        Returns:
            dict: Deep copy of the updated record

        Raises:
            UnknownSectionPath: If list_path is not a record list
            RecordNotFound: If index is out of range
            PatchRejected: If partial fails validation
            DocumentSubmittedError: If the document was submitted
        """
        self._ensure_editable()
        parts, spec, document, records = self._record_list(list_path)
        path = join_path(parts)
        self._check_index(parts, records, index)

        errors = self.schema.validate_record(parts, partial)
        if errors:
            logger.warning(f"Form {self.form_id}: update of {path}[{index}] rejected ({len(errors)} problems)")
            raise PatchRejected(f"{path}[{index}]", errors)

        current = records[index]
        merged = dict(current)
        for key, value in partial.items():
            merged[key] = self.schema.conform(spec.item.fields[key], deep_copy(value))

        if merged != current or document is not self.document:
            updated = list(records)
            updated[index] = merged
            self._commit(replace_at_path(document, parts, updated))
            logger.debug(f"Form {self.form_id}: updated {path}[{index}]")

        return deep_copy(merged)

    def remove_record(self, list_path: Path, index: int, renumber: bool = False) -> Dict[str, Any]:
        """
        Remove the record at index. Remaining records keep their order.

        Serial numbers are left as they are unless renumber is set, in
        which case records carrying a serial_number are renumbered 1..n.

        Returns:
            dict: The removed record

        Raises:
            UnknownSectionPath: If list_path is not a record list
            RecordNotFound: If index is out of range
            DocumentSubmittedError: If the document was submitted
        """
        self._ensure_editable()
        parts, spec, document, records = self._record_list(list_path)
        self._check_index(parts, records, index)

        removed = records[index]
        remaining = records[:index] + records[index + 1:]
        if renumber and 'serial_number' in spec.item.fields:
            remaining = recompute_serial_numbers(remaining)
        self._commit(replace_at_path(document, parts, remaining))

        logger.info(f"Form {self.form_id}: removed record {index} from {join_path(parts)}")
        return deep_copy(removed)

    # ========================
    # Reads
    # ========================

    def get_document(self) -> Dict[str, Any]:
        """Get the whole document (deep copy)"""
        return deep_copy(self.document)

    def get_section(self, section_path: Path) -> Any:
        """
        Get the node at section_path (deep copy).

        Raises:
            UnknownSectionPath: If the path does not exist
        """
        return deep_copy(get_at_path(self.document, section_path))

    def get_field(self, field_path: Path, default: Any = None) -> Any:
        """
        Get a field value, or default if the path is missing or null.
        """
        value = lookup(self.document, field_path)
        return default if value is None else deep_copy(value)

    def completion_status(self) -> CompletionStatus:
        """Current status ('submitted' once submitted, otherwise derived)"""
        if self.is_submitted:
            return CompletionStatus.SUBMITTED
        return self.rules.compute_completion_status(self.document)

    def validate_for_submission(self) -> List[str]:
        """
        Run the submission checklist without submitting.

        Returns:
            list: Labels of missing fields (empty = ready to submit)
        """
        return self.rules.validate_for_submission(self.document)

    def validation_errors_by_section(self) -> Dict[str, List[str]]:
        """
        Unsatisfied required fields grouped by navigation section.

        Returns:
            dict: {section_id: [dotted path, ...]} (complete sections omitted)
        """
        return self.rules.missing_by_section(self.document)

    # ========================
    # Submission
    # ========================

    def submit(self) -> Dict[str, Any]:
        """
        Explicit terminal transition to 'submitted'.

        Returns:
            dict: Deep copy of the submitted document

        Raises:
            SubmissionBlocked: If the checklist fails (document untouched)
            DocumentSubmittedError: If already submitted
        """
        self._ensure_editable()

        missing = self.rules.validate_for_submission(self.document)
        if missing:
            logger.warning(f"Form {self.form_id}: submission blocked, missing {', '.join(missing)}")
            raise SubmissionBlocked(missing)

        now = utc_now_iso()
        document = dict(self.document)
        document['status'] = CompletionStatus.SUBMITTED.value
        document['submitted_at'] = now
        document['updated_at'] = now
        self.document = document
        self.highest_status_reached = CompletionStatus.SUBMITTED

        logger.info(f"Form {self.form_id}: submitted")
        return self.get_document()

    # ========================
    # Export Methods
    # ========================

    def snapshot(self) -> Dict[str, Any]:
        """
        Export full state for a save/restore collaborator.

        Returns:
            dict: Document fields plus OPERATIONAL_FIELDS
        """
        snapshot = self.get_document()
        snapshot['highest_status_reached'] = self.highest_status_reached.value
        snapshot['schema_version'] = self.schema.version
        return snapshot

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any], data_dir: Optional[str] = None) -> 'DocumentStateManager':
        """
        Restore a manager from snapshot().

        Status is re-derived from the restored fields; the pinned highest
        status never goes below the derived one.

        Raises:
            ValueError: If the snapshot is missing metadata or Parts
        """
        missing = [key for key in ('id', 'variant', 'status') if key not in snapshot]
        if missing:
            raise ValueError(f"Snapshot missing metadata: {', '.join(missing)}")

        manager = cls(
            snapshot['variant'],
            form_id=snapshot['id'],
            case_id=snapshot.get('case_id', ''),
            incident_id=snapshot.get('incident_id', ''),
            data_dir=data_dir,
        )

        missing_parts = [name for name in manager.schema.part_names if name not in snapshot]
        if missing_parts:
            raise ValueError(f"Snapshot missing parts: {', '.join(missing_parts)}")

        document = {
            key: deep_copy(value) for key, value in snapshot.items()
            if key not in cls.OPERATIONAL_FIELDS
        }
        manager.document = document

        pinned = CompletionStatus(snapshot.get('highest_status_reached', CompletionStatus.DRAFT.value))
        manager.highest_status_reached = pinned
        manager._refresh_status()

        logger.info(f"Form {manager.form_id} restored from snapshot (status {manager.document['status']})")
        return manager

    def export_for_json(self) -> Dict[str, Any]:
        """
        Export the clinical document (no engine bookkeeping).

        Returns:
            dict: Metadata and Parts only
        """
        return {
            key: value
            for key, value in self.get_document().items()
            if key not in self.OPERATIONAL_FIELDS
        }

    def get_summary_stats(self) -> Dict[str, Any]:
        """
        Get summary statistics (for debugging/logging).

        Returns:
            dict: Summary of current state
        """
        return {
            'form_id': self.form_id,
            'variant': self.variant.value,
            'status': self.document['status'],
            'highest_status_reached': self.highest_status_reached.value,
            'parts': list(self.schema.part_names),
            'record_counts': {
                path: len(lookup(self.document, path) or [])
                for path in self.schema.record_list_paths()
            },
            'missing_required': len(self.rules.missing_required(self.document)),
            'updated_at': self.document['updated_at'],
        }
