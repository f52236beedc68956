"""
Form Schema - Declarative template for one form variant

Responsibilities:
- Load a variant template (JSON) from caseforms/data
- Validate the template itself on load (fail fast on typos)
- Build a fully-defaulted empty document
- Validate partial updates against the addressed node
- Conform nested values and new records to the template shape

Design principles:
- Template is data (JSON), this module is generic
- Every document node exists from creation, except $optional
  sub-sections which start as null and are materialised on first write
- Validation collects all problems before raising

Template notation:
    "string" | "boolean" | "number"        non-null, default "" / false / 0
    "string?" | "boolean?" | "number?"     nullable, default null
    "enum:a|b"                             non-null, default first choice
    "enum?:a|b"                            nullable, default null
    "string[]"                             list of strings, default []
    {"$optional": {...}}                   optional object, default null
    {"$optional": "<record name>"}         optional object shaped like a record
    {"$records": "<record name>"}          repeating sub-records, default []
    {...}                                  nested object
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path as FilePath
from typing import Any, Dict, List, Optional, Tuple, Union

from caseforms.contracts import FormVariant
from caseforms.core.path_merge import Path, join_path, split_path
from caseforms.errors import PatchRejected, UnknownSectionPath
from caseforms.utils.helpers import generate_record_id

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = FilePath(__file__).resolve().parent.parent / 'data'

METADATA_FIELDS = (
    'id', 'variant', 'case_id', 'incident_id',
    'status', 'created_at', 'updated_at', 'submitted_at',
)

_SCALAR_KINDS = ('string', 'boolean', 'number')


@dataclass(frozen=True)
class FieldSpec:
    """Leaf field: scalar, enum or list of strings"""
    kind: str
    nullable: bool = False
    choices: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> 'FieldSpec':
        """
        Parse template notation into a FieldSpec.

        Raises:
            ValueError: If the notation is not recognised
        """
        if text == 'string[]':
            return cls(kind='string_list')

        if text.startswith('enum'):
            head, sep, body = text.partition(':')
            if not sep or head not in ('enum', 'enum?'):
                raise ValueError(f"bad enum notation '{text}'")
            choices = tuple(c for c in body.split('|') if c)
            if not choices:
                raise ValueError(f"enum '{text}' has no choices")
            return cls(kind='enum', nullable=head == 'enum?', choices=choices)

        nullable = text.endswith('?')
        kind = text[:-1] if nullable else text
        if kind not in _SCALAR_KINDS:
            raise ValueError(f"unknown field type '{text}'")
        return cls(kind=kind, nullable=nullable)

    def default(self) -> Any:
        if self.kind == 'string_list':
            return []
        if self.nullable:
            return None
        if self.kind == 'enum':
            return self.choices[0]
        return {'string': '', 'boolean': False, 'number': 0}[self.kind]

    def check(self, value: Any) -> Optional[str]:
        """Return an error message, or None if value fits this field"""
        if value is None:
            return None if self.nullable else "may not be null"

        if self.kind == 'string':
            ok = isinstance(value, str)
        elif self.kind == 'boolean':
            ok = isinstance(value, bool)
        elif self.kind == 'number':
            ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        elif self.kind == 'enum':
            if value not in self.choices:
                return f"must be one of {', '.join(self.choices)} (got {value!r})"
            ok = True
        else:
            ok = isinstance(value, list) and all(isinstance(v, str) for v in value)

        if not ok:
            return f"expected {self.describe()}, got {type(value).__name__}"
        return None

    def describe(self) -> str:
        if self.kind == 'string_list':
            return 'list of strings'
        return f"{self.kind}{' or null' if self.nullable else ''}"


@dataclass(frozen=True)
class ObjectSpec:
    """Nested object with a fixed set of keys"""
    fields: Dict[str, Any]


@dataclass(frozen=True)
class OptionalSpec:
    """Object that is null until first written"""
    inner: ObjectSpec
    record_name: Optional[str] = None


@dataclass(frozen=True)
class RecordListSpec:
    """Ordered list of records sharing one shape"""
    record_name: str
    item: ObjectSpec
    id_prefix: Optional[str] = None


Spec = Union[FieldSpec, ObjectSpec, OptionalSpec, RecordListSpec]


class FormSchema:
    """
    Compiled template for one form variant.

    Attributes:
        variant: FormVariant served by this template
        title: Printed title of the paper form
        version: Template version string
        part_names: Top-level Part keys, in template order
    """

    def __init__(self, template_path: str):
        """
        Load and compile template.

        Args:
            template_path: Path to template JSON file

        Raises:
            FileNotFoundError: If template file doesn't exist
            ValueError: If template is malformed
        """
        self.template_path = FilePath(template_path)
        if not self.template_path.exists():
            raise FileNotFoundError(f"Form template not found: {template_path}")

        with open(self.template_path, 'r', encoding='utf-8') as f:
            raw = json.load(f)

        errors: List[str] = []
        self.variant = self._read_variant(raw, errors)
        self.title = raw.get('title', '')
        self.version = str(raw.get('version', ''))
        self.record_shapes: Dict[str, ObjectSpec] = {}
        self.record_id_prefixes: Dict[str, str] = dict(raw.get('record_id_prefixes', {}))

        raw_records = raw.get('records', {})
        if not isinstance(raw_records, dict):
            errors.append("'records' must be an object")
            raw_records = {}

        # Record shapes first so $records / $optional references resolve
        for name, shape in raw_records.items():
            compiled = self._compile(shape, f"records.{name}", raw_records, errors)
            if not isinstance(compiled, ObjectSpec):
                errors.append(f"records.{name}: record shape must be an object")
                continue
            self.record_shapes[name] = compiled

        raw_parts = raw.get('parts')
        if not isinstance(raw_parts, dict) or not raw_parts:
            errors.append("'parts' must be a non-empty object")
            raw_parts = {}

        parts: Dict[str, Any] = {}
        for name, part in raw_parts.items():
            if name in METADATA_FIELDS:
                errors.append(f"parts.{name}: part name collides with metadata field")
            compiled = self._compile(part, name, raw_records, errors)
            # A Part is an object, or an $optional object that starts as null
            if not isinstance(compiled, (ObjectSpec, OptionalSpec)):
                errors.append(f"parts.{name}: part must be an object")
                continue
            parts[name] = compiled
        self.root = ObjectSpec(fields=parts)

        for name in self.record_id_prefixes:
            if name not in self.record_shapes:
                errors.append(f"record_id_prefixes.{name}: unknown record shape")

        if errors:
            error_msg = f"Template {self.template_path.name} validation failed:\n  - " + "\n  - ".join(errors)
            raise ValueError(error_msg)

        logger.info(
            f"Form schema loaded: {self.variant.value} v{self.version} "
            f"({len(self.part_names)} parts, {len(self.record_shapes)} record shapes)"
        )

    @classmethod
    def for_variant(cls, variant: Union[FormVariant, str], data_dir: Optional[str] = None) -> 'FormSchema':
        """Load the bundled template for variant"""
        variant = FormVariant(variant)
        base = FilePath(data_dir) if data_dir else DEFAULT_DATA_DIR
        return cls(str(base / f"{variant.value}.json"))

    @property
    def part_names(self) -> List[str]:
        return list(self.root.fields.keys())

    # ========================
    # Template compilation
    # ========================

    @staticmethod
    def _read_variant(raw: Dict[str, Any], errors: List[str]) -> Optional[FormVariant]:
        try:
            return FormVariant(raw.get('variant'))
        except ValueError:
            errors.append(f"unknown variant {raw.get('variant')!r}")
            return None

    def _compile(self, node: Any, where: str, raw_records: Dict[str, Any], errors: List[str]) -> Optional[Spec]:
        if isinstance(node, str):
            try:
                return FieldSpec.parse(node)
            except ValueError as e:
                errors.append(f"{where}: {e}")
                return None

        if not isinstance(node, dict):
            errors.append(f"{where}: expected type string or object, got {type(node).__name__}")
            return None

        if '$records' in node:
            name = node['$records']
            shape = self._resolve_record(name, where, raw_records, errors)
            if shape is None:
                return None
            return RecordListSpec(
                record_name=name,
                item=shape,
                id_prefix=self.record_id_prefixes.get(name),
            )

        if '$optional' in node:
            inner = node['$optional']
            if isinstance(inner, str):
                shape = self._resolve_record(inner, where, raw_records, errors)
                return OptionalSpec(inner=shape, record_name=inner) if shape else None
            compiled = self._compile(inner, where, raw_records, errors)
            if not isinstance(compiled, ObjectSpec):
                errors.append(f"{where}: $optional must wrap an object")
                return None
            return OptionalSpec(inner=compiled)

        fields = {}
        for key, child in node.items():
            if key.startswith('$'):
                errors.append(f"{where}.{key}: unknown directive")
                continue
            compiled = self._compile(child, f"{where}.{key}", raw_records, errors)
            if compiled is not None:
                fields[key] = compiled
        return ObjectSpec(fields=fields)

    def _resolve_record(self, name: Any, where: str, raw_records: Dict[str, Any],
                        errors: List[str]) -> Optional[ObjectSpec]:
        if name in self.record_shapes:
            return self.record_shapes[name]
        if name not in raw_records:
            errors.append(f"{where}: unknown record shape {name!r}")
            return None
        # Forward reference within records
        compiled = self._compile(raw_records[name], f"records.{name}", raw_records, errors)
        if isinstance(compiled, ObjectSpec):
            self.record_shapes[name] = compiled
            return compiled
        return None

    # ========================
    # Defaults
    # ========================

    def build_document_parts(self) -> Dict[str, Any]:
        """
        Build the fully-defaulted Part objects of an empty document.

        Returns:
            dict: {part_name: default object}
        """
        return {name: self.default_for(spec) for name, spec in self.root.fields.items()}

    def default_for(self, spec: Spec) -> Any:
        if isinstance(spec, FieldSpec):
            return spec.default()
        if isinstance(spec, ObjectSpec):
            return {key: self.default_for(child) for key, child in spec.fields.items()}
        if isinstance(spec, OptionalSpec):
            return None
        return []

    def materialise(self, spec: Spec) -> Dict[str, Any]:
        """Default object for an $optional node being written for the first time"""
        if isinstance(spec, OptionalSpec):
            return self.default_for(spec.inner)
        if isinstance(spec, ObjectSpec):
            return self.default_for(spec)
        raise TypeError(f"Cannot materialise {type(spec).__name__}")

    # ========================
    # Navigation
    # ========================

    def spec_at(self, path: Path) -> Spec:
        """
        Return the spec addressed by path.

        Optional objects are stepped through transparently. Paths cannot
        descend into record lists (records are addressed by index).

        Raises:
            UnknownSectionPath: If the path is not in the template
        """
        parts = split_path(path)
        spec: Spec = self.root
        for i, part in enumerate(parts):
            if isinstance(spec, OptionalSpec):
                spec = spec.inner
            if not isinstance(spec, ObjectSpec) or part not in spec.fields:
                raise UnknownSectionPath(join_path(parts), f"is not a field of {self.variant.value}")
            spec = spec.fields[part]
        return spec

    def object_spec_at(self, path: Path) -> ObjectSpec:
        """
        Return the object spec a patch at path merges into.

        Raises:
            UnknownSectionPath: If path is unknown or addresses a leaf/list
        """
        spec = self.spec_at(path)
        if isinstance(spec, OptionalSpec):
            return spec.inner
        if not isinstance(spec, ObjectSpec):
            raise UnknownSectionPath(join_path(split_path(path)), "is not a section or sub-section")
        return spec

    def record_list_spec_at(self, path: Path) -> RecordListSpec:
        """
        Raises:
            UnknownSectionPath: If path does not address a record list
        """
        spec = self.spec_at(path)
        if not isinstance(spec, RecordListSpec):
            raise UnknownSectionPath(join_path(split_path(path)), "is not a record list")
        return spec

    def record_list_paths(self) -> List[str]:
        """All record list paths reachable without entering records, in template order"""
        found: List[str] = []

        def walk(spec: Spec, prefix: List[str]) -> None:
            if isinstance(spec, OptionalSpec):
                spec = spec.inner
            if isinstance(spec, RecordListSpec):
                found.append(join_path(prefix))
            elif isinstance(spec, ObjectSpec):
                for key, child in spec.fields.items():
                    walk(child, prefix + [key])

        walk(self.root, [])
        return found

    def has_path(self, path: Path) -> bool:
        try:
            self.spec_at(path)
            return True
        except UnknownSectionPath:
            return False

    # ========================
    # Validation
    # ========================

    def validate_partial(self, path: Path, partial: Any) -> List[str]:
        """
        Validate a partial update for the object at path.

        Args:
            path: Dotted path of the object being patched
            partial: Keys to merge

        Returns:
            list: Error messages (empty if valid)

        Raises:
            UnknownSectionPath: If path does not address an object
        """
        spec = self.object_spec_at(path)
        where = join_path(split_path(path))
        if not isinstance(partial, dict):
            return [f"{where}: partial update must be an object, got {type(partial).__name__}"]

        errors: List[str] = []
        self._check_object(spec, partial, where, errors, partial_keys=True)
        return errors

    def validate_record(self, list_path: Path, record: Any, partial: bool = True) -> List[str]:
        """
        Validate a record (or partial record update) for list_path.

        Raises:
            UnknownSectionPath: If list_path is not a record list
        """
        spec = self.record_list_spec_at(list_path)
        where = f"{join_path(split_path(list_path))}[]"
        if not isinstance(record, dict):
            return [f"{where}: record must be an object, got {type(record).__name__}"]
        errors: List[str] = []
        self._check_object(spec.item, record, where, errors, partial_keys=partial)
        return errors

    def _check_object(self, spec: ObjectSpec, value: Dict[str, Any], where: str,
                      errors: List[str], partial_keys: bool = True) -> None:
        for key, child_value in value.items():
            if key not in spec.fields:
                errors.append(f"{where}.{key}: unknown field")
                continue
            self._check_value(spec.fields[key], child_value, f"{where}.{key}", errors)

        if not partial_keys:
            for key in spec.fields:
                if key not in value:
                    errors.append(f"{where}.{key}: missing field")

    def _check_value(self, spec: Spec, value: Any, where: str, errors: List[str]) -> None:
        if isinstance(spec, FieldSpec):
            problem = spec.check(value)
            if problem:
                errors.append(f"{where}: {problem}")
            return

        if isinstance(spec, OptionalSpec):
            if value is None:
                return
            spec = spec.inner

        if isinstance(spec, ObjectSpec):
            if not isinstance(value, dict):
                errors.append(f"{where}: expected object, got {type(value).__name__}")
                return
            self._check_object(spec, value, where, errors)
            return

        # RecordListSpec
        if not isinstance(value, list):
            errors.append(f"{where}: expected list of records, got {type(value).__name__}")
            return
        for i, item in enumerate(value):
            if not isinstance(item, dict):
                errors.append(f"{where}[{i}]: record must be an object, got {type(item).__name__}")
                continue
            self._check_object(spec.item, item, f"{where}[{i}]", errors)

    # ========================
    # Conforming values
    # ========================

    def conform(self, spec: Spec, value: Any) -> Any:
        """
        Fill template defaults into an already-validated value.

        Nested objects written through a patch keep the full template
        shape, so every path in the template stays addressable.
        """
        if isinstance(spec, OptionalSpec):
            if value is None:
                return None
            spec = spec.inner

        if isinstance(spec, ObjectSpec):
            result = {}
            for key, child in spec.fields.items():
                if key in value:
                    result[key] = self.conform(child, value[key])
                else:
                    result[key] = self.default_for(child)
            return result

        if isinstance(spec, RecordListSpec):
            return [self.conform(spec.item, item) for item in value]

        return value

    def conform_partial(self, path: Path, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Conform each value of a validated partial against its field spec"""
        spec = self.object_spec_at(path)
        return {key: self.conform(spec.fields[key], value) for key, value in partial.items()}

    def new_record(self, list_path: Path, existing_count: int = 0, **fields) -> Dict[str, Any]:
        """
        Build a record for list_path with template defaults.

        Identity fields are filled in when the shape has them and the
        caller left them empty:
        - 'id': timestamp-derived unique id (with the shape's prefix)
        - 'serial_number': existing_count + 1

        Args:
            list_path: Dotted path of the record list
            existing_count: Current length of the list
            **fields: Field values overriding the defaults

        Returns:
            dict: New record (not yet appended)

        Raises:
            UnknownSectionPath: If list_path is not a record list
            PatchRejected: If fields fail validation
        """
        spec = self.record_list_spec_at(list_path)
        errors = self.validate_record(list_path, fields)
        if errors:
            raise PatchRejected(join_path(split_path(list_path)), errors)
        record = self.conform(spec.item, fields)
        return self.assign_identity(spec, record, existing_count)

    @staticmethod
    def assign_identity(spec: RecordListSpec, record: Dict[str, Any], existing_count: int) -> Dict[str, Any]:
        """Fill empty id / serial_number of a conformed record (returns new dict)"""
        record = dict(record)
        if 'id' in spec.item.fields and not record.get('id'):
            record['id'] = generate_record_id(spec.id_prefix)
        if 'serial_number' in spec.item.fields and not record.get('serial_number'):
            record['serial_number'] = existing_count + 1
        return record


def load_all_schemas(data_dir: Optional[str] = None) -> Dict[FormVariant, FormSchema]:
    """Load every bundled template (used by startup checks and tests)"""
    return {variant: FormSchema.for_variant(variant, data_dir) for variant in FormVariant}
