"""
Test Form Schema - Template loading, defaults and partial validation

Run with: pytest tests/test_form_schema.py -v
"""

import json
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from caseforms.contracts import FormVariant
from caseforms.core.form_schema import FieldSpec, FormSchema, load_all_schemas
from caseforms.errors import PatchRejected, UnknownSectionPath


@pytest.fixture(scope='module')
def p3():
    return FormSchema.for_variant(FormVariant.P3_OFFICIAL)


@pytest.fixture(scope='module')
def prc():
    return FormSchema.for_variant('prc_moh363')


def write_template(tmp_path, template):
    path = tmp_path / 'template.json'
    path.write_text(json.dumps(template))
    return str(path)


# =============================================================================
# Field notation
# =============================================================================

class TestFieldSpec:

    def test_scalar_defaults(self):
        assert FieldSpec.parse('string').default() == ''
        assert FieldSpec.parse('boolean').default() is False
        assert FieldSpec.parse('number').default() == 0
        assert FieldSpec.parse('string?').default() is None
        assert FieldSpec.parse('boolean?').default() is None
        assert FieldSpec.parse('string[]').default() == []

    def test_enum_defaults(self):
        assert FieldSpec.parse('enum:adult|child').default() == 'adult'
        assert FieldSpec.parse('enum?:male|female').default() is None

    def test_check(self):
        assert FieldSpec.parse('string').check('x') is None
        assert FieldSpec.parse('string').check(None) == 'may not be null'
        assert FieldSpec.parse('string?').check(None) is None
        assert FieldSpec.parse('number').check(True) is not None
        assert FieldSpec.parse('number').check(2.5) is None
        assert FieldSpec.parse('boolean').check('yes') is not None
        assert FieldSpec.parse('enum:AM|PM').check('PM') is None
        assert 'must be one of' in FieldSpec.parse('enum:AM|PM').check('noon')
        assert FieldSpec.parse('string[]').check(['a', 'b']) is None
        assert FieldSpec.parse('string[]').check(['a', 1]) is not None

    def test_bad_notation(self):
        for bad in ['str', 'enum', 'enum:', 'enums:a|b', 'integer?']:
            with pytest.raises(ValueError):
                FieldSpec.parse(bad)


# =============================================================================
# Template loading
# =============================================================================

def test_all_bundled_templates_load():
    schemas = load_all_schemas()
    assert set(schemas) == set(FormVariant)


def test_part_names(p3, prc):
    assert p3.part_names == ['part_one', 'part_two', 'body_chart']
    assert prc.part_names == ['header', 'part_a', 'part_b']

    simplified = FormSchema.for_variant('p3_simplified')
    assert simplified.part_names == [
        'examiner_information',
        'survivor_information',
        'injury_documentation',
        'evidence_collection',
        'medical_officer_statement',
        'police_officer_statement',
    ]


def test_missing_template_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        FormSchema(str(tmp_path / 'nope.json'))


def test_malformed_template_collects_all_errors(tmp_path):
    path = write_template(tmp_path, {
        'variant': 'p3_official',
        'parts': {
            'id': {'x': 'string'},
            'part_one': {
                'a': 'integer',
                'b': {'$records': 'missing_shape'},
                'c': 42,
            },
        },
        'records': {},
    })

    with pytest.raises(ValueError) as exc:
        FormSchema(path)

    message = str(exc.value)
    assert 'validation failed' in message
    assert 'collides with metadata' in message
    assert "unknown field type 'integer'" in message
    assert 'missing_shape' in message
    assert 'part_one.c' in message


# =============================================================================
# Defaults
# =============================================================================

def test_document_parts_fully_defaulted(p3):
    parts = p3.build_document_parts()

    assert parts['part_one']['patient_name'] == ''
    assert parts['part_one']['sex'] is None
    assert parts['part_one']['investigating_officer'] == {
        'service_number': '', 'name': '', 'signature': None,
    }
    assert parts['part_one']['escorted_by']['police_officer'] is None
    assert parts['part_two']['sexual_offences_examination'] is None
    assert parts['part_two']['chain_of_custody']['entries'] == []
    assert parts['body_chart']['patient_type'] == 'adult'


def test_build_returns_fresh_objects(p3):
    first = p3.build_document_parts()
    second = p3.build_document_parts()
    first['part_two']['chain_of_custody']['entries'].append({})
    assert second['part_two']['chain_of_custody']['entries'] == []


def test_materialise_record_reference(prc):
    spec = prc.spec_at('part_a.laboratory_samples.samples.blood')
    sample = prc.materialise(spec)
    assert sample['sample_type'] == ''
    assert sample['tests']['dna'] is False
    assert sample['lab_destination'] == 'health_facility_lab'


# =============================================================================
# Navigation
# =============================================================================

def test_spec_at_steps_through_optional(p3):
    spec = p3.spec_at('part_two.sexual_offences_examination.female_examination.hymen')
    assert isinstance(spec, FieldSpec)

    with pytest.raises(UnknownSectionPath):
        p3.spec_at('part_two.no_such_section')


def test_object_and_record_specs(p3):
    p3.object_spec_at('part_two.medical_history')
    with pytest.raises(UnknownSectionPath):
        p3.object_spec_at('part_one.patient_name')
    with pytest.raises(UnknownSectionPath):
        p3.object_spec_at('body_chart.injuries')

    p3.record_list_spec_at('body_chart.injuries')
    with pytest.raises(UnknownSectionPath):
        p3.record_list_spec_at('part_one')


def test_record_list_paths(p3):
    assert p3.record_list_paths() == ['part_two.chain_of_custody.entries', 'body_chart.injuries']


# =============================================================================
# Partial validation
# =============================================================================

def test_validate_partial_accepts_valid(p3):
    errors = p3.validate_partial('part_one', {
        'patient_name': 'Jane Doe',
        'age': 14,
        'sex': 'female',
        'investigating_officer': {'name': 'Cpl. Otieno'},
    })
    assert errors == []


def test_validate_partial_reports_every_problem(p3):
    errors = p3.validate_partial('part_one', {
        'patient_name': 7,
        'sex': 'unknown',
        'favourite_colour': 'blue',
        'investigating_officer': {'rank': 'Cpl'},
    })

    assert len(errors) == 4
    assert any('part_one.patient_name' in e for e in errors)
    assert any('part_one.sex' in e and 'must be one of' in e for e in errors)
    assert any('favourite_colour: unknown field' in e for e in errors)
    assert any('investigating_officer.rank: unknown field' in e for e in errors)


def test_validate_partial_non_object(p3):
    errors = p3.validate_partial('part_one', ['patient_name'])
    assert len(errors) == 1
    assert 'must be an object' in errors[0]


def test_validate_records_in_partial(p3):
    errors = p3.validate_partial('body_chart', {
        'injuries': [
            {'type': 'bruise', 'location': 'forearm'},
            {'type': 'graze'},
            'not a record',
        ]
    })
    assert len(errors) == 2
    assert any('injuries[1].type' in e for e in errors)
    assert any('injuries[2]' in e for e in errors)


def test_conform_fills_defaults(p3):
    conformed = p3.conform_partial('part_one', {'investigating_officer': {'name': 'Cpl. Otieno'}})
    assert conformed == {
        'investigating_officer': {'service_number': '', 'name': 'Cpl. Otieno', 'signature': None},
    }


# =============================================================================
# New records
# =============================================================================

def test_new_record_assigns_id_with_prefix(p3):
    record = p3.new_record('body_chart.injuries', existing_count=0, type='laceration', location='scalp')

    assert record['id'].startswith('injury-')
    assert record['type'] == 'laceration'
    assert record['view'] == 'anterior'
    assert record['coordinates'] is None


def test_new_record_serial_number(p3):
    record = p3.new_record('part_two.chain_of_custody.entries', existing_count=2,
                           evidence_item_description='Underwear')
    assert record['serial_number'] == 3
    assert 'id' not in record


def test_new_record_rejects_bad_fields(p3):
    with pytest.raises(PatchRejected):
        p3.new_record('body_chart.injuries', type='graze')
