"""
Test Document State Manager - Patch, records, status and submission

Run with: pytest tests/test_document_state.py -v
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from caseforms.contracts import CompletionStatus
from caseforms.core.document_state import DocumentStateManager
from caseforms.errors import (
    DocumentSubmittedError,
    PatchRejected,
    RecordNotFound,
    SubmissionBlocked,
    UnknownSectionPath,
)


PART_ONE = {
    'nature_of_alleged_offence': 'Defilement',
    'date_and_time_of_alleged_offence': '2024-03-01T21:30',
    'police_occurrence_book_number': 'OB 12/01/03/2024',
    'police_station': 'Kilimani',
    'investigating_officer': {'name': 'Cpl. Otieno', 'service_number': '74521'},
    'medical_facility_name': "Nairobi Women's Hospital",
    'patient_name': 'Jane Doe',
    'sex': 'female',
    'brief_details_of_alleged_offence': 'Assaulted on the way home',
}


def fill_part_two(state):
    state.patch('part_two.practitioner_details', {
        'practitioner_name': 'Dr. Wanjiku',
        'registration_number': 'A1234',
        'medical_facility_name': 'Kenyatta National Hospital',
    })
    state.patch('part_two.patient_consent', {
        'consent_given': True,
        'patient_full_names': 'Jane Doe',
        'consent_date': '2024-03-02',
    })
    state.patch('part_two.medical_history', {'relevant_medical_history': 'None known'})
    state.patch('part_two.general_examination', {'physical_appearance_and_behavior': 'Tearful'})
    state.patch('part_two.physical_examination', {
        'treatment_referral_plan': 'PEP, counselling',
        'examination_date': '2024-03-02',
        'medical_practitioner_name': 'Dr. Wanjiku',
    })


@pytest.fixture
def state():
    return DocumentStateManager('p3_official', form_id='form-1', case_id='case-9', incident_id='inc-3')


# =============================================================================
# Creation
# =============================================================================

def test_new_document_has_metadata_and_parts(state):
    doc = state.get_document()

    assert doc['id'] == 'form-1'
    assert doc['variant'] == 'p3_official'
    assert doc['case_id'] == 'case-9'
    assert doc['incident_id'] == 'inc-3'
    assert doc['status'] == 'draft'
    assert doc['submitted_at'] is None
    assert doc['created_at'] == doc['updated_at']
    for part in ('part_one', 'part_two', 'body_chart'):
        assert isinstance(doc[part], dict)


def test_generated_form_id():
    state = DocumentStateManager('prc_moh363')
    assert len(state.form_id) == 8


def test_unknown_variant():
    with pytest.raises(ValueError):
        DocumentStateManager('p4_form')


# =============================================================================
# Patch
# =============================================================================

def test_patch_merge_locality(state):
    before = state.get_document()
    after = state.patch('part_one', {'patient_name': 'Jane Doe'})

    assert after['part_one']['patient_name'] == 'Jane Doe'
    for key in before['part_one']:
        if key != 'patient_name':
            assert after['part_one'][key] == before['part_one'][key]
    assert after['part_two'] == before['part_two']
    assert after['body_chart'] == before['body_chart']


def test_patch_shares_sibling_subtrees(state):
    part_one_before = state.document['part_one']
    history_before = state.document['part_two']['medical_history']

    state.patch('part_two.patient_consent', {'consent_given': True})

    assert state.document['part_one'] is part_one_before
    assert state.document['part_two']['medical_history'] is history_before


def test_disjoint_patches_commute():
    a = DocumentStateManager('p3_official', form_id='a')
    b = DocumentStateManager('p3_official', form_id='b')

    a.patch('part_one', {'patient_name': 'Jane'})
    a.patch('part_two.medical_history', {'relevant_medical_history': 'Asthma'})

    b.patch('part_two.medical_history', {'relevant_medical_history': 'Asthma'})
    b.patch('part_one', {'patient_name': 'Jane'})

    assert a.get_section('part_one') == b.get_section('part_one')
    assert a.get_section('part_two') == b.get_section('part_two')


def test_patch_is_idempotent(state):
    first = state.patch('part_one', {'patient_name': 'Jane Doe', 'age': 14})
    second = state.patch('part_one', {'patient_name': 'Jane Doe', 'age': 14})

    assert first == second
    assert first['updated_at'] == second['updated_at']


def test_patch_returns_copy(state):
    doc = state.patch('part_one', {'patient_name': 'Jane Doe'})
    doc['part_one']['patient_name'] = 'tampered'
    assert state.get_field('part_one.patient_name') == 'Jane Doe'


def test_nested_object_conformed(state):
    state.patch('part_one', {'investigating_officer': {'name': 'Cpl. Otieno'}})
    assert state.get_section('part_one.investigating_officer') == {
        'service_number': '', 'name': 'Cpl. Otieno', 'signature': None,
    }


def test_patch_deep_path(state):
    state.patch('part_two.medical_history.sexual_offence_history', {'changed_clothes': True})
    assert state.get_field('part_two.medical_history.sexual_offence_history.changed_clothes') is True


def test_patch_materialises_optional(state):
    assert state.get_field('part_two.sexual_offences_examination') is None

    state.patch('part_two.sexual_offences_examination.female_examination', {'hymen': 'Intact'})

    exam = state.get_section('part_two.sexual_offences_examination')
    assert exam['female_examination']['hymen'] == 'Intact'
    assert exam['female_examination']['vagina'] == ''
    assert exam['male_examination'] is None
    assert exam['specimen_collection']['medical_samples'] == {'blood': False, 'urine': False}


def fill_simplified(state):
    state.patch('examiner_information', {
        'officer_name': 'Cpl. Achieng', 'officer_service_number': '88120',
        'police_station': 'Kilimani', 'examination_date': '2024-03-02', 'ob_number': 'OB 7/02/03/2024',
    })
    state.patch('survivor_information', {
        'full_name': 'Jane Doe', 'gender': 'female',
        'incident_date': '2024-03-01', 'incident_location': 'Kibera',
    })
    state.patch('injury_documentation', {
        'overall_injury_assessment': 'Bruising to both forearms', 'consistent_with_allegations': True,
    })
    state.patch('evidence_collection.chain_of_custody.collected_by', {'name': 'Cpl. Achieng', 'date': '2024-03-02'})
    state.patch('evidence_collection.chain_of_custody', {'storage_location': 'Exhibit store 3'})
    state.patch('police_officer_statement', {
        'officer_name': 'Cpl. Achieng', 'investigation_summary': 'Statement recorded', 'date': '2024-03-02',
    })


def test_simplified_optional_part_starts_null():
    state = DocumentStateManager('p3_simplified')
    assert state.get_section('medical_officer_statement') is None
    assert state.get_section('survivor_information')['full_name'] == ''


def test_simplified_medical_statement_materialised_and_required_once_started():
    state = DocumentStateManager('p3_simplified')
    fill_simplified(state)
    assert state.completion_status() == CompletionStatus.COMPLETED

    state.patch('medical_officer_statement', {'officer_name': 'Dr. Wanjiku'})

    statement = state.get_section('medical_officer_statement')
    assert statement['officer_name'] == 'Dr. Wanjiku'
    assert statement['medical_opinion'] == ''
    assert state.completion_status() == CompletionStatus.PART_TWO_COMPLETE
    assert 'medical_officer_statement.medical_opinion' in state.rules.missing_required(state.get_document())
    assert state.highest_status_reached == CompletionStatus.COMPLETED

    state.patch('medical_officer_statement', {'medical_opinion': 'Findings consistent with history'})
    assert state.completion_status() == CompletionStatus.COMPLETED


def test_rejected_patch_leaves_document_untouched(state):
    before = state.get_document()

    with pytest.raises(PatchRejected) as exc:
        state.patch('part_one', {'patient_name': 'Jane', 'sex': 'unknown', 'age': 'fourteen'})

    assert len(exc.value.errors) == 2
    assert state.get_document() == before


def test_patch_unknown_path(state):
    with pytest.raises(UnknownSectionPath):
        state.patch('part_three', {'x': 1})
    with pytest.raises(UnknownSectionPath):
        state.patch('part_one.patient_name', {'x': 1})
    with pytest.raises(UnknownSectionPath):
        state.patch('body_chart.injuries', {'x': 1})


def test_metadata_cannot_be_patched(state):
    with pytest.raises(UnknownSectionPath) as exc:
        state.patch('status', {'value': 'completed'})
    assert 'metadata' in str(exc.value)


# =============================================================================
# Status
# =============================================================================

def test_part_one_only_is_part_one_complete(state):
    doc = state.patch('part_one', PART_ONE)

    assert doc['status'] == 'part_one_complete'
    assert state.completion_status() == CompletionStatus.PART_ONE_COMPLETE


def test_status_advances_to_completed(state):
    state.patch('part_one', PART_ONE)
    fill_part_two(state)
    assert state.completion_status() == CompletionStatus.PART_TWO_COMPLETE

    state.patch('part_two.chain_of_custody.collected_by', {
        'full_name': 'Dr. Wanjiku', 'collection_date': '2024-03-02',
    })
    state.patch('part_two.chain_of_custody.received_by', {
        'full_name_service_number': 'Cpl. Otieno 74521', 'received_date': '2024-03-02',
    })
    assert state.completion_status() == CompletionStatus.COMPLETED


def test_highest_status_pinned_when_status_regresses(state):
    state.patch('part_one', PART_ONE)
    assert state.highest_status_reached == CompletionStatus.PART_ONE_COMPLETE

    doc = state.patch('part_one', {'patient_name': ''})

    assert doc['status'] == 'draft'
    assert state.highest_status_reached == CompletionStatus.PART_ONE_COMPLETE


def test_validation_errors_by_section(state):
    state.patch('part_one', PART_ONE)
    errors = state.validation_errors_by_section()

    assert 'part_one' not in errors
    assert 'part_two.medical_history.relevant_medical_history' in errors['section_a_history']


# =============================================================================
# Repeating records
# =============================================================================

def test_append_and_remove_preserve_order(state):
    for desc in ('Underwear', 'Swab', 'Blood sample'):
        state.append_record('part_two.chain_of_custody.entries', {'evidence_item_description': desc})

    entries = state.get_section('part_two.chain_of_custody.entries')
    assert [e['evidence_item_description'] for e in entries] == ['Underwear', 'Swab', 'Blood sample']
    assert [e['serial_number'] for e in entries] == [1, 2, 3]

    removed = state.remove_record('part_two.chain_of_custody.entries', 1)
    assert removed['evidence_item_description'] == 'Swab'

    entries = state.get_section('part_two.chain_of_custody.entries')
    assert [e['evidence_item_description'] for e in entries] == ['Underwear', 'Blood sample']
    assert [e['serial_number'] for e in entries] == [1, 3]


def test_remove_with_renumber(state):
    for desc in ('Underwear', 'Swab', 'Blood sample'):
        state.append_record('part_two.chain_of_custody.entries', {'evidence_item_description': desc})

    state.remove_record('part_two.chain_of_custody.entries', 0, renumber=True)

    entries = state.get_section('part_two.chain_of_custody.entries')
    assert [(e['serial_number'], e['evidence_item_description']) for e in entries] == [
        (1, 'Swab'), (2, 'Blood sample'),
    ]


def test_renumber_ignored_for_records_without_serials(state):
    state.append_record('body_chart.injuries', {'location': 'arm'})
    state.append_record('body_chart.injuries', {'location': 'neck'})

    state.remove_record('body_chart.injuries', 0, renumber=True)

    assert 'serial_number' not in state.get_section('body_chart.injuries')[0]


def test_append_returns_index_and_record_is_last(state):
    index = state.append_record('body_chart.injuries', {'type': 'bruise', 'location': 'left forearm'})
    assert index == 0

    index = state.append_record('body_chart.injuries', {'type': 'bite_mark', 'location': 'neck'})
    assert index == 1

    injuries = state.get_section('body_chart.injuries')
    assert len(injuries) == 2
    assert injuries[-1]['location'] == 'neck'
    assert injuries[-1]['id'].startswith('injury-')
    assert injuries[0]['id'] != injuries[1]['id']


def test_append_with_defaults(state):
    index = state.append_record('body_chart.injuries')
    record = state.get_section('body_chart.injuries')[index]
    assert record['type'] == 'bruise'
    assert record['view'] == 'anterior'


def test_new_record_does_not_append(state):
    state.append_record('part_two.chain_of_custody.entries', {'evidence_item_description': 'Underwear'})
    record = state.new_record('part_two.chain_of_custody.entries', evidence_item_description='Swab')

    assert record['serial_number'] == 2
    assert len(state.get_section('part_two.chain_of_custody.entries')) == 1


def test_update_record(state):
    state.append_record('body_chart.injuries', {'type': 'bruise', 'location': 'arm'})
    updated = state.update_record('body_chart.injuries', 0, {'description': '3cm, purple', 'coordinates': {'x': 10}})

    assert updated['description'] == '3cm, purple'
    assert updated['location'] == 'arm'
    assert updated['coordinates'] == {'x': 10, 'y': 0}


def test_record_index_out_of_range(state):
    state.append_record('body_chart.injuries', {'type': 'burn'})

    with pytest.raises(RecordNotFound):
        state.update_record('body_chart.injuries', 1, {'location': 'x'})
    with pytest.raises(RecordNotFound):
        state.remove_record('body_chart.injuries', -1)
    with pytest.raises(RecordNotFound):
        state.remove_record('body_chart.injuries', 5)

    assert len(state.get_section('body_chart.injuries')) == 1


def test_record_validation(state):
    with pytest.raises(PatchRejected):
        state.append_record('body_chart.injuries', {'type': 'graze'})
    with pytest.raises(UnknownSectionPath):
        state.append_record('part_one', {'x': 1})


# =============================================================================
# Submission
# =============================================================================

def test_submit_blocked_lists_missing(state):
    state.patch('part_one', {'patient_name': 'Jane Doe'})

    with pytest.raises(SubmissionBlocked) as exc:
        state.submit()

    assert exc.value.missing_fields == ['Nature of alleged offence', 'Practitioner name', 'Patient consent']
    assert state.get_document()['status'] != 'submitted'


def test_submit_and_lock(state):
    state.patch('part_one', PART_ONE)
    fill_part_two(state)

    doc = state.submit()
    assert doc['status'] == 'submitted'
    assert doc['submitted_at'] is not None
    assert state.completion_status() == CompletionStatus.SUBMITTED
    assert state.highest_status_reached == CompletionStatus.SUBMITTED

    with pytest.raises(DocumentSubmittedError):
        state.patch('part_one', {'patient_name': 'Changed'})
    with pytest.raises(DocumentSubmittedError):
        state.append_record('body_chart.injuries', {})
    with pytest.raises(DocumentSubmittedError):
        state.submit()


# =============================================================================
# Snapshots
# =============================================================================

def test_snapshot_round_trip(state):
    state.patch('part_one', PART_ONE)
    state.append_record('body_chart.injuries', {'type': 'burn', 'location': 'hand'})
    state.patch('part_one', {'patient_name': ''})

    snapshot = state.snapshot()
    assert snapshot['highest_status_reached'] == 'part_one_complete'

    restored = DocumentStateManager.from_snapshot(snapshot)
    assert restored.get_document() == state.get_document()
    assert restored.highest_status_reached == CompletionStatus.PART_ONE_COMPLETE


def test_export_excludes_bookkeeping(state):
    exported = state.export_for_json()
    for field in DocumentStateManager.OPERATIONAL_FIELDS:
        assert field not in exported


def test_export_drops_bookkeeping_left_on_document(state):
    state.document['schema_version'] = 'stale'
    state.document['highest_status_reached'] = 'completed'

    exported = state.export_for_json()

    assert 'schema_version' not in exported
    assert 'highest_status_reached' not in exported
    assert exported['part_one'] == state.get_section('part_one')


def test_from_snapshot_missing_parts(state):
    snapshot = state.snapshot()
    del snapshot['body_chart']
    with pytest.raises(ValueError):
        DocumentStateManager.from_snapshot(snapshot)


def test_summary_stats(state):
    state.append_record('body_chart.injuries', {'type': 'burn'})
    stats = state.get_summary_stats()

    assert stats['form_id'] == 'form-1'
    assert stats['record_counts'] == {'part_two.chain_of_custody.entries': 0, 'body_chart.injuries': 1}
    assert stats['highest_status_reached'] == 'draft'
