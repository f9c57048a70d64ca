"""
Pytest configuration and shared fixtures.
"""
import pytest
from datetime import date


@pytest.fixture
def sample_patient_data():
    """Sample patient data for tests."""
    return {
        "full_name": "John Doe",
        "mrn": "123456",
        "birth_date": "1975-03-02",
        "sex": "M",
        "phone": "555-0100",
    }


@pytest.fixture
def patient(db):
    """A 70 kg male patient, born 1975-03-02."""
    from clinical.models import Patient

    return Patient.objects.create(
        full_name="John Doe",
        mrn="123456",
        birth_date=date(1975, 3, 2),
        sex="M",
        weight_kg=70,
    )


@pytest.fixture
def encounter(patient):
    from clinical.models import Encounter

    return Encounter.objects.create(patient=patient, primary_dx="Sepsis", cc="Fever")


@pytest.fixture
def formula_medications(encounter):
    """Three medications with weight-based doses computed at 70 kg, plus one fixed dose."""
    from clinical.models import Medication

    return [
        Medication.objects.create(encounter=encounter, name="Vancomycin", dose="1050 mg (15 mg/kg)"),
        Medication.objects.create(encounter=encounter, name="Gentamicin", dose="490 mg (7 mg/kg)"),
        Medication.objects.create(encounter=encounter, name="Ketamine", dose="10.5 mg (0.15 mg/kg)"),
        Medication.objects.create(encounter=encounter, name="Paracetamol", dose="500 mg"),
    ]
