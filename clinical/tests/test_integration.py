"""
Integration tests: full API flow.
"""
import json
import pytest
from django.test import Client
from unittest.mock import MagicMock, patch

from clinical.models import EncounterAction, Medication, Patient


def put_json(client, path, payload):
    return client.put(path, data=json.dumps(payload), content_type="application/json")


def post_json(client, path, payload):
    return client.post(path, data=json.dumps(payload), content_type="application/json")


@pytest.mark.django_db
class TestPatientApi:

    def test_create_and_fetch(self, sample_patient_data):
        client = Client()
        resp = post_json(client, "/api/patients/", dict(sample_patient_data, weight_kg=70))
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["full_name"] == "John Doe"
        assert data["birth_date"] == "1975-03-02"
        assert data["weight_kg"] == 70

        detail = client.get(f"/api/patients/{data['id']}/").json()["data"]
        assert detail["mrn"] == "123456"
        assert detail["encounters"] == []

    def test_search(self, patient):
        Patient.objects.create(full_name="Jane Roe", mrn="777")
        results = Client().get("/api/patients/?q=doe").json()["data"]["results"]
        assert [p["id"] for p in results] == [patient.id]

    def test_soft_delete(self, patient):
        resp = Client().delete(f"/api/patients/{patient.id}/")
        assert resp.status_code == 200
        assert not Patient.objects.filter(id=patient.id).exists()
        assert Patient.all_objects.get(id=patient.id).deleted_at is not None

    def test_update_weight_through_profile_recomputes(self, patient, formula_medications):
        resp = put_json(Client(), f"/api/patients/{patient.id}/", {"weight_kg": 80})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["weight_kg"] == 80
        assert data["reconciliation"]["updated"] == 3
        assert Medication.objects.get(name="Gentamicin").dose == "560 mg (7 mg/kg)"

    def test_clearing_weight_keeps_last_doses(self, patient, formula_medications):
        resp = put_json(Client(), f"/api/patients/{patient.id}/", {"weight_kg": None})
        assert resp.status_code == 200
        assert "reconciliation" not in resp.json()["data"]
        patient.refresh_from_db()
        assert patient.weight_kg is None
        assert Medication.objects.get(name="Vancomycin").dose == "1050 mg (15 mg/kg)"


@pytest.mark.django_db
class TestWeightUpdateFlow:

    def test_put_weight_returns_reloaded_medications(self, patient, formula_medications):
        resp = put_json(Client(), f"/api/patients/{patient.id}/weight/", {"weight_kg": 80})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["weight_kg"] == 80
        assert data["updated"] == 3
        assert data["failed"] == 0
        assert data["patient"]["weight_kg"] == 80

        doses = {m["name"]: m["dose"] for m in data["medications"]}
        assert doses == {
            "Vancomycin": "1200 mg (15 mg/kg)",
            "Gentamicin": "560 mg (7 mg/kg)",
            "Ketamine": "12 mg (0.15 mg/kg)",
            "Paracetamol": "500 mg",
        }
        formulas = {m["name"]: m["dose_formula"] for m in data["medications"]}
        assert formulas["Vancomycin"] == "15 mg/kg"
        assert formulas["Paracetamol"] is None

    def test_weight_as_string(self, patient, formula_medications):
        resp = put_json(Client(), f"/api/patients/{patient.id}/weight/", {"weight_kg": "80"})
        assert resp.status_code == 200
        assert resp.json()["data"]["weight_kg"] == 80

    def test_broker_down_still_answers(self, patient, formula_medications):
        job = MagicMock()
        job.apply_async.side_effect = OSError("broker unreachable")
        with patch("clinical.reconciliation.group", return_value=job):
            resp = put_json(Client(), f"/api/patients/{patient.id}/weight/", {"weight_kg": 80})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["failed"] == 3
        assert data["updated"] == 0

    def test_repeat_weight_is_noop(self, patient, formula_medications):
        client = Client()
        put_json(client, f"/api/patients/{patient.id}/weight/", {"weight_kg": 80})
        data = put_json(client, f"/api/patients/{patient.id}/weight/", {"weight_kg": 80}).json()["data"]
        assert data["updated"] == 0
        assert data["outcomes"] == []


@pytest.mark.django_db
class TestDosePreview:

    def test_formula_is_expanded_with_current_weight(self, patient):
        resp = post_json(Client(), f"/api/patients/{patient.id}/dose-preview/", {"dose": "10 mg/kg"})
        assert resp.status_code == 200
        assert resp.json()["data"] == {
            "dose": "700 mg (10 mg/kg)",
            "formula": "10 mg/kg",
            "calculated": True,
            "weight_kg": 70,
        }

    def test_literal_dose_unchanged(self, patient):
        data = post_json(Client(), f"/api/patients/{patient.id}/dose-preview/", {"dose": "500 mg"}).json()["data"]
        assert data["dose"] == "500 mg"
        assert data["formula"] is None
        assert data["calculated"] is False

    def test_no_weight_keeps_input(self, patient):
        patient.weight_kg = None
        patient.save()
        data = post_json(Client(), f"/api/patients/{patient.id}/dose-preview/", {"dose": "10 mg/kg"}).json()["data"]
        assert data["dose"] == "10 mg/kg"
        assert data["calculated"] is False

    def test_preview_does_not_persist(self, patient, formula_medications):
        before = {m.id: m.dose for m in Medication.objects.all()}
        post_json(Client(), f"/api/patients/{patient.id}/dose-preview/", {"dose": "10 mg/kg"})
        assert {m.id: m.dose for m in Medication.objects.all()} == before


@pytest.mark.django_db
class TestMedicationApi:

    def test_create_expands_formula(self, encounter):
        resp = post_json(
            Client(),
            f"/api/encounters/{encounter.id}/medications/",
            {"name": "Vancomycin", "dose": "15 mg/kg", "route": "IV", "frequency": "q12h"},
        )
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["dose"] == "1050 mg (15 mg/kg)"
        assert data["status"] == "ACTIVE"
        assert Medication.objects.get(id=data["id"]).dose == "1050 mg (15 mg/kg)"

    def test_create_keeps_trailing_text_when_dose_matches(self, encounter):
        resp = post_json(
            Client(),
            f"/api/encounters/{encounter.id}/medications/",
            {"name": "Vancomycin", "dose": "1050 mg (15 mg/kg) IV q12h"},
        )
        assert resp.json()["data"]["dose"] == "1050 mg (15 mg/kg) IV q12h"

    def test_expanded_dose_too_long_is_rejected(self, encounter):
        dose = "10 mg per" + " " * 187 + "kg"
        resp = post_json(
            Client(),
            f"/api/encounters/{encounter.id}/medications/",
            {"name": "Vancomycin", "dose": dose},
        )
        assert resp.status_code == 400
        data = resp.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert data["detail"]["errors"][0]["field"] == "dose"
        assert not Medication.objects.filter(name="Vancomycin").exists()

    def test_detail_shows_preview_for_current_weight(self, patient, formula_medications):
        # 体重直接改库：保存的剂量是旧的，dose_preview 按当前体重刷新
        patient.weight_kg = 80
        patient.save()
        med = formula_medications[0]
        data = Client().get(f"/api/medications/{med.id}/").json()["data"]
        assert data["dose"] == "1050 mg (15 mg/kg)"
        assert data["dose_preview"] == "1200 mg (15 mg/kg)"
        med.refresh_from_db()
        assert med.dose == "1050 mg (15 mg/kg)"

    def test_update_dose_and_stop(self, formula_medications):
        client = Client()
        med = formula_medications[3]
        resp = put_json(client, f"/api/medications/{med.id}/", {"dose": "2 mg per kg", "status": "STOPPED"})
        data = resp.json()["data"]
        assert data["dose"] == "140 mg (2 mg per kg)"
        assert data["status"] == "STOPPED"
        assert data["stop_at"] is not None

        data = put_json(client, f"/api/medications/{med.id}/", {"status": "ACTIVE"}).json()["data"]
        assert data["stop_at"] is None

    def test_list_and_delete(self, encounter, formula_medications):
        client = Client()
        assert client.delete(f"/api/medications/{formula_medications[0].id}/").status_code == 200
        results = client.get(f"/api/encounters/{encounter.id}/medications/").json()["data"]["results"]
        assert formula_medications[0].id not in [m["id"] for m in results]
        assert len(results) == 3


@pytest.mark.django_db
class TestDosingReferenceApi:

    def test_uses_patient_weight(self, patient):
        patient.weight_kg = 80
        patient.save()
        data = Client().get(f"/api/patients/{patient.id}/dosing-reference/").json()["data"]
        assert data["weight_kg"] == 80
        assert data["assumed"] is False
        antibiotics = {d["name"]: d["dose"] for d in data["categories"][0]["drugs"]}
        assert antibiotics["Vancomycin"] == "1200-1600 mg"

    def test_assumes_70kg_without_weight(self, patient):
        patient.weight_kg = None
        patient.save()
        data = Client().get(f"/api/patients/{patient.id}/dosing-reference/").json()["data"]
        assert data["weight_kg"] == 70
        assert data["assumed"] is True

    def test_unknown_patient(self):
        assert Client().get("/api/patients/999/dosing-reference/").status_code == 404


@pytest.mark.django_db
class TestGfrApi:

    def test_male(self, patient):
        data = Client().get(f"/api/patients/{patient.id}/gfr/?creatinine=1.0").json()["data"]
        assert data["age"] is not None
        assert data["egfr"] is not None
        assert data["stage"] is not None

    @pytest.mark.parametrize("creatinine", ["", "abc", "0", "-1"])
    def test_bad_creatinine_gives_null(self, patient, creatinine):
        resp = Client().get(f"/api/patients/{patient.id}/gfr/?creatinine={creatinine}")
        assert resp.status_code == 200
        assert resp.json()["data"]["egfr"] is None
        assert resp.json()["data"]["stage"] is None

    def test_missing_sex_gives_null(self, patient):
        patient.sex = None
        patient.save()
        data = Client().get(f"/api/patients/{patient.id}/gfr/?creatinine=1.0").json()["data"]
        assert data["egfr"] is None


@pytest.mark.django_db
class TestEncounterFlow:

    def test_create_encounter(self, patient):
        resp = post_json(Client(), f"/api/patients/{patient.id}/encounters/", {"primary_dx": "Pneumonia"})
        assert resp.status_code == 201
        assert resp.json()["data"]["status"] == "ACTIVE"

    def test_discharge_writes_note(self, encounter):
        resp = post_json(
            Client(),
            f"/api/encounters/{encounter.id}/status/",
            {"action": "discharge", "discharge_note": "Stable, home"},
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "DISCHARGED"
        assert data["discharge_note"] == "Stable, home"
        note = EncounterAction.objects.get(encounter=encounter)
        assert note.type == "NOTE"
        assert note.text == "Patient discharged: Stable, home"

    def test_add_timeline_action(self, encounter):
        resp = post_json(
            Client(),
            f"/api/encounters/{encounter.id}/actions/",
            {"type": "TX", "text": "Vancomycin started", "event_at": "2025-01-02T08:30:00Z"},
        )
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["type"] == "TX"
        assert data["event_at"].startswith("2025-01-02T08:30:00")

    def test_vitals_recorded_on_timeline(self, encounter):
        client = Client()
        resp = post_json(client, f"/api/encounters/{encounter.id}/vitals/", {"bp": "120/80", "hr": 80})
        assert resp.status_code == 201
        assert resp.json()["data"]["type"] == "VITALS"

        detail = client.get(f"/api/encounters/{encounter.id}/").json()["data"]
        assert detail["actions"][0]["text"] == "BP: 120/80 mmHg | HR: 80 bpm"
        assert detail["patient"]["id"] == encounter.patient_id

    def test_export_html(self, encounter, formula_medications):
        resp = Client().get(f"/encounters/{encounter.id}/export/")
        assert resp.status_code == 200
        assert resp["Content-Type"].startswith("text/html")
        assert resp["Content-Disposition"] == f'attachment; filename="encounter_{encounter.id}_John_Doe.html"'
        body = resp.content.decode()
        assert "Vancomycin" in body
        assert "1050 mg (15 mg/kg)" in body


@pytest.mark.django_db
class TestMetricsEndpoint:

    def test_metrics_exposed(self, patient):
        client = Client()
        client.get(f"/api/patients/{patient.id}/gfr/?creatinine=1.0")
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert b"gfr_calculated_total" in resp.content
