"""Tests for notifier/event_sources.py."""
from datetime import datetime, time, timedelta
from unittest.mock import patch

from notifier.config import (
    CLEANING_SUPPLIES_COLLECTION,
    INFUSION_PUMP_COLLECTION,
    MASTER_CREATED_SUBJECT,
    MASTERS_COLLECTION,
)
from notifier.event_sources import (
    create_record,
    handle_record_created,
    infusion_pump_meta,
    master_meta,
    registry_enrichment,
)
from notifier.models import DeviceRegistryEntry
from notifier.repositories import DeviceRegistryRepository, MailJobRepository, RecordRepository
from notifier.timeutil import LOCAL_TZ, format_date, local_today

ADMIN = "ops@x.com"


def _jobs(db):
    return MailJobRepository(db).list_pending(100)


class TestOnMasterCreated:
    def test_loan_record_notifies_borrower_with_audit_copy(self, db_session):
        doc_id, job_id = create_record(
            db_session, MASTERS_COLLECTION, {"BorrowerEmail": "a@x.com", "Equipment": "Scale"},
            admin_email=ADMIN,
        )

        jobs = _jobs(db_session)
        assert len(jobs) == 1
        job = jobs[0]
        assert job.id == job_id
        assert job.message["to"] == "a@x.com"
        assert job.message["bcc"] == [ADMIN]
        assert job.message["subject"] == MASTER_CREATED_SUBJECT
        assert "Equipment Code: <b>-</b>" in job.message["html"]
        assert job.meta["equipmentCode"] == "-"

    def test_registry_enrichment_fills_due_date(self, db_session):
        due = datetime.combine(local_today() + timedelta(days=30), time.min, tzinfo=LOCAL_TZ)
        DeviceRegistryRepository(db_session).upsert(
            "EQ-001", due_date=due, team="Biomed", location="Lab 2", notify_emails="b@x.com",
        )
        db_session.commit()

        doc_id, _ = create_record(db_session, MASTERS_COLLECTION, {"EquipmentCode": "EQ-001"}, admin_email=ADMIN)

        job = _jobs(db_session)[0]
        assert f"Due Date (next): <b>{format_date(due)}</b>" in job.message["html"]
        assert "30 days left" in job.message["html"]
        assert "Team / department: <b>Biomed</b>" in job.message["html"]
        assert job.message["to"] == ADMIN
        assert job.message["bcc"] == ["b@x.com"]
        assert job.meta["location"] == "Lab 2"

        stored = RecordRepository(db_session).load(MASTERS_COLLECTION, doc_id)
        assert stored["dueDate"].date() == due.date()
        assert stored["Team"] == "Biomed"

    def test_record_values_win_over_registry(self, db_session):
        DeviceRegistryRepository(db_session).upsert("EQ-001", team="Registry team", location="Registry room")
        db_session.commit()

        doc_id, _ = create_record(
            db_session, MASTERS_COLLECTION, {"EquipmentCode": "EQ-001", "Team": "Own team"}, admin_email=ADMIN,
        )

        stored = RecordRepository(db_session).load(MASTERS_COLLECTION, doc_id)
        assert stored["Team"] == "Own team"
        assert stored["Location"] == "Registry room"

    def test_unknown_equipment_code_is_not_enriched(self, db_session):
        doc_id, job_id = create_record(
            db_session, MASTERS_COLLECTION, {"EquipmentCode": "EQ-404"}, admin_email=ADMIN,
        )
        assert job_id is not None
        assert RecordRepository(db_session).load(MASTERS_COLLECTION, doc_id) == {"EquipmentCode": "EQ-404"}

    def test_enrichment_failure_still_notifies(self, db_session):
        with patch.object(DeviceRegistryRepository, "get", side_effect=RuntimeError("registry down")):
            _, job_id = create_record(
                db_session, MASTERS_COLLECTION, {"EquipmentCode": "EQ-001", "BorrowerEmail": "a@x.com"},
                admin_email=ADMIN,
            )

        assert job_id is not None
        jobs = _jobs(db_session)
        assert len(jobs) == 1
        assert jobs[0].message["to"] == "a@x.com"
        assert "Equipment Code: <b>EQ-001</b>" in jobs[0].message["html"]


class TestOtherCollections:
    def test_infusion_pump_hides_code_and_prefers_model(self, db_session):
        create_record(
            db_session,
            INFUSION_PUMP_COLLECTION,
            {"Type": "Volumetric", "Model": "IP-9", "EquipmentCode": "EQ-7", "Location": "Ward 3"},
            admin_email=ADMIN,
        )

        job = _jobs(db_session)[0]
        assert "Equipment Code" not in job.message["html"]
        assert "Type / model: <b>IP-9</b>" in job.message["html"]
        assert job.meta["equipmentCode"] == "-"
        assert job.meta["location"] == "Ward 3"

    def test_cleaning_supplies(self, db_session):
        create_record(
            db_session,
            CLEANING_SUPPLIES_COLLECTION,
            {"Item": "Gloves", "Taken": 5, "Total": 100, "notifyEmails": ["c@x.com"]},
            admin_email=ADMIN,
        )

        job = _jobs(db_session)[0]
        assert "Equipment Code" not in job.message["html"]
        assert "Quantity taken: <b>5</b> of total: <b>100</b>" in job.message["html"]
        assert job.message["to"] == ADMIN
        assert job.message["bcc"] == ["c@x.com"]
        assert job.meta == {"equipmentCode": "-", "location": ""}

    def test_every_source_includes_audit_address(self, db_session):
        for collection in (MASTERS_COLLECTION, INFUSION_PUMP_COLLECTION, CLEANING_SUPPLIES_COLLECTION):
            create_record(db_session, collection, {"BorrowerEmail": "a@x.com"}, admin_email=ADMIN)

        for job in _jobs(db_session):
            assert ADMIN in job.message["bcc"]


class TestHandleRecordCreated:
    def test_missing_record_queues_nothing(self, db_session):
        assert handle_record_created(db_session, MASTERS_COLLECTION, "nope", admin_email=ADMIN) is None
        assert _jobs(db_session) == []

    def test_unknown_collection(self, db_session):
        RecordRepository(db_session).add("Other", {"BorrowerEmail": "a@x.com"}, doc_id="r1")
        db_session.commit()
        assert handle_record_created(db_session, "Other", "r1", admin_email=ADMIN) is None
        assert _jobs(db_session) == []


class TestMeta:
    def test_master_meta(self):
        meta = master_meta({"EquipmentCode": "EQ-1", "Location": "Lab", "dueDate": "x"})
        assert meta == {"equipmentCode": "EQ-1", "location": "Lab", "performDate": None, "dueDate": "x"}

    def test_infusion_pump_meta_without_dates(self):
        assert infusion_pump_meta({"return_date": "x"}, include_dates=False) == {
            "equipmentCode": "-",
            "location": "",
        }

    def test_registry_enrichment_without_entry(self):
        assert registry_enrichment({"EquipmentCode": "EQ-1"}, None) == {}

    def test_registry_enrichment_skips_present_fields(self):
        entry = DeviceRegistryEntry(equipment_code="EQ-1", team="T", location="L", notify_emails=None)
        assert registry_enrichment({"EquipmentCode": "EQ-1", "team": "own"}, entry) == {"Location": "L"}


class TestEpochTimestamps:
    def test_millisecond_created_at_still_notifies(self, db_session):
        _, job_id = create_record(
            db_session, MASTERS_COLLECTION,
            {"BorrowerEmail": "a@x.com", "createdAt": 1760000000000},
            admin_email=ADMIN,
        )

        assert job_id is not None
        job = _jobs(db_session)[0]
        assert job.message["to"] == "a@x.com"
        assert "Withdrawal date: <b>09/10/2025</b>" in job.message["html"]
