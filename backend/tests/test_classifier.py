"""
Tests for repair-status classification and record normalization.

Tests cover:
- Defect collection aliases
- Repair status reading on raw mappings and models
- Outstanding / not-necessary predicates
- Status keys and labels
- Lenient parsing of malformed records
"""

from datetime import datetime, timezone

import pytest

from dvirsync.schemas.inspection import InspectionRecord
from dvirsync.services.classifier import (
    defects_of,
    has_defects,
    has_unnecessary_repair,
    is_outstanding,
    repair_status,
    status_key,
    status_label,
)

from fakes import make_defect, make_dvir

WHEN = datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)


class TestDefectAliases:
    """Test the three-way defect field name ambiguity."""

    @pytest.mark.parametrize("key", ["dVIRDefects", "dvirDefects", "DVIRDefects"])
    def test_each_alias_is_read(self, key):
        raw = make_dvir("L1", WHEN, defects=[make_defect()], defect_key=key)
        assert len(defects_of(raw)) == 1
        assert len(defects_of(InspectionRecord.from_api(raw))) == 1

    def test_first_present_alias_wins(self):
        raw = {
            "id": "L1",
            "dVIRDefects": [make_defect("Repaired")],
            "dvirDefects": [make_defect("NotRepaired"), make_defect("NotRepaired")],
        }
        assert [repair_status(d) for d in defects_of(raw)] == ["Repaired"]
        assert [d.repair_status for d in InspectionRecord.from_api(raw).defects] == ["Repaired"]

    def test_null_alias_falls_through(self):
        raw = {"id": "L1", "dVIRDefects": None, "DVIRDefects": [make_defect()]}
        assert len(defects_of(raw)) == 1

    def test_missing_or_malformed_is_empty(self):
        assert defects_of({"id": "L1"}) == []
        assert defects_of({"id": "L1", "dVIRDefects": "oops"}) == []
        assert defects_of(None) == []


class TestRepairStatus:
    """Test status reading and predicates."""

    def test_unknown_status_is_empty(self):
        assert repair_status({"repairStatus": 42}) == ""
        assert repair_status({}) == ""
        assert repair_status(None) == ""

    def test_known_status_passes_through(self):
        assert repair_status({"repairStatus": "NotNecessary"}) == "NotNecessary"

    def test_is_outstanding(self):
        raw = make_dvir("L1", WHEN, defects=[make_defect("Repaired"), make_defect("NotRepaired")])
        assert is_outstanding(raw) is True
        assert is_outstanding(InspectionRecord.from_api(raw)) is True

    def test_not_outstanding_when_all_repaired(self):
        raw = make_dvir("L1", WHEN, defects=[make_defect("Repaired")])
        assert is_outstanding(raw) is False
        assert has_unnecessary_repair(raw) is False

    def test_has_unnecessary_repair(self):
        raw = make_dvir("L1", WHEN, defects=[make_defect("NotNecessary")])
        assert has_unnecessary_repair(raw) is True

    def test_has_defects(self):
        assert has_defects(make_dvir("L1", WHEN)) is False
        assert has_defects(make_dvir("L1", WHEN, defects=[make_defect()])) is True

    @pytest.mark.parametrize("status,key,label", [
        ("NotRepaired", "outstanding", "Outstanding"),
        ("NotNecessary", "notNecessary", "Not Necessary"),
        ("Repaired", "repaired", "Repaired"),
        ("Deferred", "other", "Deferred"),
        ("", "other", "--"),
    ])
    def test_keys_and_labels(self, status, key, label):
        assert status_key(status) == key
        assert status_label(status) == label


class TestRecordParsing:
    """Test lenient ingestion of DVIR logs."""

    def test_missing_id_is_rejected(self):
        assert InspectionRecord.from_api({"dateTime": WHEN.isoformat()}) is None
        assert InspectionRecord.from_api("not a record") is None

    def test_safety_flag_defaults_to_safe(self):
        raw = make_dvir("L1", WHEN, safe=None)
        assert InspectionRecord.from_api(raw).safe_to_operate is True
        raw = make_dvir("L1", WHEN, safe=False)
        assert InspectionRecord.from_api(raw).safe_to_operate is False

    def test_log_date_and_type_fallbacks(self):
        record = InspectionRecord.from_api({"id": "L1", "logDate": "2024-03-10T08:00:00Z", "type": "PostTrip"})
        assert record.date_time == WHEN
        assert record.log_type == "PostTrip"

    def test_bad_nested_values_degrade(self):
        raw = {
            "id": "L1",
            "dateTime": "not a date",
            "device": 17,
            "dVIRDefects": [
                {"repairStatus": None, "defect": "x", "part": ["?"], "defectRemarks": "text"},
                "garbage",
            ],
        }
        record = InspectionRecord.from_api(raw)
        assert record.date_time is None
        assert record.device is None
        assert len(record.defects) == 1
        defect = record.defects[0]
        assert defect.repair_status == ""
        assert defect.defect is None
        assert defect.part is None
        assert defect.remarks == []

    def test_repair_user_forms(self):
        raw = make_dvir("L1", WHEN, defects=[
            make_defect("Repaired", repair_user={"id": "u9", "name": "Nine"}),
            make_defect("Repaired", repair_user="u8"),
        ])
        first, second = InspectionRecord.from_api(raw).defects
        assert first.repair_user_id == "u9"
        assert second.repair_user_id == "u8"
