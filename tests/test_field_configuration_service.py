"""
Tests for the Field Configuration Manager and its Configuration Store.

Covers:
  - create_field_configuration: version 1, evidence protection, level bounds,
    duplicate detection per scope, enum and validation_rules checks
  - update_field_configuration: append-only versioning, stale ids, ignored
    scope/versioning keys, renames, level-critical fields keep their level
  - move_field_to_level: new version at the target level, protected and
    level-critical fields, target collisions
  - inheritance: factory overrides tenant by (level, field_name)
  - as-of resolution and version history
  - default field set and seeding
  - config_store.supersede: a stale row never produces a second active version
"""

from datetime import datetime, timezone

import pytest

from scrapops.core.exceptions import ConflictError, NotFoundError, ValidationError
from scrapops.models import db
from scrapops.services import config_store
from scrapops.services import field_configuration_service as svc


def _active_rows(tenant_id, **filters):
    return config_store.find_configurations(tenant_id, **filters)


# ── Create ────────────────────────────────────────────────────────────────────


class TestCreateFieldConfiguration:
    def test_create_persists_version_one(self, make_field):
        row = make_field()

        assert row["version"] == 1
        assert row["is_active"] is True
        assert row["effective_to"] is None
        assert row["effective_from"] is not None
        assert row["lineage_id"] == row["id"]
        assert row["factory_id"] is None
        assert row["capture_type"] == "MANUAL"
        assert row["validation_type"] == "REQUIRED"
        assert row["editability"] == "EDITABLE"

    def test_enum_values_are_normalised(self, make_field):
        row = make_field(capture_type="ocr", validation_type="optional", editability="read_only")
        assert (row["capture_type"], row["validation_type"], row["editability"]) == (
            "OCR", "OPTIONAL", "READ_ONLY",
        )

    @pytest.mark.parametrize("name", ["photos", "PHOTOS", "Inspection_Photos", "gps_coordinates"])
    def test_protected_evidence_field_rejected(self, make_field, tenant_id, name):
        with pytest.raises(ValidationError, match="cannot be disabled for audit integrity"):
            make_field(field_name=name)
        assert _active_rows(tenant_id) == []

    @pytest.mark.parametrize("level", [0, 8, -1, "3", None, True])
    def test_level_outside_range_rejected(self, make_field, level):
        with pytest.raises(ValidationError, match="Invalid operational level"):
            make_field(operational_level=level)

    def test_unknown_capture_type_rejected(self, make_field):
        with pytest.raises(ValidationError, match="capture_type must be one of"):
            make_field(capture_type="TELEPATHY")

    def test_unknown_field_type_rejected(self, make_field):
        with pytest.raises(ValidationError, match="field_type must be one of"):
            make_field(field_type="BLOB")

    def test_inverted_photo_limits_rejected(self, make_field):
        with pytest.raises(ValidationError, match="Photo count limits"):
            make_field(field_type="FILE", min_photo_count=5, max_photo_count=2)

    @pytest.mark.parametrize("rules, key", [
        ({"pattern": "[A-Z"}, "pattern"),
        ({"pattern": 42}, "pattern"),
        ({"minValue": "2"}, "minValue"),
        ({"maxValue": True}, "maxValue"),
        ({"maxLength": "x"}, "maxLength"),
        ({"minLength": -1}, "minLength"),
        ({"allowedValues": "A,B"}, "allowedValues"),
        ({"minValue": 10, "maxValue": 1}, "minValue"),
    ])
    def test_malformed_validation_rules_rejected(self, make_field, tenant_id, rules, key):
        with pytest.raises(ValidationError, match="Invalid validation_rules") as exc:
            make_field(field_type="TEXT", validation_rules=rules)
        assert key in exc.value.details
        assert _active_rows(tenant_id) == []

    def test_validation_rules_must_be_an_object(self, make_field):
        with pytest.raises(ValidationError, match="validation_rules must be an object"):
            make_field(validation_rules=["minValue", 1])

    def test_well_formed_validation_rules_kept(self, make_field):
        rules = {"pattern": r"^INV-\d+$", "minLength": 5, "maxLength": 20}
        row = make_field(field_type="TEXT", validation_rules=rules)
        assert row["validation_rules"] == rules

    def test_missing_tenant_rejected(self):
        with pytest.raises(ValidationError, match="tenant_id is required"):
            svc.create_field_configuration({"operational_level": 1, "field_name": "po_ref"})

    def test_missing_field_name_rejected(self, make_field):
        with pytest.raises(ValidationError, match="field_name is required"):
            make_field(field_name="  ")

    def test_duplicate_tenant_field_conflicts(self, make_field):
        make_field()
        with pytest.raises(ConflictError) as exc:
            make_field()
        assert str(exc.value) == (
            "Field configuration already exists for 'invoice_amount' at level L1 for tenant"
        )

    def test_duplicate_factory_field_conflicts(self, make_field, factory_id):
        make_field(factory_id=factory_id)
        with pytest.raises(ConflictError, match=f"for factory {factory_id}"):
            make_field(factory_id=factory_id)

    def test_same_name_allowed_in_other_scope_or_level(self, make_field, factory_id, tenant_id):
        make_field()
        make_field(factory_id=factory_id)
        make_field(operational_level=2)
        make_field(tenant_id="tenant-other")

        assert len(_active_rows(tenant_id)) == 2
        assert len(_active_rows(tenant_id, factory_id=factory_id)) == 1


# ── Update ────────────────────────────────────────────────────────────────────


class TestUpdateFieldConfiguration:
    def test_n_updates_leave_one_active_row_at_version_n_plus_one(self, make_field, tenant_id):
        row = make_field()
        current_id = row["id"]
        for i in range(3):
            current_id = svc.update_field_configuration(current_id, {"field_label": f"Label {i}"})["id"]

        history = svc.get_version_history(row["id"])
        assert [h["version"] for h in history] == [1, 2, 3, 4]
        assert [h["is_active"] for h in history] == [False, False, False, True]
        assert all(h["effective_to"] is not None for h in history[:-1])
        assert history[-1]["effective_to"] is None
        assert {h["lineage_id"] for h in history} == {row["id"]}

        active = _active_rows(tenant_id)
        assert len(active) == 1
        assert active[0].version == 4
        assert active[0].field_label == "Label 2"

    def test_update_returns_new_row_and_keeps_old(self, make_field):
        row = make_field(validation_rules={"minValue": 1})
        new = svc.update_field_configuration(row["id"], {"validation_type": "OPTIONAL"})

        assert new["id"] != row["id"]
        assert new["version"] == 2
        assert new["validation_type"] == "OPTIONAL"
        assert new["validation_rules"] == {"minValue": 1}

        old = svc.get_field_configuration(row["id"])
        assert old["is_active"] is False
        assert old["validation_type"] == "REQUIRED"

    def test_scope_and_versioning_keys_are_ignored(self, make_field, tenant_id):
        row = make_field()
        new = svc.update_field_configuration(row["id"], {
            "tenant_id": "tenant-hijack",
            "factory_id": "factory-hijack",
            "version": 99,
            "is_active": False,
            "id": "forged-id",
            "help_text": "Amount printed on the invoice",
        })

        assert new["tenant_id"] == tenant_id
        assert new["factory_id"] is None
        assert new["version"] == 2
        assert new["is_active"] is True
        assert new["id"] != "forged-id"
        assert new["help_text"] == "Amount printed on the invoice"

    def test_stale_id_conflicts(self, make_field):
        row = make_field()
        svc.update_field_configuration(row["id"], {"field_label": "First"})

        with pytest.raises(ConflictError, match="no longer the active version"):
            svc.update_field_configuration(row["id"], {"field_label": "Second"})

    def test_unknown_id_not_found(self):
        with pytest.raises(NotFoundError):
            svc.update_field_configuration("does-not-exist", {"field_label": "x"})

    def test_rename_to_protected_field_rejected(self, make_field):
        row = make_field()
        with pytest.raises(ValidationError, match="cannot be disabled"):
            svc.update_field_configuration(row["id"], {"field_name": "Operator_Signature"})
        assert svc.get_field_configuration(row["id"])["is_active"] is True

    def test_rename_onto_existing_field_conflicts(self, make_field):
        make_field(field_name="po_reference")
        row = make_field(field_name="po_ref")
        with pytest.raises(ConflictError, match="'po_reference' at level L1"):
            svc.update_field_configuration(row["id"], {"field_name": "po_reference"})

    def test_invalid_level_in_update_rejected(self, make_field):
        row = make_field()
        with pytest.raises(ValidationError, match="Invalid operational level"):
            svc.update_field_configuration(row["id"], {"operational_level": 9})

    def test_malformed_rules_in_update_rejected(self, make_field):
        row = make_field(field_type="TEXT")
        with pytest.raises(ValidationError, match="pattern invalid regular expression"):
            svc.update_field_configuration(row["id"], {"validation_rules": {"pattern": "(unclosed"}})

        stored = svc.get_field_configuration(row["id"])
        assert stored["is_active"] is True
        assert stored["version"] == 1
        assert [h["version"] for h in svc.get_version_history(row["id"])] == [1]

    def test_level_critical_field_cannot_change_level_via_update(self, make_field, tenant_id):
        row = make_field(operational_level=3, field_name="gross_weight")
        with pytest.raises(ValidationError, match="critical for that operational stage"):
            svc.update_field_configuration(row["id"], {"operational_level": 5})

        stored = svc.get_field_configuration(row["id"])
        assert stored["is_active"] is True
        assert stored["operational_level"] == 3
        assert _active_rows(tenant_id, operational_level=5) == []

    def test_level_critical_field_other_changes_allowed(self, make_field):
        row = make_field(operational_level=3, field_name="gross_weight")
        new = svc.update_field_configuration(
            row["id"], {"field_label": "Gross Weight (KG)", "operational_level": 3},
        )
        assert new["version"] == 2
        assert new["operational_level"] == 3


# ── Move ──────────────────────────────────────────────────────────────────────


class TestMoveFieldToLevel:
    def test_move_creates_version_at_new_level(self, make_field, tenant_id):
        row = make_field(operational_level=2, field_name="seal_number")
        moved = svc.move_field_to_level(row["id"], 3)

        assert moved["operational_level"] == 3
        assert moved["version"] == 2
        assert moved["lineage_id"] == row["id"]
        assert svc.get_field_configuration(row["id"])["is_active"] is False
        assert _active_rows(tenant_id, operational_level=2) == []
        assert [r.field_name for r in _active_rows(tenant_id, operational_level=3)] == ["seal_number"]

    @pytest.mark.parametrize("name", ["photos", "Vehicle_Photo"])
    def test_protected_field_cannot_move(self, tenant_id, name):
        # Evidence rows are provisioned by the platform, not through the service.
        row = config_store.insert_configuration({
            "tenant_id": tenant_id, "factory_id": None,
            "operational_level": 4, "field_name": name, "field_type": "FILE",
        })
        db.session.commit()

        with pytest.raises(ValidationError, match="cannot be disabled for audit integrity"):
            svc.move_field_to_level(row.id, 5)

    def test_level_critical_field_cannot_move(self, make_field):
        row = make_field(operational_level=3, field_name="gross_weight")
        with pytest.raises(ValidationError, match="critical for that operational stage"):
            svc.move_field_to_level(row["id"], 5)

    def test_critical_name_may_leave_a_foreign_level(self, make_field):
        row = make_field(operational_level=2, field_name="gross_weight")
        assert svc.move_field_to_level(row["id"], 3)["operational_level"] == 3

    @pytest.mark.parametrize("level", [0, 8, "4"])
    def test_invalid_target_level_rejected(self, make_field, level):
        row = make_field()
        with pytest.raises(ValidationError, match="Invalid operational level"):
            svc.move_field_to_level(row["id"], level)

    def test_move_onto_existing_field_conflicts(self, make_field):
        make_field(operational_level=2, field_name="remarks")
        row = make_field(operational_level=1, field_name="remarks")
        with pytest.raises(ConflictError, match="'remarks' at level L2"):
            svc.move_field_to_level(row["id"], 2)

    def test_move_to_same_level_rejected(self, make_field):
        row = make_field(operational_level=2)
        with pytest.raises(ValidationError, match="already at level L2"):
            svc.move_field_to_level(row["id"], 2)

    def test_move_unknown_id_not_found(self):
        with pytest.raises(NotFoundError):
            svc.move_field_to_level("missing", 2)


# ── Inheritance ───────────────────────────────────────────────────────────────


class TestInheritance:
    def test_factory_row_replaces_tenant_row(self, make_field, tenant_id, factory_id):
        make_field(operational_level=2, field_name="seal_number", field_label="Tenant Seal")
        factory_row = make_field(
            operational_level=2, field_name="seal_number", field_label="Factory Seal",
            factory_id=factory_id, validation_type="OPTIONAL",
        )

        result = svc.get_field_configurations_with_inheritance(tenant_id, factory_id, 2)

        assert len(result) == 1
        assert result[0]["id"] == factory_row["id"]
        assert result[0]["field_label"] == "Factory Seal"
        assert result[0]["validation_type"] == "OPTIONAL"

    def test_tenant_rows_pass_through(self, make_field, tenant_id, factory_id):
        make_field(operational_level=2, field_name="seal_number", display_order=2)
        make_field(operational_level=2, field_name="driver_mobile", display_order=1)
        make_field(operational_level=2, field_name="seal_number", factory_id=factory_id, display_order=3)

        result = svc.get_field_configurations_with_inheritance(tenant_id, factory_id, 2)
        assert [(r["field_name"], r["factory_id"]) for r in result] == [
            ("driver_mobile", None),
            ("seal_number", factory_id),
        ]

    def test_other_factory_sees_tenant_definition(self, make_field, tenant_id, factory_id):
        tenant_row = make_field(operational_level=2, field_name="seal_number")
        make_field(operational_level=2, field_name="seal_number", factory_id=factory_id)

        result = svc.get_field_configurations_with_inheritance(tenant_id, "factory-nagpur", 2)
        assert [r["id"] for r in result] == [tenant_row["id"]]

    def test_without_factory_only_tenant_rows(self, make_field, tenant_id, factory_id):
        make_field(operational_level=2, field_name="factory_only", factory_id=factory_id)
        assert svc.get_field_configurations_with_inheritance(tenant_id) == []

    def test_same_name_on_other_level_is_not_overridden(self, make_field, tenant_id, factory_id):
        make_field(operational_level=1, field_name="remarks")
        make_field(operational_level=2, field_name="remarks", factory_id=factory_id)

        result = svc.get_field_configurations_with_inheritance(tenant_id, factory_id)
        assert [(r["operational_level"], r["factory_id"]) for r in result] == [
            (1, None), (2, factory_id),
        ]

    def test_merge_inherited_is_pure(self):
        tenant_rows = [
            {"operational_level": 2, "field_name": "a", "display_order": 2, "src": "tenant"},
            {"operational_level": 1, "field_name": "b", "display_order": 1, "src": "tenant"},
        ]
        factory_rows = [{"operational_level": 2, "field_name": "a", "display_order": 0, "src": "factory"}]

        merged = svc.merge_inherited(tenant_rows, factory_rows)

        assert [(r["field_name"], r["src"]) for r in merged] == [("b", "tenant"), ("a", "factory")]
        assert len(tenant_rows) == 2 and tenant_rows[0]["src"] == "tenant"


# ── As-of and history ─────────────────────────────────────────────────────────


class TestAsOfAndHistory:
    def test_as_of_returns_configuration_in_force_at_that_time(self, make_field, tenant_id):
        row = make_field(field_label="Original")
        checkpoint = datetime.now(timezone.utc)
        svc.update_field_configuration(row["id"], {"field_label": "Revised"})

        then = svc.get_field_configurations_as_of(tenant_id, checkpoint)
        now = svc.get_field_configurations_as_of(tenant_id, datetime.now(timezone.utc))

        assert [r["field_label"] for r in then] == ["Original"]
        assert [r["field_label"] for r in now] == ["Revised"]

    def test_as_of_before_creation_is_empty(self, make_field, tenant_id):
        before = datetime.now(timezone.utc)
        make_field()
        assert svc.get_field_configurations_as_of(tenant_id, before) == []

    def test_as_of_applies_factory_overrides(self, make_field, tenant_id, factory_id):
        make_field(field_label="Tenant")
        make_field(field_label="Factory", factory_id=factory_id)
        result = svc.get_field_configurations_as_of(
            tenant_id, datetime.now(timezone.utc), factory_id=factory_id,
        )
        assert [r["field_label"] for r in result] == ["Factory"]

    def test_history_is_reachable_from_any_version(self, make_field):
        row = make_field()
        v2 = svc.update_field_configuration(row["id"], {"field_label": "v2"})
        v3 = svc.move_field_to_level(v2["id"], 2)

        from_first = [h["id"] for h in svc.get_version_history(row["id"])]
        from_last = [h["id"] for h in svc.get_version_history(v3["id"])]
        assert from_first == from_last == [row["id"], v2["id"], v3["id"]]

    def test_get_field_configurations_orders_by_level_then_display_order(self, make_field, tenant_id):
        make_field(operational_level=2, field_name="b", display_order=1)
        make_field(operational_level=1, field_name="c", display_order=5)
        make_field(operational_level=1, field_name="a", display_order=2)

        names = [r["field_name"] for r in svc.get_field_configurations(tenant_id)]
        assert names == ["a", "c", "b"]
        assert [r["field_name"] for r in svc.get_field_configurations(tenant_id, 1)] == ["a", "c"]


# ── Defaults ──────────────────────────────────────────────────────────────────


class TestDefaultFields:
    def test_default_set_covers_levels_one_to_four(self, tenant_id):
        defaults = svc.get_default_field_configurations(tenant_id)
        assert {int(d["operational_level"]) for d in defaults} == {1, 2, 3, 4}
        assert all(d["tenant_id"] == tenant_id for d in defaults)

    def test_seed_skips_protected_evidence_fields(self, tenant_id):
        created = svc.seed_default_field_configurations(tenant_id)
        names = {r["field_name"] for r in created}

        assert "inspection_photos" not in names
        assert names == {
            "vendor_details", "po_number", "vehicle_number",
            "driver_mobile", "gross_weight", "inspection_grade",
        }
        grade = next(r for r in created if r["field_name"] == "inspection_grade")
        assert grade["validation_rules"] == {"allowedValues": ["A", "B", "C", "REJECTED"]}

    def test_seed_is_idempotent(self, tenant_id):
        svc.seed_default_field_configurations(tenant_id)
        assert svc.seed_default_field_configurations(tenant_id) == []
        assert len(_active_rows(tenant_id)) == 6


# ── Store-level concurrency ───────────────────────────────────────────────────


class TestSupersedeRace:
    def test_second_supersede_of_same_row_loses(self, make_field, tenant_id):
        created = make_field()
        row = config_store.get_configuration(created["id"])
        values = row.definition()

        config_store.supersede(row, {**values, "field_label": "Winner"})
        db.session.commit()

        with pytest.raises(ConflictError, match="superseded by another update"):
            config_store.supersede(row, {**values, "field_label": "Loser"})

        active = _active_rows(tenant_id)
        assert len(active) == 1
        assert active[0].field_label == "Winner"
        assert active[0].version == 2

    def test_direct_duplicate_insert_hits_unique_index(self, make_field, tenant_id):
        make_field()
        with pytest.raises(ConflictError, match="already exists"):
            config_store.insert_configuration({
                "tenant_id": tenant_id, "factory_id": None,
                "operational_level": 1, "field_name": "invoice_amount",
            })
        assert len(_active_rows(tenant_id)) == 1
