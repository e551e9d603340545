import tempfile
import unittest
from pathlib import Path

from placement_desk.columns import (
    ColumnLayout,
    layout_key,
    legacy_custom_key,
    load_layout,
    save_layout,
)
from placement_desk.errors import ColumnError
from placement_desk.schema import BuiltIn, Custom, MASTER_COMPANIES, STUDENT_PLACEMENTS
from placement_desk.session import LocalState


class ColumnLayoutTests(unittest.TestCase):
    def test_default_layout_follows_schema_order(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        self.assertEqual(layout.keys, STUDENT_PLACEMENTS.keys)
        self.assertTrue(all(column.visible for column in layout))
        self.assertEqual(layout.get("department").label, "Dept")

    def test_custom_column_names_must_be_unique_ignoring_case_and_spacing(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        column = layout.add_custom("  Blood   Group ")
        self.assertEqual(column.key, "Blood Group")
        self.assertEqual(column.ref, Custom("Blood Group"))
        for name in ("blood group", "BloodGroup", "Student Name", "student_name", "", "   "):
            with self.subTest(name=name):
                with self.assertRaises(ColumnError):
                    layout.add_custom(name)

    def test_builtin_refs_point_at_fields(self):
        self.assertEqual(ColumnLayout(STUDENT_PLACEMENTS).get("salary").ref, BuiltIn("salary"))

    def test_columns_can_be_hidden_but_never_removed(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        layout.hide("ref_no")
        self.assertNotIn("ref_no", [column.key for column in layout.visible()])
        self.assertIn("ref_no", layout.keys)
        with self.assertRaises(ColumnError):
            layout.remove("ref_no")
        layout.show("ref_no")
        self.assertEqual(layout.visible()[-1].key, "ref_no")

    def test_rename_changes_label_only(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        layout.rename("hr_name", "  Recruiter ")
        self.assertEqual(layout.get("hr_name").label, "Recruiter")
        with self.assertRaises(ColumnError):
            layout.rename("hr_name", " ")
        with self.assertRaises(ColumnError):
            layout.rename("unknown", "X")


class SavedLayoutTests(unittest.TestCase):
    def test_saved_layout_merges_with_current_builtins(self):
        saved = [
            {"key": "company_name", "label": "Employer", "visible": False, "is_custom": False},
            {"key": "retired_field", "label": "Old", "visible": True, "is_custom": False},
            {"key": "Notes", "label": "Notes", "visible": True, "isCustom": True},
            {"key": "company_name", "label": "Duplicate"},
            "garbage",
        ]
        layout = ColumnLayout.from_json(MASTER_COMPANIES, saved)

        self.assertEqual(layout.keys[:2], ["company_name", "Notes"])
        self.assertEqual(layout.get("company_name").label, "Employer")
        self.assertFalse(layout.get("company_name").visible)
        self.assertTrue(layout.get("Notes").is_custom)
        self.assertNotIn("retired_field", layout.keys)
        self.assertEqual(set(layout.keys), set(MASTER_COMPANIES.keys) | {"Notes"})

    def test_layout_round_trips_through_local_state(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            state = LocalState.in_dir(Path(tmpdir))
            layout = ColumnLayout(STUDENT_PLACEMENTS)
            layout.add_custom("Offer Letter")
            layout.hide("ref_no")
            save_layout(state, layout)

            restored = load_layout(LocalState.in_dir(Path(tmpdir)), STUDENT_PLACEMENTS)

        self.assertEqual(restored.keys, layout.keys)
        self.assertFalse(restored.get("ref_no").visible)
        self.assertTrue(restored.get("Offer Letter").is_custom)

    def test_legacy_custom_column_list_is_migrated(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            state = LocalState.in_dir(Path(tmpdir))
            state.set(legacy_custom_key(STUDENT_PLACEMENTS), ["Blood Group", "blood group", "Hostel"])
            layout = load_layout(state, STUDENT_PLACEMENTS)

        self.assertEqual([column.key for column in layout.custom()], ["Blood Group", "Hostel"])

    def test_missing_state_gives_default_layout(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            state = LocalState.in_dir(Path(tmpdir))
            self.assertIsNone(state.get(layout_key(STUDENT_PLACEMENTS)))
            layout = load_layout(state, STUDENT_PLACEMENTS)
        self.assertEqual(layout.keys, STUDENT_PLACEMENTS.keys)


if __name__ == "__main__":
    unittest.main()
