import tempfile
import unittest
from datetime import date
from pathlib import Path

from openpyxl import load_workbook

from placement_desk.columns import ColumnLayout
from placement_desk.errors import ExportError
from placement_desk.exporter import (
    default_filename,
    export_by_category,
    export_records,
    group_by_category,
    to_dataframe,
)
from placement_desk.schema import PLACEMENT_RECORDS, STUDENT_PLACEMENTS, Record


def placement(name, company, **other):
    return Record(values={"student_name": name, "company_name": company, "salary": 30000}, other_details=other)


def visit(company, company_type):
    return Record(values={"v_company_name": company, "company_type": company_type})


class DataFrameTests(unittest.TestCase):
    def test_serial_column_then_visible_labels(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        layout.hide("ref_no")
        layout.rename("company_name", "Employer")
        df = to_dataframe([placement("Asha", "Infosys"), placement("Ravi", "TCS")], layout)

        self.assertEqual(df.columns[0], "S.No")
        self.assertEqual(df.columns[1], "Employer")
        self.assertNotIn("Ref", df.columns)
        self.assertEqual(df["S.No"].tolist(), [1, 2])
        self.assertEqual(df["Student Name"].tolist(), ["Asha", "Ravi"])
        self.assertEqual(df["Salary"].tolist(), ["30000", "30000"])

    def test_other_details_are_flattened_into_columns(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        layout.add_custom("Blood Group")
        records = [placement("Asha", "Infosys", **{"Blood Group": "O+"}), placement("Ravi", "TCS", Hostel="A")]
        df = to_dataframe(records, layout)
        self.assertEqual(df["Blood Group"].tolist(), ["O+", ""])
        self.assertEqual(df["Hostel"].tolist(), ["", "A"])

        flat = to_dataframe(records, layout, flatten_other=False)
        self.assertNotIn("Hostel", flat.columns)
        self.assertIn("Blood Group", flat.columns)


class WorkbookTests(unittest.TestCase):
    def test_single_sheet_export_is_styled(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "out" / default_filename(today=date(2025, 7, 1))
            summary = export_records([placement("Asha", "Infosys")], layout, path)
            wb = load_workbook(path)
            ws = wb["Records"]

            self.assertEqual(path.name, "Placement_Records_2025-07-01.xlsx")
            self.assertEqual(ws["A1"].value, "S.No")
            self.assertTrue(ws["A1"].font.bold)
            self.assertEqual(ws.freeze_panes, "A2")
            self.assertEqual(ws.max_row, 2)
            self.assertEqual(summary["contract"]["name"], "exporter.summary")
            self.assertEqual(summary["run_summary"]["metrics"]["rows"], 1)

    def test_by_category_writes_all_records_then_each_type(self):
        records = [visit("TCS", "it"), visit("L&T", "Core"), visit("Acme", "consulting"), visit("Infosys", "IT")]
        layout = ColumnLayout(PLACEMENT_RECORDS)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / default_filename(by_category=True, today=date(2025, 7, 1))
            summary = export_by_category(records, layout, path)
            wb = load_workbook(path)
            sheet_names = wb.sheetnames
            it_rows = wb["IT"].max_row

        self.assertTrue(path.name.startswith("Multiple_Export_"))
        self.assertEqual(sheet_names, ["All Records", "IT", "CORE", "OTHER"])
        self.assertEqual(summary["sheets"], sheet_names)
        self.assertEqual(it_rows, 3)

    def test_grouping_uses_free_text_for_other_fields(self):
        records = [placement("Asha", "Infosys"), placement("Ravi", "TCS")]
        records[0].values["offer_type"] = "Full Time"
        groups = group_by_category(records, "offer_type")
        self.assertEqual([(name, len(members)) for name, members in groups], [("Full Time", 1)])

    def test_empty_exports_are_refused(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ExportError):
                export_records([], layout, Path(tmpdir) / "x.xlsx")
            with self.assertRaises(ExportError):
                export_by_category([], layout, Path(tmpdir) / "y.xlsx")


if __name__ == "__main__":
    unittest.main()
