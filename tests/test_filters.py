import unittest

from placement_desk.columns import ColumnLayout
from placement_desk.filters import (
    FilterSet,
    apply_filters,
    strict_view_columns,
    unique_values,
)
from placement_desk.schema import STUDENT_PLACEMENTS, Record


def record(name, department="", company="", **other) -> Record:
    return Record(
        values={"student_name": name, "department": department, "company_name": company},
        other_details=other,
    )


RECORDS = [
    record("Asha", "CSE", "Infosys", **{"Blood Group": "O+"}),
    record("Ravi", "ECE", "Wipro"),
    record("Meera", "CSE", "Bosch", **{"Blood Group": "B+"}),
    record("Kiran", "MECH", "infosys bpm"),
]


def names(records):
    return [item.values["student_name"] for item in records]


class FilterSetTests(unittest.TestCase):
    def test_criteria_get_distinct_ids_and_can_be_removed(self):
        filters = FilterSet()
        first = filters.add("department", "CSE", "Dept")
        second = filters.add("department", "CSE", "Dept")
        self.assertNotEqual(first.id, second.id)
        filters.remove(first.id)
        self.assertEqual([item.id for item in filters], [second.id])
        filters.clear()
        self.assertEqual(len(filters), 0)


class ApplyFiltersTests(unittest.TestCase):
    def setUp(self):
        self.layout = ColumnLayout(STUDENT_PLACEMENTS)
        self.layout.add_custom("Blood Group")

    def test_no_criteria_and_no_search_returns_everything(self):
        self.assertEqual(apply_filters(RECORDS, [], None, self.layout), RECORDS)
        self.assertEqual(apply_filters(RECORDS, [], "   ", self.layout), RECORDS)

    def test_matching_is_case_insensitive_substring(self):
        filters = FilterSet()
        filters.add("company_name", "INFOSYS")
        self.assertEqual(names(apply_filters(RECORDS, filters, None, self.layout)), ["Asha", "Kiran"])

    def test_criteria_combine_as_intersection(self):
        filters = FilterSet()
        filters.add("department", "cse")
        by_department = apply_filters(RECORDS, filters, None, self.layout)
        filters.add("company_name", "info")
        both = apply_filters(RECORDS, filters, None, self.layout)

        only_company = FilterSet()
        only_company.add("company_name", "info")
        by_company = apply_filters(RECORDS, only_company, None, self.layout)

        self.assertEqual(names(both), ["Asha"])
        self.assertEqual(set(names(both)), set(names(by_department)) & set(names(by_company)))

    def test_empty_criterion_value_constrains_nothing(self):
        filters = FilterSet()
        filters.add("department", "")
        self.assertEqual(len(apply_filters(RECORDS, filters, None, self.layout)), 4)

    def test_custom_column_filter_reads_other_details(self):
        filters = FilterSet()
        filters.add("Blood Group", "b+")
        self.assertEqual(names(apply_filters(RECORDS, filters, None, self.layout)), ["Meera"])

    def test_search_spans_visible_columns_only(self):
        self.assertEqual(names(apply_filters(RECORDS, [], "wipro", self.layout)), ["Ravi"])
        self.layout.hide("company_name")
        self.assertEqual(apply_filters(RECORDS, [], "wipro", self.layout), [])
        self.assertEqual(names(apply_filters(RECORDS, [], "o+", self.layout)), ["Asha"])

    def test_search_and_filters_both_apply(self):
        filters = FilterSet()
        filters.add("department", "CSE")
        self.assertEqual(names(apply_filters(RECORDS, filters, "bosch", self.layout)), ["Meera"])


class PickListTests(unittest.TestCase):
    def test_unique_values_are_sorted_and_skip_blanks(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        layout.add_custom("Blood Group")
        self.assertEqual(unique_values(RECORDS, layout, "department"), ["CSE", "ECE", "MECH"])
        self.assertEqual(unique_values(RECORDS, layout, "Blood Group"), ["B+", "O+"])

    def test_strict_view_keeps_columns_filled_in_every_row(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        layout.add_custom("Blood Group")
        keys = [column.key for column in strict_view_columns(RECORDS, layout)]
        self.assertEqual(keys, ["company_name", "student_name", "department"])
        keys = [column.key for column in strict_view_columns(RECORDS[:1], layout)]
        self.assertIn("Blood Group", keys)

    def test_strict_view_of_nothing_keeps_visible_columns(self):
        layout = ColumnLayout(STUDENT_PLACEMENTS)
        layout.hide("ref_no")
        self.assertEqual(len(strict_view_columns([], layout)), len(layout) - 1)


if __name__ == "__main__":
    unittest.main()
