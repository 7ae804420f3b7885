"""
Allocation Workbook Tests
"""

import io
from datetime import date

import pytest
from openpyxl import load_workbook

from research_incentives.allocation_export import (
    ALLOCATION_HEADERS,
    FAIL_FILL,
    REVIEW_FILL,
    SUMMARY_HEADERS,
    generate_allocation_workbook,
)
from research_incentives.distribution_engine import distribute
from research_incentives.incentive_types import (
    Author,
    CalculationStatus,
    DistributionMethod,
    IncentiveCalculation,
)


@pytest.fixture
def calculations():
    authors = [
        Author(author_id="u1", position=1),
        Author(author_id="u2", position=2),
        Author(author_id="x1", position=3, is_internal=False),
    ]
    computed = IncentiveCalculation(
        contribution_id="c-1",
        status=CalculationStatus.COMPUTED,
        reference_date=date(2024, 5, 2),
        policy_id="p-book",
        policy_version=1,
        allocation=distribute(1000, 0, authors, DistributionMethod.EQUAL),
        issues=["333.34 of 1000 forfeited"],
    )
    missing = IncentiveCalculation(
        contribution_id="c-2",
        status=CalculationStatus.POLICY_NOT_FOUND,
        reference_date=date(2024, 5, 2),
        issues=["No active book policy on 2024-05-02"],
    )
    return [computed, missing]


class TestAllocationWorkbook:
    def test_sheets(self, calculations):
        wb = load_workbook(io.BytesIO(generate_allocation_workbook(calculations)))
        assert wb.sheetnames == ["Summary", "Author_Allocations", "Forfeitures"]

    def test_summary_rows(self, calculations):
        wb = load_workbook(io.BytesIO(generate_allocation_workbook(calculations)))
        ws = wb["Summary"]

        assert [c.value for c in ws[1]] == SUMMARY_HEADERS
        assert ws.cell(row=2, column=1).value == "c-1"
        assert ws.cell(row=2, column=6).value == 1000
        assert ws.cell(row=2, column=7).value == pytest.approx(666.66)
        assert ws.cell(row=2, column=2).fill.start_color.rgb.endswith(REVIEW_FILL.start_color.rgb[-6:])
        assert ws.cell(row=3, column=2).value == "policy_not_found"
        assert ws.cell(row=3, column=2).fill.start_color.rgb.endswith(FAIL_FILL.start_color.rgb[-6:])
        assert ws.cell(row=3, column=6).value is None

    def test_author_allocations(self, calculations):
        wb = load_workbook(io.BytesIO(generate_allocation_workbook(calculations)))
        ws = wb["Author_Allocations"]

        assert [c.value for c in ws[1]] == ALLOCATION_HEADERS
        assert ws.max_row == 4
        assert ws.cell(row=4, column=2).value == "x1"
        assert ws.cell(row=4, column=4).value == 0
        assert ws.cell(row=4, column=6).value == pytest.approx(333.33)

    def test_forfeitures_include_residue(self, calculations):
        wb = load_workbook(io.BytesIO(generate_allocation_workbook(calculations)))
        ws = wb["Forfeitures"]

        rows = [[c.value for c in row] for row in ws.iter_rows(min_row=2)]
        assert rows == [["c-1", "rounding_residue", None, pytest.approx(0.01), None]]

    def test_empty_batch(self):
        wb = load_workbook(io.BytesIO(generate_allocation_workbook([])))
        assert wb["Author_Allocations"].max_row == 1
