"""
Allocation Export

Builds the finance reconciliation workbook for a batch of incentive
calculations: Summary, Author_Allocations and Forfeitures worksheets.
"""

import io
import logging
from typing import List

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill, Border, Side
from openpyxl.utils.dataframe import dataframe_to_rows
from openpyxl.utils import get_column_letter

from .incentive_types import CalculationStatus, IncentiveCalculation

logger = logging.getLogger(__name__)

# Styling constants
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
OK_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
REVIEW_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
FAIL_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)
AMOUNT_FORMAT = '#,##0.00'

SUMMARY_HEADERS = [
    "Contribution_ID", "Status", "Policy_ID", "Policy_Version", "Reference_Date",
    "Total_Computed", "Total_Distributed", "Total_Forfeited",
    "Points_Computed", "Points_Distributed", "Points_Forfeited", "Issues",
]
ALLOCATION_HEADERS = [
    "Contribution_ID", "Author_ID", "Percentage", "Incentive_Amount", "Points",
    "Forfeited_Amount", "Forfeited_Points", "Note",
]
FORFEITURE_HEADERS = ["Contribution_ID", "Reason", "Percentage", "Amount", "Points"]


def apply_header_style(ws, row_num: int = 1):
    """Apply header styling to first row"""
    for cell in ws[row_num]:
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal='center', vertical='center')
        cell.border = BORDER


def auto_adjust_columns(ws):
    """Auto-adjust column widths based on content"""
    for column in ws.columns:
        max_length = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
        column_letter = get_column_letter(column[0].column)
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)


def format_amount_columns(ws, first_col: int, last_col: int):
    for row in ws.iter_rows(min_row=2, min_col=first_col, max_col=last_col):
        for cell in row:
            cell.number_format = AMOUNT_FORMAT


# =============================================================================
# WORKSHEET GENERATORS
# =============================================================================

def generate_summary_sheet(wb: Workbook, calculations: List[IncentiveCalculation]):
    """One row per contribution, colored by outcome"""
    ws = wb.create_sheet("Summary")
    ws.append(SUMMARY_HEADERS)
    apply_header_style(ws)

    for calc in calculations:
        allocation = calc.allocation
        ws.append([
            calc.contribution_id,
            calc.status.value,
            calc.policy_id or "",
            calc.policy_version,
            calc.reference_date.isoformat(),
            float(allocation.total_computed) if allocation else None,
            float(allocation.total_distributed) if allocation else None,
            float(allocation.total_forfeited) if allocation else None,
            float(allocation.total_points_computed) if allocation else None,
            float(allocation.total_points_distributed) if allocation else None,
            float(allocation.total_points_forfeited) if allocation else None,
            "; ".join(calc.issues),
        ])

        status_cell = ws.cell(row=ws.max_row, column=2)
        if calc.status != CalculationStatus.COMPUTED:
            status_cell.fill = FAIL_FILL
        elif allocation and allocation.total_forfeited > 0:
            status_cell.fill = REVIEW_FILL
        else:
            status_cell.fill = OK_FILL

    format_amount_columns(ws, 6, 11)
    auto_adjust_columns(ws)


def allocations_frame(calculations: List[IncentiveCalculation]) -> pd.DataFrame:
    rows = []
    for calc in calculations:
        if calc.allocation is None:
            continue
        for a in calc.allocation.allocations:
            rows.append([
                calc.contribution_id,
                a.author_id,
                float(a.percentage),
                float(a.incentive_amount),
                float(a.points),
                float(a.forfeited_amount),
                float(a.forfeited_points),
                a.note,
            ])
    return pd.DataFrame(rows, columns=ALLOCATION_HEADERS)


def generate_allocations_sheet(wb: Workbook, calculations: List[IncentiveCalculation]):
    """Per-author lines for every computed contribution"""
    ws = wb.create_sheet("Author_Allocations")
    df = allocations_frame(calculations)

    for row in dataframe_to_rows(df, index=False, header=True):
        ws.append(row)
    apply_header_style(ws)

    format_amount_columns(ws, 4, 7)
    for cell in ws.iter_rows(min_row=2, min_col=3, max_col=3):
        cell[0].number_format = '0.0000'

    auto_adjust_columns(ws)


def generate_forfeitures_sheet(wb: Workbook, calculations: List[IncentiveCalculation]):
    """Itemized shares held by nobody, plus rounding residue"""
    ws = wb.create_sheet("Forfeitures")
    ws.append(FORFEITURE_HEADERS)
    apply_header_style(ws)

    for calc in calculations:
        allocation = calc.allocation
        if allocation is None:
            continue
        for f in allocation.forfeitures:
            ws.append([calc.contribution_id, f.reason, float(f.percentage), float(f.amount), float(f.points)])
        if allocation.rounding_residue != 0:
            ws.append([calc.contribution_id, "rounding_residue", None, float(allocation.rounding_residue), None])

    format_amount_columns(ws, 4, 5)
    auto_adjust_columns(ws)


# =============================================================================
# MAIN GENERATOR
# =============================================================================

def generate_allocation_workbook(calculations: List[IncentiveCalculation]) -> bytes:
    """
    Generate the reconciliation workbook.

    Args:
        calculations: Results from calculate_incentive, in reporting order

    Returns:
        bytes: Excel file content as bytes
    """
    wb = Workbook()

    # Remove default sheet
    wb.remove(wb.active)

    logger.info(f"Generating allocation workbook for {len(calculations)} contributions")
    generate_summary_sheet(wb, calculations)
    generate_allocations_sheet(wb, calculations)
    generate_forfeitures_sheet(wb, calculations)

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output.getvalue()
