"""
tests/test_excel_utils.py - スプレッドシート入出力のテスト
"""

import io

import pytest
from openpyxl import Workbook, load_workbook

from lib.errors import ValidationError
from lib.excel_utils import (
    EXCEL_CELL_LIMIT,
    TRUNCATED_SUFFIX,
    XLSX_CONTENT_TYPE,
    build_template,
    build_workbook,
    fit_cell,
    normalize_header,
    read_rows,
    rows_to_csv,
    split_list,
)


class TestReadRows:
    def test_csv_with_bom_and_blank_rows(self):
        content = "\ufeffSubject,Owner Email,Department\n目標A,a@example.com,営業部\n,,\n".encode("utf-8")
        rows = read_rows(content, "goals.csv")
        assert rows == [{"subject": "目標A", "owner_email": "a@example.com", "department": "営業部"}]

    def test_xlsx(self):
        wb = Workbook()
        ws = wb.active
        ws.append(["Full Name", "Email", "Role"])
        ws.append(["山田 太郎", "yamada@example.com", "Employee"])
        buffer = io.BytesIO()
        wb.save(buffer)
        rows = read_rows(buffer.getvalue(), "users.XLSX")
        assert rows == [{"full_name": "山田 太郎", "email": "yamada@example.com", "role": "Employee"}]

    def test_header_only(self):
        assert read_rows(b"subject,department\n", "goals.csv") == []

    def test_unsupported_extension(self):
        with pytest.raises(ValidationError) as exc_info:
            read_rows(b"data", "goals.pdf")
        assert exc_info.value.error_code == "UNSUPPORTED_FILE_TYPE"

    def test_broken_xlsx(self):
        with pytest.raises(ValidationError) as exc_info:
            read_rows(b"not a zip", "goals.xlsx")
        assert exc_info.value.error_code == "INVALID_FILE"


class TestHelpers:
    @pytest.mark.parametrize("header,expected", [
        ("Owner Email", "owner_email"),
        ("  Target-Date ", "target_date"),
        (None, ""),
    ])
    def test_normalize_header(self, header, expected):
        assert normalize_header(header) == expected

    def test_split_list(self):
        assert split_list(" a@example.com , ,b@example.com") == ["a@example.com", "b@example.com"]
        assert split_list(None) == []

    def test_fit_cell(self):
        long_value = "x" * (EXCEL_CELL_LIMIT + 10)
        fitted = fit_cell(long_value, "description", "goal-1")
        assert len(fitted) == EXCEL_CELL_LIMIT
        assert fitted.endswith(TRUNCATED_SUFFIX)
        assert fit_cell(42) == 42

    def test_rows_to_csv_joins_lists(self):
        text = rows_to_csv(["Name", "Teams"], [["営業部", ["A", "B"]], ["開発部", None]])
        assert text.splitlines() == ["Name,Teams", '営業部,"A, B"', "開発部,"]


class TestWorkbook:
    def test_sheets_and_header(self):
        content = build_workbook([
            ("Goals Summary", ["ID", "Subject"], [["g-1", "目標"]]),
            ("A" * 40, ["Metric", "Value"], []),
        ])
        wb = load_workbook(io.BytesIO(content))
        assert wb.sheetnames == ["Goals Summary", "A" * 31]
        ws = wb["Goals Summary"]
        assert [c.value for c in ws[1]] == ["ID", "Subject"]
        assert ws["A1"].font.bold
        assert ws.freeze_panes == "A2"

    def test_templates(self):
        content, filename, content_type = build_template("users")
        assert filename == "users_import_template.xlsx"
        assert content_type == XLSX_CONTENT_TYPE
        assert load_workbook(io.BytesIO(content)).sheetnames == ["Users"]

        csv_content, csv_name, _ = build_template("departments", "csv")
        assert csv_name == "departments_import_template.csv"
        assert csv_content.decode("utf-8").startswith("department,team")

    def test_unknown_template(self):
        with pytest.raises(ValidationError):
            build_template("tasks")
