"""
スプレッドシート入出力

インポート用の CSV / XLSX 読み込み、エクスポート用のワークブック生成、
インポートテンプレートの生成を行う。XLSX は openpyxl で扱う。
"""

from __future__ import annotations

import csv
import io
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from lib.errors import ValidationError
from lib.logging import get_logger

logger = get_logger(__name__)

# Excel セルの最大文字数
EXCEL_CELL_LIMIT = 32767
MAX_COLUMN_WIDTH = 60

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

TRUNCATED_SUFFIX = "... [TRUNCATED - Content exceeded Excel limit]"

# (シート名, ヘッダー行, 行データ)
Sheet = Tuple[str, List[str], List[List[Any]]]


def normalize_header(header: Any) -> str:
    """'Owner Email' → 'owner_email'"""
    value = str(header or "").strip().lower()
    return re.sub(r"[^0-9a-z]+", "_", value).strip("_")


def _cell_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _to_dicts(header: Sequence[Any], rows: Iterable[Sequence[Any]]) -> List[Dict[str, str]]:
    keys = [normalize_header(h) for h in header]
    result = []
    for row in rows:
        values = [_cell_to_str(v) for v in row]
        if not any(values):
            continue
        record = {}
        for index, key in enumerate(keys):
            if key:
                record[key] = values[index] if index < len(values) else ""
        result.append(record)
    return result


def read_rows(content: bytes, filename: str) -> List[Dict[str, str]]:
    """
    アップロードファイルを行 dict のリストにする

    .xlsx は先頭シート、それ以外は UTF-8 の CSV として読む。
    空行は読み飛ばす。
    """
    name = (filename or "").lower()
    if name.endswith(".xlsx"):
        from openpyxl import load_workbook

        try:
            wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except Exception as e:
            raise ValidationError(f"Could not read Excel file: {e}", error_code="INVALID_FILE")
        try:
            rows = list(wb.worksheets[0].iter_rows(values_only=True))
        finally:
            wb.close()
    elif name.endswith(".csv") or name.endswith(".txt"):
        text_content = content.decode("utf-8-sig", errors="replace")
        rows = list(csv.reader(io.StringIO(text_content)))
    else:
        raise ValidationError("Only .csv and .xlsx files are supported", error_code="UNSUPPORTED_FILE_TYPE")

    if len(rows) < 2:
        return []
    return _to_dicts(rows[0], rows[1:])


def fit_cell(value: Any, field_name: str = "", identifier: str = "") -> Any:
    """Excel の文字数上限を超える値を切り詰める"""
    if not isinstance(value, str):
        return value
    if len(value) > EXCEL_CELL_LIMIT:
        logger.warning(
            "Cell content truncated",
            field=field_name,
            identifier=identifier,
            length=len(value),
        )
        return value[: EXCEL_CELL_LIMIT - len(TRUNCATED_SUFFIX)] + TRUNCATED_SUFFIX
    return value


def _excel_value(value: Any) -> Any:
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(v) for v in value)
    if isinstance(value, dict):
        return str(value)
    return fit_cell(value)


def build_workbook(sheets: List[Sheet]) -> bytes:
    """複数シートのワークブックを生成して bytes で返す"""
    from openpyxl import Workbook
    from openpyxl.styles import Font
    from openpyxl.utils import get_column_letter

    wb = Workbook()
    wb.remove(wb.active)
    bold = Font(bold=True)

    for title, headers, rows in sheets:
        ws = wb.create_sheet(title=title[:31])
        ws.append(headers)
        for cell in ws[1]:
            cell.font = bold
        for row in rows:
            ws.append([_excel_value(v) for v in row])

        for index, header in enumerate(headers, start=1):
            width = len(str(header))
            for row in rows:
                if index - 1 < len(row) and row[index - 1] is not None:
                    width = max(width, len(str(_excel_value(row[index - 1]))))
            ws.column_dimensions[get_column_letter(index)].width = min(width + 2, MAX_COLUMN_WIDTH)
        ws.freeze_panes = "A2"

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def rows_to_csv(headers: List[str], rows: Iterable[Sequence[Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if v is None else _excel_value(v) for v in row])
    return output.getvalue()


# =============================================================================
# インポートテンプレート
# =============================================================================

TEMPLATES: Dict[str, Tuple[List[str], List[List[str]]]] = {
    "goals": (
        [
            "subject", "description", "department", "owner_email", "priority",
            "goal_type", "teams", "assignee_emails", "start_date", "target_date",
            "target_metrics", "success_criteria",
        ],
        [[
            "Reduce onboarding lead time",
            "Shorten the time from contract to first login for new customers",
            "Sales",
            "owner@example.com",
            "High",
            "Department",
            "Inside Sales, Customer Success",
            "member1@example.com, member2@example.com",
            "2026-01-05",
            "2026-03-31",
            "Lead time under 5 days",
            "90% of new customers onboarded within target",
        ]],
    ),
    "users": (
        ["full_name", "email", "password", "role", "department", "team", "skills", "is_active"],
        [[
            "Taro Yamada",
            "taro.yamada@example.com",
            "ChangeMe123",
            "Employee",
            "Sales",
            "Inside Sales",
            "Negotiation, CRM",
            "true",
        ]],
    ),
    "departments": (
        ["department", "team", "description", "is_active"],
        [
            ["Sales", "", "Sales department", "true"],
            ["Sales", "Inside Sales", "Inside Sales team in Sales department", "true"],
        ],
    ),
}


def build_template(kind: str, file_format: str = "xlsx") -> Tuple[bytes, str, str]:
    """
    インポートテンプレートを生成

    Returns:
        (内容, ファイル名, Content-Type)
    """
    if kind not in TEMPLATES:
        raise ValidationError(f"Unknown template type: {kind}")
    headers, example_rows = TEMPLATES[kind]
    if file_format == "csv":
        return (
            rows_to_csv(headers, example_rows).encode("utf-8"),
            f"{kind}_import_template.csv",
            "text/csv; charset=utf-8",
        )
    return (
        build_workbook([(kind.capitalize(), headers, example_rows)]),
        f"{kind}_import_template.xlsx",
        XLSX_CONTENT_TYPE,
    )


def split_list(value: Optional[str]) -> List[str]:
    """カンマ区切りの値をリストにする"""
    return [v.strip() for v in (value or "").split(",") if v.strip()]
