"""
tests/test_attachment.py - 添付ファイルのテスト

ストレージクライアントは MagicMock を注入する。
"""

import re
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from lib.attachment import AttachmentService, generate_unique_filename, validate_upload
from lib.errors import NotFoundError, PermissionDeniedError, ValidationError

MAX_BYTES = 5 * 1024 * 1024


def _attachment_row(uploaded_by="emp-001"):
    return (
        "att-1", "g-1", "report.pdf", "goals/g-1/report_1_abc.pdf", 1024,
        "application/pdf", uploaded_by, None, datetime(2025, 6, 1, 9, 0), "営業 花子",
    )


class TestValidateUpload:
    def test_allowed(self):
        validate_upload("report.pdf", "application/pdf", 1024, MAX_BYTES)

    def test_unsupported_type(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_upload("tool.exe", "application/x-msdownload", 10, MAX_BYTES)
        assert exc_info.value.error_code == "UNSUPPORTED_FILE_TYPE"

    def test_too_large(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_upload("photo.png", "image/png", MAX_BYTES + 1, MAX_BYTES)
        assert exc_info.value.error_code == "FILE_TOO_LARGE"
        assert exc_info.value.message == "File size must be less than 5MB"

    def test_missing_filename(self):
        with pytest.raises(ValidationError):
            validate_upload("", "image/png", 1, MAX_BYTES)


def test_generate_unique_filename():
    name = generate_unique_filename("議事録.final.pdf")
    assert re.fullmatch(r"議事録\.final_\d{13}_[a-z0-9]{10}\.pdf", name)
    assert generate_unique_filename("a.txt") != generate_unique_filename("a.txt")


class TestAttachmentService:
    def test_invalid_upload_never_touches_storage(self, mock_db_pool, employee_user):
        storage = MagicMock()
        service = AttachmentService(pool=mock_db_pool, storage_client=storage)
        with pytest.raises(ValidationError):
            service.upload(employee_user, "g-1", "tool.exe", b"x", "application/x-msdownload")
        storage.bucket.assert_not_called()
        mock_db_pool.connect.assert_not_called()

    def test_delete_by_other_user_is_rejected(self, mock_db_pool, mock_db_conn, employee_user):
        mock_db_conn.execute.return_value.fetchone.return_value = _attachment_row(uploaded_by="someone-else")
        storage = MagicMock()
        service = AttachmentService(pool=mock_db_pool, storage_client=storage)
        with pytest.raises(PermissionDeniedError):
            service.delete(employee_user, "att-1")
        storage.bucket.assert_not_called()

    def test_admin_delete_continues_when_storage_fails(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = _attachment_row()
        storage = MagicMock()
        storage.bucket.return_value.blob.return_value.delete.side_effect = RuntimeError("gone")
        service = AttachmentService(pool=mock_db_pool, storage_client=storage)

        service.delete(admin_user, "att-1")

        storage.bucket.return_value.blob.assert_called_once_with("goals/g-1/report_1_abc.pdf")
        assert "DELETE FROM goal_attachments" in str(mock_db_conn.execute.call_args.args[0])
        mock_db_conn.commit.assert_called_once()

    def test_missing_attachment(self, mock_db_pool, mock_db_conn, admin_user):
        mock_db_conn.execute.return_value.fetchone.return_value = None
        with pytest.raises(NotFoundError):
            AttachmentService(pool=mock_db_pool, storage_client=MagicMock()).delete(admin_user, "missing")
