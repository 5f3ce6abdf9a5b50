"""
目標添付ファイル

ファイル本体は Google Cloud Storage（goals/{goal_id}/ 配下）に、
メタデータは goal_attachments テーブルに保存する。
ダウンロードは v4 署名付きURLで行う。
"""

from __future__ import annotations

import os
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import text

from lib.config import get_settings
from lib.db import get_db_pool
from lib.errors import NotFoundError, PermissionDeniedError, ValidationError
from lib.goal import fetch_assignee_ids, fetch_goal
from lib.logging import get_logger
from lib.permissions import UserContext, can_view_goal, is_admin

logger = get_logger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class Attachment:
    id: str
    goal_id: str
    filename: str
    file_path: str
    file_size: int
    content_type: str
    uploaded_by: str
    comment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    uploader_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "goal_id": self.goal_id,
            "comment_id": self.comment_id,
            "filename": self.filename,
            "file_path": self.file_path,
            "file_size": self.file_size,
            "content_type": self.content_type,
            "uploaded_by": self.uploaded_by,
            "uploader_name": self.uploader_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def generate_unique_filename(original: str) -> str:
    """{stem}_{ミリ秒}_{ランダム}.{拡張子}"""
    stem, ext = os.path.splitext(original)
    timestamp = int(time.time() * 1000)
    random_part = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(10))
    extension = ext.lstrip(".") or stem
    return f"{stem}_{timestamp}_{random_part}.{extension}"


def validate_upload(filename: str, content_type: str, size: int, max_bytes: int) -> None:
    if not filename:
        raise ValidationError("File and goal ID are required")
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(
            "Only image files (JPEG, PNG, GIF, WebP) and documents (PDF, DOC, DOCX, TXT) are allowed",
            error_code="UNSUPPORTED_FILE_TYPE",
        )
    if size > max_bytes:
        raise ValidationError(
            f"File size must be less than {max_bytes // (1024 * 1024)}MB",
            error_code="FILE_TOO_LARGE",
        )


class AttachmentService:
    """添付ファイルサービス"""

    def __init__(self, pool=None, storage_client=None):
        self._pool = pool
        self._storage_client = storage_client
        self._settings = get_settings()

    @property
    def pool(self):
        if self._pool is None:
            self._pool = get_db_pool()
        return self._pool

    @property
    def storage_client(self):
        if self._storage_client is None:
            from google.cloud import storage

            self._storage_client = storage.Client()
        return self._storage_client

    def _bucket(self):
        return self.storage_client.bucket(self._settings.ATTACHMENT_BUCKET)

    def upload(
        self,
        user: UserContext,
        goal_id: str,
        filename: str,
        content: bytes,
        content_type: str,
        comment_id: Optional[str] = None,
    ) -> Attachment:
        validate_upload(filename, content_type, len(content), self._settings.ATTACHMENT_MAX_BYTES)

        with self.pool.connect() as conn:
            self._check_view(conn, user, goal_id)

        path = f"goals/{goal_id}/{generate_unique_filename(filename)}"
        blob = self._bucket().blob(path)
        blob.upload_from_string(content, content_type=content_type)
        logger.info("Attachment uploaded", goal_id=goal_id, path=path, size=len(content))

        attachment = Attachment(
            id=str(uuid4()),
            goal_id=goal_id,
            comment_id=comment_id,
            filename=filename,
            file_path=path,
            file_size=len(content),
            content_type=content_type,
            uploaded_by=user.user_id,
            uploader_name=user.full_name,
        )
        with self.pool.connect() as conn:
            conn.execute(
                text("""
                    INSERT INTO goal_attachments (
                        id, organization_id, goal_id, comment_id, filename,
                        file_path, file_size, content_type, uploaded_by
                    ) VALUES (
                        :id, :org_id, :goal_id, :comment_id, :filename,
                        :file_path, :file_size, :content_type, :uploaded_by
                    )
                """),
                {
                    "id": attachment.id,
                    "org_id": user.organization_id,
                    "goal_id": goal_id,
                    "comment_id": comment_id,
                    "filename": filename,
                    "file_path": path,
                    "file_size": attachment.file_size,
                    "content_type": content_type,
                    "uploaded_by": user.user_id,
                },
            )
            conn.commit()
        return attachment

    def list_attachments(self, user: UserContext, goal_id: str) -> List[Attachment]:
        with self.pool.connect() as conn:
            self._check_view(conn, user, goal_id)
            rows = conn.execute(
                text("""
                    SELECT a.id, a.goal_id, a.filename, a.file_path, a.file_size,
                           a.content_type, a.uploaded_by, a.comment_id, a.created_at, u.full_name
                    FROM goal_attachments a
                    LEFT JOIN users u ON u.id = a.uploaded_by
                    WHERE a.goal_id = :goal_id AND a.organization_id = :org_id
                    ORDER BY a.created_at DESC
                """),
                {"goal_id": goal_id, "org_id": user.organization_id},
            ).fetchall()
        return [self._row_to_attachment(r) for r in rows]

    def get_download_url(self, user: UserContext, attachment_id: str) -> Dict[str, Any]:
        """v4 署名付きURLを発行"""
        with self.pool.connect() as conn:
            attachment = self._fetch(conn, user.organization_id, attachment_id)
            self._check_view(conn, user, attachment.goal_id)
        minutes = self._settings.ATTACHMENT_SIGNED_URL_MINUTES
        url = self._bucket().blob(attachment.file_path).generate_signed_url(
            version="v4",
            expiration=timedelta(minutes=minutes),
            method="GET",
            response_disposition=f'attachment; filename="{attachment.filename}"',
        )
        return {"url": url, "filename": attachment.filename, "expires_in_minutes": minutes}

    def delete(self, user: UserContext, attachment_id: str) -> None:
        """削除（アップロード者または Admin）。ストレージ削除の失敗は無視する"""
        with self.pool.connect() as conn:
            attachment = self._fetch(conn, user.organization_id, attachment_id)
            if attachment.uploaded_by != user.user_id and not is_admin(user):
                raise PermissionDeniedError("You don't have permission to delete this attachment")

            try:
                self._bucket().blob(attachment.file_path).delete()
            except Exception as e:
                logger.warning(
                    "Storage delete failed (continuing)",
                    attachment_id=attachment_id,
                    path=attachment.file_path,
                    error=str(e),
                )

            conn.execute(
                text("DELETE FROM goal_attachments WHERE id = :id AND organization_id = :org_id"),
                {"id": attachment_id, "org_id": user.organization_id},
            )
            conn.commit()

    def _check_view(self, conn, user: UserContext, goal_id: str) -> None:
        goal = fetch_goal(conn, user.organization_id, goal_id)
        if not can_view_goal(user, goal, fetch_assignee_ids(conn, user.organization_id, goal_id)):
            raise PermissionDeniedError("You don't have permission to view this goal")

    def _fetch(self, conn, organization_id: str, attachment_id: str) -> Attachment:
        row = conn.execute(
            text("""
                SELECT a.id, a.goal_id, a.filename, a.file_path, a.file_size,
                       a.content_type, a.uploaded_by, a.comment_id, a.created_at, u.full_name
                FROM goal_attachments a
                LEFT JOIN users u ON u.id = a.uploaded_by
                WHERE a.id = :id AND a.organization_id = :org_id
            """),
            {"id": attachment_id, "org_id": organization_id},
        ).fetchone()
        if row is None:
            raise NotFoundError("Attachment not found")
        return self._row_to_attachment(row)

    @staticmethod
    def _row_to_attachment(row) -> Attachment:
        return Attachment(
            id=str(row[0]),
            goal_id=str(row[1]),
            filename=row[2],
            file_path=row[3],
            file_size=int(row[4] or 0),
            content_type=row[5],
            uploaded_by=str(row[6]),
            comment_id=str(row[7]) if row[7] else None,
            created_at=row[8],
            uploader_name=row[9],
        )


def get_attachment_service(pool=None, storage_client=None) -> AttachmentService:
    """AttachmentServiceのファクトリ関数"""
    return AttachmentService(pool=pool, storage_client=storage_client)
