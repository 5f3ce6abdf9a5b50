"""
スレッドコメントのユーティリティ

返信はスキーマを変えずに接頭辞で表現する:
    "↳ {parent_id}: {本文}"

接頭辞が壊れている場合は通常のコメントとして扱う。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

REPLY_PREFIX = "↳ "
REPLY_SEPARATOR = ": "
MAX_COMMENT_LENGTH = 10000


def parse_comment(comment: Dict[str, Any]) -> Dict[str, Any]:
    """
    コメント行にスレッド情報を付与する

    Returns:
        元の dict に text, parent_id, is_reply を加えたもの
    """
    original = comment.get("comment") or ""
    if original.startswith(REPLY_PREFIX):
        sep_index = original.find(REPLY_SEPARATOR)
        if sep_index > len(REPLY_PREFIX):
            parent_id = original[len(REPLY_PREFIX):sep_index].strip()
            body = original[sep_index + len(REPLY_SEPARATOR):]
            if parent_id and body:
                return {**comment, "text": body, "parent_id": parent_id, "is_reply": True}
    return {**comment, "text": original, "parent_id": None, "is_reply": False}


def parse_comments(comments: Optional[Iterable[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [parse_comment(c) for c in comments or []]


def _created_key(comment: Dict[str, Any]):
    value = comment.get("created_at")
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return (value is not None, value)


def build_comment_threads(comments: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    フラットなコメント一覧をスレッド構造にする

    トップレベルは新しい順、返信は古い順（会話の流れ）。
    親が見つからない返信は表示しない。
    """
    parsed = parse_comments(comments)
    by_id: Dict[str, Dict[str, Any]] = {}
    top_level: List[Dict[str, Any]] = []

    for comment in parsed:
        threaded = {**comment, "replies": [], "reply_count": 0}
        by_id[str(comment.get("id"))] = threaded
        if not comment["is_reply"]:
            top_level.append(threaded)

    for comment in parsed:
        if comment["is_reply"]:
            parent = by_id.get(comment["parent_id"])
            if parent is not None:
                parent["replies"].append(by_id[str(comment.get("id"))])
                parent["reply_count"] += 1

    top_level.sort(key=_created_key, reverse=True)
    for comment in top_level:
        comment["replies"].sort(key=_created_key)
    return top_level


def format_comment_for_storage(text: str, parent_id: Optional[str] = None) -> str:
    if not parent_id:
        return text.strip()
    return f"{REPLY_PREFIX}{parent_id}{REPLY_SEPARATOR}{text.strip()}"


def get_thread_comment_ids(comments: Iterable[Dict[str, Any]], root_id: str) -> List[str]:
    """ルートコメントと、その返信（入れ子含む）の ID 一覧"""
    parsed = parse_comments(comments)
    ids: List[str] = [root_id]
    seen: Set[str] = {root_id}

    def collect(parent_id: str) -> None:
        for comment in parsed:
            comment_id = str(comment.get("id"))
            if comment["parent_id"] == parent_id and comment_id not in seen:
                seen.add(comment_id)
                ids.append(comment_id)
                collect(comment_id)

    collect(root_id)
    return ids


def validate_comment_text(text: Optional[str]) -> Optional[str]:
    """検証エラーメッセージ（問題なければ None）"""
    trimmed = (text or "").strip()
    if not trimmed:
        return "Comment cannot be empty"
    if len(trimmed) > MAX_COMMENT_LENGTH:
        return f"Comment is too long (maximum {MAX_COMMENT_LENGTH} characters)"
    if trimmed.startswith(REPLY_PREFIX) and REPLY_SEPARATOR in trimmed:
        return "Invalid comment format"
    return None
