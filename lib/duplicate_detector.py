"""
インポート時の重複目標検出

完全一致: subject | department | owner_email を正規化（小文字・前後空白除去）した md5。
類似一致: 件名・説明の Levenshtein 類似度と、部署・オーナーの一致を重み付けしたスコア。

行番号はヘッダー行を含むスプレッドシート上の行（index + 2）。
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_SIMILARITY_THRESHOLD = 0.8

WEIGHTS = {
    "subject": 0.3,
    "description": 0.3,
    "department": 0.2,
    "owner": 0.2,
}


@dataclass
class DuplicateMatch:
    row: Dict[str, Any]
    row_number: int
    existing: Dict[str, Any]
    match_type: str  # exact / similar
    similarity: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_number": self.row_number,
            "subject": self.row.get("subject"),
            "existing_goal_id": self.existing.get("id"),
            "existing_subject": self.existing.get("subject"),
            "match_type": self.match_type,
            "similarity": round(self.similarity, 3),
            "reason": self.reason,
        }


@dataclass
class DuplicateDetectionResult:
    duplicates: List[DuplicateMatch] = field(default_factory=list)
    unique_rows: List[Tuple[int, Dict[str, Any]]] = field(default_factory=list)


def _norm(value: Any) -> str:
    return str(value or "").strip().lower()


def goal_hash(subject: Any, department: Any, owner_email: Any) -> str:
    """完全一致判定用ハッシュ（件名が空の行は常に一意）"""
    normalized_subject = _norm(subject)
    if not normalized_subject:
        return f"blank_subject_{uuid.uuid4()}"
    key = "|".join([normalized_subject, _norm(department), _norm(owner_email)])
    return hashlib.md5(key.encode("utf-8")).hexdigest()


def levenshtein_distance(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def calculate_similarity(a: Any, b: Any) -> float:
    """(最大長 - 編集距離) / 最大長。両方空なら 1.0、片方のみ空なら 0.0"""
    s1, s2 = _norm(a), _norm(b)
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    max_len = max(len(s1), len(s2))
    return (max_len - levenshtein_distance(s1, s2)) / max_len


def calculate_goal_similarity(row: Dict[str, Any], existing: Dict[str, Any]) -> Tuple[float, str]:
    subject_sim = calculate_similarity(row.get("subject"), existing.get("subject"))
    desc_sim = calculate_similarity(row.get("description"), existing.get("description"))
    same_department = _norm(row.get("department")) == _norm(existing.get("department"))
    same_owner = _norm(row.get("owner_email")) == _norm(existing.get("owner_email"))

    score = (
        subject_sim * WEIGHTS["subject"]
        + desc_sim * WEIGHTS["description"]
        + (WEIGHTS["department"] if same_department else 0)
        + (WEIGHTS["owner"] if same_owner else 0)
    )

    reasons = []
    if subject_sim > 0.8:
        reasons.append(f"Similar subject ({round(subject_sim * 100)}%)")
    if desc_sim > 0.7:
        reasons.append(f"Similar description ({round(desc_sim * 100)}%)")
    if same_department:
        reasons.append("Same department")
    if same_owner:
        reasons.append("Same owner")
    return score, ", ".join(reasons) if reasons else "Low similarity"


def detect_duplicates(
    rows: List[Dict[str, Any]],
    existing_goals: List[Dict[str, Any]],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> DuplicateDetectionResult:
    """
    インポート行と既存目標の重複を検出

    rows / existing_goals の dict は subject, description, department, owner_email を持つ。
    """
    existing_by_hash: Dict[str, Dict[str, Any]] = {}
    for goal in existing_goals:
        existing_by_hash[goal_hash(goal.get("subject"), goal.get("department"), goal.get("owner_email"))] = goal

    result = DuplicateDetectionResult()
    for index, row in enumerate(rows):
        row_number = index + 2
        exact = existing_by_hash.get(goal_hash(row.get("subject"), row.get("department"), row.get("owner_email")))
        if exact is not None:
            result.duplicates.append(DuplicateMatch(
                row=row,
                row_number=row_number,
                existing=exact,
                match_type="exact",
                similarity=1.0,
                reason="Exact match (same subject, department, and owner)",
            ))
            continue

        best: Optional[Tuple[float, str, Dict[str, Any]]] = None
        for goal in existing_goals:
            score, reason = calculate_goal_similarity(row, goal)
            if score >= threshold and (best is None or score > best[0]):
                best = (score, reason, goal)

        if best is not None:
            result.duplicates.append(DuplicateMatch(
                row=row,
                row_number=row_number,
                existing=best[2],
                match_type="similar",
                similarity=best[0],
                reason=best[1],
            ))
        else:
            result.unique_rows.append((row_number, row))
    return result


def detect_internal_duplicates(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """インポートファイル内で同一ハッシュを持つ行グループ"""
    groups: Dict[str, List[int]] = {}
    for index, row in enumerate(rows):
        key = goal_hash(row.get("subject"), row.get("department"), row.get("owner_email"))
        groups.setdefault(key, []).append(index + 2)
    return [
        {
            "rows": row_numbers,
            "reason": "Identical subject, department, and owner within import file",
        }
        for row_numbers in groups.values()
        if len(row_numbers) > 1
    ]
