"""
tests/test_duplicate_detector.py - インポート時の重複目標検出テスト
"""

import pytest

from lib.duplicate_detector import (
    calculate_goal_similarity,
    calculate_similarity,
    detect_duplicates,
    detect_internal_duplicates,
    goal_hash,
    levenshtein_distance,
)


EXISTING = [
    {
        "id": "g-1",
        "subject": "Sales Growth Q1",
        "description": "Increase revenue by 10%",
        "department": "Sales",
        "owner_email": "owner@example.com",
    },
]


class TestHash:
    def test_normalized(self):
        assert goal_hash(" Sales Growth ", "SALES", "Owner@Example.com") == goal_hash(
            "sales growth", "sales", "owner@example.com"
        )

    def test_blank_subject_is_always_unique(self):
        assert goal_hash("", "Sales", "a@example.com") != goal_hash("", "Sales", "a@example.com")


class TestSimilarity:
    @pytest.mark.parametrize("a,b,expected", [
        ("kitten", "sitting", 3),
        ("", "abc", 3),
        ("same", "same", 0),
    ])
    def test_levenshtein(self, a, b, expected):
        assert levenshtein_distance(a, b) == expected

    def test_similarity_bounds(self):
        assert calculate_similarity("", "") == 1.0
        assert calculate_similarity("abc", "") == 0.0
        assert calculate_similarity("ABC", "abc") == 1.0
        assert calculate_similarity("abcd", "abcx") == pytest.approx(0.75)

    def test_goal_similarity_reason(self):
        score, reason = calculate_goal_similarity(
            {**EXISTING[0], "subject": "Sales Growth Q2"}, EXISTING[0]
        )
        assert score == pytest.approx(0.3 * 14 / 15 + 0.3 + 0.2 + 0.2)
        assert reason == "Similar subject (93%), Similar description (100%), Same department, Same owner"


class TestDetectDuplicates:
    def test_exact_match(self):
        rows = [{"subject": "sales growth q1", "department": "sales", "owner_email": "OWNER@example.com"}]
        result = detect_duplicates(rows, EXISTING)
        assert len(result.duplicates) == 1
        match = result.duplicates[0]
        assert match.match_type == "exact"
        assert match.row_number == 2
        assert match.to_dict()["existing_goal_id"] == "g-1"

    def test_similar_match(self):
        rows = [{**EXISTING[0], "subject": "Sales Growth Q2"}]
        result = detect_duplicates(rows, EXISTING)
        assert result.duplicates[0].match_type == "similar"
        assert result.unique_rows == []

    def test_below_threshold_is_unique(self):
        rows = [{**EXISTING[0], "subject": "Sales Growth Q2", "owner_email": "other@example.com"}]
        result = detect_duplicates(rows, EXISTING)
        assert result.duplicates == []
        assert result.unique_rows == [(2, rows[0])]

    def test_internal_duplicates(self):
        rows = [
            {"subject": "A", "department": "X", "owner_email": "a@example.com"},
            {"subject": "B", "department": "X", "owner_email": "a@example.com"},
            {"subject": " a ", "department": "x", "owner_email": "A@example.com"},
        ]
        assert detect_internal_duplicates(rows) == [
            {"rows": [2, 4], "reason": "Identical subject, department, and owner within import file"}
        ]
