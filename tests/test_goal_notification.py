"""
tests/test_goal_notification.py - アプリ内通知のテスト

- 既読化（削除）
- 期限通知（未読の deadline 通知がある関係者には再送しない）
"""

import json
from datetime import date
from unittest.mock import MagicMock

from lib.goal_notification import NotificationService

TODAY = date(2025, 6, 10)


class _DeadlineConn:
    """SQL 文字列で応答を振り分けるコネクション"""

    def __init__(self, goals, unread_deadline_users):
        self.goals = goals
        self.unread_deadline_users = unread_deadline_users
        self.inserted = []
        self.committed = False

    def execute(self, statement, params=None):
        sql = str(statement)
        result = MagicMock()
        if "INSERT INTO notifications" in sql:
            self.inserted.append(params)
        elif "status NOT IN" in sql:
            result.fetchall.return_value = self.goals
        elif "FROM notifications" in sql:
            result.fetchall.return_value = [(u,) for u in self.unread_deadline_users.get(params["goal_id"], [])]
        elif "SELECT owner_id FROM goals" in sql:
            result.fetchone.return_value = ("owner-1",)
        elif "FROM goal_assignees" in sql:
            result.fetchall.return_value = [("assignee-1",)]
        else:
            result.fetchall.return_value = []
        return result

    def commit(self):
        self.committed = True


def _pool(conn):
    pool = MagicMock()
    pool.connect.return_value.__enter__ = MagicMock(return_value=conn)
    pool.connect.return_value.__exit__ = MagicMock(return_value=None)
    return pool


class TestMarkRead:
    def test_deletes_own_notification(self, mock_db_pool, mock_db_conn, employee_user):
        mock_db_conn.execute.return_value.rowcount = 1
        assert NotificationService(pool=mock_db_pool).mark_read(employee_user, "n-1") is True
        sql = str(mock_db_conn.execute.call_args.args[0])
        params = mock_db_conn.execute.call_args.args[1]
        assert "DELETE FROM notifications" in sql
        assert params["user_id"] == employee_user.user_id

    def test_missing_notification(self, mock_db_pool, mock_db_conn, employee_user):
        mock_db_conn.execute.return_value.rowcount = 0
        assert NotificationService(pool=mock_db_pool).mark_read(employee_user, "n-x") is False

    def test_unread_count(self, mock_db_pool, mock_db_conn, employee_user):
        mock_db_conn.execute.return_value.scalar.return_value = None
        assert NotificationService(pool=mock_db_pool).unread_count(employee_user) == 0


class TestCheckDeadlines:
    def test_overdue_and_upcoming(self):
        conn = _DeadlineConn(
            goals=[
                ("g-1", "売上拡大", "Do", date(2025, 6, 5), None, "owner-1"),
                ("g-2", "採用強化", "Plan", date(2025, 6, 30), date(2025, 6, 12), "owner-1"),
            ],
            unread_deadline_users={},
        )
        created = NotificationService(pool=_pool(conn)).check_deadlines("org_test", days_ahead=3, today=TODAY)

        assert created == 4
        assert conn.committed
        overdue = [p for p in conn.inserted if p["goal_id"] == "g-1"]
        assert {p["user_id"] for p in overdue} == {"owner-1", "assignee-1"}
        assert overdue[0]["title"] == "Goal Overdue"
        assert overdue[0]["description"] == 'Goal "売上拡大" is 5 day(s) overdue'
        upcoming = [p for p in conn.inserted if p["goal_id"] == "g-2"][0]
        assert upcoming["title"] == "Goal Deadline Approaching"
        assert json.loads(upcoming["action_data"])["deadline"] == "2025-06-12"
        assert upcoming["type"] == "deadline"

    def test_users_with_unread_deadline_are_skipped(self):
        conn = _DeadlineConn(
            goals=[("g-1", "売上拡大", "Do", date(2025, 6, 5), None, "owner-1")],
            unread_deadline_users={"g-1": ["owner-1"]},
        )
        created = NotificationService(pool=_pool(conn)).check_deadlines("org_test", today=TODAY)

        assert created == 1
        assert conn.inserted[0]["user_id"] == "assignee-1"
