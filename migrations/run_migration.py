#!/usr/bin/env python3
"""
GoalFlow スキーマ作成スクリプト

api/app/models のテーブル定義から、存在しないテーブルとインデックスを作成する。
既存テーブルの変更は行わない。

使用方法:
    python migrations/run_migration.py
"""

import os
import sys

# プロジェクトルートと api/ をパスに追加
_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _ROOT)
sys.path.insert(0, os.path.join(_ROOT, "api"))

from sqlalchemy import inspect

from lib.db import get_db_pool
from app.models import Base


def missing_tables(existing):
    """定義済みで DB に無いテーブル名"""
    return [name for name in Base.metadata.tables if name not in set(existing)]


def run_migration(engine=None):
    """マイグレーションを実行"""
    print("=" * 60)
    print("GoalFlow スキーマ作成開始")
    print("=" * 60)

    engine = engine or get_db_pool()
    to_create = missing_tables(inspect(engine).get_table_names())

    # create_all は FK の依存順に作成し、既存テーブルはスキップする
    Base.metadata.create_all(engine, checkfirst=True)

    for table in to_create:
        print(f"  ✅ テーブル作成: {table}")
    print()
    print("=" * 60)
    print(f"✅ マイグレーション完了（新規 {len(to_create)} テーブル）")
    print("=" * 60)
    return to_create


if __name__ == "__main__":
    run_migration()
