"""
Pydantic Schemas for GoalFlow API

ルートは各モジュールから直接 import する。
"""
