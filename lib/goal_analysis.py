"""
AI 目標分析

ai_configurations（接続先・モデル・システムプロンプト）の管理と、
目標データから組み立てたプロンプトによる分析の実行・保存を行う。
有効な設定は組織内で常に 1 件。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import text

from lib.ai_prompt import ANALYSIS_TYPE_VALUES, build_analysis_prompt, build_meta_analysis_data
from lib.ai_service import (
    AIAnalysisRequest,
    AIConfigNotFoundError,
    OllamaService,
    create_ai_service,
    detect_api_flavor,
    estimate_tokens,
)
from lib.audit import AuditAction, AuditResourceType, log_audit
from lib.db import get_db_pool
from lib.errors import NotFoundError, PermissionDeniedError, ValidationError
from lib.goal import get_goal_service
from lib.logging import get_logger
from lib.permissions import UserContext, is_admin

logger = get_logger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_SYSTEM_PROMPT = (
    "You are an experienced PDCA coach. Analyze the goal below and answer "
    "with concrete, actionable advice."
)

_CONFIG_COLUMNS = """
    id, name, description, ollama_url, model_name, system_prompt,
    temperature, max_tokens, is_active, created_at, updated_at
"""


@dataclass
class AIConfiguration:
    id: str
    name: str
    ollama_url: str
    model_name: str
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    is_active: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "ollama_url": self.ollama_url,
            "model_name": self.model_name,
            "system_prompt": self.system_prompt,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def service_overrides(self) -> Dict[str, Any]:
        return {
            "api_url": self.ollama_url,
            "model": self.model_name,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            **detect_api_flavor(self.ollama_url),
        }


def validate_config_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """保存前の検証と既定値の補完"""
    if not (data.get("name") or "").strip():
        raise ValidationError("Configuration name is required")
    url = (data.get("ollama_url") or "").strip()
    if not url.startswith(("http://", "https://")):
        raise ValidationError("Invalid API URL format")
    if not (data.get("model_name") or "").strip():
        raise ValidationError("Model name is required")

    temperature = data.get("temperature")
    temperature = DEFAULT_TEMPERATURE if temperature is None else float(temperature)
    if temperature < 0 or temperature > 2:
        raise ValidationError("Temperature must be between 0 and 2")

    max_tokens = data.get("max_tokens")
    max_tokens = DEFAULT_MAX_TOKENS if max_tokens is None else int(max_tokens)
    if max_tokens <= 0:
        raise ValidationError("Max tokens must be a positive number")

    return {
        "name": data["name"].strip(),
        "description": data.get("description"),
        "ollama_url": url,
        "model_name": data["model_name"].strip(),
        "system_prompt": data.get("system_prompt"),
        "temperature": temperature,
        "max_tokens": max_tokens,
        "is_active": bool(data.get("is_active", False)),
    }


class GoalAnalysisService:
    """AI 設定と目標分析"""

    def __init__(self, pool=None, ai_factory: Optional[Callable[..., OllamaService]] = None):
        self._pool = pool
        self._ai_factory = ai_factory or create_ai_service

    @property
    def pool(self):
        if self._pool is None:
            self._pool = get_db_pool()
        return self._pool

    @staticmethod
    def _require_admin(user: UserContext) -> None:
        if not is_admin(user):
            raise PermissionDeniedError("Admin access required")

    # -------------------------------------------------------------------------
    # 設定
    # -------------------------------------------------------------------------

    def list_configs(self, user: UserContext) -> List[AIConfiguration]:
        self._require_admin(user)
        with self.pool.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT {_CONFIG_COLUMNS}
                    FROM ai_configurations
                    WHERE organization_id = :org_id
                    ORDER BY is_active DESC, created_at DESC
                """),
                {"org_id": user.organization_id},
            ).fetchall()
        return [self._row_to_config(r) for r in rows]

    def get_active_config(self, organization_id: str) -> Optional[AIConfiguration]:
        with self.pool.connect() as conn:
            row = conn.execute(
                text(f"""
                    SELECT {_CONFIG_COLUMNS}
                    FROM ai_configurations
                    WHERE organization_id = :org_id AND is_active = TRUE
                    ORDER BY updated_at DESC
                    LIMIT 1
                """),
                {"org_id": organization_id},
            ).fetchone()
        return self._row_to_config(row) if row else None

    def save_config(
        self,
        user: UserContext,
        data: Dict[str, Any],
        config_id: Optional[str] = None,
    ) -> AIConfiguration:
        """
        設定を作成または更新する

        is_active=True で保存すると同じ組織の他の設定は無効になる。
        """
        self._require_admin(user)
        values = validate_config_data(data)
        params = {**values, "org_id": user.organization_id}

        with self.pool.connect() as conn:
            old_data = None
            if config_id:
                old_data = self._fetch_config(conn, user.organization_id, config_id).to_dict()
            else:
                config_id = str(uuid4())
            params["id"] = config_id

            if values["is_active"]:
                conn.execute(
                    text("""
                        UPDATE ai_configurations
                        SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
                        WHERE organization_id = :org_id AND id != :id AND is_active = TRUE
                    """),
                    {"org_id": user.organization_id, "id": config_id},
                )

            if old_data is None:
                conn.execute(
                    text("""
                        INSERT INTO ai_configurations (
                            id, organization_id, name, description, ollama_url, model_name,
                            system_prompt, temperature, max_tokens, is_active
                        ) VALUES (
                            :id, :org_id, :name, :description, :ollama_url, :model_name,
                            :system_prompt, :temperature, :max_tokens, :is_active
                        )
                    """),
                    params,
                )
            else:
                conn.execute(
                    text("""
                        UPDATE ai_configurations
                        SET name = :name, description = :description, ollama_url = :ollama_url,
                            model_name = :model_name, system_prompt = :system_prompt,
                            temperature = :temperature, max_tokens = :max_tokens,
                            is_active = :is_active, updated_at = CURRENT_TIMESTAMP
                        WHERE id = :id AND organization_id = :org_id
                    """),
                    params,
                )

            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.CREATE if old_data is None else AuditAction.UPDATE,
                resource_type=AuditResourceType.AI_CONFIGURATION,
                resource_id=config_id,
                user_id=user.user_id,
                old_data=old_data,
                new_data=values,
            )
            conn.commit()

        logger.info("AI configuration saved", config_id=config_id, is_active=values["is_active"])
        return AIConfiguration(id=config_id, **values)

    def delete_config(self, user: UserContext, config_id: str) -> None:
        self._require_admin(user)
        with self.pool.connect() as conn:
            current = self._fetch_config(conn, user.organization_id, config_id)
            conn.execute(
                text("DELETE FROM ai_configurations WHERE id = :id AND organization_id = :org_id"),
                {"id": config_id, "org_id": user.organization_id},
            )
            log_audit(
                conn,
                organization_id=user.organization_id,
                action=AuditAction.DELETE,
                resource_type=AuditResourceType.AI_CONFIGURATION,
                resource_id=config_id,
                user_id=user.user_id,
                old_data=current.to_dict(),
            )
            conn.commit()

    def _fetch_config(self, conn, organization_id: str, config_id: str) -> AIConfiguration:
        row = conn.execute(
            text(f"""
                SELECT {_CONFIG_COLUMNS}
                FROM ai_configurations
                WHERE id = :id AND organization_id = :org_id
            """),
            {"id": config_id, "org_id": organization_id},
        ).fetchone()
        if row is None:
            raise NotFoundError("AI configuration not found")
        return self._row_to_config(row)

    def _resolve_service(self, organization_id: str, config_id: Optional[str] = None):
        if config_id:
            with self.pool.connect() as conn:
                config = self._fetch_config(conn, organization_id, config_id)
        else:
            config = self.get_active_config(organization_id)
        if config is None:
            raise AIConfigNotFoundError("AI configuration not found. Please configure AI settings first.")
        return config, self._ai_factory(config.service_overrides())

    # -------------------------------------------------------------------------
    # 接続確認
    # -------------------------------------------------------------------------

    async def test_connection(self, user: UserContext, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """overrides が無ければ環境設定の接続先を確認する"""
        self._require_admin(user)
        return await self._ai_factory(dict(overrides or {})).test_connection()

    async def list_models(self, user: UserContext, overrides: Optional[Dict[str, Any]] = None) -> List[str]:
        self._require_admin(user)
        return await self._ai_factory(dict(overrides or {})).list_models()

    # -------------------------------------------------------------------------
    # 分析
    # -------------------------------------------------------------------------

    def load_goal_data(self, user: UserContext, goal_id: str) -> Dict[str, Any]:
        """プロンプト用の目標データ（タスク・コメント込み）"""
        goal = get_goal_service(self.pool).get_goal(user, goal_id)
        goal_data = goal.to_dict()
        with self.pool.connect() as conn:
            task_rows = conn.execute(
                text("""
                    SELECT title, status, pdca_phase, completion_notes
                    FROM goal_tasks
                    WHERE goal_id = :goal_id AND organization_id = :org_id
                    ORDER BY order_index ASC, created_at ASC
                """),
                {"goal_id": goal_id, "org_id": user.organization_id},
            ).fetchall()
            comment_rows = conn.execute(
                text("""
                    SELECT u.full_name, c.created_at, c.comment
                    FROM goal_comments c
                    LEFT JOIN users u ON u.id = c.user_id
                    WHERE c.goal_id = :goal_id AND c.organization_id = :org_id
                    ORDER BY c.created_at ASC
                """),
                {"goal_id": goal_id, "org_id": user.organization_id},
            ).fetchall()
        goal_data["tasks"] = [
            {"title": r[0], "status": r[1], "pdca_phase": r[2], "completion_notes": r[3]}
            for r in task_rows
        ]
        goal_data["comments"] = [
            {"user_name": r[0], "created_at": r[1], "comment": r[2]}
            for r in comment_rows
        ]
        return goal_data

    async def analyze_goal(
        self,
        user: UserContext,
        goal_id: str,
        analysis_type: str,
        custom_prompt: Optional[str] = None,
        config_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """目標を分析して goal_ai_analysis に保存し、保存した行を返す"""
        self._require_admin(user)
        if analysis_type not in ANALYSIS_TYPE_VALUES:
            raise ValidationError(f"Invalid analysis type: {analysis_type}")

        goal_data = self.load_goal_data(user, goal_id)
        config, service = self._resolve_service(user.organization_id, config_id)
        prompt = build_analysis_prompt(goal_data, analysis_type, custom_prompt, today)

        result = await service.generate_analysis(AIAnalysisRequest(
            system_prompt=config.system_prompt or DEFAULT_SYSTEM_PROMPT,
            request_description=prompt,
            request_subject=goal_data.get("subject"),
            priority=goal_data.get("priority"),
            request_type=analysis_type,
        ))

        analysis_id = str(uuid4())
        tokens_used = estimate_tokens(result.prompt_used) + estimate_tokens(result.analysis_content)
        processing_time_ms = result.debug_info.get("processing_time_ms", 0)
        with self.pool.connect() as conn:
            conn.execute(
                text("""
                    INSERT INTO goal_ai_analysis (
                        id, organization_id, goal_id, ai_config_id, analysis_type,
                        prompt_used, analysis_result, tokens_used, processing_time_ms,
                        requested_by
                    ) VALUES (
                        :id, :org_id, :goal_id, :config_id, :analysis_type,
                        :prompt_used, :analysis_result, :tokens_used, :processing_time_ms,
                        :requested_by
                    )
                """),
                {
                    "id": analysis_id,
                    "org_id": user.organization_id,
                    "goal_id": goal_id,
                    "config_id": config.id,
                    "analysis_type": analysis_type,
                    "prompt_used": result.prompt_used,
                    "analysis_result": result.analysis_content,
                    "tokens_used": tokens_used,
                    "processing_time_ms": processing_time_ms,
                    "requested_by": user.user_id,
                },
            )
            conn.commit()

        logger.info(
            "Goal analysis stored",
            goal_id=goal_id,
            analysis_type=analysis_type,
            tokens_used=tokens_used,
            processing_time_ms=processing_time_ms,
        )
        return {
            "id": analysis_id,
            "goal_id": goal_id,
            "ai_config_id": config.id,
            "analysis_type": analysis_type,
            "prompt_used": result.prompt_used,
            "analysis_result": result.analysis_content,
            "tokens_used": tokens_used,
            "processing_time_ms": processing_time_ms,
            "requested_by": user.user_id,
            "model_used": result.model_used,
            "created_at": result.timestamp,
        }

    def list_analyses(self, user: UserContext, goal_id: str) -> List[Dict[str, Any]]:
        """目標の分析履歴（新しい順）"""
        # 閲覧権限の確認
        get_goal_service(self.pool).get_goal(user, goal_id)
        with self.pool.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT a.id, a.goal_id, a.ai_config_id, a.analysis_type, a.prompt_used,
                           a.analysis_result, a.tokens_used, a.processing_time_ms,
                           a.requested_by, a.created_at, c.name, c.model_name
                    FROM goal_ai_analysis a
                    LEFT JOIN ai_configurations c ON c.id = a.ai_config_id
                    WHERE a.goal_id = :goal_id AND a.organization_id = :org_id
                    ORDER BY a.created_at DESC
                """),
                {"goal_id": goal_id, "org_id": user.organization_id},
            ).fetchall()
        return [
            {
                "id": str(r[0]),
                "goal_id": str(r[1]),
                "ai_config_id": str(r[2]) if r[2] else None,
                "analysis_type": r[3],
                "prompt_used": r[4],
                "analysis_result": r[5],
                "tokens_used": r[6],
                "processing_time_ms": r[7],
                "requested_by": str(r[8]) if r[8] else None,
                "created_at": r[9].isoformat() if r[9] else None,
                "config_name": r[10],
                "model_name": r[11],
            }
            for r in rows
        ]

    def list_goals_with_analysis(self, user: UserContext) -> Dict[str, Any]:
        """全目標と各目標の最新分析"""
        self._require_admin(user)
        with self.pool.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT g.id, g.subject, g.description, g.status, g.priority,
                           g.department, g.created_at, g.target_date, o.full_name,
                           la.id, la.analysis_type, la.created_at, la.analysis_result,
                           la.tokens_used, la.processing_time_ms, c.name, c.model_name
                    FROM goals g
                    LEFT JOIN users o ON o.id = g.owner_id
                    LEFT JOIN LATERAL (
                        SELECT a.id, a.analysis_type, a.created_at, a.analysis_result,
                               a.tokens_used, a.processing_time_ms, a.ai_config_id
                        FROM goal_ai_analysis a
                        WHERE a.goal_id = g.id
                        ORDER BY a.created_at DESC
                        LIMIT 1
                    ) la ON TRUE
                    LEFT JOIN ai_configurations c ON c.id = la.ai_config_id
                    WHERE g.organization_id = :org_id
                    ORDER BY g.created_at DESC
                """),
                {"org_id": user.organization_id},
            ).fetchall()

        goals = []
        for r in rows:
            latest = None
            if r[9] is not None:
                latest = {
                    "id": str(r[9]),
                    "analysis_type": r[10],
                    "created_at": r[11].isoformat() if r[11] else None,
                    "analysis_result": r[12],
                    "tokens_used": r[13],
                    "processing_time_ms": r[14],
                    "config_name": r[15],
                    "model_name": r[16],
                }
            goals.append({
                "id": str(r[0]),
                "subject": r[1],
                "description": r[2],
                "status": r[3],
                "priority": r[4],
                "department": r[5],
                "created_at": r[6].isoformat() if r[6] else None,
                "target_date": r[7].isoformat() if r[7] else None,
                "owner_name": r[8],
                "latest_analysis": latest,
            })
        analyzed = sum(1 for g in goals if g["latest_analysis"])
        return {
            "goals": goals,
            "total": len(goals),
            "analyzed": analyzed,
            "not_analyzed": len(goals) - analyzed,
        }

    def build_meta_analysis(
        self,
        user: UserContext,
        analysis_ids: Optional[List[str]] = None,
        today: Optional[date] = None,
    ) -> str:
        """保存済み分析をまとめた横断分析用テキスト（ids 省略時は全件）"""
        self._require_admin(user)
        params: Dict[str, Any] = {"org_id": user.organization_id}
        id_sql = ""
        if analysis_ids:
            id_sql = "AND a.id = ANY(:ids)"
            params["ids"] = list(analysis_ids)
        with self.pool.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT a.analysis_type, a.created_at, a.analysis_result,
                           g.subject, g.department, g.status
                    FROM goal_ai_analysis a
                    LEFT JOIN goals g ON g.id = a.goal_id
                    WHERE a.organization_id = :org_id {id_sql}
                    ORDER BY a.created_at DESC
                """),
                params,
            ).fetchall()
        analyses = [
            {
                "analysis_type": r[0],
                "created_at": r[1],
                "analysis_result": r[2],
                "goal_subject": r[3],
                "goal_department": r[4],
                "goal_status": r[5],
            }
            for r in rows
        ]
        return build_meta_analysis_data(analyses, today)

    @staticmethod
    def _row_to_config(row) -> AIConfiguration:
        return AIConfiguration(
            id=str(row[0]),
            name=row[1],
            description=row[2],
            ollama_url=row[3],
            model_name=row[4],
            system_prompt=row[5],
            temperature=float(row[6]) if row[6] is not None else DEFAULT_TEMPERATURE,
            max_tokens=int(row[7]) if row[7] is not None else DEFAULT_MAX_TOKENS,
            is_active=bool(row[8]),
            created_at=row[9],
            updated_at=row[10],
        )


def get_goal_analysis_service(pool=None) -> GoalAnalysisService:
    return GoalAnalysisService(pool=pool)
