"""
AI（Ollama / Open WebUI / OpenAI互換API）クライアント

目標分析のテキスト生成に使う。httpx の非同期クライアントで呼び出し、
5xx・429・408・タイムアウト・ネットワークエラーは指数バックオフでリトライする。

接続形態:
    - 標準 Ollama:    {base}/api/generate, {base}/api/tags
    - Open WebUI:     {base}/ollama/api/generate
    - OpenAI互換:     {base}/v1/chat/completions, {base}/v1/models

使用例:
    from lib.ai_service import AIAnalysisRequest, create_ai_service

    service = create_ai_service()
    result = await service.generate_analysis(AIAnalysisRequest(
        system_prompt="You are a PDCA coach.",
        request_description="...",
    ))
"""

from __future__ import annotations

import asyncio
import json
import math
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from lib.config import get_settings
from lib.errors import GoalFlowError
from lib.logging import get_logger, log_external_api_call

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_TOKENS = 100000
MAX_BACKOFF_MS = 10000

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_VARIABLE_PATTERN = re.compile(r"\{[^}]+\}")


class AIServiceError(GoalFlowError):
    """AI呼び出しの失敗"""

    http_status = 502
    default_code = "AI_SERVICE_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None, retryable: bool = False):
        super().__init__(message, error_code=error_code)
        self.retryable = retryable


class AIConfigNotFoundError(AIServiceError):
    """有効な AI 設定がない"""

    http_status = 404
    default_code = "CONFIG_NOT_FOUND"


def detect_api_flavor(api_url: str) -> Dict[str, bool]:
    """URL の末尾から Open WebUI / OpenAI互換 を判定"""
    path = (api_url or "").rstrip("/")
    return {
        "is_open_webui": path.endswith("/ollama"),
        "is_openai_compatible": path.endswith("/v1"),
    }


@dataclass
class OllamaConfig:
    api_url: str
    model: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    max_tokens: int = DEFAULT_MAX_TOKENS
    api_key: Optional[str] = None
    is_open_webui: bool = False
    is_openai_compatible: bool = False
    temperature: float = 0.7


@dataclass
class AIAnalysisRequest:
    system_prompt: str
    request_description: str
    request_subject: Optional[str] = None
    priority: Optional[str] = None
    request_type: Optional[str] = None
    application_context: Optional[str] = None


@dataclass
class AIAnalysisResult:
    analysis_content: str
    model_used: str
    prompt_used: str
    timestamp: str
    debug_info: Dict[str, Any] = field(default_factory=dict)
    complexity_score: Optional[Any] = None
    estimated_effort: Optional[Any] = None
    risks: Optional[Any] = None
    recommendations: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analysis_content": self.analysis_content,
            "model_used": self.model_used,
            "prompt_used": self.prompt_used,
            "timestamp": self.timestamp,
            "debug_info": self.debug_info,
            "complexity_score": self.complexity_score,
            "estimated_effort": self.estimated_effort,
            "risks": self.risks,
            "recommendations": self.recommendations,
        }


# =============================================================================
# プロンプト
# =============================================================================

def sanitize_input(value: Any) -> str:
    """制御文字（改行・タブ以外）を除去して前後の空白を削る"""
    if value is None:
        return ""
    return _CONTROL_CHARS.sub("", str(value)).strip()


def estimate_tokens(prompt: str) -> int:
    """1トークン ≒ 4文字の概算"""
    return math.ceil(len(prompt) / 4)


def _template_variables(request: AIAnalysisRequest) -> Dict[str, str]:
    return {
        "{application_context}": request.application_context or "",
        "{request_subject}": request.request_subject or "",
        "{request_priority}": request.priority or "",
        "{request_type}": request.request_type or "",
        "{request_description}": request.request_description or "",
    }


def build_prompt(request: AIAnalysisRequest) -> Tuple[str, Dict[str, Any]]:
    """
    送信するプロンプトとデバッグ情報を組み立てる

    システムプロンプトが {変数} を含む場合はテンプレートモード（変数置換のみ）、
    含まない場合は構造化モード（SYSTEM / APPLICATION CONTEXT / REQUEST TO ANALYZE）。
    """
    system_prompt = request.system_prompt or ""
    variables: Dict[str, str] = {}
    template_mode = bool(_VARIABLE_PATTERN.search(system_prompt))

    if template_mode:
        variables = _template_variables(request)
        prompt = system_prompt
        for name, value in variables.items():
            prompt = prompt.replace(name, value)
        prompt = sanitize_input(prompt)
    else:
        parts: List[str] = []
        if system_prompt:
            parts.append(f"SYSTEM: {sanitize_input(system_prompt)}")
        if request.application_context:
            parts.append(f"APPLICATION CONTEXT: {sanitize_input(request.application_context)}")
        parts.append("REQUEST TO ANALYZE:")
        if request.request_subject:
            parts.append(f"Subject: {sanitize_input(request.request_subject)}")
        if request.priority:
            parts.append(f"Priority: {sanitize_input(request.priority)}")
        if request.request_type:
            parts.append(f"Type: {sanitize_input(request.request_type)}")
        parts.append(f"Description: {sanitize_input(request.request_description)}")
        prompt = "\n\n".join(parts)

    debug_info = {
        "variables_used": variables,
        "prompt_type": request.request_type or "default",
        "prompt_mode": "template" if template_mode else "structured",
        "character_count": len(prompt),
        "token_estimate": estimate_tokens(prompt),
    }
    return prompt, debug_info


def parse_analysis_response(response_text: str) -> Dict[str, Any]:
    """JSON 応答なら構造化フィールドを取り出し、それ以外は本文として扱う"""
    try:
        parsed = json.loads(response_text)
    except (json.JSONDecodeError, TypeError):
        return {"analysis_content": response_text}
    if not isinstance(parsed, dict):
        return {"analysis_content": response_text}
    return {
        "analysis_content": parsed.get("analysis") or parsed.get("content") or response_text,
        "complexity_score": parsed.get("complexity_score"),
        "estimated_effort": parsed.get("estimated_effort"),
        "risks": parsed.get("risks") or parsed.get("identified_risks"),
        "recommendations": parsed.get("recommendations"),
    }


def backoff_ms(attempt: int) -> int:
    """attempt は 1 始まり"""
    return min(1000 * 2 ** (attempt - 1), MAX_BACKOFF_MS)


# =============================================================================
# クライアント
# =============================================================================

class OllamaService:
    """Ollama / OpenAI互換 API クライアント"""

    def __init__(
        self,
        config: OllamaConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self._transport = transport
        self._sleep = sleep

    def build_url(self, endpoint: str) -> str:
        base = self.config.api_url.rstrip("/")
        base = re.sub(r"/ollama/?$", "", base)
        base = re.sub(r"/v1/?$", "", base)
        if self.config.is_open_webui:
            return f"{base}/ollama{endpoint}"
        if self.config.is_openai_compatible:
            return f"{base}/v1{endpoint}"
        return f"{base}{endpoint}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _request(self, method: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = self.build_url(endpoint)
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers(), json=body)
        except httpx.TimeoutException:
            raise AIServiceError(
                "Request timeout - AI service did not respond in time", error_code="TIMEOUT", retryable=True
            )
        except httpx.HTTPError as e:
            raise AIServiceError(f"Network error: {e}", error_code="NETWORK_ERROR", retryable=True)

        log_external_api_call(
            logger,
            service="ai",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )

        if response.status_code >= 400:
            retryable = response.status_code >= 500 or response.status_code in (408, 429)
            raise AIServiceError(
                f"AI API error ({response.status_code}): {response.text[:500]}",
                error_code=f"HTTP_{response.status_code}",
                retryable=retryable,
            )
        try:
            return response.json()
        except ValueError:
            raise AIServiceError("Invalid JSON response from AI service", error_code="INVALID_RESPONSE")

    async def _request_with_retry(self, method: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        attempts = max(1, self.config.max_retries)
        last_error: Optional[AIServiceError] = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._request(method, endpoint, body)
            except AIServiceError as e:
                last_error = e
                logger.warning(
                    "AI request attempt failed",
                    attempt=attempt,
                    max_retries=attempts,
                    error_code=e.error_code,
                    retryable=e.retryable,
                )
                if not e.retryable or attempt == attempts:
                    break
                await self._sleep(backoff_ms(attempt) / 1000)
        raise last_error

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """プロンプトを送信して生成テキストを返す"""
        if not self.config.model or not self.config.model.strip():
            raise AIServiceError("Model name is required and must be a non-empty string", error_code="INVALID_MODEL")

        if self.config.is_openai_compatible:
            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})
            data = await self._request_with_retry("POST", "/chat/completions", {
                "model": self.config.model,
                "messages": messages,
                "temperature": self.config.temperature,
                "top_p": 0.9,
                "max_tokens": self.config.max_tokens,
            })
            choices = data.get("choices") or []
            content = choices[0].get("message", {}).get("content") if choices else None
            if not content:
                raise AIServiceError("Empty response from OpenAI-compatible API", error_code="EMPTY_RESPONSE")
            return content

        data = await self._request_with_retry("POST", "/api/generate", {
            "model": self.config.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "top_p": 0.9,
                "top_k": 40,
                "num_predict": self.config.max_tokens,
            },
        })
        if not data.get("response"):
            raise AIServiceError("Empty response from Ollama", error_code="EMPTY_RESPONSE")
        return data["response"]

    async def generate_analysis(self, request: AIAnalysisRequest) -> AIAnalysisResult:
        if not (request.request_description or "").strip():
            raise AIServiceError("Request description is required", error_code="MISSING_DESCRIPTION")

        prompt, debug_info = build_prompt(request)
        started = time.monotonic()
        # OpenAI互換はシステムプロンプトを system メッセージとして別送する
        user_prompt = prompt
        system_prompt = None
        if self.config.is_openai_compatible and debug_info["prompt_mode"] == "structured" and request.system_prompt:
            system_prompt = sanitize_input(request.system_prompt)
            user_prompt = prompt.replace(f"SYSTEM: {system_prompt}\n\n", "", 1)

        response_text = await self.generate(user_prompt, system_prompt=system_prompt)
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "AI analysis completed",
            model=self.config.model,
            prompt_chars=len(prompt),
            response_chars=len(response_text),
            duration_ms=duration_ms,
        )

        parsed = parse_analysis_response(response_text)
        return AIAnalysisResult(
            analysis_content=parsed.get("analysis_content") or response_text,
            model_used=self.config.model,
            prompt_used=prompt,
            timestamp=datetime.now(timezone.utc).isoformat(),
            debug_info={**debug_info, "processing_time_ms": duration_ms},
            complexity_score=parsed.get("complexity_score"),
            estimated_effort=parsed.get("estimated_effort"),
            risks=parsed.get("risks"),
            recommendations=parsed.get("recommendations"),
        )

    async def list_models(self) -> List[str]:
        if self.config.is_openai_compatible:
            data = await self._request("GET", "/models")
            return [m.get("id") for m in data.get("data") or [] if m.get("id")]
        data = await self._request("GET", "/api/tags")
        return [m.get("name") for m in data.get("models") or [] if m.get("name")]

    async def test_connection(self) -> Dict[str, Any]:
        """接続確認（失敗は例外にせず結果で返す）"""
        try:
            models = await self.list_models()
        except AIServiceError as e:
            logger.warning("AI connection test failed", url=self.config.api_url, error_code=e.error_code)
            return {"success": False, "error": e.message, "error_code": e.error_code}
        return {"success": True, "models": models}


def create_ai_service(
    overrides: Optional[Dict[str, Any]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> OllamaService:
    """
    環境設定を既定値として OllamaService を生成（overrides が優先）

    接続先の種別（Open WebUI / OpenAI互換）は最終的な api_url から判定する。
    overrides に種別フラグが明示されていればそちらを使う。
    """
    settings = get_settings()
    values: Dict[str, Any] = {
        "api_url": settings.OLLAMA_API_URL,
        "model": settings.OLLAMA_DEFAULT_MODEL,
        "timeout": settings.AI_TIMEOUT_SECONDS,
        "max_retries": settings.AI_MAX_RETRIES,
        "max_tokens": settings.AI_MAX_TOKENS,
        "api_key": settings.OLLAMA_API_KEY,
    }
    values.update(detect_api_flavor(values["api_url"]))
    given = {k: v for k, v in (overrides or {}).items() if v is not None}
    if "api_url" in given:
        values.update(detect_api_flavor(given["api_url"]))
    values.update(given)
    return OllamaService(OllamaConfig(**values), transport=transport)
