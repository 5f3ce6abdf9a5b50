"""
tests/test_ai_service.py - AI クライアントのテスト

httpx.MockTransport で Ollama / OpenAI互換 API を模擬する。
リトライ待機は sleep を差し替えて記録のみ行う。
"""

import json

import httpx
import pytest

from lib.ai_service import (
    AIAnalysisRequest,
    AIServiceError,
    OllamaConfig,
    OllamaService,
    backoff_ms,
    build_prompt,
    create_ai_service,
    detect_api_flavor,
    estimate_tokens,
    parse_analysis_response,
    sanitize_input,
)
from lib.config import get_settings


class _Sleeps:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _service(handler, sleeps=None, **config):
    values = {"api_url": "http://ollama.test:11434", "model": "llama3"}
    values.update(config)
    return OllamaService(
        OllamaConfig(**values),
        transport=httpx.MockTransport(handler),
        sleep=sleeps or _Sleeps(),
    )


# ================================================================
# 純粋関数
# ================================================================


class TestHelpers:
    @pytest.mark.parametrize("url,webui,openai", [
        ("http://host:11434", False, False),
        ("http://host/ollama", True, False),
        ("http://host/ollama/", True, False),
        ("https://api.example.com/v1", False, True),
    ])
    def test_detect_api_flavor(self, url, webui, openai):
        assert detect_api_flavor(url) == {"is_open_webui": webui, "is_openai_compatible": openai}

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_backoff(self):
        assert [backoff_ms(n) for n in (1, 2, 3)] == [1000, 2000, 4000]
        assert backoff_ms(10) == 10000

    def test_sanitize_input_keeps_newlines(self):
        assert sanitize_input("  a\x00b\nc\t ") == "ab\nc"
        assert sanitize_input(None) == ""

    def test_parse_json_response(self):
        parsed = parse_analysis_response(json.dumps({"analysis": "OK", "identified_risks": ["遅延"]}))
        assert parsed["analysis_content"] == "OK"
        assert parsed["risks"] == ["遅延"]

    def test_parse_plain_text_response(self):
        assert parse_analysis_response("plain") == {"analysis_content": "plain"}
        assert parse_analysis_response("[1, 2]") == {"analysis_content": "[1, 2]"}


class TestBuildPrompt:
    def test_structured_mode(self):
        prompt, debug = build_prompt(AIAnalysisRequest(
            system_prompt="You are a PDCA coach.",
            request_description="売上を伸ばす",
            request_subject="売上拡大",
            priority="High",
        ))
        assert prompt == (
            "SYSTEM: You are a PDCA coach.\n\n"
            "REQUEST TO ANALYZE:\n\n"
            "Subject: 売上拡大\n\n"
            "Priority: High\n\n"
            "Description: 売上を伸ばす"
        )
        assert debug["prompt_mode"] == "structured"
        assert debug["prompt_type"] == "default"
        assert debug["token_estimate"] == estimate_tokens(prompt)

    def test_template_mode(self):
        prompt, debug = build_prompt(AIAnalysisRequest(
            system_prompt="Analyze {request_subject}: {request_description} {unknown}",
            request_description="説明",
            request_subject="件名",
        ))
        assert prompt == "Analyze 件名: 説明 {unknown}"
        assert debug["prompt_mode"] == "template"
        assert debug["variables_used"]["{request_subject}"] == "件名"


# ================================================================
# URL 組み立て
# ================================================================


class TestBuildUrl:
    def test_standard(self):
        service = OllamaService(OllamaConfig(api_url="http://host:11434/", model="m"))
        assert service.build_url("/api/generate") == "http://host:11434/api/generate"

    def test_open_webui(self):
        config = OllamaConfig(api_url="http://host/ollama", model="m", is_open_webui=True)
        assert OllamaService(config).build_url("/api/generate") == "http://host/ollama/api/generate"

    def test_openai_compatible(self):
        config = OllamaConfig(api_url="https://api.example.com/v1", model="m", is_openai_compatible=True)
        assert OllamaService(config).build_url("/models") == "https://api.example.com/v1/models"


# ================================================================
# 生成・リトライ
# ================================================================


class TestGenerate:
    @pytest.mark.asyncio
    async def test_ollama_generate(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "分析結果"})

        result = await _service(handler).generate("prompt")
        assert result == "分析結果"
        assert seen["url"] == "http://ollama.test:11434/api/generate"
        assert seen["body"]["stream"] is False
        assert seen["body"]["options"]["num_predict"] == 100000

    @pytest.mark.asyncio
    async def test_openai_generate_sends_system_message_and_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        service = _service(
            handler,
            api_url="https://api.example.com/v1",
            is_openai_compatible=True,
            api_key="secret",
        )
        assert await service.generate("hello", system_prompt="sys") == "ok"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hello"},
        ]

    @pytest.mark.asyncio
    async def test_blank_model_is_rejected(self):
        service = _service(lambda request: httpx.Response(200, json={}), model="  ")
        with pytest.raises(AIServiceError) as exc_info:
            await service.generate("prompt")
        assert exc_info.value.error_code == "INVALID_MODEL"

    @pytest.mark.asyncio
    async def test_empty_response(self):
        service = _service(lambda request: httpx.Response(200, json={"response": ""}))
        with pytest.raises(AIServiceError) as exc_info:
            await service.generate("prompt")
        assert exc_info.value.error_code == "EMPTY_RESPONSE"

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        service = _service(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(AIServiceError) as exc_info:
            await service.generate("prompt")
        assert exc_info.value.error_code == "INVALID_RESPONSE"

    @pytest.mark.asyncio
    async def test_retries_server_errors_with_backoff(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"response": "ok"})

        sleeps = _Sleeps()
        assert await _service(handler, sleeps).generate("prompt") == "ok"
        assert len(calls) == 3
        assert sleeps.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(500, text="boom")

        sleeps = _Sleeps()
        with pytest.raises(AIServiceError) as exc_info:
            await _service(handler, sleeps, max_retries=2).generate("prompt")
        assert exc_info.value.error_code == "HTTP_500"
        assert exc_info.value.http_status == 502
        assert len(calls) == 2
        assert sleeps.calls == [1.0]

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(404, text="model not found")

        with pytest.raises(AIServiceError) as exc_info:
            await _service(handler).generate("prompt")
        assert exc_info.value.error_code == "HTTP_404"
        assert exc_info.value.retryable is False
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        sleeps = _Sleeps()
        with pytest.raises(AIServiceError) as exc_info:
            await _service(handler, sleeps).generate("prompt")
        assert exc_info.value.error_code == "TIMEOUT"
        assert len(sleeps.calls) == 2

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AIServiceError) as exc_info:
            await _service(handler, max_retries=1).generate("prompt")
        assert exc_info.value.error_code == "NETWORK_ERROR"


class TestGenerateAnalysis:
    @pytest.mark.asyncio
    async def test_missing_description(self):
        service = _service(lambda request: httpx.Response(200, json={"response": "x"}))
        with pytest.raises(AIServiceError) as exc_info:
            await service.generate_analysis(AIAnalysisRequest(system_prompt="s", request_description=" "))
        assert exc_info.value.error_code == "MISSING_DESCRIPTION"

    @pytest.mark.asyncio
    async def test_structured_result(self):
        body = json.dumps({"analysis": "順調です", "complexity_score": 3, "recommendations": ["継続"]})
        service = _service(lambda request: httpx.Response(200, json={"response": body}))
        result = await service.generate_analysis(AIAnalysisRequest(
            system_prompt="Coach",
            request_description="説明",
        ))
        assert result.analysis_content == "順調です"
        assert result.complexity_score == 3
        assert result.recommendations == ["継続"]
        assert result.model_used == "llama3"
        assert "processing_time_ms" in result.debug_info

    @pytest.mark.asyncio
    async def test_openai_moves_system_prompt_out_of_user_message(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        service = _service(handler, api_url="https://api.example.com/v1", is_openai_compatible=True)
        result = await service.generate_analysis(AIAnalysisRequest(system_prompt="Coach", request_description="説明"))
        messages = seen["body"]["messages"]
        assert messages[0] == {"role": "system", "content": "Coach"}
        assert messages[1]["content"] == "REQUEST TO ANALYZE:\n\nDescription: 説明"
        assert result.prompt_used.startswith("SYSTEM: Coach")


# ================================================================
# モデル一覧・接続テスト
# ================================================================


class TestModels:
    @pytest.mark.asyncio
    async def test_ollama_tags(self):
        def handler(request):
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "llama3"}, {"name": "qwen2"}, {}]})

        assert await _service(handler).list_models() == ["llama3", "qwen2"]

    @pytest.mark.asyncio
    async def test_openai_models(self):
        def handler(request):
            assert request.url.path == "/v1/models"
            return httpx.Response(200, json={"data": [{"id": "gpt-x"}]})

        service = _service(handler, api_url="https://api.example.com/v1", is_openai_compatible=True)
        assert await service.list_models() == ["gpt-x"]

    @pytest.mark.asyncio
    async def test_connection_failure_is_reported_not_raised(self):
        service = _service(lambda request: httpx.Response(401, text="unauthorized"))
        result = await service.test_connection()
        assert result["success"] is False
        assert result["error_code"] == "HTTP_401"


class TestCreateAIService:
    @pytest.fixture(autouse=True)
    def _fresh_settings(self):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_defaults_from_environment(self):
        service = create_ai_service()
        assert service.config.api_url == "http://ollama.test:11434"
        assert service.config.model == "llama3"

    def test_overrides_win_and_none_is_ignored(self):
        service = create_ai_service({"model": "qwen2", "api_key": None, "is_openai_compatible": True})
        assert service.config.model == "qwen2"
        assert service.config.is_openai_compatible is True
        assert service.config.api_key is None

    @pytest.mark.asyncio
    async def test_openai_compatible_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_API_URL", "https://api.example.com/v1")
        get_settings.cache_clear()
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, json={"data": [{"id": "gpt-x"}]})

        service = create_ai_service({}, transport=httpx.MockTransport(handler))
        assert service.config.is_openai_compatible is True
        assert await service.list_models() == ["gpt-x"]
        assert requested == ["https://api.example.com/v1/models"]

    @pytest.mark.asyncio
    async def test_open_webui_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_API_URL", "https://ai.example.com/ollama")
        get_settings.cache_clear()
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, json={"models": [{"name": "llama3"}]})

        service = create_ai_service(transport=httpx.MockTransport(handler))
        assert service.config.is_open_webui is True
        assert await service.list_models() == ["llama3"]
        assert requested == ["https://ai.example.com/ollama/api/tags"]

    def test_overridden_url_is_detected_again(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_API_URL", "https://api.example.com/v1")
        get_settings.cache_clear()
        service = create_ai_service({"api_url": "http://ollama.local:11434"})
        assert service.config.is_openai_compatible is False
        assert service.config.is_open_webui is False
