"""Tests for Gemini adapter."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.genai import types as genai_types

from priorauth.coverage.schema import ExtractedPolicyDetails, SearchQuery, StateScopedQuery
from priorauth.coverage.search_tools import NcdSearchTool
from priorauth.errors import AgentEngineError
from priorauth.models.gemini import GeminiAdapter, history_to_contents, schema_from_model
from priorauth.models.schema import AgentTurn, ModelResponse, ToolCall


def _response(parts, prompt_tokens=120, output_tokens=15, text=None):
    return SimpleNamespace(
        text=text,
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))],
        usage_metadata=SimpleNamespace(
            prompt_token_count=prompt_tokens, candidates_token_count=output_tokens
        ),
    )


def _fc_part(name, args, call_id=None, signature=None):
    return SimpleNamespace(
        thought=False,
        text=None,
        function_call=SimpleNamespace(name=name, args=args, id=call_id),
        thought_signature=signature,
    )


def _text_part(text, thought=False):
    return SimpleNamespace(thought=thought, text=text, function_call=None)


def test_gemini_adapter_name():
    with patch("priorauth.models.gemini.genai.Client"):
        adapter = GeminiAdapter(api_key="fake")
        assert adapter.name == "gemini-3-flash-preview"


@patch("priorauth.models.gemini.genai.Client")
def test_gemini_generate(mock_client_cls):
    mock_client = MagicMock()
    mock_response = MagicMock()
    mock_response.text = "LCD L33718 requires a face-to-face evaluation."
    mock_response.usage_metadata = MagicMock()
    mock_response.usage_metadata.prompt_token_count = 150
    mock_response.usage_metadata.candidates_token_count = 30
    mock_client.models.generate_content.return_value = mock_response
    mock_client_cls.return_value = mock_client

    adapter = GeminiAdapter(api_key="fake")
    result = asyncio.run(adapter.generate("test prompt"))

    assert isinstance(result, ModelResponse)
    assert "face-to-face" in result.text
    assert result.input_tokens == 150
    assert result.output_tokens == 30
    assert result.estimated_cost > 0


@patch("priorauth.models.gemini.genai.Client")
def test_gemini_generate_with_response_schema(mock_client_cls):
    mock_client = MagicMock()
    mock_client.models.generate_content.return_value = SimpleNamespace(text="{}", usage_metadata=None)
    mock_client_cls.return_value = mock_client

    adapter = GeminiAdapter(api_key="fake", model="gemini-2.5-flash")
    asyncio.run(adapter.generate("extract", max_tokens=512, response_schema=ExtractedPolicyDetails))

    config = mock_client.models.generate_content.call_args.kwargs["config"]
    assert config["max_output_tokens"] == 512
    assert config["response_mime_type"] == "application/json"
    assert "priorAuthRequired" in config["response_schema"].properties


@patch("priorauth.models.gemini.genai.Client")
def test_gemini_health_check(mock_client_cls):
    mock_client = MagicMock()
    mock_response = MagicMock()
    mock_response.text = '{"status": "ok"}'
    mock_client.models.generate_content.return_value = mock_response
    mock_client_cls.return_value = mock_client

    adapter = GeminiAdapter(api_key="fake")
    assert asyncio.run(adapter.health_check()) is True


# ---------------------------------------------------------------------------
# Function-calling turns
# ---------------------------------------------------------------------------


@patch("priorauth.models.gemini.genai.Client")
def test_generate_turn_parses_function_calls(mock_client_cls):
    mock_client = MagicMock()
    mock_client.models.generate_content.return_value = _response(
        [
            _text_part("internal reasoning", thought=True),
            _text_part("Searching NCDs. "),
            _fc_part("ncd_coverage_search", {"query": "CPAP"}, call_id="fc-1", signature=b"sig"),
        ]
    )
    mock_client_cls.return_value = mock_client

    adapter = GeminiAdapter(api_key="fake")
    reply = asyncio.run(
        adapter.generate_turn("system", [AgentTurn.user("Is CPAP covered?")], [NcdSearchTool])
    )

    assert reply.content == "Searching NCDs. "
    assert reply.wants_tools
    call = reply.tool_calls[0]
    assert (call.id, call.name, call.arguments) == ("fc-1", "ncd_coverage_search", {"query": "CPAP"})
    assert call.thought_signature == b"sig"
    assert reply.input_tokens == 120

    config = mock_client.models.generate_content.call_args.kwargs["config"]
    declaration = config.tools[0].function_declarations[0]
    assert declaration.name == "ncd_coverage_search"
    assert config.system_instruction == "system"


@patch("priorauth.models.gemini.genai.Client")
def test_generate_turn_without_tools(mock_client_cls):
    mock_client = MagicMock()
    mock_client.models.generate_content.return_value = _response([_text_part("CPAP is covered.")])
    mock_client_cls.return_value = mock_client

    adapter = GeminiAdapter(api_key="fake")
    reply = asyncio.run(adapter.generate_turn("system", [AgentTurn.user("Is CPAP covered?")], []))

    assert reply.content == "CPAP is covered."
    config = mock_client.models.generate_content.call_args.kwargs["config"]
    assert config.tools is None
    assert config.tool_config is None


@patch("priorauth.models.gemini.genai.Client")
def test_generate_turn_retries_transient_errors(mock_client_cls):
    mock_client = MagicMock()
    mock_client.models.generate_content.side_effect = [
        Exception("503 UNAVAILABLE: model is overloaded"),
        _response([_text_part("Final answer.")]),
    ]
    mock_client_cls.return_value = mock_client

    adapter = GeminiAdapter(api_key="fake", max_wait=0.0)
    reply = asyncio.run(adapter.generate_turn("system", [AgentTurn.user("q")], []))

    assert reply.content == "Final answer."
    assert mock_client.models.generate_content.call_count == 2


class _PermissionDenied(Exception):
    code = 403


@patch("priorauth.models.gemini.genai.Client")
def test_generate_turn_error_carries_status(mock_client_cls):
    mock_client = MagicMock()
    mock_client.models.generate_content.side_effect = _PermissionDenied("API key not valid")
    mock_client_cls.return_value = mock_client

    adapter = GeminiAdapter(api_key="fake")
    with pytest.raises(AgentEngineError) as excinfo:
        asyncio.run(adapter.generate_turn("system", [AgentTurn.user("q")], []))

    assert excinfo.value.status_code == 403
    assert mock_client.models.generate_content.call_count == 1


@patch("priorauth.models.gemini.genai.Client")
def test_stream_turn_yields_chunks(mock_client_cls):
    async def _chunks():
        yield _response([_text_part("Prior auth ")], prompt_tokens=50, output_tokens=2)
        yield _response([_text_part("is required.")], prompt_tokens=50, output_tokens=5)

    mock_client = MagicMock()
    mock_client.aio.models.generate_content_stream = AsyncMock(return_value=_chunks())
    mock_client_cls.return_value = mock_client

    adapter = GeminiAdapter(api_key="fake")

    async def _collect():
        return [c async for c in adapter.stream_turn("system", [AgentTurn.user("q")], [])]

    chunks = asyncio.run(_collect())
    assert "".join(c.content for c in chunks) == "Prior auth is required."
    assert chunks[-1].output_tokens == 5


@patch("priorauth.models.gemini.genai.Client")
def test_stream_turn_wraps_errors(mock_client_cls):
    mock_client = MagicMock()
    mock_client.aio.models.generate_content_stream = AsyncMock(side_effect=RuntimeError("socket closed"))
    mock_client_cls.return_value = mock_client

    adapter = GeminiAdapter(api_key="fake")

    async def _collect():
        return [c async for c in adapter.stream_turn("system", [AgentTurn.user("q")], [])]

    with pytest.raises(AgentEngineError, match="socket closed"):
        asyncio.run(_collect())


# ---------------------------------------------------------------------------
# Wire translation
# ---------------------------------------------------------------------------


def test_history_to_contents_groups_observations():
    first = ToolCall(id="c1", name="ncd_coverage_search", arguments={"query": "CPAP"})
    second = ToolCall(id="c2", name="local_lcd_search", arguments={"query": "CPAP", "state": "Florida"})
    history = [
        AgentTurn.user("Is CPAP covered in Florida?"),
        AgentTurn.assistant("", [first, second]),
        AgentTurn.observation(first, "NCD 240.4"),
        AgentTurn.observation(second, "LCD L33718"),
        AgentTurn.assistant("Yes."),
    ]

    contents = history_to_contents(history)

    assert [c.role for c in contents] == ["user", "model", "user", "model"]
    assert [p.function_call.name for p in contents[1].parts] == ["ncd_coverage_search", "local_lcd_search"]
    responses = [p.function_response for p in contents[2].parts]
    assert [r.name for r in responses] == ["ncd_coverage_search", "local_lcd_search"]
    assert responses[1].response == {"result": "LCD L33718"}


def test_schema_from_model_nested_state():
    schema = schema_from_model(StateScopedQuery)

    assert schema.type == genai_types.Type.OBJECT
    assert set(schema.required) == {"query", "state"}
    state = schema.properties["state"]
    assert state.type == genai_types.Type.OBJECT
    assert state.properties["state_id"].nullable is True


def test_schema_from_model_optional_state():
    schema = schema_from_model(SearchQuery)
    assert schema.required == ["query"]
    assert schema.properties["state"].nullable is True
