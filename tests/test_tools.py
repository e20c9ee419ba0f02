"""
Tests for chat_orchestrator/core/tools.py
Tool detection, adapters over a mocked HTTP transport, and failure isolation.
"""

import asyncio
import json

import httpx
import pytest

from chat_orchestrator.core.tools import (
    ANALYZE_CSV,
    CODE_INTERPRETER,
    FETCH_WEBPAGE,
    PARSE_FILE,
    WEB_SEARCH,
    AnalyzeCsvTool,
    Tool,
    ToolContext,
    ToolOrchestrator,
)
from chat_orchestrator.models import FileAttachment, ToolConfig, ToolError

CSV_TEXT = "city,population,area\nOslo,700000,454.0\nBergen,285000,465.3\n"


class EchoTool(Tool):
    name = "echo"

    async def run(self, context):
        return {"echo": context.user_message}


class FailingTool(Tool):
    name = "broken"

    async def run(self, context):
        raise RuntimeError("upstream exploded")


class HangingTool(Tool):
    name = "hang"

    async def run(self, context):
        await asyncio.sleep(10)


def mock_transport(handler):
    return httpx.MockTransport(handler)


class TestDetection:
    """Test heuristic tool detection."""

    def test_search_keywords_trigger_web_search(self):
        assert ToolOrchestrator().detect("What's today's weather in Paris?") == [WEB_SEARCH]

    def test_plain_question_needs_no_tools(self):
        assert ToolOrchestrator().detect("Explain recursion to me") == []

    def test_url_without_search_fetches_page(self):
        assert ToolOrchestrator().detect("Summarise https://example.com/post") == [FETCH_WEBPAGE]

    def test_url_with_search_prefers_search(self):
        tools = ToolOrchestrator().detect("Find the latest on https://example.com/post")
        assert WEB_SEARCH in tools
        assert FETCH_WEBPAGE not in tools

    def test_csv_attachment_triggers_parse_and_analysis(self):
        files = [FileAttachment(name="sales.csv", type="text/csv", content=CSV_TEXT)]
        assert ToolOrchestrator().detect("what stands out?", files) == [PARSE_FILE, ANALYZE_CSV]

    def test_unsupported_attachment_is_ignored(self):
        files = [FileAttachment(name="archive.zip", type="application/zip")]
        assert ToolOrchestrator().detect("unpack this", files) == []

    def test_code_interpreter_requires_sandbox_key(self):
        message = "Please run this:\n```python\nprint(1)\n```"
        assert CODE_INTERPRETER not in ToolOrchestrator().detect(message)
        enabled = ToolOrchestrator(ToolConfig(e2b_api_key="e2b-key"))
        assert CODE_INTERPRETER in enabled.detect(message)

    @pytest.mark.parametrize("message", [
        "How should I pace myself to run a marathon?",
        "Can you execute this code for me?",
        "What does this do?\n```python\nprint(1)\n```",
    ])
    def test_code_interpreter_needs_fence_and_intent(self, message):
        enabled = ToolOrchestrator(ToolConfig(e2b_api_key="e2b-key"))
        assert CODE_INTERPRETER not in enabled.detect(message)


class TestExecution:
    """Test isolation and scheduling of tool runs."""

    async def test_failure_is_isolated(self):
        config = ToolConfig()
        orchestrator = ToolOrchestrator(config, tools=[EchoTool(config), FailingTool(config)])
        result = await orchestrator.execute(["echo", "broken"], ToolContext(user_message="hi"))

        assert result["echo"] == {"echo": "hi"}
        assert isinstance(result["broken"], ToolError)
        assert result["broken"].error == "upstream exploded"
        assert result["broken"].error_type == "RuntimeError"
        assert list(result.succeeded()) == ["echo"]

    async def test_unknown_and_duplicate_names(self):
        config = ToolConfig()
        orchestrator = ToolOrchestrator(config, tools=[EchoTool(config)])
        result = await orchestrator.execute(["echo", "nope", "echo"], ToolContext(user_message="x"))
        assert result.names() == ["echo"]
        assert "nope" not in result

    async def test_sequential_mode_gives_same_results(self):
        config = ToolConfig(concurrent=False)
        orchestrator = ToolOrchestrator(config, tools=[EchoTool(config), FailingTool(config)])
        result = await orchestrator.execute(["broken", "echo"], ToolContext(user_message="seq"))
        assert result.names() == ["broken", "echo"]
        assert result["echo"] == {"echo": "seq"}

    async def test_timeout_is_recorded(self):
        config = ToolConfig(timeout_seconds=0.05)
        orchestrator = ToolOrchestrator(config, tools=[HangingTool(config), EchoTool(config)])
        result = await orchestrator.execute(["hang", "echo"], ToolContext(user_message="t"))
        assert result["hang"].error_type == "TimeoutError"
        assert result["echo"] == {"echo": "t"}

    async def test_empty_selection(self):
        result = await ToolOrchestrator().execute([], ToolContext())
        assert len(result) == 0

    async def test_missing_search_key_becomes_tool_error(self):
        result = await ToolOrchestrator().execute([WEB_SEARCH], ToolContext(user_message="news"))
        assert isinstance(result[WEB_SEARCH], ToolError)
        assert "BRAVE_SEARCH_API_KEY" in result[WEB_SEARCH].error


class TestAdapters:
    """Test the HTTP-backed and local tool adapters."""

    async def test_web_search_maps_results(self):
        seen = {}

        def handler(request):
            seen["token"] = request.headers["X-Subscription-Token"]
            seen["query"] = request.url.params["q"]
            return httpx.Response(200, json={"web": {"results": [
                {"title": "Forecast", "url": "https://weather.example", "description": "Sunny", "extra": 1},
            ]}})

        orchestrator = ToolOrchestrator(ToolConfig(brave_api_key="brave-key"), transport=mock_transport(handler))
        result = await orchestrator.execute([WEB_SEARCH], ToolContext(user_message="weather in Paris"))

        assert seen == {"token": "brave-key", "query": "weather in Paris"}
        assert result[WEB_SEARCH] == {"results": [
            {"title": "Forecast", "url": "https://weather.example", "description": "Sunny"},
        ]}

    async def test_web_search_http_error_is_isolated(self):
        def handler(request):
            return httpx.Response(429, json={"error": "rate limited"})

        orchestrator = ToolOrchestrator(ToolConfig(brave_api_key="k"), transport=mock_transport(handler))
        result = await orchestrator.execute([WEB_SEARCH], ToolContext(user_message="news"))
        assert result[WEB_SEARCH].error_type == "HTTPStatusError"

    async def test_fetch_webpage_extracts_text(self):
        html = (
            "<html><head><title>Post</title><style>p{}</style></head>"
            "<body><script>track()</script><h1>Hello</h1>\n<p>world   again</p></body></html>"
        )

        def handler(request):
            return httpx.Response(200, text=html)

        orchestrator = ToolOrchestrator(transport=mock_transport(handler))
        context = ToolContext(user_message="Summarise https://example.com/post.")
        output = (await orchestrator.execute([FETCH_WEBPAGE], context))[FETCH_WEBPAGE]

        assert output["url"] == "https://example.com/post"
        assert output["title"] == "Post"
        assert output["text"] == "Hello world again"
        assert "track" not in output["text"]

    async def test_code_interpreter_posts_code(self):
        def handler(request):
            body = json.loads(request.content)
            assert request.headers["Authorization"] == "Bearer e2b-key"
            assert body["code"] == "print(1)\n"
            return httpx.Response(200, json={"stdout": "1\n", "stderr": "", "exit_code": 0})

        orchestrator = ToolOrchestrator(ToolConfig(e2b_api_key="e2b-key"), transport=mock_transport(handler))
        context = ToolContext(user_message="run this\n```python\nprint(1)\n```")
        output = (await orchestrator.execute([CODE_INTERPRETER], context))[CODE_INTERPRETER]
        assert output == {"output": "1\n", "stderr": "", "exitCode": 0}

    async def test_parse_file_reads_inline_text(self):
        files = [FileAttachment(name="notes.md", type="text/markdown", content="# Notes\nremember")]
        result = await ToolOrchestrator().execute([PARSE_FILE], ToolContext(files=files))
        assert result[PARSE_FILE]["text"] == "# Notes\nremember"
        assert result[PARSE_FILE]["name"] == "notes.md"

    async def test_parse_file_binary_format_is_tool_error(self):
        files = [FileAttachment(
            name="cv.docx",
            type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            data="data:application/octet-stream;base64,UEsDBA==",
        )]
        result = await ToolOrchestrator().execute([PARSE_FILE], ToolContext(files=files))
        assert result[PARSE_FILE].error_type == "UnsupportedFileTypeError"

    async def test_parse_file_uses_custom_extractor(self):
        async def extractor(attachment):
            return {"text": f"extracted {attachment.name}"}

        files = [FileAttachment(name="deck.pdf", type="application/pdf", data="abc")]
        orchestrator = ToolOrchestrator(extractor=extractor)
        result = await orchestrator.execute([PARSE_FILE], ToolContext(files=files))
        assert result[PARSE_FILE]["text"] == "extracted deck.pdf"


class TestCsvAnalysis:
    """Test CSV statistics."""

    def test_analyze_reports_columns_and_stats(self):
        analysis = AnalyzeCsvTool(ToolConfig()).analyze(CSV_TEXT)
        assert analysis["columns"] == ["city", "population", "area"]
        assert analysis["rowCount"] == 2
        assert analysis["preview"][0] == {"city": "Oslo", "population": 700000, "area": 454.0}
        assert analysis["stats"]["population"] == {"min": 285000, "max": 700000, "avg": 492500.0}
        assert "city" not in analysis["stats"]

    def test_preview_is_limited(self):
        rows = "\n".join(f"{i},{i * 2}" for i in range(30))
        analysis = AnalyzeCsvTool(ToolConfig(csv_preview_rows=5)).analyze("a,b\n" + rows)
        assert analysis["rowCount"] == 30
        assert len(analysis["preview"]) == 5

    async def test_base64_csv_attachment(self):
        files = [FileAttachment(name="data.csv", type="text/csv",
                                data="data:text/csv;base64,YSxiCjEsMgozLDQK")]
        result = await ToolOrchestrator().execute([ANALYZE_CSV], ToolContext(files=files))
        assert result[ANALYZE_CSV]["stats"]["a"] == {"min": 1, "max": 3, "avg": 2.0}
