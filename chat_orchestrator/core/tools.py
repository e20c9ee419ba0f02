"""
Tool Orchestrator: detects which auxiliary tools a request needs and runs
them with per-tool error isolation.
"""

import asyncio
import base64
import csv
import io
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
from bs4 import BeautifulSoup

from ..models import FileAttachment, ToolConfig, ToolError, ToolResult
from ..utils import get_logger
from ..utils.error_handling import ToolExecutionError, UnsupportedFileTypeError

WEB_SEARCH = "web_search"
PARSE_FILE = "parse_file"
ANALYZE_CSV = "analyze_csv"
CODE_INTERPRETER = "code_interpreter"
FETCH_WEBPAGE = "fetch_webpage"

SEARCH_TRIGGER_PATTERN = re.compile(
    r"\b(?:search|look up|find|latest|current|news|today|weather|price|stock|trending|happening now)\b",
    re.IGNORECASE,
)
EXECUTION_INTENT_PATTERN = re.compile(r"\b(?:run|execute this code|run code)\b", re.IGNORECASE)
PYTHON_BLOCK_PATTERN = re.compile(r"```python\n([\s\S]*?)```")
URL_PATTERN = re.compile(r"https?://[^\s]+", re.IGNORECASE)

SUPPORTED_FILE_TYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/vnd.ms-powerpoint",
    "text/plain",
    "text/markdown",
    "text/csv",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
    "application/json",
}
SUPPORTED_EXTENSIONS = (".pdf", ".docx", ".doc", ".pptx", ".ppt", ".txt", ".md", ".csv", ".xlsx", ".xls", ".json")
TEXT_FILE_TYPES = {"text/plain", "text/markdown", "text/csv"}
TEXT_EXTENSIONS = (".txt", ".md", ".csv")


def is_supported_file(attachment: FileAttachment) -> bool:
    name = (attachment.name or "").lower()
    return (
        attachment.type in SUPPORTED_FILE_TYPES
        or name.endswith(SUPPORTED_EXTENSIONS)
        or attachment.is_image
    )


def is_csv_file(attachment: FileAttachment) -> bool:
    return attachment.type == "text/csv" or (attachment.name or "").lower().endswith(".csv")


def decode_payload(payload: str) -> bytes:
    """Decode a data URL or bare base64 payload; plain text is returned encoded."""
    if "base64," in payload:
        return base64.b64decode(payload.split("base64,", 1)[1])
    return payload.encode("utf-8")


@dataclass
class ToolContext:
    """Inputs available to every tool for one request."""
    user_message: str = ""
    files: List[FileAttachment] = field(default_factory=list)
    code: Optional[str] = None


FileExtractor = Callable[[FileAttachment], Awaitable[Dict[str, Any]]]


class BasicFileExtractor:
    """
    Text extraction for plain-text formats and images.

    Binary office and PDF formats need a real extractor; those raise
    UnsupportedFileTypeError so the failure is recorded against parse_file.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 20.0):
        self.transport = transport
        self.timeout = timeout

    async def __call__(self, attachment: FileAttachment) -> Dict[str, Any]:
        raw = await self._load(attachment)
        name = (attachment.name or "").lower()

        if attachment.is_image:
            return {
                "text": "",
                "metadata": {"type": attachment.type, "size": len(raw)},
                "note": "Image attached; its content is passed to the model directly.",
            }
        if attachment.type == "application/json" or name.endswith(".json"):
            data = json.loads(raw.decode("utf-8"))
            return {"text": json.dumps(data, indent=2), "metadata": {"type": "application/json", "size": len(raw)}}
        if attachment.type in TEXT_FILE_TYPES or name.endswith(TEXT_EXTENSIONS):
            return {"text": raw.decode("utf-8", errors="replace"), "metadata": {"type": attachment.type, "size": len(raw)}}

        raise UnsupportedFileTypeError(f"Unsupported file type: {attachment.type}", file_type=attachment.type)

    async def _load(self, attachment: FileAttachment) -> bytes:
        if attachment.content is not None:
            return attachment.content.encode("utf-8")
        if attachment.data:
            return decode_payload(attachment.data)
        if attachment.url:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(attachment.url)
                response.raise_for_status()
                return response.content
        if attachment.path:
            return Path(attachment.path).read_bytes()
        raise ToolExecutionError(f"File {attachment.name} has no data", tool_name=PARSE_FILE)


class Tool(ABC):
    """An external-I/O adapter invoked by the orchestrator."""

    name: str = ""
    description: str = ""

    def __init__(self, config: ToolConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.transport = transport

    def client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout_seconds, transport=self.transport, **kwargs)

    @abstractmethod
    async def run(self, context: ToolContext) -> Any:
        """Execute the tool for one request."""


class WebSearchTool(Tool):
    name = WEB_SEARCH
    description = "Search the web for current information via the Brave Search API"

    async def run(self, context: ToolContext) -> Dict[str, Any]:
        if not self.config.brave_api_key:
            raise ToolExecutionError("BRAVE_SEARCH_API_KEY not configured. Web search is disabled.", tool_name=self.name)

        async with self.client() as client:
            response = await client.get(
                self.config.brave_search_url,
                params={"q": context.user_message, "count": self.config.search_results},
                headers={"Accept": "application/json", "X-Subscription-Token": self.config.brave_api_key},
            )
            response.raise_for_status()
            data = response.json()

        results = (data.get("web") or {}).get("results") or []
        return {
            "results": [
                {"title": r.get("title", ""), "url": r.get("url", ""), "description": r.get("description", "")}
                for r in results
            ]
        }


class ParseFileTool(Tool):
    name = PARSE_FILE
    description = "Extract text from attached files (PDF, DOCX, PPTX, TXT, MD, CSV, XLSX, JSON, images)"

    def __init__(self, config: ToolConfig, transport: Optional[httpx.AsyncBaseTransport] = None,
                 extractor: Optional[FileExtractor] = None):
        super().__init__(config, transport)
        self.extractor = extractor or BasicFileExtractor(transport=transport, timeout=config.timeout_seconds)

    async def run(self, context: ToolContext) -> Dict[str, Any]:
        attachment = next((f for f in context.files if is_supported_file(f)), None)
        if attachment is None:
            raise ToolExecutionError("No supported file attached", tool_name=self.name)
        result = dict(await self.extractor(attachment))
        result.setdefault("name", attachment.name)
        return result


class AnalyzeCsvTool(Tool):
    name = ANALYZE_CSV
    description = "Parse CSV data and report columns, row count, a preview and numeric statistics"

    async def run(self, context: ToolContext) -> Dict[str, Any]:
        attachment = next((f for f in context.files if is_csv_file(f)), None)
        if attachment is None:
            raise ToolExecutionError("No CSV data attached", tool_name=self.name)
        if attachment.content is not None:
            text = attachment.content
        elif attachment.data:
            text = decode_payload(attachment.data).decode("utf-8", errors="replace")
        else:
            raise ToolExecutionError(f"CSV file {attachment.name} has no inline data", tool_name=self.name)
        return self.analyze(text)

    def analyze(self, text: str) -> Dict[str, Any]:
        reader = csv.DictReader(io.StringIO(text))
        rows = [
            {key: self._coerce(value) for key, value in row.items()}
            for row in reader
            if any((value or "").strip() for value in row.values() if isinstance(value, str))
        ]
        columns = list(reader.fieldnames or [])

        stats: Dict[str, Dict[str, float]] = {}
        for column in columns:
            values = [row[column] for row in rows if isinstance(row.get(column), (int, float))]
            if values:
                stats[column] = {
                    "min": min(values),
                    "max": max(values),
                    "avg": sum(values) / len(values),
                }

        return {
            "columns": columns,
            "rowCount": len(rows),
            "preview": rows[:self.config.csv_preview_rows],
            "stats": stats,
        }

    @staticmethod
    def _coerce(value: Any) -> Any:
        if not isinstance(value, str):
            return value
        stripped = value.strip()
        try:
            return int(stripped)
        except ValueError:
            pass
        try:
            return float(stripped)
        except ValueError:
            return value


class CodeInterpreterTool(Tool):
    name = CODE_INTERPRETER
    description = "Execute Python code in an E2B sandbox"

    async def run(self, context: ToolContext) -> Dict[str, Any]:
        if not self.config.e2b_api_key:
            raise ToolExecutionError("E2B_API_KEY not configured. Code execution requires E2B API.", tool_name=self.name)

        code = context.code
        if code is None:
            match = PYTHON_BLOCK_PATTERN.search(context.user_message)
            code = match.group(1) if match else ""
        if not code.strip():
            raise ToolExecutionError("No Python code found to execute", tool_name=self.name)

        async with self.client() as client:
            response = await client.post(
                self.config.e2b_url,
                json={"language": "python", "code": code},
                headers={"Authorization": f"Bearer {self.config.e2b_api_key}"},
            )
            response.raise_for_status()
            result = response.json()

        return {
            "output": result.get("stdout", ""),
            "stderr": result.get("stderr", ""),
            "exitCode": result.get("exit_code"),
        }


class FetchWebpageTool(Tool):
    name = FETCH_WEBPAGE
    description = "Fetch a webpage and extract its readable text"

    async def run(self, context: ToolContext) -> Dict[str, Any]:
        match = URL_PATTERN.search(context.user_message)
        if not match:
            raise ToolExecutionError("No URL found in message", tool_name=self.name)
        url = match.group(0).rstrip(".,;:!?)\"'")

        async with self.client(follow_redirects=True) as client:
            response = await client.get(url, headers={"User-Agent": self.config.user_agent})
            response.raise_for_status()
            html = response.text

        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style"]):
            tag.decompose()
        body = soup.body or soup
        text = " ".join(body.get_text(separator=" ").split())

        return {
            "url": url,
            "text": text[:self.config.fetch_max_chars],
            "length": len(text),
            "title": soup.title.get_text(strip=True) if soup.title else "",
        }


class ToolOrchestrator:
    """
    Detects and executes auxiliary tools.

    Detection is a set of independent heuristic trigger rules. Execution runs
    each detected tool once, concurrently by default, and records a failure as
    a ToolError in that tool's slot without affecting the others.
    """

    def __init__(self, config: Optional[ToolConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 extractor: Optional[FileExtractor] = None,
                 tools: Optional[Sequence[Tool]] = None):
        self.config = config or ToolConfig()
        self.logger = get_logger(__name__)
        if tools is None:
            tools = [
                WebSearchTool(self.config, transport),
                ParseFileTool(self.config, transport, extractor),
                AnalyzeCsvTool(self.config, transport),
                CodeInterpreterTool(self.config, transport),
                FetchWebpageTool(self.config, transport),
            ]
        self.tools: Dict[str, Tool] = {tool.name: tool for tool in tools}

    @property
    def code_execution_enabled(self) -> bool:
        return bool(self.config.e2b_api_key)

    def detect(self, message: str, files: Optional[Sequence[FileAttachment]] = None) -> List[str]:
        """
        Decide which tools a request needs.

        Args:
            message: Last user message text
            files: Attached files

        Returns:
            Ordered tool names, without duplicates
        """
        message = message or ""
        files = list(files or [])
        required: List[str] = []

        if SEARCH_TRIGGER_PATTERN.search(message):
            required.append(WEB_SEARCH)

        if any(is_supported_file(f) for f in files):
            required.append(PARSE_FILE)

        if any(is_csv_file(f) for f in files) or ".csv" in message.lower():
            required.append(ANALYZE_CSV)

        wants_execution = "```python" in message and bool(EXECUTION_INTENT_PATTERN.search(message))
        if wants_execution and self.code_execution_enabled:
            required.append(CODE_INTERPRETER)

        if URL_PATTERN.search(message) and WEB_SEARCH not in required:
            required.append(FETCH_WEBPAGE)

        return required

    async def execute(self, tool_names: Sequence[str], context: ToolContext) -> ToolResult:
        """
        Run the named tools.

        Args:
            tool_names: Tools to run; unknown names are skipped
            context: Request inputs shared by the tools

        Returns:
            ToolResult holding an output or a ToolError for every tool that ran
        """
        selected = []
        for name in dict.fromkeys(tool_names):
            if name in self.tools:
                selected.append(name)
            else:
                self.logger.warning(f"Unknown tool {name} skipped")

        result = ToolResult()
        if not selected:
            return result

        if self.config.concurrent:
            outputs = await asyncio.gather(*(self._run_tool(name, context) for name in selected))
        else:
            outputs = [await self._run_tool(name, context) for name in selected]

        for name, output in zip(selected, outputs):
            result[name] = output
        return result

    async def _run_tool(self, name: str, context: ToolContext) -> Any:
        try:
            return await asyncio.wait_for(self.tools[name].run(context), timeout=self.config.timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.warning(f"Tool {name} timed out after {self.config.timeout_seconds}s")
            return ToolError(f"Tool {name} timed out after {self.config.timeout_seconds}s", "TimeoutError")
        except Exception as e:
            self.logger.warning(f"Tool {name} failed: {e}")
            return ToolError(str(e), type(e).__name__)
