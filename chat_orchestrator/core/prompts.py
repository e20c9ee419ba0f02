"""
System prompt assembly.
"""

import json
from typing import Dict, Optional, Sequence

from ..models import OperatingMode, RetrievedChunk, TaskType, ToolResult

PRIMARY_PROMPT = """You are a helpful AI assistant. You have access to:

- Web search (when you need current information)
- Code execution (Python sandbox)
- File parsing (PDFs, CSVs, images)
- Long context memory
- User's uploaded documents

When users ask for current info, search results are provided to you.
When users upload files, their extracted content is provided to you.

Be conversational, helpful, and concise."""

CODING_PROMPT = """You are an expert software engineer pairing with the user.

- Read the existing code before proposing changes
- Produce complete, runnable code with imports and error handling
- Explain trade-offs briefly and point out risks
- Prefer small, focused diffs over rewrites"""

STUDY_PROMPT = """You are a patient learning coach.

- Check what the learner already knows before explaining
- Break concepts into small steps and use concrete examples
- Ask a short question at the end to check understanding
- Encourage the learner to explain ideas back in their own words"""

MODE_PROMPTS: Dict[OperatingMode, str] = {
    OperatingMode.PRIMARY: PRIMARY_PROMPT,
    OperatingMode.CODING: CODING_PROMPT,
    OperatingMode.STUDY: STUDY_PROMPT,
}

TASK_INSTRUCTIONS: Dict[TaskType, str] = {
    TaskType.DEEP_RESEARCH: (
        "CRITICAL FOR DEEP RESEARCH:\n"
        "- Conduct comprehensive, thorough research\n"
        "- Use multiple sources and perspectives\n"
        "- Provide detailed analysis with citations\n"
        "- Structure the response as a comprehensive report"
    ),
    TaskType.CODE_GENERATION: (
        "CRITICAL FOR CODE GENERATION:\n"
        "- ALWAYS make code immediately runnable\n"
        "- Add all imports, dependencies, error handling"
    ),
    TaskType.CODE_EDITING: (
        "CRITICAL FOR CODE EDITING:\n"
        "- Understand the existing code structure\n"
        "- Make minimal, focused changes\n"
        "- Preserve existing functionality"
    ),
    TaskType.WEB_SEARCH: (
        "CRITICAL FOR WEB SEARCH:\n"
        "- Use the search results provided\n"
        "- Cite sources when referencing information\n"
        "- Distinguish between facts and opinions"
    ),
    TaskType.VISION: "Describe and analyse the attached images carefully before answering.",
}


def build_system_prompt(task_type: TaskType, mode: OperatingMode = OperatingMode.PRIMARY,
                        chunks: Optional[Sequence[RetrievedChunk]] = None,
                        tool_result: Optional[ToolResult] = None,
                        personal_info_context: str = "", memory_context: str = "",
                        summary: Optional[str] = None) -> str:
    """
    Build the single system message for a request.

    Args:
        task_type: Classified task type
        mode: Operating mode selected by the client
        chunks: Retrieved document chunks
        tool_result: Outputs of the tools that ran
        personal_info_context: Opaque personalization text appended as-is
        memory_context: Opaque memory text appended as-is
        summary: Synopsis of conversation history that did not fit the budget

    Returns:
        System prompt text
    """
    sections = [MODE_PROMPTS.get(mode, PRIMARY_PROMPT)]

    instructions = TASK_INSTRUCTIONS.get(task_type)
    if instructions:
        sections.append(instructions)

    if summary:
        sections.append(summary)

    if chunks:
        lines = ["Relevant context from uploaded documents:"]
        for index, chunk in enumerate(chunks, start=1):
            lines.append(f"\n[Document {index}: {chunk.document_name}]\n{chunk.text}")
        sections.append("\n".join(lines))

    if tool_result is not None and len(tool_result):
        sections.append("[Tool Results]:\n" + json.dumps(tool_result.to_dict(), indent=2, default=str))

    prompt = "\n\n".join(sections)
    if personal_info_context:
        prompt += personal_info_context
    if memory_context:
        prompt += memory_context
    return prompt
