"""LLM-backed implementations of the code generation, verification and suggestion ports."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Literal

from langchain_core.messages import HumanMessage
from pydantic import BaseModel, Field

from .llm import StructuredOutputAdapter, SupportsInvoke, get_chat_model, get_structured_chat_model
from .models import GenerationError, GenerationResult, Module, ModuleContext, Suggestion, Verdict
from .parsing import parse_file_blocks, parse_task_list, parse_verdict
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

FILE_FORMAT_RULES = (
    "You are a code generator. You MUST output all files using this EXACT format:\n\n"
    '---FILE-START path="src/Example.tsx"---\n'
    "// file content here\n"
    "---FILE-END---\n\n"
    "Every response MUST include at least one file in this format. "
    "Use React + TypeScript + Tailwind CSS."
)

TASK_FORMAT_RULES = (
    "Respond with tasks in this format:\n"
    "---TASKS-START---\n"
    "1. Task description here\n"
    "2. Another task\n"
    "3. Third task\n"
    "---TASKS-END---"
)


def content_to_text(content: Any) -> str:
    """Flatten string, list-of-parts, or dict message content into plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for item in content:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, dict):
                text_value = item.get("text")
                if isinstance(text_value, str):
                    chunks.append(text_value)
                elif item.get("content") is not None:
                    chunks.append(content_to_text(item["content"]))
            else:
                chunks.append(str(item))
        return "\n".join(chunk for chunk in chunks if chunk.strip())
    if isinstance(content, dict):
        if "content" in content:
            return content_to_text(content["content"])
        return json.dumps(content, sort_keys=True)
    return str(content)


def render_context(context: ModuleContext) -> str:
    features = ", ".join(context.features) or "None specified"
    lines = [
        f"Project: {context.project_name}",
        f"Module: {context.module_name}",
        f"Description: {context.module_description}",
        f"Features: {features}",
    ]
    if context.existing_files:
        lines.append(f"Existing files: {', '.join(context.existing_files)}")
    return "\n".join(lines)


class LLMCodeGenerator:
    """Code generation over a chat model speaking the FILE-START/FILE-END format."""

    def __init__(self, model: SupportsInvoke) -> None:
        self.model = model

    @classmethod
    def from_settings(cls, settings: RuntimeSettings, *, project_dir: Path | None = None) -> "LLMCodeGenerator":
        return cls(get_chat_model(model_name=settings.model_codegen, project_dir=project_dir))

    def _complete(self, prompt: str) -> str:
        response = self.model.invoke([HumanMessage(content=prompt)])
        return content_to_text(getattr(response, "content", response))

    def _files_for(self, prompt: str) -> GenerationResult:
        try:
            text = self._complete(prompt)
        except Exception as exc:  # noqa: BLE001
            logger.warning("code generation request failed: %s", exc)
            return GenerationError(reason=f"code generation request failed: {exc}")
        return parse_file_blocks(text)

    def generate(self, instruction: str, context: ModuleContext) -> GenerationResult:
        prompt = (
            f"{FILE_FORMAT_RULES}\n\n"
            f"Execute this task: {instruction}\n\n"
            f"{render_context(context)}\n\n"
            "Generate the necessary files."
        )
        return self._files_for(prompt)

    def generate_tasks(self, context: ModuleContext) -> list[str]:
        if context.is_core:
            prompt = (
                f'Generate 3-4 tasks to set up the core project structure for "{context.project_name}":\n'
                "- Set up Vite + React + TypeScript + Tailwind\n"
                "- Create basic layout and navigation structure\n"
                "- Set up routing if needed\n\n"
                f"{TASK_FORMAT_RULES}"
            )
        else:
            prompt = (
                f'Generate 3-4 tasks to build the "{context.module_name}" feature:\n'
                f"Description: {context.module_description}\n\n"
                f"Project context: {context.project_name} - {context.project_description}\n\n"
                "The core setup is already done. Focus only on this specific feature.\n\n"
                f"{TASK_FORMAT_RULES}"
            )
        return parse_task_list(self._complete(prompt))

    def fix(self, prompt: str, context: ModuleContext) -> GenerationResult:
        return self._files_for(f"{FILE_FORMAT_RULES}\n\n{prompt}\n\n{render_context(context)}")


class LLMVerifier:
    """Ask a (vision-capable) chat model whether a task looks complete."""

    def __init__(self, model: SupportsInvoke) -> None:
        self.model = model

    @classmethod
    def from_settings(cls, settings: RuntimeSettings, *, project_dir: Path | None = None) -> "LLMVerifier":
        return cls(get_chat_model(model_name=settings.model_verifier, project_dir=project_dir))

    def verify(self, instruction: str, files_written: list[str], evidence: str | None = None) -> Verdict:
        text = (
            f'Verify this task is complete: "{instruction}"\n\n'
            f"Files created: {', '.join(files_written)}\n\n"
            + (
                "I have attached a screenshot of the current state."
                if evidence
                else "No screenshot available."
            )
            + "\n\nReply with just WORKING if the task appears complete, "
            "or BROKEN if something seems missing or broken."
        )
        parts: list[dict[str, Any]] = [{"type": "text", "text": text}]
        if evidence:
            parts.append({"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{evidence}"}})
        response = self.model.invoke([HumanMessage(content=parts)])
        return parse_verdict(content_to_text(getattr(response, "content", response)))


class SuggestionDraft(BaseModel):
    category: str = Field(description="Short category such as Polish, Accessibility, Performance")
    title: str
    description: str
    severity: Literal["high", "medium", "low"]


class SuggestionBatch(BaseModel):
    suggestions: list[SuggestionDraft]


class LLMSuggestionAdvisor:
    """Structured-output advisor proposing ranked improvements for a finished module."""

    def __init__(self, adapter: StructuredOutputAdapter[SuggestionBatch], *, count: int = 3) -> None:
        self.adapter = adapter
        self.count = count

    @classmethod
    def from_settings(cls, settings: RuntimeSettings, *, project_dir: Path | None = None) -> "LLMSuggestionAdvisor":
        adapter = get_structured_chat_model(
            model_name=settings.model_codegen,
            schema=SuggestionBatch,
            temperature=0.2,
            project_dir=project_dir,
        )
        return cls(adapter, count=settings.suggestion_count)

    def suggest(self, module: Module, context: ModuleContext) -> list[Suggestion]:
        if self.count == 0:
            return []
        prompt = (
            f"Propose up to {self.count} concrete improvements for the finished module below, "
            "most valuable first.\n\n"
            f"{render_context(context)}\n"
            f"Files: {', '.join(module.files) or 'none'}"
        )
        batch = self.adapter.invoke(prompt)
        return [
            Suggestion(
                id=f"{module.id}-suggestion-{index}",
                rank=index + 1,
                category=draft.category or "Polish",
                title=draft.title or "Improvement",
                description=draft.description,
                severity=draft.severity,
            )
            for index, draft in enumerate(batch.suggestions[: self.count])
        ]
