from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, Protocol, TypeVar

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_DEFAULT_TIMEOUT: int = 120
_DEFAULT_MAX_RETRIES: int = 3


class SupportsInvoke(Protocol):
    def invoke(self, input: Any) -> Any:  # noqa: ANN401
        ...


@dataclass(slots=True)
class StructuredOutputAdapter(Generic[ModelT]):
    """Invoke a schema-bound runnable and validate what comes back."""

    schema: type[ModelT]
    runnable: SupportsInvoke

    def invoke(self, prompt: str) -> ModelT:
        """Raises RuntimeError if the model returns unparseable or invalid output."""
        raw_output = self.runnable.invoke(prompt)
        return normalize_structured_output(raw_output=raw_output, schema=self.schema)


def ensure_openai_api_key(project_dir: Path | None = None) -> str:
    """Load OPENAI_API_KEY from the environment or a project ``.env`` file.

    Raises:
        RuntimeError: If the key is unavailable after all sources are checked.
    """
    root = project_dir if project_dir is not None else Path.cwd()
    env_path = root / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    key = os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        raise RuntimeError("OPENAI_API_KEY is required for code generation and verification")
    return key


def get_chat_model(
    *,
    model_name: str,
    temperature: float = 0.0,
    timeout: int = _DEFAULT_TIMEOUT,
    max_retries: int = _DEFAULT_MAX_RETRIES,
    project_dir: Path | None = None,
) -> ChatOpenAI:
    """Construct a ChatOpenAI client with a validated API key.

    Transport-level retries belong to the client; task-level retries are the
    engine's and are counted separately.
    """
    if not model_name or not model_name.strip():
        raise ValueError("model_name must be a non-empty string")
    ensure_openai_api_key(project_dir=project_dir)
    return ChatOpenAI(
        model=model_name,
        temperature=temperature,
        timeout=timeout,
        max_retries=max_retries,
    )


def _unwrap_envelope(raw_output: Any, schema_name: str) -> Any:
    """Return the ``parsed`` member of an ``include_raw`` reply, or the reply itself."""
    if not isinstance(raw_output, dict) or "parsed" not in raw_output or "parsing_error" not in raw_output:
        return raw_output
    error = raw_output["parsing_error"]
    if error is not None:
        raise RuntimeError(f"{schema_name}: model reply could not be parsed ({error!r})") from error
    if raw_output["parsed"] is None:
        raise RuntimeError(f"{schema_name}: model reply carried nothing to parse")
    return raw_output["parsed"]


def normalize_structured_output(*, raw_output: Any, schema: type[ModelT]) -> ModelT:
    """Turn whatever the structured runnable returned into a validated ``schema`` instance.

    Raises:
        RuntimeError: If the reply is of an unsupported type or fails validation.
    """
    payload = _unwrap_envelope(raw_output, schema.__name__)
    if isinstance(payload, schema):
        return payload
    if not isinstance(payload, (BaseModel, dict)):
        raise RuntimeError(f"{schema.__name__}: unsupported payload type {type(payload).__name__}")
    data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise RuntimeError(f"{schema.__name__}: validation failed: {exc}") from exc


def get_structured_chat_model(
    *,
    model_name: str,
    schema: type[ModelT],
    temperature: float = 0.0,
    project_dir: Path | None = None,
) -> StructuredOutputAdapter[ModelT]:
    """Bind ``schema`` to a chat model with function-calling structured output."""
    model = get_chat_model(model_name=model_name, temperature=temperature, project_dir=project_dir)
    return StructuredOutputAdapter(
        schema=schema,
        runnable=model.with_structured_output(schema, method="function_calling", strict=True),
    )
