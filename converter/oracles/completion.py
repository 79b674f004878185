# FILE: converter/oracles/completion.py
"""
Completion oracle: one structured JSON answer per call.

The pipeline only depends on the CompletionOracle protocol. The Anthropic
implementation forces a single tool call whose input_schema is the requested
output schema, so the answer arrives as already-parsed JSON. When the model
answers with text instead, the text is parsed as JSON (code fences stripped).

Truncated output (stop_reason == "max_tokens"), API/transport failures and
unparseable text all raise CompletionError.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from converter.config import get_stage_config
from converter.errors import CompletionError

logger = logging.getLogger(__name__)

RESULT_TOOL_NAME = "emit_result"


@dataclass
class CompletionUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "cache_write_tokens": self.cache_write_tokens,
        }


@dataclass
class CompletionResult:
    data: Dict[str, Any]
    raw_text: str = ""
    usage: CompletionUsage = field(default_factory=CompletionUsage)
    model: str = ""
    duration_ms: int = 0


class CompletionOracle(Protocol):
    async def complete(
        self,
        system_prompt: str,
        output_schema: Dict[str, Any],
        user_message: str,
        *,
        stage: str,
    ) -> CompletionResult:
        ...


def parse_json_payload(text: str, stage: str = "") -> Dict[str, Any]:
    """Parse a JSON object out of model text, tolerating ```json fences."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    cleaned = cleaned.strip()
    if not cleaned:
        raise CompletionError("Empty response", stage=stage, raw_text=text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise CompletionError(f"Malformed JSON response: {exc}", stage=stage, raw_text=text) from exc
    if not isinstance(data, dict):
        raise CompletionError("Response JSON is not an object", stage=stage, raw_text=text)
    return data


class AnthropicCompletionOracle:
    """CompletionOracle backed by anthropic.AsyncAnthropic."""

    def __init__(self, api_key: Optional[str] = None, client: Any = None):
        if client is None:
            import anthropic

            client = anthropic.AsyncAnthropic(api_key=api_key or os.getenv("ANTHROPIC_API_KEY"))
        self._client = client

    async def complete(
        self,
        system_prompt: str,
        output_schema: Dict[str, Any],
        user_message: str,
        *,
        stage: str,
    ) -> CompletionResult:
        import anthropic

        cfg = get_stage_config(stage)
        started = time.monotonic()

        tool = {
            "name": RESULT_TOOL_NAME,
            "description": "Return the complete result as structured JSON.",
            "input_schema": output_schema,
        }

        try:
            resp = await self._client.messages.create(
                model=cfg.model,
                max_tokens=cfg.max_output_tokens,
                system=[{"type": "text", "text": system_prompt, "cache_control": {"type": "ephemeral"}}],
                messages=[{"role": "user", "content": user_message}],
                tools=[tool],
                tool_choice={"type": "tool", "name": RESULT_TOOL_NAME},
                timeout=cfg.timeout_seconds,
            )
        except anthropic.APIError as exc:
            logger.warning("[completion] %s API error: %s", cfg.stage_name, exc)
            raise CompletionError(f"Anthropic API error: {exc}", stage=stage) from exc

        duration_ms = int((time.monotonic() - started) * 1000)
        usage = _usage_from_response(resp)
        blocks = list(getattr(resp, "content", None) or [])
        raw_text = "".join(getattr(b, "text", "") for b in blocks if getattr(b, "type", None) == "text")

        if getattr(resp, "stop_reason", None) == "max_tokens":
            raise CompletionError(
                f"Response truncated at {cfg.max_output_tokens} tokens",
                stage=stage,
                raw_text=raw_text,
            )

        tool_uses = [b for b in blocks if getattr(b, "type", None) == "tool_use"]
        if tool_uses:
            data = getattr(tool_uses[0], "input", None)
            if not isinstance(data, dict):
                raise CompletionError("Tool call input is not an object", stage=stage)
            raw_text = raw_text or json.dumps(data)
        else:
            data = parse_json_payload(raw_text, stage=stage)

        logger.info(
            "[completion] %s model=%s in=%d out=%d %dms",
            cfg.stage_name,
            cfg.model,
            usage.input_tokens,
            usage.output_tokens,
            duration_ms,
        )

        return CompletionResult(
            data=data,
            raw_text=raw_text,
            usage=usage,
            model=getattr(resp, "model", None) or cfg.model,
            duration_ms=duration_ms,
        )


def _usage_from_response(resp: Any) -> CompletionUsage:
    usage = getattr(resp, "usage", None)
    if usage is None:
        return CompletionUsage()
    return CompletionUsage(
        input_tokens=int(getattr(usage, "input_tokens", 0) or 0),
        output_tokens=int(getattr(usage, "output_tokens", 0) or 0),
        cache_read_tokens=int(getattr(usage, "cache_read_input_tokens", 0) or 0),
        cache_write_tokens=int(getattr(usage, "cache_creation_input_tokens", 0) or 0),
    )
