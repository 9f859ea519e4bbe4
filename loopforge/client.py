"""
Text Generation Client
======================

The loop's only suspend point: one prompt in, a stream of text chunks out.

``ClaudeTextGenerator`` opens a fresh Claude SDK client for every call, so
no conversation carries over between iterations. ``collect_response`` drains
a generator under a hard timeout and turns every failure into a
``TransportError``.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Optional, Protocol

from claude_code_sdk import ClaudeCodeOptions, ClaudeSDKClient

from loopforge.exceptions import TransportError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an autonomous software engineer working one task at a time. "
    "Each task starts from a clean context; everything you need is in the prompt."
)
CHARS_PER_TOKEN = 4


@dataclass
class GenerationOptions:
    model: str
    allowed_capabilities: list[str] = field(default_factory=list)
    timeout: float = 600.0
    cwd: Optional[Path] = None
    max_turns: Optional[int] = None


@dataclass
class GenerationResult:
    text: str
    tokens_used: int
    time_ms: int


class TextGenerator(Protocol):
    """Anything that can turn a prompt into a stream of text chunks."""

    def generate(self, prompt: str, options: GenerationOptions) -> AsyncIterator[str]:
        ...


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _usage_tokens(usage) -> int:
    """Input + output tokens from an SDK usage payload (dict or object)."""
    if isinstance(usage, dict):
        return int(usage.get("input_tokens", 0) or 0) + int(usage.get("output_tokens", 0) or 0)
    return int(getattr(usage, "input_tokens", 0) or 0) + int(getattr(usage, "output_tokens", 0) or 0)


class ClaudeTextGenerator:
    """Text generation backed by the Claude Code SDK."""

    def __init__(self, system_prompt: str = SYSTEM_PROMPT):
        self.system_prompt = system_prompt
        self.last_usage: Optional[int] = None

    def _create_client(self, options: GenerationOptions) -> ClaudeSDKClient:
        return ClaudeSDKClient(
            options=ClaudeCodeOptions(
                model=options.model,
                system_prompt=self.system_prompt,
                allowed_tools=list(options.allowed_capabilities),
                max_turns=options.max_turns,
                cwd=str(Path(options.cwd).resolve()) if options.cwd else None,
            )
        )

    async def generate(self, prompt: str, options: GenerationOptions) -> AsyncIterator[str]:
        self.last_usage = None
        client = self._create_client(options)

        async with client:
            await client.query(prompt)

            async for msg in client.receive_response():
                msg_type = type(msg).__name__

                usage = getattr(msg, "usage", None)
                if usage:
                    tokens = _usage_tokens(usage)
                    if tokens > 0:
                        self.last_usage = tokens

                if msg_type == "AssistantMessage" and hasattr(msg, "content"):
                    for block in msg.content:
                        if type(block).__name__ == "TextBlock" and hasattr(block, "text"):
                            yield block.text

                elif msg_type == "ResultMessage" and getattr(msg, "is_error", False):
                    raise TransportError(f"Generation ended with an error: {getattr(msg, 'subtype', 'unknown')}")


async def collect_response(
    generator: TextGenerator,
    prompt: str,
    options: GenerationOptions,
) -> GenerationResult:
    """
    Drain the generator to completion within ``options.timeout`` seconds.

    Raises:
        TransportError: on timeout (``timed_out=True``) or any failure of the call.
    """
    chunks: list[str] = []
    start = time.monotonic()

    async def _consume() -> None:
        async for chunk in generator.generate(prompt, options):
            chunks.append(chunk)

    try:
        await asyncio.wait_for(_consume(), timeout=options.timeout)
    except asyncio.TimeoutError as e:
        logger.warning("Generation timed out after %ss", options.timeout)
        raise TransportError("timeout", timed_out=True) from e
    except TransportError:
        raise
    except Exception as e:
        raise TransportError(str(e) or type(e).__name__) from e

    text = "".join(chunks)
    elapsed = int((time.monotonic() - start) * 1000)

    tokens = getattr(generator, "last_usage", None)
    if not tokens:
        tokens = estimate_tokens(prompt) + estimate_tokens(text)

    return GenerationResult(text=text, tokens_used=tokens, time_ms=elapsed)
