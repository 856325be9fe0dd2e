"""OpenAI-compatible chat client that turns an instruction into operation text.

DeepSeek is the default endpoint; any provider implementing the Chat
Completions API works through ``base_url``. Only the current instruction and
a summary of the workbook are sent; there is no conversation history.
"""

from __future__ import annotations

from typing import Protocol

import openai

from xlagent.config import Settings
from xlagent.contracts.common import ClientError

SYSTEM_PROMPT = """\
You are an assistant that edits Excel workbooks. You never answer in prose.
Reply only with operations, one per line, using exactly this grammar:

SetCell      <sheet> <A1> = <value>
SetRange     <sheet> <A1[:B2]> = <v>, <v>; <v>, <v>
InsertRow    <sheet> <index> [count]
InsertColumn <sheet> <index|letter> [count]
DeleteRow    <sheet> <index> [count] [force]
DeleteColumn <sheet> <index|letter> [count] [force]
ApplyFormat  <sheet> <A1[:B2]> key=value ...
CreateSheet  <name> [rows columns]

Rules:
- Row and column indices are 0-based; cell references are A1 style.
- Quote sheet names and text containing spaces: SetCell "Q1 Sales" B2 = "North region".
- Values: a leading = is a formula, true/false are booleans, numbers are numbers.
- In SetRange, separate rows with ';' and columns with ','.
- Cells can only be written inside the sheet's current size. To add data past
  the end, first InsertRow/InsertColumn at the end (index = current count).
- ApplyFormat keys: bold, italic, font, size, color, fill, border,
  number_format, style (number|percent|currency|date|text), decimals.
- Deleting rows or columns that hold data needs the word force.
- If the request cannot be expressed with these operations, reply with one
  line saying why."""


def build_messages(instruction: str, document_summary: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "system", "content": f"Current workbook:\n{document_summary}"},
        {"role": "user", "content": instruction},
    ]


class IntentClient(Protocol):
    """What the session needs from a model client."""

    async def query(self, instruction: str, document_summary: str) -> str: ...

    async def close(self) -> None: ...


class ModelClient:
    """Chat-completions client over the ``openai`` SDK."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 500,
        timeout: float = 60.0,
    ) -> None:
        if not api_key:
            raise ClientError("No API key configured; set DEEPSEEK_API_KEY")
        self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelClient":
        return cls(
            api_key=settings.api_key,
            base_url=settings.api_url,
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
        )

    async def query(self, instruction: str, document_summary: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=build_messages(instruction, document_summary),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as e:
            raise ClientError(f"Model request failed: {e}") from e
        if not response.choices:
            raise ClientError("Model returned no choices")
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise ClientError("Model returned an empty response")
        return content

    async def close(self) -> None:
        await self._client.close()
