"""
LLM classifier backends: one request classifies a whole batch of messages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from spamguard.errors import PermanentBackendError, TransientBackendError
from spamguard.schemas.messages import WebSummary, WorkItem

if TYPE_CHECKING:
    from spamguard.config import Settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You read Telegram group messages (including quoted channel or group content and extracted link previews) and classify each one as spam or not spam. Focus only on spam detection: do not flag content just because it contains adult language unless it is clearly promotional spam.

Classify as spam (true) ONLY if at least one of the following is present:
1. Cryptocurrency, NFT or Web3 promotions.
2. Illegal advertising, gambling, drugs, adult services or unsafe links.
3. Multi-level marketing or pyramid schemes.
4. Link or invite spam intended to drive users to other groups, channels or websites (inspect the channel or group name together with the linked URL, including deep links like https://t.me/c/...).
5. Obvious phishing or scam attempts.
6. Investment, stock or coin tipping, "real-time entry" or guaranteed-profit promotions, even when phrased as an invitation to a Telegram channel or group. Treat quoted channel text plus its link as part of the message.
7. Stock pump phrases (for example "실시간 종목타점", "종목 추천", "타점 공유", "확정 수익") combined with Telegram links or invitations. These are always spam.

Normal conversation, admin messages and bot commands are not spam.

Return a JSON object mapping every message id (string) to a classification object:
{{
  "<message_id>": {{"spam": <bool>, "reason": <string|null>, "confidence": <float 0.0-1.0>}}
}}
- When spam is true, reason MUST be a short sentence (<80 chars) citing the specific spam signal, written in {language}. When spam is false, set reason to null.
- Never invent message ids or return extra keys.

Example for the message
-1001:123: [@promo | non-member | priority High] 실시간 종목타점 공유하는 채널 확인하기 https://t.me/c/2485256729/1/205
Output: {{"-1001:123": {{"spam": true, "reason": "Real-time stock tip channel promotion", "confidence": 0.95}}}}

Return ONLY the JSON object, no additional text.
"""


@dataclass(frozen=True)
class ClassificationRequest:
    id: str
    text: str
    sender_display: str = "Unknown"
    username: str | None = None
    is_member: bool = False
    priority: str = "Normal"
    enrichment: tuple[WebSummary, ...] = ()

    @classmethod
    def from_item(cls, item: WorkItem) -> "ClassificationRequest":
        return cls(
            id=item.key,
            text=item.text,
            sender_display=item.sender_display,
            username=item.username,
            is_member=item.is_member,
            priority=item.priority.value,
            enrichment=item.enrichment or (),
        )


class ClassifierBackend(Protocol):
    provider: str
    model: str

    async def classify(self, entries: Sequence[ClassificationRequest]) -> str: ...


def build_prompt(entries: Sequence[ClassificationRequest]) -> str:
    blocks = []
    for entry in entries:
        member_flag = "member" if entry.is_member else "non-member"
        username = f"@{entry.username}" if entry.username else "-"
        block = f"{entry.id}: [{entry.sender_display} | {username} | {member_flag} | priority {entry.priority}] {entry.text}"
        for summary in entry.enrichment:
            rendered = summary.render()
            if rendered:
                block += f"\nWeb page ({summary.url}):\n{rendered}"
        blocks.append(block)
    return "\n\n".join(blocks)


def system_prompt(language: str = "the language of the message") -> str:
    return SYSTEM_PROMPT.format(language=language)


def strip_code_fences(raw: str) -> str:
    """Strip markdown code fences from LLM responses."""
    text = raw.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        if first_newline != -1:
            text = text[first_newline + 1:]
        if text.endswith("```"):
            text = text[:-3].strip()
    return text


def _max_tokens(count: int) -> int:
    return max(1024, 96 * count)


@dataclass
class OpenAICompatibleClassifier:
    """
    Any OpenAI-compatible chat completions endpoint; Cerebras by default.
    """

    api_key: str | None
    model: str = "llama-4-scout-17b-16e-instruct"
    base_url: str = "https://api.cerebras.ai/v1"
    timeout: float = 30.0
    provider: str = "cerebras"
    _client: Optional[AsyncOpenAI] = field(default=None, repr=False)

    def _get_client(self) -> AsyncOpenAI:
        if not self.api_key:
            raise PermanentBackendError(f"{self.provider} API key is not configured")
        if self._client is None:
            # Retries are owned by the dispatcher.
            self._client = AsyncOpenAI(
                api_key=self.api_key, base_url=self.base_url, timeout=self.timeout, max_retries=0
            )
        return self._client

    async def classify(self, entries: Sequence[ClassificationRequest]) -> str:
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt()},
                    {"role": "user", "content": build_prompt(entries)},
                ],
                temperature=0.2,
                top_p=1.0,
                max_tokens=_max_tokens(len(entries)),
                response_format={"type": "json_object"},
            )
        except (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as exc:
            raise TransientBackendError(f"{self.provider}: {exc}") from exc
        except openai.APIStatusError as exc:
            if exc.status_code >= 500:
                raise TransientBackendError(f"{self.provider}: HTTP {exc.status_code}") from exc
            raise PermanentBackendError(f"{self.provider}: HTTP {exc.status_code}: {exc}") from exc

        if not resp.choices or not resp.choices[0].message or not resp.choices[0].message.content:
            raise TransientBackendError(f"{self.provider} response did not contain any content")
        return strip_code_fences(resp.choices[0].message.content)


@dataclass
class ClaudeClassifier:
    api_key: str | None
    model: str = "claude-sonnet-4-5-20250929"
    timeout: float = 30.0
    provider: str = "anthropic"
    _client: Optional[AsyncAnthropic] = field(default=None, repr=False)

    def _get_client(self) -> AsyncAnthropic:
        if not self.api_key:
            raise PermanentBackendError("anthropic API key is not configured")
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def classify(self, entries: Sequence[ClassificationRequest]) -> str:
        client = self._get_client()
        try:
            msg = await client.messages.create(
                model=self.model,
                max_tokens=_max_tokens(len(entries)),
                temperature=0.2,
                system=system_prompt(),
                messages=[{"role": "user", "content": build_prompt(entries)}],
            )
        except (
            anthropic.APITimeoutError,
            anthropic.APIConnectionError,
            anthropic.RateLimitError,
            anthropic.InternalServerError,
        ) as exc:
            raise TransientBackendError(f"anthropic: {exc}") from exc
        except anthropic.APIStatusError as exc:
            if exc.status_code >= 500:
                raise TransientBackendError(f"anthropic: HTTP {exc.status_code}") from exc
            raise PermanentBackendError(f"anthropic: HTTP {exc.status_code}: {exc}") from exc

        texts = [block.text for block in msg.content if getattr(block, "type", None) == "text"]
        if not texts:
            raise TransientBackendError("anthropic response did not contain any text")
        return strip_code_fences("".join(texts))


def build_classifier(settings: "Settings") -> Any:
    if settings.CLASSIFIER_PROVIDER == "anthropic":
        return ClaudeClassifier(
            api_key=settings.ANTHROPIC_API_KEY,
            model=settings.ANTHROPIC_MODEL,
            timeout=settings.CLASSIFIER_TIMEOUT_SECONDS,
        )
    return OpenAICompatibleClassifier(
        api_key=settings.CEREBRAS_API_KEY,
        model=settings.CEREBRAS_MODEL,
        base_url=settings.CEREBRAS_BASE_URL,
        timeout=settings.CLASSIFIER_TIMEOUT_SECONDS,
    )
