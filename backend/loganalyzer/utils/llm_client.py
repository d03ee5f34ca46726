import time
from typing import Optional

import httpx

from loganalyzer.models.schemas import TokenUsage
from loganalyzer.utils.logger import get_logger, truncate

logger = get_logger(__name__)


class LLMCallError(Exception):
    """Transport, status or envelope failure of a chat-completions call."""


class LLMResponse:
    """Wrapper for a chat-completions response."""
    def __init__(self, text: str, input_tokens: int, output_tokens: int):
        self.text = text
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens


class ChatCompletionClient:
    """OpenAI-compatible chat-completions client with cumulative token tracking.

    The credential is supplied per call; it is resolved from the settings
    store for every request and never held by the client.
    """

    def __init__(
        self,
        component: str = "unknown",
        base_url: str = "https://api.deepseek.com/v1",
        model: str = "deepseek-chat",
        timeout: float = 60.0,
        max_tokens: int = 4000,
        temperature: float = 0.1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.component = component
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._transport = transport
        self._total_input_tokens = 0
        self._total_output_tokens = 0

    async def chat(self, prompt: str, credential: str) -> LLMResponse:
        """Send a single user message and return the first completion's content."""
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        headers = {
            "Authorization": f"Bearer {credential}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}/chat/completions"

        logger.info("LLM call", extra={
            "component": self.component,
            "action": "llm_call",
            "tool": self.model,
            "tokens": {"max_tokens": self.max_tokens},
            "extra": {"prompt": truncate(prompt, 1000), "temperature": self.temperature},
        })

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as e:
            logger.error("LLM call timed out", extra={"component": self.component, "action": "llm_error", "extra": str(e)})
            raise LLMCallError(f"Text generation timed out after {self.timeout:g}s") from e
        except httpx.HTTPStatusError as e:
            logger.error("LLM call failed", extra={
                "component": self.component, "action": "llm_error",
                "extra": {"status": e.response.status_code, "body": truncate(e.response.text, 500)},
            })
            raise LLMCallError(f"Text generation returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("LLM call failed", extra={"component": self.component, "action": "llm_error", "extra": str(e)})
            raise LLMCallError(f"Text generation request failed: {e}") from e
        except ValueError as e:
            logger.error("LLM response is not JSON", extra={"component": self.component, "action": "llm_error", "extra": str(e)})
            raise LLMCallError("Text generation returned a non-JSON envelope") from e

        text = self._extract_content(data)
        elapsed_ms = round((time.monotonic() - start) * 1000)
        usage = data.get("usage") if isinstance(data, dict) else None
        input_tokens = int((usage or {}).get("prompt_tokens") or 0)
        output_tokens = int((usage or {}).get("completion_tokens") or 0)
        self._total_input_tokens += input_tokens
        self._total_output_tokens += output_tokens

        logger.info("LLM response", extra={
            "component": self.component,
            "action": "llm_response",
            "tokens": {"input": input_tokens, "output": output_tokens},
            "duration_ms": elapsed_ms,
            "extra": {"response": truncate(text, 2000)},
        })

        return LLMResponse(text=text, input_tokens=input_tokens, output_tokens=output_tokens)

    @staticmethod
    def _extract_content(data) -> str:
        """Read ``choices[0].message.content`` from the envelope."""
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMCallError("Malformed completion envelope: missing choices[0].message.content") from e
        if content is None:
            return ""
        if not isinstance(content, str):
            raise LLMCallError("Malformed completion envelope: message content is not text")
        return content

    def get_total_usage(self) -> TokenUsage:
        """Get cumulative token usage for this client instance."""
        return TokenUsage(
            component=self.component,
            input_tokens=self._total_input_tokens,
            output_tokens=self._total_output_tokens,
            total_tokens=self._total_input_tokens + self._total_output_tokens,
        )

    def reset_usage(self) -> None:
        """Reset token counters."""
        self._total_input_tokens = 0
        self._total_output_tokens = 0
