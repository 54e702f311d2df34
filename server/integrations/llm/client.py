"""LLM client: local Ollama or an OpenAI-compatible cloud API, plus JSON extraction."""
import httpx
import json
import re
from typing import Any, Optional
from config.settings import settings
from core.errors import AIServiceError, MalformedOutputError
import logging

logger = logging.getLogger(__name__)

# Pre-compiled regex for stripping markdown fences from LLM output
_MD_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)


def extract_json_object(text: str) -> str:
    """
    Pull the first complete JSON object out of free-form LLM output.

    Handles:
    - Markdown code fences (```json ... ```)
    - Leading/trailing prose around the JSON
    - Braces inside string literals
    - Multiple JSON objects (takes the first one that parses)

    Raises MalformedOutputError if no valid JSON object is found.
    """
    if not text:
        raise MalformedOutputError("No valid JSON object found in LLM response")

    fence_match = _MD_FENCE_RE.search(text)
    if fence_match:
        candidate = fence_match.group(1).strip()
        try:
            if isinstance(json.loads(candidate), dict):
                return candidate
        except json.JSONDecodeError:
            pass  # fall through to brace-matching

    depth = 0
    start = None
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"' and start is not None:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start is not None:
                candidate = text[start : i + 1]
                try:
                    json.loads(candidate)
                    return candidate
                except json.JSONDecodeError:
                    start = None  # reset and keep scanning

    raise MalformedOutputError("No valid JSON object found in LLM response")


def parse_json_object(text: str) -> dict[str, Any]:
    """Extract and decode the first JSON object in ``text``."""
    return json.loads(extract_json_object(text))


class LLMClient:
    """Thin async wrapper exposing ``complete(prompt) -> text``.

    Every failure of the call itself is raised as ``AIServiceError`` with a
    machine-readable code; parsing what comes back is the caller's job.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        use_cloud: Optional[bool] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = (endpoint or settings.LLM_ENDPOINT).rstrip("/")
        self.model = model or settings.LLM_MODEL
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.use_cloud = settings.USE_CLOUD_LLM if use_cloud is None else use_cloud

        headers: dict[str, str] = {}
        if self.use_cloud and self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        # Default timeout: callers override per request via timeout_s
        self.client = http_client or httpx.AsyncClient(timeout=60.0, headers=headers)

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.1,
        timeout_s: Optional[float] = None,
        json_mode: bool = False,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Run one completion and return the raw text."""
        effective_timeout = timeout_s or 60

        try:
            if self.use_cloud:
                text = await self._complete_cloud(
                    prompt, system_prompt, temperature, effective_timeout,
                    json_mode, max_tokens or settings.LLM_MAX_TOKENS,
                )
            else:
                text = await self._complete_ollama(
                    prompt, system_prompt, temperature, effective_timeout, json_mode,
                )
        except httpx.TimeoutException as e:
            logger.error(f"LLM request timed out after {effective_timeout}s")
            raise AIServiceError(
                f"LLM request timed out after {effective_timeout}s",
                code="llm_timeout",
                retryable=True,
            ) from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"LLM endpoint returned HTTP {status_code}")
            if status_code == 429:
                raise AIServiceError(
                    "LLM provider is rate limiting requests",
                    code="llm_rate_limited",
                    retryable=True,
                ) from e
            raise AIServiceError(
                f"LLM endpoint returned HTTP {status_code}",
                code="llm_http_error",
                retryable=status_code >= 500,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"LLM transport error: {e}")
            raise AIServiceError(
                "LLM service is unreachable",
                code="llm_unavailable",
                retryable=True,
            ) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            # Envelope did not look like a completion response at all
            logger.error(f"Unexpected LLM response envelope: {e}")
            raise AIServiceError(
                "LLM service returned an unexpected response",
                code="llm_http_error",
            ) from e

        if not text or not text.strip():
            raise AIServiceError("Empty response from AI", code="llm_empty_response", retryable=True)

        logger.debug(f"LLM raw response: {text[:500]}")
        return text

    async def _complete_cloud(
        self,
        prompt: str,
        system_prompt: Optional[str],
        temperature: float,
        timeout_s: float,
        json_mode: bool,
        max_tokens: int,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload: dict = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        response = await self.client.post(
            f"{self.endpoint}/v1/chat/completions",
            json=payload,
            timeout=timeout_s,
        )
        response.raise_for_status()
        result = response.json()
        return result["choices"][0]["message"]["content"] or ""

    async def _complete_ollama(
        self,
        prompt: str,
        system_prompt: Optional[str],
        temperature: float,
        timeout_s: float,
        json_mode: bool,
    ) -> str:
        full_prompt = prompt
        if system_prompt:
            full_prompt = f"{system_prompt}\n\n{prompt}"

        payload = {
            "model": self.model,
            "prompt": full_prompt,
            "stream": False,
            "options": {"temperature": temperature},
        }
        # Ollama native JSON mode
        if json_mode:
            payload["format"] = "json"

        response = await self.client.post(
            f"{self.endpoint}/api/generate",
            json=payload,
            timeout=timeout_s,
        )
        response.raise_for_status()
        return response.json().get("response", "")

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
