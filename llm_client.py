"""
OpenRouter Clients
==================

Text generation (structuring, extraction, alternative names, document text)
and image generation (ingredient photos, recipe images) over OpenRouter's
OpenAI-compatible chat/completions endpoint.

These clients make exactly one HTTP call per request. Retry and backoff
belong to ResilientExecutor; failures are raised as:
    TransportError(status_code)  non-200 responses, API errors
    TransportError(502)          empty or unparseable model output
    NetworkUnavailable           OpenRouter unreachable
    asyncio.TimeoutError         request exceeded its timeout
"""

import asyncio
import json
import re
from typing import Any, Dict, List, Optional, Union

import aiohttp

from config import CHAT_API_URL, CHAT_MODEL, IMAGE_MODEL, OPENROUTER_API_KEY, get_config_value
from errors import NetworkUnavailable, TransportError, http_error
from tools.logging_utils import get_logger

logger = get_logger(__name__)

# Upstream returned something unusable; retried like a bad gateway
UNUSABLE_OUTPUT_STATUS = 502


def strip_markdown_json(response: str) -> str:
    """
    Strip markdown code fences from JSON responses.

    Some LLMs wrap JSON in markdown code blocks (```json ... ```),
    which breaks json.loads(). This function removes those fences.
    """
    cleaned = response.strip()
    if cleaned.startswith('```'):
        lines = cleaned.split('\n')
        if lines[0].startswith('```'):
            lines = lines[1:]
        if lines and lines[-1].strip() == '```':
            lines = lines[:-1]
        cleaned = '\n'.join(lines)
    return cleaned


def extract_json_object(raw_content: str) -> Dict[str, Any]:
    """
    Parse the first JSON object in an LLM response.

    Handles fenced output and reasoning text before/after the object.

    Raises:
        ValueError: No parseable JSON object found
    """
    content = strip_markdown_json(raw_content)
    try:
        parsed = json.loads(content)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = content.find('{')
    if start >= 0:
        depth = 0
        for i, char in enumerate(content[start:], start):
            if char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    try:
                        parsed = json.loads(content[start:i + 1])
                    except json.JSONDecodeError:
                        break
                    if isinstance(parsed, dict):
                        return parsed
                    break
    raise ValueError(f"No JSON object in response: {content[:200]}")


class _OpenRouterBase:

    def __init__(self, api_key: str = None, api_url: str = None, model: str = None,
                 timeout_seconds: int = 120):
        self.api_key = api_key if api_key is not None else OPENROUTER_API_KEY
        self.api_url = (api_url or CHAT_API_URL).rstrip('/')
        self.model = model
        self.timeout_seconds = timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Title": "Recipe Ingest",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, payload: Dict[str, Any], operation: str) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.api_url}/chat/completions",
                    json=payload,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    if response.status != 200:
                        error_body = await response.text()
                        logger.error(f"❌ OpenRouter error {response.status}: {error_body[:300]}")
                        raise http_error("OpenRouter", response.status, error_body, operation)
                    data = await response.json()
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ OpenRouter {operation} timed out after {self.timeout_seconds}s")
            raise
        except aiohttp.ClientConnectionError as e:
            raise NetworkUnavailable(f"OpenRouter unreachable: {e}", operation=operation) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"HTTP error: {e}", operation=operation) from e

        if "error" in data:
            error = data.get("error", {})
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            logger.error(f"❌ OpenRouter API error: {message}")
            raise TransportError(
                f"OpenRouter API error: {message}",
                operation=operation,
                status_code=code if isinstance(code, int) else UNUSABLE_OUTPUT_STATUS,
            )
        return data

    @staticmethod
    def _message(data: Dict[str, Any], operation: str) -> Dict[str, Any]:
        try:
            return data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise TransportError(
                f"Unexpected response format from OpenRouter. Missing key: {e}",
                operation=operation,
                status_code=UNUSABLE_OUTPUT_STATUS,
            ) from e


class OpenRouterTextClient(_OpenRouterBase):
    """
    Text-generation capability.

    ``generate(prompt)`` returns text; with ``json_schema`` it returns the
    parsed object.
    """

    def __init__(self, api_key: str = None, api_url: str = None, model: str = None,
                 temperature: float = None, max_tokens: int = None, timeout_seconds: int = 120):
        super().__init__(api_key, api_url, model or CHAT_MODEL, timeout_seconds)
        self.temperature = temperature if temperature is not None else get_config_value('llm', 'temperature', 0.1)
        self.max_tokens = max_tokens or get_config_value('llm', 'max_tokens', 4000)

    async def generate(self, prompt: str, json_schema: Optional[Dict[str, Any]] = None,
                       allow_internet_context: bool = False,
                       file_urls: Optional[List[str]] = None,
                       system_prompt: Optional[str] = None) -> Union[str, Dict[str, Any]]:
        """
        Run one chat completion.

        Args:
            prompt: User prompt
            json_schema: {"name", "schema"}; response is parsed JSON when given
            allow_internet_context: Enable OpenRouter's web plugin
            file_urls: Uploaded images/PDFs attached to the prompt
            system_prompt: Optional system message
        """
        operation = "generate_json" if json_schema else "generate_text"

        content: Union[str, List[Dict[str, Any]]] = prompt
        if file_urls:
            content = [{"type": "text", "text": prompt}] + [_file_part(url) for url in file_urls]

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": content})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": False,
        }
        if json_schema:
            payload["response_format"] = {"type": "json_schema", "json_schema": json_schema}
        if allow_internet_context:
            payload["plugins"] = [{"id": "web"}]

        data = await self._post(payload, operation)
        text = self._message(data, operation).get("content")
        if text is None or not str(text).strip():
            logger.error(f"❌ OpenRouter returned empty content for {operation}")
            raise TransportError(
                "OpenRouter returned empty content",
                operation=operation,
                status_code=UNUSABLE_OUTPUT_STATUS,
            )

        if not json_schema:
            return text.strip()
        try:
            return extract_json_object(text)
        except ValueError as e:
            raise TransportError(
                f"Model output is not valid JSON: {e}",
                operation=operation,
                status_code=UNUSABLE_OUTPUT_STATUS,
                response_body=text,
            ) from e


_PDF_PATTERN = re.compile(r"\.pdf($|\?)", re.IGNORECASE)


def _file_part(url: str) -> Dict[str, Any]:
    if _PDF_PATTERN.search(url):
        return {"type": "file", "file": {"filename": url.rsplit('/', 1)[-1].split('?')[0], "file_data": url}}
    return {"type": "image_url", "image_url": {"url": url}}


class OpenRouterImageClient(_OpenRouterBase):
    """Image-generation capability: ``generate(prompt) -> {"url": ...}``."""

    def __init__(self, api_key: str = None, api_url: str = None, model: str = None,
                 timeout_seconds: int = 180):
        super().__init__(api_key, api_url, model or IMAGE_MODEL, timeout_seconds)

    async def generate(self, prompt: str) -> Dict[str, str]:
        operation = "generate_image"
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "modalities": ["image", "text"],
            "stream": False,
        }
        data = await self._post(payload, operation)
        images = self._message(data, operation).get("images") or []
        for image in images:
            url = (image.get("image_url") or {}).get("url") if isinstance(image, dict) else None
            if url:
                return {"url": url}
        raise TransportError(
            "OpenRouter returned no image",
            operation=operation,
            status_code=UNUSABLE_OUTPUT_STATUS,
        )
