from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional
from urllib import error, request

import structlog

from .errors import UpstreamUnavailableError


class CompletionBackend:
    """OpenAI-compatible chat completion client used by the AI engines."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        base_url: str = "https://openrouter.ai/api/v1",
        timeout_seconds: int = 30,
    ) -> None:
        self.api_key = str(api_key or "").strip()
        self.model = str(model or "").strip() or "gpt-3.5-turbo"
        self.base_url = str(base_url or "").rstrip("/")
        self.timeout_seconds = max(5, int(timeout_seconds))
        self._logger = structlog.get_logger(__name__)

    def available(self) -> bool:
        return bool(self.api_key and self.base_url)

    def complete(self, prompt: str, *, max_tokens: int = 1500, temperature: float = 0.0) -> str:
        """Send ``prompt`` and return the raw reply text.

        Raises UpstreamUnavailableError on a missing key, transport failure,
        timeout or an empty completion.
        """
        if not self.available():
            raise UpstreamUnavailableError("AI completion backend is not configured")
        payload = {
            "model": self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        return self._chat_completion(payload)

    def complete_json(self, prompt: str, *, max_tokens: int = 1500, temperature: float = 0.0) -> Dict[str, Any]:
        """Like ``complete`` but also treats a reply without a JSON object as unavailable."""
        content = self.complete(prompt, max_tokens=max_tokens, temperature=temperature)
        try:
            parsed = extract_json_object(content)
        except ValueError as exc:
            self._logger.warning("llm.unparsable_reply", model=self.model, preview=content[:200])
            raise UpstreamUnavailableError(f"AI completion returned no JSON: {exc}") from exc
        return parsed

    def _chat_completion(self, payload: Dict[str, Any]) -> str:
        url = f"{self.base_url}/chat/completions"
        req = request.Request(
            url=url,
            method="POST",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except error.HTTPError as exc:
            raise UpstreamUnavailableError(f"AI backend HTTP error {exc.code}: {self._safe_error_body(exc)}") from exc
        except error.URLError as exc:
            raise UpstreamUnavailableError(f"AI backend network error: {exc.reason}") from exc
        except OSError as exc:
            raise UpstreamUnavailableError(f"AI backend request failed: {exc}") from exc

        try:
            parsed = json.loads(raw) if raw else {}
        except json.JSONDecodeError as exc:
            raise UpstreamUnavailableError("AI backend returned a non-JSON envelope") from exc
        choices = parsed.get("choices") if isinstance(parsed, dict) else None
        if isinstance(choices, list) and choices:
            msg = choices[0].get("message") if isinstance(choices[0], dict) else None
            content = msg.get("content") if isinstance(msg, dict) else ""
            if isinstance(content, str) and content.strip():
                return content
        raise UpstreamUnavailableError("AI backend returned an empty completion")

    @staticmethod
    def _safe_error_body(exc: error.HTTPError) -> str:
        try:
            body = exc.read().decode("utf-8")
            return body[:500] if body else "no_error_body"
        except Exception:
            return "no_error_body"


def _strip_code_fences(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        s = re.sub(r"^```(?:json|javascript|js)?\s*", "", s, flags=re.IGNORECASE)
        s = re.sub(r"\s*```$", "", s)
    return s.strip()


def _load_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        loaded = json.loads(text)
    except (TypeError, ValueError):
        return None
    return loaded if isinstance(loaded, dict) else None


def _balanced_block(text: str) -> Optional[str]:
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Recover the first JSON object from a model reply.

    Accepts bare JSON, fenced code blocks and JSON surrounded by prose.
    Raises ValueError when nothing parses to an object.
    """
    if not text:
        raise ValueError("empty reply")
    direct = _load_object(text)
    if direct is not None:
        return direct
    stripped = _strip_code_fences(text)
    direct = _load_object(stripped)
    if direct is not None:
        return direct
    block = _balanced_block(stripped)
    if block:
        parsed = _load_object(block)
        if parsed is not None:
            return parsed
    raise ValueError("no JSON object found")
