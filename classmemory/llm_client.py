import json
import logging
import re
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    pass


#----------response cleanup---------------

def _sanitize_llm_text(out: str) -> str:
    """Unwrap code fences and drop assistant-y preface lines."""
    if not out:
        return ""
    s = out.strip()
    # Prefer content inside triple backticks if present
    m = re.search(r"```(?:\w+)?\s*([\s\S]*?)```", s)
    if m and m.group(1).strip():
        s = m.group(1).strip()
    lines = [ln.rstrip() for ln in s.splitlines()]
    while lines:
        head = lines[0].strip()
        if not head:
            lines.pop(0)
            continue
        low = head.lower().rstrip(":")
        boiler = (
            "here you go" in low or
            "here is" in low or
            "here's" in low or
            "here are your notes" in low
        )
        if boiler and len(head) <= 120 and not head.startswith("{"):
            lines.pop(0)
            continue
        break
    return "\n".join(lines).strip()


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Strict-but-forgiving: the first JSON object in the model output, or LLMError."""
    text = _sanitize_llm_text(raw)
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        m = re.search(r"\{.*\}", text, re.S)
        if not m:
            raise LLMError(f"Model returned non-JSON: {text[:200]}")
        try:
            data = json.loads(m.group(0))
        except (ValueError, RecursionError) as e:
            raise LLMError(f"Model returned non-JSON: {text[:200]}") from e
    if not isinstance(data, dict):
        raise LLMError("Model returned JSON that is not an object")
    return data


#----------generator---------------

class TextGenerator:
    """
    One-shot text generation. ``provider`` is "ollama" (/api/generate) or "openai"
    (/chat/completions). Any non-2xx, transport error or empty output raises LLMError.
    """

    def __init__(
        self,
        provider: str,
        *,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        timeout: float = 90.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if provider not in ("ollama", "openai"):
            raise ValueError(f"Unsupported LLM provider: {provider}")
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def generate(self, prompt: str, *, system: Optional[str] = None, temperature: float = 0.2) -> str:
        if self.provider == "openai":
            out = await self._openai(prompt, system=system, temperature=temperature)
        else:
            out = await self._ollama(prompt, system=system, temperature=temperature)
        out = (out or "").strip()
        if not out:
            raise LLMError("Empty response from model.")
        return out

    async def _post(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as c:
                r = await c.post(url, json=payload, headers=headers)
                r.raise_for_status()
                return r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LLMError(f"{self.provider} request failed: {e}") from e

    async def _ollama(self, prompt: str, *, system: Optional[str], temperature: float) -> str:
        full_prompt = f"{system}\n\n{prompt}" if system else prompt
        payload = {
            "model": self.model,
            "prompt": full_prompt,
            "stream": False,
            "options": {"temperature": temperature},
        }
        data = await self._post(f"{self.base_url}/api/generate", payload)
        if not isinstance(data, dict):
            raise LLMError("Malformed response from Ollama.")
        return data.get("response", "") or ""

    async def _openai(self, prompt: str, *, system: Optional[str], temperature: float) -> str:
        if not self.api_key:
            raise LLMError("OPENAI_API_KEY is not configured.")
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": 4000,
        }
        data = await self._post(
            f"{self.base_url}/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("Malformed response from OpenAI.") from e


def build_generator(settings) -> Optional[TextGenerator]:
    """Generator for the configured provider, or None for offline compilation."""
    provider = settings.LLM_PROVIDER
    if provider == "offline":
        return None
    if provider == "openai":
        return TextGenerator(
            "openai",
            base_url=settings.OPENAI_BASE_URL,
            model=settings.OPENAI_MODEL,
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    return TextGenerator(
        "ollama",
        base_url=settings.OLLAMA_BASE_URL,
        model=settings.OLLAMA_MODEL,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
