import json
import logging
import os
import time
from typing import Any, Dict, List, Optional, Tuple

import requests
from openai import OpenAI

logger = logging.getLogger(__name__)

# --- Gemini API settings (OpenAI-compatible endpoint) ---
GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-pro")
GEMINI_MAX_TOKENS = int(os.environ.get("GEMINI_MAX_TOKENS", "8192"))
GEMINI_TIMEOUT = float(os.environ.get("GEMINI_TIMEOUT", "180"))

# --- OpenAI platform settings ---
DEFAULT_OPENAI_MODEL = os.environ.get("OPENAI_CHAT_MODEL", "gpt-4.1")
DEFAULT_OPENAI_MAX_TOKENS = int(os.environ.get("OPENAI_MAX_TOKENS", "4096"))
DEFAULT_OPENAI_TIMEOUT = float(os.environ.get("OPENAI_TIMEOUT", "180"))

# --- OpenRouter settings ---
OPENROUTER_API_URL = os.environ.get("OPENROUTER_API_URL", "https://openrouter.ai/api/v1/chat/completions")
OPENROUTER_MODEL = os.environ.get("OPENROUTER_MODEL", "google/gemini-2.5-pro")
OPENROUTER_MAX_TOKENS = int(os.environ.get("OPENROUTER_MAX_TOKENS", "8192"))
OPENROUTER_TIMEOUT = float(os.environ.get("OPENROUTER_TIMEOUT", "180"))
OPENROUTER_REFERER = os.environ.get("OPENROUTER_REFERER", "")
OPENROUTER_TITLE = os.environ.get("OPENROUTER_TITLE", "NexSupply")

SUPPORTED_PROVIDERS = {"gemini", "openai", "openrouter"}

JSON_REQUIREMENTS = (
    "CRITICAL JSON REQUIREMENTS:\n"
    "- Return ONLY valid JSON with no additional text\n"
    "- Do not include any explanation before or after the JSON\n"
    "- Do not wrap the JSON in markdown fences"
)


class LLMError(RuntimeError):
    """Raised when the model cannot produce a usable response."""


class LLMClient:
    """
    Centralized LLM adapter for the analyzer and the knowledge builder.

    - Speaks the OpenAI Chat Completions API to Gemini (OpenAI-compatible
      endpoint) or the OpenAI platform, and plain HTTP to OpenRouter.
    - Retries transient failures and, for JSON requests, strips fences and
      surrounding chatter before handing text back.
    """

    def __init__(self, provider: Optional[str] = None):
        self.log_prompts = os.environ.get("LOG_PROMPTS", "false").lower() == "true"
        self.provider = (provider or self._determine_default_provider()).strip().lower()
        if self.provider not in SUPPORTED_PROVIDERS:
            logger.warning(f"Unknown LLM provider '{self.provider}', using 'gemini'")
            self.provider = "gemini"
        self.retry_attempts = max(1, int(os.environ.get("LLM_RETRY_ATTEMPTS", "3")))

        self._openai_client: Optional[OpenAI] = None
        self._gemini_client: Optional[OpenAI] = None
        self._openrouter_session: Optional[requests.Session] = None

        if self.log_prompts:
            self._setup_prompt_logger()

    # ------------------------------------------------------------------
    # Prompt helpers
    # ------------------------------------------------------------------

    def _build_messages(
        self,
        prompt: str,
        requires_json: bool,
        system_prompt: Optional[str],
        image_base64: Optional[str],
    ) -> List[Dict[str, Any]]:
        """Assemble the OpenAI-style message payload."""
        user_text = prompt.strip()
        if requires_json:
            user_text = f"{user_text.rstrip()}\n\n{JSON_REQUIREMENTS}"

        messages: List[Dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt.strip()})

        if image_base64:
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": user_text},
                    {"type": "image_url", "image_url": {"url": _as_data_url(image_base64)}},
                ],
            })
        else:
            messages.append({"role": "user", "content": user_text})
        return messages

    def _stringify_content_parts(self, data: Any) -> str:
        """Convert SDK content parts into a single string."""
        if data is None:
            return ""
        if isinstance(data, str):
            return data
        if isinstance(data, list):
            parts: List[str] = []
            for item in data:
                if isinstance(item, str):
                    parts.append(item)
                elif isinstance(item, dict):
                    parts.append(self._stringify_content_parts(item.get("text") or item.get("content")))
                else:
                    parts.append(self._stringify_content_parts(getattr(item, "text", None)))
            return "".join(parts)
        if isinstance(data, dict):
            for key in ("text", "content", "value"):
                if key in data:
                    return self._stringify_content_parts(data[key])
            return json.dumps(data, ensure_ascii=False)
        return str(data)

    def _setup_prompt_logger(self) -> None:
        """Optional file logger for auditing prompts."""
        prompt_log_file = os.environ.get("PROMPT_LOG_FILE", "logs/llm_prompts.log")
        prompt_log_dir = os.path.dirname(prompt_log_file)
        if prompt_log_dir and not os.path.exists(prompt_log_dir):
            os.makedirs(prompt_log_dir, exist_ok=True)

        self.prompt_logger = logging.getLogger("llm_prompts")
        self.prompt_logger.setLevel(logging.INFO)
        self.prompt_logger.handlers.clear()

        handler = logging.FileHandler(prompt_log_file, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        self.prompt_logger.addHandler(handler)
        self.prompt_logger.propagate = False

    # ------------------------------------------------------------------
    # Client factories
    # ------------------------------------------------------------------

    def _get_openai_client(self) -> OpenAI:
        if self._openai_client is None:
            api_key = os.environ.get("OPENAI_API_KEY")
            if not api_key:
                raise LLMError("OPENAI_API_KEY environment variable is required for the OpenAI provider.")
            self._openai_client = OpenAI(api_key=api_key, timeout=DEFAULT_OPENAI_TIMEOUT)
        return self._openai_client

    def _get_gemini_client(self) -> OpenAI:
        """Get or create the Gemini client using OpenAI-compatible endpoint."""
        if self._gemini_client is None:
            api_key = os.environ.get("GEMINI_API_KEY")
            if not api_key:
                raise LLMError("GEMINI_API_KEY is not configured. Set it in the environment or .env file.")
            self._gemini_client = OpenAI(
                api_key=api_key,
                base_url=GEMINI_API_BASE_URL,
                timeout=GEMINI_TIMEOUT,
            )
        return self._gemini_client

    def _get_openrouter_session(self) -> requests.Session:
        if self._openrouter_session is None:
            self._openrouter_session = requests.Session()
        return self._openrouter_session

    def _determine_default_provider(self) -> str:
        override = os.environ.get("LLM_PROVIDER")
        if override:
            return override
        if os.environ.get("GEMINI_API_KEY"):
            return "gemini"
        if os.environ.get("OPENROUTER_API_KEY"):
            return "openrouter"
        if os.environ.get("OPENAI_API_KEY"):
            return "openai"
        return "gemini"

    # ------------------------------------------------------------------
    # Core chat completions
    # ------------------------------------------------------------------

    def _call_chat_completion(
        self,
        provider: str,
        messages: List[Dict[str, Any]],
        requires_json: bool,
        temperature: float,
    ) -> Tuple[str, str]:
        if provider == "openrouter":
            return self._call_openrouter_chat_completion(messages, requires_json, temperature)

        if provider == "gemini":
            client = self._get_gemini_client()
            model = GEMINI_MODEL
            kwargs: Dict[str, Any] = {
                "model": model,
                "messages": messages,
                "max_tokens": GEMINI_MAX_TOKENS,
                "temperature": temperature,
            }
        else:
            client = self._get_openai_client()
            model = DEFAULT_OPENAI_MODEL
            kwargs = {
                "model": model,
                "messages": messages,
                "max_completion_tokens": DEFAULT_OPENAI_MAX_TOKENS,
                "temperature": temperature,
                "store": False,
            }
        if requires_json:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            completion = client.chat.completions.create(**kwargs)
        except Exception as exc:
            error_str = str(exc)
            if "API key" in error_str or "authentication" in error_str.lower():
                raise LLMError(f"{provider} authentication failed. Check your API key: {exc}") from exc
            raise LLMError(f"{provider} API call failed: {exc}") from exc

        choice = completion.choices[0] if completion.choices else None
        if not choice:
            raise LLMError(f"{provider} response did not contain any choices.")

        content = self._stringify_content_parts(getattr(choice.message, "content", None)).strip()
        if not content:
            logger.debug("Chat completion response had no textual content: %s", completion)
            raise LLMError("Empty chat completion response.")
        return content, model

    def _call_openrouter_chat_completion(
        self,
        messages: List[Dict[str, Any]],
        requires_json: bool,
        temperature: float,
    ) -> Tuple[str, str]:
        api_key = os.environ.get("OPENROUTER_API_KEY")
        if not api_key:
            raise LLMError("OPENROUTER_API_KEY environment variable is required for OpenRouter provider.")

        payload: Dict[str, Any] = {
            "model": OPENROUTER_MODEL,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": OPENROUTER_MAX_TOKENS,
        }
        if requires_json:
            payload["response_format"] = {"type": "json_object"}

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if OPENROUTER_REFERER:
            headers["HTTP-Referer"] = OPENROUTER_REFERER
        if OPENROUTER_TITLE:
            headers["X-Title"] = OPENROUTER_TITLE

        session = self._get_openrouter_session()
        try:
            response = session.post(
                OPENROUTER_API_URL,
                json=payload,
                headers=headers,
                timeout=OPENROUTER_TIMEOUT,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            error_detail = ""
            if getattr(exc, "response", None) is not None:
                error_detail = f" Response: {exc.response.text[:500]}"
            raise LLMError(f"OpenRouter API request failed: {exc}{error_detail}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMError(f"OpenRouter returned invalid JSON: {response.text[:200]}") from exc

        choices = data.get("choices") or []
        if not choices:
            raise LLMError(f"OpenRouter response did not contain choices: {data}")

        message = choices[0].get("message", {}) or {}
        content_text = self._stringify_content_parts(message.get("content")).strip()
        if not content_text:
            raise LLMError(f"OpenRouter response did not include content: {data}")

        return content_text, data.get("model") or OPENROUTER_MODEL

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def send_request(
        self,
        prompt: str,
        requires_json: bool = False,
        temperature: float = 0.3,
        system_prompt: Optional[str] = None,
        image_base64: Optional[str] = None,
    ) -> str:
        """Send one prompt and return the response text (cleaned JSON text when requires_json)."""
        provider = self.provider
        messages = self._build_messages(prompt, requires_json, system_prompt, image_base64)

        attempt = 0
        final_text: Optional[str] = None
        model_used = ""
        last_error: Optional[Exception] = None

        while attempt < self.retry_attempts:
            attempt += 1
            try:
                response_text, model_used = self._call_chat_completion(
                    provider=provider,
                    messages=messages,
                    requires_json=requires_json,
                    temperature=temperature,
                )
                if requires_json:
                    final_text = self._extract_json_from_response(response_text)
                else:
                    final_text = response_text
                break
            except Exception as exc:
                last_error = exc
                logger.warning(
                    f"LLM request attempt {attempt}/{self.retry_attempts} failed ({provider}): {exc}"
                )
                if attempt < self.retry_attempts:
                    time.sleep(min(2 ** (attempt - 1), 4))

        if final_text is None:
            raise LLMError(f"LLM request failed after {self.retry_attempts} attempts: {last_error}")

        if self.log_prompts:
            try:
                self.prompt_logger.info(
                    f"==== CHAT COMPLETION ({provider}, model: {model_used}) ====\n"
                    f"System Prompt Preview: {(system_prompt or '')[:200]}...\n"
                    f"User Prompt:\n{prompt}\n"
                    f"Requires JSON: {requires_json}\n"
                    f"Temperature: {temperature}\n"
                    f"==== RESPONSE ====\n{final_text}\n==== END ===="
                )
            except Exception as log_exc:
                logger.warning(f"Failed to log prompt: {log_exc}")

        logger.info(f"LLM call succeeded using provider '{provider}' and model '{model_used}'")
        return final_text

    # ------------------------------------------------------------------
    # JSON extraction helper
    # ------------------------------------------------------------------

    def _extract_json_from_response(self, response_text: str) -> str:
        return extract_json_text(response_text)


def extract_json_text(response_text: str) -> str:
    """Return the JSON object embedded in a model response, or raise ValueError."""
    if not response_text:
        raise ValueError("No response text to parse.")

    text = response_text.strip()
    try:
        json.loads(text)
        return text
    except json.JSONDecodeError:
        pass

    text = text.replace("```json", "").replace("```", "").strip()
    try:
        json.loads(text)
        return text
    except json.JSONDecodeError:
        pass

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        candidate = text[start : end + 1]
        try:
            json.loads(candidate)
            return candidate
        except json.JSONDecodeError:
            pass

    logger.error(f"Could not extract valid JSON from response: {response_text[:200]}...")
    raise ValueError("Failed to extract valid JSON from LLM response.")


def _as_data_url(image_base64: str) -> str:
    if image_base64.startswith("data:"):
        return image_base64
    return f"data:image/jpeg;base64,{image_base64}"


# Global client instance
llm_client = None


def get_llm_client() -> LLMClient:
    """Get or create the global LLM client instance"""
    global llm_client
    if llm_client is None:
        llm_client = LLMClient()
    return llm_client
