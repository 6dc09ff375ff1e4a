"""
LLM Service for all model calls of the workforce.

Wraps LiteLLM with model aliases, per-model parameters, retry with exponential
backoff for transient failures and an ordered fallback list of models. Calls
never raise: they return result dicts so the agentic loop can tell retryable
transport errors, context-too-long rejections and fatal errors apart.
"""

import asyncio
import os
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import litellm
import structlog
import yaml

DEFAULT_RETRY_ON_ERRORS = [
    "RateLimitError",
    "APIConnectionError",
    "Timeout",
    "ServiceUnavailableError",
    "InternalServerError",
    "502",
    "503",
    "504",
    "ECONNRESET",
    "ETIMEDOUT",
    "network",
    "fetch failed",
    "socket hang up",
]

CONTEXT_TOO_LONG_MARKERS = [
    "context_length",
    "context length",
    "too many tokens",
    "maximum context",
    "prompt is too long",
    "input too long",
]

ALLOWED_PARAMS = ["temperature", "top_p", "max_tokens", "frequency_penalty", "presence_penalty"]


@dataclass
class RetryPolicy:
    """Retry policy configuration."""

    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    timeout: int = 60
    retry_on_errors: List[str] = field(default_factory=lambda: list(DEFAULT_RETRY_ON_ERRORS))


def is_context_too_long(error: Exception | str) -> bool:
    """True when the provider rejected the prompt for its size."""
    if isinstance(error, Exception) and type(error).__name__ == "ContextWindowExceededError":
        return True
    text = str(error).lower()
    return any(marker in text for marker in CONTEXT_TOO_LONG_MARKERS)


class LLMService:
    """
    Model gateway implementing LLMProviderProtocol.

    Model selection order per call: the requested alias (or the default),
    then each alias in ``fallback_models``. Every model gets up to
    ``retry_policy.max_attempts`` attempts for retryable errors; fatal errors
    and context-too-long rejections skip the remaining attempts.
    """

    def __init__(self, config_path: str = "configs/llm_config.yaml"):
        """
        Initialize LLMService with configuration.

        Args:
            config_path: Path to YAML configuration file

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        self.logger = structlog.get_logger().bind(component="llm_service")
        self._load_config(config_path)
        self._initialize_provider()

        self.logger.info(
            "llm_service_initialized",
            default_model=self.default_model,
            model_aliases=list(self.models.keys()),
            fallback_models=self.fallback_models,
        )

    def _load_config(self, config_path: str) -> None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"LLM config not found: {config_path}")

        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if config is None:
            raise ValueError(f"Config file is empty or invalid: {config_path}")

        self.default_model = config.get("default_model", "main")
        self.models = config.get("models", {})
        self.model_params = config.get("model_params", {})
        self.default_params = config.get("default_params", {})
        self.fallback_models = list(config.get("fallback_models", []))

        if not self.models:
            raise ValueError("Config must define at least one model in 'models' section")

        retry_config = config.get("retry_policy", {})
        self.retry_policy = RetryPolicy(
            max_attempts=max(1, retry_config.get("max_attempts", 3)),
            backoff_multiplier=retry_config.get("backoff_multiplier", 2.0),
            timeout=retry_config.get("timeout", 60),
            retry_on_errors=retry_config.get("retry_on_errors", list(DEFAULT_RETRY_ON_ERRORS)),
        )

        self.logging_config = config.get("logging", {})
        self.provider_config = config.get("providers", {})

    def _initialize_provider(self) -> None:
        """Check that the API keys named in the provider config are set."""
        for provider, settings in self.provider_config.items():
            api_key_env = (settings or {}).get("api_key_env")
            if api_key_env and not os.getenv(api_key_env):
                self.logger.warning(
                    "api_key_missing",
                    provider=provider,
                    env_var=api_key_env,
                    hint="Set environment variable for API access",
                )

    def _resolve_model(self, model_alias: Optional[str]) -> str:
        if model_alias is None:
            model_alias = self.default_model
        return self.models.get(model_alias, model_alias)

    def _candidate_models(self, model_alias: Optional[str]) -> List[str]:
        """Requested model first, then the fallbacks, without duplicates."""
        candidates = [self._resolve_model(model_alias)]
        for alias in self.fallback_models:
            resolved = self._resolve_model(alias)
            if resolved not in candidates:
                candidates.append(resolved)
        return candidates

    def _get_model_parameters(self, model: str) -> Dict[str, Any]:
        if model in self.model_params:
            return self.model_params[model].copy()
        # Model family match, e.g. "gpt-4" matches "gpt-4-turbo"
        for model_key, params in self.model_params.items():
            if model.startswith(model_key):
                return params.copy()
        return self.default_params.copy()

    def _params_for(self, model: str, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        merged = {**self._get_model_parameters(model), **kwargs}
        return {k: v for k, v in merged.items() if k in ALLOWED_PARAMS}

    def _is_retryable(self, error: Exception) -> bool:
        error_type = type(error).__name__
        error_msg = str(error)
        return any(
            marker in error_type or marker.lower() in error_msg.lower()
            for marker in self.retry_policy.retry_on_errors
        )

    @staticmethod
    def _usage_dict(usage: Any) -> Dict[str, int]:
        if not usage:
            return {}
        if isinstance(usage, dict):
            return usage
        return {
            "total_tokens": getattr(usage, "total_tokens", 0) or 0,
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
        }

    def _failure(self, error: Exception, model: str) -> Dict[str, Any]:
        return {
            "success": False,
            "error": str(error),
            "error_type": type(error).__name__,
            "model": model,
            "retryable": self._is_retryable(error),
            "context_too_long": is_context_too_long(error),
        }

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        """
        Perform LLM completion with retry and model fallback.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model alias or None (uses default)
            **kwargs: Additional parameters (temperature, max_tokens, etc.)

        Returns:
            Dict with:
            - success: bool
            - content, usage, model, latency_ms (if successful)
            - error, error_type, retryable, context_too_long (if failed)
        """
        last_failure: Dict[str, Any] = {"success": False, "error": "No model configured"}
        for actual_model in self._candidate_models(model):
            params = self._params_for(actual_model, kwargs)
            for attempt in range(self.retry_policy.max_attempts):
                start_time = time.time()
                try:
                    self.logger.info(
                        "llm_completion_started",
                        model=actual_model,
                        attempt=attempt + 1,
                        message_count=len(messages),
                    )
                    response = await litellm.acompletion(
                        model=actual_model,
                        messages=messages,
                        timeout=self.retry_policy.timeout,
                        **params,
                    )
                    content = response.choices[0].message.content or ""
                    token_stats = self._usage_dict(getattr(response, "usage", None))
                    latency_ms = int((time.time() - start_time) * 1000)

                    if self.logging_config.get("log_token_usage", True):
                        self.logger.info(
                            "llm_completion_success",
                            model=actual_model,
                            tokens=token_stats.get("total_tokens", 0),
                            latency_ms=latency_ms,
                        )
                    return {
                        "success": True,
                        "content": content,
                        "usage": token_stats,
                        "model": actual_model,
                        "latency_ms": latency_ms,
                    }

                except Exception as e:
                    last_failure = self._failure(e, actual_model)
                    if last_failure["context_too_long"]:
                        # A smaller history is the only fix, the caller handles it
                        self.logger.warning("llm_context_too_long", model=actual_model, error=str(e)[:200])
                        return last_failure

                    if last_failure["retryable"] and attempt < self.retry_policy.max_attempts - 1:
                        backoff_time = self.retry_policy.backoff_multiplier**attempt
                        self.logger.warning(
                            "llm_completion_retry",
                            model=actual_model,
                            error_type=last_failure["error_type"],
                            attempt=attempt + 1,
                            backoff_seconds=backoff_time,
                        )
                        await asyncio.sleep(backoff_time)
                        continue

                    self.logger.error(
                        "llm_completion_failed",
                        model=actual_model,
                        error_type=last_failure["error_type"],
                        error=str(e)[:200],
                        attempts=attempt + 1,
                    )
                    break

        return last_failure

    async def complete_stream(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        **kwargs,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream a completion.

        Retries and falls back only while nothing has been emitted yet; once
        tokens were yielded a failure ends the stream with an error chunk.

        Yields:
            {"type": "token", "content"}, then {"type": "done", "usage"} or
            {"type": "error", "message", "retryable", "context_too_long"}
        """
        last_error: Dict[str, Any] = {"type": "error", "message": "No model configured"}
        for actual_model in self._candidate_models(model):
            params = self._params_for(actual_model, kwargs)
            for attempt in range(self.retry_policy.max_attempts):
                emitted = False
                try:
                    stream = await litellm.acompletion(
                        model=actual_model,
                        messages=messages,
                        timeout=self.retry_policy.timeout,
                        stream=True,
                        stream_options={"include_usage": True},
                        **params,
                    )
                    usage: Dict[str, Any] = {}
                    async for chunk in stream:
                        if getattr(chunk, "usage", None):
                            usage = self._usage_dict(chunk.usage)
                        if not chunk.choices:
                            continue
                        delta = chunk.choices[0].delta
                        token = getattr(delta, "content", None)
                        if token:
                            emitted = True
                            yield {"type": "token", "content": token}
                    yield {"type": "done", "usage": {**usage, "model": actual_model}}
                    return

                except Exception as e:
                    failure = self._failure(e, actual_model)
                    last_error = {
                        "type": "error",
                        "message": failure["error"],
                        "error_type": failure["error_type"],
                        "retryable": failure["retryable"],
                        "context_too_long": failure["context_too_long"],
                    }
                    if emitted or failure["context_too_long"]:
                        self.logger.error("llm_stream_failed", model=actual_model, error=str(e)[:200])
                        yield last_error
                        return
                    if failure["retryable"] and attempt < self.retry_policy.max_attempts - 1:
                        backoff_time = self.retry_policy.backoff_multiplier**attempt
                        self.logger.warning(
                            "llm_stream_retry",
                            model=actual_model,
                            attempt=attempt + 1,
                            backoff_seconds=backoff_time,
                        )
                        await asyncio.sleep(backoff_time)
                        continue
                    break

        yield last_error
