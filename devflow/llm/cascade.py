"""Model cascade invoker for devflow.

Calls generation backends for a role in a fixed fallback order. Each attempt
is bounded by a per-attempt timeout; a failed attempt is followed by a short
delay before the next backend unless it was the last one. The first success
wins. If every backend fails the caller gets one CascadeExhaustedError
listing each failure.

Per-role orderings come from config/models.yaml: the planner role puts the
strongest (slower) models first, coder/deployer roles lead with faster ones.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from devflow.core.config import BackendConfig, CascadeRegistry
from devflow.core.exceptions import CascadeExhaustedError, LLMError, ToolError
from devflow.llm.client import LLMClient, LLMMessage
from devflow.tools.shell import run_command

logger = logging.getLogger("devflow.llm.cascade")

DEFAULT_ATTEMPT_TIMEOUT_SECONDS = 10 * 60
DEFAULT_RETRY_DELAY_SECONDS = 2.0


class BackendCaller(Protocol):
    def __call__(
        self,
        backend: BackendConfig,
        prompt: str,
        timeout: float,
        cwd: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> str: ...


class BackendDispatcher:
    """Default BackendCaller: http backends via LLMClient, cli backends via subprocess."""

    def __init__(self, llm_client: LLMClient):
        self.llm_client = llm_client

    def __call__(
        self,
        backend: BackendConfig,
        prompt: str,
        timeout: float,
        cwd: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> str:
        if backend.kind == "cli":
            return self._call_cli(backend, prompt, timeout, cwd, system_prompt)
        return self._call_http(backend, prompt, timeout, system_prompt)

    def _call_http(
        self,
        backend: BackendConfig,
        prompt: str,
        timeout: float,
        system_prompt: Optional[str],
    ) -> str:
        messages: list[LLMMessage] = []
        if system_prompt:
            messages.append(LLMMessage(role="system", content=system_prompt))
        messages.append(LLMMessage(role="user", content=prompt))
        response = self.llm_client.complete(messages, model=backend.model, timeout=timeout)
        if not response.content.strip():
            raise LLMError(f"Empty response from {backend.model}")
        return response.content

    def _call_cli(
        self,
        backend: BackendConfig,
        prompt: str,
        timeout: float,
        cwd: Optional[str],
        system_prompt: Optional[str],
    ) -> str:
        if not backend.command:
            raise LLMError(f"Backend '{backend.name}' is kind=cli but has no command")
        full_prompt = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt
        result = run_command(backend.command, cwd=cwd, timeout=timeout, input_text=full_prompt)
        if not result.success:
            raise LLMError(
                f"{backend.name} exited with code {result.return_code}: {result.stderr.strip()[:500]}"
            )
        if not result.stdout.strip():
            raise LLMError(f"Empty output from {backend.name}")
        return result.stdout


class CascadeInvoker:
    """Runs a prompt through a role's backend cascade.

    Injected dependencies:
        registry: Per-role backend orderings.
        call_backend: Performs one attempt against one backend.
        attempt_timeout: Default seconds allowed per attempt.
        retry_delay: Seconds to wait after a failed attempt.
        sleep: Sleep function (replaceable in tests).
    """

    def __init__(
        self,
        registry: CascadeRegistry,
        call_backend: BackendCaller,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.registry = registry
        self.call_backend = call_backend
        self.attempt_timeout = attempt_timeout
        self.retry_delay = retry_delay
        self._sleep = sleep

    def invoke(
        self,
        prompt: str,
        role: str,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> str:
        """Return the first successful backend output for a role.

        Raises:
            ConfigError: If the role has no cascade configured.
            CascadeExhaustedError: If every backend in the cascade failed.
        """
        backends = self.registry.get_cascade(role)
        attempt_timeout = timeout if timeout is not None else self.attempt_timeout
        failures: list[str] = []

        for index, backend in enumerate(backends):
            logger.info("Attempting %s with %s (%d/%d)", role, backend.name, index + 1, len(backends))
            started = time.monotonic()
            try:
                output = self.call_backend(
                    backend,
                    prompt,
                    timeout=attempt_timeout,
                    cwd=cwd,
                    system_prompt=system_prompt,
                )
            except (LLMError, ToolError) as e:
                failures.append(f"{backend.name}: {e}")
                logger.warning("Failed with %s: %s", backend.name, e)
                if index < len(backends) - 1:
                    self._sleep(self.retry_delay)
                continue

            logger.info(
                "Success with %s for %s in %.1fs",
                backend.name, role, time.monotonic() - started,
            )
            return output

        raise CascadeExhaustedError(role, failures)
