"""
Agent orchestrator.

Runs a validated AgentAST: resolves secrets and variables up front, then
executes steps in order with conditional skips, per-attempt timeouts and
exponential-backoff retries, and finally renders the outputs.
"""

import asyncio
import os
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import OrchestratorConfig
from ..credentials import SecretResolver
from ..providers.contract import ProviderRegistry, ProviderTimeout
from .functions import FunctionLibrary
from .renderer import MISSING, TemplateRenderer, is_truthy, lookup_path
from .types import (
    PROVIDER_KINDS,
    AgentAST,
    ConfigurationError,
    DSLValidationError,
    ExecutionCancelledError,
    ExecutionContext,
    ExecutionPhase,
    ExecutionResult,
    Step,
    StepExecutionError,
    StepKind,
    VarKind,
)
from .validator import AgentValidator


BODY_METHODS = {"POST", "PUT", "PATCH"}

PROVIDER_FIELDS = ("prompt", "input", "text", "query", "collection", "operation", "backend", "top_k")

StepHandler = Callable[[Step, ExecutionContext], Awaitable[Any]]


class AgentOrchestrator:
    """
    Executes agents against injected collaborators:
    - ProviderRegistry for llm/vision/audio/vectordb/finetune steps
    - httpx client for http steps
    - FunctionLibrary for function steps
    - SecretResolver for declared secrets

    One instance may run many agents concurrently; all per-run state lives
    in the ExecutionContext created for each call.
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        resolver: SecretResolver | None = None,
        functions: FunctionLibrary | None = None,
        http_client: httpx.AsyncClient | None = None,
        validator: AgentValidator | None = None,
        config: OrchestratorConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry or ProviderRegistry()
        self.resolver = resolver or SecretResolver()
        self.functions = functions or FunctionLibrary()
        self.validator = validator or AgentValidator()
        self.config = config or OrchestratorConfig()
        self.renderer = TemplateRenderer()
        self._sleep = sleep
        self._http_client = http_client
        self._owns_http_client = http_client is None

        self._handlers: dict[StepKind, StepHandler] = {
            StepKind.LLM: self._execute_provider_step,
            StepKind.VISION: self._execute_provider_step,
            StepKind.AUDIO: self._execute_provider_step,
            StepKind.VECTORDB: self._execute_provider_step,
            StepKind.FINETUNE: self._execute_provider_step,
            StepKind.HTTP: self._execute_http_step,
            StepKind.FUNCTION: self._execute_function_step,
        }
        missing = set(StepKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for step kinds: {sorted(k.value for k in missing)}")

    async def execute(
        self,
        ast: AgentAST,
        input: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """Run an agent and return its resolved outputs."""
        result = await self.run(ast, input, options, cancel_event)
        return result.outputs

    async def run(
        self,
        ast: AgentAST,
        input: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
        context: ExecutionContext | None = None,
    ) -> ExecutionResult:
        """
        Run an agent.

        Args:
            ast: Agent to execute
            input: Raw trigger input
            options: Provider options (streaming, sampling parameters)
            cancel_event: Set it to stop before the next step or attempt
            context: Fresh context to run in; created when omitted

        Returns:
            ExecutionResult with outputs and the final context

        Raises:
            DSLValidationError: The AST is invalid; nothing ran
            ConfigurationError: Missing secret, variable or provider; nothing ran
            StepExecutionError: A step exhausted its attempts
            ExecutionCancelledError: ``cancel_event`` was set
            ValueError: ``context`` has already been used by another run
        """
        context = context or ExecutionContext()
        if context.phase != ExecutionPhase.INITIALIZING or context.attempts or context.state:
            raise ValueError("ExecutionContext already used; pass a fresh one per run")
        context.input = dict(input or {})
        context.options = dict(options or {})
        logger.info(f"Executing agent '{ast.id}' v{ast.version} ({len(ast.steps)} steps)")

        try:
            if self.config.validate_before_execute:
                validation = self.validator.validate(ast)
                if not validation.valid:
                    raise DSLValidationError(f"Agent '{ast.id}' failed validation", validation)

            context.phase = ExecutionPhase.RESOLVING_VARIABLES
            context.secrets = self._resolve_secrets(ast)
            context.vars = self._resolve_vars(ast, context)
            self._check_collaborators(ast)

            context.phase = ExecutionPhase.EXECUTING_STEPS
            for step in ast.steps:
                self._check_cancelled(cancel_event, step)
                await self._run_step(step, context, cancel_event)
            context.current_step = None

            context.phase = ExecutionPhase.RESOLVING_OUTPUTS
            outputs = self._resolve_outputs(ast, context)

            context.phase = ExecutionPhase.COMPLETED
            logger.info(f"Agent '{ast.id}' completed: outputs {sorted(outputs)}")
            return ExecutionResult(outputs=outputs, context=context)

        except (ExecutionCancelledError, asyncio.CancelledError):
            context.phase = ExecutionPhase.CANCELLED
            logger.warning(f"Agent '{ast.id}' cancelled at step '{context.current_step}'")
            raise
        except Exception as e:
            context.phase = ExecutionPhase.FAILED
            logger.error(f"Agent '{ast.id}' failed: {e}")
            raise

    # resolution

    def _resolve_secrets(self, ast: AgentAST) -> dict[str, str | None]:
        resolved = self.resolver.resolve(ast.secrets)
        missing = self.resolver.missing(resolved)
        if missing and self.config.strict_secrets:
            raise ConfigurationError(f"Missing required secrets: {', '.join(missing)}")
        return resolved

    def _resolve_vars(self, ast: AgentAST, context: ExecutionContext) -> dict[str, Any]:
        resolved: dict[str, Any] = {}
        for name, var in ast.vars.items():
            if var.kind == VarKind.INPUT:
                value = lookup_path(context.input, var.source.split("."))
            elif var.kind == VarKind.ENV:
                value = os.environ.get(var.source, MISSING)
            else:
                value = var.source

            if value is MISSING or value is None:
                if var.default is not None:
                    value = var.default
                elif var.required:
                    raise ConfigurationError(
                        f"Missing required variable '{name}' ({var.kind.value}.{var.source})"
                    )
                else:
                    value = None
            resolved[name] = value
        logger.debug(f"Resolved variables: {sorted(resolved)}")
        return resolved

    def _check_collaborators(self, ast: AgentAST) -> None:
        """Fail fast when a step's provider or function is not available."""
        for step in ast.steps:
            if step.kind in PROVIDER_KINDS:
                provider = self.registry.resolve(step)
                if provider is None:
                    named = f" '{step.provider}'" if step.provider else ""
                    raise ConfigurationError(
                        f"No provider{named} registered for {step.kind.value} step '{step.id}'"
                    )
                if not provider.supports(step.kind):
                    raise ConfigurationError(
                        f"Provider '{provider.name}' does not support {step.kind.value} step '{step.id}'"
                    )
            elif step.kind == StepKind.FUNCTION and not self.functions.has(step.function):
                raise ConfigurationError(f"Unknown function '{step.function}' in step '{step.id}'")

    def _resolve_outputs(self, ast: AgentAST, context: ExecutionContext) -> dict[str, Any]:
        outputs: dict[str, Any] = {}
        for key, template in ast.outputs.items():
            try:
                outputs[key] = self.renderer.render(template, context)
            except Exception as e:
                logger.warning(f"Could not render output '{key}': {e}")
                outputs[key] = template
        return outputs

    # steps

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event | None, step: Step) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionCancelledError(f"Execution cancelled before step '{step.id}'")

    async def _run_step(self, step: Step, context: ExecutionContext, cancel_event: asyncio.Event | None) -> None:
        context.current_step = step.id

        if step.when is not None:
            condition = self.renderer.render(step.when, context)
            if not is_truthy(condition):
                logger.info(f"Skipping step '{step.id}': condition {step.when!r} is false")
                context.skipped.append(step.id)
                return

        handler = self._handlers[step.kind]
        attempts = 0
        backoff: dict[str, float] = {"multiplier": self.config.backoff_base_seconds}
        if self.config.max_backoff_seconds is not None:
            backoff["max"] = self.config.max_backoff_seconds
        retrying = AsyncRetrying(
            stop=stop_after_attempt(step.max_attempts),
            wait=wait_exponential(**backoff),
            retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(ExecutionCancelledError),
            before_sleep=self._log_retry(step),
            sleep=self._sleep,
            reraise=True,
        )

        logger.debug(f"Running step '{step.id}' ({step.kind.value}, up to {step.max_attempts} attempts)")
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self._check_cancelled(cancel_event, step)
                    result = await self._attempt(step, handler, context)
        except ExecutionCancelledError:
            raise
        except Exception as e:
            raise StepExecutionError(step.id, str(e), attempts, e) from e
        finally:
            context.attempts[step.id] = attempts

        if step.save:
            context.state[step.save] = result
        logger.info(f"Step '{step.id}' succeeded after {attempts} attempt(s)")

    async def _attempt(self, step: Step, handler: StepHandler, context: ExecutionContext) -> Any:
        try:
            return await asyncio.wait_for(handler(step, context), timeout=step.timeout_seconds)
        except asyncio.TimeoutError:
            raise ProviderTimeout(f"Step '{step.id}' timed out after {step.timeout_seconds:.1f}s") from None

    @staticmethod
    def _log_retry(step: Step):
        def before_sleep(retry_state) -> None:
            error = retry_state.outcome.exception()
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"Step '{step.id}' attempt {retry_state.attempt_number}/{step.max_attempts} failed: {error}; "
                f"retrying in {delay:.1f}s"
            )
        return before_sleep

    async def _execute_provider_step(self, step: Step, context: ExecutionContext) -> Any:
        provider = self.registry.resolve(step)
        rendered: dict[str, Any] = {}
        for name in PROVIDER_FIELDS:
            value = getattr(step, name)
            if value is not None:
                rendered[name] = self.renderer.render_object(value, context)
        if step.args:
            rendered["args"] = self.renderer.render_object(step.args, context)
        for key, value in step.extra.items():
            rendered[key] = self.renderer.render(value, context)

        model = self.renderer.render_string(step.model, context) if step.model else None
        return await provider.execute(step.kind, model, rendered, context)

    async def _execute_http_step(self, step: Step, context: ExecutionContext) -> Any:
        method = (step.method or "GET").upper()
        url = self.renderer.render_string(step.url, context)
        headers = {
            key: self.renderer.render_string(value, context)
            for key, value in (step.headers or {}).items()
        }

        kwargs: dict[str, Any] = {}
        if method in BODY_METHODS and step.body is not None:
            body = self.renderer.render_object(step.body, context)
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = str(body)

        logger.debug(f"HTTP {method} {url}")
        response = await self._get_http_client().request(method, url, headers=headers, **kwargs)
        response.raise_for_status()

        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text

    async def _execute_function_step(self, step: Step, context: ExecutionContext) -> Any:
        if step.args:
            args: Any = self.renderer.render_object(step.args, context)
        elif step.input is not None:
            args = [self.renderer.render(step.input, context)]
        else:
            args = None
        return await self.functions.call(step.function, args)

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
