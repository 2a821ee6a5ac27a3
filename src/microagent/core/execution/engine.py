from __future__ import annotations

import contextvars
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any

from microagent.core.config.settings import ExecutionSettings
from microagent.core.context.deadline import Deadline
from microagent.core.context.schemas import AgentContext
from microagent.core.errors import (
    CollaboratorUnavailable,
    ErrorKind,
    InvariantViolation,
    LLMOutputError,
    StepExecutionError,
    error_kind_of,
)
from microagent.core.infra.breaker_manager import BreakerManager
from microagent.core.integrations.base import LanguageModel, ToolInvoker, ToolOutcome
from microagent.core.logging.context import log_context
from microagent.core.models.prompts import clarification_prompt, response_prompt
from microagent.core.planning.schemas import ExecutionPlan, ExecutionStep, PlanStrategy, StepType
from microagent.core.planning.validator import PlanValidator

from .merge import last_successful_output, merge_outputs
from .schemas import ExecutionResult, ExecutionState, StepResult, TokenUsage, ToolExecution
from .transforms import run_check, run_transform

logger = logging.getLogger("microagent.execution")

_POLL_S = 0.05


def estimate_tokens(text: str) -> int:
    return max(1, len(text) // 4) if text else 0


class _PlanRun:
    """Mutable bookkeeping for one plan execution; shared by its worker threads."""

    def __init__(self, plan: ExecutionPlan, context: AgentContext, deadline: Deadline) -> None:
        self.plan = plan
        self.context = context
        self.deadline = deadline
        self._lock = threading.Lock()
        self.outputs: dict[int, Any] = {}
        self.tool_executions: list[ToolExecution] = []
        self.token_usage = TokenUsage()

    def record_output(self, order: int, output: Any) -> None:
        with self._lock:
            self.outputs[order] = output

    def earlier_outputs(self, order: int) -> dict[int, Any]:
        with self._lock:
            return {key: value for key, value in self.outputs.items() if key < order}

    def record_tool(self, execution: ToolExecution) -> None:
        with self._lock:
            self.tool_executions.append(execution)

    def add_tokens(self, usage: TokenUsage) -> None:
        with self._lock:
            self.token_usage = self.token_usage + usage


class ExecutionEngine:
    """Runs a validated plan and reports one result per plan step, in plan order."""

    def __init__(
        self,
        settings: ExecutionSettings | None = None,
        *,
        llm: LanguageModel | None = None,
        tool_invoker: ToolInvoker | None = None,
        breaker_manager: BreakerManager | None = None,
        validator: PlanValidator | None = None,
    ) -> None:
        self.settings = settings or ExecutionSettings()
        self.llm = llm
        self.tool_invoker = tool_invoker
        self.breaker_manager = breaker_manager or BreakerManager()
        self.validator = validator or PlanValidator()
        self._step_pool = ThreadPoolExecutor(max_workers=self.settings.max_workers, thread_name_prefix="microagent-step")
        self._tool_pool = ThreadPoolExecutor(max_workers=self.settings.max_workers, thread_name_prefix="microagent-call")

    def execute(self, plan: ExecutionPlan, context: AgentContext) -> ExecutionResult:
        with log_context(plan_id=plan.id):
            # malformed plans are a bug upstream and must not be half-run
            self.validator.validate(plan)
            self._transition(plan, ExecutionState.PENDING, ExecutionState.RUNNING)

            run = _PlanRun(plan, context, context.deadline.child(self.settings.plan_timeout_s))
            if plan.strategy in (PlanStrategy.DIRECT, PlanStrategy.SINGLE_TOOL):
                results = [self._run_step(step, run) for step in plan.ordered_steps()]
            elif plan.strategy is PlanStrategy.SEQUENTIAL:
                results = self._run_sequential(run)
            elif plan.strategy is PlanStrategy.PARALLEL:
                results = self._run_parallel(run)
            else:
                raise InvariantViolation(f"no executor for strategy {plan.strategy!r}", stage="execution")

            state = self._final_state(plan, results)
            if plan.strategy is PlanStrategy.PARALLEL:
                final_output = merge_outputs(self.settings.merge_policy, results)
            else:
                final_output = last_successful_output(results)

            failed = next((result for result in results if not result.success), None)
            result = ExecutionResult(
                plan_id=plan.id,
                state=state,
                success=state is ExecutionState.SUCCEEDED,
                step_results=results,
                final_output=final_output,
                error=failed.error if failed is not None and state is ExecutionState.FAILED else None,
                error_kind=failed.error_kind if failed is not None and state is ExecutionState.FAILED else None,
                tool_executions=sorted(run.tool_executions, key=lambda item: item.started_at),
                token_usage=run.token_usage,
            )
            self._transition(plan, ExecutionState.RUNNING, state)
            return result

    def shutdown(self) -> None:
        self._step_pool.shutdown(wait=False, cancel_futures=True)
        self._tool_pool.shutdown(wait=False, cancel_futures=True)

    def _run_sequential(self, run: _PlanRun) -> list[StepResult]:
        results: list[StepResult] = []
        halted_by: StepResult | None = None
        for step in run.plan.ordered_steps():
            if halted_by is not None:
                results.append(
                    self._skipped(step, f"skipped: step {halted_by.order} failed", ErrorKind.CANCELLED)
                )
                continue
            result = self._run_step(step, run)
            results.append(result)
            if not result.success and step.critical:
                halted_by = result
        return results

    def _run_parallel(self, run: _PlanRun) -> list[StepResult]:
        steps = run.plan.ordered_steps()
        futures: dict[Future, ExecutionStep] = {}
        for step in steps:
            # each worker gets its own copy so plan/step log fields follow the call
            ctx = contextvars.copy_context()
            futures[self._step_pool.submit(ctx.run, self._run_step, step, run)] = step

        pending = set(futures)
        while pending and not run.deadline.expired:
            remaining = run.deadline.remaining()
            timeout = _POLL_S if remaining is None else min(_POLL_S, remaining)
            _, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)

        by_step: dict[str, StepResult] = {}
        for future, step in futures.items():
            if future in pending:
                future.cancel()
                continue
            by_step[step.id] = future.result()

        if pending:
            run.deadline.cancel()
            kind = ErrorKind.CANCELLED if run.context.deadline.cancelled else ErrorKind.TIMEOUT
            logger.warning(
                "parallel_steps_abandoned",
                extra={"extra_fields": {"count": len(pending), "reason": kind.value}},
            )
            for future in pending:
                step = futures[future]
                by_step[step.id] = self._skipped(step, f"{kind.value}: plan deadline reached", kind)
        return [by_step[step.id] for step in steps]

    def _run_step(self, step: ExecutionStep, run: _PlanRun) -> StepResult:
        with log_context(step_id=step.id):
            if run.deadline.expired:
                kind = ErrorKind.CANCELLED if run.deadline.cancelled else ErrorKind.TIMEOUT
                return self._skipped(step, f"{kind.value}: deadline reached before start", kind)

            start = time.perf_counter()
            metadata: dict[str, Any] = {}
            try:
                output = self._dispatch(step, run, metadata)
            except Exception as exc:
                duration_ms = int((time.perf_counter() - start) * 1000)
                kind = error_kind_of(exc)
                logger.info(
                    "step_failed",
                    extra={
                        "extra_fields": {
                            "step_type": step.type.value,
                            "tool_name": step.tool_name,
                            "error_kind": kind.value,
                            "error": str(exc),
                            "critical": step.critical,
                        }
                    },
                )
                return StepResult(
                    step_id=step.id,
                    order=step.order,
                    success=False,
                    error=str(exc) or exc.__class__.__name__,
                    error_kind=kind,
                    duration_ms=duration_ms,
                    metadata=metadata,
                )

            duration_ms = int((time.perf_counter() - start) * 1000)
            run.record_output(step.order, output)
            logger.debug(
                "step_succeeded",
                extra={"extra_fields": {"step_type": step.type.value, "duration_ms": duration_ms}},
            )
            return StepResult(
                step_id=step.id,
                order=step.order,
                success=True,
                output=output,
                duration_ms=duration_ms,
                metadata=metadata,
            )

    def _dispatch(self, step: ExecutionStep, run: _PlanRun, metadata: dict[str, Any]) -> Any:
        if step.type is StepType.LLM_CALL:
            return self._llm_step(step, run, metadata)
        if step.type is StepType.TOOL_EXECUTION:
            return self._tool_step(step, run, metadata)
        if step.type is StepType.DATA_TRANSFORM:
            return run_transform(step.parameters, run.earlier_outputs(step.order))
        if step.type is StepType.DECISION:
            return run_check(step.parameters, run.earlier_outputs(step.order))
        raise InvariantViolation(f"unknown step type {step.type!r}", stage="execution")

    def _llm_step(self, step: ExecutionStep, run: _PlanRun, metadata: dict[str, Any]) -> str:
        params = step.parameters
        kind = params.get("prompt_kind", "respond")
        message = str(params.get("message", ""))
        earlier = [str(value) for _, value in sorted(run.earlier_outputs(step.order).items()) if value is not None]

        if kind == "clarify":
            prompt = clarification_prompt(message)
        else:
            memory_block = str(run.context.technical.get("memory_block") or "")
            prompt = response_prompt(message, memory_block, earlier if kind == "synthesize" else None)

        if self.llm is not None:
            try:
                text = self.llm.generate(
                    prompt,
                    {"prompt_kind": kind, "intent": params.get("intent"), "timeout_s": run.deadline.bound(step.timeout_s)},
                )
            except (CollaboratorUnavailable, LLMOutputError) as exc:
                logger.info("llm_step_fallback", extra={"extra_fields": {"reason": str(exc)}})
            else:
                if text and text.strip():
                    run.add_tokens(TokenUsage(prompt_tokens=estimate_tokens(prompt), completion_tokens=estimate_tokens(text)))
                    metadata["model"] = getattr(self.llm, "model_name", "unknown")
                    return text.strip()

        metadata["fallback"] = True
        if params.get("fallback"):
            return str(params["fallback"])
        if kind == "synthesize" and earlier:
            return "\n".join(earlier)
        return f"done:{step.description}"

    def _tool_step(self, step: ExecutionStep, run: _PlanRun, metadata: dict[str, Any]) -> Any:
        if self.tool_invoker is None:
            raise StepExecutionError("no tool invoker configured", stage="execution")
        tool_name = str(step.tool_name)
        timeout = run.deadline.bound(step.timeout_s or self.settings.tool_timeout_s)
        metadata["tool_name"] = tool_name
        metadata["timeout_s"] = timeout

        started_at = datetime.now(timezone.utc)
        try:
            outcome = self.breaker_manager.wrap(f"tool:{tool_name}", lambda: self._invoke(tool_name, step.parameters, timeout))
        except Exception as exc:
            run.record_tool(self._tool_record(step, started_at, error=str(exc) or exc.__class__.__name__))
            raise
        run.record_tool(self._tool_record(step, started_at, output=outcome.output))
        return outcome.output

    @staticmethod
    def _tool_record(step: ExecutionStep, started_at: datetime, output: Any = None, error: str | None = None) -> ToolExecution:
        return ToolExecution(
            step_id=step.id,
            tool_name=str(step.tool_name),
            parameters=dict(step.parameters),
            success=error is None,
            output=output,
            error=error,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )

    def _invoke(self, tool_name: str, parameters: dict[str, Any], timeout: float | None) -> ToolOutcome:
        future = self._tool_pool.submit(self.tool_invoker.invoke, tool_name, dict(parameters), timeout)
        try:
            # the invoker is trusted to honour the timeout, but not relied on
            outcome = future.result(timeout=None if timeout is None else timeout + _POLL_S)
        except FutureTimeout:
            future.cancel()
            raise TimeoutError(f"timeout:{tool_name} exceeded {timeout}s") from None
        if not outcome.ok:
            if str(outcome.error).startswith("timeout"):
                raise TimeoutError(outcome.error)
            raise StepExecutionError(outcome.error, stage="execution")
        return outcome

    @staticmethod
    def _skipped(step: ExecutionStep, reason: str, kind: ErrorKind) -> StepResult:
        return StepResult(step_id=step.id, order=step.order, success=False, error=reason, error_kind=kind)

    @staticmethod
    def _final_state(plan: ExecutionPlan, results: list[StepResult]) -> ExecutionState:
        if all(result.success for result in results):
            return ExecutionState.SUCCEEDED
        if not any(result.success for result in results):
            return ExecutionState.FAILED
        critical = {step.id for step in plan.steps if step.critical}
        if plan.strategy is not PlanStrategy.PARALLEL and any(
            not result.success and result.step_id in critical for result in results
        ):
            return ExecutionState.FAILED
        return ExecutionState.PARTIALLY_FAILED

    @staticmethod
    def _transition(plan: ExecutionPlan, old: ExecutionState, new: ExecutionState) -> None:
        logger.info(
            "execution_state",
            extra={
                "extra_fields": {
                    "strategy": plan.strategy.value,
                    "from_state": old.value,
                    "to_state": new.value,
                }
            },
        )
