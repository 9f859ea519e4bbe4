"""
Iteration Orchestrator
======================

Drives the loop, one work item at a time:

    IDLE -> SELECT_ITEM -> EXECUTE -> {SUCCEED | FAIL} -> [RECOVER] -> PERSIST -> SELECT_ITEM ... -> DONE

Every execution starts from a clean worker context. Continuity comes from the
layered memory store (git log, knowledge document, task registry), and every
iteration ends with a durable write of the manifest, the knowledge document,
and the ledger. A failed write halts the loop.

Stop requests (SIGINT/SIGTERM or ``request_stop()``) are only honored in
SELECT_ITEM, so an item in flight always finishes first.
"""

import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from loopforge.client import ClaudeTextGenerator, GenerationOptions, TextGenerator, collect_response
from loopforge.config import LoopConfig
from loopforge.db import close_db, init_db
from loopforge.exceptions import GateFailure, PersistenceError, TransportError
from loopforge.ledger import TRAJECTORY_ABANDONED, TRAJECTORY_OPEN, TRAJECTORY_RESOLVED, Ledger
from loopforge.memory import GitLog, MemoryStore, extract_learnings, render_knowledge
from loopforge.output import (
    console,
    is_verbose,
    print_error,
    print_info,
    print_iteration_header,
    print_key_value_table,
    print_muted,
    print_recovery_notice,
    print_state,
    print_status_circuit_breaker,
    print_status_complete,
    print_status_halted,
    print_success,
    print_warning,
)
from loopforge.progress import print_progress_summary, print_review_cycle
from loopforge.prompts import build_iteration_prompt, extract_approach
from loopforge.quality_gates import QualityGateRunner
from loopforge.recovery import RecoveryFrame, CostComparison, build_frame, cost_comparison, extract_constraints, format_prompt
from loopforge.stall_detection import RecoveryDecision, SymptomReport, analyze, should_trigger_recovery
from loopforge.task_registry import TaskRegistry, WorkItem
from loopforge.trajectory import Trajectory

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response received"


class LoopState(Enum):
    IDLE = "idle"
    SELECT_ITEM = "select_item"
    EXECUTE = "execute"
    SUCCEED = "succeed"
    FAIL = "fail"
    RECOVER = "recover"
    PERSIST = "persist"
    DONE = "done"


@dataclass
class Execution:
    """What one call to the worker produced."""
    success: bool
    approach: str
    outcome: str
    output: str = ""
    tokens_used: int = 0
    time_ms: int = 0
    failure_reason: Optional[str] = None
    failed_gates: list[str] = field(default_factory=list)


@dataclass
class RecoveryRecordData:
    decision: RecoveryDecision
    report: SymptomReport
    frame: RecoveryFrame
    cost: CostComparison


@dataclass
class IterationResult:
    iteration: int
    item_id: str
    item_title: str
    outcome: str  # succeeded, failed, recovered, abandoned
    trajectory: Trajectory
    trajectory_status: str = TRAJECTORY_OPEN
    failure_reason: Optional[str] = None
    failed_gates: list[str] = field(default_factory=list)
    tokens_used: int = 0
    time_ms: int = 0
    recovery: Optional[RecoveryRecordData] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in ("succeeded", "recovered")


@dataclass
class RunSummary:
    iterations: int = 0
    completed: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)
    recoveries: int = 0
    stop_reason: str = ""


class IterationOrchestrator:
    """
    Runs the select/execute/persist loop over a task manifest.

    Collaborators can be injected for testing; by default the orchestrator
    uses Claude for generation, shell commands for gates, ``git log`` for
    history, and the SQLite ledger under .loopforge/.
    """

    def __init__(
        self,
        project_dir: Path,
        config: Optional[LoopConfig] = None,
        generator: Optional[TextGenerator] = None,
        gate_runner: Optional[QualityGateRunner] = None,
        git_log: Optional[GitLog] = None,
        ledger: Optional[Ledger] = None,
        handle_signals: bool = True,
    ):
        self.project_dir = Path(project_dir)
        self.config = config or LoopConfig.load(self.project_dir)
        self.generator = generator or ClaudeTextGenerator()
        self.gate_runner = gate_runner or QualityGateRunner(
            self.config.quality_gates,
            cwd=self.project_dir,
            timeout=self.config.gate_timeout,
        )
        self.git_log = git_log or GitLog(self.project_dir)
        self.ledger = ledger
        self.handle_signals = handle_signals

        # State
        self.state = LoopState.IDLE
        self.iteration = 0
        self.stop_requested = False
        self.consecutive_failures = 0
        self.trajectories: dict[str, Trajectory] = {}
        self.deferred: set[str] = set()
        self.summary = RunSummary()
        self._started_at: Optional[float] = None
        self._owns_db = False

        # Components (initialized in setup)
        self.registry: Optional[TaskRegistry] = None
        self.memory: Optional[MemoryStore] = None
        self.knowledge = None

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def setup(self) -> None:
        """Load the manifest and knowledge document."""
        self.registry = TaskRegistry(self.project_dir / self.config.tasks_path)
        if not self.registry.exists():
            print_warning(f"No task manifest at {self.registry.path}")
        self.registry.load()

        stale = self.registry.release_stale()
        if stale:
            print_info(f"Released items left in progress by an earlier run: {', '.join(stale)}")

        self.memory = MemoryStore(
            self.project_dir,
            self.config.knowledge_path,
            git_log=self.git_log,
            commit_window=self.config.commit_window,
            max_chars=self.config.context_max_chars,
        )
        self.knowledge = self.memory.load_knowledge()

        if self.handle_signals:
            self._setup_signal_handlers()

    def _setup_signal_handlers(self) -> None:
        """Register signal handlers for a graceful stop."""
        def signal_handler(sig, frame):
            if self.stop_requested:
                print_warning("\nForce exit requested. Exiting immediately.")
                sys.exit(1)
            self.request_stop()
            print_warning("\nStop requested. The loop will stop after the current item.")
            print_info("Press Ctrl+C again to force exit immediately.")

        signal.signal(signal.SIGINT, signal_handler)
        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, signal_handler)

    def request_stop(self) -> None:
        """Ask the loop to stop at the next item selection."""
        self.stop_requested = True

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    async def run(self) -> RunSummary:
        """
        Run until nothing is ready, a limit is hit, or a stop is requested.

        Raises:
            PersistenceError: a durable write failed; the loop stopped before
                selecting another item.
        """
        if self.registry is None:
            self.setup()

        if self.ledger is None:
            await init_db(self.project_dir)
            self.ledger = Ledger()
            self._owns_db = True

        self._started_at = time.monotonic()
        try:
            await self._restore_trajectories()
            print_progress_summary(self.registry.state)
            await self._run_main_loop()
        except PersistenceError as e:
            self.state = LoopState.DONE
            self.summary.stop_reason = str(e)
            logger.error("Halting: %s", e)
            print_status_halted(str(e))
            raise
        finally:
            if self._owns_db:
                await close_db()

        self._print_final_results()
        return self.summary

    async def _restore_trajectories(self) -> None:
        """Pick up open trajectories for items that are still waiting."""
        restored = await self.ledger.load_open_trajectories()
        for item_id, trajectory in restored.items():
            item = self.registry.get(item_id)
            if item is None or item.is_complete or item.title != trajectory.problem:
                continue
            self.trajectories[item_id] = trajectory
        if self.trajectories:
            print_muted(f"Resumed {len(self.trajectories)} open trajectories from the ledger")

    async def _run_main_loop(self) -> None:
        while True:
            item = self._select_item()
            if item is None:
                break

            self.iteration += 1
            result = await self._run_iteration(item)
            await self._persist(result)
            self._report(result)

            if self.config.review_every and self.iteration % self.config.review_every == 0:
                print_review_cycle(self.iteration, self.registry.state, self.trajectories.values())

            if self.config.sleep_between > 0:
                await asyncio.sleep(self.config.sleep_between)

        self.state = LoopState.DONE

    def _select_item(self) -> Optional[WorkItem]:
        """SELECT_ITEM: honor stop requests and limits, then pick the next ready item."""
        self.state = LoopState.SELECT_ITEM

        if self.stop_requested:
            return self._stop("stop requested")

        if self.config.max_iterations and self.iteration >= self.config.max_iterations:
            print_warning(f"Reached max iterations ({self.config.max_iterations})")
            return self._stop("iteration cap reached")

        if self.config.max_hours and self._started_at is not None:
            elapsed_hours = (time.monotonic() - self._started_at) / 3600
            if elapsed_hours >= self.config.max_hours:
                print_warning(f"Reached time limit ({self.config.max_hours}h)")
                return self._stop("time limit reached")

        if self.consecutive_failures >= self.config.max_consecutive_failures:
            print_status_circuit_breaker(self.consecutive_failures)
            return self._stop("too many consecutive failures")

        item = self.registry.next_ready(exclude=self.deferred)
        if item is None:
            stats = self.registry.stats
            if stats.completed == stats.total:
                return self._stop("all items complete")
            return self._stop("no ready items")

        logger.debug("Selected %s (priority %d)", item.id, item.priority)
        return item

    def _stop(self, reason: str) -> None:
        self.summary.stop_reason = reason
        logger.info("Loop stopping: %s", reason)
        return None

    # -------------------------------------------------------------------------
    # One iteration
    # -------------------------------------------------------------------------

    async def _run_iteration(self, item: WorkItem) -> IterationResult:
        print_iteration_header(self.iteration, item.id, item.title)

        self.registry.start(item.id)
        trajectory = self.trajectories.get(item.id)
        if trajectory is None:
            trajectory = Trajectory(problem=item.title, item_id=item.id)
            self.trajectories[item.id] = trajectory

        execution = await self._execute(item)
        self._record_attempt(trajectory, execution)
        result = IterationResult(
            iteration=self.iteration,
            item_id=item.id,
            item_title=item.title,
            outcome="succeeded",
            trajectory=trajectory,
            tokens_used=execution.tokens_used,
            time_ms=execution.time_ms,
        )

        if execution.success:
            self._succeed(item, trajectory, execution, result)
            return result

        # FAIL
        self.state = LoopState.FAIL
        result.outcome = "failed"
        result.failure_reason = execution.failure_reason
        result.failed_gates = execution.failed_gates

        report = analyze(trajectory.snapshot())
        decision = should_trigger_recovery(trajectory.failed_count, report)
        logger.debug("Trajectory %s: %s (confidence %d)", item.id, decision.reason, report.stuck_confidence)

        if not decision.trigger:
            self.registry.release(item.id)
            return result

        # RECOVER
        self.state = LoopState.RECOVER
        snapshot = trajectory.snapshot()
        frame = build_frame(snapshot)
        cost = cost_comparison(snapshot)
        result.recovery = RecoveryRecordData(decision, report, frame, cost)
        print_recovery_notice(decision.reason, cost.recommendation)
        logger.info("Stuck trajectory detected for %s, reframing: %s", item.id, decision.reason)

        retry = await self._execute(item, recovery=format_prompt(frame))
        self._record_attempt(trajectory, retry)
        result.tokens_used += retry.tokens_used
        result.time_ms += retry.time_ms

        if retry.success:
            self._succeed(item, trajectory, retry, result)
            result.outcome = "recovered"
            result.failure_reason = None
            result.failed_gates = []
            return result

        result.failure_reason = retry.failure_reason
        result.failed_gates = retry.failed_gates
        self._abandon(item, trajectory, frame, result)
        return result

    async def _execute(self, item: WorkItem, recovery: Optional[str] = None) -> Execution:
        """EXECUTE: one clean-context worker call, then the quality gates."""
        self.state = LoopState.EXECUTE
        # git log runs a subprocess; keep it off the event loop
        context = await asyncio.to_thread(self.memory.build_context, self.registry.state, self.knowledge)
        prompt = build_iteration_prompt(
            item,
            render_knowledge(self.knowledge),
            context,
            self.config,
            recovery=recovery,
        )
        options = GenerationOptions(
            model=self.config.model,
            allowed_capabilities=self.config.allowed_capabilities,
            timeout=self.config.generation_timeout,
            cwd=self.project_dir,
        )

        print_state("EXECUTE", f"{item.id} with {'recovery frame' if recovery else 'fresh context'}")
        if is_verbose():
            print_muted(f"Prompt: {len(prompt)} chars ({len(context)} chars of memory context)")
        try:
            response = await collect_response(self.generator, prompt, options)
        except TransportError as e:
            return Execution(
                success=False,
                approach=NO_RESPONSE,
                outcome=f"Transport error: {e.reason}",
                failure_reason=e.reason,
            )

        approach = extract_approach(response.text)

        print_state("GATES", ", ".join(self.config.quality_gates) or "none", style="lf.state.persist")
        gates = await self.gate_runner.run_all()
        try:
            gates.raise_for_failure()
        except GateFailure as e:
            return Execution(
                success=False,
                approach=approach,
                outcome=f"Quality gates failed: {', '.join(e.gates)}",
                output=response.text,
                tokens_used=response.tokens_used,
                time_ms=response.time_ms,
                failure_reason=str(e),
                failed_gates=e.gates,
            )

        return Execution(
            success=True,
            approach=approach,
            outcome="Completed; all quality gates passed",
            output=response.text,
            tokens_used=response.tokens_used,
            time_ms=response.time_ms,
        )

    @staticmethod
    def _record_attempt(trajectory: Trajectory, execution: Execution) -> None:
        trajectory.add_attempt(
            approach=execution.approach,
            outcome=execution.outcome,
            success=execution.success,
            tokens_used=execution.tokens_used,
            time_ms=execution.time_ms,
            failure_reason=execution.failure_reason,
        )

    def _succeed(self, item: WorkItem, trajectory: Trajectory, execution: Execution, result: IterationResult) -> None:
        """SUCCEED: complete the item and keep what the worker learned."""
        self.state = LoopState.SUCCEED
        self.registry.complete(item.id)

        for learning in extract_learnings(execution.output):
            self.knowledge.add_learning(learning, self.config.max_recent_learnings)

        result.trajectory_status = TRAJECTORY_RESOLVED
        self.trajectories.pop(item.id, None)
        self.summary.completed.append(item.id)

    def _abandon(self, item: WorkItem, trajectory: Trajectory, frame: RecoveryFrame, result: IterationResult) -> None:
        """Give up on the item for this run, keeping the constraints as mistakes."""
        result.outcome = "abandoned"
        for constraint in extract_constraints(trajectory):
            self.knowledge.record_mistake(f"{item.title}: {constraint.description}", reason=constraint.reason)
        self.knowledge.add_decision(
            f"Deferred '{item.title}' after {len(trajectory.attempts)} attempts. {frame.root_cause}"
        )

        self.registry.release(item.id)
        self.deferred.add(item.id)
        result.trajectory_status = TRAJECTORY_ABANDONED
        self.trajectories.pop(item.id, None)
        self.summary.abandoned.append(item.id)

    # -------------------------------------------------------------------------
    # Persist & report
    # -------------------------------------------------------------------------

    async def _persist(self, result: IterationResult) -> None:
        """PERSIST: write everything, success or not. Any failure is fatal."""
        self.state = LoopState.PERSIST
        self.registry.save()
        self.memory.save_knowledge(self.knowledge)

        await self.ledger.save_trajectory(result.trajectory, result.trajectory_status)
        if result.recovery is not None:
            recovery = result.recovery
            await self.ledger.record_recovery(
                item_id=result.item_id,
                reason=recovery.decision.reason,
                stuck_confidence=recovery.report.stuck_confidence,
                recommendation=recovery.cost.recommendation,
                frame=recovery.frame.to_dict(),
                cost=recovery.cost.to_dict(),
                succeeded=result.succeeded,
            )
        await self.ledger.record_iteration(
            number=result.iteration,
            item_id=result.item_id,
            item_title=result.item_title,
            outcome=result.outcome,
            failure_reason=result.failure_reason,
            failed_gates=result.failed_gates,
            tokens_used=result.tokens_used,
            time_ms=result.time_ms,
        )

    def _report(self, result: IterationResult) -> None:
        self.summary.iterations = self.iteration
        if result.recovery is not None:
            self.summary.recoveries += 1

        if result.succeeded:
            self.consecutive_failures = 0
            label = "completed after recovery" if result.outcome == "recovered" else "completed"
            print_success(f"{result.item_id} {label}")
        else:
            self.consecutive_failures += 1
            detail = result.failure_reason or "unknown failure"
            if result.outcome == "abandoned":
                print_error(f"{result.item_id} abandoned for this run: {detail}")
            else:
                print_error(f"{result.item_id} failed: {detail}")

    def _print_final_results(self) -> None:
        stats = self.registry.stats
        console.print()
        if stats.total and stats.completed == stats.total:
            print_status_complete(stats.completed, stats.total)
        print_key_value_table(
            {
                "Iterations": self.summary.iterations,
                "Completed": ", ".join(self.summary.completed) or "none",
                "Abandoned": ", ".join(self.summary.abandoned) or "none",
                "Recoveries": self.summary.recoveries,
                "Stopped because": self.summary.stop_reason,
            },
            title="Run Summary",
        )
        print_progress_summary(self.registry.state)
