"""
Headless Trial Runner.

Run the same encounter many times with independent randomness, optionally
in a worker pool, and collect the per-trial logs. Completed trials are
folded into an outcome graph and hooks by the calling thread only.
"""

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from sim import config
from sim.errors import SimulationError, TrialAbortedError
from sim.executor import EncounterExecutor
from sim.rng import Roller
from sim.state import EncounterState
from sim.transitions import TransitionLog, replay
from ai.logger import DecisionLogger

logger = logging.getLogger(__name__)

POOL_MODES = ("thread", "process")

# How often the aggregator wakes up to check for cancellation
_POLL_SECONDS = 0.05


@dataclass
class TrialResult:
    """Outcome of one trial. ``log`` is partial when the trial failed."""
    index: int
    log: TransitionLog
    rounds: int = 0
    winner: Optional[int] = None
    error: Optional[TrialAbortedError] = None
    final_state: Optional[EncounterState] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_trial(
    initial_state: EncounterState,
    policy,
    roller,
    index: int = 0,
    max_rounds: int = None,
    decision_log_dir: str = None
) -> TrialResult:
    """
    Run a single trial.

    Args:
        initial_state: Encounter to simulate (not modified)
        policy: DecisionPolicy
        roller: Randomness stream for this trial only
        index: Trial index, carried into results and errors
        max_rounds: Round cap for a stalled encounter
        decision_log_dir: When set, policy decisions are written there as JSONL

    Returns:
        TrialResult; illegal actions and transitions are captured in ``error``
    """
    decision_logger = None
    if decision_log_dir:
        decision_logger = DecisionLogger(log_dir=decision_log_dir)
        seed_sequence = getattr(roller, "seed_sequence", None)
        decision_logger.start_trial(trial_index=index, seed=seed_sequence.entropy if seed_sequence is not None else None)

    executor = EncounterExecutor(initial_state, policy, roller, max_rounds=max_rounds, decision_logger=decision_logger)
    try:
        log = executor.run()
    except SimulationError as e:
        return TrialResult(
            index=index,
            log=executor.log,
            rounds=executor.state.round,
            error=TrialAbortedError(index, e, executor.failed_entry),
            final_state=executor.state,
        )
    finally:
        if decision_logger is not None:
            decision_logger.end_trial({"rounds": executor.state.round, "winner": executor.state.winner})

    return TrialResult(
        index=index,
        log=log,
        rounds=executor.state.round,
        winner=executor.state.winner,
        final_state=executor.state,
    )


def _trial_worker(initial_state, policy, root: Roller, index, max_rounds, decision_log_dir) -> TrialResult:
    """Pool entry point; module level so process pools can pickle it."""
    return run_trial(initial_state, policy, root.child(index), index, max_rounds, decision_log_dir)


@dataclass
class TrialBatch:
    """All trials of one aggregation run, in trial-index order."""
    trials: List[TrialResult]
    requested: int
    groups: List[int] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0
    hook_metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def completed(self) -> int:
        return sum(1 for t in self.trials if t.ok)

    @property
    def failed(self) -> List[TrialResult]:
        return [t for t in self.trials if not t.ok]

    def trials_per_second(self) -> float:
        return len(self.trials) / self.elapsed if self.elapsed > 0 else 0.0

    def logs(self) -> List[TransitionLog]:
        """Logs of completed trials only."""
        return [t.log for t in self.trials if t.ok]

    def summary(self) -> Dict:
        """
        Aggregate statistics over completed trials.

        Returns:
            Plain dict: counts, mean/std rounds, per-group win rates and
            the share of trials that ended without a winner
        """
        ok = [t for t in self.trials if t.ok]
        n = len(ok)
        rounds = np.array([t.rounds for t in ok], dtype=float)
        winners = [t.winner for t in ok]

        return {
            "requested": self.requested,
            "completed": n,
            "failed": len(self.trials) - n,
            "cancelled": self.cancelled,
            "elapsed": self.elapsed,
            "trials_per_second": self.trials_per_second(),
            "avg_rounds": float(np.mean(rounds)) if n else 0.0,
            "std_rounds": float(np.std(rounds)) if n else 0.0,
            "max_rounds": int(rounds.max()) if n else 0,
            "win_rates": {g: (winners.count(g) / n if n else 0.0) for g in self.groups},
            "no_winner_rate": winners.count(None) / n if n else 0.0,
        }


def _deadline_reached(started: float, deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() - started >= deadline


def run_trials(
    initial_state: EncounterState,
    policy,
    n_trials: int = None,
    seed: int = None,
    workers: int = None,
    mode: str = None,
    max_rounds: int = None,
    deadline: Optional[float] = None,
    stop_event: Optional[threading.Event] = None,
    graph=None,
    hooks: Sequence = (),
    progress: Optional[Callable[[int, int], None]] = None,
    decision_log_dir: str = None
) -> TrialBatch:
    """
    Run many independent trials and aggregate them.

    Trial ``i`` always uses child stream ``i`` of ``seed``, so results do not
    depend on scheduling. A stop request or deadline takes effect between
    trials: running trials finish, pending ones are never started.

    Args:
        initial_state: Encounter to simulate
        policy: DecisionPolicy (must be picklable for process mode)
        n_trials: Number of trials to run
        seed: Root seed
        workers: Pool size; 1 runs trials inline
        mode: "thread" or "process"
        max_rounds: Round cap per trial
        deadline: Seconds after which no new trials start
        stop_event: Set from another thread to stop early
        graph: Optional OutcomeGraph that completed trials are merged into
        hooks: Hooks replayed over every completed trial
        progress: Called with (finished, requested) after each trial
        decision_log_dir: Directory for per-trial JSONL decision logs

    Returns:
        TrialBatch
    """
    n_trials = config.DEFAULT_TRIALS if n_trials is None else n_trials
    seed = config.DEFAULT_SEED if seed is None else seed
    workers = config.DEFAULT_WORKERS if workers is None else workers
    mode = mode or config.DEFAULT_POOL_MODE
    if decision_log_dir is None and config.DEFAULT_DECISION_LOGGING:
        decision_log_dir = config.DEFAULT_DECISION_LOG_DIR or None

    if n_trials < 0:
        raise ValueError("n_trials must be non-negative")
    if workers < 1:
        raise ValueError("workers must be at least 1")
    if mode not in POOL_MODES:
        raise ValueError(f"mode must be one of {POOL_MODES}, got {mode!r}")

    root = Roller(seed=seed)
    started = time.monotonic()
    results: List[TrialResult] = []
    cancelled = False

    logger.info("Running %d trials (seed=%s, workers=%d, mode=%s)", n_trials, seed, workers, mode)
    for hook in hooks:
        hook.on_batch_start(initial_state)

    def should_stop() -> bool:
        return (stop_event is not None and stop_event.is_set()) or _deadline_reached(started, deadline)

    def collect(result: TrialResult):
        # single aggregating owner: only this thread merges and runs hooks
        results.append(result)
        if result.ok:
            if graph is not None:
                graph.merge(result.log)
            _run_hooks(hooks, initial_state, result)
        else:
            logger.warning("Trial %d failed: %s", result.index, result.error)
        if progress is not None:
            progress(len(results), n_trials)

    if workers == 1:
        for index in range(n_trials):
            if should_stop():
                cancelled = True
                break
            collect(_guarded_trial(initial_state, policy, root, index, max_rounds, decision_log_dir))
    else:
        pool_cls = concurrent.futures.ThreadPoolExecutor if mode == "thread" else concurrent.futures.ProcessPoolExecutor
        pool = pool_cls(max_workers=workers)
        futures: Dict[concurrent.futures.Future, int] = {}
        next_index = 0
        try:
            while next_index < n_trials or futures:
                # keep a bounded number of trials in flight
                while next_index < n_trials and len(futures) < workers * 2:
                    if should_stop():
                        cancelled = True
                        break
                    future = pool.submit(
                        _trial_worker, initial_state, policy, root, next_index, max_rounds, decision_log_dir)
                    futures[future] = next_index
                    next_index += 1
                if cancelled:
                    next_index = n_trials
                if not futures:
                    break

                done, _ = concurrent.futures.wait(
                    futures, timeout=_POLL_SECONDS, return_when=concurrent.futures.FIRST_COMPLETED)
                for future in done:
                    index = futures.pop(future)
                    try:
                        result = future.result()
                    except Exception as e:
                        # policy bugs and the like; isolate to this trial
                        result = TrialResult(index=index, log=TransitionLog(), error=TrialAbortedError(index, e))
                    collect(result)

                if not cancelled and next_index < n_trials and should_stop():
                    cancelled = True
                    next_index = n_trials
        finally:
            pool.shutdown(wait=True)

    results.sort(key=lambda r: r.index)
    batch = TrialBatch(
        trials=results,
        requested=n_trials,
        groups=sorted({p.group for p in initial_state.ordered()}),
        cancelled=cancelled,
        elapsed=time.monotonic() - started,
    )

    for hook in hooks:
        hook.on_batch_end(batch)
    batch.hook_metrics = {hook.name: hook.metrics() for hook in hooks}

    logger.info(
        "Finished %d/%d trials in %.2fs (%d failed%s)",
        batch.completed, n_trials, batch.elapsed, len(batch.failed), ", cancelled" if cancelled else "")
    return batch


def _guarded_trial(initial_state, policy, root, index, max_rounds, decision_log_dir) -> TrialResult:
    try:
        return _trial_worker(initial_state, policy, root, index, max_rounds, decision_log_dir)
    except Exception as e:
        return TrialResult(index=index, log=TransitionLog(), error=TrialAbortedError(index, e))


def _run_hooks(hooks: Sequence, initial_state: EncounterState, result: TrialResult):
    if not hooks:
        return
    for hook in hooks:
        hook.on_trial_start(result.index, initial_state)
    state = initial_state
    for state, transition in replay(initial_state, result.log):
        for hook in hooks:
            hook.on_transition(state, transition)
    for hook in hooks:
        hook.on_trial_end(result.index, state, result)
