"""
Autonomous experiment runner.

Starts an experiment, polls its results on a fixed interval and stops it once
the sample-size, duration and confidence criteria all hold. Polling waits on a
threading.Event so cancellation is immediate and never changes experiment
status.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .manager import ExperimentManager
from .schema import ExperimentResult, ExperimentStatus, RunnerOptions
from .stats import early_stop_warning

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0  # seconds


def should_stop(result: ExperimentResult, options: RunnerOptions) -> bool:
    """True when sample size, duration and confidence criteria are all met."""
    return (
        result.sample_size >= options.min_sample_size
        and result.duration >= options.min_duration
        and (result.is_significant or result.confidence >= options.confidence_threshold)
    )


class ExperimentRunner:
    """
    Monitors experiments on behalf of a manager.

    Args:
        manager: The ExperimentManager owning the experiments
        poll_interval: Seconds between result checks
        max_workers: Thread pool size for run_in_background

    cancel() and shutdown() are final: a cancelled runner refuses new runs, so
    build a new runner to monitor again.
    """

    def __init__(
        self,
        manager: ExperimentManager,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_workers: int = 4,
    ):
        self.manager = manager
        self.poll_interval = poll_interval
        self._cancelled = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._max_workers = max_workers
        self._lock = threading.Lock()

    def run_experiment(
        self,
        experiment_id: str,
        options: Optional[RunnerOptions] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Optional[ExperimentResult]:
        """
        Start and monitor an experiment until it reaches a conclusion.

        Args:
            experiment_id: Experiment to run
            options: Stop criteria (defaults to RunnerOptions())
            stop_event: Optional caller-owned cancellation signal

        Returns:
            The concluding ExperimentResult; the latest result if cancelled or
            stopped externally; None if the experiment is unknown or already
            completed.
        """
        options = options or RunnerOptions()
        if self._cancelled.is_set():
            logger.warning(f"Runner already cancelled; not monitoring {experiment_id}")
            return None

        experiment = self.manager.get_experiment(experiment_id)
        if experiment is None:
            logger.warning(f"Runner: unknown experiment {experiment_id}")
            return None
        if experiment.status == ExperimentStatus.COMPLETED:
            logger.warning(f"Runner: experiment {experiment_id} already completed")
            return None
        if experiment.status == ExperimentStatus.DRAFT:
            self.manager.start_experiment(experiment_id)

        logger.info(
            f"Runner monitoring {experiment_id}: min_sample_size={options.min_sample_size}, "
            f"min_duration={options.min_duration}s, "
            f"confidence_threshold={options.confidence_threshold}, auto_stop={options.auto_stop}"
        )

        latest: Optional[ExperimentResult] = None
        n_analyses = 0
        while True:
            if self._is_cancelled(stop_event):
                logger.info(f"Runner cancelled for {experiment_id}")
                return latest

            result = self.manager.get_results(experiment_id)
            if result is not None:
                latest = result
                n_analyses += 1

                current = self.manager.get_experiment(experiment_id)
                if current is not None and current.status == ExperimentStatus.COMPLETED:
                    logger.info(f"Experiment {experiment_id} stopped externally")
                    return latest

                if should_stop(result, options):
                    warning = early_stop_warning(
                        options.planned_sample_size, result.sample_size, n_analyses
                    )
                    if warning:
                        logger.warning(f"{experiment_id}: {warning}")
                    if options.auto_stop:
                        self.manager.stop_experiment(experiment_id)
                        logger.info(
                            f"Auto-stopped {experiment_id}: n={result.sample_size}, "
                            f"confidence={result.confidence:.3f}, winner={result.winner}"
                        )
                    else:
                        logger.info(
                            f"{experiment_id} met stop criteria (confidence="
                            f"{result.confidence:.3f}); auto_stop disabled, leaving it running"
                        )
                    return result

            if self._wait(stop_event):
                logger.info(f"Runner cancelled for {experiment_id}")
                return latest

    def _is_cancelled(self, stop_event: Optional[threading.Event]) -> bool:
        return self._cancelled.is_set() or (stop_event is not None and stop_event.is_set())

    def _wait(self, stop_event: Optional[threading.Event]) -> bool:
        if stop_event is None:
            return self._cancelled.wait(self.poll_interval)
        # Wake on either signal; slice the wait so the runner-wide cancel is seen too
        remaining = self.poll_interval
        step = min(self.poll_interval, 0.5)
        while remaining > 0:
            if stop_event.wait(min(step, remaining)) or self._cancelled.is_set():
                return True
            remaining -= step
        return self._is_cancelled(stop_event)

    def run_in_background(
        self,
        experiment_id: str,
        options: Optional[RunnerOptions] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Future:
        """
        Submit run_experiment to the runner's thread pool.

        Raises:
            RuntimeError: If the runner has been cancelled or shut down
        """
        with self._lock:
            if self._cancelled.is_set():
                raise RuntimeError("cannot schedule runs on a cancelled runner")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="experiment-runner"
                )
            future = self._executor.submit(self.run_experiment, experiment_id, options, stop_event)
        return future

    def cancel(self) -> None:
        """Signal every monitoring loop of this runner to return. Irreversible."""
        self._cancelled.set()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel all loops and release the thread pool."""
        self.cancel()
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
