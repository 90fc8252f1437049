"""Background sampling loop that feeds readings into the ingestor."""

from __future__ import annotations

import itertools
import logging
import random
from functools import lru_cache
from threading import Event, Lock, Thread, current_thread
from typing import Callable, Iterable, Optional

from app.schemas import Reading, SamplingState
from models.errors import ReadingValidationError, StorageError
from models.records import SENSOR_LOCATIONS
from services.configuration import ConfigurationStore, build_default_configuration_store
from services.ingestor import ReadingIngestor, build_default_ingestor
from settings import get_settings

logger = logging.getLogger(__name__)


def simulated_level() -> int:
    return random.randint(0, 99)


class SamplingScheduler:
    """Runs one tick every ``interval_ms`` on a single worker thread.

    ``start`` always tears down the previous worker before creating a new
    one, so two timers never run side by side. Configuration changes only
    take effect through ``restart``.
    """

    def __init__(
        self,
        ingestor: ReadingIngestor,
        configurations: ConfigurationStore,
        sensor_id: str,
        simulation: bool = False,
        value_source: Callable[[], float] = simulated_level,
        rotation: Optional[Iterable[str]] = None,
    ) -> None:
        self.ingestor = ingestor
        self.configurations = configurations
        self.sensor_id = sensor_id
        self.simulation = simulation
        self.value_source = value_source
        self._rotation = itertools.cycle(tuple(rotation or SENSOR_LOCATIONS.keys()))
        self._state_lock = Lock()
        self._stats_lock = Lock()
        self._worker: Optional[Thread] = None
        self._stop_event: Optional[Event] = None
        self._interval_ms: Optional[int] = None
        self.ticks = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._worker is not None and self._worker.is_alive()

    @property
    def interval_ms(self) -> Optional[int]:
        return self._interval_ms

    def start(self, interval_ms: int) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive.")

        with self._state_lock:
            self._halt_worker()
            stop_event = Event()
            worker = Thread(
                target=self._run,
                args=(interval_ms / 1000.0, stop_event),
                name="sampling-scheduler",
                daemon=True,
            )
            self._stop_event = stop_event
            self._worker = worker
            self._interval_ms = interval_ms
            worker.start()

        logger.info("Sampling started", extra={"interval_ms": interval_ms})

    def stop(self) -> None:
        with self._state_lock:
            stopped = self._halt_worker()
            self._interval_ms = None
        if stopped:
            logger.info("Sampling stopped")

    def restart(self) -> int:
        """Reload the interval from the current configuration and start again."""

        interval_ms = self.configurations.current_or_default().sampling_interval_ms
        self.start(interval_ms)
        return interval_ms

    def tick(self) -> Optional[Reading]:
        """Take one sample; failures are logged and never propagate."""

        sensor_id = next(self._rotation) if self.simulation else self.sensor_id
        raw_value = self.value_source()
        try:
            reading = self.ingestor.ingest(sensor_id, raw_value)
        except (StorageError, ReadingValidationError) as exc:
            with self._stats_lock:
                self.failures += 1
            logger.warning(
                "Sampling tick failed",
                extra={"sensor_id": sensor_id, "raw_value": raw_value, "reason": str(exc)},
            )
            return None

        with self._stats_lock:
            self.ticks += 1
        return reading

    def state(self) -> SamplingState:
        with self._stats_lock:
            ticks, failures = self.ticks, self.failures
        return SamplingState(
            running=self.is_running,
            interval_ms=self._interval_ms,
            simulation=self.simulation,
            ticks=ticks,
            failures=failures,
        )

    def _run(self, interval_seconds: float, stop_event: Event) -> None:
        while not stop_event.wait(interval_seconds):
            try:
                self.tick()
            except Exception:  # pragma: no cover - keep the loop alive
                with self._stats_lock:
                    self.failures += 1
                logger.exception("Unexpected error during sampling tick")

    def _halt_worker(self) -> bool:
        worker, stop_event = self._worker, self._stop_event
        self._worker = None
        self._stop_event = None
        if worker is None or stop_event is None:
            return False
        stop_event.set()
        if worker is not current_thread():
            worker.join()
        return True


@lru_cache
def build_default_scheduler() -> SamplingScheduler:
    settings = get_settings()
    return SamplingScheduler(
        ingestor=build_default_ingestor(),
        configurations=build_default_configuration_store(),
        sensor_id=settings.sampling_sensor_id,
        simulation=settings.sampling_simulation,
    )
