"""Configuration manager: fallback chain, refresh orchestration and queries."""

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from types import TracebackType

import structlog

from remote_config.attributes.provider import AttributeProvider
from remote_config.changes.detector import ChangeDetector, ChangeSet, ChangeTrigger
from remote_config.errors import NoConfigAvailableError, ParseError
from remote_config.fetch.models import FetchError, FetchErrorClass
from remote_config.fetch.protocols import RemoteFetcher
from remote_config.killswitch.controller import KillSwitchController
from remote_config.manager.lifecycle import (
    LifecycleEvent,
    LifecycleEventSource,
)
from remote_config.manager.models import (
    ManagerSettings,
    RefreshFailure,
    RefreshOutcome,
    RefreshResult,
)
from remote_config.manager.scheduler import RefreshScheduler
from remote_config.manager.state_machine import (
    ManagerState,
    ManagerStateMachine,
)
from remote_config.observability.metrics import ConfigMetrics
from remote_config.parser.defaults import CONTROL_VARIANT
from remote_config.parser.models import (
    ConfigSnapshot,
    ConfigSource,
    LiveEvent,
    LiveMessage,
)
from remote_config.parser.parser import ConfigParser, serialize_snapshot, utc_now
from remote_config.rollout.assignments import AssignmentCache
from remote_config.rollout.engine import BucketFunction, RolloutEngine
from remote_config.rollout.experiments import ExperimentAssigner, ExperimentAssignment
from remote_config.rollout.hashing import stable_bucket
from remote_config.store.errors import CacheError
from remote_config.store.models import assignments_key, snapshot_key
from remote_config.store.store import ConfigStore
from remote_config.types import T, coerce_scalar


logger = structlog.get_logger()

ChangeCallback = Callable[[ChangeSet], None]
FailureCallback = Callable[[RefreshFailure], None]


class ConfigManager:
    """Owns the active configuration snapshot and answers queries against it.

    Provides:
    - Fallback chain on bootstrap: persisted cache, then defaults
    - At most one fetch in flight; concurrent refresh requests share it
    - Atomic snapshot swap, persisted before it becomes active
    - Flag, experiment, config value and live-ops queries that never raise
    - Kill-switch overrides and change/failure notifications

    Example:
        manager = ConfigManager(fetcher, store, attributes)
        with manager:
            if manager.is_feature_enabled("multiplayer"):
                ...
    """

    def __init__(  # noqa: PLR0913
        self,
        fetcher: RemoteFetcher,
        store: ConfigStore,
        attributes: AttributeProvider,
        *,
        settings: ManagerSettings | None = None,
        default_snapshot: ConfigSnapshot | None = None,
        use_builtin_defaults: bool = True,
        clock: Callable[[], datetime] = utc_now,
        kill_switches: KillSwitchController | None = None,
        bucket_fn: BucketFunction = stable_bucket,
        lifecycle: LifecycleEventSource | None = None,
    ) -> None:
        """Initialize the manager. Nothing is loaded until initialize().

        Args:
            fetcher: Remote fetch boundary.
            store: Durable cache for snapshots and assignments.
            attributes: Supplies the stable id and targeting attributes.
            settings: Manager tunables.
            default_snapshot: Snapshot used when no cache is usable.
            use_builtin_defaults: Fall back to the built-in default
                snapshot when ``default_snapshot`` is None.
            clock: Source of the current time.
            kill_switches: Override controller (a private one if None).
            bucket_fn: Maps (stable_id, salt) to a bucket in [0, 99].
            lifecycle: Optional source of foreground/background events.
        """
        self._fetcher = fetcher
        self._store = store
        self._attributes = attributes
        self._settings = settings or ManagerSettings()
        self._clock = clock
        self._parser = ConfigParser(clock=clock)
        self._detector = ChangeDetector()
        self._kill_switches = kill_switches or KillSwitchController()
        self._rollout = RolloutEngine(bucket_fn=bucket_fn)
        self._assigner = ExperimentAssigner(bucket_fn=bucket_fn, clock=clock)
        self._assignments = AssignmentCache()
        self._lifecycle = lifecycle
        self._metrics = ConfigMetrics.get_instance()

        if default_snapshot is None and use_builtin_defaults:
            default_snapshot = self._parser.default_snapshot()
        self._default_snapshot = default_snapshot

        namespace = self._settings.namespace
        self._snapshot_key = snapshot_key(namespace)
        self._assignments_key = assignments_key(namespace)
        self._state_machine = ManagerStateMachine(namespace)
        self._log = logger.bind(component="manager", namespace=namespace)

        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="remote-config-fetch"
        )
        self._snapshot: ConfigSnapshot | None = None
        self._inflight: Future[RefreshResult] | None = None
        self._remote_applied = False
        self._serving_empty = False
        self._assignments_dirty = False
        self._assignments_write_pending = False
        self._worker_context = threading.local()
        self._assignments_write_lock = threading.Lock()
        self._last_success_at: datetime | None = None
        self._last_error: FetchError | None = None
        self._consecutive_failures = 0
        self._background_since: datetime | None = None
        self._change_subscribers: list[ChangeCallback] = []
        self._failure_subscribers: list[FailureCallback] = []
        self._scheduler: RefreshScheduler | None = None
        self._remove_lifecycle_listener: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> ConfigSnapshot:
        """Load the best locally available snapshot and become ready.

        Does not wait for the network. When enabled in settings, starts
        the periodic scheduler and an initial background refresh.

        Returns:
            The active snapshot.

        Raises:
            ManagerStateError: If called more than once.
            NoConfigAvailableError: If neither a usable cache nor defaults
                exist. The manager is left DEGRADED and can still be
                refreshed explicitly.
        """
        self._state_machine.transition(ManagerState.BOOTSTRAPPING)
        now = self._clock()

        self._load_assignments()

        snapshot = self._load_cached_snapshot(now)
        if snapshot is not None:
            self._metrics.record_cache_hit()
        else:
            self._metrics.record_cache_miss()
            snapshot = self._default_snapshot

        if snapshot is None:
            with self._lock:
                self._snapshot = ConfigSnapshot(
                    fetched_at=now, source=ConfigSource.DEFAULT
                )
                self._serving_empty = True
            self._state_machine.transition(ManagerState.DEGRADED)
            self._log.error("bootstrap_failed", reason="no cache and no defaults")
            raise NoConfigAvailableError(
                self._settings.namespace, "no usable cached snapshot and no defaults"
            )

        change_set = self._detector.diff(None, snapshot, resolve=self._evaluate_flag)
        with self._lock:
            self._snapshot = snapshot
        if self._assignments.sync_with(snapshot, now):
            self._persist_assignments()

        self._state_machine.transition(ManagerState.READY)
        self._log.info(
            "manager_initialized",
            source=snapshot.source.value,
            config_version=snapshot.config_version,
            cache_stale=self.is_cache_stale,
        )
        self._notify_changes(change_set)
        self._start_background()
        return snapshot

    def shutdown(self) -> None:
        """Stop refreshing and release resources.

        An in-flight fetch is aborted; a result arriving afterwards is
        discarded and never persisted. Experiment assignments not yet
        written are flushed to the store. Safe to call more than once.
        """
        with self._lock:
            if self._state_machine.is_terminal():
                return
            self._state_machine.transition(ManagerState.STOPPED)
            scheduler, self._scheduler = self._scheduler, None
            remove_listener, self._remove_lifecycle_listener = (
                self._remove_lifecycle_listener,
                None,
            )

        if remove_listener is not None:
            remove_listener()
        self._fetcher.close()
        self._executor.shutdown(wait=False, cancel_futures=True)
        if scheduler is not None:
            scheduler.stop()
        self._flush_assignments()
        self._log.info("manager_stopped")

    def __enter__(self) -> "ConfigManager":
        """Initialize on entering the context."""
        self.initialize()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Shut down on leaving the context."""
        self.shutdown()

    def on_foreground(
        self, now: datetime | None = None
    ) -> Future[RefreshResult] | None:
        """Handle the host returning to the foreground.

        Args:
            now: Event time (defaults to the clock).

        Returns:
            The refresh future if the host was away longer than the
            foreground threshold, else None.
        """
        now = now or self._clock()
        with self._lock:
            since, self._background_since = self._background_since, None
        if since is None or not self._state_machine.is_started():
            return None

        away_seconds = (now - since).total_seconds()
        if away_seconds <= self._settings.foreground_refresh_threshold_seconds:
            return None
        self._log.info("foreground_refresh", away_seconds=away_seconds)
        return self.refresh_async()

    def on_background(self, now: datetime | None = None) -> None:
        """Handle the host moving to the background."""
        with self._lock:
            self._background_since = now or self._clock()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh_async(self, force: bool = False) -> Future[RefreshResult]:
        """Start a refresh, or join the one already in flight.

        Args:
            force: Ignore the minimum fetch interval.

        Returns:
            Future resolving to the RefreshResult. Concurrent callers
            receive the same future. Calls made by subscribers while a
            refresh notifies them get an already completed SKIPPED result.

        Raises:
            ManagerStateError: If called before initialize().
        """
        with self._lock:
            state = self._state_machine.state
            if state == ManagerState.STOPPED:
                return self._completed(RefreshOutcome.SKIPPED)

            if getattr(self._worker_context, "refreshing", False):
                self._log.debug("refresh_skipped", reason="called_from_refresh")
                return self._completed(RefreshOutcome.SKIPPED)

            if self._inflight is not None and not self._inflight.done():
                self._metrics.record_coalesced_refresh()
                self._log.debug("refresh_coalesced")
                return self._inflight

            if not force and self._within_minimum_interval():
                self._log.debug(
                    "refresh_skipped",
                    reason="minimum_fetch_interval",
                    last_success_at=self._last_success_at,
                )
                self._metrics.record_refresh(RefreshOutcome.SKIPPED.value, 0.0)
                return self._completed(RefreshOutcome.SKIPPED)

            self._state_machine.transition(ManagerState.REFRESHING)
            future = self._executor.submit(self._run_refresh)
            self._inflight = future
            return future

    def refresh(
        self, force: bool = False, timeout: float | None = None
    ) -> RefreshResult:
        """Refresh and wait for the result.

        Args:
            force: Ignore the minimum fetch interval.
            timeout: Seconds to wait for the result.

        Returns:
            The RefreshResult.

        Raises:
            ManagerStateError: If called before initialize().
            TimeoutError: If the result is not ready within ``timeout``.
        """
        return self.refresh_async(force=force).result(timeout)

    def force_refresh(self, timeout: float | None = None) -> RefreshResult:
        """Refresh regardless of the minimum fetch interval."""
        return self.refresh(force=True, timeout=timeout)

    def _within_minimum_interval(self) -> bool:
        if self._last_success_at is None:
            return False
        elapsed = (self._clock() - self._last_success_at).total_seconds()
        return elapsed < self._settings.minimum_fetch_interval_seconds

    def _completed(self, outcome: RefreshOutcome) -> Future[RefreshResult]:
        future: Future[RefreshResult] = Future()
        future.set_result(RefreshResult(outcome=outcome, snapshot=self._snapshot))
        return future

    def _run_refresh(self) -> RefreshResult:
        start = time.perf_counter()
        self._worker_context.refreshing = True
        try:
            return self._refresh_once(start)
        except Exception as e:  # noqa: BLE001
            self._log.exception("refresh_crashed")
            if self._state_machine.is_terminal():
                return RefreshResult(
                    outcome=RefreshOutcome.SKIPPED,
                    snapshot=self.snapshot,
                    duration_ms=self._elapsed_ms(start),
                )
            error = FetchError(
                error_class=FetchErrorClass.MALFORMED_RESPONSE,
                message=f"Refresh failed: {type(e).__name__}: {e}",
            )
            return self._apply_failure(error, start, self._clock())
        finally:
            self._worker_context.refreshing = False

    def _refresh_once(self, start: float) -> RefreshResult:
        fetch_result = self._fetcher.fetch(
            self._attributes.user_attributes(),
            self._attributes.app_attributes(),
        )
        now = self._clock()

        if self._state_machine.is_terminal():
            self._log.info("refresh_result_discarded", reason="stopped")
            return RefreshResult(
                outcome=RefreshOutcome.SKIPPED,
                snapshot=self.snapshot,
                duration_ms=self._elapsed_ms(start),
            )

        if fetch_result.error is not None:
            return self._apply_failure(fetch_result.error, start, now)

        if fetch_result.not_modified or fetch_result.raw is None:
            return self._apply_unchanged(None, start, now)

        try:
            candidate = self._parser.parse(
                fetch_result.raw, source=ConfigSource.REMOTE, fetched_at=now
            )
        except ParseError as e:
            error = FetchError(
                error_class=FetchErrorClass.MALFORMED_RESPONSE, message=e.message
            )
            return self._apply_failure(error, start, now)

        return self._apply_candidate(candidate, start, now)

    def _apply_candidate(
        self, candidate: ConfigSnapshot, start: float, now: datetime
    ) -> RefreshResult:
        with self._lock:
            current = self._snapshot
            first_remote = not self._remote_applied

        change_set = self._detector.diff(
            current, candidate, resolve=self._evaluate_flag
        )
        if not change_set.has_changes and not first_remote:
            return self._apply_unchanged(change_set, start, now)

        self._persist_snapshot(candidate)

        with self._lock:
            if self._state_machine.is_terminal():
                self._log.info("refresh_result_discarded", reason="stopped")
                return RefreshResult(
                    outcome=RefreshOutcome.SKIPPED,
                    snapshot=self._snapshot,
                    duration_ms=self._elapsed_ms(start),
                )
            self._snapshot = candidate
            self._serving_empty = False
            self._remote_applied = True
            self._mark_success_locked(now)

        self._state_machine.try_transition(ManagerState.READY)
        self._metrics.record_swap()

        dropped = self._assignments.sync_with(candidate, now)
        if dropped:
            self._log.info("experiment_assignments_dropped", experiment_ids=dropped)
            self._persist_assignments()

        duration_ms = self._elapsed_ms(start)
        self._metrics.record_refresh(RefreshOutcome.CHANGED.value, duration_ms)
        self._log.info(
            "refresh_complete",
            outcome=RefreshOutcome.CHANGED.value,
            config_version=candidate.config_version,
            changed_sections=sorted(change_set.changed_sections),
            changed_flags=sorted(change_set.changed_flags),
            duration_ms=round(duration_ms, 2),
        )
        self._notify_changes(change_set)
        return RefreshResult(
            outcome=RefreshOutcome.CHANGED,
            snapshot=candidate,
            change_set=change_set,
            duration_ms=duration_ms,
        )

    def _apply_unchanged(
        self, change_set: ChangeSet | None, start: float, now: datetime
    ) -> RefreshResult:
        with self._lock:
            self._mark_success_locked(now)
            snapshot = self._snapshot
        self._state_machine.try_transition(ManagerState.READY)

        duration_ms = self._elapsed_ms(start)
        self._metrics.record_refresh(RefreshOutcome.UNCHANGED.value, duration_ms)
        self._log.info(
            "refresh_complete",
            outcome=RefreshOutcome.UNCHANGED.value,
            not_modified=change_set is None,
            duration_ms=round(duration_ms, 2),
        )
        return RefreshResult(
            outcome=RefreshOutcome.UNCHANGED,
            snapshot=snapshot,
            change_set=change_set,
            duration_ms=duration_ms,
        )

    def _apply_failure(
        self, error: FetchError, start: float, now: datetime
    ) -> RefreshResult:
        with self._lock:
            self._last_error = error
            self._consecutive_failures += 1
            failures = self._consecutive_failures
            degraded = self._is_degraded_locked()
            snapshot = self._snapshot

        self._state_machine.try_transition(
            ManagerState.DEGRADED if degraded else ManagerState.READY
        )

        duration_ms = self._elapsed_ms(start)
        self._metrics.record_refresh(RefreshOutcome.FAILED.value, duration_ms)
        self._log.warning(
            "refresh_failed",
            error_class=error.error_class.value,
            error=error.message,
            status_code=error.status_code,
            consecutive_failures=failures,
            degraded=degraded,
        )
        self._notify_failures(
            RefreshFailure(
                error=error,
                occurred_at=now,
                consecutive_failures=failures,
                degraded=degraded,
            )
        )
        return RefreshResult(
            outcome=RefreshOutcome.FAILED,
            snapshot=snapshot,
            error=error,
            duration_ms=duration_ms,
        )

    def _mark_success_locked(self, now: datetime) -> None:
        self._last_success_at = now
        self._last_error = None
        self._consecutive_failures = 0

    def _is_degraded_locked(self) -> bool:
        return self._snapshot is None or self._serving_empty

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000

    def _start_background(self) -> None:
        interval = self._settings.refresh_interval_seconds
        if interval is not None:
            scheduler = RefreshScheduler(
                trigger=self.refresh_async,
                interval_seconds=interval,
                max_backoff_seconds=self._settings.max_backoff_seconds,
            )
            with self._lock:
                self._scheduler = scheduler
            scheduler.start()

        if self._lifecycle is not None:
            remove = self._lifecycle.add_listener(self._handle_lifecycle_event)
            with self._lock:
                self._remove_lifecycle_listener = remove

        if self._settings.fetch_on_initialize:
            self.refresh_async(force=True)

    def _handle_lifecycle_event(
        self, event: LifecycleEvent, now: datetime | None
    ) -> None:
        if event == LifecycleEvent.FOREGROUND:
            self.on_foreground(now)
        else:
            self.on_background(now)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_cached_snapshot(self, now: datetime) -> ConfigSnapshot | None:
        try:
            entry = self._store.load(self._snapshot_key)
        except CacheError as e:
            self._metrics.record_cache_error()
            self._log.warning("cache_load_failed", error=str(e))
            return None

        if entry is None:
            self._log.info("cache_empty")
            return None

        age_seconds = entry.age_seconds(now)
        max_age = self._settings.cache_max_age_seconds
        if max_age is not None and age_seconds > max_age:
            self._log.info(
                "cache_expired", age_seconds=age_seconds, max_age_seconds=max_age
            )
            return None

        try:
            snapshot = self._parser.parse(
                entry.payload, source=ConfigSource.CACHE, fetched_at=entry.timestamp
            )
        except ParseError as e:
            self._metrics.record_cache_error()
            self._log.warning("cache_load_failed", error=e.message)
            return None

        self._log.info(
            "cache_loaded",
            age_seconds=round(age_seconds, 1),
            stale=age_seconds > self._settings.cache_ttl_seconds,
        )
        return snapshot

    def _persist_snapshot(self, snapshot: ConfigSnapshot) -> None:
        try:
            self._store.save(
                self._snapshot_key, serialize_snapshot(snapshot), snapshot.fetched_at
            )
        except CacheError as e:
            self._metrics.record_cache_error()
            self._log.warning("cache_write_failed", error=str(e))

    def _load_assignments(self) -> None:
        try:
            entry = self._store.load(self._assignments_key)
            if entry is None:
                return
            loaded = self._assignments.load_bytes(entry.payload)
        except CacheError as e:
            self._metrics.record_cache_error()
            self._log.warning("assignments_load_failed", error=str(e))
            return
        self._log.debug("assignments_loaded", count=loaded)

    def _schedule_assignment_write(self) -> None:
        with self._lock:
            self._assignments_dirty = True
            if self._assignments_write_pending or self._state_machine.is_terminal():
                return
            self._assignments_write_pending = True
            self._executor.submit(self._flush_assignments)

    def _flush_assignments(self) -> None:
        with self._assignments_write_lock:
            with self._lock:
                dirty = self._assignments_dirty
                self._assignments_write_pending = False
            if dirty:
                self._write_assignments()

    def _persist_assignments(self) -> None:
        with self._assignments_write_lock:
            self._write_assignments()

    def _write_assignments(self) -> None:
        with self._lock:
            self._assignments_dirty = False
            self._assignments_write_pending = False
            payload = self._assignments.to_bytes()
        try:
            self._store.save(self._assignments_key, payload, self._clock())
        except CacheError as e:
            self._metrics.record_cache_error()
            self._log.warning("assignments_write_failed", error=str(e))

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a callback for applied changes.

        Returns:
            Function that unregisters the callback.
        """
        with self._lock:
            self._change_subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._change_subscribers:
                    self._change_subscribers.remove(callback)

        return unsubscribe

    def subscribe_failures(self, callback: FailureCallback) -> Callable[[], None]:
        """Register a callback for failed refreshes.

        Returns:
            Function that unregisters the callback.
        """
        with self._lock:
            self._failure_subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._failure_subscribers:
                    self._failure_subscribers.remove(callback)

        return unsubscribe

    def _notify_changes(self, change_set: ChangeSet) -> None:
        with self._lock:
            subscribers = list(self._change_subscribers)
        for callback in subscribers:
            try:
                callback(change_set)
            except Exception as e:  # noqa: BLE001
                self._log.warning(
                    "subscriber_failed", channel="changes", error=str(e)
                )

    def _notify_failures(self, failure: RefreshFailure) -> None:
        with self._lock:
            subscribers = list(self._failure_subscribers)
        for callback in subscribers:
            try:
                callback(failure)
            except Exception as e:  # noqa: BLE001
                self._log.warning(
                    "subscriber_failed", channel="failures", error=str(e)
                )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> ManagerState:
        """Current lifecycle state."""
        return self._state_machine.state

    @property
    def snapshot(self) -> ConfigSnapshot | None:
        """The active snapshot (None before initialize())."""
        with self._lock:
            return self._snapshot

    @property
    def is_cache_stale(self) -> bool:
        """True while serving a cached snapshot older than the soft TTL."""
        snapshot = self.snapshot
        if snapshot is None or snapshot.source != ConfigSource.CACHE:
            return False
        age_seconds = (self._clock() - snapshot.fetched_at).total_seconds()
        return age_seconds > self._settings.cache_ttl_seconds

    @property
    def last_error(self) -> FetchError | None:
        """Error of the last refresh, cleared by the next success."""
        with self._lock:
            return self._last_error

    @property
    def last_successful_fetch_at(self) -> datetime | None:
        """Time of the last successful remote fetch."""
        with self._lock:
            return self._last_success_at

    @property
    def kill_switches(self) -> KillSwitchController:
        """The kill-switch controller consulted by flag queries."""
        return self._kill_switches

    def _evaluate_flag(self, snapshot: ConfigSnapshot | None, name: str) -> bool:
        computed = False
        flag = snapshot.feature_flags.get(name) if snapshot is not None else None
        if flag is not None:
            if flag.rollout_percentage is None:
                computed = bool(flag.enabled)
            elif flag.enabled is not False:
                computed = self._rollout.is_in_rollout(
                    self._attributes.stable_id(), name, flag.rollout_percentage
                )
        return self._kill_switches.resolve(name, computed)

    def is_feature_enabled(self, name: str) -> bool:
        """Resolve a feature flag for the current user.

        Order: kill switch, then the explicit flag value, then the
        rollout percentage, then False.
        """
        self._metrics.record_flag_evaluation()
        if self._kill_switches.get(name) is not None:
            self._metrics.record_kill_switch_override()
        return self._evaluate_flag(self.snapshot, name)

    def query_flag(self, name: str) -> bool:
        """Alias of is_feature_enabled."""
        return self.is_feature_enabled(name)

    def get_feature_variant(self, name: str) -> str:
        """The flag's variant when it resolves enabled, else control."""
        snapshot = self.snapshot
        flag = snapshot.feature_flags.get(name) if snapshot is not None else None
        if flag is None or not flag.variant:
            return CONTROL_VARIANT
        enabled = self._evaluate_flag(snapshot, name)
        return flag.variant if enabled else CONTROL_VARIANT

    def query_experiment(
        self, experiment_id: str, now: datetime | None = None
    ) -> ExperimentAssignment | None:
        """Assign the current user in one experiment.

        Args:
            experiment_id: Experiment to query.
            now: Evaluation time (defaults to the clock).

        Returns:
            The assignment, or None when the experiment is unknown, not
            running, or the user falls outside the allocated traffic.
        """
        snapshot = self.snapshot
        if snapshot is None:
            return None
        return self._assign(experiment_id, now or self._clock(), snapshot)

    def _assign(
        self, experiment_id: str, now: datetime, snapshot: ConfigSnapshot
    ) -> ExperimentAssignment | None:
        experiment = snapshot.get_experiment(experiment_id)
        if experiment is None:
            return None
        stable_id = self._attributes.stable_id()
        previous = self._assignments.get(stable_id, experiment_id)
        assignment = self._assignments.get_or_assign(
            stable_id, experiment, self._assigner, now
        )
        if assignment != previous:
            self._schedule_assignment_write()
        return assignment

    def get_experiment_variant(
        self, experiment_id: str, now: datetime | None = None
    ) -> str:
        """The user's variant in an experiment, or control."""
        assignment = self.query_experiment(experiment_id, now)
        return assignment.variant_id if assignment is not None else CONTROL_VARIANT

    def get_experiment_group(self, now: datetime | None = None) -> str:
        """Variant of the first running experiment the user is assigned to."""
        snapshot = self.snapshot
        if snapshot is None:
            return CONTROL_VARIANT
        now = now or self._clock()
        for experiment in snapshot.experiments:
            if not experiment.is_running(now):
                continue
            assignment = self._assign(experiment.experiment_id, now, snapshot)
            if assignment is not None:
                return assignment.variant_id
        return CONTROL_VARIANT

    def get_experiment_parameter(
        self, name: str, default: T, now: datetime | None = None
    ) -> T:
        """Look up a parameter from the user's assigned variants.

        Experiments are searched in declared order; the first assigned
        variant that defines the parameter wins.

        Args:
            name: Parameter name.
            default: Fallback; also selects the result type.
            now: Evaluation time (defaults to the clock).

        Returns:
            The parameter coerced to the type of ``default``, or ``default``.
        """
        snapshot = self.snapshot
        if snapshot is None:
            return default
        now = now or self._clock()
        for experiment in snapshot.experiments:
            if not experiment.is_running(now):
                continue
            assignment = self._assign(experiment.experiment_id, now, snapshot)
            if assignment is None:
                continue
            variant = experiment.get_variant(assignment.variant_id)
            if variant is not None and name in variant.parameters:
                return coerce_scalar(variant.parameters[name], default)
        return default

    def get_config_value(self, key: str, default: T) -> T:
        """Look up a config value, typed like ``default``.

        Args:
            key: ``section.field`` path, bare field name, or free-form key.
            default: Fallback; also selects the result type.

        Returns:
            The value coerced to the type of ``default``, or ``default``.
        """
        snapshot = self.snapshot
        if snapshot is None:
            return default
        return coerce_scalar(snapshot.lookup(key), default)

    def get_active_live_events(self, now: datetime | None = None) -> list[LiveEvent]:
        """Live events whose window contains ``now``."""
        snapshot = self.snapshot
        if snapshot is None:
            return []
        now = now or self._clock()
        return [event for event in snapshot.live_ops.events if event.is_active(now)]

    def get_active_live_messages(
        self, now: datetime | None = None
    ) -> list[LiveMessage]:
        """Active live messages, highest priority first."""
        snapshot = self.snapshot
        if snapshot is None:
            return []
        now = now or self._clock()
        active = [m for m in snapshot.live_ops.messages if m.is_active(now)]
        return sorted(active, key=lambda m: m.priority, reverse=True)

    # ------------------------------------------------------------------
    # Kill switches
    # ------------------------------------------------------------------

    def set_kill_switch(self, feature: str, value: bool) -> None:
        """Force a feature's state until cleared."""
        snapshot = self.snapshot
        before = self._evaluate_flag(snapshot, feature)
        self._kill_switches.set(feature, value)
        self._notify_kill_switch(feature, before, snapshot)

    def clear_kill_switch(self, feature: str) -> None:
        """Remove a feature's override."""
        snapshot = self.snapshot
        before = self._evaluate_flag(snapshot, feature)
        self._kill_switches.clear(feature)
        self._notify_kill_switch(feature, before, snapshot)

    def _notify_kill_switch(
        self, feature: str, before: bool, snapshot: ConfigSnapshot | None
    ) -> None:
        if self._evaluate_flag(snapshot, feature) == before:
            return
        self._notify_changes(
            ChangeSet(
                trigger=ChangeTrigger.KILL_SWITCH,
                changed_flags=frozenset({feature}),
                config_version=snapshot.config_version if snapshot else None,
            )
        )
