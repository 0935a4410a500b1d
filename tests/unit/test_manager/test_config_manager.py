"""Unit tests for ConfigManager."""

import threading
from collections.abc import Callable, Generator
from concurrent.futures import Future
from datetime import datetime, timedelta
from typing import Any

import pytest

from remote_config.attributes.provider import StaticAttributeProvider
from remote_config.changes.detector import ChangeSet, ChangeTrigger
from remote_config.errors import NoConfigAvailableError
from remote_config.fetch.models import FetchErrorClass, FetchResult
from remote_config.killswitch.controller import KillSwitchController
from remote_config.manager.lifecycle import ManualLifecycleSource
from remote_config.manager.manager import ConfigManager
from remote_config.manager.models import (
    ManagerSettings,
    RefreshFailure,
    RefreshOutcome,
    RefreshResult,
)
from remote_config.manager.state_machine import ManagerState, ManagerStateError
from remote_config.observability.metrics import ConfigMetrics
from remote_config.parser import defaults
from remote_config.parser.models import ConfigSource
from remote_config.parser.parser import ConfigParser, serialize_snapshot
from remote_config.rollout.engine import BucketFunction
from remote_config.store.errors import CacheWriteError
from remote_config.store.models import assignments_key, snapshot_key
from remote_config.store.store import ConfigStore, MemoryConfigStore
from tests.helpers.fakes import (
    BlockingFetcher,
    StubFetcher,
    failed,
    ok,
    pinned_buckets,
)
from tests.helpers.time import FIXED_NOW, MutableClock


QUIET = ManagerSettings(refresh_interval_seconds=None, fetch_on_initialize=False)

REMOTE_PAYLOAD: dict[str, Any] = {
    "configVersion": "7",
    "gameBalance": {"difficultyMultiplier": 1.5},
    "featureFlags": {
        "multiplayer": True,
        "new_feature": {"enabled": True, "rolloutPercentage": 30, "variant": "v2"},
        "wide_feature": {"rolloutPercentage": 30},
        "off_feature": {"enabled": False, "rolloutPercentage": 100},
    },
    "experiments": [
        {
            "experimentId": "exp1",
            "isActive": True,
            "variants": [
                {"variantId": "A", "trafficAllocation": 50, "parameters": {"x": 1}},
                {"variantId": "B", "trafficAllocation": 50, "parameters": {"x": 2}},
            ],
        },
        {
            "experimentId": "paused",
            "isActive": False,
            "variants": [{"variantId": "A", "trafficAllocation": 100}],
        },
    ],
    "liveOps": {
        "events": [
            {
                "eventId": "summer",
                "name": "Summer Sale",
                "startTime": "2017-06-12T00:00:00+00:00",
                "endTime": "2017-06-14T00:00:00+00:00",
            },
            {
                "eventId": "spring",
                "name": "Spring Sale",
                "startTime": "2017-04-01T00:00:00+00:00",
                "endTime": "2017-04-08T00:00:00+00:00",
            },
        ],
        "messages": [
            {"messageId": "low", "title": "Low", "priority": 1},
            {"messageId": "high", "title": "High", "priority": 9},
            {
                "messageId": "later",
                "title": "Later",
                "priority": 50,
                "startTime": "2017-07-01T00:00:00+00:00",
            },
        ],
    },
    "values": {"welcomeText": "hello"},
}


def seed_cache(
    store: ConfigStore,
    payload: dict[str, Any],
    fetched_at: datetime,
    namespace: str = "default",
) -> None:
    """Write a snapshot into the store the way a past refresh would."""
    snapshot = ConfigParser(clock=lambda: fetched_at).parse(
        payload, source=ConfigSource.REMOTE, fetched_at=fetched_at
    )
    store.save(snapshot_key(namespace), serialize_snapshot(snapshot), fetched_at)


ManagerFactory = Callable[..., ConfigManager]


class GatedStore(MemoryConfigStore):
    """MemoryConfigStore whose assignment writes wait for a release."""

    def __init__(self, *, held: bool = False) -> None:
        super().__init__()
        self.writing = threading.Event()
        self.written = threading.Event()
        self.release = threading.Event()
        if not held:
            self.release.set()

    def save(self, key: str, payload: bytes, timestamp: datetime) -> None:
        if key != assignments_key("default"):
            super().save(key, payload, timestamp)
            return
        self.writing.set()
        self.release.wait(timeout=5)
        super().save(key, payload, timestamp)
        self.written.set()


@pytest.fixture(autouse=True)
def _reset_metrics() -> None:
    ConfigMetrics.reset()


@pytest.fixture
def clock() -> MutableClock:
    """Clock fixed at FIXED_NOW until a test advances it."""
    return MutableClock()


@pytest.fixture
def make_manager(clock: MutableClock) -> Generator[ManagerFactory]:
    """Build managers that are shut down after the test."""
    created: list[ConfigManager] = []

    def factory(
        fetcher: StubFetcher,
        *,
        store: ConfigStore | None = None,
        settings: ManagerSettings = QUIET,
        bucket_fn: BucketFunction = pinned_buckets({}),
        **kwargs: Any,
    ) -> ConfigManager:
        manager = ConfigManager(
            fetcher,
            store if store is not None else MemoryConfigStore(),
            StaticAttributeProvider(user_id="user-42", platform="ios"),
            settings=settings,
            clock=clock,
            bucket_fn=bucket_fn,
            **kwargs,
        )
        created.append(manager)
        return manager

    yield factory
    for manager in created:
        manager.shutdown()


class TestBootstrap:
    """Tests for initialize() and the fallback chain."""

    def test_defaults_when_cache_empty(self, make_manager: ManagerFactory) -> None:
        """Test an empty cache falls back to built-in defaults."""
        manager = make_manager(StubFetcher(ok({})))

        snapshot = manager.initialize()

        assert snapshot.source == ConfigSource.DEFAULT
        assert manager.state == ManagerState.READY
        multiplier = manager.get_config_value("difficultyMultiplier", 9.0)
        assert multiplier == defaults.DEFAULT_DIFFICULTY_MULTIPLIER
        assert ConfigMetrics.get_instance().cache_misses_total == 1

    def test_cache_preferred_over_defaults(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test a cached snapshot is used before any fetch."""
        store = MemoryConfigStore()
        seed_cache(
            store,
            {"gameBalance": {"difficultyMultiplier": 1.75}},
            FIXED_NOW - timedelta(hours=1),
        )
        fetcher = StubFetcher(ok({}))
        manager = make_manager(fetcher, store=store)

        snapshot = manager.initialize()

        assert snapshot.source == ConfigSource.CACHE
        assert manager.get_config_value("difficultyMultiplier", 1.0) == 1.75
        assert not manager.is_cache_stale
        assert fetcher.calls == 0

    def test_custom_default_snapshot(self, make_manager: ManagerFactory) -> None:
        """Test a host-supplied default snapshot is used on a cache miss."""
        default = ConfigParser(clock=lambda: FIXED_NOW).parse(
            {"values": {"welcomeText": "offline"}}, source=ConfigSource.DEFAULT
        )
        manager = make_manager(StubFetcher(ok({})), default_snapshot=default)

        manager.initialize()

        assert manager.get_config_value("welcomeText", "") == "offline"

    def test_stale_cache_is_used_and_flagged(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test a cache older than the soft TTL is used but marked stale."""
        store = MemoryConfigStore()
        seed_cache(store, {"values": {"k": "v"}}, FIXED_NOW - timedelta(hours=13))
        manager = make_manager(StubFetcher(ok({})), store=store)

        manager.initialize()

        assert manager.snapshot is not None
        assert manager.snapshot.source == ConfigSource.CACHE
        assert manager.is_cache_stale

    def test_cache_past_max_age_ignored(self, make_manager: ManagerFactory) -> None:
        """Test a cache older than the hard ceiling is ignored."""
        store = MemoryConfigStore()
        seed_cache(store, {"values": {"k": "v"}}, FIXED_NOW - timedelta(hours=25))
        settings = QUIET.model_copy(update={"cache_max_age_seconds": 24 * 3600.0})
        manager = make_manager(StubFetcher(ok({})), store=store, settings=settings)

        snapshot = manager.initialize()

        assert snapshot.source == ConfigSource.DEFAULT
        assert manager.get_config_value("k", "missing") == "missing"

    def test_corrupt_cache_falls_back(self, make_manager: ManagerFactory) -> None:
        """Test a cache entry failing verification is ignored."""
        store = MemoryConfigStore()
        seed_cache(store, {"values": {"k": "v"}}, FIXED_NOW)
        entry = store.load(snapshot_key("default"))
        assert entry is not None
        store._entries[entry.key] = entry.model_copy(update={"payload": b"{}"})
        manager = make_manager(StubFetcher(ok({})), store=store)

        snapshot = manager.initialize()

        assert snapshot.source == ConfigSource.DEFAULT
        assert ConfigMetrics.get_instance().cache_errors_total == 1

    def test_unreadable_cache_payload_falls_back(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test a cached payload that is not a JSON object is ignored."""
        store = MemoryConfigStore()
        store.save(snapshot_key("default"), b"[1, 2]", FIXED_NOW)
        manager = make_manager(StubFetcher(ok({})), store=store)

        assert manager.initialize().source == ConfigSource.DEFAULT

    def test_namespaces_are_isolated(self, make_manager: ManagerFactory) -> None:
        """Test a manager only reads its own namespace's cache."""
        store = MemoryConfigStore()
        seed_cache(store, {"values": {"k": "other"}}, FIXED_NOW, namespace="other")
        manager = make_manager(StubFetcher(ok({})), store=store)

        assert manager.initialize().source == ConfigSource.DEFAULT

    def test_no_cache_and_no_defaults(self, make_manager: ManagerFactory) -> None:
        """Test bootstrap fails loudly but leaves a usable, degraded manager."""
        manager = make_manager(
            StubFetcher(ok(REMOTE_PAYLOAD)), use_builtin_defaults=False
        )

        with pytest.raises(NoConfigAvailableError) as exc_info:
            manager.initialize()

        assert exc_info.value.namespace == "default"
        assert manager.state == ManagerState.DEGRADED
        assert manager.is_feature_enabled("multiplayer") is False
        assert manager.get_config_value("welcomeText", "none") == "none"

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.CHANGED
        assert manager.state == ManagerState.READY
        assert manager.is_feature_enabled("multiplayer") is True

    def test_initialize_twice_raises(self, make_manager: ManagerFactory) -> None:
        """Test initialize() is one-shot."""
        manager = make_manager(StubFetcher(ok({})))
        manager.initialize()

        with pytest.raises(ManagerStateError):
            manager.initialize()

    def test_bootstrap_notifies_subscribers(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test subscribers registered early see the bootstrap change set."""
        manager = make_manager(StubFetcher(ok({})))
        received: list[ChangeSet] = []
        manager.subscribe(received.append)

        manager.initialize()

        assert len(received) == 1
        assert received[0].is_bootstrap

    def test_fetch_on_initialize(self, make_manager: ManagerFactory) -> None:
        """Test initialize() starts a background refresh when enabled."""
        fetcher = BlockingFetcher(ok(REMOTE_PAYLOAD))
        settings = QUIET.model_copy(update={"fetch_on_initialize": True})
        manager = make_manager(fetcher, settings=settings)

        snapshot = manager.initialize()

        assert snapshot.source == ConfigSource.DEFAULT
        assert fetcher.started.wait(timeout=5)
        fetcher.release.set()
        result = manager.refresh_async(force=True).result(timeout=5)
        assert result.success


class TestRefresh:
    """Tests for refresh orchestration."""

    def test_refresh_before_initialize_raises(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test refreshing an uninitialized manager is a state error."""
        manager = make_manager(StubFetcher(ok({})))

        with pytest.raises(ManagerStateError):
            manager.refresh_async()

    def test_successful_refresh_swaps_and_persists(
        self, make_manager: ManagerFactory, clock: MutableClock
    ) -> None:
        """Test a fetched snapshot becomes active and is cached."""
        store = MemoryConfigStore()
        fetcher = StubFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher, store=store)
        manager.initialize()

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.CHANGED
        assert result.snapshot is not None
        assert result.snapshot.source == ConfigSource.REMOTE
        assert manager.snapshot is result.snapshot
        assert manager.state == ManagerState.READY
        assert manager.last_successful_fetch_at == clock.now
        assert manager.get_config_value("difficultyMultiplier", 1.0) == 1.5
        assert store.load(snapshot_key("default")) is not None
        assert fetcher.last_user_attributes == {"userId": "user-42"}

    def test_cached_value_survives_network_failure(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test a failed refresh keeps serving the cached snapshot."""
        store = MemoryConfigStore()
        seed_cache(
            store,
            {"gameBalance": {"difficultyMultiplier": 1.0}},
            FIXED_NOW - timedelta(hours=1),
        )
        manager = make_manager(StubFetcher(failed()), store=store)
        manager.initialize()

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.FAILED
        assert manager.get_config_value("difficultyMultiplier", 2.0) == 1.0
        assert manager.state == ManagerState.READY
        assert manager.last_error is not None
        assert manager.last_error.error_class == FetchErrorClass.NETWORK_UNAVAILABLE

    def test_failed_refresh_leaves_answers_unchanged(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test answers after a failure match those before it."""
        fetcher = StubFetcher(ok(REMOTE_PAYLOAD), failed(FetchErrorClass.TIMEOUT))
        manager = make_manager(fetcher)
        manager.initialize()
        manager.force_refresh(timeout=5)
        before = (
            manager.is_feature_enabled("multiplayer"),
            manager.get_config_value("difficultyMultiplier", 0.0),
            manager.get_experiment_variant("exp1"),
        )

        result = manager.force_refresh(timeout=5)

        assert result.outcome == RefreshOutcome.FAILED
        after = (
            manager.is_feature_enabled("multiplayer"),
            manager.get_config_value("difficultyMultiplier", 0.0),
            manager.get_experiment_variant("exp1"),
        )
        assert after == before
        assert manager.state == ManagerState.READY

    def test_failure_on_defaults_stays_ready(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test failing while built-in defaults are active keeps READY."""
        fetcher = StubFetcher(failed(), ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher)
        failures: list[RefreshFailure] = []
        manager.subscribe_failures(failures.append)
        manager.initialize()

        manager.refresh(timeout=5)

        assert manager.state == ManagerState.READY
        assert len(failures) == 1
        assert not failures[0].degraded
        assert failures[0].consecutive_failures == 1
        assert manager.get_config_value("playerHealth", 0) == (
            defaults.DEFAULT_PLAYER_HEALTH
        )

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.CHANGED
        assert manager.state == ManagerState.READY
        assert manager.last_error is None

    def test_failure_without_any_config_stays_degraded(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test failing with neither cache nor defaults keeps DEGRADED."""
        manager = make_manager(
            StubFetcher(failed(), ok(REMOTE_PAYLOAD)), use_builtin_defaults=False
        )
        failures: list[RefreshFailure] = []
        manager.subscribe_failures(failures.append)
        with pytest.raises(NoConfigAvailableError):
            manager.initialize()

        manager.refresh(timeout=5)

        assert manager.state == ManagerState.DEGRADED
        assert len(failures) == 1
        assert failures[0].degraded

        manager.refresh(timeout=5)

        assert manager.state == ManagerState.READY

    def test_consecutive_failures_counted(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test failure notifications carry the running failure count."""
        manager = make_manager(StubFetcher(failed()))
        failures: list[RefreshFailure] = []
        manager.subscribe_failures(failures.append)
        manager.initialize()

        for _ in range(3):
            manager.refresh(timeout=5)

        assert [f.consecutive_failures for f in failures] == [1, 2, 3]

    def test_identical_payload_is_unchanged(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test a repeat of the active snapshot does not swap or notify."""
        manager = make_manager(StubFetcher(ok(REMOTE_PAYLOAD)))
        manager.initialize()
        manager.force_refresh(timeout=5)
        active = manager.snapshot
        received: list[ChangeSet] = []
        manager.subscribe(received.append)

        result = manager.force_refresh(timeout=5)

        assert result.outcome == RefreshOutcome.UNCHANGED
        assert manager.snapshot is active
        assert received == []

    def test_first_remote_fetch_always_applied(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test a first fetch equal to the defaults still replaces them."""
        manager = make_manager(StubFetcher(ok({})))
        manager.initialize()

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.CHANGED
        assert manager.snapshot is not None
        assert manager.snapshot.source == ConfigSource.REMOTE

    def test_not_modified(self, make_manager: ManagerFactory) -> None:
        """Test a 304 answer keeps the snapshot and counts as success."""
        fetcher = StubFetcher(
            ok(REMOTE_PAYLOAD), FetchResult(not_modified=True, status_code=304)
        )
        manager = make_manager(fetcher)
        manager.initialize()
        manager.force_refresh(timeout=5)

        result = manager.force_refresh(timeout=5)

        assert result.outcome == RefreshOutcome.UNCHANGED
        assert result.change_set is None
        assert manager.last_error is None

    def test_minimum_interval_skips(
        self, make_manager: ManagerFactory, clock: MutableClock
    ) -> None:
        """Test non-forced refreshes right after a success are skipped."""
        fetcher = StubFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher)
        manager.initialize()
        manager.refresh(timeout=5)

        skipped = manager.refresh(timeout=5)
        forced = manager.force_refresh(timeout=5)
        clock.advance(61)
        later = manager.refresh(timeout=5)

        assert skipped.outcome == RefreshOutcome.SKIPPED
        assert skipped.snapshot is not None
        assert forced.outcome == RefreshOutcome.UNCHANGED
        assert later.outcome == RefreshOutcome.UNCHANGED
        assert fetcher.calls == 3

    def test_concurrent_requests_share_one_fetch(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test requests during an in-flight fetch join it."""
        fetcher = BlockingFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher)
        manager.initialize()

        first = manager.refresh_async(force=True)
        assert fetcher.started.wait(timeout=5)
        second = manager.refresh_async(force=True)
        third = manager.refresh_async()
        fetcher.release.set()

        assert first is second
        assert first is third
        assert first.result(timeout=5).outcome == RefreshOutcome.CHANGED
        assert fetcher.calls == 1
        assert ConfigMetrics.get_instance().coalesced_refreshes_total == 2

    def test_threaded_requests_share_one_fetch(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test N threads refreshing at once trigger exactly one fetch."""
        fetcher = BlockingFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher)
        manager.initialize()
        first = manager.refresh_async(force=True)
        assert fetcher.started.wait(timeout=5)

        futures: list[Future[RefreshResult]] = []
        lock = threading.Lock()

        def request() -> None:
            future = manager.refresh_async(force=True)
            with lock:
                futures.append(future)

        threads = [threading.Thread(target=request) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)
        fetcher.release.set()

        assert len(futures) == 10
        assert all(future is first for future in futures)
        first.result(timeout=5)
        assert fetcher.calls == 1

    def test_new_fetch_after_inflight_completes(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test coalescing ends once the in-flight fetch is done."""
        fetcher = StubFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher)
        manager.initialize()

        manager.force_refresh(timeout=5)
        manager.force_refresh(timeout=5)

        assert fetcher.calls == 2

    def test_cache_write_failure_does_not_fail_refresh(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test a broken store is logged and the swap still happens."""

        class BrokenStore(MemoryConfigStore):
            def save(self, key: str, payload: bytes, timestamp: datetime) -> None:
                raise CacheWriteError(key, "disk full")

        manager = make_manager(StubFetcher(ok(REMOTE_PAYLOAD)), store=BrokenStore())
        manager.initialize()

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.CHANGED
        assert ConfigMetrics.get_instance().cache_errors_total >= 1

    def test_oversized_numbers_fall_back_to_defaults(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test numbers too large for a float only default their own fields."""
        payload = {
            "gameBalance": {"playerSpeed": 10**400, "difficultyMultiplier": 1.5},
            "featureFlags": {"f": {"enabled": True, "rolloutPercentage": 10**400}},
            "values": {"huge": 10**400},
        }
        manager = make_manager(StubFetcher(ok(payload)))
        manager.initialize()

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.CHANGED
        assert manager.get_config_value("playerSpeed", 0.0) == (
            defaults.DEFAULT_PLAYER_SPEED
        )
        assert manager.get_config_value("difficultyMultiplier", 0.0) == 1.5
        assert manager.get_config_value("huge", 2.5) == 2.5
        assert manager.is_feature_enabled("f") is True

    def test_unexpected_error_is_reported_as_failure(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test an exception inside a refresh becomes a FAILED result."""

        class ExplodingFetcher(StubFetcher):
            def fetch(
                self,
                user_attributes: dict[str, Any],
                app_attributes: dict[str, Any],
            ) -> FetchResult:
                raise RuntimeError("fetcher bug")

        manager = make_manager(ExplodingFetcher(ok({})))
        failures: list[RefreshFailure] = []
        manager.subscribe_failures(failures.append)
        manager.initialize()

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.FAILED
        assert result.error is not None
        assert "fetcher bug" in result.error.message
        assert manager.last_error == result.error
        assert manager.state == ManagerState.READY
        assert len(failures) == 1


class TestQueries:
    """Tests for flag, experiment, config and live-ops queries."""

    @pytest.fixture
    def manager(self, make_manager: ManagerFactory) -> ConfigManager:
        """Manager with REMOTE_PAYLOAD active and pinned buckets."""
        buckets = pinned_buckets(
            {"new_feature": 17, "wide_feature": 55, "off_feature": 0, "exp1": 70}
        )
        manager = make_manager(StubFetcher(ok(REMOTE_PAYLOAD)), bucket_fn=buckets)
        manager.initialize()
        manager.refresh(timeout=5)
        return manager

    def test_explicit_flag(self, manager: ConfigManager) -> None:
        """Test a boolean flag resolves to its value."""
        assert manager.is_feature_enabled("multiplayer") is True
        assert manager.query_flag("multiplayer") is True

    def test_rollout_inside(self, manager: ConfigManager) -> None:
        """Test bucket 17 is inside a 30% rollout."""
        assert manager.is_feature_enabled("new_feature") is True

    def test_rollout_outside(self, manager: ConfigManager) -> None:
        """Test bucket 55 is outside a 30% rollout."""
        assert manager.is_feature_enabled("wide_feature") is False

    def test_disabled_flag_ignores_rollout(self, manager: ConfigManager) -> None:
        """Test enabled=False wins over a 100% rollout."""
        assert manager.is_feature_enabled("off_feature") is False

    def test_unknown_flag(self, manager: ConfigManager) -> None:
        """Test unknown flags are disabled."""
        assert manager.is_feature_enabled("does_not_exist") is False

    def test_feature_variant(self, manager: ConfigManager) -> None:
        """Test variants are returned only for enabled flags."""
        assert manager.get_feature_variant("new_feature") == "v2"
        assert manager.get_feature_variant("multiplayer") == defaults.CONTROL_VARIANT
        manager.set_kill_switch("new_feature", False)
        assert manager.get_feature_variant("new_feature") == defaults.CONTROL_VARIANT

    def test_feature_variant_not_counted_as_evaluation(
        self, manager: ConfigManager
    ) -> None:
        """Test variant lookups leave the flag evaluation counter alone."""
        metrics = ConfigMetrics.get_instance()
        before = metrics.flag_evaluations_total

        manager.get_feature_variant("new_feature")

        assert metrics.flag_evaluations_total == before

    def test_experiment_assignment(self, manager: ConfigManager) -> None:
        """Test bucket 70 lands in variant B."""
        assignment = manager.query_experiment("exp1")

        assert assignment is not None
        assert assignment.variant_id == "B"
        assert manager.get_experiment_variant("exp1") == "B"
        assert manager.get_experiment_group() == "B"
        assert manager.get_experiment_parameter("x", 0) == 2

    def test_experiment_assignment_is_stable(self, manager: ConfigManager) -> None:
        """Test repeated queries return the same assignment."""
        first = manager.query_experiment("exp1")
        second = manager.query_experiment("exp1")

        assert first == second

    def test_inactive_experiment_unassigned(self, manager: ConfigManager) -> None:
        """Test inactive experiments yield control."""
        assert manager.query_experiment("paused") is None
        assert manager.get_experiment_variant("paused") == defaults.CONTROL_VARIANT

    def test_unknown_experiment(self, manager: ConfigManager) -> None:
        """Test unknown experiments yield control."""
        assert manager.query_experiment("nope") is None
        assert manager.get_experiment_variant("nope") == defaults.CONTROL_VARIANT

    def test_experiment_parameter_default(self, manager: ConfigManager) -> None:
        """Test missing or mistyped parameters fall back to the default."""
        assert manager.get_experiment_parameter("missing", 3.5) == 3.5
        assert manager.get_experiment_parameter("x", "text") == "text"

    def test_config_values(self, manager: ConfigManager) -> None:
        """Test key forms and type coercion."""
        assert manager.get_config_value("gameBalance.difficultyMultiplier", 1.0) == 1.5
        snake_key = "game_balance.difficulty_multiplier"
        assert manager.get_config_value(snake_key, 1.0) == 1.5
        assert manager.get_config_value("welcomeText", "") == "hello"
        assert manager.get_config_value("values.welcomeText", "") == "hello"
        assert manager.get_config_value("welcomeText", 0) == 0
        assert manager.get_config_value("nope", "fallback") == "fallback"

    def test_active_live_events(self, manager: ConfigManager) -> None:
        """Test only events whose window contains now are returned."""
        events = manager.get_active_live_events()

        assert [event.event_id for event in events] == ["summer"]
        later = FIXED_NOW + timedelta(days=2)
        assert manager.get_active_live_events(later) == []

    def test_active_live_messages_by_priority(self, manager: ConfigManager) -> None:
        """Test active messages are ordered by priority, highest first."""
        messages = manager.get_active_live_messages()

        assert [m.message_id for m in messages] == ["high", "low"]
        july = FIXED_NOW + timedelta(days=30)
        assert [m.message_id for m in manager.get_active_live_messages(july)] == [
            "later",
            "high",
            "low",
        ]

    def test_flag_metrics(self, manager: ConfigManager) -> None:
        """Test flag evaluations are counted."""
        manager.is_feature_enabled("multiplayer")
        manager.is_feature_enabled("multiplayer")

        assert ConfigMetrics.get_instance().flag_evaluations_total == 2


class TestKillSwitches:
    """Tests for kill-switch overrides through the manager."""

    def test_kill_switch_beats_remote(self, make_manager: ManagerFactory) -> None:
        """Test a false override wins over a remote true."""
        manager = make_manager(StubFetcher(ok(REMOTE_PAYLOAD)))
        manager.initialize()
        manager.refresh(timeout=5)
        received: list[ChangeSet] = []
        manager.subscribe(received.append)

        manager.set_kill_switch("multiplayer", False)

        assert manager.is_feature_enabled("multiplayer") is False
        assert len(received) == 1
        assert received[0].trigger == ChangeTrigger.KILL_SWITCH
        assert received[0].changed_flags == frozenset({"multiplayer"})
        assert ConfigMetrics.get_instance().kill_switch_overrides_total == 1

        manager.clear_kill_switch("multiplayer")

        assert manager.is_feature_enabled("multiplayer") is True
        assert len(received) == 2

    def test_no_notification_without_flip(self, make_manager: ManagerFactory) -> None:
        """Test an override matching the computed value is silent."""
        manager = make_manager(StubFetcher(ok(REMOTE_PAYLOAD)))
        manager.initialize()
        manager.refresh(timeout=5)
        received: list[ChangeSet] = []
        manager.subscribe(received.append)

        manager.set_kill_switch("multiplayer", True)

        assert received == []

    def test_override_survives_refresh(self, make_manager: ManagerFactory) -> None:
        """Test a refresh never clears overrides."""
        controller = KillSwitchController()
        manager = make_manager(
            StubFetcher(ok(REMOTE_PAYLOAD)), kill_switches=controller
        )
        manager.initialize()
        manager.set_kill_switch("multiplayer", False)

        manager.refresh(timeout=5)

        assert manager.is_feature_enabled("multiplayer") is False
        assert controller.get("multiplayer") is False
        assert manager.kill_switches is controller

    def test_override_unknown_flag(self, make_manager: ManagerFactory) -> None:
        """Test a true override enables a flag the backend never sent."""
        manager = make_manager(StubFetcher(ok({})))
        manager.initialize()

        manager.set_kill_switch("emergency_mode", True)

        assert manager.is_feature_enabled("emergency_mode") is True


class TestSubscriptions:
    """Tests for change and failure subscriptions."""

    def test_change_set_lists_changes(self, make_manager: ManagerFactory) -> None:
        """Test refresh change sets describe what changed."""
        changed_payload = {
            **REMOTE_PAYLOAD,
            "gameBalance": {"difficultyMultiplier": 2.0},
        }
        fetcher = StubFetcher(ok(REMOTE_PAYLOAD), ok(changed_payload))
        manager = make_manager(fetcher)
        manager.initialize()
        manager.force_refresh(timeout=5)
        received: list[ChangeSet] = []
        manager.subscribe(received.append)

        manager.force_refresh(timeout=5)

        assert len(received) == 1
        assert received[0].changed_sections == frozenset({"game_balance"})
        assert received[0].changed_flags == frozenset()

    def test_unsubscribe(self, make_manager: ManagerFactory) -> None:
        """Test an unsubscribed callback is not called."""
        manager = make_manager(StubFetcher(ok(REMOTE_PAYLOAD)))
        received: list[ChangeSet] = []
        unsubscribe = manager.subscribe(received.append)
        unsubscribe()
        unsubscribe()

        manager.initialize()
        manager.refresh(timeout=5)

        assert received == []

    def test_failing_subscriber_isolated(self, make_manager: ManagerFactory) -> None:
        """Test a raising subscriber does not block others or the refresh."""
        manager = make_manager(StubFetcher(ok(REMOTE_PAYLOAD)))
        received: list[ChangeSet] = []

        def broken(change_set: ChangeSet) -> None:
            raise RuntimeError("subscriber bug")

        manager.subscribe(broken)
        manager.subscribe(received.append)
        manager.initialize()

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.CHANGED
        assert len(received) == 2

    def test_subscriber_can_refresh_from_callback(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test a refresh requested inside a notification returns at once."""
        fetcher = StubFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher)
        manager.initialize()
        nested: list[RefreshResult] = []

        def refresh_again(change_set: ChangeSet) -> None:
            nested.append(manager.force_refresh(timeout=2))

        manager.subscribe(refresh_again)

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.CHANGED
        assert len(nested) == 1
        assert nested[0].outcome == RefreshOutcome.SKIPPED
        assert nested[0].snapshot is result.snapshot
        assert fetcher.calls == 1

    def test_failure_subscriber_can_refresh_from_callback(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test failure callbacks may also request a refresh."""
        manager = make_manager(StubFetcher(failed()))
        manager.initialize()
        nested: list[RefreshResult] = []
        manager.subscribe_failures(
            lambda failure: nested.append(manager.force_refresh(timeout=2))
        )

        result = manager.refresh(timeout=5)

        assert result.outcome == RefreshOutcome.FAILED
        assert [r.outcome for r in nested] == [RefreshOutcome.SKIPPED]

    def test_unsubscribe_failures(self, make_manager: ManagerFactory) -> None:
        """Test failure subscriptions can be removed."""
        manager = make_manager(StubFetcher(failed()))
        failures: list[RefreshFailure] = []
        unsubscribe = manager.subscribe_failures(failures.append)
        manager.initialize()

        manager.refresh(timeout=5)
        unsubscribe()
        manager.refresh(timeout=5)

        assert len(failures) == 1


class TestLifecycle:
    """Tests for foreground/background handling and shutdown."""

    def test_short_background_does_not_refresh(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test returning within the threshold does nothing."""
        fetcher = StubFetcher(ok({}))
        manager = make_manager(fetcher)
        manager.initialize()

        manager.on_background(FIXED_NOW)
        future = manager.on_foreground(FIXED_NOW + timedelta(seconds=100))

        assert future is None
        assert fetcher.calls == 0

    def test_long_background_refreshes(self, make_manager: ManagerFactory) -> None:
        """Test returning after the threshold triggers a refresh."""
        fetcher = StubFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher)
        manager.initialize()

        manager.on_background(FIXED_NOW)
        future = manager.on_foreground(FIXED_NOW + timedelta(seconds=400))

        assert future is not None
        assert future.result(timeout=5).outcome == RefreshOutcome.CHANGED

    def test_foreground_without_background(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test a foreground event with no prior background is ignored."""
        manager = make_manager(StubFetcher(ok({})))
        manager.initialize()

        assert manager.on_foreground() is None

    def test_lifecycle_source_drives_refresh(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test events from a lifecycle source reach the manager."""
        source = ManualLifecycleSource()
        fetcher = BlockingFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher, lifecycle=source)
        manager.initialize()

        source.background(FIXED_NOW)
        source.foreground(FIXED_NOW + timedelta(minutes=10))

        assert fetcher.started.wait(timeout=5)
        fetcher.release.set()

    def test_shutdown(self, make_manager: ManagerFactory) -> None:
        """Test shutdown closes the fetcher and is idempotent."""
        fetcher = StubFetcher(ok({}))
        manager = make_manager(fetcher)
        manager.initialize()

        manager.shutdown()
        manager.shutdown()

        assert manager.state == ManagerState.STOPPED
        assert fetcher.closed
        result = manager.refresh_async(force=True).result(timeout=5)
        assert result.outcome == RefreshOutcome.SKIPPED
        assert fetcher.calls == 0

    def test_result_after_shutdown_discarded(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test an in-flight result arriving after shutdown is not applied."""
        store = MemoryConfigStore()
        fetcher = BlockingFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(fetcher, store=store)
        manager.initialize()
        future = manager.refresh_async(force=True)
        assert fetcher.started.wait(timeout=5)

        manager.shutdown()
        fetcher.release.set()

        assert future.result(timeout=5).outcome == RefreshOutcome.SKIPPED
        assert store.load(snapshot_key("default")) is None
        assert manager.snapshot is not None
        assert manager.snapshot.source == ConfigSource.DEFAULT

    def test_context_manager(self, make_manager: ManagerFactory) -> None:
        """Test the manager initializes and stops as a context manager."""
        manager = make_manager(StubFetcher(ok({})))

        with manager as active:
            assert active.state == ManagerState.READY

        assert manager.state == ManagerState.STOPPED

    def test_scheduler_refreshes_periodically(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test the scheduler triggers refreshes on its own."""
        fetcher = BlockingFetcher(ok(REMOTE_PAYLOAD))
        settings = QUIET.model_copy(update={"refresh_interval_seconds": 0.01})
        manager = make_manager(fetcher, settings=settings)

        manager.initialize()

        assert fetcher.started.wait(timeout=5)
        fetcher.release.set()


class TestAssignmentPersistence:
    """Tests for persisted experiment assignments."""

    def test_assignment_persisted(self, make_manager: ManagerFactory) -> None:
        """Test a new assignment is written to the store in the background."""
        store = GatedStore()
        manager = make_manager(
            StubFetcher(ok(REMOTE_PAYLOAD)),
            store=store,
            bucket_fn=pinned_buckets({"exp1": 70}),
        )
        manager.initialize()
        manager.refresh(timeout=5)

        manager.query_experiment("exp1")

        assert store.written.wait(timeout=5)
        assert store.load(assignments_key("default")) is not None

    def test_query_does_not_wait_for_store(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test queries answer while the assignment write is still blocked."""
        store = GatedStore(held=True)
        manager = make_manager(
            StubFetcher(ok(REMOTE_PAYLOAD)),
            store=store,
            bucket_fn=pinned_buckets({"exp1": 70}),
        )
        manager.initialize()
        manager.refresh(timeout=5)

        assert manager.get_experiment_variant("exp1") == "B"
        assert store.writing.wait(timeout=5)
        assert manager.get_experiment_group() == "B"
        assert not store.written.is_set()

        store.release.set()

        assert store.written.wait(timeout=5)

    def test_pending_assignment_flushed_on_shutdown(
        self, make_manager: ManagerFactory
    ) -> None:
        """Test shutdown writes assignments still queued behind a fetch."""
        store = MemoryConfigStore()
        seed_cache(store, REMOTE_PAYLOAD, FIXED_NOW)
        fetcher = BlockingFetcher(ok(REMOTE_PAYLOAD))
        manager = make_manager(
            fetcher, store=store, bucket_fn=pinned_buckets({"exp1": 70})
        )
        manager.initialize()
        manager.refresh_async(force=True)
        assert fetcher.started.wait(timeout=5)

        assert manager.get_experiment_variant("exp1") == "B"
        manager.shutdown()
        fetcher.release.set()

        assert store.load(assignments_key("default")) is not None

    def test_assignment_survives_restart(self, make_manager: ManagerFactory) -> None:
        """Test a restarted manager keeps the earlier assignment."""
        store = MemoryConfigStore()
        first = make_manager(
            StubFetcher(ok(REMOTE_PAYLOAD)),
            store=store,
            bucket_fn=pinned_buckets({"exp1": 70}),
        )
        first.initialize()
        first.refresh(timeout=5)
        assert first.get_experiment_variant("exp1") == "B"
        first.shutdown()

        second = make_manager(
            StubFetcher(failed()),
            store=store,
            bucket_fn=pinned_buckets({"exp1": 20}),
        )
        second.initialize()

        assert second.snapshot is not None
        assert second.snapshot.source == ConfigSource.CACHE
        assert second.get_experiment_variant("exp1") == "B"

    def test_changed_definition_reassigns(self, make_manager: ManagerFactory) -> None:
        """Test a changed experiment definition drops the old assignment."""
        reshaped = {
            **REMOTE_PAYLOAD,
            "experiments": [
                {
                    "experimentId": "exp1",
                    "isActive": True,
                    "variants": [
                        {"variantId": "A", "trafficAllocation": 80},
                        {"variantId": "B", "trafficAllocation": 20},
                    ],
                }
            ],
        }
        fetcher = StubFetcher(ok(REMOTE_PAYLOAD), ok(reshaped))
        manager = make_manager(fetcher, bucket_fn=pinned_buckets({"exp1": 70}))
        manager.initialize()
        manager.force_refresh(timeout=5)
        assert manager.get_experiment_variant("exp1") == "B"

        manager.force_refresh(timeout=5)

        assert manager.get_experiment_variant("exp1") == "A"
