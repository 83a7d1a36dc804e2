from kafka.errors import InvalidConfigurationError

from fakes import FINALIZER, api_error, make_cr
from topic_operator.core.exceptions import (
    TerminalConfigError,
    TransientKafkaError,
    classify_kafka_error,
)
from topic_operator.domain.models.topic import ReconcileKey
from topic_operator.domain.services.reconciler import Outcome

KEY = ReconcileKey("default", "greetings")


def _apply(store, **kw):
    """Simulate the watch feed delivering a CR that already carries our finalizer."""
    kw.setdefault("finalizers", [FINALIZER])
    store.upsert(make_cr(**kw))


# --------------------------------------------------------------------------- #
# Scenarios                                                                   #
# --------------------------------------------------------------------------- #
def test_new_topic_is_created_once_and_synced(store, reconciler, kafka, kube):
    _apply(store)

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.SYNCED
    assert kafka.mutations() == [("create", "greetings")]
    assert kafka.topics["greetings"]["partitions"] == 3
    assert kube.last_status(KEY)["phase"] == "Synced"
    assert kube.last_status(KEY)["observedGeneration"] == 1


def test_partition_increase_only_alters_partitions(store, reconciler, kafka, kube):
    _apply(store)
    reconciler.reconcile(KEY)
    kafka.reset_calls()

    _apply(store, partitions=10, generation=2)
    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.SYNCED
    assert kafka.mutations() == [("alter_partitions", "greetings", 10)]
    assert kube.last_status(KEY) == {
        "phase": "Synced",
        "topicName": "greetings",
        "lastError": None,
        "observedGeneration": 2,
    }


def test_out_of_band_deletion_is_recreated(store, reconciler, kafka, kube):
    _apply(store, partitions=5, config={"retention.ms": "1000"})
    reconciler.reconcile(KEY)
    kafka.drop("greetings")
    kafka.reset_calls()

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.SYNCED
    assert kafka.mutations() == [("create", "greetings")]
    assert kafka.topics["greetings"] == {
        "partitions": 5,
        "replication_factor": 1,
        "config": {"retention.ms": "1000"},
    }


def test_cr_deletion_deletes_topic_before_releasing_finalizer(store, reconciler, kafka, kube):
    _apply(store)
    reconciler.reconcile(KEY)
    order = []
    kafka_delete, kube_release = kafka.delete, kube.remove_finalizer
    kafka.delete = lambda name: (order.append("delete"), kafka_delete(name))[1]
    kube.remove_finalizer = lambda key, cur, **kw: (order.append("release"), kube_release(key, cur, **kw))[1]

    store.upsert(make_cr(deleting=True, finalizers=[FINALIZER]))
    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.DELETED
    assert order == ["delete", "release"]
    assert "greetings" not in kafka.topics
    assert store.entry(KEY) is None


# --------------------------------------------------------------------------- #
# Properties                                                                  #
# --------------------------------------------------------------------------- #
def test_second_pass_over_matching_state_makes_no_admin_mutations(store, reconciler, kafka, kube):
    _apply(store, config={"retention.ms": "1000"})
    reconciler.reconcile(KEY)
    kafka.reset_calls()
    writes = len(kube.statuses[KEY])

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.SYNCED
    assert kafka.mutations() == []
    # the condition did not change, so the status is not rewritten either
    assert len(kube.statuses[KEY]) == writes


def test_partition_decrease_is_terminal_and_never_altered(store, reconciler, kafka, kube):
    kafka.seed("greetings", partitions=10)
    _apply(store, partitions=4)

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.TERMINAL
    assert not result.requeue
    assert not [c for c in kafka.calls if c[0] == "alter_partitions"]
    status = kube.last_status(KEY)
    assert status["phase"] == "Error"
    assert "decreasing to 4" in status["lastError"]


def test_replication_factor_change_is_terminal_but_config_still_applies(store, reconciler, kafka, kube):
    kafka.seed("greetings", partitions=3, replication_factor=1)
    _apply(store, replication_factor=3, config={"retention.ms": "1000"})

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.TERMINAL
    assert kafka.mutations() == [("alter_config", "greetings", {"retention.ms": "1000"})]
    assert "replicationFactor" in kube.last_status(KEY)["lastError"]


def test_config_changes_are_additive(store, reconciler, kafka):
    kafka.seed("greetings", config={"segment.ms": "500", "retention.ms": "1000"})
    _apply(store, config={"retention.ms": "2000", "cleanup.policy": "compact"})

    reconciler.reconcile(KEY)

    assert kafka.mutations() == [
        ("alter_config", "greetings", {"retention.ms": "2000", "cleanup.policy": "compact"})
    ]
    assert kafka.topics["greetings"]["config"] == {
        "segment.ms": "500",
        "retention.ms": "2000",
        "cleanup.policy": "compact",
    }


def test_partitions_are_altered_before_config(store, reconciler, kafka):
    kafka.seed("greetings", partitions=3)
    _apply(store, partitions=6, config={"retention.ms": "1"})

    reconciler.reconcile(KEY)

    assert [c[0] for c in kafka.mutations()] == ["alter_partitions", "alter_config"]


# --------------------------------------------------------------------------- #
# Failure handling                                                            #
# --------------------------------------------------------------------------- #
def test_transient_create_failure_requeues_with_backoff(store, reconciler, kafka, kube):
    _apply(store)
    kafka.fail_next("create", TransientKafkaError("broker unavailable"))

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.TRANSIENT
    assert result.requeue and result.requeue_after is None
    status = kube.last_status(KEY)
    assert status["phase"] == "Pending"
    assert "broker unavailable" in status["lastError"]

    assert reconciler.reconcile(KEY).outcome is Outcome.SYNCED


def test_create_race_requeues_for_update(store, reconciler, kafka):
    _apply(store, partitions=6)
    original_describe = kafka.describe

    def describe_then_race(name):
        obs = original_describe(name)
        kafka.seed(name, partitions=3)
        return obs

    kafka.describe = describe_then_race
    result = reconciler.reconcile(KEY)
    kafka.describe = original_describe

    assert result.outcome is Outcome.PENDING
    assert result.requeue and result.requeue_after == 0

    assert reconciler.reconcile(KEY).outcome is Outcome.SYNCED
    assert kafka.mutations()[-1] == ("alter_partitions", "greetings", 6)


def test_transient_failure_mid_pass_keeps_earlier_progress(store, reconciler, kafka, kube):
    kafka.seed("greetings", partitions=3)
    _apply(store, partitions=6, config={"retention.ms": "1"})
    kafka.fail_next("alter_config", TransientKafkaError("request timed out"))

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.TRANSIENT
    assert kafka.topics["greetings"]["partitions"] == 6
    kafka.reset_calls()

    assert reconciler.reconcile(KEY).outcome is Outcome.SYNCED
    assert kafka.mutations() == [("alter_config", "greetings", {"retention.ms": "1"})]


def test_broker_rejected_config_is_terminal(store, reconciler, kafka, kube):
    kafka.seed("greetings")
    _apply(store, config={"retention.ms": "-5"})
    kafka.fail_next("alter_config", TerminalConfigError("InvalidConfigurationError: retention.ms"))

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.TERMINAL
    assert kube.last_status(KEY)["phase"] == "Error"


def test_invalid_spec_is_reported_without_touching_kafka(store, reconciler, kafka, kube):
    store.upsert(make_cr(partitions=0, finalizers=[FINALIZER]))

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.TERMINAL
    assert kafka.calls == []
    assert kube.last_status(KEY)["phase"] == "Error"
    assert "partitions" in kube.last_status(KEY)["lastError"]


def test_stale_trigger_is_a_noop(reconciler, kafka, kube):
    result = reconciler.reconcile(ReconcileKey("default", "ghost"))
    assert result.outcome is Outcome.NOOP
    assert kafka.calls == []
    assert kube.statuses == {}


def test_finalizer_added_before_first_kafka_call(store, reconciler, kafka, kube):
    store.upsert(make_cr())

    reconciler.reconcile(KEY)

    assert kube.events[0] == ("add_finalizer", KEY)
    assert store.entry(KEY).finalizers == (FINALIZER,)
    kube.events.clear()
    reconciler.reconcile(KEY)
    assert ("add_finalizer", KEY) not in kube.events


def test_finalizer_add_failure_is_transient_and_kafka_untouched(store, reconciler, kafka, kube):
    store.upsert(make_cr())
    kube.finalizer_error = api_error(500)

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.TRANSIENT
    assert kafka.calls == []


def test_status_write_failure_does_not_fail_the_pass(store, reconciler, kafka, kube):
    _apply(store)
    kube.status_error = api_error(503)

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.SYNCED
    assert "greetings" in kafka.topics


# --------------------------------------------------------------------------- #
# Deletion                                                                    #
# --------------------------------------------------------------------------- #
def test_deletion_of_absent_topic_only_releases_finalizer(store, reconciler, kafka, kube):
    store.mark_deleted(make_cr(finalizers=[FINALIZER]))

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.DELETED
    assert kafka.mutations() == []
    assert ("remove_finalizer", KEY) in kube.events
    assert store.entry(KEY) is None


def test_transient_delete_failure_keeps_finalizer(store, reconciler, kafka, kube):
    kafka.seed("greetings")
    store.mark_deleted(make_cr(finalizers=[FINALIZER]))
    kafka.fail_next("delete", TransientKafkaError("leader not available"))

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.TRANSIENT
    assert result.requeue
    assert ("remove_finalizer", KEY) not in kube.events
    assert store.is_deletion_pending(KEY)

    assert reconciler.reconcile(KEY).outcome is Outcome.DELETED
    assert ("remove_finalizer", KEY) in kube.events


def test_terminal_delete_failure_requeues_with_long_delay(store, reconciler, kafka, kube, settings):
    kafka.seed("greetings")
    store.mark_deleted(make_cr(finalizers=[FINALIZER]))
    kafka.fail_next("delete", TerminalConfigError("TopicDeletionDisabledError"))

    result = reconciler.reconcile(KEY)

    assert result.outcome is Outcome.TERMINAL
    assert result.requeue_after == settings.terminal_requeue_sec
    assert kube.last_status(KEY)["phase"] == "Error"
    assert ("remove_finalizer", KEY) not in kube.events


def test_finalizer_release_failure_retries_without_redeleting(store, reconciler, kafka, kube):
    kafka.seed("greetings")
    store.mark_deleted(make_cr(finalizers=[FINALIZER]))
    kube.finalizer_error = api_error(500)

    assert reconciler.reconcile(KEY).outcome is Outcome.TRANSIENT
    assert "greetings" not in kafka.topics

    kube.finalizer_error = None
    kafka.reset_calls()
    assert reconciler.reconcile(KEY).outcome is Outcome.DELETED
    assert kafka.mutations() == []


def test_deletion_without_our_finalizer_skips_patch(store, reconciler, kafka, kube):
    kafka.seed("greetings")
    store.mark_deleted(make_cr(finalizers=[]))

    assert reconciler.reconcile(KEY).outcome is Outcome.DELETED
    assert "greetings" not in kafka.topics
    assert ("remove_finalizer", KEY) not in kube.events


def test_non_retriable_kafka_error_surfaces_as_terminal(store, reconciler, kafka, kube):
    kafka.seed("greetings")
    _apply(store, config={"retention.ms": "x"})
    kafka.fail_next("alter_config", classify_kafka_error(InvalidConfigurationError("bad")))

    assert reconciler.reconcile(KEY).outcome is Outcome.TERMINAL


def test_finalizer_patches_carry_the_cached_resource_version(store, reconciler, kafka, kube):
    store.upsert(make_cr(resource_version="40"))
    reconciler.reconcile(KEY)

    assert kube.preconditions == ["40"]
    assert store.entry(KEY).resource_version == kube.resource_version

    store.upsert(make_cr(deleting=True, finalizers=[FINALIZER], resource_version="55"))
    assert reconciler.reconcile(KEY).outcome is Outcome.DELETED
    assert kube.preconditions == ["40", "55"]


def test_finalizer_release_conflict_waits_for_fresh_object(store, reconciler, kafka, kube):
    other = "example.com/backup-guard"
    store.mark_deleted(make_cr(finalizers=[FINALIZER], resource_version="55"))
    kube.finalizer_error = api_error(409, "Conflict")

    result = reconciler.reconcile(KEY)
    assert result.outcome is Outcome.TRANSIENT
    assert result.requeue
    assert store.is_deletion_pending(KEY)

    # the watch delivers the object with the finalizer we had not seen
    kube.finalizer_error = None
    released = []
    kube.remove_finalizer = lambda key, cur, **kw: released.append((tuple(cur), kw["resource_version"]))
    store.upsert(make_cr(deleting=True, finalizers=[other, FINALIZER], resource_version="56"))

    assert reconciler.reconcile(KEY).outcome is Outcome.DELETED
    assert released == [((other, FINALIZER), "56")]
