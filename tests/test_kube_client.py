from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from fakes import FINALIZER, api_error
from topic_operator.domain.models.topic import ReconcileKey
from topic_operator.infra.kube.client import KubeTopicClient

KEY = ReconcileKey("default", "greetings")
OTHER = "example.com/backup-guard"


@pytest.fixture
def api():
    return MagicMock(name="CustomObjectsApi()")


@pytest.fixture
def kube(settings, api):
    return KubeTopicClient(settings, api=api)


def _patch_body(api):
    return api.patch_namespaced_custom_object.call_args.kwargs["body"]


def test_add_finalizer_is_conditional_on_cached_resource_version(kube, api):
    api.patch_namespaced_custom_object.return_value = {
        "metadata": {"finalizers": [OTHER, FINALIZER], "resourceVersion": "13"}
    }

    finalizers, rv = kube.add_finalizer(KEY, [OTHER], resource_version="12")

    assert _patch_body(api) == {"metadata": {"finalizers": [OTHER, FINALIZER], "resourceVersion": "12"}}
    assert finalizers == [OTHER, FINALIZER]
    assert rv == "13"
    kwargs = api.patch_namespaced_custom_object.call_args.kwargs
    assert (kwargs["group"], kwargs["plural"], kwargs["namespace"], kwargs["name"]) == (
        "kafka.topic-operator.io", "kafkatopics", "default", "greetings",
    )


def test_add_finalizer_already_present_makes_no_call(kube, api):
    assert kube.add_finalizer(KEY, [FINALIZER], resource_version="3") == ([FINALIZER], "3")
    api.patch_namespaced_custom_object.assert_not_called()


def test_remove_finalizer_keeps_others_and_sends_precondition(kube, api):
    kube.remove_finalizer(KEY, [OTHER, FINALIZER], resource_version="20")
    assert _patch_body(api) == {"metadata": {"finalizers": [OTHER], "resourceVersion": "20"}}

    kube.remove_finalizer(KEY, [FINALIZER], resource_version="21")
    assert _patch_body(api) == {"metadata": {"finalizers": None, "resourceVersion": "21"}}


def test_remove_finalizer_stale_cache_conflict_is_raised(kube, api):
    # another controller added its finalizer after our cached copy
    api.patch_namespaced_custom_object.side_effect = api_error(409, "Conflict")
    with pytest.raises(ApiException) as info:
        kube.remove_finalizer(KEY, [FINALIZER], resource_version="20")
    assert info.value.status == 409


def test_remove_finalizer_of_missing_object_is_done(kube, api):
    api.patch_namespaced_custom_object.side_effect = api_error(404, "Not Found")
    kube.remove_finalizer(KEY, [FINALIZER], resource_version="20")


def test_status_patch_targets_status_subresource(kube, api):
    kube.patch_status(KEY, {"phase": "Synced"})
    kwargs = api.patch_namespaced_custom_object_status.call_args.kwargs
    assert kwargs["body"] == {"status": {"phase": "Synced"}}
    assert kwargs["name"] == "greetings"


def test_list_is_cluster_wide_unless_namespace_is_set(settings, api):
    api.list_cluster_custom_object.return_value = {"items": [{"a": 1}], "metadata": {"resourceVersion": "9"}}
    assert KubeTopicClient(settings, api=api).list_objects() == ([{"a": 1}], "9")

    scoped = settings.model_copy(update={"watch_namespace": "shop"})
    api.list_namespaced_custom_object.return_value = {"items": [], "metadata": {}}
    assert KubeTopicClient(scoped, api=api).list_objects() == ([], "")
    assert api.list_namespaced_custom_object.call_args.kwargs["namespace"] == "shop"
