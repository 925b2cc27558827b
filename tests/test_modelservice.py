import pytest

from llmosctl import modelservice as msmod
from llmosctl.modelservice import (
    build_args,
    build_envs,
    construct_init_containers,
    construct_model_service,
    construct_model_stateful_set,
    construct_model_status,
    formatted_ms_name,
    get_model_service_selector,
    get_vgpu_number,
    related_stateful_set_keys,
)


def _ms(args, served_name="served-test-model", **spec_extra):
    spec = {
        "modelName": "test-model",
        "servedModelName": served_name,
        "template": {"spec": {"containers": [{
            "name": "vllm",
            "image": "vllm/vllm-openai",
            "args": args,
            "ports": [{"name": "http", "containerPort": 8000}],
            "resources": {"limits": {msmod.VGPU_NUMBER: "1"}},
        }]}},
    }
    spec.update(spec_extra)
    return {
        "apiVersion": "ml.llmos.ai/v1",
        "kind": "ModelService",
        "metadata": {"name": "qwen.small", "namespace": "default", "uid": "uid-1"},
        "spec": spec,
    }


def test_build_args():
    ms = _ms(["--some-arg=value", "--model=old-model"])
    assert build_args(ms) == [
        "--some-arg=value",
        "--model=test-model",
        "--served-model-name=served-test-model",
        "--tensor-parallel-size=1",
    ]


def test_build_args_without_served_model_name():
    ms = _ms(["--some-arg=value", "--model=old-model", "--served-model-name=my-name"], served_name="")
    assert build_args(ms) == [
        "--some-arg=value",
        "--model=test-model",
        "--served-model-name=my-name",
        "--tensor-parallel-size=1",
    ]


def test_build_args_does_not_mutate_spec():
    ms = _ms(["--model=old-model"])
    build_args(ms)
    assert ms["spec"]["template"]["spec"]["containers"][0]["args"] == ["--model=old-model"]


@pytest.mark.parametrize("limit,expected", [("1", 1), ("4", 4), (2, 2), ("1500m", 2)])
def test_get_vgpu_number(limit, expected):
    ms = _ms([])
    ms["spec"]["template"]["spec"]["containers"][0]["resources"]["limits"][msmod.VGPU_NUMBER] = limit
    assert get_vgpu_number(ms) == expected


def test_get_vgpu_number_missing():
    ms = _ms([])
    ms["spec"]["template"]["spec"]["containers"][0]["resources"] = {}
    assert get_vgpu_number(ms) == 0
    assert get_vgpu_number(None) == 0


def test_build_envs_modelscope():
    ms = _ms([], modelRegistry="modelscope")
    container = {"env": [{"name": "A", "value": "b"}]}
    assert build_envs(ms, container) == [
        {"name": "A", "value": "b"},
        {"name": "VLLM_USE_MODELSCOPE", "value": "True"},
    ]
    assert build_envs(_ms([]), container) == [{"name": "A", "value": "b"}]


def test_selector_default_and_custom():
    ms = _ms([])
    assert get_model_service_selector(ms) == {"matchLabels": {
        msmod.LABEL_LLMOS_ML_TYPE: "model-service",
        msmod.LABEL_MODEL_SERVICE_NAME: "qwen.small",
    }}
    ms["spec"]["selector"] = {"matchLabels": {"app": "x"}}
    labels = get_model_service_selector(ms)["matchLabels"]
    assert labels["app"] == "x"
    assert labels[msmod.LABEL_MODEL_SERVICE_NAME] == "qwen.small"


@pytest.mark.parametrize("registry,cli", [("huggingface", "huggingface-cli"), ("modelscope", "modelscope")])
def test_init_containers(registry, cli):
    ms = _ms([], modelRegistry=registry)
    containers = construct_init_containers(ms, {"image": "img", "env": []})
    assert containers[0]["command"] == [cli]
    assert containers[0]["args"] == ["download", "test-model"]
    assert containers[0]["env"] == [{"name": "HF_HUB_ENABLE_HF_TRANSFER", "value": "1"}]


@pytest.mark.parametrize("registry", ["", "local"])
def test_no_init_containers_for_local(registry):
    assert construct_init_containers(_ms([], modelRegistry=registry), {"image": "img"}) is None


def test_formatted_name():
    assert formatted_ms_name("a.b") == "modelservice-a-b"
    assert formatted_ms_name("a.b", "svc") == "modelservice-a-b-svc"


def test_stateful_set_defaults():
    ms = _ms(["--model=old"], replicas=2)
    ms["metadata"]["annotations"] = {"kubectl.io/x": "1", "team": "ml"}
    ss = construct_model_stateful_set(ms)
    assert ss["metadata"]["name"] == "modelservice-qwen-small"
    assert ss["spec"]["replicas"] == 2
    container = ss["spec"]["template"]["spec"]["containers"][0]
    assert container["livenessProbe"]["httpGet"] == {"path": "/health", "port": 8000}
    assert container["readinessProbe"]["failureThreshold"] == 60
    assert ss["spec"]["template"]["metadata"]["annotations"] == {"team": "ml"}
    assert ss["metadata"]["ownerReferences"][0]["uid"] == "uid-1"


def test_stateful_set_stopped():
    ms = _ms([], replicas=3)
    ms["metadata"]["annotations"] = {msmod.ANNOTATION_RESOURCE_STOPPED: "true"}
    assert construct_model_stateful_set(ms)["spec"]["replicas"] == 0


def test_stateful_set_requires_ports():
    ms = _ms([])
    ms["spec"]["template"]["spec"]["containers"][0]["ports"] = []
    with pytest.raises(ValueError):
        construct_model_stateful_set(ms)


def test_service_ports():
    svc = construct_model_service(_ms([], serviceType="ClusterIP"))
    assert svc["spec"]["ports"] == [{"name": "http", "port": 8000, "targetPort": "http"}]
    assert svc["spec"]["type"] == "ClusterIP"


def test_status_running():
    pod = {"status": {
        "containerStatuses": [{"state": {"running": {"startedAt": "now"}}}],
        "conditions": [{"type": "Ready", "status": "True"}],
    }}
    status = construct_model_status({"status": {"readyReplicas": 1}}, pod)
    assert status["state"] == "Running"
    assert status["readyReplicas"] == 1
    assert status["conditions"][0]["type"] == "Ready"


def test_status_empty_pod():
    status = construct_model_status({"status": {"readyReplicas": 0}}, {"status": {}})
    assert status == {"conditions": [], "readyReplicas": 0, "containerState": {}, "state": ""}


def test_related_keys():
    pod = {"kind": "Pod", "metadata": {"namespace": "default", "ownerReferences": [
        {"kind": "StatefulSet", "name": "modelservice-x"}]}}
    assert related_stateful_set_keys(pod) == [("default", "modelservice-x")]
    pod["metadata"]["ownerReferences"][0]["name"] = "other"
    assert related_stateful_set_keys(pod) == []