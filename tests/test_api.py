import json
import logging
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from approver.app import create_app
from approver.config import ConfigError
from approver.evaluators.base import EvaluationResponse, EvaluationResult
from approver.evaluators.fake import FakeEvaluator
from approver.manager import ReviewManager
from approver.runtime import ApproverRuntime


def _bind_policy(name: str, group: str = "system:authenticated"):
    return [
        {
            "metadata": {"name": f"use-{name}"},
            "rules": [
                {
                    "apiGroups": ["policy.cert-manager.io"],
                    "resources": ["certificaterequestpolicies"],
                    "verbs": ["use"],
                    "resourceNames": [name],
                }
            ],
        }
    ], [
        {
            "metadata": {"name": f"use-{name}"},
            "subjects": [{"kind": "Group", "name": group}],
            "roleRef": {"kind": "ClusterRole", "name": f"use-{name}"},
        }
    ]


def write_config(config_dir: Path, policies, *, api_keys=None, namespaces=None, bound=("web",)):
    cluster_roles = []
    cluster_role_bindings = []
    for name in bound:
        roles, bindings = _bind_policy(name)
        cluster_roles.extend(roles)
        cluster_role_bindings.extend(bindings)

    daemon = {
        "listen": {"host_v4": "127.0.0.1", "port": 8443},
        "logging": {"level": "INFO", "access_log": False},
        "reload": {"enable_sighup": False},
        "review": {
            "evaluators": ["approver.evaluators.fake:FakeEvaluator"],
            "api_keys": list(api_keys or []),
        },
    }
    resources = {
        "policies": policies,
        "namespaces": namespaces or [],
        "clusterRoles": cluster_roles,
        "clusterRoleBindings": cluster_role_bindings,
    }
    (config_dir / "daemon.json").write_text(json.dumps(daemon))
    (config_dir / "resources.json").write_text(json.dumps(resources))


def _from_loopback(app):
    async def wrapped(scope, receive, send):
        if scope["type"] == "http":
            scope = dict(scope, client=("127.0.0.1", 50000))
        await app(scope, receive, send)

    return wrapped


WEB_POLICY = {
    "metadata": {"name": "web"},
    "spec": {"selector": {"issuerRef": {"name": "letsencrypt-*"}}},
}


def review_payload(**overrides):
    spec = {
        "username": "alice",
        "groups": ["system:authenticated"],
        "issuerRef": {"name": "letsencrypt-prod", "kind": "Issuer", "group": "cert-manager.io"},
    }
    spec.update(overrides)
    return {"metadata": {"name": "req-1", "namespace": "web-a"}, "spec": spec}


def test_review_approves_bound_policy(tmp_path: Path):
    write_config(tmp_path, [WEB_POLICY])
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        response = client.post("/v1/review", json=review_payload())

    assert response.status_code == 200
    assert response.json() == {
        "result": "Approved",
        "message": 'Approved by CertificateRequestPolicy: "web"',
    }


def test_review_unprocessed_without_policies(tmp_path: Path):
    write_config(tmp_path, [], bound=())
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        response = client.post("/v1/review", json=review_payload())

    assert response.status_code == 200
    assert response.json() == {"result": "Unprocessed", "message": "No CertificateRequestPolicies exist"}


def test_review_unprocessed_when_nothing_applies(tmp_path: Path):
    write_config(tmp_path, [WEB_POLICY])
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        response = client.post("/v1/review", json=review_payload(issuerRef={"name": "vault"}))

    assert response.json() == {
        "result": "Unprocessed",
        "message": "No CertificateRequestPolicies bound or applicable",
    }


def test_review_denied(tmp_path: Path):
    write_config(tmp_path, [WEB_POLICY])

    async def deny(policy, request):
        return EvaluationResponse(result=EvaluationResult.DENIED, message="dns name not allowed")

    app = create_app(tmp_path, install_signals=False)
    with TestClient(app) as client:
        runtime = app.state.runtime
        runtime._manager = ReviewManager(runtime._store, [FakeEvaluator().with_evaluate(deny)])
        response = client.post("/v1/review", json=review_payload())

    assert response.status_code == 200
    assert response.json() == {
        "result": "Denied",
        "message": "No policy approved this request: [web: dns name not allowed]",
    }


def test_review_reports_failure_as_server_error(tmp_path: Path):
    policy = {
        "metadata": {"name": "web"},
        "spec": {"selector": {"namespace": {"matchLabels": {"tier": "frontend"}}}},
    }
    write_config(tmp_path, [policy])
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        response = client.post("/v1/review", json=review_payload())

    assert response.status_code == 500
    assert response.json()["detail"].startswith("review could not be completed:")
    assert "web-a" in response.json()["detail"]


def test_review_uses_namespace_labels(tmp_path: Path):
    policy = {
        "metadata": {"name": "web"},
        "spec": {"selector": {"namespace": {"matchLabels": {"tier": "frontend"}}}},
    }
    namespaces = [{"metadata": {"name": "web-a", "labels": {"tier": "frontend"}}}]
    write_config(tmp_path, [policy], namespaces=namespaces)
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        response = client.post("/v1/review", json=review_payload())

    assert response.json()["result"] == "Approved"


@pytest.mark.parametrize(
    "payload",
    [
        {"metadata": {"name": "req"}, "spec": {"username": "alice"}},
        {"metadata": {"namespace": "web-a"}, "spec": {}},
    ],
)
def test_review_rejects_malformed_request(tmp_path: Path, payload):
    write_config(tmp_path, [WEB_POLICY])
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        response = client.post("/v1/review", json=payload)

    assert response.status_code == 400


def test_review_requires_api_key_when_configured(tmp_path: Path):
    write_config(tmp_path, [WEB_POLICY], api_keys=["secret-key-1234"])
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        missing = client.post("/v1/review", json=review_payload())
        wrong = client.post(
            "/v1/review", json=review_payload(), headers={"Authorization": "Bearer nope"}
        )
        ok = client.post(
            "/v1/review",
            json=review_payload(),
            headers={"Authorization": "Bearer secret-key-1234"},
        )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert ok.status_code == 200
    assert ok.json()["result"] == "Approved"


def test_not_ready_policy_is_skipped(tmp_path: Path):
    policy = dict(WEB_POLICY)
    policy["status"] = {"conditions": [{"type": "Ready", "status": "False"}]}
    write_config(tmp_path, [policy])
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        response = client.post("/v1/review", json=review_payload())

    assert response.json()["result"] == "Unprocessed"


def test_admin_rejects_remote_clients(tmp_path: Path):
    write_config(tmp_path, [WEB_POLICY])
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        assert client.get("/admin/policies").status_code == 403
        assert client.post("/admin/reload").status_code == 403
        assert client.post("/admin/shutdown").status_code == 403


def test_admin_lists_policies_from_loopback(tmp_path: Path):
    write_config(tmp_path, [WEB_POLICY])
    app = create_app(tmp_path, install_signals=False)
    with TestClient(_from_loopback(app)) as client:
        response = client.get("/admin/policies")

    assert response.status_code == 200
    assert response.json() == {
        "policies": [
            {
                "name": "web",
                "ready": "True",
                "message": "CertificateRequestPolicy is ready for approval evaluation",
            }
        ]
    }


def test_admin_reload_picks_up_new_resources(tmp_path: Path):
    write_config(tmp_path, [], bound=())
    app = create_app(tmp_path, install_signals=False)
    with TestClient(_from_loopback(app)) as client:
        before = client.post("/v1/review", json=review_payload())
        write_config(tmp_path, [WEB_POLICY])
        reload = client.post("/admin/reload")
        after = client.post("/v1/review", json=review_payload())

    assert before.json()["result"] == "Unprocessed"
    assert reload.status_code == 200
    assert after.json()["result"] == "Approved"


def test_admin_reload_keeps_running_config_on_error(tmp_path: Path):
    write_config(tmp_path, [WEB_POLICY])
    app = create_app(tmp_path, install_signals=False)
    with TestClient(_from_loopback(app)) as client:
        (tmp_path / "resources.json").write_text("{broken")
        reload = client.post("/admin/reload")
        response = client.post("/v1/review", json=review_payload())

    assert reload.status_code == 422
    assert response.json()["result"] == "Approved"


def test_review_verdicts_are_audited(tmp_path: Path, caplog):
    write_config(tmp_path, [WEB_POLICY])
    audit = logging.getLogger("approver.audit")
    with TestClient(create_app(tmp_path, install_signals=False)) as client:
        audit.addHandler(caplog.handler)
        try:
            client.post("/v1/review", json=review_payload())
        finally:
            audit.removeHandler(caplog.handler)

    records = [record for record in caplog.records if record.name == "approver.audit"]
    assert len(records) == 1
    assert records[0].getMessage().startswith("Approved web-a/req-1 user=alice:")


class NeedsArgs(FakeEvaluator):
    def __init__(self, threshold):
        super().__init__()


class BrokenValidation(FakeEvaluator):
    async def validate(self, policy):
        raise RuntimeError("validation backend unavailable")


@pytest.fixture
def broken_evaluators(monkeypatch):
    import approver.evaluators.fake as fake_module

    monkeypatch.setattr(fake_module, "NeedsArgs", NeedsArgs, raising=False)
    monkeypatch.setattr(fake_module, "BrokenValidation", BrokenValidation, raising=False)


def _use_evaluator(config_dir: Path, reference: str) -> None:
    daemon_path = config_dir / "daemon.json"
    daemon = json.loads(daemon_path.read_text())
    daemon["review"]["evaluators"] = [reference]
    daemon_path.write_text(json.dumps(daemon))


@pytest.mark.parametrize(
    "reference",
    ["approver.evaluators.fake:NeedsArgs", "approver.evaluators.fake:BrokenValidation"],
)
def test_admin_reload_rejects_failing_evaluators(tmp_path: Path, broken_evaluators, reference):
    write_config(tmp_path, [WEB_POLICY])
    app = create_app(tmp_path, install_signals=False)
    with TestClient(_from_loopback(app)) as client:
        _use_evaluator(tmp_path, reference)
        reload = client.post("/admin/reload")
        response = client.post("/v1/review", json=review_payload())

    assert reload.status_code == 422
    assert response.json()["result"] == "Approved"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reference",
    ["approver.evaluators.fake:NeedsArgs", "approver.evaluators.fake:BrokenValidation"],
)
async def test_initialize_reports_failing_evaluators_as_config_error(
    tmp_path: Path, broken_evaluators, reference
):
    write_config(tmp_path, [WEB_POLICY])
    _use_evaluator(tmp_path, reference)
    runtime = ApproverRuntime(tmp_path)
    with pytest.raises(ConfigError):
        await runtime.initialize()
