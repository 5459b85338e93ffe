import argparse
import json
import sys
from pathlib import Path

import pytest

from approver import cli
from approver.config import load_daemon_config


RESOURCES = {
    "policies": [{"metadata": {"name": "web"}, "spec": {"selector": {"issuerRef": {"name": "letsencrypt-*"}}}}],
    "clusterRoles": [
        {
            "metadata": {"name": "use-web"},
            "rules": [
                {
                    "apiGroups": ["policy.cert-manager.io"],
                    "resources": ["certificaterequestpolicies"],
                    "verbs": ["use"],
                    "resourceNames": ["web"],
                }
            ],
        }
    ],
    "clusterRoleBindings": [
        {
            "metadata": {"name": "use-web"},
            "subjects": [{"kind": "User", "name": "alice"}],
            "roleRef": {"kind": "ClusterRole", "name": "use-web"},
        }
    ],
}


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    daemon = {
        "listen": {"unix_socket": str(tmp_path / "approver.sock")},
        "review": {"evaluators": ["approver.evaluators.fake:FakeEvaluator"]},
    }
    (tmp_path / "daemon.json").write_text(json.dumps(daemon))
    (tmp_path / "resources.json").write_text(json.dumps(RESOURCES))
    return tmp_path


def run_review(monkeypatch, config_dir: Path, request) -> int:
    request_path = config_dir / "request.json"
    request_path.write_text(json.dumps(request))
    monkeypatch.setattr(
        sys,
        "argv",
        ["crp-approver", "review", "--offline", "--config-dir", str(config_dir), str(request_path)],
    )
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    return excinfo.value.code


def test_offline_review_approved(monkeypatch, capsys, config_dir: Path):
    request = {
        "metadata": {"namespace": "web-a"},
        "spec": {"username": "alice", "issuerRef": {"name": "letsencrypt-prod"}},
    }
    assert run_review(monkeypatch, config_dir, request) == 0
    assert capsys.readouterr().out.strip() == 'Approved: Approved by CertificateRequestPolicy: "web"'


def test_offline_review_unprocessed(monkeypatch, capsys, config_dir: Path):
    request = {
        "metadata": {"namespace": "web-a"},
        "spec": {"username": "bob", "issuerRef": {"name": "letsencrypt-prod"}},
    }
    assert run_review(monkeypatch, config_dir, request) == 2
    assert capsys.readouterr().out.startswith("Unprocessed:")


def test_offline_review_invalid_request(monkeypatch, capsys, config_dir: Path):
    assert run_review(monkeypatch, config_dir, {"metadata": {}, "spec": {}}) == cli.EXIT_ERROR
    assert "[error]" in capsys.readouterr().err


def test_resolve_endpoint_prefers_unix_socket(config_dir: Path):
    daemon_cfg = load_daemon_config(config_dir / "daemon.json")
    args = argparse.Namespace(url=None, unix_socket=None)
    base_url, uds = cli._resolve_endpoint(args, daemon_cfg)
    assert uds == str(config_dir / "approver.sock")
    assert base_url.startswith("http://")


def test_offline_review_reports_broken_evaluator(monkeypatch, capsys, config_dir: Path):
    import approver.evaluators.fake as fake_module

    class BrokenValidation(fake_module.FakeEvaluator):
        async def validate(self, policy):
            raise RuntimeError("validation backend unavailable")

    monkeypatch.setattr(fake_module, "BrokenValidation", BrokenValidation, raising=False)
    daemon = json.loads((config_dir / "daemon.json").read_text())
    daemon["review"]["evaluators"] = ["approver.evaluators.fake:BrokenValidation"]
    (config_dir / "daemon.json").write_text(json.dumps(daemon))

    request = {"metadata": {"namespace": "web-a"}, "spec": {"username": "alice"}}
    assert run_review(monkeypatch, config_dir, request) == cli.EXIT_ERROR
    assert "Policy validation failed" in capsys.readouterr().err
