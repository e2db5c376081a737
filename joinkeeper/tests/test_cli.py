import yaml
from typer.testing import CliRunner

from joinkeeper.cli import app
from joinkeeper.tokens import codec

runner = CliRunner()


def test_help_lists_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("run", "token", "status"):
        assert command in result.stdout


def test_token_decode(issued_token, kubeconfig):
    result = runner.invoke(app, ["token", "decode", issued_token])
    assert result.exit_code == 0
    assert result.stdout.encode("utf-8") == kubeconfig


def test_token_decode_from_stdin(issued_token):
    result = runner.invoke(app, ["token", "decode", "-"], input=issued_token + "\n")
    assert result.exit_code == 0
    assert "kubelet-bootstrap" in result.stdout


def test_token_decode_rejects_garbage():
    result = runner.invoke(app, ["token", "decode", "%%%"])
    assert result.exit_code == 1


def test_token_encode(tmp_path, kubeconfig):
    path = tmp_path / "kubeconfig.yaml"
    path.write_bytes(kubeconfig)

    result = runner.invoke(app, ["token", "encode", str(path)])

    assert result.exit_code == 0
    assert codec.decode(result.stdout.strip()) == kubeconfig


def test_token_rewrite_port(issued_token):
    result = runner.invoke(app, ["token", "rewrite-port", issued_token, "--port", "6443"])
    assert result.exit_code == 0

    document = yaml.safe_load(codec.decode(result.stdout.strip()))
    assert document["clusters"][0]["cluster"]["server"] == "https://172.17.0.2:6443"


def test_token_id(issued_token):
    result = runner.invoke(app, ["token", "id", issued_token, "--role", "controller"])
    assert result.exit_code == 0
    assert result.stdout.strip() == "abcdef"


def test_token_id_unknown_role(issued_token):
    result = runner.invoke(app, ["token", "id", issued_token, "-r", "etcd"])
    assert result.exit_code == 1


def test_status_compute(tmp_path):
    snapshot = tmp_path / "snapshot.yaml"
    snapshot.write_text("""
version: 1.2.3
args: [--enable-worker]
members:
  - {name: cp-0, phase: Running, version: 1.2.3}
  - {name: cp-1, phase: Running, version: 1.2.3+k0s.0}
  - {name: cp-2, phase: Provisioning, version: 1.2.0}
""")

    result = runner.invoke(app, ["status", "compute", str(snapshot)])

    assert result.exit_code == 0
    status = yaml.safe_load(result.stdout)
    assert status["replicas"] == 3
    assert status["readyReplicas"] == 2
    assert status["updatedReplicas"] == 2
    assert status["unavailableReplicas"] == 1
    assert status["version"] == "1.2.0"
    assert status["externalManagedControlPlane"] is False
    assert "conditions" not in status


def test_status_compute_rejects_non_mapping(tmp_path):
    snapshot = tmp_path / "snapshot.yaml"
    snapshot.write_text("- a\n- b\n")
    result = runner.invoke(app, ["status", "compute", str(snapshot)])
    assert result.exit_code == 1
