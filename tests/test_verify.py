"""
준비 상태 확인 모듈 테스트
"""

import pytest

from k8s_installer.errors import ReadinessTimeout
from k8s_installer.host import CommandResult
from k8s_installer.verify import ReadinessVerifier


def test_timeout_when_api_never_responds(host):
    """응답이 없으면 제한 시간 후 ReadinessTimeout (무한 대기 없음)"""
    host.respond(["kubectl", "get", "nodes"], returncode=1, stderr="The connection to the server was refused")
    verifier = ReadinessVerifier(host, timeout=60, interval=1)

    with pytest.raises(ReadinessTimeout) as exc_info:
        verifier.verify()

    assert exc_info.value.timeout == 60
    assert 60 <= host.clock <= 61
    assert len(host.calls("kubectl", "get", "nodes")) <= 62


def test_api_ready_after_retries(host):
    attempts = []

    def api(cmd):
        attempts.append(cmd)
        if len(attempts) < 3:
            return CommandResult(cmd, 1, stderr="connection refused")
        return CommandResult(cmd, 0, "node-1   Ready   control-plane\n")

    host.respond(["kubectl", "get", "nodes", "--no-headers"], effect=api)

    assert ReadinessVerifier(host, timeout=60, interval=2).wait_for_api() == 3
    assert host.clock == 4


def test_verify_lists_nodes(host):
    host.respond(["kubectl", "get", "nodes"], stdout="node-1   Ready   control-plane\n")
    result = ReadinessVerifier(host).verify()
    assert result.ok
    assert host.ran("kubectl", "get", "nodes", "-o", "wide")
    assert host.clock == 0


def test_hanging_kubectl_stays_within_deadline(host, monkeypatch):
    """kubectl 이 응답 없이 멈춰도 요청마다 제한 시간이 걸려 전체 대기 시간 유지"""
    requests_made = []

    def hanging(cmd, env=None, timeout=None, **kwargs):
        requests_made.append((cmd, timeout))
        host.clock += timeout
        return CommandResult(cmd, 124, stderr=f"kubectl timed out after {timeout}s")

    monkeypatch.setattr(host, "run", hanging)

    with pytest.raises(ReadinessTimeout):
        ReadinessVerifier(host, timeout=60, interval=1).wait_for_api()

    assert 60 <= host.clock <= 61
    assert all(timeout <= 1 for _, timeout in requests_made)
    assert all("--request-timeout=1s" in cmd for cmd, _ in requests_made)
