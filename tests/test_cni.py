"""
CNI 플러그인 설치 모듈 테스트
"""

import dataclasses
import hashlib
import pytest

from k8s_installer.cni import (
    CILIUM_CLI_STABLE_URL, CILIUM_CLI_URL, DEPLOYMENTS, MANIFEST_URLS, CNIInstaller,
    rewrite_calico_cidr, rewrite_flannel_cidr,
)
from k8s_installer.config import CNI_DEFAULT_POD_CIDRS, CNI_DEFAULT_VERSIONS, CNIProvider, ProvisioningConfig
from k8s_installer.errors import InstallationError
from k8s_installer.phases import PhaseStatus

CALICO_MANIFEST = """            - name: IP
              value: "autodetect"
            # - name: CALICO_IPV4POOL_CIDR
            #   value: "192.168.0.0/16"
            - name: CALICO_DISABLE_FILE_LOGGING
              value: "true"
"""

FLANNEL_MANIFEST = """  net-conf.json: |
    {
      "Network": "10.244.0.0/16",
      "EnableNFTables": false,
      "Backend": {
        "Type": "vxlan"
      }
    }
"""


def make_config(provider, **kwargs):
    return ProvisioningConfig(
        node_type="control-plane", control_plane_endpoint="cp.example.com", cni_provider=provider, **kwargs
    )


def not_installed(host):
    host.respond(["kubectl", "get", "daemonset"], returncode=1, stderr="NotFound")
    return host


def test_every_provider_is_dispatched(cp_config, profile, host):
    """모든 CNIProvider 값에 설치 함수 / 배포 정보 / 기본값이 있어야 함"""
    installer = CNIInstaller(cp_config, profile, host)
    assert set(installer.installers) == set(CNIProvider)
    assert set(DEPLOYMENTS) == set(CNIProvider)
    assert set(CNI_DEFAULT_VERSIONS) == set(CNIProvider)
    assert set(CNI_DEFAULT_POD_CIDRS) == set(CNIProvider)
    assert set(MANIFEST_URLS) | {CNIProvider.CILIUM} == set(CNIProvider)


def test_skip_cni(profile, host):
    config = make_config("cilium", skip_cni=True)
    result = CNIInstaller(config, profile, host).install()
    assert result.status is PhaseStatus.SKIPPED
    assert not host.commands


def test_already_installed(cp_config, profile, host):
    """DaemonSet 이 있으면 건너뜀"""
    result = CNIInstaller(cp_config, profile, host).install()
    assert result.status is PhaseStatus.SKIPPED
    assert result.message == "already installed"
    assert host.calls("kubectl") == [["kubectl", "get", "daemonset", "cilium", "-n", "kube-system"]]


def test_install_cilium_with_custom_cidr(cp_config, profile, host):
    not_installed(host).binaries.add("cilium")

    result = CNIInstaller(cp_config, profile, host).install()

    assert result.status is PhaseStatus.SUCCEEDED
    install = host.calls("cilium", "install")[0]
    assert install[:4] == ["cilium", "install", "--version", "1.17.2"]
    assert "ipam.operator.clusterPoolIPv4PodCIDRList=10.244.0.0/16" in install
    assert host.ran("kubectl", "rollout", "status", "daemonset/cilium", "-n", "kube-system")


def test_install_cilium_default_cidr(profile, host):
    not_installed(host).binaries.add("cilium")
    config = make_config("cilium", pod_network_cidr="10.217.0.0/16")

    CNIInstaller(config, profile, host).install()

    assert host.calls("cilium", "install")[0] == ["cilium", "install", "--version", "1.17.2"]


def test_cilium_cli_download(cp_config, profile, host):
    """cilium CLI 체크섬 검증 후 설치"""
    not_installed(host)
    url = CILIUM_CLI_URL.format(version="v0.18.2", arch="amd64")
    host.urls[CILIUM_CLI_STABLE_URL] = "v0.18.2\n"
    host.urls[url] = "cilium-archive"
    digest = hashlib.sha256(b"cilium-archive").hexdigest()
    host.urls[url + ".sha256sum"] = f"{digest}  cilium-linux-amd64.tar.gz\n"

    result = CNIInstaller(cp_config, profile, host).install()

    assert host.extracted == [("/tmp/k8s-installer/cilium-linux-amd64.tar.gz", "/usr/local/bin")]
    assert "/usr/local/bin/cilium" in result.artifacts


def test_cilium_cli_checksum_mismatch(cp_config, profile, host):
    not_installed(host)
    url = CILIUM_CLI_URL.format(version="v0.18.2", arch="amd64")
    host.urls[CILIUM_CLI_STABLE_URL] = "v0.18.2\n"
    host.urls[url + ".sha256sum"] = "0000  cilium-linux-amd64.tar.gz\n"

    with pytest.raises(InstallationError, match="Checksum mismatch"):
        CNIInstaller(cp_config, profile, host).install()
    assert not host.extracted
    assert not host.ran("cilium")


def test_install_calico(profile, host):
    """calico 매니페스트 CIDR 수정 후 적용"""
    not_installed(host)
    host.urls[MANIFEST_URLS[CNIProvider.CALICO].format(version="3.29.2")] = CALICO_MANIFEST
    config = make_config("calico")

    result = CNIInstaller(config, profile, host).install()

    path = "/etc/kubernetes/cni/calico.yaml"
    assert result.artifacts == (path,)
    assert 'value: "10.244.0.0/16"' in host.files[path]
    assert host.ran("kubectl", "apply", "-f", path)
    assert host.ran("kubectl", "rollout", "status", "daemonset/calico-node")


def test_install_flannel(profile, host):
    not_installed(host)
    host.urls[MANIFEST_URLS[CNIProvider.FLANNEL].format(version="0.26.5")] = FLANNEL_MANIFEST
    config = make_config("flannel", pod_network_cidr="10.32.0.0/16")

    CNIInstaller(config, profile, host).install()

    assert '"Network": "10.32.0.0/16"' in host.files["/etc/kubernetes/cni/flannel.yaml"]
    assert host.ran("kubectl", "rollout", "status", "daemonset/kube-flannel-ds", "-n", "kube-flannel")


def test_flannel_default_cidr_keeps_manifest(profile, host):
    not_installed(host)
    host.urls[MANIFEST_URLS[CNIProvider.FLANNEL].format(version="0.26.5")] = FLANNEL_MANIFEST

    CNIInstaller(make_config("flannel"), profile, host).install()

    assert host.files["/etc/kubernetes/cni/flannel.yaml"] == FLANNEL_MANIFEST


def test_manifest_apply_failure(profile, host):
    not_installed(host)
    host.respond(["kubectl", "apply"], returncode=1, stderr="connection refused")
    host.urls[MANIFEST_URLS[CNIProvider.FLANNEL].format(version="0.26.5")] = FLANNEL_MANIFEST

    with pytest.raises(InstallationError, match="kubectl apply"):
        CNIInstaller(make_config("flannel"), profile, host).install()


def test_rollout_timeout_only_warns(cp_config, profile, host, log_records):
    """준비 대기 시간 초과는 경고만"""
    not_installed(host).binaries.add("cilium")
    host.respond(["kubectl", "rollout"], returncode=1, stderr="timed out waiting for the condition")

    result = CNIInstaller(cp_config, profile, host).install()

    assert result.status is PhaseStatus.SUCCEEDED
    assert any("not ready yet" in m for m in log_records.messages("WARN"))


def test_rewrite_calico_cidr():
    content = rewrite_calico_cidr(CALICO_MANIFEST, "10.244.0.0/16")
    assert "# - name: CALICO_IPV4POOL_CIDR" not in content
    assert '            - name: CALICO_IPV4POOL_CIDR\n              value: "10.244.0.0/16"' in content

    # 이미 주석 해제된 매니페스트
    assert 'value: "10.50.0.0/16"' in rewrite_calico_cidr(content, "10.50.0.0/16")


def test_rewrite_cidr_missing_field():
    with pytest.raises(InstallationError):
        rewrite_calico_cidr("kind: DaemonSet\n", "10.244.0.0/16")
    with pytest.raises(InstallationError):
        rewrite_flannel_cidr("kind: DaemonSet\n", "10.244.0.0/16")


def test_custom_cni_version(profile, host):
    not_installed(host).binaries.add("cilium")
    config = dataclasses.replace(make_config("cilium"), cni_version="1.16.5")
    CNIInstaller(config, profile, host).install()
    assert host.calls("cilium", "install")[0][3] == "1.16.5"
