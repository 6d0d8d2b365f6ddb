"""
호스트 환경 감지 테스트
"""

import pytest

from k8s_installer.detection import (
    CGROUP_V2_MARKER, CgroupDriver, CgroupVersion, InitSystem, derive_cgroup_driver, detect_host, normalize_arch,
)
from k8s_installer.errors import UnsupportedPlatform


@pytest.mark.parametrize("init_system, cgroup_version, expected", [
    (InitSystem.SYSTEMD, CgroupVersion.V1, CgroupDriver.SYSTEMD),
    (InitSystem.SYSTEMD, CgroupVersion.V2, CgroupDriver.SYSTEMD),
    (InitSystem.OTHER, CgroupVersion.V2, CgroupDriver.SYSTEMD),
    (InitSystem.OTHER, CgroupVersion.V1, CgroupDriver.CGROUPFS),
])
def test_cgroup_driver_matrix(init_system, cgroup_version, expected):
    """init=other 이고 cgroup v1 일 때만 cgroupfs"""
    assert derive_cgroup_driver(init_system, cgroup_version) is expected


@pytest.mark.parametrize("machine, arch", [("x86_64", "amd64"), ("aarch64", "arm64"), ("AMD64", "amd64")])
def test_normalize_arch(machine, arch):
    assert normalize_arch(machine) == arch


def test_normalize_arch_unsupported():
    with pytest.raises(UnsupportedPlatform, match="s390x"):
        normalize_arch("s390x")


def test_detect_systemd_cgroup_v2(host):
    host.files[CGROUP_V2_MARKER] = "cpu memory pids"
    profile = detect_host(host)
    assert profile.kernel == "Linux"
    assert profile.distro_id == "ubuntu"
    assert profile.distro_version == "22.04"
    assert profile.arch == "amd64"
    assert profile.init_system is InitSystem.SYSTEMD
    assert profile.cgroup_version is CgroupVersion.V2
    assert profile.cgroup_driver is CgroupDriver.SYSTEMD
    assert profile.systemd_cgroup


def test_detect_non_systemd_cgroup_v1(host):
    host.init = "init"
    host.arch = "aarch64"
    profile = detect_host(host)
    assert profile.init_system is InitSystem.OTHER
    assert profile.cgroup_version is CgroupVersion.V1
    assert profile.cgroup_driver is CgroupDriver.CGROUPFS
    assert profile.arch == "arm64"
    assert not profile.systemd_cgroup


def test_detect_rejects_non_linux(host):
    host.kernel = "Darwin"
    with pytest.raises(UnsupportedPlatform, match="Only Linux"):
        detect_host(host)


def test_detect_unsupported_distro_only_warns(host, log_records):
    """지원하지 않는 배포판은 경고 후 계속 진행"""
    host.release = {"ID": "centos", "VERSION_ID": "9"}
    profile = detect_host(host)
    assert profile.distro_id == "centos"
    assert any("Unsupported distribution: centos" in m for m in log_records.messages("WARN"))


def test_detect_missing_os_release(host, log_records):
    host.release = {}
    profile = detect_host(host)
    assert profile.distro_id == "unknown"
    assert any("os-release" in m for m in log_records.messages("WARN"))
