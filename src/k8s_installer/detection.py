"""
호스트 환경 감지 모듈
OS, 아키텍처, init 시스템, cgroup 버전을 감지하고 cgroup 드라이버를 결정
"""

from dataclasses import dataclass
from enum import Enum

from .errors import UnsupportedPlatform
from .logger import get_logger

SUPPORTED_DISTROS = ("ubuntu", "debian")
CGROUP_V2_MARKER = "/sys/fs/cgroup/cgroup.controllers"

ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


class InitSystem(str, Enum):
    SYSTEMD = "systemd"
    OTHER = "other"


class CgroupVersion(str, Enum):
    V1 = "v1"
    V2 = "v2"


class CgroupDriver(str, Enum):
    SYSTEMD = "systemd"
    CGROUPFS = "cgroupfs"


@dataclass(frozen=True)
class HostProfile:
    """감지된 호스트 정보 (한 번 계산 후 변경하지 않음)"""
    kernel: str
    distro_id: str
    distro_version: str
    arch: str
    init_system: InitSystem
    cgroup_version: CgroupVersion
    cgroup_driver: CgroupDriver

    @property
    def systemd_cgroup(self) -> bool:
        return self.cgroup_driver is CgroupDriver.SYSTEMD


def derive_cgroup_driver(init_system: InitSystem, cgroup_version: CgroupVersion) -> CgroupDriver:
    """systemd init 이거나 cgroup v2 이면 systemd, 그 외에는 cgroupfs"""
    if init_system is InitSystem.SYSTEMD or cgroup_version is CgroupVersion.V2:
        return CgroupDriver.SYSTEMD
    return CgroupDriver.CGROUPFS


def normalize_arch(machine: str) -> str:
    try:
        return ARCH_ALIASES[machine.lower()]
    except KeyError:
        raise UnsupportedPlatform(
            f"Unsupported architecture: {machine}. Only amd64 and arm64 are supported"
        ) from None


def detect_host(host) -> HostProfile:
    """호스트 환경 감지"""
    logger = get_logger()
    logger.info("Detecting operating system")

    kernel = host.kernel_name()
    if kernel != "Linux":
        raise UnsupportedPlatform(f"Only Linux is supported (detected: {kernel or 'unknown'})")

    release = host.os_release()
    distro_id = release.get("ID", "unknown").lower()
    distro_version = release.get("VERSION_ID", "unknown")
    if not release:
        logger.warning("Cannot read /etc/os-release; distribution unknown")
    logger.info(f"Detected distribution: {distro_id} {distro_version}")
    if distro_id not in SUPPORTED_DISTROS:
        logger.warning(f"Unsupported distribution: {distro_id}. This installer is designed for Ubuntu/Debian")
        logger.warning("Continuing but may encounter issues...")

    arch = normalize_arch(host.machine())
    logger.info(f"Detected architecture: {arch}")

    logger.info("Detecting init system and cgroup version")
    init_system = InitSystem.SYSTEMD if host.pid1_command() == "systemd" else InitSystem.OTHER
    logger.info(f"Detected init system: {init_system.value}")

    cgroup_version = CgroupVersion.V2 if host.exists(CGROUP_V2_MARKER) else CgroupVersion.V1
    logger.info(f"Detected cgroup version: {cgroup_version.value}")

    driver = derive_cgroup_driver(init_system, cgroup_version)
    logger.info(f"Using {driver.value} cgroup driver")

    return HostProfile(
        kernel=kernel,
        distro_id=distro_id,
        distro_version=distro_version,
        arch=arch,
        init_system=init_system,
        cgroup_version=cgroup_version,
        cgroup_driver=driver,
    )
