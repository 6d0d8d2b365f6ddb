"""
호스트 준비 모듈
사전 점검(root, 패키지 매니저, 네트워크), swap 비활성화, 커널 모듈/sysctl 설정, 포트 점검
"""

from typing import List, Optional

from .config import NodeRole
from .errors import ConfigWriteError, PreconditionError
from .logger import get_logger
from .phases import PhaseResult

FSTAB = "/etc/fstab"
PROC_SWAPS = "/proc/swaps"
MODULES_CONF = "/etc/modules-load.d/k8s.conf"
SYSCTL_CONF = "/etc/sysctl.d/k8s.conf"

KERNEL_MODULES = ["overlay", "br_netfilter", "ip_tables", "nf_nat", "nf_conntrack"]

# 커널 버전에 따라 이름이 바뀐 모듈
MODULE_FALLBACKS = {
    "nf_conntrack": "nf_conntrack_ipv4",
}

SYSCTL_PARAMS = [
    ("net.bridge.bridge-nf-call-iptables", "1"),
    ("net.bridge.bridge-nf-call-ip6tables", "1"),
    ("net.ipv4.ip_forward", "1"),
    ("net.ipv4.conf.all.rp_filter", "0"),
    ("net.ipv4.conf.default.rp_filter", "0"),
]

CONTROL_PLANE_PORTS = [6443, 2379, 2380, 10250, 10259, 10257]
WORKER_PORTS = [10250]

CONNECTIVITY_URLS = ["https://pkgs.k8s.io", "https://github.com"]


class HostPreparer:
    """호스트 준비 클래스"""

    def __init__(self, host):
        self.host = host
        self.logger = get_logger()

    def check_root(self) -> PhaseResult:
        """root 권한 확인"""
        if self.host.euid() != 0:
            raise PreconditionError("This installer must be run as root or with sudo")
        self.logger.info("Running with root privileges")
        return PhaseResult.succeeded("root privileges", "running as root")

    def check_package_manager(self) -> PhaseResult:
        """apt 패키지 매니저 확인"""
        missing = [tool for tool in ("apt-get", "apt-mark", "apt-cache") if not self.host.which(tool)]
        if missing:
            raise PreconditionError(
                f"Required package manager tools not found: {', '.join(missing)}. "
                "Only Debian/Ubuntu (apt) hosts are supported"
            )
        self.logger.info("Package manager apt is available")
        return PhaseResult.succeeded("package manager", "apt available")

    def check_connectivity(self, urls: Optional[List[str]] = None) -> PhaseResult:
        """패키지 저장소 / 릴리스 서버 접근 확인"""
        for url in urls or CONNECTIVITY_URLS:
            reachable, message = self.host.url_reachable(url)
            if not reachable:
                raise PreconditionError(f"Network check failed: {message}")
            self.logger.debug(message)
        self.logger.info("Network connectivity check passed")
        return PhaseResult.succeeded("network connectivity", "package repositories reachable")

    def disable_swap(self) -> PhaseResult:
        """fstab 의 swap 항목 주석 처리 및 swapoff"""
        self.logger.info("Disabling swap")
        changed = self._comment_fstab_swap()
        active = self._active_swap()

        if not changed and not active:
            self.logger.info("Swap is already disabled")
            return PhaseResult.skipped("disable swap", "swap already disabled")

        result = self.host.run(["swapoff", "-a"])
        if not result.ok:
            self.logger.warning(f"Failed to turn off swap, continuing anyway: {result.output}")
        self.logger.success("Swap disabled")
        return PhaseResult.succeeded("disable swap", "swap disabled", [FSTAB] if changed else [])

    def _comment_fstab_swap(self) -> bool:
        if not self.host.exists(FSTAB):
            self.logger.info("No /etc/fstab found")
            return False

        try:
            lines = self.host.read_text(FSTAB).splitlines()
        except OSError as e:
            raise ConfigWriteError(f"Cannot read {FSTAB}: {e}") from e

        changed = False
        for i, line in enumerate(lines):
            fields = line.split()
            if fields and not fields[0].startswith("#") and len(fields) >= 3 and fields[2] == "swap":
                lines[i] = "#" + line
                changed = True

        if not changed:
            self.logger.info("No active swap entries in /etc/fstab")
            return False

        try:
            self.host.write_text(FSTAB, "\n".join(lines) + "\n")
        except OSError as e:
            raise ConfigWriteError(f"Cannot write {FSTAB}: {e}") from e
        self.logger.info("Swap entries commented out in /etc/fstab")
        return True

    def _active_swap(self) -> bool:
        try:
            content = self.host.read_text(PROC_SWAPS)
        except OSError:
            return True
        # 첫 줄은 헤더
        return len([line for line in content.splitlines()[1:] if line.strip()]) > 0

    def configure_system(self) -> PhaseResult:
        """커널 모듈 로드 및 sysctl 파라미터 적용"""
        self.logger.info("Configuring system settings for Kubernetes")

        modules_content = "\n".join(KERNEL_MODULES) + "\n"
        sysctl_content = "\n".join(f"{key} = {value}" for key, value in SYSCTL_PARAMS) + "\n"
        self._write_checked(MODULES_CONF, modules_content)
        self._write_checked(SYSCTL_CONF, sysctl_content)

        for module in KERNEL_MODULES:
            result = self.host.run(["modprobe", module])
            if not result.ok and module in MODULE_FALLBACKS:
                result = self.host.run(["modprobe", MODULE_FALLBACKS[module]])
            if result.ok:
                self.logger.debug(f"Loaded kernel module {module}")
            else:
                self.logger.warning(f"Failed to load {module} module: {result.output}")

        result = self.host.run(["sysctl", "--system"])
        if not result.ok:
            self.logger.warning(f"Failed to apply sysctl parameters: {result.output}")

        self.logger.success("System configured for Kubernetes")
        return PhaseResult.succeeded("kernel modules and sysctl", "configured", [MODULES_CONF, SYSCTL_CONF])

    def _write_checked(self, path: str, content: str):
        try:
            self.host.write_text(path, content)
            written = self.host.read_text(path)
        except OSError as e:
            raise ConfigWriteError(f"Failed to write {path}: {e}") from e
        if written != content:
            raise ConfigWriteError(f"Content check failed for {path}")

    def check_ports(self, role: NodeRole) -> List[int]:
        """필요 포트 사용 여부 확인 (사용 중이면 경고만)"""
        self.logger.info("Checking required ports")
        ports = CONTROL_PLANE_PORTS if role is NodeRole.CONTROL_PLANE else WORKER_PORTS
        busy = []
        for port in ports:
            if self.host.port_in_use(port):
                self.logger.warning(f"Port {port} is already in use. This might cause conflicts with Kubernetes")
                busy.append(port)
            else:
                self.logger.debug(f"Port {port} is available")
        return busy
