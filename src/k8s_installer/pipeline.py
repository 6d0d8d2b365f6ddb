"""
설치 파이프라인 오케스트레이터
preflight → detect → prepare → install → configure → init/join → cni → verify
"""

from typing import Callable, List, Optional, Union
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .cluster import ClusterBootstrapper, JOIN_COMMAND_FILE
from .cni import CNIInstaller
from .configuration import ConfigGenerator
from .detection import HostProfile, detect_host
from .errors import ProvisioningError
from .host import HostSystem
from .installer import RuntimeInstaller
from .logger import get_logger
from .phases import PhaseResult, PhaseStatus
from .system import HostPreparer
from .verify import ReadinessVerifier

console = Console()

STATUS_STYLES = {
    PhaseStatus.SUCCEEDED: ("✓", "green"),
    PhaseStatus.SKIPPED: ("↷", "cyan"),
    PhaseStatus.FAILED: ("✗", "red"),
}


class ProvisioningPipeline:
    """설치 파이프라인"""

    def __init__(self, config, host=None):
        self.config = config
        self.host = host or HostSystem()
        self.logger = get_logger()
        self.preparer = HostPreparer(self.host)
        self.bootstrapper = ClusterBootstrapper(config, self.host)
        self.profile: Optional[HostProfile] = None
        self.results: List[PhaseResult] = []
        self.current_phase = ""

    def run(self) -> bool:
        """메인 실행 로직"""
        console.print(Panel.fit(
            "[bold cyan]Kubernetes Node Installer[/bold cyan]\n"
            f"{self.config.node_type.value} 노드를 구성합니다. (Kubernetes v{self.config.k8s_version})",
            border_style="cyan",
        ))
        self.logger.info(f"Starting Kubernetes cluster setup utility v{__version__}")

        try:
            self.phase("preflight", self.preflight)
            self.phase("detect environment", self.detect)
            self.phase("prepare host", self.prepare_host)
            self.phase("install runtime", self.install_runtime)
            self.phase("generate configuration", self.generate_configs)
            self.phase("cluster bootstrap", self.bootstrapper.bootstrap)
            if self.config.is_control_plane:
                self.phase("install cni", self.install_cni)
                self.phase("verify readiness", self.verify)

        except ProvisioningError as e:
            self.results.append(PhaseResult.failed(self.current_phase, str(e)))
            self.logger.error(f"{self.current_phase} failed: {e}")
            self.show_summary()
            return False

        except KeyboardInterrupt:
            self.logger.warning("Execution interrupted by user")
            self.show_summary()
            return False

        except Exception:
            self.logger.exception(f"Unexpected error during {self.current_phase}")
            self.show_summary()
            return False

        self.show_summary()
        self.show_completion()
        return True

    def phase(self, name: str, step: Callable[[], Union[PhaseResult, List[PhaseResult]]]):
        """단계 실행 및 결과 기록"""
        self.current_phase = name
        self.logger.info(f"==> {name}")
        outcome = step()
        results = outcome if isinstance(outcome, list) else [outcome]
        self.results.extend(results)
        return results

    def preflight(self) -> List[PhaseResult]:
        return [
            self.preparer.check_root(),
            self.preparer.check_package_manager(),
            self.preparer.check_connectivity(),
        ]

    def detect(self) -> PhaseResult:
        self.profile = detect_host(self.host)
        p = self.profile
        return PhaseResult.succeeded(
            "host detection",
            f"{p.distro_id} {p.distro_version} {p.arch}, cgroup {p.cgroup_version.value}, "
            f"{p.cgroup_driver.value} driver",
        )

    def prepare_host(self) -> List[PhaseResult]:
        results = [self.preparer.disable_swap(), self.preparer.configure_system()]
        busy = self.preparer.check_ports(self.config.node_type)
        if busy:
            message = f"in use: {', '.join(str(port) for port in busy)}"
        else:
            message = "all available"
        results.append(PhaseResult.succeeded("port check", message))
        return results

    def install_runtime(self) -> List[PhaseResult]:
        installer = RuntimeInstaller(self.config, self.profile, self.host)
        return [
            installer.install_prerequisites(),
            installer.install_containerd(),
            installer.install_runc(),
            installer.install_kubernetes_tools(),
            installer.verify_tools(),
        ]

    def generate_configs(self) -> List[PhaseResult]:
        return ConfigGenerator(self.config, self.profile, self.host).generate_all()

    def install_cni(self) -> PhaseResult:
        return CNIInstaller(self.config, self.profile, self.host).install()

    def verify(self) -> PhaseResult:
        return ReadinessVerifier(self.host).verify()

    def show_summary(self):
        """실행 결과 요약 표시"""
        table = Table(title="실행 결과 요약", show_header=True, header_style="bold magenta")
        table.add_column("단계", style="cyan")
        table.add_column("상태")
        table.add_column("메시지")
        table.add_column("파일")

        for result in self.results:
            icon, color = STATUS_STYLES[result.status]
            table.add_row(
                result.name,
                f"[{color}]{icon} {result.status.value}[/{color}]",
                result.message,
                "\n".join(result.artifacts),
            )

        console.print()
        console.print(table)
        if self.config.log_file:
            console.print(f"\n[bold]로그 파일:[/bold] {self.config.log_file}")

    def show_completion(self):
        outcome = self.bootstrapper.outcome
        if self.config.is_control_plane:
            self.logger.success("Kubernetes control plane initialized successfully!")
            if outcome and outcome.join_command:
                self.logger.info("To join worker nodes to this cluster, run the following command on each worker node:")
                console.print(Panel(outcome.join_command, title="join command", border_style="green"))
                self.logger.info(f"The join command is also saved in {JOIN_COMMAND_FILE}")
        else:
            self.logger.success("Worker node setup completed successfully!")
            self.logger.info("Run 'kubectl get nodes' on the control plane to check the node status")
        self.logger.success("Kubernetes setup completed successfully")
