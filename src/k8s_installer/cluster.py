"""
클러스터 부트스트랩 모듈
control-plane: kubeadm init, kubeconfig 배포, join 명령어 생성
worker: kubeadm join
idempotent 재실행 및 force-reset 지원
"""

import os
import re
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .config import NodeRole
from .configuration import KUBEADM_CONFIG
from .errors import ClusterInitError, ClusterJoinError, ProvisioningError
from .logger import get_logger
from .phases import PhaseResult

ADMIN_CONF = "/etc/kubernetes/admin.conf"
KUBELET_CONF = "/etc/kubernetes/kubelet.conf"
JOIN_COMMAND_FILE = "/etc/kubernetes/join-command.sh"
INIT_LOG = "/var/log/kubeadm-init.log"
ROOT_KUBECONFIG = "/root/.kube/config"
CNI_CONF_DIR = "/etc/cni/net.d"

KUBECTL_ENV = {"KUBECONFIG": ADMIN_CONF}
IGNORED_PREFLIGHT_ERRORS = ["NumCPU", "Mem"]
JOIN_TIMEOUT = 300

SECRET_FLAG_RE = re.compile(r"(--(?:token|certificate-key)[ =])(\S+)")


class ControlPlaneState(str, Enum):
    NOT_INITIALIZED = "NotInitialized"
    INITIALIZING = "Initializing"
    INITIALIZED = "Initialized"
    FAILED = "Failed"


class WorkerState(str, Enum):
    NOT_JOINED = "NotJoined"
    JOINING = "Joining"
    JOINED = "Joined"
    FAILED = "Failed"


@dataclass
class ClusterBootstrapOutcome:
    """부트스트랩 결과"""
    role: NodeRole
    state: Enum
    join_command: Optional[str] = field(default=None, repr=False)
    admin_conf: Optional[str] = None
    joined: bool = False
    already_done: bool = False


def mask_secrets(command: str) -> str:
    """로그 출력용으로 토큰/인증서 키 마스킹"""
    return SECRET_FLAG_RE.sub(lambda m: m.group(1) + "******", command)


def build_join_command(config) -> str:
    """토큰으로 join 명령어 구성 (kubeadm 제외)"""
    return (
        f"join {config.control_plane_address} --token {config.token} "
        "--discovery-token-unsafe-skip-ca-verification"
    )


def normalize_join_command(command: str) -> str:
    """앞의 sudo / kubeadm 을 제거하여 'join ...' 형태로 정규화"""
    tokens = shlex.split(command.replace("\\\n", " "))
    while tokens and (tokens[0] == "sudo" or os.path.basename(tokens[0]) == "kubeadm"):
        tokens.pop(0)
    return " ".join(tokens)


def ensure_cri_socket(command: str, cri_endpoint: str) -> str:
    if "--cri-socket" in command:
        return command
    return f"{command} --cri-socket={cri_endpoint}"


def reset_node(host, cri_endpoint: str, error=ProvisioningError):
    """노드 초기화 (기존 클러스터 설정 제거)"""
    logger = get_logger()
    result = host.run(["kubeadm", "reset", "-f", f"--cri-socket={cri_endpoint}"])
    if not result.ok:
        raise error(f"kubeadm reset failed: {result.output}")

    for path in (CNI_CONF_DIR, ROOT_KUBECONFIG):
        try:
            host.remove(path)
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")

    # iptables 규칙 정리
    for cmd in (["iptables", "-F"], ["iptables", "-t", "nat", "-F"]):
        result = host.run(cmd)
        if not result.ok:
            logger.debug(f"{' '.join(cmd)} failed: {result.output}")

    logger.info("Node reset completed")


class ClusterBootstrapper:
    """kubeadm init / join 상태 머신"""

    def __init__(self, config, host):
        self.config = config
        self.host = host
        self.logger = get_logger()
        self.outcome: Optional[ClusterBootstrapOutcome] = None
        if config.is_control_plane:
            self.state = ControlPlaneState.NOT_INITIALIZED
        else:
            self.state = WorkerState.NOT_JOINED

    def bootstrap(self) -> PhaseResult:
        if self.config.is_control_plane:
            return self.init_control_plane()
        return self.join_worker()

    def is_initialized(self) -> bool:
        return self.host.exists(ADMIN_CONF)

    def is_joined(self) -> bool:
        return self.host.exists(KUBELET_CONF)

    def reset_node(self):
        """force-reset: 기존 클러스터 설정 제거 후 처음부터 진행"""
        self.logger.warning("Force reset requested, resetting existing cluster state")
        error = ClusterInitError if self.config.is_control_plane else ClusterJoinError
        reset_node(self.host, self.config.cri_endpoint, error)

    # control-plane

    def init_control_plane(self) -> PhaseResult:
        """control-plane 초기화 (idempotent)"""
        self.logger.info("Initializing Kubernetes control-plane node")

        if self.is_initialized():
            if not self.config.force_reset:
                self.state = ControlPlaneState.INITIALIZED
                self.logger.warning("Kubernetes control plane already initialized")
                self.setup_kubeconfig()
                self.outcome = ClusterBootstrapOutcome(
                    role=NodeRole.CONTROL_PLANE,
                    state=self.state,
                    join_command=self._read_saved_join_command(),
                    admin_conf=ADMIN_CONF,
                    already_done=True,
                )
                return PhaseResult.skipped("control-plane init", "already initialized")
            self.reset_node()

        self.state = ControlPlaneState.INITIALIZING

        result = self.host.run(["kubeadm", "config", "images", "pull", "--config", KUBEADM_CONFIG])
        if result.ok:
            self.logger.info("Control-plane images pulled")
        else:
            self.logger.warning(f"Failed to pre-pull images, kubeadm init will pull them: {result.output}")

        cmd = [
            "kubeadm", "init",
            f"--config={KUBEADM_CONFIG}",
            "--upload-certs",
            f"--ignore-preflight-errors={','.join(IGNORED_PREFLIGHT_ERRORS)}",
        ]
        self.logger.info(f"Running kubeadm init (log: {INIT_LOG})")
        result = self.host.run(cmd, output_file=INIT_LOG)
        if not result.ok:
            self.state = ControlPlaneState.FAILED
            tail = "\n".join(result.output.splitlines()[-5:])
            raise ClusterInitError(f"kubeadm init failed with exit code {result.returncode}, see {INIT_LOG}: {tail}")

        kubeconfigs = self.setup_kubeconfig()
        join_command = self.generate_join_command()

        self.state = ControlPlaneState.INITIALIZED
        self.outcome = ClusterBootstrapOutcome(
            role=NodeRole.CONTROL_PLANE,
            state=self.state,
            join_command=join_command,
            admin_conf=ADMIN_CONF,
        )
        self.logger.success("Kubernetes control plane initialized successfully")
        return PhaseResult.succeeded(
            "control-plane init", "initialized",
            [ADMIN_CONF, INIT_LOG, JOIN_COMMAND_FILE] + kubeconfigs,
        )

    def setup_kubeconfig(self) -> List[str]:
        """root 및 sudo 사용자에게 admin kubeconfig 복사"""
        written = []
        try:
            self.host.copy_file(ADMIN_CONF, ROOT_KUBECONFIG, mode=0o600)
            self.host.chown(ROOT_KUBECONFIG, 0, 0)
            written.append(ROOT_KUBECONFIG)

            user = self.host.invoking_user()
            if user:
                kube_dir = os.path.join(user.home, ".kube")
                target = os.path.join(kube_dir, "config")
                self.host.makedirs(kube_dir)
                self.host.copy_file(ADMIN_CONF, target, mode=0o600)
                self.host.chown(kube_dir, user.uid, user.gid)
                self.host.chown(target, user.uid, user.gid)
                written.append(target)
                self.logger.info(f"kubeconfig installed for user {user.name}")
        except OSError as e:
            raise ClusterInitError(f"Failed to set up kubeconfig: {e}") from e

        self.logger.info(f"kubeconfig installed: {', '.join(written)}")
        return written

    def generate_join_command(self) -> str:
        """워커 노드용 join 명령어 생성 및 저장"""
        self.logger.info("Generating worker node join command")
        result = self.host.run(["kubeadm", "token", "create", "--print-join-command"], env=KUBECTL_ENV)
        if not result.ok:
            raise ClusterInitError(f"Failed to generate join command: {result.output}")

        lines = [line.strip() for line in result.stdout.splitlines() if line.strip().startswith("kubeadm join")]
        if not lines:
            raise ClusterInitError("kubeadm did not print a join command")
        join_command = lines[-1]

        try:
            self.host.write_text(JOIN_COMMAND_FILE, f"#!/bin/sh\n{join_command}\n", mode=0o700)
        except OSError as e:
            raise ClusterInitError(f"Failed to save join command to {JOIN_COMMAND_FILE}: {e}") from e

        self.logger.info(f"Join command: {mask_secrets(join_command)}")
        self.logger.info(f"Join command saved to {JOIN_COMMAND_FILE}")
        return join_command

    def _read_saved_join_command(self) -> Optional[str]:
        if not self.host.exists(JOIN_COMMAND_FILE):
            return None
        try:
            lines = self.host.read_text(JOIN_COMMAND_FILE).splitlines()
        except OSError:
            return None
        commands = [line for line in lines if line.startswith("kubeadm join")]
        return commands[-1] if commands else None

    # worker

    def resolve_join_command(self) -> str:
        """토큰 우선, 없으면 지정된 join 명령어 사용"""
        if self.config.token:
            return build_join_command(self.config)
        if self.config.join_command:
            return normalize_join_command(self.config.join_command)
        raise ClusterJoinError("No join command or token available")

    def join_worker(self) -> PhaseResult:
        """클러스터에 조인 (idempotent)"""
        self.logger.info("Joining worker node to the cluster...")

        if self.is_joined():
            if not self.config.force_reset:
                self.state = WorkerState.JOINED
                self.logger.warning("Worker node already joined to the cluster")
                self.outcome = ClusterBootstrapOutcome(
                    role=NodeRole.WORKER, state=self.state, joined=True, already_done=True,
                )
                return PhaseResult.skipped("worker join", "already joined")
            self.reset_node()

        self.state = WorkerState.JOINING
        join_command = ensure_cri_socket(self.resolve_join_command(), self.config.cri_endpoint)
        display = f"kubeadm {mask_secrets(join_command)}"
        self.logger.info(f"Executing join command: {display}")

        result = self.host.run(["kubeadm"] + shlex.split(join_command), timeout=JOIN_TIMEOUT, display=display)
        if not result.ok:
            self.state = WorkerState.FAILED
            raise ClusterJoinError(f"kubeadm join failed with exit code {result.returncode}: {result.output}")

        # Kubelet 상태 확인
        self.host.sleep(5)
        if self.host.run(["systemctl", "is-active", "--quiet", "kubelet"]).ok:
            self.logger.info("Kubelet is active")
        else:
            self.logger.warning("Kubelet is not active yet, check 'systemctl status kubelet'")

        self.state = WorkerState.JOINED
        self.outcome = ClusterBootstrapOutcome(
            role=NodeRole.WORKER, state=self.state, join_command=join_command, joined=True,
        )
        self.logger.success("Worker node joined to the cluster")
        return PhaseResult.succeeded("worker join", "joined", [KUBELET_CONF])
