"""
설정 관리 모듈
YAML/JSON 설정 파일 + CLI 옵션으로 불변 ProvisioningConfig 를 구성하고 검증
"""

import ipaddress
import json
import os
import re
import yaml
from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Dict, Any, Optional, Tuple

from .errors import ValidationError, UnsupportedCNIProvider
from .logger import DEFAULT_LOG_FILE


class NodeRole(str, Enum):
    """노드 역할"""
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class CNIProvider(str, Enum):
    """지원 CNI 프로바이더"""
    CILIUM = "cilium"
    CALICO = "calico"
    FLANNEL = "flannel"

    @property
    def default_version(self) -> str:
        return CNI_DEFAULT_VERSIONS[self]

    @property
    def default_pod_cidr(self) -> str:
        return CNI_DEFAULT_POD_CIDRS[self]


CNI_DEFAULT_VERSIONS = {
    CNIProvider.CILIUM: "1.17.2",
    CNIProvider.CALICO: "3.29.2",
    CNIProvider.FLANNEL: "0.26.5",
}

CNI_DEFAULT_POD_CIDRS = {
    CNIProvider.CILIUM: "10.217.0.0/16",
    CNIProvider.CALICO: "192.168.0.0/16",
    CNIProvider.FLANNEL: "10.244.0.0/16",
}

VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")
TOKEN_RE = re.compile(r"^[a-z0-9]{6}\.[a-z0-9]{16}$")
JOIN_TOKEN_RE = re.compile(r"^[a-z0-9]+\.[a-z0-9]+$")
TTL_RE = re.compile(r"^(?=\d)(\d+h)?(\d+m)?(\d+s)?$")
LOG_LEVELS = ("DEBUG", "INFO", "WARN", "WARNING", "ERROR")
DEFAULT_CRI_SOCKET = "/run/containerd/containerd.sock"


@dataclass(frozen=True)
class ProvisioningConfig:
    """노드 설치 설정 (생성 후 변경 불가)"""
    node_type: NodeRole
    k8s_version: str = "1.32.0"
    container_runtime_version: str = "2.0.4"
    runc_version: str = "1.2.6"
    cri_socket: str = DEFAULT_CRI_SOCKET
    cni_provider: CNIProvider = CNIProvider.CILIUM
    cni_version: Optional[str] = None
    pod_network_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"
    control_plane_endpoint: str = ""
    control_plane_port: int = 6443
    token: str = ""
    token_ttl: str = "24h0m0s"
    join_command: str = ""
    skip_cni: bool = False
    force_reset: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = DEFAULT_LOG_FILE

    def __post_init__(self):
        try:
            role = NodeRole(self.node_type)
        except ValueError:
            choices = ", ".join(r.value for r in NodeRole)
            raise ValidationError(f"Invalid node type {self.node_type!r} (expected one of: {choices})") from None
        object.__setattr__(self, "node_type", role)

        provider = self.cni_provider
        if not isinstance(provider, CNIProvider):
            try:
                provider = CNIProvider(str(provider).lower())
            except ValueError:
                raise UnsupportedCNIProvider(str(provider), [p.value for p in CNIProvider]) from None
        object.__setattr__(self, "cni_provider", provider)
        object.__setattr__(self, "cni_version", _strip_v(self.cni_version) or provider.default_version)

        for name in ("k8s_version", "container_runtime_version", "runc_version"):
            object.__setattr__(self, name, _strip_v(getattr(self, name)))

        try:
            object.__setattr__(self, "control_plane_port", int(self.control_plane_port))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid control-plane port: {self.control_plane_port!r}") from None

        object.__setattr__(self, "log_level", str(self.log_level).upper())
        self.validate()

    def validate(self):
        """설정 유효성 검사"""
        for name in ("k8s_version", "container_runtime_version", "runc_version", "cni_version"):
            value = getattr(self, name)
            if not VERSION_RE.match(value):
                raise ValidationError(f"Invalid {name.replace('_', ' ')}: {value!r} (expected X.Y.Z)")

        if not 0 < self.control_plane_port < 65536:
            raise ValidationError(f"Control-plane port out of range: {self.control_plane_port}")

        if self.is_control_plane:
            if not self.control_plane_endpoint:
                raise ValidationError("--control-plane-endpoint is required for control-plane nodes")
        elif not self.token and not self.join_command:
            raise ValidationError("Worker nodes require --join-command or --token")

        if self.control_plane_endpoint:
            split_endpoint(self.control_plane_endpoint)
        if self.token:
            # init 설정 파일에 들어가는 토큰만 kubeadm 형식을 엄격히 검사
            if self.is_control_plane and not TOKEN_RE.match(self.token):
                raise ValidationError("Bootstrap token must match [a-z0-9]{6}.[a-z0-9]{16}")
            if not JOIN_TOKEN_RE.match(self.token):
                raise ValidationError("Bootstrap token must look like <token-id>.<token-secret>")
        if self.node_type is NodeRole.WORKER and self.token and not self.control_plane_endpoint:
            raise ValidationError("--control-plane-endpoint is required when joining with --token")
        if self.join_command and "join" not in self.join_command.split():
            raise ValidationError("Join command must be a 'kubeadm join ...' command")
        if not TTL_RE.match(self.token_ttl):
            raise ValidationError(f"Invalid token TTL: {self.token_ttl!r} (expected e.g. 24h0m0s)")

        pod_net = _parse_network("pod network CIDR", self.pod_network_cidr)
        service_net = _parse_network("service CIDR", self.service_cidr)
        if pod_net.version == service_net.version and pod_net.overlaps(service_net):
            raise ValidationError(
                f"Pod network CIDR {self.pod_network_cidr} overlaps service CIDR {self.service_cidr}"
            )

        if self.log_level not in LOG_LEVELS:
            raise ValidationError(f"Invalid log level: {self.log_level}")

    @property
    def is_control_plane(self) -> bool:
        return self.node_type is NodeRole.CONTROL_PLANE

    @property
    def control_plane_address(self) -> str:
        """host:port 형태의 API 서버 주소"""
        host, port = split_endpoint(self.control_plane_endpoint)
        return f"{host}:{port or self.control_plane_port}"

    @property
    def cri_endpoint(self) -> str:
        return f"unix://{self.cri_socket}"

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        data = asdict(self)
        data["node_type"] = self.node_type.value
        data["cni_provider"] = self.cni_provider.value
        if mask_secrets:
            for key in ("token", "join_command"):
                if data[key]:
                    data[key] = "********"
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProvisioningConfig":
        """딕셔너리에서 설정 생성 (알 수 없는 키는 무시)"""
        known = {f.name for f in fields(cls)}
        values = {
            key.replace("-", "_"): value
            for key, value in data.items()
            if key.replace("-", "_") in known and value is not None
        }
        if not values.get("node_type"):
            raise ValidationError("--node-type is required (control-plane or worker)")
        return cls(**values)


def split_endpoint(endpoint: str) -> Tuple[str, Optional[int]]:
    """엔드포인트를 (host, port) 로 분리"""
    value = endpoint.strip()
    for scheme in ("https://", "http://"):
        if value.startswith(scheme):
            value = value[len(scheme):]
    value = value.rstrip("/")

    port = None
    if value.startswith("["):
        host, _, rest = value[1:].partition("]")
        host = f"[{host}]"
        if rest.startswith(":"):
            port = rest[1:]
    elif value.count(":") == 1:
        host, port = value.split(":")
    elif value.count(":") > 1:
        host = f"[{value}]"
    else:
        host = value

    if not host or host == "[]":
        raise ValidationError(f"Invalid control-plane endpoint: {endpoint!r}")
    if port is None:
        return host, None
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise ValidationError(f"Invalid port in control-plane endpoint: {endpoint!r}")
    return host, int(port)


def _strip_v(version: Optional[str]) -> Optional[str]:
    if version is None:
        return None
    version = str(version).strip()
    return version[1:] if version.startswith("v") else version


def _parse_network(label: str, value: str):
    try:
        return ipaddress.ip_network(value)
    except ValueError as e:
        raise ValidationError(f"Invalid {label}: {e}") from None


DEFAULT_CONFIG_PATHS = [
    "/etc/k8s-installer/config.yaml",
    "~/.k8s-installer/config.yaml",
    "./config.yaml",
]


def load_settings(config_path: Optional[str] = None) -> Dict[str, Any]:
    """설정 파일 로드 (경로가 없으면 기본 경로 탐색)"""
    if config_path:
        path = os.path.expanduser(config_path)
        if not os.path.exists(path):
            raise ValidationError(f"Configuration file not found: {config_path}")
        return _read_file(path)

    for candidate in DEFAULT_CONFIG_PATHS:
        path = os.path.expanduser(candidate)
        if os.path.exists(path):
            return _read_file(path)
    return {}


def _read_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith(".json"):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ValidationError(f"Cannot read configuration file {path}: {e}") from None

    if not isinstance(data, dict):
        raise ValidationError(f"Configuration file {path} must contain a mapping")
    return data


def load_config(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> ProvisioningConfig:
    """설정 파일 값 위에 CLI 옵션을 덮어써서 ProvisioningConfig 생성"""
    data = load_settings(config_path)
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return ProvisioningConfig.from_dict(data)


def create_sample(output_path: str):
    """샘플 설정 파일 생성"""
    template = """# K8s Installer Configuration File
# 이 파일을 /etc/k8s-installer/config.yaml 로 복사하여 사용하세요
# CLI 옵션이 지정되면 이 파일의 값보다 우선합니다

# 노드 역할: control-plane 또는 worker
node_type: "control-plane"

# 버전
k8s_version: "1.32.0"
container_runtime_version: "2.0.4"  # containerd
runc_version: "1.2.6"
cri_socket: "/run/containerd/containerd.sock"

# CNI 설정 (control-plane 전용)
cni_provider: "cilium"  # cilium, calico, flannel
cni_version: ""  # 비워두면 프로바이더 기본 버전 사용
skip_cni: false

# 네트워크 설정
pod_network_cidr: "10.244.0.0/16"
service_cidr: "10.96.0.0/12"

# 컨트롤 플레인 설정
control_plane_endpoint: "cp.example.com"
control_plane_port: 6443
token: ""  # 비워두면 kubeadm 이 생성 (형식: abcdef.0123456789abcdef)
token_ttl: "24h0m0s"

# 워커 노드 설정 (join_command 또는 token 중 하나 필요)
join_command: ""  # 예: kubeadm join cp.example.com:6443 --token ... --discovery-token-ca-cert-hash sha256:...

# 재설치
force_reset: false

# 로깅
log_level: "INFO"  # DEBUG, INFO, WARN, ERROR
log_file: "/var/log/k8s-installer/k8s-installer.log"
"""

    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(template)
