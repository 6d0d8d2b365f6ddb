"""
설정 파일 생성 모듈
containerd, crictl, kubelet, kubeadm 설정을 ProvisioningConfig + HostProfile 로부터 생성
"""

import re
import yaml
from typing import List
from jinja2 import Template

from .errors import ConfigWriteError, InstallationError
from .logger import get_logger
from .phases import PhaseResult

CONTAINERD_CONFIG = "/etc/containerd/config.toml"
CRICTL_CONFIG = "/etc/crictl.yaml"
KUBELET_DROPIN = "/etc/systemd/system/kubelet.service.d/10-kubeadm.conf"
KUBELET_DEFAULTS = "/etc/default/kubelet"
KUBEADM_CONFIG = "/etc/kubernetes/kubeadm-config.yaml"

CRICTL_TEMPLATE = Template("""runtime-endpoint: {{ cri_endpoint }}
image-endpoint: {{ cri_endpoint }}
timeout: 10
debug: false
""", keep_trailing_newline=True)

KUBELET_DROPIN_TEMPLATE = Template("""# Note: This dropin only works with kubeadm and kubelet v1.11+
[Service]
Environment="KUBELET_KUBECONFIG_ARGS=--bootstrap-kubeconfig=/etc/kubernetes/bootstrap-kubelet.conf --kubeconfig=/etc/kubernetes/kubelet.conf"
Environment="KUBELET_CONFIG_ARGS=--config=/var/lib/kubelet/config.yaml"
Environment="KUBELET_EXTRA_ARGS=--container-runtime-endpoint={{ cri_endpoint }} --cgroup-driver={{ cgroup_driver }}"
# This is a file that "kubeadm init" and "kubeadm join" generates at runtime, populating the KUBELET_KUBEADM_ARGS variable dynamically
EnvironmentFile=-/var/lib/kubelet/kubeadm-flags.env
ExecStart=
ExecStart=/usr/bin/kubelet $KUBELET_KUBECONFIG_ARGS $KUBELET_CONFIG_ARGS $KUBELET_KUBEADM_ARGS $KUBELET_EXTRA_ARGS
""", keep_trailing_newline=True)

KUBELET_DEFAULTS_TEMPLATE = Template(
    'KUBELET_EXTRA_ARGS="--container-runtime-endpoint={{ cri_endpoint }} --cgroup-driver={{ cgroup_driver }}"\n',
    keep_trailing_newline=True,
)

KUBEADM_TEMPLATE = Template("""apiVersion: kubeadm.k8s.io/{{ api_version }}
kind: InitConfiguration
bootstrapTokens:
- groups:
  - system:bootstrappers:kubeadm:default-node-token
{%- if token %}
  token: "{{ token }}"
{%- endif %}
  ttl: "{{ token_ttl }}"
  usages:
  - signing
  - authentication
nodeRegistration:
  criSocket: "{{ cri_endpoint }}"
  name: "{{ node_name }}"
---
apiVersion: kubeadm.k8s.io/{{ api_version }}
kind: ClusterConfiguration
kubernetesVersion: "v{{ k8s_version }}"
controlPlaneEndpoint: "{{ control_plane_address }}"
networking:
  podSubnet: "{{ pod_network_cidr }}"
  serviceSubnet: "{{ service_cidr }}"
  dnsDomain: "cluster.local"
---
apiVersion: kubelet.config.k8s.io/v1beta1
kind: KubeletConfiguration
cgroupDriver: "{{ cgroup_driver }}"
""", keep_trailing_newline=True)

SYSTEMD_CGROUP_RE = re.compile(r"^([ \t]*)SystemdCgroup\s*=\s*(true|false)[ \t]*$", re.MULTILINE)
RUNC_OPTIONS_RE = re.compile(r"^([ \t]*)\[plugins\.[^\n]*containerd\.runtimes\.runc\.options\][ \t]*$", re.MULTILINE)


def kubeadm_api_version(k8s_version: str) -> str:
    """kubeadm 1.31 부터 v1beta4"""
    major, minor = (int(part) for part in k8s_version.split(".")[:2])
    return "v1beta4" if (major, minor) >= (1, 31) else "v1beta3"


def render_crictl_config(config) -> str:
    return CRICTL_TEMPLATE.render(cri_endpoint=config.cri_endpoint)


def render_kubelet_dropin(config, profile) -> str:
    return KUBELET_DROPIN_TEMPLATE.render(
        cri_endpoint=config.cri_endpoint,
        cgroup_driver=profile.cgroup_driver.value,
    )


def render_kubelet_defaults(config, profile) -> str:
    return KUBELET_DEFAULTS_TEMPLATE.render(
        cri_endpoint=config.cri_endpoint,
        cgroup_driver=profile.cgroup_driver.value,
    )


def render_kubeadm_config(config, profile, node_name: str) -> str:
    return KUBEADM_TEMPLATE.render(
        api_version=kubeadm_api_version(config.k8s_version),
        token=config.token,
        token_ttl=config.token_ttl,
        cri_endpoint=config.cri_endpoint,
        node_name=node_name,
        k8s_version=config.k8s_version,
        control_plane_address=config.control_plane_address,
        pod_network_cidr=config.pod_network_cidr,
        service_cidr=config.service_cidr,
        cgroup_driver=profile.cgroup_driver.value,
    )


def inject_systemd_cgroup(toml: str, enabled: bool) -> str:
    """containerd 기본 설정의 SystemdCgroup 값을 cgroup 드라이버에 맞춤"""
    value = "true" if enabled else "false"
    if SYSTEMD_CGROUP_RE.search(toml):
        return SYSTEMD_CGROUP_RE.sub(lambda m: f"{m.group(1)}SystemdCgroup = {value}", toml)

    match = RUNC_OPTIONS_RE.search(toml)
    if not match:
        raise ConfigWriteError("runc options section not found in containerd default config")
    line = f"{match.group(1)}  SystemdCgroup = {value}"
    return toml[:match.end()] + "\n" + line + toml[match.end():]


class ConfigGenerator:
    """설정 파일 생성 클래스"""

    def __init__(self, config, profile, host):
        self.config = config
        self.profile = profile
        self.host = host
        self.logger = get_logger()

    def generate_all(self) -> List[PhaseResult]:
        results = [
            self.configure_containerd(),
            self.configure_crictl(),
            self.configure_kubelet(),
        ]
        if self.config.is_control_plane:
            results.append(self.create_kubeadm_config())
        return results

    def configure_containerd(self) -> PhaseResult:
        """containerd 설정 생성 및 재시작"""
        self.logger.info("Configuring containerd")
        result = self.host.run(["containerd", "config", "default"])
        if not result.ok:
            raise ConfigWriteError(f"Failed to generate containerd config: {result.output}")

        content = inject_systemd_cgroup(result.stdout, self.profile.systemd_cgroup)
        self._write_artifact(CONTAINERD_CONFIG, content)

        result = self.host.run(["systemctl", "restart", "containerd"])
        if not result.ok:
            raise InstallationError(f"Failed to restart containerd: {result.output}")
        if not self.host.run(["systemctl", "is-active", "--quiet", "containerd"]).ok:
            raise InstallationError("containerd service is not running")

        self.logger.success("containerd configured successfully")
        return PhaseResult.succeeded("containerd config", "written", [CONTAINERD_CONFIG])

    def configure_crictl(self) -> PhaseResult:
        """crictl 이 containerd 소켓을 사용하도록 설정"""
        self._write_artifact(CRICTL_CONFIG, render_crictl_config(self.config))
        self.logger.info(f"crictl configured for {self.config.cri_endpoint}")
        return PhaseResult.succeeded("crictl config", "written", [CRICTL_CONFIG])

    def configure_kubelet(self) -> PhaseResult:
        """kubelet systemd drop-in 및 기본값 파일 생성"""
        driver = self.profile.cgroup_driver.value
        self.logger.info(f"Configuring kubelet to use {driver} cgroup driver")
        self._write_artifact(KUBELET_DROPIN, render_kubelet_dropin(self.config, self.profile))
        self._write_artifact(KUBELET_DEFAULTS, render_kubelet_defaults(self.config, self.profile))

        result = self.host.run(["systemctl", "daemon-reload"])
        if not result.ok:
            raise ConfigWriteError(f"Failed to reload systemd daemon: {result.output}")

        # init/join 전에는 실패하는 것이 정상
        result = self.host.run(["systemctl", "restart", "kubelet"])
        if not result.ok:
            self.logger.debug("Kubelet restart failed, this is normal before kubeadm init/join")

        self.logger.success("Kubelet configured successfully")
        return PhaseResult.succeeded("kubelet config", "written", [KUBELET_DROPIN, KUBELET_DEFAULTS])

    def create_kubeadm_config(self) -> PhaseResult:
        """kubeadm Init/Cluster/Kubelet 설정 문서 생성 (control-plane 전용)"""
        self.logger.info("Creating kubeadm configuration")
        content = render_kubeadm_config(self.config, self.profile, self.host.hostname())
        written = self._write_artifact(KUBEADM_CONFIG, content, mode=0o600)

        try:
            kinds = [doc.get("kind") for doc in yaml.safe_load_all(written) if doc]
        except yaml.YAMLError as e:
            raise ConfigWriteError(f"Generated {KUBEADM_CONFIG} is not valid YAML: {e}") from e
        if kinds != ["InitConfiguration", "ClusterConfiguration", "KubeletConfiguration"]:
            raise ConfigWriteError(f"Unexpected documents in {KUBEADM_CONFIG}: {kinds}")

        self.logger.success("kubeadm configuration created successfully")
        return PhaseResult.succeeded("kubeadm config", "written", [KUBEADM_CONFIG])

    def _write_artifact(self, path: str, content: str, mode: int = 0o644) -> str:
        """파일 쓰기 후 다시 읽어서 내용 확인"""
        try:
            self.host.write_text(path, content, mode=mode)
            written = self.host.read_text(path)
        except OSError as e:
            raise ConfigWriteError(f"Failed to write {path}: {e}") from e
        if written != content:
            raise ConfigWriteError(f"Content check failed for {path}")
        self.logger.debug(f"Wrote {path}")
        return written
