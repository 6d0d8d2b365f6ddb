"""
CNI 플러그인 설치 모듈
cilium(CLI 기반), calico / flannel(매니페스트 기반)
"""

import os
import re
import tarfile
import requests
from dataclasses import dataclass
from typing import List

from .cluster import KUBECTL_ENV
from .config import CNIProvider
from .errors import InstallationError
from .installer import DOWNLOAD_DIR
from .logger import get_logger
from .phases import PhaseResult

CILIUM_CLI_STABLE_URL = "https://raw.githubusercontent.com/cilium/cilium-cli/main/stable.txt"
CILIUM_CLI_URL = "https://github.com/cilium/cilium-cli/releases/download/{version}/cilium-linux-{arch}.tar.gz"
CILIUM_CLI_DIR = "/usr/local/bin"

MANIFEST_URLS = {
    CNIProvider.CALICO: "https://raw.githubusercontent.com/projectcalico/calico/v{version}/manifests/calico.yaml",
    CNIProvider.FLANNEL: "https://github.com/flannel-io/flannel/releases/download/v{version}/kube-flannel.yml",
}
MANIFEST_DIR = "/etc/kubernetes/cni"

READINESS_TIMEOUT = 300

CALICO_COMMENTED_CIDR_RE = re.compile(
    r'^([ \t]*)#[ \t]*- name: CALICO_IPV4POOL_CIDR[ \t]*\n[ \t]*#[ \t]*value: "[^"]*"', re.MULTILINE
)
CALICO_CIDR_RE = re.compile(r'(- name: CALICO_IPV4POOL_CIDR[ \t]*\n[ \t]*value: ")[^"]*(")')
FLANNEL_CIDR_RE = re.compile(r'("Network":[ \t]*")[^"]*(")')


@dataclass(frozen=True)
class CNIDeployment:
    namespace: str
    daemonset: str


DEPLOYMENTS = {
    CNIProvider.CILIUM: CNIDeployment("kube-system", "cilium"),
    CNIProvider.CALICO: CNIDeployment("kube-system", "calico-node"),
    CNIProvider.FLANNEL: CNIDeployment("kube-flannel", "kube-flannel-ds"),
}


def rewrite_calico_cidr(manifest: str, cidr: str) -> str:
    """CALICO_IPV4POOL_CIDR 주석 해제 후 CIDR 설정"""
    if CALICO_COMMENTED_CIDR_RE.search(manifest):
        return CALICO_COMMENTED_CIDR_RE.sub(
            lambda m: f'{m.group(1)}- name: CALICO_IPV4POOL_CIDR\n{m.group(1)}  value: "{cidr}"',
            manifest,
        )
    updated, count = CALICO_CIDR_RE.subn(lambda m: f"{m.group(1)}{cidr}{m.group(2)}", manifest)
    if not count:
        raise InstallationError("CALICO_IPV4POOL_CIDR not found in calico manifest")
    return updated


def rewrite_flannel_cidr(manifest: str, cidr: str) -> str:
    """net-conf.json 의 Network 값 변경"""
    updated, count = FLANNEL_CIDR_RE.subn(lambda m: f"{m.group(1)}{cidr}{m.group(2)}", manifest)
    if not count:
        raise InstallationError('"Network" not found in flannel manifest')
    return updated


class CNIInstaller:
    """CNI 플러그인 설치 클래스"""

    def __init__(self, config, profile, host):
        self.config = config
        self.profile = profile
        self.host = host
        self.logger = get_logger()
        self.provider = config.cni_provider
        self.deployment = DEPLOYMENTS[self.provider]
        self.installers = {
            CNIProvider.CILIUM: self._install_cilium,
            CNIProvider.CALICO: self._install_calico,
            CNIProvider.FLANNEL: self._install_flannel,
        }

    def install(self) -> PhaseResult:
        """CNI 설치 (idempotent)"""
        name = f"cni ({self.provider.value})"
        if self.config.skip_cni:
            self.logger.info("Skipping CNI installation (--skip-cni)")
            return PhaseResult.skipped(name, "skipped by request")
        if self.is_installed():
            self.logger.info(f"{self.provider.value} is already installed")
            return PhaseResult.skipped(name, "already installed")

        version = self.config.cni_version
        self.logger.info(f"Installing {self.provider.value} CNI plugin {version}")
        artifacts = self.installers[self.provider]()
        self.logger.success(f"{self.provider.value} CNI plugin {version} installed")

        self.wait_ready()
        return PhaseResult.succeeded(name, f"{self.provider.value} {version} installed", artifacts)

    def is_installed(self) -> bool:
        result = self.host.run(
            ["kubectl", "get", "daemonset", self.deployment.daemonset, "-n", self.deployment.namespace],
            env=KUBECTL_ENV,
        )
        return result.ok

    def wait_ready(self) -> bool:
        """DaemonSet 롤아웃 대기 (타임아웃은 경고만)"""
        self.logger.info(f"Waiting up to {READINESS_TIMEOUT}s for {self.provider.value} to become ready")
        result = self.host.run(
            ["kubectl", "rollout", "status", f"daemonset/{self.deployment.daemonset}",
             "-n", self.deployment.namespace, f"--timeout={READINESS_TIMEOUT}s"],
            env=KUBECTL_ENV,
            timeout=READINESS_TIMEOUT + 30,
        )
        if not result.ok:
            self.logger.warning(f"{self.provider.value} is not ready yet, continuing: {result.output}")
            return False
        self.logger.info(f"{self.provider.value} is ready")
        return True

    # cilium

    def ensure_cilium_cli(self) -> List[str]:
        """cilium CLI 설치 (체크섬 검증 후 압축 해제)"""
        if self.host.which("cilium"):
            self.logger.info("cilium CLI is already installed")
            return []

        try:
            cli_version = self.host.fetch_text(CILIUM_CLI_STABLE_URL).strip()
            url = CILIUM_CLI_URL.format(version=cli_version, arch=self.profile.arch)
            archive = os.path.join(DOWNLOAD_DIR, os.path.basename(url))
            checksum_file = archive + ".sha256sum"
            self.host.download(url, archive)
            self.host.download(url + ".sha256sum", checksum_file)

            expected = self.host.read_text(checksum_file).split()[0].lower()
            actual = self.host.sha256(archive)
            if actual != expected:
                raise InstallationError(
                    f"Checksum mismatch for {os.path.basename(archive)}: expected {expected}, got {actual}"
                )

            self.host.extract_tarball(archive, CILIUM_CLI_DIR)
            self.host.remove(archive)
            self.host.remove(checksum_file)
        except (requests.RequestException, OSError, tarfile.TarError, IndexError) as e:
            raise InstallationError(f"Failed to install cilium CLI: {e}") from e

        self.logger.info(f"cilium CLI {cli_version} installed")
        return [os.path.join(CILIUM_CLI_DIR, "cilium")]

    def _install_cilium(self) -> List[str]:
        artifacts = self.ensure_cilium_cli()
        cmd = ["cilium", "install", "--version", self.config.cni_version]
        if self.config.pod_network_cidr != self.provider.default_pod_cidr:
            cmd += ["--set", f"ipam.operator.clusterPoolIPv4PodCIDRList={self.config.pod_network_cidr}"]

        result = self.host.run(cmd, env=KUBECTL_ENV)
        if not result.ok:
            raise InstallationError(f"cilium install failed: {result.output}")
        return artifacts

    # calico / flannel

    def _install_calico(self) -> List[str]:
        return self._apply_manifest(rewrite_calico_cidr)

    def _install_flannel(self) -> List[str]:
        return self._apply_manifest(rewrite_flannel_cidr)

    def _apply_manifest(self, rewrite) -> List[str]:
        url = MANIFEST_URLS[self.provider].format(version=self.config.cni_version)
        path = os.path.join(MANIFEST_DIR, f"{self.provider.value}.yaml")
        try:
            manifest = self.host.fetch_text(url)
        except requests.RequestException as e:
            raise InstallationError(f"Failed to download {self.provider.value} manifest: {e}") from e

        if self.config.pod_network_cidr != self.provider.default_pod_cidr:
            self.logger.info(f"Setting {self.provider.value} pod CIDR to {self.config.pod_network_cidr}")
            manifest = rewrite(manifest, self.config.pod_network_cidr)

        try:
            self.host.write_text(path, manifest)
        except OSError as e:
            raise InstallationError(f"Failed to save {path}: {e}") from e

        result = self.host.run(["kubectl", "apply", "-f", path], env=KUBECTL_ENV)
        if not result.ok:
            raise InstallationError(f"kubectl apply of {self.provider.value} manifest failed: {result.output}")
        return [path]
