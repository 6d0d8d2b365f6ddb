"""
런타임 설치 모듈
containerd, runc, kubeadm/kubelet/kubectl 설치 (버전 고정, idempotent)
"""

import os
import tarfile
import requests
from typing import List, Optional

from .errors import InstallationError
from .logger import get_logger
from .phases import PhaseResult

DOWNLOAD_DIR = "/tmp/k8s-installer"

CONTAINERD_URL = "https://github.com/containerd/containerd/releases/download/v{version}/containerd-{version}-linux-{arch}.tar.gz"
CONTAINERD_SERVICE_URL = "https://raw.githubusercontent.com/containerd/containerd/v{version}/containerd.service"
CONTAINERD_SERVICE = "/etc/systemd/system/containerd.service"
CONTAINERD_PREFIX = "/usr/local"

RUNC_URL = "https://github.com/opencontainers/runc/releases/download/v{version}/runc.{arch}"
RUNC_PATH = "/usr/local/sbin/runc"

K8S_REPO_URL = "https://pkgs.k8s.io/core:/stable:/v{minor}/deb/"
K8S_KEYRING_DIR = "/etc/apt/keyrings"
K8S_KEYRING = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
K8S_SOURCE_LIST = "/etc/apt/sources.list.d/kubernetes.list"

KUBE_PACKAGES = ["kubelet", "kubeadm", "kubectl"]
CONFLICTING_PACKAGES = ["docker", "docker.io", "containerd", "runc"]
PREREQUISITE_PACKAGES = ["apt-transport-https", "ca-certificates", "curl", "gpg"]

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class RuntimeInstaller:
    """컨테이너 런타임 및 Kubernetes 도구 설치 클래스"""

    def __init__(self, config, profile, host):
        self.config = config
        self.profile = profile
        self.host = host
        self.logger = get_logger()

    def install_prerequisites(self) -> PhaseResult:
        """apt 기본 패키지 설치"""
        missing = [pkg for pkg in PREREQUISITE_PACKAGES if not self._package_installed(pkg)]
        if not missing:
            self.logger.info("Prerequisite packages are already installed")
            return PhaseResult.skipped("prerequisite packages", "already installed")

        self.logger.info(f"Installing prerequisite packages: {', '.join(missing)}")
        self._apt(["apt-get", "update"], "apt-get update failed")
        self._apt(["apt-get", "install", "-y"] + missing, "Failed to install prerequisite packages")
        self.logger.success("Prerequisite packages installed")
        return PhaseResult.succeeded("prerequisite packages", f"installed {', '.join(missing)}")

    def _package_installed(self, package: str) -> bool:
        result = self.host.run(["dpkg-query", "-W", "-f=${Status}", package])
        return result.ok and "install ok installed" in result.stdout

    # containerd

    def installed_containerd_version(self) -> Optional[str]:
        if not self.host.which("containerd"):
            return None
        result = self.host.run(["containerd", "--version"])
        if not result.ok:
            return None
        # 예: containerd github.com/containerd/containerd/v2 v2.0.4 1a43cb6a...
        parts = result.stdout.split()
        if len(parts) < 3:
            return None
        return parts[2].rstrip(",").lstrip("v")

    def install_containerd(self) -> PhaseResult:
        """containerd 설치 (idempotent)"""
        version = self.config.container_runtime_version
        current = self.installed_containerd_version()
        if current == version:
            self.logger.warning(f"containerd {version} is already installed")
            return PhaseResult.skipped("containerd", f"containerd {version} already installed")
        if current:
            self.logger.info(f"Replacing containerd {current} with {version}")
            result = self.host.run(["systemctl", "stop", "containerd"])
            if not result.ok:
                self.logger.warning(f"Failed to stop containerd: {result.output}")

        self.logger.info(f"Installing containerd {version}")
        result = self.host.run(["apt-get", "remove", "-y"] + CONFLICTING_PACKAGES, env=APT_ENV)
        if not result.ok:
            self.logger.debug(f"No conflicting packages removed: {result.output}")

        url = CONTAINERD_URL.format(version=version, arch=self.profile.arch)
        archive = os.path.join(DOWNLOAD_DIR, os.path.basename(url))
        try:
            self.host.download(url, archive)
            self.host.extract_tarball(archive, CONTAINERD_PREFIX)
            self.host.remove(archive)
            self.host.download(CONTAINERD_SERVICE_URL.format(version=version), CONTAINERD_SERVICE)
        except (requests.RequestException, OSError, tarfile.TarError) as e:
            raise InstallationError(f"Failed to install containerd {version}: {e}") from e

        self._systemctl(["daemon-reload"], "Failed to reload systemd daemon")
        self._systemctl(["enable", "--now", "containerd"], "Failed to start containerd")
        self.logger.success(f"containerd {version} installed")
        return PhaseResult.succeeded("containerd", f"containerd {version} installed",
                                     [CONTAINERD_PREFIX + "/bin/containerd", CONTAINERD_SERVICE])

    # runc

    def installed_runc_version(self) -> Optional[str]:
        if not self.host.which("runc"):
            return None
        result = self.host.run(["runc", "--version"])
        if not result.ok or not result.stdout:
            return None
        # 예: runc version 1.2.6
        first = result.stdout.splitlines()[0].split()
        return first[-1].lstrip("v") if first else None

    def install_runc(self) -> PhaseResult:
        """runc 설치 (idempotent)"""
        version = self.config.runc_version
        if self.installed_runc_version() == version:
            self.logger.info(f"runc {version} is already installed")
            return PhaseResult.skipped("runc", f"runc {version} already installed")

        self.logger.info(f"Installing runc {version}")
        url = RUNC_URL.format(version=version, arch=self.profile.arch)
        binary = os.path.join(DOWNLOAD_DIR, os.path.basename(url))
        try:
            self.host.download(url, binary)
            self.host.copy_file(binary, RUNC_PATH, mode=0o755)
            self.host.remove(binary)
        except (requests.RequestException, OSError) as e:
            raise InstallationError(f"Failed to install runc {version}: {e}") from e

        self.logger.success(f"runc {version} installed")
        return PhaseResult.succeeded("runc", f"runc {version} installed", [RUNC_PATH])

    # kubeadm / kubelet / kubectl

    def kubernetes_tools_satisfied(self) -> bool:
        if not all(self.host.which(tool) for tool in KUBE_PACKAGES):
            return False
        result = self.host.run(["kubeadm", "version", "-o", "short"])
        return result.ok and result.stdout.strip() == f"v{self.config.k8s_version}"

    def install_kubernetes_tools(self) -> PhaseResult:
        """kubeadm, kubelet, kubectl 설치 및 버전 고정"""
        version = self.config.k8s_version
        if self.kubernetes_tools_satisfied():
            self.logger.info(f"kubeadm, kubelet and kubectl {version} are already installed")
            return PhaseResult.skipped("kubernetes tools", f"v{version} already installed")

        self.logger.info(f"Installing kubeadm, kubelet, and kubectl version {version}")
        minor = ".".join(version.split(".")[:2])
        repo_url = K8S_REPO_URL.format(minor=minor)

        try:
            key = self.host.fetch_text(repo_url + "Release.key")
            self.host.makedirs(K8S_KEYRING_DIR)
        except (requests.RequestException, OSError) as e:
            raise InstallationError(f"Failed to fetch Kubernetes repository key: {e}") from e

        result = self.host.run(["gpg", "--dearmor", "--yes", "-o", K8S_KEYRING], input_text=key)
        if not result.ok:
            raise InstallationError(f"Failed to install Kubernetes repository key: {result.output}")

        try:
            self.host.write_text(K8S_SOURCE_LIST, f"deb [signed-by={K8S_KEYRING}] {repo_url} /\n")
        except OSError as e:
            raise InstallationError(f"Failed to write {K8S_SOURCE_LIST}: {e}") from e

        self._apt(["apt-get", "update"], "apt-get update failed")
        self.host.run(["apt-mark", "unhold"] + KUBE_PACKAGES)

        revision = self.resolve_package_revision("kubeadm", version)
        packages = [f"{pkg}={revision}" for pkg in KUBE_PACKAGES]
        self._apt(
            ["apt-get", "install", "-y", "--allow-downgrades", "--allow-change-held-packages"] + packages,
            "Failed to install Kubernetes tools",
        )

        result = self.host.run(["apt-mark", "hold"] + KUBE_PACKAGES)
        if not result.ok:
            self.logger.warning(f"Failed to hold Kubernetes packages: {result.output}")

        result = self.host.run(["systemctl", "enable", "--now", "kubelet"])
        if not result.ok:
            self.logger.warning(f"Failed to enable kubelet: {result.output}")

        self.logger.success("Kubernetes tools installed")
        return PhaseResult.succeeded("kubernetes tools", f"v{version} installed and held", [K8S_SOURCE_LIST])

    def resolve_package_revision(self, package: str, version: str) -> str:
        """apt-cache madison 출력에서 버전에 맞는 패키지 리비전 찾기 (예: 1.32.0-1.1)"""
        result = self.host.run(["apt-cache", "madison", package])
        if result.ok:
            for line in result.stdout.splitlines():
                columns = [col.strip() for col in line.split("|")]
                if len(columns) >= 2 and columns[1].startswith(f"{version}-"):
                    return columns[1]
        raise InstallationError(f"Kubernetes {version} is not available in the package repository")

    def verify_tools(self) -> PhaseResult:
        """필수 구성요소 확인"""
        missing = [tool for tool in ["containerd", "runc"] + KUBE_PACKAGES if not self.host.which(tool)]
        if missing:
            raise InstallationError(f"Missing components after installation: {', '.join(missing)}")
        self.logger.info("All required components are installed")
        return PhaseResult.succeeded("component check", "containerd, runc, kubeadm, kubelet, kubectl")

    def _apt(self, cmd: List[str], message: str):
        result = self.host.run(cmd, env=APT_ENV)
        if not result.ok:
            raise InstallationError(f"{message}: {result.output}")

    def _systemctl(self, args: List[str], message: str):
        result = self.host.run(["systemctl"] + args)
        if not result.ok:
            raise InstallationError(f"{message}: {result.output}")
