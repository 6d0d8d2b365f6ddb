"""
테스트 공용 fixture
실제 호스트 대신 메모리 상의 FakeHost 를 사용
"""

import hashlib
import logging
import pytest
import requests

from k8s_installer.config import ProvisioningConfig
from k8s_installer.detection import CgroupDriver, CgroupVersion, HostProfile, InitSystem
from k8s_installer.host import CommandResult
from k8s_installer.logger import init_logger

CONTAINERD_DEFAULT_TOML = """version = 3

[plugins]
  [plugins.'io.containerd.cri.v1.runtime']
    [plugins.'io.containerd.cri.v1.runtime'.containerd]
      default_runtime_name = 'runc'

      [plugins.'io.containerd.cri.v1.runtime'.containerd.runtimes]
        [plugins.'io.containerd.cri.v1.runtime'.containerd.runtimes.runc]
          runtime_type = 'io.containerd.runc.v2'

          [plugins.'io.containerd.cri.v1.runtime'.containerd.runtimes.runc.options]
            BinaryName = ''
            SystemdCgroup = false
"""

JOIN_OUTPUT = (
    "kubeadm join cp.example.com:6443 --token abcdef.0123456789abcdef "
    "--discovery-token-ca-cert-hash sha256:1234\n"
)


class FakeHost:
    """메모리 파일 시스템과 스크립트된 명령 응답을 가진 HostSystem 대체"""

    def __init__(self):
        self.files = {}
        self.modes = {}
        self.owners = {}
        self.dirs = set()
        self.unwritable = set()
        self.binaries = {"apt-get", "apt-mark", "apt-cache"}
        self.commands = []
        self.responses = []
        self.urls = {}
        self.unreachable = set()
        self.busy_ports = set()
        self.extracted = []

        self.kernel = "Linux"
        self.arch = "x86_64"
        self.init = "systemd"
        self.release = {"ID": "ubuntu", "VERSION_ID": "22.04"}
        self.uid = 0
        self.user = None
        self.node_name = "node-1"
        self.clock = 0.0

    # 명령 응답 스크립트

    def respond(self, prefix, returncode=0, stdout="", stderr="", effect=None):
        """prefix 로 시작하는 명령의 응답 등록 (나중에 등록한 것이 우선)"""
        self.responses.insert(0, (list(prefix), returncode, stdout, stderr, effect))

    def ran(self, *prefix) -> bool:
        return bool(self.calls(*prefix))

    def calls(self, *prefix):
        return [cmd for cmd in self.commands if cmd[:len(prefix)] == list(prefix)]

    def run(self, cmd, env=None, input_text=None, timeout=None, output_file=None, display=None):
        cmd = list(cmd)
        self.commands.append(cmd)
        result = CommandResult(cmd, 0)
        for prefix, returncode, stdout, stderr, effect in self.responses:
            if cmd[:len(prefix)] == prefix:
                result = CommandResult(cmd, returncode, stdout, stderr)
                if effect:
                    returned = effect(cmd)
                    if isinstance(returned, CommandResult):
                        result = returned
                break
        if output_file:
            self.write_text(output_file, result.stdout + result.stderr)
            result = CommandResult(cmd, result.returncode, result.stdout + result.stderr)
        return result

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.binaries else None

    # 파일 시스템

    def _check_writable(self, path):
        for prefix in self.unwritable:
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                raise PermissionError(13, "Permission denied", path)

    def exists(self, path):
        prefix = path.rstrip("/") + "/"
        return (path in self.files or path in self.dirs
                or any(name.startswith(prefix) for name in self.files))

    def read_text(self, path):
        if path not in self.files:
            raise FileNotFoundError(2, "No such file or directory", path)
        return self.files[path]

    def write_text(self, path, content, mode=None):
        self._check_writable(path)
        self.files[path] = content
        if mode is not None:
            self.modes[path] = mode

    def makedirs(self, path, mode=0o755):
        self._check_writable(path)
        self.dirs.add(path)

    def remove(self, path):
        prefix = path.rstrip("/") + "/"
        for name in [n for n in self.files if n == path or n.startswith(prefix)]:
            del self.files[name]
        self.dirs.discard(path)

    def copy_file(self, src, dst, mode=None):
        self.write_text(dst, self.read_text(src), mode)

    def chown(self, path, uid, gid):
        self.owners[path] = (uid, gid)

    def sha256(self, path):
        return hashlib.sha256(self.read_text(path).encode()).hexdigest()

    def extract_tarball(self, archive, dest):
        self.read_text(archive)
        self._check_writable(dest)
        self.extracted.append((archive, dest))

    # 네트워크

    def download(self, url, dest, timeout=120):
        if url in self.unreachable:
            raise requests.ConnectionError(f"Failed to connect to {url}")
        self.write_text(dest, self.urls.get(url, f"content of {url}"))

    def fetch_text(self, url, timeout=30):
        if url in self.unreachable:
            raise requests.ConnectionError(f"Failed to connect to {url}")
        return self.urls.get(url, "")

    def url_reachable(self, url):
        if url in self.unreachable:
            return False, f"Connection to {url} failed"
        return True, f"{url} reachable (status: 200)"

    def port_in_use(self, port):
        return port in self.busy_ports

    # 시스템 정보

    def kernel_name(self):
        return self.kernel

    def machine(self):
        return self.arch

    def pid1_command(self):
        return self.init

    def os_release(self):
        return dict(self.release)

    def euid(self):
        return self.uid

    def hostname(self):
        return self.node_name

    def invoking_user(self):
        return self.user

    def monotonic(self):
        return self.clock

    def sleep(self, seconds):
        self.clock += seconds


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)

    def messages(self, levelname=None):
        return [r.getMessage() for r in self.records if levelname is None or r.levelname == levelname]


@pytest.fixture(autouse=True)
def console_logger():
    """테스트마다 파일 없이 콘솔 전용 로거 사용"""
    logger = init_logger(None, "DEBUG")
    yield logger
    logger.close()


@pytest.fixture
def log_records(console_logger):
    handler = RecordingHandler()
    console_logger.logger.addHandler(handler)
    yield handler
    console_logger.logger.removeHandler(handler)


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def provisionable_host(host):
    """전체 파이프라인이 끝까지 진행되도록 응답이 준비된 호스트"""
    from k8s_installer.cluster import ADMIN_CONF

    host.binaries.update({"containerd", "runc", "kubeadm", "kubelet", "kubectl", "cilium"})
    host.files["/proc/swaps"] = "Filename\tType\tSize\tUsed\tPriority\n"
    host.respond(["dpkg-query"], stdout="install ok installed")
    host.respond(["containerd", "config", "default"], stdout=CONTAINERD_DEFAULT_TOML)
    host.respond(
        ["apt-cache", "madison", "kubeadm"],
        stdout=" kubeadm | 1.32.0-1.1 | https://pkgs.k8s.io/core:/stable:/v1.32/deb  Packages\n",
    )
    host.respond(
        ["kubeadm", "init"],
        effect=lambda cmd: host.files.__setitem__(ADMIN_CONF, "apiVersion: v1\nkind: Config\n"),
    )
    host.respond(["kubeadm", "token", "create"], stdout=JOIN_OUTPUT)
    host.respond(["kubectl", "get", "nodes"], stdout="node-1   Ready   control-plane   1m   v1.32.0\n")
    return host


@pytest.fixture
def profile():
    return HostProfile(
        kernel="Linux",
        distro_id="ubuntu",
        distro_version="22.04",
        arch="amd64",
        init_system=InitSystem.SYSTEMD,
        cgroup_version=CgroupVersion.V2,
        cgroup_driver=CgroupDriver.SYSTEMD,
    )


@pytest.fixture
def cp_config():
    return ProvisioningConfig(node_type="control-plane", control_plane_endpoint="cp.example.com")


@pytest.fixture
def worker_config():
    return ProvisioningConfig(
        node_type="worker",
        token="abcde.0123456789abcdef",
        control_plane_endpoint="cp.example.com:6443",
    )
