"""
호스트 접근 모듈
명령 실행, 파일 읽기/쓰기, 다운로드 등 모든 호스트 부수 효과를 한 곳에서 처리
"""

import hashlib
import os
import platform
import pwd
import shutil
import socket
import subprocess
import tarfile
import time
import requests
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .logger import get_logger
from .network import NetworkChecker


@dataclass
class CommandResult:
    """명령 실행 결과"""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """오류 메시지용 출력 (stderr 우선)"""
        return (self.stderr or self.stdout).strip()


@dataclass(frozen=True)
class InvokingUser:
    """sudo 로 실행한 원래 사용자"""
    name: str
    home: str
    uid: int
    gid: int


class HostSystem:
    """실제 호스트에 대한 capability 구현"""

    def __init__(self, network: Optional[NetworkChecker] = None):
        self.logger = get_logger()
        self.network = network or NetworkChecker()

    # 명령 실행

    def run(self, cmd: List[str], env: Optional[Dict[str, str]] = None,
            input_text: Optional[str] = None, timeout: Optional[float] = None,
            output_file: Optional[str] = None, display: Optional[str] = None) -> CommandResult:
        """명령 실행 (output_file 이 있으면 stdout/stderr 를 파일로 기록)"""
        self.logger.debug(f"Running: {display or ' '.join(cmd)}")
        full_env = dict(os.environ)
        if env:
            full_env.update(env)

        try:
            if output_file:
                os.makedirs(os.path.dirname(output_file) or ".", exist_ok=True)
                with open(output_file, "w", encoding="utf-8") as out:
                    proc = subprocess.run(cmd, stdout=out, stderr=subprocess.STDOUT, text=True,
                                          input=input_text, env=full_env, timeout=timeout)
                with open(output_file, "r", encoding="utf-8", errors="replace") as f:
                    return CommandResult(cmd, proc.returncode, f.read())

            proc = subprocess.run(cmd, capture_output=True, text=True, input=input_text,
                                  env=full_env, timeout=timeout)
            return CommandResult(cmd, proc.returncode, proc.stdout, proc.stderr)
        except FileNotFoundError:
            return CommandResult(cmd, 127, stderr=f"{cmd[0]}: command not found")
        except subprocess.TimeoutExpired:
            return CommandResult(cmd, 124, stderr=f"{cmd[0]} timed out after {timeout}s")

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    # 파일 시스템

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def read_text(self, path: str) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def write_text(self, path: str, content: str, mode: Optional[int] = None):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        if mode is not None:
            os.chmod(path, mode)

    def makedirs(self, path: str, mode: int = 0o755):
        os.makedirs(path, mode=mode, exist_ok=True)

    def remove(self, path: str):
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        elif os.path.lexists(path):
            os.unlink(path)

    def copy_file(self, src: str, dst: str, mode: Optional[int] = None):
        directory = os.path.dirname(dst)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if os.path.lexists(dst) and not os.path.isdir(dst):
            os.unlink(dst)
        shutil.copyfile(src, dst)
        if mode is not None:
            os.chmod(dst, mode)

    def chown(self, path: str, uid: int, gid: int):
        os.chown(path, uid, gid)

    def sha256(self, path: str) -> str:
        digest = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                digest.update(chunk)
        return digest.hexdigest()

    def extract_tarball(self, archive: str, dest: str):
        """tar.gz 압축 해제

        실행 중인 바이너리는 덮어쓸 수 없으므로 (ETXTBSY) 기존 파일을 먼저 unlink 한다.
        """
        os.makedirs(dest, exist_ok=True)
        root = os.path.abspath(dest)
        with tarfile.open(archive, "r:gz") as tar:
            for member in tar.getmembers():
                if member.isdir():
                    continue
                target = os.path.abspath(os.path.join(root, member.name))
                if not target.startswith(root + os.sep):
                    continue
                if os.path.lexists(target) and not os.path.isdir(target):
                    os.unlink(target)
            if hasattr(tarfile, "tar_filter"):
                tar.extractall(dest, filter="tar")
            else:
                tar.extractall(dest)

    # 네트워크

    def download(self, url: str, dest: str, timeout: float = 120):
        """URL 을 파일로 다운로드 (requests / OSError 는 호출자가 처리)"""
        self.logger.debug(f"Downloading {url} -> {dest}")
        directory = os.path.dirname(dest)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    f.write(chunk)

    def fetch_text(self, url: str, timeout: float = 30) -> str:
        self.logger.debug(f"Fetching {url}")
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        return response.text

    def url_reachable(self, url: str) -> Tuple[bool, str]:
        return self.network.check_http(url)

    def port_in_use(self, port: int) -> bool:
        in_use, _ = self.network.check_port("127.0.0.1", port)
        return in_use

    # 시스템 정보

    def kernel_name(self) -> str:
        return platform.system()

    def machine(self) -> str:
        return platform.machine()

    def pid1_command(self) -> str:
        try:
            with open("/proc/1/comm", "r", encoding="utf-8") as f:
                return f.read().strip()
        except OSError:
            return ""

    def os_release(self) -> Dict[str, str]:
        """/etc/os-release 파싱"""
        try:
            content = self.read_text("/etc/os-release")
        except OSError:
            return {}
        return parse_os_release(content)

    def euid(self) -> int:
        return os.geteuid()

    def hostname(self) -> str:
        return socket.gethostname().split(".")[0].lower()

    def invoking_user(self) -> Optional[InvokingUser]:
        """sudo 로 실행된 경우 원래 사용자 정보"""
        name = os.environ.get("SUDO_USER")
        if not name or name == "root":
            return None
        try:
            entry = pwd.getpwnam(name)
        except KeyError:
            self.logger.warning(f"SUDO_USER {name} not found in passwd database")
            return None
        return InvokingUser(name, entry.pw_dir, entry.pw_uid, entry.pw_gid)

    # 시간

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float):
        time.sleep(seconds)


def parse_os_release(content: str) -> Dict[str, str]:
    values = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values
