"""
네트워크 체크 모듈
포트, HTTP 연결성 확인
"""

import socket
import requests
from typing import Tuple
from .logger import get_logger


class NetworkChecker:
    """네트워크 연결성 확인 클래스"""

    def __init__(self):
        self.logger = get_logger()

    def check_port(self, host: str, port: int, timeout: float = 1) -> Tuple[bool, str]:
        """포트 연결 테스트 (연결되면 True)"""
        self.logger.debug(f"Checking port {host}:{port}...")
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.settimeout(timeout)
                result = sock.connect_ex((host, port))
        except socket.gaierror:
            return False, f"Cannot resolve {host}"
        except (OSError, OverflowError) as e:
            return False, f"Port check error for {host}:{port}: {e}"

        if result == 0:
            return True, f"{host}:{port} is open"
        return False, f"{host}:{port} is closed"

    def check_http(self, url: str, timeout: float = 10) -> Tuple[bool, str]:
        """HTTP/HTTPS 연결 테스트"""
        self.logger.debug(f"Checking HTTP connection to {url}...")
        try:
            response = requests.head(url, timeout=timeout, allow_redirects=True)
        except requests.exceptions.SSLError:
            return False, f"SSL certificate error for {url}"
        except requests.exceptions.Timeout:
            return False, f"Connection to {url} timed out"
        except requests.exceptions.RequestException as e:
            return False, f"Connection to {url} failed: {e}"

        if response.status_code < 500:
            return True, f"{url} reachable (status: {response.status_code})"
        return False, f"{url} returned HTTP {response.status_code}"
