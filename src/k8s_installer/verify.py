"""
준비 상태 확인 모듈
admin kubeconfig 로 API 서버를 폴링하고 최종 노드 목록 출력
"""

from rich.console import Console

from .cluster import KUBECTL_ENV
from .errors import ReadinessTimeout
from .logger import get_logger
from .phases import PhaseResult

console = Console()

READINESS_TIMEOUT = 60
POLL_INTERVAL = 1


class ReadinessVerifier:
    """control-plane API 준비 상태 확인 클래스"""

    def __init__(self, host, timeout: float = READINESS_TIMEOUT, interval: float = POLL_INTERVAL):
        self.host = host
        self.timeout = timeout
        self.interval = interval
        self.logger = get_logger()

    def wait_for_api(self) -> int:
        """첫 번째 성공 응답까지 폴링, 제한 시간 초과 시 ReadinessTimeout"""
        self.logger.info("Checking control plane status...")
        deadline = self.host.monotonic() + self.timeout
        attempts = 0
        while True:
            attempts += 1
            # 요청 한 번이 폴링 간격이나 남은 시간을 넘지 않도록 제한
            budget = max(min(self.interval, deadline - self.host.monotonic()), 1)
            result = self.host.run(
                ["kubectl", "get", "nodes", "--no-headers", f"--request-timeout={budget:g}s"],
                env=KUBECTL_ENV, timeout=budget,
            )
            if result.ok and result.stdout.strip():
                self.logger.debug(f"API server responded after {attempts} attempt(s)")
                return attempts
            if self.host.monotonic() >= deadline:
                raise ReadinessTimeout(
                    self.timeout,
                    f"Timed out waiting for API server to become available after {self.timeout:g}s",
                )
            self.host.sleep(self.interval)

    def verify(self) -> PhaseResult:
        self.wait_for_api()

        result = self.host.run(["kubectl", "get", "nodes", "-o", "wide"], env=KUBECTL_ENV)
        if result.ok:
            console.print(result.stdout.rstrip())
        else:
            self.logger.warning(f"Failed to list nodes: {result.output}")

        self.logger.success("Node initialization completed successfully")
        return PhaseResult.succeeded("readiness check", "API server is responding")
