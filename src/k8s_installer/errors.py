"""
예외 정의 모듈
모든 치명적 오류는 ProvisioningError 를 상속하며 파이프라인을 즉시 중단시킨다
"""


class ProvisioningError(Exception):
    """설치 파이프라인 오류의 기본 클래스"""


class ValidationError(ProvisioningError):
    """설정 값이 잘못되었거나 누락됨 (호스트 변경 전에 발생)"""


class UnsupportedCNIProvider(ValidationError):
    """지원하지 않는 CNI 프로바이더"""

    def __init__(self, provider: str, supported=None):
        self.provider = provider
        self.supported = list(supported or [])
        message = f"Unsupported CNI provider: {provider!r}"
        if self.supported:
            message += f" (supported: {', '.join(self.supported)})"
        super().__init__(message)


class PreconditionError(ProvisioningError):
    """root 권한, 패키지 매니저, 네트워크 등 외부 전제 조건 미충족"""


class UnsupportedPlatform(ProvisioningError):
    """지원하지 않는 OS 또는 아키텍처"""


class InstallationError(ProvisioningError):
    """의존성 다운로드/설치 실패"""


class ConfigWriteError(ProvisioningError):
    """설정 파일 생성 실패"""


class ClusterInitError(ProvisioningError):
    """kubeadm init 실패"""


class ClusterJoinError(ProvisioningError):
    """kubeadm join 실패"""


class ReadinessTimeout(ProvisioningError):
    """제한 시간 내에 API 서버가 응답하지 않음"""

    def __init__(self, timeout: float, message: str = ""):
        self.timeout = timeout
        super().__init__(message or f"API server did not become ready within {timeout:g}s")
