"""
CLI 메인 인터페이스
Click 및 Rich 기반 사용자 친화적 CLI
"""

import fcntl
import os
import sys
import click
from contextlib import contextmanager
from typing import Any, Dict, Optional
from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from . import __version__
from .cluster import reset_node
from .config import (
    DEFAULT_CRI_SOCKET, NodeRole, ProvisioningConfig, create_sample, load_settings,
)
from .errors import PreconditionError, ProvisioningError, ValidationError
from .host import HostSystem
from .logger import DEFAULT_LOG_FILE, get_logger, init_logger
from .pipeline import ProvisioningPipeline

console = Console()

LOCK_FILE = "/var/lock/k8s-installer.lock"

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


@contextmanager
def install_lock(path: Optional[str] = None):
    """동시 실행 방지용 파일 잠금"""
    path = path or LOCK_FILE
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handle = open(path, "w")
    except OSError as e:
        raise PreconditionError(f"Cannot open lock file {path}: {e}") from e

    try:
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            raise PreconditionError(
                f"Another k8s-installer run holds {path}; wait for it to finish"
            ) from None
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        yield
    finally:
        handle.close()


def build_config(config_path: Optional[str], overrides: Dict[str, Any],
                 interactive: bool = False) -> ProvisioningConfig:
    """설정 파일 + CLI 옵션 (+ 대화형 입력) 으로 설정 생성"""
    data = load_settings(config_path)
    for key, value in overrides.items():
        if value is not None:
            data[key] = value

    if interactive:
        prompt_missing(data)

    return ProvisioningConfig.from_dict(data)


def prompt_missing(data: Dict[str, Any]):
    """누락된 필수 값 대화형 입력"""
    console.print("\n[bold cyan]대화형 설정[/bold cyan]\n")
    if not data.get("node_type"):
        data["node_type"] = Prompt.ask(
            "노드 역할", choices=[role.value for role in NodeRole], default=NodeRole.WORKER.value
        )

    if data["node_type"] == NodeRole.CONTROL_PLANE.value:
        if not data.get("control_plane_endpoint"):
            data["control_plane_endpoint"] = Prompt.ask("컨트롤 플레인 엔드포인트 (host[:port])")
    elif not data.get("token") and not data.get("join_command"):
        console.print("[yellow]컨트롤 플레인에서 'kubeadm token create --print-join-command' 로 생성한 명령어를 입력하세요.[/yellow]")
        data["join_command"] = Prompt.ask("Join 명령어")


def fail(message: str):
    """오류 메시지를 stderr 에 출력하고 종료"""
    get_logger().error(message)
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(version=__version__)
def cli():
    """Kubernetes Node Installer

    Debian/Ubuntu 호스트를 kubeadm 기반 control-plane 또는 worker 노드로 구성합니다.
    """
    pass


@cli.command(context_settings=CONTEXT_SETTINGS)
@click.option("-c", "--config", "config_path", type=click.Path(exists=True), help="설정 파일 경로")
@click.option("--node-type", help="노드 역할 (control-plane | worker)")
@click.option("--k8s-version", help="Kubernetes 버전 (기본: 1.32.0)")
@click.option("--container-runtime-version", help="containerd 버전 (기본: 2.0.4)")
@click.option("--runc-version", help="runc 버전 (기본: 1.2.6)")
@click.option("--cri-socket", help="컨테이너 런타임 소켓 경로")
@click.option("--cni-provider", help="CNI 프로바이더 (cilium | calico | flannel)")
@click.option("--cni-version", help="CNI 버전 (기본: 프로바이더별 기본 버전)")
@click.option("--pod-network-cidr", help="Pod 네트워크 CIDR (기본: 10.244.0.0/16)")
@click.option("--service-cidr", help="Service CIDR (기본: 10.96.0.0/12)")
@click.option("--control-plane-endpoint", help="컨트롤 플레인 엔드포인트 (control-plane 필수)")
@click.option("--control-plane-port", type=int, help="API 서버 포트 (기본: 6443)")
@click.option("--join-command", help="워커 노드 join 명령어")
@click.option("--token", help="부트스트랩 토큰")
@click.option("--token-ttl", help="토큰 유효 기간 (기본: 24h0m0s)")
@click.option("--skip-cni", is_flag=True, help="CNI 설치 건너뛰기")
@click.option("--force-reset", is_flag=True, help="기존 클러스터 설정 초기화 후 재설치")
@click.option("--log-level", help="로그 레벨 (DEBUG | INFO | WARN | ERROR)")
@click.option("--log-file", type=click.Path(), help="로그 파일 경로")
@click.option("-v", "--verbose", "--debug", "verbose", is_flag=True, help="디버그 모드")
@click.option("-i", "--interactive", is_flag=True, help="대화형 모드")
def install(config_path, verbose, interactive, skip_cni, force_reset, **options):
    """노드 설치 (control-plane 초기화 또는 worker 조인)"""
    # 플래그는 켜는 방향으로만 덮어씀
    options["skip_cni"] = True if skip_cni else None
    options["force_reset"] = True if force_reset else None
    if verbose:
        options["log_level"] = "DEBUG"

    try:
        cfg = build_config(config_path, options, interactive)
    except ValidationError as e:
        fail(str(e))

    logger = init_logger(cfg.log_file, cfg.log_level, verbose)
    logger.debug(f"Configuration: {cfg.to_dict()}")

    try:
        with install_lock():
            success = ProvisioningPipeline(cfg).run()
    except PreconditionError as e:
        fail(str(e))

    if not success:
        click.echo(f"Error: installation failed, see {cfg.log_file or 'the output above'}", err=True)
    sys.exit(0 if success else 1)


@cli.command()
@click.argument("output", type=click.Path(), default="./config.yaml")
def init(output):
    """샘플 설정 파일 생성"""
    create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print("[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  sudo k8s-installer install --config {output}[/cyan]")


@cli.command()
@click.option("-c", "--config", "config_path", type=click.Path(exists=True), required=True,
              help="설정 파일 경로")
def validate(config_path):
    """설정 파일 유효성 검사"""
    try:
        cfg = ProvisioningConfig.from_dict(load_settings(config_path))
    except ValidationError as e:
        console.print(f"[red]✗ 설정 파일 오류: {e}[/red]")
        sys.exit(1)

    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")
    for key, value in cfg.to_dict().items():
        table.add_row(key, "[dim]미설정[/dim]" if value in ("", None) else str(value))
    console.print(table)


@cli.command()
@click.option("--cri-socket", default=DEFAULT_CRI_SOCKET, show_default=True, help="컨테이너 런타임 소켓 경로")
@click.option("-y", "--yes", is_flag=True, help="확인 없이 진행")
@click.option("-v", "--verbose", "--debug", "verbose", is_flag=True, help="디버그 모드")
def reset(cri_socket, yes, verbose):
    """노드 초기화 (kubeadm reset 및 설정 정리)"""
    init_logger(DEFAULT_LOG_FILE, "INFO", verbose)

    if not yes and not Confirm.ask("이 노드의 Kubernetes 설정을 모두 제거하시겠습니까?", default=False):
        console.print("[yellow]취소되었습니다.[/yellow]")
        return

    try:
        with install_lock():
            reset_node(HostSystem(), f"unix://{cri_socket}")
    except ProvisioningError as e:
        fail(str(e))

    console.print("[green]✓ 노드 초기화 완료[/green]")


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == "__main__":
    main()
