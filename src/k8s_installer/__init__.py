"""
K8s Installer
kubeadm 기반으로 단일 노드(control-plane 또는 worker)를 클러스터에 구성하는 설치 도구

Features:
- 호스트 환경 감지 (OS, 아키텍처, init 시스템, cgroup 버전)
- containerd / runc / kubeadm, kubelet, kubectl 설치 (버전 고정)
- containerd, kubelet, kubeadm 설정 파일 생성
- kubeadm init / join 및 CNI 설치
- idempotent 재실행 지원
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
