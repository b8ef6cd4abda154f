"""Console entry point for the gateway."""

from __future__ import annotations

import argparse
import asyncio
import os
import socket
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import httpx
import uvicorn
from daemonize import Daemonize

from .app import create_app, resolve_config_dir
from .config import ConfigError, GatewayConfig, load_gateway_config
from .net import BindProbe, SocketBindProbe, is_ip_in_auto_approve_allowlist, resolve_gateway_listen_hosts
from .runtime import CONFIG_FILENAME


def _load_config(cfg_dir: Path) -> GatewayConfig:
    try:
        return load_gateway_config(cfg_dir / CONFIG_FILENAME)
    except ConfigError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        sys.exit(1)


def _determine_listen_target(args: argparse.Namespace, cfg: GatewayConfig) -> Tuple[str, int]:
    host = getattr(args, "host", None) or cfg.listen.host
    port = getattr(args, "port", None)
    if port is None:
        port = cfg.listen.port
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return host, port


async def resolve_listen_hosts(host: str, cfg: GatewayConfig, probe: Optional[BindProbe] = None) -> List[str]:
    if not cfg.listen.dual_stack_loopback:
        return [host]
    return await resolve_gateway_listen_hosts(host, probe or SocketBindProbe())


def _bind_sockets(hosts: Sequence[str], port: int) -> List[socket.socket]:
    sockets: List[socket.socket] = []
    try:
        for host in hosts:
            family = socket.AF_INET6 if ":" in host else socket.AF_INET
            sock = socket.socket(family, socket.SOCK_STREAM)
            sockets.append(sock)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if family == socket.AF_INET6:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            sock.bind((host, port))
            if port == 0:
                # Share the kernel-assigned port across all hosts
                port = sock.getsockname()[1]
    except OSError:
        for sock in sockets:
            sock.close()
        raise
    return sockets


def _serve_uvicorn(cfg_dir: Path, hosts: List[str], port: int, log_level: str) -> None:
    try:
        sockets = _bind_sockets(hosts, port)
    except OSError as exc:
        print(f"[error] Unable to bind {', '.join(hosts)} port {port}: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    app = create_app(cfg_dir)
    app.state.runtime.set_listen_hosts(hosts)
    server = uvicorn.Server(uvicorn.Config(app, log_level=log_level))
    app.state.server = server
    server.run(sockets=sockets)


def _describe(hosts: Sequence[str], port: int) -> str:
    return ", ".join(f"http://[{h}]:{port}" if ":" in h else f"http://{h}:{port}" for h in hosts)


def _start_background(cfg_dir: Path, hosts: List[str], port: int, log_level: str, log_file: Optional[str]) -> None:
    pid_path = cfg_dir / "mini-netgw.pid"

    if pid_path.exists():
        try:
            existing_pid = int(pid_path.read_text().strip())
            os.kill(existing_pid, 0)
        except (OSError, ValueError):
            existing_pid = None
        if existing_pid:
            print(f"[error] mini-netgw appears to be running already (PID {existing_pid})", file=sys.stderr)
            sys.exit(1)
        pid_path.unlink(missing_ok=True)

    log_path: Optional[Path] = None
    if log_file:
        log_path = Path(log_file)
        if not log_path.is_absolute():
            log_path = (cfg_dir / log_path).resolve()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            print(f"[error] Unable to prepare log directory {log_path.parent}: {exc}", file=sys.stderr)
            sys.exit(1)

    def _run_server() -> None:
        if log_path:
            with log_path.open("a", buffering=1, encoding="utf-8") as handle:
                os.dup2(handle.fileno(), sys.stdout.fileno())
                os.dup2(handle.fileno(), sys.stderr.fileno())
                _serve_uvicorn(cfg_dir, hosts, port, log_level)
        else:
            _serve_uvicorn(cfg_dir, hosts, port, log_level)

    print(f"mini-netgw starting in background on {_describe(hosts, port)} (pidfile {pid_path})")
    daemon = Daemonize(app="mini-netgw", pid=str(pid_path), action=_run_server)
    try:
        daemon.start()
    except Exception as exc:  # pragma: no cover - daemonization failure
        print(f"[error] Failed to daemonize mini-netgw: {exc}", file=sys.stderr)
        sys.exit(1)


def _admin_base_url(cfg: GatewayConfig) -> str:
    host = cfg.listen.host
    if host in ("0.0.0.0", ""):
        host = "127.0.0.1"
    elif host == "::":
        host = "::1"
    if ":" in host:
        return f"http://[{host}]:{cfg.listen.port}"
    return f"http://{host}:{cfg.listen.port}"


def _perform_admin_action(url: str, timeout: float) -> None:
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(url)
    except (httpx.HTTPError, OSError) as exc:
        print(f"[error] Admin request failed: {exc}", file=sys.stderr)
        sys.exit(1)

    if response.status_code >= 400:
        print(f"[error] Admin endpoint returned {response.status_code}: {response.text}", file=sys.stderr)
        sys.exit(1)

    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and "status" in payload:
        print(payload["status"])
    else:
        print(f"Request succeeded ({response.status_code})")


def _command_start(args: argparse.Namespace) -> None:
    cfg_dir = resolve_config_dir(getattr(args, "config_dir", None))
    cfg = _load_config(cfg_dir)

    try:
        host, port = _determine_listen_target(args, cfg)
    except ValueError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        sys.exit(2)

    hosts = asyncio.run(resolve_listen_hosts(host, cfg))
    log_level = cfg.logging.level.lower()

    if getattr(args, "foreground", False):
        print(f"mini-netgw starting in foreground on {_describe(hosts, port)}")
        _serve_uvicorn(cfg_dir, hosts, port, log_level)
        return

    _start_background(cfg_dir, hosts, port, log_level, cfg.logging.file)


def _command_hosts(args: argparse.Namespace) -> None:
    cfg = _load_config(resolve_config_dir(args.config_dir))
    try:
        host, _ = _determine_listen_target(args, cfg)
    except ValueError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        sys.exit(2)
    for entry in asyncio.run(resolve_listen_hosts(host, cfg)):
        print(entry)


def _command_check(args: argparse.Namespace) -> None:
    if args.allowlist is not None:
        allowlist = args.allowlist
    else:
        allowlist = _load_config(resolve_config_dir(args.config_dir)).auto_approve.allowlist

    if is_ip_in_auto_approve_allowlist(args.ip, allowlist):
        print("approved")
        return
    print("denied")
    sys.exit(1)


def _command_admin(action: str):
    def _command(args: argparse.Namespace) -> None:
        if args.admin_url:
            base_url = args.admin_url
        else:
            base_url = _admin_base_url(_load_config(resolve_config_dir(args.config_dir)))
        _perform_admin_action(f"{base_url.rstrip('/')}/admin/{action}", args.timeout)

    return _command


def build_parser() -> argparse.ArgumentParser:
    start_parent = argparse.ArgumentParser(add_help=False)
    start_parent.add_argument("--config-dir", help="Directory containing gateway.json")
    start_parent.add_argument("--host", help="Override listen host")
    start_parent.add_argument("--port", type=int, help="Override listen port")
    start_parent.add_argument("--foreground", action="store_true", help="Run in the foreground")

    parser = argparse.ArgumentParser(description="mini-netgw service management", parents=[start_parent])
    subparsers = parser.add_subparsers(dest="command")

    start_parser = subparsers.add_parser("start", help="Start the gateway service", parents=[start_parent])
    start_parser.set_defaults(func=_command_start)

    hosts_parser = subparsers.add_parser("hosts", help="Print the addresses the gateway would listen on")
    hosts_parser.add_argument("--config-dir", help="Directory containing gateway.json")
    hosts_parser.add_argument("--host", help="Override listen host")
    hosts_parser.set_defaults(func=_command_hosts)

    check_parser = subparsers.add_parser("check", help="Check whether a client IP is auto-approved")
    check_parser.add_argument("ip", help="Client IP address")
    check_parser.add_argument("--config-dir", help="Directory containing gateway.json")
    check_parser.add_argument(
        "--allowlist",
        nargs="*",
        help="Allowlist entries to use instead of the configured ones",
    )
    check_parser.set_defaults(func=_command_check)

    for action, help_text in (("reload", "Reload gateway configuration"), ("shutdown", "Request a graceful shutdown")):
        name = "stop" if action == "shutdown" else action
        admin_parser = subparsers.add_parser(name, help=help_text)
        admin_parser.add_argument("--config-dir", help="Directory containing gateway.json")
        admin_parser.add_argument("--admin-url", help="Override admin base URL (e.g. http://127.0.0.1:8080)")
        admin_parser.add_argument("--timeout", type=float, default=5.0, help="HTTP timeout in seconds")
        admin_parser.set_defaults(func=_command_admin(action))

    parser.set_defaults(func=_command_start)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    args.func(args)

if __name__ == "__main__":  # pragma: no cover
    main()
