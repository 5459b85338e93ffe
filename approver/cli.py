"""Console entry point for the approver."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, NoReturn, Optional, Tuple

import httpx
import uvicorn
from daemonize import Daemonize

from .app import create_app, resolve_config_dir
from .config import DEFAULT_SOCKET_PATH, ConfigError, DaemonConfig, load_daemon_config
from .manager import ReviewError, ReviewResult
from .resources import ResourceError, load_certificate_request
from .runtime import ApproverRuntime

DEFAULT_HOST_FALLBACK = "127.0.0.1"
API_KEY_ENV = "CRPAPPROVER_API_KEY"

EXIT_CODES = {
    ReviewResult.APPROVED.value: 0,
    ReviewResult.DENIED.value: 1,
    ReviewResult.UNPROCESSED.value: 2,
}
EXIT_ERROR = 3


def _fail(message: str, code: int = 1) -> NoReturn:
    print(f"[error] {message}", file=sys.stderr)
    sys.exit(code)


def _load_daemon_or_exit(config_dir: Optional[str]) -> Tuple[Path, DaemonConfig]:
    cfg_dir = resolve_config_dir(config_dir)
    try:
        return cfg_dir, load_daemon_config(cfg_dir / "daemon.json")
    except ConfigError as exc:
        _fail(str(exc))


def _remove_stale_socket(path: str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError:
        pass


def _serve_uvicorn(
    config_dir: str,
    host: Optional[str],
    port: Optional[int],
    uds: Optional[str],
    log_level: str,
) -> None:
    app = create_app(Path(config_dir))

    if uds:
        _remove_stale_socket(uds)

    config = uvicorn.Config(
        app,
        host=host or DEFAULT_HOST_FALLBACK,
        port=port or 8443,
        uds=uds,
        log_level=log_level,
    )
    server = uvicorn.Server(config)
    app.state.server = server
    server.run()


def _pid_is_active(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _start_background(
    cfg_dir: Path,
    host: Optional[str],
    port: Optional[int],
    uds: Optional[str],
    log_level: str,
    log_file: Optional[str],
) -> None:
    desc = f"unix:{uds}" if uds else f"http://{host}:{port}"
    pid_path = cfg_dir / "crp-approver.pid"
    log_path: Optional[Path] = None

    if log_file:
        log_path = Path(log_file)
        if not log_path.is_absolute():
            log_path = (cfg_dir / log_path).resolve()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_path.touch(exist_ok=True)
        except OSError as exc:
            _fail(f"Unable to prepare log file {log_path}: {exc}")

    if pid_path.exists():
        try:
            existing_pid = int(pid_path.read_text().strip())
        except (OSError, ValueError):
            existing_pid = None
        if existing_pid and _pid_is_active(existing_pid):
            _fail(f"crp-approver appears to be running already (PID {existing_pid})")
        try:
            pid_path.unlink()
        except OSError as exc:
            print(f"[warning] Failed to remove stale pidfile {pid_path}: {exc}", file=sys.stderr)

    def _run_server() -> None:
        if log_path is None:
            _serve_uvicorn(str(cfg_dir), host, port, uds, log_level)
            return
        with log_path.open("a", buffering=1, encoding="utf-8") as log_handle:
            sys.stdout.flush()
            sys.stderr.flush()
            os.dup2(log_handle.fileno(), sys.stdout.fileno())
            os.dup2(log_handle.fileno(), sys.stderr.fileno())
            _serve_uvicorn(str(cfg_dir), host, port, uds, log_level)

    daemon = Daemonize(
        app="crp-approver",
        pid=str(pid_path),
        action=_run_server,
    )
    try:
        daemon.start()
    except Exception as exc:  # pragma: no cover - daemonization failure
        _fail(f"Failed to daemonize crp-approver: {exc}")

    log_suffix = f", logging to {log_path}" if log_path else ""
    print(f"crp-approver started in background listening on {desc} (pidfile {pid_path}{log_suffix})")


def _determine_listen_target(
    args: argparse.Namespace, daemon_cfg: DaemonConfig
) -> Tuple[Optional[str], Optional[int], Optional[str]]:
    host_override = getattr(args, "host", None)
    port_override = getattr(args, "port", None)
    unix_socket_override = getattr(args, "unix_socket", None)

    if unix_socket_override and (host_override or port_override):
        raise ValueError("Cannot combine --unix-socket with --host/--port overrides")

    listen = daemon_cfg.listen

    if unix_socket_override:
        return None, None, unix_socket_override

    host = host_override or listen.host_v6 or listen.host_v4
    port = port_override if port_override is not None else listen.port

    if host is None and port_override is not None:
        host = DEFAULT_HOST_FALLBACK

    if host:
        return host, port or 8443, None

    return None, None, listen.unix_socket or DEFAULT_SOCKET_PATH


def _http_base(host: str, port: int) -> str:
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"http://{host}:{port}"


def _resolve_endpoint(args: argparse.Namespace, daemon_cfg: DaemonConfig) -> Tuple[str, Optional[str]]:
    url = getattr(args, "url", None)
    unix_socket_override = getattr(args, "unix_socket", None)

    if url and unix_socket_override:
        raise ConfigError("Cannot combine --url with --unix-socket")
    if url:
        return url.rstrip("/"), None
    if unix_socket_override:
        return "http://unix", unix_socket_override

    listen_cfg = daemon_cfg.listen
    if listen_cfg.unix_socket:
        return "http://unix", listen_cfg.unix_socket
    host = listen_cfg.host_v4 or listen_cfg.host_v6 or DEFAULT_HOST_FALLBACK
    return _http_base(host, listen_cfg.port or 8443), None


def _post(
    url: str,
    timeout: float,
    uds: Optional[str],
    payload: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> httpx.Response:
    transport = httpx.HTTPTransport(uds=uds) if uds else None
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            return client.post(url, json=payload, headers=headers)
    except (httpx.HTTPError, OSError) as exc:
        _fail(f"Request to {url} failed: {exc}", EXIT_ERROR)


def _perform_admin_action(args: argparse.Namespace, action: str) -> None:
    _, daemon_cfg = _load_daemon_or_exit(args.config_dir)
    try:
        base_url, uds = _resolve_endpoint(args, daemon_cfg)
    except ConfigError as exc:
        _fail(str(exc))

    response = _post(f"{base_url}/admin/{action}", args.timeout, uds)
    if response.status_code >= 400:
        _fail(f"Admin endpoint returned {response.status_code}: {response.text}")

    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and "status" in payload:
        print(payload["status"])
    else:
        print(f"Request succeeded ({response.status_code})")


def _command_start(args: argparse.Namespace) -> None:
    cfg_dir, daemon_cfg = _load_daemon_or_exit(getattr(args, "config_dir", None))

    try:
        host, port, uds = _determine_listen_target(args, daemon_cfg)
    except ValueError as exc:
        _fail(str(exc), 2)

    log_level = daemon_cfg.logging.level.lower()

    if getattr(args, "foreground", False):
        desc = f"unix:{uds}" if uds else f"http://{host}:{port}"
        print(f"crp-approver starting in foreground on {desc}")
        _serve_uvicorn(str(cfg_dir), host, port, uds, log_level)
        return

    _start_background(cfg_dir, host, port, uds, log_level, daemon_cfg.logging.file)


def _command_reload(args: argparse.Namespace) -> None:
    _perform_admin_action(args, "reload")


def _command_stop(args: argparse.Namespace) -> None:
    _perform_admin_action(args, "shutdown")


async def _review_offline(cfg_dir: Path, payload: Dict[str, Any]) -> Tuple[str, str]:
    runtime = ApproverRuntime(cfg_dir)
    await runtime.initialize()
    try:
        response = await runtime.review(load_certificate_request(payload))
    finally:
        await runtime.shutdown()
    return response.result.value, response.message


def _read_request_file(path: str) -> Dict[str, Any]:
    try:
        raw = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
        payload = json.loads(raw)
    except (OSError, json.JSONDecodeError) as exc:
        _fail(f"Unable to read request {path}: {exc}", EXIT_ERROR)
    if not isinstance(payload, dict):
        _fail("Request file must contain a JSON object", EXIT_ERROR)
    return payload


def _command_review(args: argparse.Namespace) -> None:
    payload = _read_request_file(args.request)

    if args.offline:
        cfg_dir = resolve_config_dir(args.config_dir)
        try:
            result, message = asyncio.run(_review_offline(cfg_dir, payload))
        except (ConfigError, ResourceError, ReviewError) as exc:
            _fail(str(exc), EXIT_ERROR)
    else:
        _, daemon_cfg = _load_daemon_or_exit(args.config_dir)
        try:
            base_url, uds = _resolve_endpoint(args, daemon_cfg)
        except ConfigError as exc:
            _fail(str(exc), EXIT_ERROR)
        api_key = args.api_key or os.environ.get(API_KEY_ENV)
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        response = _post(f"{base_url}/v1/review", args.timeout, uds, payload, headers)
        if response.status_code >= 400:
            _fail(f"Review endpoint returned {response.status_code}: {response.text}", EXIT_ERROR)
        body = response.json()
        result, message = str(body.get("result")), str(body.get("message"))

    print(f"{result}: {message}")
    sys.exit(EXIT_CODES.get(result, EXIT_ERROR))


def main() -> None:
    start_parent = argparse.ArgumentParser(add_help=False)
    start_parent.add_argument("--config-dir", help="Directory containing daemon.json and resources.json")
    start_parent.add_argument("--host", help="Override listen host")
    start_parent.add_argument("--port", type=int, help="Override listen port")
    start_parent.add_argument("--unix-socket", help="Override Unix domain socket path")
    start_parent.add_argument("--foreground", action="store_true", help="Run in the foreground")

    client_parent = argparse.ArgumentParser(add_help=False)
    client_parent.add_argument("--config-dir", help="Directory containing daemon.json and resources.json")
    client_parent.add_argument("--url", help="Override base URL (e.g. http://127.0.0.1:8081)")
    client_parent.add_argument("--unix-socket", help="Path to the daemon's Unix domain socket")
    client_parent.add_argument("--timeout", type=float, default=5.0, help="HTTP timeout in seconds")

    parser = argparse.ArgumentParser(description="CertificateRequestPolicy approver", parents=[start_parent])
    subparsers = parser.add_subparsers(dest="command")

    start_parser = subparsers.add_parser("start", help="Start the approver service", parents=[start_parent])
    start_parser.set_defaults(func=_command_start)

    reload_parser = subparsers.add_parser("reload", help="Reload configuration and resources", parents=[client_parent])
    reload_parser.set_defaults(func=_command_reload)

    stop_parser = subparsers.add_parser("stop", help="Request a graceful shutdown", parents=[client_parent])
    stop_parser.set_defaults(func=_command_stop)

    review_parser = subparsers.add_parser(
        "review",
        help="Review a CertificateRequest (exit 0 approved, 1 denied, 2 unprocessed, 3 error)",
        parents=[client_parent],
    )
    review_parser.add_argument("request", help="JSON file holding the CertificateRequest, or - for stdin")
    review_parser.add_argument("--offline", action="store_true", help="Review in-process instead of calling the daemon")
    review_parser.add_argument("--api-key", help=f"Bearer key for the review endpoint (default: ${API_KEY_ENV})")
    review_parser.set_defaults(func=_command_review)

    parser.set_defaults(func=_command_start)

    args = parser.parse_args()

    args.func(args)

if __name__ == "__main__":  # pragma: no cover
    main()
