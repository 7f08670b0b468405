"""Install, start, stop and drive the CloudWatch agent through the system shell."""

from __future__ import annotations

import enum
import logging
import os
import platform
import shutil
import subprocess
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

CAT_COMMAND = "cat "
APP_OWNER_COMMAND = "ps -u -p "
NAMESPACE = "CWAgent"
HOST = "host"

UNIX_CONFIG_OUTPUT_PATH = "/opt/aws/amazon-cloudwatch-agent/bin/config.json"
UNIX_AGENT_LOG_FILE = "/opt/aws/amazon-cloudwatch-agent/logs/amazon-cloudwatch-agent.log"
INSTALL_AGENT_VERSION_PATH = "/opt/aws/amazon-cloudwatch-agent/bin/CWAGENT_VERSION"
WINDOWS_CONFIG_OUTPUT_PATH = (
    "C:\\ProgramData\\Amazon\\AmazonCloudWatchAgent\\amazon-cloudwatch-agent.json"
)
WINDOWS_AGENT_LOG_FILE = (
    "C:\\ProgramData\\Amazon\\AmazonCloudWatchAgent\\Logs\\amazon-cloudwatch-agent.log"
)

_UNIX_CTL = "/opt/aws/amazon-cloudwatch-agent/bin/amazon-cloudwatch-agent-ctl"
_WINDOWS_CTL = '& "C:\\Program Files\\Amazon\\AmazonCloudWatchAgent\\amazon-cloudwatch-agent-ctl.ps1"'
_POWERSHELL_FLAGS = ["-NoProfile", "-NonInteractive"]

if platform.system() == "Windows":
    CONFIG_OUTPUT_PATH = WINDOWS_CONFIG_OUTPUT_PATH
    AGENT_LOG_FILE = WINDOWS_AGENT_LOG_FILE
else:
    CONFIG_OUTPUT_PATH = UNIX_CONFIG_OUTPUT_PATH
    AGENT_LOG_FILE = UNIX_AGENT_LOG_FILE


class PackageManager(enum.Enum):
    """Package managers the agent can be removed with."""

    RPM = 0
    DEB = 1


class AgentCommandError(Exception):
    """A shell command run on behalf of the agent failed."""

    def __init__(
        self,
        message: str,
        stdout: str = "",
        stderr: str = "",
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode


def _on_windows() -> bool:
    return platform.system() == "Windows"


def _powershell() -> str:
    found = shutil.which("powershell.exe")
    if found is None:
        raise AgentCommandError("powershell.exe not found in PATH")
    return found


def _run(argv: Sequence[str]) -> str:
    """Run ``argv`` and return its stdout, raising on a non-zero exit."""
    argv = list(argv)
    try:
        completed = subprocess.run(argv, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise AgentCommandError(f"could not run {argv[0]}: {exc}") from exc
    if completed.returncode != 0:
        raise AgentCommandError(
            f"{argv[0]} exited with status {completed.returncode}",
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            returncode=completed.returncode,
        )
    return completed.stdout or ""


def _log_failure(exc: AgentCommandError) -> None:
    logger.error("failed\n\tstdout:\n%s\n\tstderr:\n%s", exc.stdout, exc.stderr)


def _bash(cmd: str) -> str:
    return _run(["bash", "-c", cmd])


def _duration_text(seconds: float) -> str:
    """Render a duration the way journalctl's --since accepts it, e.g. ``1m30s``."""
    if seconds == 0:
        return "0s"
    sign = "-" if seconds < 0 else ""
    seconds = abs(seconds)
    if seconds < 1:
        return f"{sign}{seconds * 1000:g}ms"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    secs_text = f"{secs:g}s"
    if hours:
        return f"{sign}{int(hours)}h{int(minutes)}m{secs_text}"
    if minutes:
        return f"{sign}{int(minutes)}m{secs_text}"
    return f"{sign}{secs_text}"


def copy_file(path_in: str, path_out: str) -> None:
    """Copy a file to a (possibly privileged) destination."""
    logger.info("Copy File %s to %s", path_in, path_out)
    path_in_abs = os.path.abspath(path_in)
    logger.info("File %s abs path %s", path_in, path_in_abs)
    if _on_windows():
        argv = [_powershell(), *_POWERSHELL_FLAGS, f"cp {path_in_abs} {path_out}"]
    else:
        argv = ["bash", "-c", f"sudo cp {path_in_abs} {path_out}"]
    try:
        _run(argv)
    except AgentCommandError as exc:
        logger.error("Copy file failed: %s; the output is: %s", exc, exc.stdout)
        raise
    logger.info("File : %s copied to : %s", path_in, path_out)


def delete_file(path: str) -> None:
    """Remove a file with elevated rights."""
    logger.info("Delete file %s", path)
    try:
        _bash(f"sudo rm {path}")
    except AgentCommandError as exc:
        logger.error("%s%s", exc, exc.stdout)
        raise
    logger.info("Removed file: %s", path)


def touch_file(path: str) -> None:
    """Create or update a file with elevated rights."""
    logger.info("Touch file %s", path)
    try:
        _bash(f"sudo touch {path}")
    except AgentCommandError as exc:
        logger.error("%s%s", exc, exc.stdout)
        raise
    logger.info("Touched file: %s", path)


def uninstall_agent(package_manager: PackageManager | int) -> None:
    """Remove the agent package with the given package manager."""
    logger.info("Uninstalling Agent...")
    try:
        manager = PackageManager(package_manager)
    except ValueError:
        manager = package_manager if isinstance(package_manager, PackageManager) else None
        if manager is None:
            raise ValueError(f"unsupported package manager, {package_manager}") from None
    if manager is PackageManager.RPM:
        cmd = "sudo rpm -e amazon-cloudwatch-agent"
    else:
        cmd = "sudo dpkg -r amazon-cloudwatch-agent"
    try:
        _bash(cmd)
    except AgentCommandError as exc:
        _log_failure(exc)
        raise


def install_agent(installer_path: str) -> None:
    """Install the agent, choosing rpm or dpkg from the installer's suffix."""
    logger.info("Installing Agent...")
    if installer_path.endswith(".rpm"):
        cmd = f"sudo rpm -Uvh {installer_path}"
    else:
        cmd = f"sudo dpkg -i -E {installer_path}"
    try:
        _bash(cmd)
    except AgentCommandError as exc:
        _log_failure(exc)
        raise


def _start(argv: Sequence[str], fatal_on_failure: bool) -> bool:
    try:
        _run(argv)
    except AgentCommandError as exc:
        if fatal_on_failure:
            logger.error("Start agent failed: %s; the output is: %s", exc, exc.stdout)
            raise
        logger.warning("%s%s", exc, exc.stdout)
        return False
    logger.info("Agent has started")
    return True


def start_agent_with_multi_config(config_path: str, fatal_on_failure: bool, ssm: bool) -> bool:
    """Append a configuration to the running agent and restart it.

    Returns whether the agent started; raises instead when ``fatal_on_failure``.
    """
    if _on_windows():
        argv = [
            _powershell(),
            *_POWERSHELL_FLAGS,
            "-NoExit",
            f"{_WINDOWS_CTL} -a append-config -m ec2 -s -c file:{config_path}",
        ]
    else:
        source = "ssm:" if ssm else "file:"
        argv = [
            "bash",
            "-c",
            f"sudo {_UNIX_CTL} -a append-config -m ec2 -s -c {source}{config_path}",
        ]
    return _start(argv, fatal_on_failure)


def start_agent_with_command(
    config_path: str, fatal_on_failure: bool, ssm: bool, command: str
) -> bool:
    """Start the agent with ``command`` followed by the configuration source.

    Returns whether the agent started; raises instead when ``fatal_on_failure``.
    """
    source = "ssm:" if ssm else "file:"
    full_command = f"{command}{source}{config_path}"
    logger.info("Starting agent with command %s", full_command)
    if _on_windows():
        argv = [_powershell(), *_POWERSHELL_FLAGS, full_command]
    else:
        argv = ["bash", "-c", full_command]
    return _start(argv, fatal_on_failure)


def stop_agent() -> None:
    """Stop the agent."""
    if _on_windows():
        argv = [_powershell(), *_POWERSHELL_FLAGS, f"{_WINDOWS_CTL} -a stop"]
    else:
        argv = ["bash", "-c", f"sudo {_UNIX_CTL} -a stop"]
    try:
        _run(argv)
    except AgentCommandError as exc:
        logger.error("Stop agent failed: %s; the output is: %s", exc, exc.stdout)
        raise
    logger.info("Agent is stopped")


def read_agent_output(seconds: float) -> str:
    """Return the agent service's journal for the last ``seconds``."""
    return _bash(
        "sudo journalctl -u amazon-cloudwatch-agent.service "
        f'--since "{_duration_text(seconds)} ago" --no-pager -q'
    )


def run_shell_script(path: str, *args: str) -> str:
    """Run a script with elevated rights and return its output."""
    if _on_windows():
        argv = [_powershell(), *_POWERSHELL_FLAGS, "-NoExit"]
        if not path.endswith(".ps1"):
            argv.append("-Command")
        argv.extend([path, *args])
        logger.info("running %s", argv)
    else:
        try:
            _bash(f"sudo chmod +x {path}")
        except AgentCommandError as exc:
            logger.error(
                "Error occurred when attempting to chmod %s: %s | %s", path, exc, exc.stdout
            )
            raise
        argv = ["bash", "-c", f"sudo ./{path}", *args]
    try:
        return _run(argv)
    except AgentCommandError as exc:
        logger.error("Error occurred when executing %s: %s | %s", path, exc, exc.stdout)
        raise


def _shell_argv(cmd: str) -> list[str]:
    if _on_windows():
        return ["powershell.exe", *_POWERSHELL_FLAGS, cmd]
    return ["bash", "-c", cmd]


def run_command(cmd: str) -> str:
    """Run a shell command and return its stdout."""
    logger.info("running cmd, %s", cmd)
    try:
        return _run(_shell_argv(cmd))
    except AgentCommandError as exc:
        _log_failure(exc)
        raise


def run_async_command(cmd: str) -> subprocess.Popen:
    """Start a shell command in the background and return its process."""
    logger.info("running async cmd, %s", cmd)
    if _on_windows():
        argv = ["powershell.exe", *_POWERSHELL_FLAGS, "-NoExit", cmd]
    else:
        argv = ["nohup", "bash", "-c", cmd]
    try:
        return subprocess.Popen(argv)
    except OSError as exc:
        raise AgentCommandError(f"could not start {argv[0]}: {exc}") from exc


def run_commands(commands: Iterable[str]) -> None:
    """Run commands in order, stopping at the first failure."""
    for cmd in commands:
        run_command(cmd)


def replace_local_stack_host_name(path_in: str) -> None:
    """Replace the localstack host name in a file with $LOCAL_STACK_HOST_NAME."""
    _bash(
        "sed -i 's/localhost.localstack.cloud/'\"$LOCAL_STACK_HOST_NAME\"'/g' " + path_in
    )