import os
import subprocess

import pytest

from agentcheck import agent
from agentcheck.agent import AgentCommandError, PackageManager


class FakeRunner:
    def __init__(self, results=None):
        self.calls = []
        self.results = list(results or [])

    def __call__(self, argv, capture_output=False, text=False, check=False):
        self.calls.append(list(argv))
        if self.results:
            returncode, stdout, stderr = self.results.pop(0)
        else:
            returncode, stdout, stderr = 0, "", ""
        return subprocess.CompletedProcess(argv, returncode, stdout, stderr)


@pytest.fixture
def linux(monkeypatch):
    monkeypatch.setattr(agent.platform, "system", lambda: "Linux")


@pytest.fixture
def windows(monkeypatch):
    monkeypatch.setattr(agent.platform, "system", lambda: "Windows")
    monkeypatch.setattr(agent.shutil, "which", lambda name: "powershell.exe")


def install_runner(monkeypatch, results=None):
    runner = FakeRunner(results)
    monkeypatch.setattr(agent.subprocess, "run", runner)
    return runner


def test_copy_file_uses_absolute_source(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "", ""), (1, "", "denied")])
    agent.copy_file("cfg.json", "/out/config.json")
    with pytest.raises(AgentCommandError):
        agent.copy_file("cfg.json", "/out/config.json")
    expected = f"sudo cp {os.path.abspath('cfg.json')} /out/config.json"
    assert runner.calls == [["bash", "-c", expected], ["bash", "-c", expected]]


def test_copy_file_failure_raises_with_output(linux, monkeypatch):
    install_runner(monkeypatch, [(1, "out", "denied")])
    with pytest.raises(AgentCommandError) as info:
        agent.copy_file("a", "b")
    assert info.value.stderr == "denied"
    assert info.value.stdout == "out"
    assert info.value.returncode == 1


def test_delete_and_touch_file(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "", ""), (0, "", ""), (1, "", "")])
    agent.delete_file(agent.UNIX_AGENT_LOG_FILE)
    agent.touch_file(agent.UNIX_AGENT_LOG_FILE)
    with pytest.raises(AgentCommandError):
        agent.delete_file(agent.UNIX_AGENT_LOG_FILE)
    assert runner.calls == [
        ["bash", "-c", "sudo rm " + agent.UNIX_AGENT_LOG_FILE],
        ["bash", "-c", "sudo touch " + agent.UNIX_AGENT_LOG_FILE],
        ["bash", "-c", "sudo rm " + agent.UNIX_AGENT_LOG_FILE],
    ]


def test_delete_file_failure_raises(linux, monkeypatch):
    install_runner(monkeypatch, [(1, "", "")])
    with pytest.raises(AgentCommandError):
        agent.delete_file("/nope")


@pytest.mark.parametrize(
    "manager, command",
    [
        (PackageManager.RPM, "sudo rpm -e amazon-cloudwatch-agent"),
        (PackageManager.DEB, "sudo dpkg -r amazon-cloudwatch-agent"),
    ],
)
def test_uninstall_agent(linux, monkeypatch, manager, command):
    runner = install_runner(monkeypatch)
    agent.uninstall_agent(manager)
    with pytest.raises(ValueError):
        agent.uninstall_agent(7)
    assert runner.calls == [["bash", "-c", command]]


def test_uninstall_agent_unknown_manager(linux, monkeypatch):
    runner = install_runner(monkeypatch)
    with pytest.raises(ValueError):
        agent.uninstall_agent(7)
    assert runner.calls == []


@pytest.mark.parametrize(
    "installer, command",
    [
        ("./amazon-cloudwatch-agent.rpm", "sudo rpm -Uvh ./amazon-cloudwatch-agent.rpm"),
        ("./amazon-cloudwatch-agent.deb", "sudo dpkg -i -E ./amazon-cloudwatch-agent.deb"),
    ],
)
def test_install_agent_picks_manager_by_suffix(linux, monkeypatch, installer, command):
    runner = install_runner(monkeypatch, [(0, "", ""), (1, "", "broken")])
    agent.install_agent(installer)
    with pytest.raises(AgentCommandError):
        agent.install_agent(installer)
    assert runner.calls == [["bash", "-c", command], ["bash", "-c", command]]


def test_install_agent_failure_raises(linux, monkeypatch):
    install_runner(monkeypatch, [(2, "", "broken")])
    with pytest.raises(AgentCommandError) as info:
        agent.install_agent("x.rpm")
    assert info.value.returncode == 2


@pytest.mark.parametrize("ssm, prefix", [(True, "ssm:"), (False, "file:")])
def test_start_agent_with_multi_config(linux, monkeypatch, ssm, prefix):
    runner = install_runner(monkeypatch)
    assert agent.start_agent_with_multi_config("/cfg.json", True, ssm) is True
    command = runner.calls[0][2]
    assert "-a append-config -m ec2 -s -c " + prefix + "/cfg.json" in command
    assert command.startswith("sudo /opt/aws/amazon-cloudwatch-agent/bin/amazon-cloudwatch-agent-ctl")


def test_start_agent_with_command_appends_source(linux, monkeypatch):
    runner = install_runner(monkeypatch)
    assert agent.start_agent_with_command("/cfg.json", False, True, "start -c ") is True
    assert runner.calls == [["bash", "-c", "start -c ssm:/cfg.json"]]


def test_start_agent_failure_fatal_raises(linux, monkeypatch):
    install_runner(monkeypatch, [(1, "", "")])
    with pytest.raises(AgentCommandError):
        agent.start_agent_with_command("/cfg.json", True, False, "start ")


def test_start_agent_failure_not_fatal_returns_false(linux, monkeypatch):
    install_runner(monkeypatch, [(1, "", "")])
    assert agent.start_agent_with_command("/cfg.json", False, False, "start ") is False


def test_stop_agent(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "", ""), (1, "", "")])
    agent.stop_agent()
    with pytest.raises(AgentCommandError):
        agent.stop_agent()
    stop = ["bash", "-c", "sudo /opt/aws/amazon-cloudwatch-agent/bin/amazon-cloudwatch-agent-ctl -a stop"]
    assert runner.calls == [stop, stop]


def test_stop_agent_failure_raises(linux, monkeypatch):
    install_runner(monkeypatch, [(1, "", "")])
    with pytest.raises(AgentCommandError):
        agent.stop_agent()


def test_read_agent_output(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "journal lines", "")])
    assert agent.read_agent_output(90) == "journal lines"
    command = runner.calls[0][2]
    assert '--since "1m30s ago"' in command
    assert command.startswith("sudo journalctl -u amazon-cloudwatch-agent.service")


def test_run_shell_script_chmods_then_runs(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "", ""), (0, "done", "")])
    assert agent.run_shell_script("script.sh", "a", "b") == "done"
    assert runner.calls == [
        ["bash", "-c", "sudo chmod +x script.sh"],
        ["bash", "-c", "sudo ./script.sh", "a", "b"],
    ]


def test_run_shell_script_chmod_failure_stops(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(1, "", "")])
    with pytest.raises(AgentCommandError):
        agent.run_shell_script("script.sh")
    assert len(runner.calls) == 1


def test_run_command_returns_stdout(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "hello\n", "")])
    assert agent.run_command("echo hello") == "hello\n"
    assert runner.calls == [["bash", "-c", "echo hello"]]


def test_run_command_error_carries_stdout(linux, monkeypatch):
    install_runner(monkeypatch, [(3, "partial", "bad")])
    with pytest.raises(AgentCommandError) as info:
        agent.run_command("false")
    assert info.value.stdout == "partial"
    assert info.value.returncode == 3


def test_run_command_missing_program(linux, monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("bash")

    monkeypatch.setattr(agent.subprocess, "run", missing)
    with pytest.raises(AgentCommandError):
        agent.run_command("echo hi")


def test_run_commands_stops_at_first_failure(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "", ""), (1, "", ""), (0, "", "")])
    with pytest.raises(AgentCommandError):
        agent.run_commands(["one", "two", "three"])
    assert [call[2] for call in runner.calls] == ["one", "two"]


def test_run_commands_runs_all(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "", ""), (0, "", ""), (1, "", "")])
    agent.run_commands(["one", "two"])
    with pytest.raises(AgentCommandError):
        agent.run_commands(["three"])
    assert [call[2] for call in runner.calls] == ["one", "two", "three"]


def test_run_async_command(linux, monkeypatch):
    started = []

    def fake_popen(argv):
        started.append(argv)
        return "process"

    monkeypatch.setattr(agent.subprocess, "Popen", fake_popen)
    assert agent.run_async_command("sleep 5") == "process"
    assert started == [["nohup", "bash", "-c", "sleep 5"]]


def test_replace_local_stack_host_name(linux, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "", ""), (1, "", "no such file")])
    agent.replace_local_stack_host_name("/tmp/cfg.json")
    with pytest.raises(AgentCommandError):
        agent.replace_local_stack_host_name("/tmp/cfg.json")
    command = runner.calls[0][2]
    assert command.startswith("sed -i 's/localhost.localstack.cloud/'")
    assert command.endswith(" /tmp/cfg.json")
    assert "$LOCAL_STACK_HOST_NAME" in command


def test_windows_run_command_uses_powershell(windows, monkeypatch):
    runner = install_runner(monkeypatch, [(0, "ok", "")])
    assert agent.run_command("Get-Date") == "ok"
    assert runner.calls == [["powershell.exe", "-NoProfile", "-NonInteractive", "Get-Date"]]


@pytest.mark.parametrize(
    "path, expected",
    [
        ("setup.ps1", ["powershell.exe", "-NoProfile", "-NonInteractive", "-NoExit", "setup.ps1", "x"]),
        (
            "setup.bat",
            ["powershell.exe", "-NoProfile", "-NonInteractive", "-NoExit", "-Command", "setup.bat", "x"],
        ),
    ],
)
def test_windows_run_shell_script(windows, monkeypatch, path, expected):
    runner = install_runner(monkeypatch, [(0, "script output", "")])
    assert agent.run_shell_script(path, "x") == "script output"
    assert runner.calls == [expected]


def test_windows_missing_powershell_raises(monkeypatch):
    monkeypatch.setattr(agent.platform, "system", lambda: "Windows")
    monkeypatch.setattr(agent.shutil, "which", lambda name: None)
    runner = install_runner(monkeypatch)
    with pytest.raises(AgentCommandError):
        agent.stop_agent()
    assert runner.calls == []


def test_windows_start_with_multi_config(windows, monkeypatch):
    runner = install_runner(monkeypatch)
    assert agent.start_agent_with_multi_config("C:\\cfg.json", True, False) is True
    argv = runner.calls[0]
    assert argv[:4] == ["powershell.exe", "-NoProfile", "-NonInteractive", "-NoExit"]
    assert argv[4].endswith("-a append-config -m ec2 -s -c file:C:\\cfg.json")
    assert "amazon-cloudwatch-agent-ctl.ps1" in argv[4]