# agentcheck

Building blocks for end-to-end checks of a metrics and logs collection agent
running on a host, a container cluster or a Kubernetes cluster.

The package covers three jobs:

* **Looking at what the agent published.** Reading log events back from
  CloudWatch Logs, confirming that metrics exist, counting samples and
  fetching metric data or statistics.
* **Driving the agent and the host.** Installing, starting, stopping and
  uninstalling the agent, copying configuration into place and running shell
  commands through `bash` (or PowerShell on Windows).
* **Generating load.** Writing log lines into the files the agent watches and
  sending StatsD, collectd and EMF metrics to the agent's local listeners.

## Installing

```
pip install .
pip install ".[test]"   # with pytest, to run the tests
```

The only runtime dependency is `jsonschema`.

## Service clients

Functions that talk to a cloud service take the client as their first
argument. Any object with the same methods and keyword arguments as the
corresponding service client works (for example `get_log_events`,
`list_metrics`, `describe_instances`, `put_item`, `download_fileobj`,
`get_parameter`), which makes the functions easy to drive with a stand-in
object in your own tests. The package does not create clients itself.
Functions that wait between attempts take a `sleep` callable, so waiting can
be skipped or recorded.

## Modules

| Module | What it does |
| --- | --- |
| `agentcheck.cloudwatchlogs` | `get_logs_since`, `validate_logs`, `log_group_exists`, `get_log_streams`, `delete_log_stream`, `delete_log_group`, `delete_log_group_and_stream`, `match_emf_log_with_schema` |
| `agentcheck.cloudwatchmetrics` | `validate_metric`, `validate_metric_with_retries`, `validate_sample_count`, `get_metric_data`, `get_metric_statistics`, `build_dimension_filter_list`, `report_metric` |
| `agentcheck.instances` | `describe_instances`, `get_instance_private_dns`, `restart_service`, `restart_daemon_service`, `get_container_instances`, `get_container_instance_arns`, `get_eks_instances`, `container_instance_id`, `cluster_name`, the `ContainerInstance` and `EKSInstance` records and `InstanceIdentity` |
| `agentcheck.storage` | DynamoDB items (`marshal_item`, `unmarshal_item`, `replace_item`, `add_item_if_not_exist`, `get_item`), `download_file` from S3, SSM string parameters (`put_string_parameter`, `get_string_parameter`) |
| `agentcheck.stacks` | `create_stack_name`, `start_stack`, `delete_stack`, `find_stack_instance_id` |
| `agentcheck.agent` | agent control and shell helpers: `copy_file`, `delete_file`, `touch_file`, `install_agent`, `uninstall_agent`, `start_agent_with_command`, `start_agent_with_multi_config`, `stop_agent`, `read_agent_output`, `run_shell_script`, `run_command`, `run_commands`, `run_async_command`, `replace_local_stack_host_name` |
| `agentcheck.loggen` | `generate_log_config`, `log_file_paths`, `write_to_logs`, `start_log_write`, `create_windows_event`, `generate_windows_events`, `generate_logs` |
| `agentcheck.loadgen` | `send_statsd_metrics`, `send_collectd_metrics`, `send_emf_metrics`, `start_sending_metrics` and the payload builders `statsd_lines`, `collectd_packet`, `emf_document` |

## Examples

Check that a log stream holds exactly the lines you wrote:

```python
import time

from agentcheck.cloudwatchlogs import validate_logs

ok = validate_logs(
    logs_client,
    "my-log-group",
    "my-log-stream",
    since=start,
    until=end,
    validator=lambda lines: len(lines) == 200,
    sleep=time.sleep,
)
```

`get_logs_since` pages from the head of the stream until the service hands
back the token it was given. A missing group or stream is retried three times
with a 30 second pause; any other error is raised.

Confirm that a metric was published for an instance:

```python
from agentcheck.cloudwatchmetrics import MetricValidationError, validate_metric

try:
    validate_metric(
        metrics_client,
        "mem_used_percent",
        "MultiConfigTest",
        [{"Name": "InstanceId", "Value": instance_id}],
    )
except MetricValidationError as err:
    print(f"metric missing: {err}")
```

Point an agent configuration at a number of generated log files, then write
lines into them for a while:

```python
from agentcheck.loggen import generate_log_config, start_log_write

generate_log_config(5, "agent-config.json")
threads = start_log_write(
    "agent-config.json", duration=180, sending_interval=60, lines_per_minute=100
)
```

The configuration must already contain a `logs.logs_collected.files.collect_list`
entry; it is replaced by one entry per generated file (`/tmp/test1.log` and
so on, or the Administrator temp folder on Windows). Each writer runs in a
daemon thread and removes its file when it finishes.

Send StatsD load to the local agent in the background:

```python
from agentcheck.loadgen import start_sending_metrics

thread = start_sending_metrics("statsd", 180, 1, 1000, "log-group", "Namespace")
```

Pull names out of ECS ARNs:

```python
from agentcheck.instances import cluster_name, container_instance_id

cluster_name("arn:aws:ecs:us-west-2:000000000000:cluster/demo")
# 'demo'
container_instance_id("arn:aws:ecs:us-west-2:000000000000:container-instance/demo/abc123")
# 'abc123'
```

## Errors

Failures are raised as exceptions:

* `MetricValidationError` when a metric cannot be queried or is not found;
* `ItemNotFoundError` when a DynamoDB query comes back empty and no item to
  store was given;
* `StackError` when a stack cannot be created or deleted, or its instance id
  does not appear in time;
* `AgentCommandError` when an agent or shell command fails, carrying its
  `stdout`, `stderr` and `returncode`.

Cleanup helpers such as `delete_log_group` only log their failures, and
`get_string_parameter` returns `"Parameter not found"` when the parameter
cannot be read.

## What the package does not do

There is no command-line program and no test runner: the package does not
read a validation configuration, choose which checks to run or retry a whole
validation. It provides the pieces such a runner would call. It also does not
build service clients or load credentials; pass in clients you created.