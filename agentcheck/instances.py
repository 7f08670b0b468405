"""EC2, ECS and EKS instance lookups and the instance identity document."""

from __future__ import annotations

import json
import logging
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

IMDS_ENDPOINT = "http://169.254.169.254"
EKS_CLUSTER_TAG_FILTER = "tag:aws:eks:cluster-name"


@dataclass(frozen=True)
class ContainerInstance:
    """An ECS container instance and the EC2 instance behind it."""

    container_instance_arn: str
    container_instance_id: str
    ec2_instance_id: str


@dataclass(frozen=True)
class EKSInstance:
    """A node of an EKS cluster, named by its private DNS name."""

    instance_name: str | None


def _fetch_identity_document(timeout: float = 5.0) -> dict:
    """Read the identity document from the instance metadata service."""
    token_request = urllib.request.Request(
        f"{IMDS_ENDPOINT}/latest/api/token",
        method="PUT",
        headers={"X-aws-ec2-metadata-token-ttl-seconds": "21600"},
    )
    with urllib.request.urlopen(token_request, timeout=timeout) as response:
        session_token = response.read().decode()

    doc_request = urllib.request.Request(
        f"{IMDS_ENDPOINT}/latest/dynamic/instance-identity/document",
        headers={"X-aws-ec2-metadata-token": session_token},
    )
    with urllib.request.urlopen(doc_request, timeout=timeout) as response:
        return json.loads(response.read().decode())


class InstanceIdentity:
    """Lazily fetched and cached instance identity document."""

    def __init__(self, fetch: Callable[[], dict] | None = None) -> None:
        self._fetch = fetch or _fetch_identity_document
        self._document: dict | None = None

    def document(self) -> dict:
        """Return the identity document, fetching it on first use."""
        if self._document is None:
            try:
                self._document = dict(self._fetch())
            except Exception as exc:
                raise RuntimeError(
                    f"Error occurred while retrieving imds identityDoc: {exc}"
                ) from exc
        return self._document

    def instance_id(self) -> str:
        return self.document()["instanceId"]

    def image_id(self) -> str:
        return self.document()["imageId"]

    def instance_type(self) -> str:
        return self.document()["instanceType"]


def describe_instances(client: Any, instance_ids: Iterable[str]) -> dict:
    """Describe the given EC2 instances."""
    return client.describe_instances(InstanceIds=list(instance_ids))


def get_instance_private_dns(client: Any, instance_id: str) -> str | None:
    """Return the private DNS name of one EC2 instance."""
    output = describe_instances(client, [instance_id])
    return output["Reservations"][0]["Instances"][0].get("PrivateDnsName")


def restart_daemon_service(client: Any, cluster_arn: str, service_name: str) -> None:
    """Force a new deployment of a daemon service."""
    restart_service(client, cluster_arn, None, service_name)


def restart_service(
    client: Any, cluster_arn: str, desired_count: int | None, service_name: str
) -> None:
    """Force a new deployment of a service, optionally setting its desired count."""
    params: dict[str, Any] = {
        "cluster": cluster_arn,
        "service": service_name,
        "forceNewDeployment": True,
    }
    if desired_count is not None:
        params["desiredCount"] = desired_count
    client.update_service(**params)


def get_container_instance_arns(client: Any, cluster_arn: str) -> list[str]:
    """List the container instance ARNs of an ECS cluster."""
    output = client.list_container_instances(cluster=cluster_arn)
    return list(output.get("containerInstanceArns", []))


def get_container_instances(client: Any, cluster_arn: str) -> list[ContainerInstance]:
    """Describe every container instance of an ECS cluster."""
    arns = get_container_instance_arns(client, cluster_arn)
    output = client.describe_container_instances(cluster=cluster_arn, containerInstances=arns)
    return [
        ContainerInstance(
            container_instance_arn=entry["containerInstanceArn"],
            container_instance_id=container_instance_id(entry["containerInstanceArn"]),
            ec2_instance_id=entry["ec2InstanceId"],
        )
        for entry in output.get("containerInstances", [])
    ]


def container_instance_id(container_instance_arn: str) -> str:
    """Return the id part (third '/'-separated field) of a container instance ARN."""
    parts = container_instance_arn.split("/")
    if len(parts) < 3:
        raise ValueError(f"malformed container instance arn: {container_instance_arn}")
    return parts[2]


def cluster_name(cluster_arn: str) -> str:
    """Return the cluster name that follows ':cluster/' in a cluster ARN."""
    parts = cluster_arn.split(":cluster/")
    if len(parts) < 2:
        raise ValueError(f"malformed cluster arn: {cluster_arn}")
    return parts[1]


def get_eks_instances(client: Any, cluster_name: str) -> list[EKSInstance]:
    """Return the instances tagged as members of an EKS cluster."""
    output = client.describe_instances(
        Filters=[{"Name": EKS_CLUSTER_TAG_FILTER, "Values": [cluster_name]}]
    )
    return [
        EKSInstance(instance_name=instance.get("PrivateDnsName"))
        for instance in output["Reservations"][0]["Instances"]
    ]