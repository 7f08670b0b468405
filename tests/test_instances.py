import pytest

from agentcheck.instances import (
    ContainerInstance,
    EKSInstance,
    InstanceIdentity,
    cluster_name,
    container_instance_id,
    describe_instances,
    get_container_instance_arns,
    get_container_instances,
    get_eks_instances,
    get_instance_private_dns,
    restart_daemon_service,
    restart_service,
)

CLUSTER_ARN = "arn:aws:ecs:us-west-2:000000000000:cluster/demo"
CI_ARN = "arn:aws:ecs:us-west-2:000000000000:container-instance/demo/abc123"


class FakeEC2:
    def __init__(self, instances):
        self.instances = instances
        self.calls = []

    def describe_instances(self, **kwargs):
        self.calls.append(kwargs)
        return {"Reservations": [{"Instances": self.instances}]}


class FakeECS:
    def __init__(self):
        self.updates = []
        self.described = []

    def update_service(self, **kwargs):
        self.updates.append(kwargs)

    def list_container_instances(self, cluster):
        return {"containerInstanceArns": [CI_ARN]}

    def describe_container_instances(self, cluster, containerInstances):
        self.described.append((cluster, containerInstances))
        return {
            "containerInstances": [
                {"containerInstanceArn": arn, "ec2InstanceId": "i-0demo"}
                for arn in containerInstances
            ]
        }


def test_container_instance_id_takes_third_field():
    assert container_instance_id(CI_ARN) == "abc123"


def test_container_instance_id_rejects_short_arn():
    with pytest.raises(ValueError):
        container_instance_id("no-slashes")


def test_cluster_name_from_arn():
    assert cluster_name(CLUSTER_ARN) == "demo"


def test_cluster_name_rejects_malformed():
    with pytest.raises(ValueError):
        cluster_name("arn:aws:ecs:service/x")


def test_restart_service_with_desired_count():
    ecs = FakeECS()
    restart_service(ecs, CLUSTER_ARN, 2, "svc")
    assert ecs.updates == [
        {"cluster": CLUSTER_ARN, "service": "svc", "forceNewDeployment": True, "desiredCount": 2}
    ]


def test_restart_daemon_service_omits_desired_count():
    ecs = FakeECS()
    restart_daemon_service(ecs, CLUSTER_ARN, "svc")
    assert "desiredCount" not in ecs.updates[0]
    assert ecs.updates[0]["forceNewDeployment"] is True


def test_get_container_instances():
    ecs = FakeECS()
    assert get_container_instance_arns(ecs, CLUSTER_ARN) == [CI_ARN]
    result = get_container_instances(ecs, CLUSTER_ARN)
    assert result == [ContainerInstance(CI_ARN, "abc123", "i-0demo")]
    assert ecs.described == [(CLUSTER_ARN, [CI_ARN])]


def test_describe_and_private_dns():
    ec2 = FakeEC2([{"PrivateDnsName": "ip-10-0-0-1.internal"}])
    assert get_instance_private_dns(ec2, "i-1") == "ip-10-0-0-1.internal"
    describe_instances(ec2, ("i-2",))
    assert ec2.calls == [{"InstanceIds": ["i-1"]}, {"InstanceIds": ["i-2"]}]


def test_get_eks_instances_filters_by_cluster_tag():
    ec2 = FakeEC2([{"PrivateDnsName": "node-a"}, {}])
    result = get_eks_instances(ec2, "my-cluster")
    assert result == [EKSInstance("node-a"), EKSInstance(None)]
    assert ec2.calls[0]["Filters"] == [
        {"Name": "tag:aws:eks:cluster-name", "Values": ["my-cluster"]}
    ]


def test_instance_identity_is_cached():
    calls = []

    def fetch():
        calls.append(1)
        return {"instanceId": "i-9", "imageId": "ami-9", "instanceType": "t3.micro"}

    identity = InstanceIdentity(fetch)
    assert identity.instance_id() == "i-9"
    assert identity.image_id() == "ami-9"
    assert identity.instance_type() == "t3.micro"
    assert len(calls) == 1


def test_instance_identity_failure_raises():
    def fetch():
        raise OSError("unreachable")

    with pytest.raises(RuntimeError):
        InstanceIdentity(fetch).instance_id()