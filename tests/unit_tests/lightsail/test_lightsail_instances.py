"""Tests related to awsmgr.lightsail.instances module."""

import mock
import pytest
from botocore.exceptions import ClientError

from awsmgr.errors import CloudError, ResourceNotFoundError
from awsmgr.lightsail import instances
from awsmgr.types import BundleOption, PollSettings

FAST = PollSettings(interval=0, max_attempts=3)


def _instance(state="running", **kwargs):
    instance = {"name": "LS-1", "state": {"name": state}}
    instance.update(kwargs)
    return {"instance": instance}


@pytest.fixture(name="client")
def client_fixture():
    return mock.MagicMock()


def test_list_bundles_filters_and_sorts(client):
    client.get_bundles.return_value = {
        "bundles": [
            {"bundleId": "medium_3_0", "price": 20.0, "ramSizeInGb": 4.0,
             "cpuCount": 2, "isActive": True,
             "supportedPlatforms": ["LINUX_UNIX"]},
            {"bundleId": "nano_3_0", "price": 3.5, "ramSizeInGb": 0.5,
             "cpuCount": 2, "isActive": True,
             "supportedPlatforms": ["LINUX_UNIX"]},
            {"bundleId": "old_1_0", "price": 1.0, "ramSizeInGb": 0.5,
             "cpuCount": 1, "isActive": False},
            {"bundleId": "nano_win_3_0", "price": 8.0, "ramSizeInGb": 0.5,
             "cpuCount": 2, "isActive": True,
             "supportedPlatforms": ["WINDOWS"]},
        ]
    }
    assert instances.list_bundles(client) == [
        BundleOption("nano_3_0", 3.5, 0.5, 2),
        BundleOption("medium_3_0", 20.0, 4.0, 2),
    ]


def test_list_blueprints(client):
    client.get_blueprints.return_value = {
        "blueprints": [
            {"blueprintId": "ubuntu_24_04", "platform": "LINUX_UNIX"},
            {"blueprintId": "windows_2022", "platform": "WINDOWS"},
            {"blueprintId": "debian_12", "platform": "LINUX_UNIX"},
        ]
    }
    assert instances.list_blueprints(client) == ["debian_12", "ubuntu_24_04"]


class TestCreate:
    """Tests for instance creation and readiness."""

    def test_create_without_user_data(self, client):
        instances.create_instance(client, "LS-1", "us-east-1a")
        client.create_instances.assert_called_once_with(
            instanceNames=["LS-1"],
            availabilityZone="us-east-1a",
            blueprintId="debian_12",
            bundleId="nano_3_0",
        )

    def test_create_failure(self, client):
        client.create_instances.side_effect = ClientError(
            {"Error": {"Code": "InvalidInputException"}}, "CreateInstances"
        )
        with pytest.raises(CloudError):
            instances.create_instance(client, "LS-1", "us-east-1a")

    def test_wait_for_running(self, client):
        client.get_instance.side_effect = [
            ClientError({"Error": {"Code": "NotFoundException"}}, "Get"),
            _instance("pending"),
            _instance("running"),
        ]
        outcome = instances.wait_for_running(client, "LS-1", settings=FAST)
        assert outcome.converged
        assert outcome.attempts == 3

    def test_wait_for_running_timeout(self, client):
        client.get_instance.return_value = _instance("pending")
        outcome = instances.wait_for_running(client, "LS-1", settings=FAST)
        assert outcome.timed_out
        assert "LS-1" in outcome.summary()

    def test_open_all_ports(self, client):
        instances.open_all_ports(client, "LS-1")
        ports = client.put_instance_public_ports.call_args[1]["portInfos"]
        assert {p["protocol"] for p in ports} == {"tcp", "udp"}
        assert all(
            p["fromPort"] == 0 and p["toPort"] == 65535 for p in ports
        )


def test_get_instance_not_found(client):
    client.get_instance.side_effect = ClientError(
        {"Error": {"Code": "NotFoundException"}}, "GetInstance"
    )
    with pytest.raises(ResourceNotFoundError):
        instances.get_instance(client, "LS-9")


def test_list_instances_pages(client):
    client.get_instances.side_effect = [
        {
            "instances": [
                {
                    "name": "a",
                    "state": {"name": "running"},
                    "publicIpAddress": "1.2.3.4",
                    "ipv6Addresses": ["2600::1"],
                    "location": {"availabilityZone": "eu-west-1a"},
                    "bundleId": "nano_3_0",
                }
            ],
            "nextPageToken": "t",
        },
        {"instances": [{"name": "b", "state": {"name": "stopped"}}]},
    ]
    rows = instances.list_instances_in_region(client, "eu-west-1")
    assert [(r.name, r.state, r.ipv6) for r in rows] == [
        ("a", "running", "2600::1"),
        ("b", "stopped", ""),
    ]
    assert client.get_instances.call_args_list[1] == mock.call(pageToken="t")


def test_list_instances_across_regions(conn):
    conn.client("lightsail", "us-east-1").get_instances.return_value = {
        "instances": [{"name": "east"}]
    }
    conn.client("lightsail", "ap-northeast-1").get_instances.return_value = {
        "instances": [{"name": "tokyo"}]
    }
    conn.client("lightsail", "eu-central-1").get_instances.side_effect = (
        RuntimeError("timeout")
    )
    rows = instances.list_instances(
        conn, ["us-east-1", "eu-central-1", "ap-northeast-1"]
    )
    assert [r.name for r in rows] == ["tokyo", "east"]


@pytest.mark.parametrize(
    ["port", "expected"],
    [
        ({"fromPort": 0, "toPort": 65535, "protocol": "udp"}, "all (udp)"),
        ({"fromPort": 0, "toPort": 0, "protocol": "all"}, "all (all)"),
        ({"fromPort": 80, "toPort": 80, "protocol": "tcp"}, "80/tcp"),
        ({"fromPort": 8000, "toPort": 8080, "protocol": "tcp"},
         "8000-8080/tcp"),
    ],
)
def test_describe_port(port, expected):
    assert instances.describe_port(port) == expected


def test_get_instance_details(client):
    client.get_instance.return_value = _instance(
        isStaticIp=True,
        bundleId="nano_3_0",
        hardware={"cpuCount": 2, "ramSizeInGb": 0.5},
        networking={"ports": [{"fromPort": 22, "toPort": 22,
                               "protocol": "tcp"}]},
    )
    details = instances.get_instance_details(client, "LS-1")
    assert details["is_static_ip"] is True
    assert details["cpu_count"] == 2
    assert details["ports"] == ["22/tcp"]


class TestStaticIp:
    """Tests for the static IP lifecycle."""

    def test_attach_new_static_ip(self, client):
        client.get_instance.side_effect = [
            _instance(isStaticIp=False),
            _instance(isStaticIp=True),
        ]
        outcome = instances.attach_new_static_ip(
            client, "LS-1", settings=FAST
        )
        assert outcome.converged
        client.allocate_static_ip.assert_called_once_with(
            staticIpName="Static-LS-1"
        )
        client.attach_static_ip.assert_called_once_with(
            staticIpName="Static-LS-1", instanceName="LS-1"
        )

    def test_release_after_detach_confirmed(self, client):
        client.get_static_ips.return_value = {
            "staticIps": [
                {"name": "Other", "attachedTo": "LS-2"},
                {"name": "Static-LS-1", "attachedTo": "LS-1"},
            ]
        }
        client.get_static_ip.side_effect = [
            {"staticIp": {"isAttached": True}},
            {"staticIp": {"isAttached": False}},
        ]
        assert instances.release_static_ip(client, "LS-1", settings=FAST)
        client.detach_static_ip.assert_called_once_with(
            staticIpName="Static-LS-1"
        )
        client.release_static_ip.assert_called_once_with(
            staticIpName="Static-LS-1"
        )

    def test_not_released_while_attached(self, client):
        client.get_static_ips.return_value = {
            "staticIps": [{"name": "Static-LS-1", "attachedTo": "LS-1"}]
        }
        client.get_static_ip.return_value = {"staticIp": {"isAttached": True}}
        assert not instances.release_static_ip(client, "LS-1", settings=FAST)
        client.release_static_ip.assert_not_called()

    def test_no_static_ip(self, client):
        client.get_static_ips.return_value = {"staticIps": []}
        assert not instances.release_static_ip(client, "LS-1")
        client.detach_static_ip.assert_not_called()

    def test_delete_releases_static_ip_first(self, client):
        client.get_static_ips.return_value = {
            "staticIps": [{"name": "Static-LS-1", "attachedTo": "LS-1"}]
        }
        client.get_static_ip.return_value = {"staticIp": {"isAttached": False}}
        instances.delete_instance(client, "LS-1", settings=FAST)
        names = [c[0] for c in client.method_calls]
        assert names.index("release_static_ip") < names.index(
            "delete_instance"
        )
