"""Tests related to awsmgr.ec2.catalog and awsmgr.ec2.images modules."""

import mock
import pytest
from botocore.exceptions import ClientError

from awsmgr.ec2 import catalog
from awsmgr.ec2.images import latest_ami, root_device_name
from awsmgr.errors import ImageNotFoundError
from awsmgr.types import InstanceTypeOption


@pytest.mark.parametrize("arch", catalog.ARCHITECTURES)
def test_instance_types_per_arch(arch):
    options = catalog.instance_types(arch)
    assert options
    assert len({o.instance_type for o in options}) == len(options)


def test_unknown_arch():
    with pytest.raises(ValueError, match="x86_64, arm64"):
        catalog.instance_types("mips")


@pytest.mark.parametrize(
    ["option", "suitable"],
    [
        pytest.param(
            InstanceTypeOption("t3.micro", 2, 1.0, ai_caveat="too small"),
            False,
            id="explicit-caveat",
        ),
        pytest.param(
            InstanceTypeOption("x1.custom", 2, 4.0), False, id="low-ram"
        ),
        pytest.param(
            InstanceTypeOption("m7i.large", 2, 8.0), True, id="enough-ram"
        ),
    ],
)
def test_ai_suitability(option, suitable):
    assert (catalog.ai_suitability(option) is None) == suitable


def test_custom_type_assumes_small_machine():
    option = catalog.custom_instance_type("p3.2xlarge")
    assert option.instance_type == "p3.2xlarge"
    assert option.ram == "4.0 GiB"
    assert catalog.ai_suitability(option)


class TestLatestAmi:
    """Tests for latest_ami."""

    def test_newest_by_creation_date(self):
        client = mock.MagicMock()
        client.describe_images.return_value = {
            "Images": [
                {"ImageId": "ami-old", "CreationDate": "2024-01-01T00:00:00"},
                {"ImageId": "ami-new", "CreationDate": "2025-03-01T00:00:00"},
                {"ImageId": "ami-mid", "CreationDate": "2024-06-01T00:00:00"},
            ]
        }
        assert latest_ami(client, "1234", "debian-12-*", "arm64") == "ami-new"
        filters = client.describe_images.call_args[1]["Filters"]
        assert {"Name": "architecture", "Values": ["arm64"]} in filters

    def test_nothing_found(self):
        client = mock.MagicMock()
        client.describe_images.return_value = {"Images": []}
        assert latest_ami(client, "1234", "nothing-*") is None

    def test_lookup_error(self):
        client = mock.MagicMock()
        client.describe_images.side_effect = ClientError(
            {"Error": {"Code": "AuthFailure"}}, "DescribeImages"
        )
        assert latest_ami(client, "1234", "debian-12-*") is None


def test_root_device_name_missing_image():
    client = mock.MagicMock()
    client.describe_images.return_value = {"Images": []}
    with pytest.raises(ImageNotFoundError):
        root_device_name(client, "ami-gone")
