# This file is part of awsmgr. See LICENSE file for license information.
"""EC2 instance launch, listing, control and termination."""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from botocore.exceptions import ClientError

from awsmgr.convergence import (
    DEFAULT_POLL_SETTINGS,
    ConvergenceOutcome,
    ConvergenceRequest,
    PollObserver,
    ResourceKind,
    poll,
)
from awsmgr.ec2.images import root_device_name
from awsmgr.errors import CloudError, InstanceNotFoundError
from awsmgr.fanout import scan_regions
from awsmgr.session import Connection
from awsmgr.types import EC2InstanceRow, PollSettings

log = logging.getLogger(__name__)

RUNNING = "running"
STOPPED = "stopped"
TERMINATED = "terminated"


def build_run_args(
    image_id: str,
    instance_type: str = "t3.micro",
    *,
    count: int = 1,
    user_data: Optional[str] = None,
    security_group_id: Optional[str] = None,
    ipv6_subnet_id: Optional[str] = None,
    root_device: Optional[str] = None,
    disk_size_gb: int = 0,
    name: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the RunInstances arguments.

    Args:
        image_id: string, AMI ID to use
        instance_type: string, instance type to launch
        count: number of instances, at least 1
        user_data: string, user-data to pass to instance
        security_group_id: security group for the primary interface
        ipv6_subnet_id: subnet with IPv6 set up; requests one IPv6 address
        root_device: root device name of the AMI, needed for disk_size_gb
        disk_size_gb: root volume size, 0 keeps the AMI default
        name: optional Name tag

    Returns:
        dict of keyword arguments for RunInstances
    Raises: ValueError on invalid image_id
    """
    if not image_id:
        raise ValueError(
            "ec2 launch requires image_id param. Found: {}".format(image_id)
        )
    count = max(count, 1)
    args: Dict[str, Any] = {
        "ImageId": image_id,
        "InstanceType": instance_type,
        "MaxCount": count,
        "MinCount": count,
    }

    # boto3 base64 encodes UserData itself
    if user_data:
        args["UserData"] = user_data

    if name:
        args["TagSpecifications"] = [
            {
                "ResourceType": "instance",
                "Tags": [{"Key": "Name", "Value": name}],
            }
        ]

    if security_group_id or ipv6_subnet_id:
        interface: Dict[str, Any] = {
            "DeviceIndex": 0,
            "AssociatePublicIpAddress": True,
        }
        if security_group_id:
            interface["Groups"] = [security_group_id]
        if ipv6_subnet_id:
            interface["Ipv6AddressCount"] = 1
            interface["SubnetId"] = ipv6_subnet_id
        args["NetworkInterfaces"] = [interface]

    if disk_size_gb > 0 and root_device:
        args["BlockDeviceMappings"] = [
            {
                "DeviceName": root_device,
                "Ebs": {
                    "DeleteOnTermination": True,
                    "VolumeSize": disk_size_gb,
                    "VolumeType": "gp3",
                },
            }
        ]
    return args


def launch_instances(
    client,
    image_id: str,
    instance_type: str = "t3.micro",
    *,
    disk_size_gb: int = 0,
    **kwargs,
) -> List[str]:
    """Launch instances and return their ids.

    The root volume size is only applied when the AMI's root device name
    can be found. Other keyword arguments go to :func:`build_run_args`.

    Raises:
        CloudError: RunInstances failed
    """
    root_device = None
    if disk_size_gb > 0:
        root_device = root_device_name(client, image_id)
        if not root_device:
            log.warning(
                "Image %s has no root device name, keeping default disk",
                image_id,
            )
    args = build_run_args(
        image_id,
        instance_type,
        root_device=root_device,
        disk_size_gb=disk_size_gb,
        **kwargs,
    )
    log.debug("launching %d instance(s) of %s", args["MaxCount"], image_id)
    try:
        response = client.run_instances(**args)
    except ClientError as e:
        raise CloudError(e) from e
    return [instance["InstanceId"] for instance in response["Instances"]]


def _tag(instance: Dict, key: str) -> str:
    for tag in instance.get("Tags", []):
        if tag.get("Key") == key:
            return tag.get("Value", "")
    return ""


def _ipv6(instance: Dict) -> str:
    for interface in instance.get("NetworkInterfaces", []):
        for address in interface.get("Ipv6Addresses", []):
            return address.get("Ipv6Address", "")
    return ""


def row_from_instance(region: str, instance: Dict) -> EC2InstanceRow:
    """Turn a DescribeInstances entry into a listing row."""
    return EC2InstanceRow(
        region=region,
        instance_id=instance["InstanceId"],
        state=instance.get("State", {}).get("Name", ""),
        name=_tag(instance, "Name"),
        instance_type=instance.get("InstanceType", ""),
        public_ip=instance.get("PublicIpAddress", ""),
        private_ip=instance.get("PrivateIpAddress", ""),
        ipv6=_ipv6(instance),
        availability_zone=instance.get("Placement", {}).get(
            "AvailabilityZone", ""
        ),
    )


def list_instances_in_region(client, region: str) -> List[EC2InstanceRow]:
    """List the instances of one region, leaving out terminated ones."""
    rows = []
    paginator = client.get_paginator("describe_instances")
    for page in paginator.paginate():
        for reservation in page["Reservations"]:
            for instance in reservation["Instances"]:
                row = row_from_instance(region, instance)
                if row.state != TERMINATED:
                    rows.append(row)
    return rows


def list_instances(
    conn: Connection,
    regions: Iterable[str],
    *,
    max_workers: Optional[int] = None,
) -> List[EC2InstanceRow]:
    """List instances across ``regions`` concurrently, sorted by region.

    Regions that cannot be queried are left out.
    """
    return scan_regions(
        regions,
        lambda region: list_instances_in_region(
            conn.client("ec2", region), region
        ),
        max_workers=max_workers,
    )


def describe_instance(client, instance_id: str) -> Dict:
    """Return the DescribeInstances entry of ``instance_id``.

    Raises:
        InstanceNotFoundError: no such instance
    """
    try:
        response = client.describe_instances(InstanceIds=[instance_id])
    except ClientError as e:
        if "InvalidInstanceID" in e.response.get("Error", {}).get("Code", ""):
            raise InstanceNotFoundError(instance_id) from e
        raise CloudError(e) from e
    for reservation in response.get("Reservations", []):
        for instance in reservation.get("Instances", []):
            return instance
    raise InstanceNotFoundError(instance_id)


def volume_summaries(client, instance: Dict) -> List[str]:
    """Describe the EBS volumes attached to ``instance``.

    Returns:
        list like ["/dev/xvda [8 GB gp3]"]; volumes that cannot be
        described are left out
    """
    summaries = []
    for mapping in instance.get("BlockDeviceMappings", []):
        volume_id = mapping.get("Ebs", {}).get("VolumeId")
        if not volume_id:
            continue
        try:
            volumes = client.describe_volumes(VolumeIds=[volume_id])[
                "Volumes"
            ]
        except ClientError as e:
            log.debug("Could not describe volume %s: %s", volume_id, e)
            continue
        if volumes:
            summaries.append(
                "{} [{} GB {}]".format(
                    mapping.get("DeviceName", "?"),
                    volumes[0]["Size"],
                    volumes[0]["VolumeType"],
                )
            )
    return summaries


def describe_instance_details(client, instance_id: str) -> Dict[str, Any]:
    """Return the instance description plus a summary of its volumes."""
    instance = describe_instance(client, instance_id)
    return {
        "instance": instance,
        "volumes": volume_summaries(client, instance),
    }


def start_instance(client, instance_id: str):
    """Start ``instance_id``."""
    log.debug("starting instance %s", instance_id)
    client.start_instances(InstanceIds=[instance_id])


def stop_instance(client, instance_id: str):
    """Stop ``instance_id``."""
    log.debug("stopping instance %s", instance_id)
    client.stop_instances(InstanceIds=[instance_id])


def reboot_instance(client, instance_id: str):
    """Reboot ``instance_id``."""
    log.debug("restarting instance %s", instance_id)
    client.reboot_instances(InstanceIds=[instance_id])


def get_instance_state(client, instance_id: str) -> str:
    """Return the state name of ``instance_id``."""
    return describe_instance(client, instance_id)["State"]["Name"]


def wait_for_instance_state(
    client,
    instance_id: str,
    target: str = RUNNING,
    *,
    settings: Optional[PollSettings] = None,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> ConvergenceOutcome:
    """Poll ``instance_id`` until it reaches the ``target`` state.

    Defaults to the instance_terminated settings when waiting for
    termination and to instance_running otherwise.
    """
    if settings is None:
        key = (
            "instance_terminated"
            if target == TERMINATED
            else "instance_running"
        )
        settings = DEFAULT_POLL_SETTINGS[key]
    request = ConvergenceRequest.from_settings(
        ResourceKind.INSTANCE_STATE,
        lambda state: state == target,
        settings,
        description="instance {} to be {}".format(instance_id, target),
    )
    return poll(
        request,
        lambda: get_instance_state(client, instance_id),
        cancel=cancel,
        observer=observer,
    )


def release_elastic_ips(
    client,
    instance_id: str,
    *,
    settings: Optional[PollSettings] = None,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> List[str]:
    """Disassociate and release the Elastic IPs of ``instance_id``.

    An address is only released once it is confirmed detached. Addresses
    that stay attached are kept and a warning is logged.

    Returns:
        list of released public IPs
    """
    addresses = client.describe_addresses(
        Filters=[{"Name": "instance-id", "Values": [instance_id]}]
    )["Addresses"]
    released = []
    for address in addresses:
        allocation_id = address["AllocationId"]
        public_ip = address.get("PublicIp", allocation_id)
        if address.get("AssociationId"):
            client.disassociate_address(
                AssociationId=address["AssociationId"]
            )

        def check(allocation_id=allocation_id):
            return client.describe_addresses(AllocationIds=[allocation_id])[
                "Addresses"
            ][0]

        request = ConvergenceRequest.from_settings(
            ResourceKind.STATIC_IP_CONSISTENCY,
            lambda addr: not addr.get("AssociationId"),
            settings or DEFAULT_POLL_SETTINGS["static_ip"],
            description="Elastic IP {} to detach".format(public_ip),
        )
        outcome = poll(request, check, cancel=cancel, observer=observer)
        if not outcome:
            log.warning(
                "%s; not releasing %s", outcome.summary(), public_ip
            )
            continue
        client.release_address(AllocationId=allocation_id)
        log.info("Released Elastic IP %s", public_ip)
        released.append(public_ip)
    return released


def terminate_instance(
    client,
    instance_id: str,
    *,
    release_addresses: bool = True,
    wait: bool = False,
    settings: Optional[PollSettings] = None,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> Optional[ConvergenceOutcome]:
    """Terminate ``instance_id``.

    Args:
        client: EC2 client in the instance's region
        instance_id: instance to terminate
        release_addresses: release Elastic IPs first
        wait: poll until the instance is terminated
        settings: poll settings for the termination wait
        cancel: optional cancellation event
        observer: optional PollObserver

    Returns:
        outcome of the termination wait, None when not waiting
    """
    if release_addresses:
        release_elastic_ips(
            client, instance_id, cancel=cancel, observer=observer
        )
    log.debug("terminating instance %s", instance_id)
    try:
        client.terminate_instances(InstanceIds=[instance_id])
    except ClientError as e:
        raise CloudError(e) from e
    if not wait:
        return None
    return wait_for_instance_state(
        client,
        instance_id,
        TERMINATED,
        settings=settings,
        cancel=cancel,
        observer=observer,
    )
