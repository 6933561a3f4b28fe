# This file is part of awsmgr. See LICENSE file for license information.
"""Lightsail instances, firewall and static IPs."""

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
from awsmgr.errors import CloudError, ResourceNotFoundError, ResourceType
from awsmgr.fanout import scan_regions
from awsmgr.session import Connection
from awsmgr.types import BundleOption, LightsailInstanceRow, PollSettings

log = logging.getLogger(__name__)

DEFAULT_BUNDLE = "nano_3_0"
DEFAULT_BLUEPRINT = "debian_12"
RUNNING = "running"

ALL_PORTS = [
    {"fromPort": 0, "toPort": 65535, "protocol": "tcp"},
    {"fromPort": 0, "toPort": 65535, "protocol": "udp"},
]


def list_bundles(client) -> List[BundleOption]:
    """List active non-Windows bundles, cheapest first."""
    bundles = []
    for bundle in client.get_bundles()["bundles"]:
        if not bundle.get("isActive", True):
            continue
        platforms = bundle.get("supportedPlatforms") or []
        if platforms and platforms[0] == "WINDOWS":
            continue
        bundles.append(
            BundleOption(
                bundle_id=bundle["bundleId"],
                price=float(bundle.get("price", 0)),
                ram_gb=float(bundle.get("ramSizeInGb", 0)),
                cpu_count=int(bundle.get("cpuCount", 0)),
            )
        )
    return sorted(bundles, key=lambda b: b.price)


def list_blueprints(client) -> List[str]:
    """List Linux/Unix blueprint ids, sorted."""
    return sorted(
        blueprint["blueprintId"]
        for blueprint in client.get_blueprints()["blueprints"]
        if blueprint.get("platform") == "LINUX_UNIX"
    )


def create_instance(
    client,
    name: str,
    availability_zone: str,
    *,
    bundle_id: str = DEFAULT_BUNDLE,
    blueprint_id: str = DEFAULT_BLUEPRINT,
    user_data: Optional[str] = None,
):
    """Create one Lightsail instance.

    Raises:
        CloudError: CreateInstances failed
    """
    kwargs = {
        "instanceNames": [name],
        "availabilityZone": availability_zone,
        "blueprintId": blueprint_id,
        "bundleId": bundle_id,
    }
    if user_data:
        kwargs["userData"] = user_data
    log.debug("creating lightsail instance %s in %s", name, availability_zone)
    try:
        client.create_instances(**kwargs)
    except ClientError as e:
        raise CloudError(e) from e


def get_instance(client, name: str) -> Dict[str, Any]:
    """Return the GetInstance description of ``name``.

    Raises:
        ResourceNotFoundError: no such instance
    """
    try:
        return client.get_instance(instanceName=name)["instance"]
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "NotFoundException":
            raise ResourceNotFoundError(
                ResourceType.INSTANCE, resource_name=name
            ) from e
        raise


def wait_for_running(
    client,
    name: str,
    *,
    settings: Optional[PollSettings] = None,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> ConvergenceOutcome:
    """Poll until instance ``name`` is running."""
    request = ConvergenceRequest.from_settings(
        ResourceKind.INSTANCE_STATE,
        lambda instance: instance.get("state", {}).get("name") == RUNNING,
        settings or DEFAULT_POLL_SETTINGS["lightsail_running"],
        description="Lightsail instance {} to be running".format(name),
    )
    return poll(
        request,
        lambda: get_instance(client, name),
        cancel=cancel,
        observer=observer,
    )


def open_all_ports(client, name: str):
    """Open TCP and UDP 0-65535 on the instance firewall."""
    log.debug("opening all ports on %s", name)
    client.put_instance_public_ports(instanceName=name, portInfos=ALL_PORTS)


def row_from_instance(region: str, instance: Dict) -> LightsailInstanceRow:
    """Turn a GetInstances entry into a listing row."""
    ipv6 = instance.get("ipv6Addresses") or [""]
    return LightsailInstanceRow(
        region=region,
        name=instance.get("name", ""),
        state=instance.get("state", {}).get("name", ""),
        ip=instance.get("publicIpAddress", ""),
        ipv6=ipv6[0],
        availability_zone=instance.get("location", {}).get(
            "availabilityZone", ""
        ),
        bundle=instance.get("bundleId", ""),
    )


def list_instances_in_region(
    client, region: str
) -> List[LightsailInstanceRow]:
    """List the Lightsail instances of one region."""
    rows = []
    kwargs: Dict[str, str] = {}
    while True:
        response = client.get_instances(**kwargs)
        rows.extend(
            row_from_instance(region, instance)
            for instance in response.get("instances", [])
        )
        token = response.get("nextPageToken")
        if not token:
            return rows
        kwargs["pageToken"] = token


def list_instances(
    conn: Connection,
    regions: Iterable[str],
    *,
    max_workers: Optional[int] = None,
) -> List[LightsailInstanceRow]:
    """List Lightsail instances across ``regions``, sorted by region."""
    return scan_regions(
        regions,
        lambda region: list_instances_in_region(
            conn.client("lightsail", region), region
        ),
        max_workers=max_workers,
    )


def describe_port(port: Dict) -> str:
    """Summarize one firewall rule.

    >>> describe_port({"fromPort": 0, "toPort": 65535, "protocol": "tcp"})
    'all (tcp)'
    >>> describe_port({"fromPort": 22, "toPort": 22, "protocol": "tcp"})
    '22/tcp'
    """
    from_port = port.get("fromPort", 0)
    to_port = port.get("toPort", 0)
    protocol = port.get("protocol", "")
    if from_port == 0 and (to_port == 65535 or protocol in ("all", "-1")):
        return "all ({})".format(protocol)
    if to_port and to_port != from_port:
        return "{}-{}/{}".format(from_port, to_port, protocol)
    return "{}/{}".format(from_port, protocol)


def get_instance_details(client, name: str) -> Dict[str, Any]:
    """Return a flat summary of instance ``name`` for display."""
    instance = get_instance(client, name)
    hardware = instance.get("hardware", {})
    ports = instance.get("networking", {}).get("ports", [])
    return {
        "name": instance.get("name", name),
        "availability_zone": instance.get("location", {}).get(
            "availabilityZone", ""
        ),
        "bundle": instance.get("bundleId", ""),
        "cpu_count": hardware.get("cpuCount", 0),
        "ram_gb": hardware.get("ramSizeInGb", 0.0),
        "state": instance.get("state", {}).get("name", ""),
        "ip": instance.get("publicIpAddress", ""),
        "is_static_ip": bool(instance.get("isStaticIp")),
        "ports": [describe_port(port) for port in ports],
    }


def start_instance(client, name: str):
    """Start instance ``name``."""
    client.start_instance(instanceName=name)


def stop_instance(client, name: str):
    """Stop instance ``name``."""
    client.stop_instance(instanceName=name)


def reboot_instance(client, name: str):
    """Reboot instance ``name``."""
    client.reboot_instance(instanceName=name)


def static_ip_name_for(client, name: str) -> Optional[str]:
    """Return the name of the static IP attached to ``name``, if any."""
    kwargs: Dict[str, str] = {}
    while True:
        response = client.get_static_ips(**kwargs)
        for static_ip in response.get("staticIps", []):
            if static_ip.get("attachedTo") == name:
                return static_ip["name"]
        token = response.get("nextPageToken")
        if not token:
            return None
        kwargs["pageToken"] = token


def _static_ip_request(
    description: str,
    predicate,
    settings: Optional[PollSettings],
) -> ConvergenceRequest:
    return ConvergenceRequest.from_settings(
        ResourceKind.STATIC_IP_CONSISTENCY,
        predicate,
        settings or DEFAULT_POLL_SETTINGS["static_ip"],
        description=description,
    )


def attach_new_static_ip(
    client,
    name: str,
    *,
    settings: Optional[PollSettings] = None,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> ConvergenceOutcome:
    """Allocate ``Static-<name>`` and attach it to instance ``name``.

    Returns:
        outcome of waiting for the instance to report a static IP
    """
    ip_name = "Static-{}".format(name)
    log.debug("allocating static ip %s", ip_name)
    try:
        client.allocate_static_ip(staticIpName=ip_name)
        client.attach_static_ip(staticIpName=ip_name, instanceName=name)
    except ClientError as e:
        raise CloudError(e) from e
    request = _static_ip_request(
        "static IP {} to attach to {}".format(ip_name, name),
        lambda instance: bool(instance.get("isStaticIp")),
        settings,
    )
    return poll(
        request,
        lambda: get_instance(client, name),
        cancel=cancel,
        observer=observer,
    )


def release_static_ip(
    client,
    name: str,
    *,
    settings: Optional[PollSettings] = None,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> bool:
    """Detach and release the static IP attached to instance ``name``.

    The address is released only after it is confirmed detached.

    Returns:
        True if a static IP was released
    """
    ip_name = static_ip_name_for(client, name)
    if ip_name is None:
        log.debug("no static ip attached to %s", name)
        return False

    client.detach_static_ip(staticIpName=ip_name)
    request = _static_ip_request(
        "static IP {} to detach".format(ip_name),
        lambda static_ip: not static_ip.get("isAttached"),
        settings,
    )
    outcome = poll(
        request,
        lambda: client.get_static_ip(staticIpName=ip_name)["staticIp"],
        cancel=cancel,
        observer=observer,
    )
    if not outcome:
        log.warning("%s; not releasing it", outcome.summary())
        return False
    client.release_static_ip(staticIpName=ip_name)
    log.info("Released static IP %s", ip_name)
    return True


def delete_instance(
    client,
    name: str,
    *,
    settings: Optional[PollSettings] = None,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
):
    """Release any static IP of instance ``name``, then delete it."""
    release_static_ip(
        client, name, settings=settings, cancel=cancel, observer=observer
    )
    log.debug("deleting lightsail instance %s", name)
    try:
        client.delete_instance(instanceName=name)
    except ClientError as e:
        raise CloudError(e) from e
