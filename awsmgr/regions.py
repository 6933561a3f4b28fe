# This file is part of awsmgr. See LICENSE file for license information.
"""Region discovery and opt-in."""

import logging
import threading
from typing import Callable, List, Optional

from botocore.exceptions import ClientError

from awsmgr.convergence import (
    DEFAULT_POLL_SETTINGS,
    ConvergenceOutcome,
    ConvergenceRequest,
    PollObserver,
    ResourceKind,
    RiskClass,
    poll,
)
from awsmgr.errors import CloudError, ResourceNotFoundError, ResourceType
from awsmgr.session import Connection
from awsmgr.types import PollSettings, RegionInfo

log = logging.getLogger(__name__)

OPTED_IN = "opted-in"
ENABLING = "enabling"

# enable-region answers these when the region is already enabled or being
# enabled; neither needs another request.
_ALREADY_REQUESTED_CODES = (
    "ValidationException",
    "ResourceAlreadyExistsException",
    "ConflictException",
)

REGION_LABELS = {
    "af-south-1": "Africa (Cape Town)",
    "ap-east-1": "Asia Pacific (Hong Kong)",
    "ap-east-2": "Asia Pacific (Taipei)",
    "ap-northeast-1": "Asia Pacific (Tokyo)",
    "ap-northeast-2": "Asia Pacific (Seoul)",
    "ap-northeast-3": "Asia Pacific (Osaka)",
    "ap-south-1": "Asia Pacific (Mumbai)",
    "ap-south-2": "Asia Pacific (Hyderabad)",
    "ap-southeast-1": "Asia Pacific (Singapore)",
    "ap-southeast-2": "Asia Pacific (Sydney)",
    "ap-southeast-3": "Asia Pacific (Jakarta)",
    "ap-southeast-4": "Asia Pacific (Melbourne)",
    "ap-southeast-5": "Asia Pacific (Malaysia)",
    "ap-southeast-6": "Asia Pacific (New Zealand)",
    "ap-southeast-7": "Asia Pacific (Thailand)",
    "ca-central-1": "Canada (Central)",
    "ca-west-1": "Canada West (Calgary)",
    "eu-central-1": "Europe (Frankfurt)",
    "eu-central-2": "Europe (Zurich)",
    "eu-north-1": "Europe (Stockholm)",
    "eu-south-1": "Europe (Milan)",
    "eu-south-2": "Europe (Spain)",
    "eu-west-1": "Europe (Ireland)",
    "eu-west-2": "Europe (London)",
    "eu-west-3": "Europe (Paris)",
    "il-central-1": "Israel (Tel Aviv)",
    "me-central-1": "Middle East (UAE)",
    "me-south-1": "Middle East (Bahrain)",
    "mx-central-1": "Mexico (Central)",
    "sa-east-1": "South America (Sao Paulo)",
    "us-east-1": "US East (N. Virginia)",
    "us-east-2": "US East (Ohio)",
    "us-west-1": "US West (N. California)",
    "us-west-2": "US West (Oregon)",
}

Confirm = Callable[[str, bool], bool]


def _accept_default(_question: str, default: bool) -> bool:
    return default


def region_label(name: str) -> str:
    """Return a display label for a region name."""
    return REGION_LABELS.get(name, "Unknown region")


def list_ec2_regions(conn: Connection) -> List[RegionInfo]:
    """List every EC2 region, enabled or not, sorted by name."""
    response = conn.client("ec2").describe_regions(AllRegions=True)
    regions = [
        RegionInfo(name=r["RegionName"], status=r.get("OptInStatus", ""))
        for r in response["Regions"]
        if r.get("RegionName")
    ]
    return sorted(regions, key=lambda r: r.name)


def list_lightsail_regions(conn: Connection) -> List[str]:
    """List Lightsail region names, sorted."""
    response = conn.client("lightsail").get_regions()
    return sorted(r["name"] for r in response["regions"] if r.get("name"))


def get_region_status(client, region: str) -> str:
    """Return the opt-in status of ``region``.

    Args:
        client: EC2 client in any enabled region
        region: region name
    """
    regions = client.describe_regions(RegionNames=[region], AllRegions=True)[
        "Regions"
    ]
    if not regions:
        raise ResourceNotFoundError(ResourceType.REGION, resource_name=region)
    return regions[0].get("OptInStatus", "")


def request_region_opt_in(conn: Connection, region: str) -> bool:
    """Ask AWS to enable ``region`` for the account.

    Returns:
        True if a request was sent, False if AWS reports the region is
        already enabled or being enabled.

    Raises:
        CloudError: the request was refused for any other reason
    """
    log.debug("requesting opt-in for region %s", region)
    try:
        conn.client("account").enable_region(RegionName=region)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        if code in _ALREADY_REQUESTED_CODES:
            log.info(
                "Region %s needs no state change (%s), continuing",
                region,
                code,
            )
            return False
        raise CloudError(
            "Could not enable region {}: {}".format(region, e)
        ) from e
    return True


def wait_for_region_opt_in(
    conn: Connection,
    region: str,
    *,
    settings: Optional[PollSettings] = None,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> ConvergenceOutcome:
    """Poll the opt-in status of ``region`` until it is opted in."""
    client = conn.client("ec2")
    request = ConvergenceRequest.from_settings(
        ResourceKind.REGION_OPT_IN,
        lambda status: status == OPTED_IN,
        settings or DEFAULT_POLL_SETTINGS["region_opt_in"],
        description="region {} to be enabled".format(region),
    )
    return poll(
        request,
        lambda: get_region_status(client, region),
        cancel=cancel,
        observer=observer,
    )


def ensure_region_opt_in(
    conn: Connection,
    region: RegionInfo,
    *,
    confirm: Confirm = _accept_default,
    settings: Optional[PollSettings] = None,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> bool:
    """Make sure instances can be launched in ``region``.

    Regions that need no opt-in return immediately. A region that is
    already enabling is only waited for. Otherwise the user is asked before
    the opt-in request is sent. When the wait times out the user may carry
    on anyway; that is a best-effort step, so the prompt defaults to yes.

    Args:
        conn: Connection to use
        region: RegionInfo with the status from the region listing
        confirm: callable(question, default) -> bool
        settings: poll settings, defaults to the region_opt_in entry
        cancel: optional cancellation event for the wait
        observer: optional PollObserver for progress

    Returns:
        True if the caller should go on using the region
    """
    if region.enabled:
        return True

    log.info("Region %s is %s", region.name, region.status)
    if region.status != ENABLING:
        if not confirm(
            "Region {} is {}. Ask AWS to enable it?".format(
                region.name, region.status
            ),
            False,
        ):
            return False
        request_region_opt_in(conn, region.name)

    outcome = wait_for_region_opt_in(
        conn,
        region.name,
        settings=settings,
        cancel=cancel,
        observer=observer,
    )
    if outcome.converged:
        return True
    if outcome.cancelled:
        return False
    return confirm(
        "{}. Ignore the status check and try anyway? This may fail".format(
            outcome.summary()
        ),
        RiskClass.BEST_EFFORT.default,
    )
