# This file is part of awsmgr. See LICENSE file for license information.
"""Network preparation in a region's default Virtual Private Cloud (VPC)."""

import ipaddress
import logging
import threading
from typing import Dict, Iterable, Optional

from botocore.exceptions import ClientError

from awsmgr.convergence import (
    DEFAULT_POLL_SETTINGS,
    ConvergenceOutcome,
    ConvergenceRequest,
    PollObserver,
    ResourceKind,
    poll,
)
from awsmgr.errors import CloudError, CloudSetupError
from awsmgr.types import PollSettings

logger = logging.getLogger(__name__)

OPEN_ALL_GROUP_NAME = "open-all-ports"


def _associated_ipv6_cidr(resource: Dict) -> Optional[str]:
    """Return the associated IPv6 CIDR of a VPC or subnet description."""
    for assoc in resource.get("Ipv6CidrBlockAssociationSet", []):
        if assoc.get("Ipv6CidrBlockState", {}).get("State") == "associated":
            return assoc["Ipv6CidrBlock"]
    return None


def free_subnet_cidr(vpc_cidr: str, used: Iterable[str]) -> str:
    """Pick the first /64 of ``vpc_cidr`` that no subnet uses yet.

    Args:
        vpc_cidr: the VPC's IPv6 block, normally a /56
        used: IPv6 CIDRs already given to subnets

    Raises:
        CloudSetupError: malformed CIDR or no free /64 left
    """
    try:
        network = ipaddress.IPv6Network(vpc_cidr)
        taken = {ipaddress.IPv6Network(cidr) for cidr in used}
    except ValueError as e:
        raise CloudSetupError(
            "Could not understand Ipv6CidrBlock [{}]: {}".format(vpc_cidr, e)
        ) from e
    if network.prefixlen > 64:
        raise CloudSetupError(
            "IPv6 block {} is smaller than a /64".format(vpc_cidr)
        )
    for subnet in network.subnets(new_prefix=64):
        if subnet not in taken:
            return str(subnet)
    raise CloudSetupError("No free /64 left in {}".format(vpc_cidr))


class VPC:
    """Proxy for an existing AWS VPC, usually the region's default one."""

    def __init__(self, client, vpc_id: str):
        """Create a VPC proxy.

        Args:
            client: EC2 client in the VPC's region
            vpc_id: ID of the VPC
        """
        self.client = client
        self.id = vpc_id

    def __repr__(self):
        """Create string representation for class."""
        return "{}(vpc_id={})".format(self.__class__.__name__, self.id)

    @classmethod
    def default(cls, client) -> "VPC":
        """Return the region's default VPC.

        Raises:
            CloudSetupError: the region has no default VPC
        """
        vpcs = client.describe_vpcs(
            Filters=[{"Name": "isDefault", "Values": ["true"]}]
        )["Vpcs"]
        if not vpcs:
            raise CloudSetupError("No default VPC found in this region")
        return cls(client, vpcs[0]["VpcId"])

    def describe(self) -> Dict:
        """Return the current VPC description."""
        return self.client.describe_vpcs(VpcIds=[self.id])["Vpcs"][0]

    def ensure_open_all_security_group(self) -> str:
        """Find or create a security group allowing all inbound traffic.

        Returns:
            Security group id

        """
        groups = self.client.describe_security_groups(
            Filters=[
                {"Name": "group-name", "Values": [OPEN_ALL_GROUP_NAME]},
                {"Name": "vpc-id", "Values": [self.id]},
            ]
        )["SecurityGroups"]
        if groups:
            return groups[0]["GroupId"]

        logger.debug("creating security group in %s", self.id)
        try:
            group_id = self.client.create_security_group(
                GroupName=OPEN_ALL_GROUP_NAME,
                Description="awsmgr created security group",
                VpcId=self.id,
            )["GroupId"]
            self.client.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[
                    {
                        "IpProtocol": "-1",
                        "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                    },
                    {
                        "IpProtocol": "-1",
                        "Ipv6Ranges": [{"CidrIpv6": "::/0"}],
                    },
                ],
            )
        except ClientError as error:
            raise CloudError(error) from error
        return group_id

    def wait_for_ipv6(
        self,
        *,
        settings: Optional[PollSettings] = None,
        cancel: Optional[threading.Event] = None,
        observer: Optional[PollObserver] = None,
    ) -> ConvergenceOutcome:
        """Poll until the VPC has an associated IPv6 block."""
        request = ConvergenceRequest.from_settings(
            ResourceKind.CIDR_ASSOCIATION,
            lambda vpc: _associated_ipv6_cidr(vpc) is not None,
            settings or DEFAULT_POLL_SETTINGS["cidr_association"],
            description="IPv6 CIDR association on {}".format(self.id),
        )
        return poll(request, self.describe, cancel=cancel, observer=observer)

    def wait_for_subnet_ipv6(
        self,
        subnet_id: str,
        *,
        settings: Optional[PollSettings] = None,
        cancel: Optional[threading.Event] = None,
        observer: Optional[PollObserver] = None,
    ) -> ConvergenceOutcome:
        """Poll until ``subnet_id`` has an associated IPv6 block."""
        request = ConvergenceRequest.from_settings(
            ResourceKind.CIDR_ASSOCIATION,
            lambda subnet: _associated_ipv6_cidr(subnet) is not None,
            settings or DEFAULT_POLL_SETTINGS["cidr_association"],
            description="IPv6 CIDR association on {}".format(subnet_id),
        )
        return poll(
            request,
            lambda: self.client.describe_subnets(SubnetIds=[subnet_id])[
                "Subnets"
            ][0],
            cancel=cancel,
            observer=observer,
        )

    def setup_ipv6(
        self,
        *,
        settings: Optional[PollSettings] = None,
        cancel: Optional[threading.Event] = None,
        observer: Optional[PollObserver] = None,
    ) -> str:
        """Give the VPC and its first subnet IPv6 connectivity.

        Associates an Amazon provided IPv6 block with the VPC if it has
        none, a free /64 of it with the first subnet, turns on IPv6 address
        assignment for that subnet and routes ::/0 to the internet gateway.

        Returns:
            id of the subnet to launch IPv6 instances into

        Raises:
            CloudError, CloudSetupError: a step failed
            AwsmgrTimeoutError, ConvergenceAbortedError: an association did
                not complete in time
        """
        poll_kwargs = {
            "settings": settings,
            "cancel": cancel,
            "observer": observer,
        }
        vpc_cidr = _associated_ipv6_cidr(self.describe())
        if vpc_cidr is None:
            logger.debug("requesting IPv6 block for %s", self.id)
            try:
                self.client.associate_vpc_cidr_block(
                    VpcId=self.id, AmazonProvidedIpv6CidrBlock=True
                )
            except ClientError as error:
                raise CloudError(error) from error
            vpc = self.wait_for_ipv6(**poll_kwargs).raise_for_state()
            vpc_cidr = _associated_ipv6_cidr(vpc)

        subnets = self.client.describe_subnets(
            Filters=[{"Name": "vpc-id", "Values": [self.id]}]
        )["Subnets"]
        if not subnets:
            raise CloudSetupError("No subnet found in {}".format(self.id))
        subnet = subnets[0]
        subnet_id = subnet["SubnetId"]

        if _associated_ipv6_cidr(subnet) is None:
            used = [
                assoc["Ipv6CidrBlock"]
                for other in subnets
                for assoc in other.get("Ipv6CidrBlockAssociationSet", [])
                if assoc.get("Ipv6CidrBlockState", {}).get("State")
                in ("associating", "associated")
            ]
            subnet_cidr = free_subnet_cidr(vpc_cidr, used)
            logger.debug("associating %s with %s", subnet_cidr, subnet_id)
            try:
                self.client.associate_subnet_cidr_block(
                    SubnetId=subnet_id, Ipv6CidrBlock=subnet_cidr
                )
            except ClientError as error:
                raise CloudError(error) from error
            self.wait_for_subnet_ipv6(
                subnet_id, **poll_kwargs
            ).raise_for_state()

        self.client.modify_subnet_attribute(
            SubnetId=subnet_id,
            AssignIpv6AddressOnCreation={"Value": True},
        )
        self._ensure_ipv6_default_route(subnet_id)
        return subnet_id

    def _ensure_ipv6_default_route(self, subnet_id: str):
        """Route ::/0 through the internet gateway for ``subnet_id``."""
        gateways = self.client.describe_internet_gateways(
            Filters=[{"Name": "attachment.vpc-id", "Values": [self.id]}]
        )["InternetGateways"]
        if not gateways:
            logger.warning(
                "No internet gateway attached to %s, skipping IPv6 route",
                self.id,
            )
            return

        tables = self.client.describe_route_tables(
            Filters=[{"Name": "vpc-id", "Values": [self.id]}]
        )["RouteTables"]
        table = _route_table_for_subnet(tables, subnet_id)
        if table is None:
            logger.warning("No route table found in %s", self.id)
            return
        for route in table.get("Routes", []):
            if route.get("DestinationIpv6CidrBlock") == "::/0":
                return

        logger.debug("adding ::/0 route to %s", table["RouteTableId"])
        self.client.create_route(
            RouteTableId=table["RouteTableId"],
            DestinationIpv6CidrBlock="::/0",
            GatewayId=gateways[0]["InternetGatewayId"],
        )


def _route_table_for_subnet(tables, subnet_id: str) -> Optional[Dict]:
    """Pick the table routing ``subnet_id``: explicit, then main, then any."""
    main = None
    for table in tables:
        for assoc in table.get("Associations", []):
            if assoc.get("SubnetId") == subnet_id:
                return table
            if assoc.get("Main"):
                main = table
    if main is not None:
        return main
    return tables[0] if tables else None
