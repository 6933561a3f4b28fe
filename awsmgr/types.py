# This file is part of awsmgr. See LICENSE file for license information.
"""This module contains types and enums used by awsmgr."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RegionInfo:
    """An EC2 region and its opt-in status."""

    name: str
    status: str = "opt-in-not-required"

    @property
    def enabled(self) -> bool:
        """Return True when instances can be launched in the region."""
        return self.status in ("opt-in-not-required", "opted-in")


@dataclass
class EC2InstanceRow:
    """One row of the cross-region EC2 instance listing."""

    region: str
    instance_id: str
    state: str
    name: str = ""
    instance_type: str = ""
    public_ip: str = ""
    private_ip: str = ""
    ipv6: str = ""
    availability_zone: str = ""


@dataclass
class LightsailInstanceRow:
    """One row of the cross-region Lightsail instance listing."""

    region: str
    name: str
    state: str = ""
    ip: str = ""
    ipv6: str = ""
    availability_zone: str = ""
    bundle: str = ""


@dataclass(frozen=True)
class AMIOption:
    """An operating system choice resolved to the newest matching AMI."""

    name: str
    owner: str
    pattern: str


@dataclass(frozen=True)
class InstanceTypeOption:
    """An entry of the instance type menu.

    ``ai_caveat`` is a short explanation of why the type is a poor fit for
    model inference, or an empty string.
    """

    instance_type: str
    vcpu: int
    ram_gb: float
    price: str = ""
    description: str = ""
    ai_caveat: str = ""

    @property
    def ram(self) -> str:
        """Return RAM formatted for display."""
        return "{:.1f} GiB".format(self.ram_gb)


@dataclass(frozen=True)
class BundleOption:
    """A Lightsail bundle (plan)."""

    bundle_id: str
    price: float
    ram_gb: float
    cpu_count: int


@dataclass(frozen=True)
class PollSettings:
    """Interval and attempt bound for one kind of wait."""

    interval: float
    max_attempts: Optional[int] = None
    timeout: Optional[float] = None
