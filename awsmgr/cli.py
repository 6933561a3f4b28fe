# This file is part of awsmgr. See LICENSE file for license information.
"""Interactive menu for managing EC2 and Lightsail instances."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, List, Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError

from awsmgr import console
from awsmgr.config import load_config
from awsmgr.convergence import RiskClass, poll_settings
from awsmgr.credits import CreditTasks
from awsmgr.ec2 import catalog
from awsmgr.ec2 import instances as ec2_instances
from awsmgr.ec2.images import latest_ami
from awsmgr.ec2.network import VPC
from awsmgr.errors import AwsmgrException
from awsmgr.lightsail import instances as ls_instances
from awsmgr.quotas import get_vcpu_quota
from awsmgr.regions import (
    ensure_region_opt_in,
    list_ec2_regions,
    list_lightsail_regions,
    region_label,
)
from awsmgr.session import BOOTSTRAP_REGION, Connection, ConnectionConfig
from awsmgr.types import RegionInfo
from awsmgr.util import build_user_data, cut

log = logging.getLogger(__name__)

_STATUS_MARKS = {
    "not-opted-in": " [not enabled]",
    "opted-in": " [enabled]",
    "enabling": " [enabling]",
}


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="awsmgr",
        description="Create and manage EC2 and Lightsail instances "
        "from a text menu.",
    )
    parser.add_argument(
        "--config", type=Path, help="Configuration file (TOML)"
    )
    parser.add_argument(
        "--proxy",
        help="Proxy as host:port, host:port:user:pass or a URL; "
        "skips the connection prompt",
    )
    parser.add_argument(
        "--region",
        help="Region for account-wide calls (default: {})".format(
            BOOTSTRAP_REGION
        ),
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    return parser


def _default_index(names: List[str], default: str) -> int:
    for i, name in enumerate(names, start=1):
        if name == default:
            return i
    return 1


class App:
    """Menu handlers sharing one connection and the discovered regions."""

    def __init__(
        self,
        conn: Connection,
        config: Optional[Mapping[str, Any]] = None,
        ec2_regions: Optional[List[RegionInfo]] = None,
        lightsail_regions: Optional[List[str]] = None,
    ):
        """Store the connection and region lists."""
        self._log = logging.getLogger(
            "{}.{}".format(__name__, self.__class__.__name__)
        )
        self.conn = conn
        self.config = config or {}
        self.ec2_regions = ec2_regions or []
        self.lightsail_regions = lightsail_regions or []
        self.max_workers = self.config.get("max_workers")

    def _settings(self, name: str):
        return poll_settings(name, self.config)

    def _wait(self, waiter, *args, show_status=False, **kwargs):
        """Run a poll with progress markers, cancellable with Ctrl-C."""
        marker = console.ProgressMarker(show_status=show_status)
        with console.cancel_on_interrupt() as cancel:
            try:
                return waiter(*args, cancel=cancel, observer=marker, **kwargs)
            finally:
                marker.finish()

    def _pick_region(self) -> Optional[RegionInfo]:
        names = [r.name for r in self.ec2_regions]
        return console.pick(
            "Select EC2 region:",
            self.ec2_regions,
            label=lambda r: "{:<16} {}{}".format(
                r.name, region_label(r.name), _STATUS_MARKS.get(r.status, "")
            ),
            default=_default_index(names, self.conn.bootstrap_region),
        )

    def _pick_ami(self, client, arch: str) -> Optional[str]:
        custom = "Custom AMI ID"
        choice = console.pick(
            "Select operating system ({}):".format(arch),
            catalog.AMI_OPTIONS + [custom],
            label=lambda o: o if o == custom else o.name,
        )
        if choice is None:
            console.error("Invalid choice")
            return None
        if choice == custom:
            return console.ask("AMI ID: ") or None
        console.say("Looking up the newest {} image...".format(choice.name))
        return latest_ami(client, choice.owner, choice.pattern, arch)

    def _pick_instance_type(self, arch: str):
        options = catalog.instance_types(arch)
        console.print_table(
            "Instance types (reference prices for us-east-1)",
            ["No.", "Type", "vCPU", "Memory", "Price", "Notes"],
            [
                (i, o.instance_type, o.vcpu, o.ram, o.price, o.description)
                for i, o in enumerate(options, start=1)
            ]
            + [(99, "custom", "", "", "", "enter a type by hand")],
        )
        choice = console.ask_int("Choice [1]: ", "1")
        if choice == 99:
            return catalog.custom_instance_type(
                console.ask("Instance type: ", "t3.micro")
            )
        if 1 <= choice <= len(options):
            return options[choice - 1]
        return options[0]

    def ec2_create(self):
        """Launch EC2 instances."""
        arch = "arm64" if console.ask(
            "Architecture: 1) x86_64 2) arm64 [1]: ", "1"
        ) == "2" else "x86_64"
        region = self._pick_region()
        if region is None:
            console.error("Invalid region")
            return
        if not self._wait(
            ensure_region_opt_in,
            self.conn,
            region,
            confirm=console.confirm,
            settings=self._settings("region_opt_in"),
            show_status=True,
        ):
            console.warn("Region {} is not usable".format(region.name))
            return

        client = self.conn.client("ec2", region.name)
        image_id = self._pick_ami(client, arch)
        if not image_id:
            console.error("No image found")
            return
        console.say("Using image {}".format(image_id))

        option = self._pick_instance_type(arch)
        console.say("Selected {}".format(option.instance_type))
        caveat = catalog.ai_suitability(option)
        if caveat:
            console.warn(
                "{} is a poor fit for AI workloads: {}".format(
                    option.instance_type, caveat
                )
            )
            if not console.confirm(
                "Continue with this type? It may run out of memory",
                RiskClass.DESTRUCTIVE.default,
            ):
                return

        count = max(console.ask_int("Number of instances [1]: ", "1"), 1)
        disk_size = max(console.ask_int("Disk size in GB [default]: ", "0"), 0)
        enable_ipv6 = console.confirm("Assign IPv6?")
        root_password = console.ask_secret(
            "Root password for SSH (blank to skip): "
        )
        open_all = console.confirm("Open all ports (security group)?")
        user_data = build_user_data(
            root_password, console.collect_user_data("Optional launch script")
        )

        security_group_id = None
        subnet_id = None
        if open_all or enable_ipv6:
            vpc = VPC.default(client)
            security_group_id = vpc.ensure_open_all_security_group()
            if enable_ipv6:
                console.say("Setting up IPv6...")
                try:
                    subnet_id = self._wait(
                        vpc.setup_ipv6,
                        settings=self._settings("cidr_association"),
                    )
                except (AwsmgrException, ClientError) as e:
                    console.warn(
                        "IPv6 setup failed, launching IPv4 only: {}".format(e)
                    )

        console.say("Launching {} instance(s)...".format(count))
        for instance_id in ec2_instances.launch_instances(
            client,
            image_id,
            option.instance_type,
            count=count,
            user_data=user_data,
            security_group_id=security_group_id,
            ipv6_subnet_id=subnet_id,
            disk_size_gb=disk_size,
        ):
            console.say("Launched {}".format(instance_id), style="green")

    def ec2_manage(self):
        """List EC2 instances in every region and act on one."""
        console.say(
            "Scanning {} EC2 regions...".format(len(self.ec2_regions))
        )
        rows = ec2_instances.list_instances(
            self.conn,
            [r.name for r in self.ec2_regions],
            max_workers=self.max_workers,
        )
        if not rows:
            console.warn("No instances")
            return
        console.print_table(
            "EC2 instances",
            ["No.", "Region", "ID", "Name", "State", "Type", "Public IP",
             "Private IP", "IPv6"],
            [
                (i, r.region, r.instance_id, cut(r.name, 10), r.state,
                 r.instance_type, r.public_ip, r.private_ip, r.ipv6)
                for i, r in enumerate(rows, start=1)
            ],
        )
        choice = console.ask_int("Instance number (0 to return): ", "0")
        if not 1 <= choice <= len(rows):
            return
        row = rows[choice - 1]
        client = self.conn.client("ec2", row.region)
        details = ec2_instances.describe_instance_details(
            client, row.instance_id
        )
        instance = details["instance"]
        console.print_details(
            row.instance_id,
            [
                (
                    "Region",
                    "{} ({})".format(row.region, row.availability_zone),
                ),
                ("Type", row.instance_type),
                ("State", row.state),
                ("Public IPv4", row.public_ip),
                ("Private IPv4", row.private_ip),
                ("IPv6", row.ipv6 or "(none)"),
                ("Launched", instance.get("LaunchTime", "")),
                ("SSH key", instance.get("KeyName", "")),
                ("Disks", ", ".join(details["volumes"])),
            ],
        )
        action = console.ask(
            "1) start 2) stop 3) reboot 4) terminate: ", "0"
        )
        if action == "1":
            ec2_instances.start_instance(client, row.instance_id)
            console.say("Starting")
        elif action == "2":
            ec2_instances.stop_instance(client, row.instance_id)
            console.say("Stopping")
        elif action == "3":
            ec2_instances.reboot_instance(client, row.instance_id)
            console.say("Rebooting")
        elif action == "4" and console.confirm(
            "Terminate {}?".format(row.instance_id),
            RiskClass.DESTRUCTIVE.default,
        ):
            self._wait(
                ec2_instances.terminate_instance,
                client,
                row.instance_id,
            )
            console.say("Terminating")

    def lightsail_create(self):
        """Create a Lightsail instance."""
        region = console.pick(
            "Select Lightsail region:",
            self.lightsail_regions,
            label=lambda r: "{:<16} {}".format(r, region_label(r)),
            default=_default_index(
                self.lightsail_regions, self.conn.bootstrap_region
            ),
        )
        if region is None:
            console.error("Invalid region")
            return
        client = self.conn.client("lightsail", region)
        zone = console.ask(
            "Availability zone [{}a]: ".format(region), region + "a"
        )
        name = console.ask("Instance name [LS-1]: ", "LS-1")

        bundles = ls_instances.list_bundles(client)
        bundle = console.pick(
            "Bundles:",
            bundles,
            label=lambda b: "{:<14} ${:.2f}  {:.1f} GB  {} vCPU".format(
                b.bundle_id, b.price, b.ram_gb, b.cpu_count
            ),
            default=_default_index(
                [b.bundle_id for b in bundles], ls_instances.DEFAULT_BUNDLE
            ),
        )
        blueprints = ls_instances.list_blueprints(client)
        blueprint = console.pick(
            "Operating systems:",
            blueprints,
            default=_default_index(
                blueprints, ls_instances.DEFAULT_BLUEPRINT
            ),
        )
        if bundle is None or blueprint is None:
            console.error("Invalid choice")
            return
        open_all = console.confirm(
            "Open all firewall ports (TCP+UDP 0-65535)?"
        )
        user_data = console.collect_user_data("Optional launch script")

        console.say("Creating...")
        ls_instances.create_instance(
            client,
            name,
            zone,
            bundle_id=bundle.bundle_id,
            blueprint_id=blueprint,
            user_data=user_data,
        )
        console.say("Create request sent", style="green")
        if not open_all:
            return
        console.say("Waiting for the instance before opening ports...")
        outcome = self._wait(
            ls_instances.wait_for_running,
            client,
            name,
            settings=self._settings("lightsail_running"),
        )
        if outcome:
            ls_instances.open_all_ports(client, name)
            console.say("All ports opened", style="green")
        else:
            console.warn(
                "{}. Configure the firewall manually.".format(
                    outcome.summary()
                )
            )

    def lightsail_manage(self):
        """List Lightsail instances in every region and act on one."""
        console.say(
            "Scanning {} Lightsail regions...".format(
                len(self.lightsail_regions)
            )
        )
        rows = ls_instances.list_instances(
            self.conn, self.lightsail_regions, max_workers=self.max_workers
        )
        if not rows:
            console.warn("No instances")
            return
        console.print_table(
            "Lightsail instances",
            ["No.", "Region", "Name", "State", "Bundle", "IPv4", "IPv6"],
            [
                (i, r.region, r.name, r.state, cut(r.bundle, 10), r.ip,
                 r.ipv6)
                for i, r in enumerate(rows, start=1)
            ],
        )
        choice = console.ask_int("Instance number (0 to return): ", "0")
        if not 1 <= choice <= len(rows):
            return
        row = rows[choice - 1]
        client = self.conn.client("lightsail", row.region)
        details = ls_instances.get_instance_details(client, row.name)
        console.print_details(
            row.name,
            [
                ("Region", "{} ({})".format(
                    row.region, details["availability_zone"])),
                ("Bundle", "{} ({} vCPU, {:.1f} GB RAM)".format(
                    details["bundle"], details["cpu_count"],
                    details["ram_gb"])),
                ("State", details["state"]),
                ("Public IPv4", details["ip"]),
                ("IP type", "static" if details["is_static_ip"]
                 else "dynamic"),
                ("Open ports", ", ".join(details["ports"])),
            ],
        )
        action = console.ask(
            "1) start 2) stop 3) reboot 4) delete 5) static IP: ", "0"
        )
        static_settings = self._settings("static_ip")
        if action == "1":
            ls_instances.start_instance(client, row.name)
            console.say("Starting")
        elif action == "2":
            ls_instances.stop_instance(client, row.name)
            console.say("Stopping")
        elif action == "3":
            ls_instances.reboot_instance(client, row.name)
            console.say("Rebooting")
        elif action == "4":
            if console.confirm(
                "Delete {}?".format(row.name), RiskClass.DESTRUCTIVE.default
            ):
                self._wait(
                    ls_instances.delete_instance,
                    client,
                    row.name,
                    settings=static_settings,
                )
                console.say("Delete request sent")
        elif action == "5":
            self._manage_static_ip(
                client, row.name, details["is_static_ip"], static_settings
            )

    def _manage_static_ip(self, client, name, is_static, settings):
        if is_static:
            if console.confirm(
                "Detach and release the static IP?",
                RiskClass.DESTRUCTIVE.default,
            ):
                if self._wait(
                    ls_instances.release_static_ip,
                    client,
                    name,
                    settings=settings,
                ):
                    console.say("Static IP released")
                else:
                    console.warn("Static IP was not released")
        elif console.confirm("Allocate and attach a new static IP?"):
            outcome = self._wait(
                ls_instances.attach_new_static_ip,
                client,
                name,
                settings=settings,
            )
            if outcome:
                console.say("Static IP attached", style="green")
            else:
                console.warn(outcome.summary())

    def show_quotas(self):
        """Show the EC2 vCPU quota."""
        console.say(
            "EC2 on-demand vCPU quota: {:.0f}".format(
                get_vcpu_quota(self.conn)
            )
        )

    def claim_credits(self):
        """Run the new-account credit tasks.

        Ctrl-C cancels only the wait in progress; every later wait and the
        menu itself are unaffected.
        """
        marker = console.ProgressMarker(show_status=True)

        def report(message):
            marker.finish()
            console.say(message)

        tasks = CreditTasks(
            self.conn,
            config=self.config,
            confirm=console.confirm,
            report=report,
            observer=marker,
            cancel_scope=console.cancel_on_interrupt,
        )
        console.say("Tasks run in {}".format(self.conn.bootstrap_region))
        if console.ask("1) run all 2) choose [1]: ", "1") == "1":
            failed = tasks.run_all()
            marker.finish()
            if failed:
                console.warn("Failed: {}".format(", ".join(failed)))
            else:
                console.say("All tasks done", style="green")
            return
        menu = {
            "1": ("Set budget", tasks.set_budget),
            "2": ("Run EC2", tasks.run_ec2),
            "3": ("Run Lambda", tasks.run_lambda),
            "4": ("Create RDS", tasks.run_rds),
        }
        while True:
            for key, (label, _) in menu.items():
                console.say(" {}. {}".format(key, label))
            choice = console.ask("Task (0 to return): ", "0")
            if choice == "0":
                return
            if choice not in menu:
                console.error("Invalid choice")
                continue
            self._run_handler(menu[choice][1])
            marker.finish()

    def _run_handler(self, handler):
        """Run a handler, reporting errors instead of leaving the menu."""
        try:
            handler()
        except (AwsmgrException, ClientError, BotoCoreError) as e:
            self._log.debug("handler %s failed", handler, exc_info=True)
            console.error("Failed: {}".format(e))

    def run(self):
        """Show the main menu until the user exits."""
        menu = {
            "1": ("EC2: create", self.ec2_create),
            "2": ("EC2: manage", self.ec2_manage),
            "3": ("Lightsail: create", self.lightsail_create),
            "4": ("Lightsail: manage", self.lightsail_manage),
            "5": ("Show quotas", self.show_quotas),
            "6": ("New-account credit tasks", self.claim_credits),
        }
        while True:
            console.say("\nMain menu", style="bold")
            for key, (label, _) in menu.items():
                console.say("{}) {}".format(key, label))
            console.say("0) Exit")
            choice = console.ask("Choice: ", "0")
            if choice == "0":
                return
            if choice in menu:
                self._run_handler(menu[choice][1])


def _connection_config(args, config) -> ConnectionConfig:
    proxy = args.proxy
    if proxy is None and not config.get("proxy"):
        if console.ask("Connection: 1) direct 2) proxy [1]: ", "1") == "2":
            proxy = console.ask(
                "Proxy (host:port:user:pass or URL): "
            ) or None
    conn_config = ConnectionConfig.from_config(config, proxy=proxy)
    if conn_config.proxy:
        console.say("Using proxy {}".format(conn_config.proxy))
    else:
        console.say("Using a direct connection")
    return conn_config


def main(argv=None) -> int:
    """Run the interactive menu."""
    args = create_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    try:
        config = load_config(args.config)
    except ValueError as e:
        console.error(str(e))
        return 1

    conn_config = _connection_config(args, config)
    access_key_id = config.get("access_key_id") or console.ask(
        "AWS Access Key ID (blank for the default chain): "
    )
    secret_access_key = config.get("secret_access_key")
    if access_key_id and not secret_access_key:
        secret_access_key = console.ask_secret("AWS Secret Access Key: ")
    conn = Connection(
        access_key_id or None,
        secret_access_key or None,
        config=conn_config,
        bootstrap_region=args.region
        or config.get("bootstrap_region", BOOTSTRAP_REGION),
    )

    console.say("Verifying credentials...")
    try:
        account = conn.verify()
    except AwsmgrException as e:
        console.error(str(e))
        return 1
    console.say("Account {}".format(account), style="green")

    console.say("Discovering regions...")
    ec2_regions: List[RegionInfo] = []
    lightsail_regions: List[str] = []
    try:
        ec2_regions = list_ec2_regions(conn)
    except (ClientError, BotoCoreError) as e:
        console.warn("Could not list EC2 regions: {}".format(e))
    try:
        lightsail_regions = list_lightsail_regions(conn)
    except (ClientError, BotoCoreError) as e:
        console.warn("Could not list Lightsail regions: {}".format(e))

    App(conn, config, ec2_regions, lightsail_regions).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
