"""Tests related to awsmgr.cli module."""

from pathlib import Path

import mock
import pytest
from botocore.exceptions import ClientError

from awsmgr import cli
from awsmgr import console as awsmgr_console
from awsmgr.ec2 import instances as ec2_instances
from awsmgr.errors import CloudError, CloudSetupError
from awsmgr.lightsail import instances as ls_instances
from awsmgr.types import (
    BundleOption,
    EC2InstanceRow,
    LightsailInstanceRow,
    RegionInfo,
)

MPATH = "awsmgr.cli."


@pytest.fixture(autouse=True)
def quiet(mocker):
    """Swallow console output."""
    for name in ("say", "warn", "error"):
        mocker.patch(MPATH + "console." + name)


class TestParser:
    def test_defaults(self):
        args = cli.create_parser().parse_args([])
        assert args.config is None
        assert args.proxy is None
        assert args.region is None
        assert not args.verbose

    def test_flags(self):
        args = cli.create_parser().parse_args(
            [
                "--config",
                "awsmgr.toml",
                "--proxy",
                "10.0.0.1:3128",
                "--region",
                "eu-west-1",
                "-v",
            ]
        )
        assert args.config == Path("awsmgr.toml")
        assert args.proxy == "10.0.0.1:3128"
        assert args.region == "eu-west-1"
        assert args.verbose


class TestMain:
    @pytest.fixture(autouse=True)
    def setup(self, mocker):
        mocker.patch("logging.basicConfig")
        self.m_load = mocker.patch(MPATH + "load_config", return_value={})
        self.m_ask = mocker.patch(MPATH + "console.ask", return_value="")
        self.m_conn = mocker.patch(MPATH + "Connection")
        self.m_app = mocker.patch(MPATH + "App")
        self.m_ec2 = mocker.patch(
            MPATH + "list_ec2_regions",
            return_value=[RegionInfo("us-east-1", "opt-in-not-required")],
        )
        self.m_ls = mocker.patch(
            MPATH + "list_lightsail_regions", return_value=["us-east-1"]
        )

    def test_broken_config(self):
        self.m_load.side_effect = ValueError("bad toml")
        assert cli.main([]) == 1
        self.m_conn.assert_not_called()

    def test_verify_failure(self):
        self.m_conn.return_value.verify.side_effect = CloudSetupError("no")
        assert cli.main([]) == 1
        self.m_app.assert_not_called()

    def test_default_chain_and_region_flag(self):
        assert cli.main(["--region", "eu-west-1"]) == 0
        args, kwargs = self.m_conn.call_args
        assert args == (None, None)
        assert kwargs["bootstrap_region"] == "eu-west-1"
        assert kwargs["config"].proxy is None
        self.m_app.assert_called_once_with(
            self.m_conn.return_value,
            {},
            self.m_ec2.return_value,
            ["us-east-1"],
        )
        self.m_app.return_value.run.assert_called_once_with()

    def test_region_listing_failure_is_not_fatal(self):
        self.m_ec2.side_effect = ClientError(
            {"Error": {"Code": "UnauthorizedOperation", "Message": "no"}},
            "DescribeRegions",
        )
        assert cli.main([]) == 0
        assert self.m_app.call_args[0][2] == []

    def test_secret_prompted_for_config_key(self, mocker):
        self.m_load.return_value = {"access_key_id": "AKIDEXAMPLE"}
        m_secret = mocker.patch(
            MPATH + "console.ask_secret", return_value="secret"
        )
        assert cli.main([]) == 0
        m_secret.assert_called_once()
        assert self.m_conn.call_args[0] == ("AKIDEXAMPLE", "secret")


class TestApp:
    def test_exit(self, conn, mocker):
        mocker.patch(MPATH + "console.ask", return_value="0")
        app = cli.App(conn)
        app.run()

    def test_handler_errors_are_reported(self, conn, mocker):
        mocker.patch(MPATH + "console.ask", side_effect=["5", "0"])
        conn.client("service-quotas").get_service_quota.side_effect = (
            ClientError(
                {"Error": {"Code": "AccessDenied", "Message": "no"}},
                "GetServiceQuota",
            )
        )
        cli.App(conn).run()
        assert "vCPU quota" in cli.console.error.call_args[0][0]

    def test_show_quotas(self, conn):
        conn.client("service-quotas").get_service_quota.return_value = {
            "Quota": {"Value": 32.0}
        }
        cli.App(conn).show_quotas()
        cli.console.say.assert_called_once_with(
            "EC2 on-demand vCPU quota: 32"
        )

    def test_unexpected_errors_propagate(self, conn):
        app = cli.App(conn)
        with pytest.raises(KeyError):
            app._run_handler(mock.Mock(side_effect=KeyError("bug")))


@pytest.fixture(name="answers")
def answers_fixture(mocker):
    """Script the terminal: set ``side_effect`` to the lines typed."""
    mocker.patch.object(awsmgr_console.console, "print")
    return mocker.patch.object(awsmgr_console.console, "input")


class TestEc2Create:
    @pytest.fixture(autouse=True)
    def setup(self, conn, mocker):
        conn.client("ec2").describe_images.return_value = {
            "Images": [{"ImageId": "ami-1", "CreationDate": "2025"}]
        }
        self.m_vpc = mocker.patch(MPATH + "VPC")
        self.vpc = self.m_vpc.default.return_value
        self.vpc.ensure_open_all_security_group.return_value = "sg-1"
        self.m_launch = mocker.patch.object(
            ec2_instances, "launch_instances", return_value=["i-1"]
        )

    def _lines(self, ipv6):
        return [
            "",  # architecture
            "",  # region
            "",  # operating system
            "4",  # t3.xlarge
            "",  # count
            "",  # disk size
            ipv6,
            "",  # root password
            "",  # open all ports
            "",  # launch script
        ]

    def test_ipv6_failure_launches_ipv4_only(self, conn, answers):
        answers.side_effect = self._lines("y")
        self.vpc.setup_ipv6.side_effect = CloudError("no IPv6 for you")
        cli.App(conn, {}, [RegionInfo("us-east-1")]).ec2_create()
        kwargs = self.m_launch.call_args[1]
        assert kwargs["ipv6_subnet_id"] is None
        assert kwargs["security_group_id"] == "sg-1"
        assert self.m_launch.call_args[0][1:] == ("ami-1", "t3.xlarge")
        assert "IPv6 setup failed" in cli.console.warn.call_args[0][0]

    def test_ipv6_subnet_is_used(self, conn, answers):
        answers.side_effect = self._lines("y")
        self.vpc.setup_ipv6.return_value = "subnet-1"
        cli.App(conn, {}, [RegionInfo("us-east-1")]).ec2_create()
        assert self.m_launch.call_args[1]["ipv6_subnet_id"] == "subnet-1"

    def test_no_network_changes_by_default(self, conn, answers):
        answers.side_effect = self._lines("")
        cli.App(conn, {}, [RegionInfo("us-east-1")]).ec2_create()
        self.m_vpc.default.assert_not_called()
        kwargs = self.m_launch.call_args[1]
        assert kwargs["security_group_id"] is None
        assert kwargs["ipv6_subnet_id"] is None

    def test_declined_opt_in_aborts(self, conn, answers):
        answers.side_effect = ["", "", ""]  # arch, region, enable? default
        region = RegionInfo("eu-south-2", "not-opted-in")
        cli.App(conn, {}, [region]).ec2_create()
        conn.client("account").enable_region.assert_not_called()
        self.m_launch.assert_not_called()
        assert "eu-south-2" in cli.console.warn.call_args[0][0]

    def test_ai_caveat_declined_by_default(self, conn, answers):
        answers.side_effect = ["", "", "", "1", ""]  # t2.micro, continue?
        cli.App(conn, {}, [RegionInfo("us-east-1")]).ec2_create()
        self.m_launch.assert_not_called()


class TestEc2Manage:
    @pytest.fixture(autouse=True)
    def setup(self, mocker):
        mocker.patch.object(
            ec2_instances,
            "list_instances",
            return_value=[EC2InstanceRow("us-east-1", "i-1", "running")],
        )
        mocker.patch.object(
            ec2_instances,
            "describe_instance_details",
            return_value={"instance": {}, "volumes": ["/dev/xvda [8 GB]"]},
        )
        self.m_terminate = mocker.patch.object(
            ec2_instances, "terminate_instance"
        )

    @pytest.mark.parametrize("answer", ["", "n"])
    def test_terminate_defaults_to_no(self, conn, answers, answer):
        answers.side_effect = ["1", "4", answer]
        cli.App(conn, {}, [RegionInfo("us-east-1")]).ec2_manage()
        self.m_terminate.assert_not_called()

    def test_terminate_confirmed(self, conn, answers):
        answers.side_effect = ["1", "4", "y"]
        cli.App(conn, {}, [RegionInfo("us-east-1")]).ec2_manage()
        args, kwargs = self.m_terminate.call_args
        assert args == (conn.client("ec2", "us-east-1"), "i-1")
        assert not kwargs["cancel"].is_set()

    def test_stop(self, conn, answers, mocker):
        m_stop = mocker.patch.object(ec2_instances, "stop_instance")
        answers.side_effect = ["1", "2"]
        cli.App(conn, {}, [RegionInfo("us-east-1")]).ec2_manage()
        m_stop.assert_called_once_with(conn.client("ec2"), "i-1")
        self.m_terminate.assert_not_called()


class TestLightsailCreate:
    @pytest.fixture(autouse=True)
    def setup(self, mocker):
        mocker.patch.object(
            ls_instances,
            "list_bundles",
            return_value=[BundleOption("nano_3_0", 5.0, 0.5, 2)],
        )
        mocker.patch.object(
            ls_instances, "list_blueprints", return_value=["debian_12"]
        )
        self.m_create = mocker.patch.object(ls_instances, "create_instance")
        self.m_wait = mocker.patch.object(ls_instances, "wait_for_running")
        self.m_open = mocker.patch.object(ls_instances, "open_all_ports")

    def _create(self, conn, answers, open_all):
        # region, zone, name, bundle, blueprint, open ports, script
        answers.side_effect = ["", "", "", "", "", open_all, ""]
        cli.App(conn, {}, [], ["us-east-1"]).lightsail_create()

    def test_ports_opened_after_running(self, conn, answers):
        self.m_wait.return_value.__bool__.return_value = True
        self._create(conn, answers, "y")
        self.m_create.assert_called_once_with(
            conn.client("lightsail", "us-east-1"),
            "LS-1",
            "us-east-1a",
            bundle_id="nano_3_0",
            blueprint_id="debian_12",
            user_data="",
        )
        self.m_open.assert_called_once_with(
            conn.client("lightsail", "us-east-1"), "LS-1"
        )

    def test_ports_left_closed_on_timeout(self, conn, answers):
        self.m_wait.return_value.__bool__.return_value = False
        self.m_wait.return_value.summary.return_value = "Timed out"
        self._create(conn, answers, "y")
        self.m_open.assert_not_called()
        assert "firewall" in cli.console.warn.call_args[0][0]

    def test_no_wait_without_open_ports(self, conn, answers):
        self._create(conn, answers, "")
        self.m_create.assert_called_once()
        self.m_wait.assert_not_called()
        self.m_open.assert_not_called()


class TestLightsailManage:
    @pytest.fixture(autouse=True)
    def setup(self, mocker):
        mocker.patch.object(
            ls_instances,
            "list_instances",
            return_value=[LightsailInstanceRow("us-east-1", "web")],
        )
        self.details = {
            "availability_zone": "us-east-1a",
            "bundle": "nano_3_0",
            "cpu_count": 2,
            "ram_gb": 0.5,
            "state": "running",
            "ip": "203.0.113.7",
            "is_static_ip": True,
            "ports": ["22/tcp"],
        }
        mocker.patch.object(
            ls_instances, "get_instance_details", return_value=self.details
        )
        self.m_delete = mocker.patch.object(ls_instances, "delete_instance")
        self.m_release = mocker.patch.object(
            ls_instances, "release_static_ip", return_value=True
        )
        self.m_attach = mocker.patch.object(
            ls_instances, "attach_new_static_ip"
        )

    def _app(self, conn):
        return cli.App(conn, {}, [], ["us-east-1"])

    def test_delete_defaults_to_no(self, conn, answers):
        answers.side_effect = ["1", "4", ""]
        self._app(conn).lightsail_manage()
        self.m_delete.assert_not_called()

    def test_delete_confirmed(self, conn, answers):
        answers.side_effect = ["1", "4", "yes"]
        self._app(conn).lightsail_manage()
        args, kwargs = self.m_delete.call_args
        assert args == (conn.client("lightsail", "us-east-1"), "web")
        assert kwargs["settings"] == cli.poll_settings("static_ip")

    def test_release_defaults_to_no(self, conn, answers):
        answers.side_effect = ["1", "5", ""]
        self._app(conn).lightsail_manage()
        self.m_release.assert_not_called()
        self.m_attach.assert_not_called()

    def test_release_confirmed(self, conn, answers):
        answers.side_effect = ["1", "5", "y"]
        self._app(conn).lightsail_manage()
        self.m_release.assert_called_once()
        cli.console.say.assert_any_call("Static IP released")

    def test_attach_when_dynamic(self, conn, answers):
        self.details["is_static_ip"] = False
        answers.side_effect = ["1", "5", "y"]
        self._app(conn).lightsail_manage()
        self.m_attach.assert_called_once()
        self.m_release.assert_not_called()


class TestClaimCredits:
    @pytest.fixture(autouse=True)
    def setup(self, mocker):
        self.m_tasks = mocker.patch(MPATH + "CreditTasks")
        self.m_signal = mocker.patch("awsmgr.console.signal.signal")

    def test_each_wait_gets_its_own_interrupt_scope(self, conn, answers):
        answers.side_effect = ["", "0"]  # run all
        self.m_tasks.return_value.run_all.return_value = []
        cli.App(conn).claim_credits()
        kwargs = self.m_tasks.call_args[1]
        assert kwargs["cancel_scope"] is awsmgr_console.cancel_on_interrupt
        assert "cancel" not in kwargs
        self.m_tasks.return_value.run_all.assert_called_once_with()

    def test_menu_prompts_keep_default_interrupt(self, conn, answers):
        answers.side_effect = ["2", "4", "0"]
        cli.App(conn).claim_credits()
        self.m_tasks.return_value.run_rds.assert_called_once_with()
        self.m_signal.assert_not_called()

    def test_failed_tasks_reported(self, conn, answers):
        answers.side_effect = [""]
        self.m_tasks.return_value.run_all.return_value = ["ec2", "rds"]
        cli.App(conn).claim_credits()
        cli.console.warn.assert_called_once_with("Failed: ec2, rds")


def test_missing_config_file_is_an_error(tmp_path, mocker):
    mocker.patch("logging.basicConfig")
    m_conn = mocker.patch(MPATH + "Connection")
    missing = tmp_path / "nope.toml"
    assert cli.main(["--config", str(missing)]) == 1
    m_conn.assert_not_called()
    assert "nope.toml" in cli.console.error.call_args[0][0]
