# This file is part of awsmgr. See LICENSE file for license information.
"""Tasks that earn the new-account credits.

Every task creates a small resource in the bootstrap region, waits for it
to become usable and then removes it again.
"""

import contextlib
import io
import json
import logging
import secrets
import threading
import zipfile
from typing import Any, Callable, ContextManager, List, Mapping, Optional

from botocore.exceptions import ClientError

from awsmgr.convergence import (
    ConvergenceOutcome,
    ConvergenceRequest,
    PollObserver,
    ResourceKind,
    RiskClass,
    poll,
    poll_settings,
)
from awsmgr.ec2 import instances as ec2_instances
from awsmgr.ec2.images import latest_ami
from awsmgr.errors import AwsmgrException, CleanupError, ImageNotFoundError
from awsmgr.session import Connection
from awsmgr.util import log_exception_list, random_suffix
from awsmgr.utils.backoff import exponential_backoff

BUDGET_LIMIT_USD = "10.0"
BUDGET_ALERT_PERCENT = 80.0

AL2023_OWNER = "137112412989"
AL2023_PATTERN = "al2023-ami-2023.*"

LAMBDA_RUNTIME = "python3.12"
LAMBDA_HANDLER = "lambda_function.lambda_handler"
LAMBDA_CODE = 'def lambda_handler(event, context):\n    return "Hello AWS"\n'
ASSUME_ROLE_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}

DB_INSTANCE_CLASS = "db.t3.micro"
DB_ENGINE = "mysql"
DB_MASTER_USER = "admin"
DB_STORAGE_GB = 20


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _role_not_ready(error: Exception) -> bool:
    """Return True for the error Lambda gives while a new role propagates."""
    return (
        isinstance(error, ClientError)
        and _error_code(error) == "InvalidParameterValueException"
    )


def build_lambda_zip(code: str = LAMBDA_CODE) -> bytes:
    """Return a zip archive holding ``code`` as lambda_function.py."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("lambda_function.py", code)
    return buf.getvalue()


def _accept_default(_question: str, default: bool) -> bool:
    return default


class CreditTasks:
    """Run the credit tasks with one connection.

    ``confirm(question, default)`` answers follow-up questions and
    ``report(message)`` shows progress to the user. Both default to
    non-interactive behaviour: take the default answer, log the message.
    """

    def __init__(
        self,
        conn: Connection,
        *,
        config: Optional[Mapping[str, Any]] = None,
        confirm: Callable[[str, bool], bool] = _accept_default,
        report: Optional[Callable[[str], None]] = None,
        observer: Optional[PollObserver] = None,
        cancel: Optional[threading.Event] = None,
        cancel_scope: Optional[
            Callable[[], ContextManager[Optional[threading.Event]]]
        ] = None,
    ):
        """Store collaborators.

        Args:
            conn: Connection to use, clients are created in its
                bootstrap region
            config: parsed configuration for poll settings
            confirm: callable(question, default) -> bool
            report: callable receiving user facing messages
            observer: PollObserver for waits
            cancel: cancellation event shared by every wait
            cancel_scope: context manager factory entered around each
                wait, yielding that wait's own cancellation event; takes
                precedence over ``cancel``
        """
        self._log = logging.getLogger(
            "{}.{}".format(__name__, self.__class__.__name__)
        )
        self.conn = conn
        self.config = config or {}
        self.confirm = confirm
        self.report = report or self._log.info
        self.observer = observer
        self.cancel = cancel
        self.cancel_scope = cancel_scope or (
            lambda: contextlib.nullcontext(self.cancel)
        )

    def _poll(self, request: ConvergenceRequest, check) -> ConvergenceOutcome:
        with self.cancel_scope() as cancel:
            return poll(request, check, cancel=cancel, observer=self.observer)

    def _wait(self, waiter, *args, **kwargs) -> ConvergenceOutcome:
        """Run an instance waiter under a fresh cancellation scope."""
        with self.cancel_scope() as cancel:
            return waiter(
                *args, cancel=cancel, observer=self.observer, **kwargs
            )

    def set_budget(self, account_id: Optional[str] = None) -> bool:
        """Create a monthly cost budget with an e-mail alert.

        Returns:
            True if the budget exists afterwards
        """
        account_id = account_id or self.conn.verify()
        budget_name = "AutoBudget-{}".format(random_suffix())
        email = "alert-{}@example.com".format(random_suffix(4))
        client = self.conn.client("budgets")
        try:
            client.create_budget(
                AccountId=account_id,
                Budget={
                    "BudgetName": budget_name,
                    "BudgetType": "COST",
                    "TimeUnit": "MONTHLY",
                    "BudgetLimit": {
                        "Amount": BUDGET_LIMIT_USD,
                        "Unit": "USD",
                    },
                },
                NotificationsWithSubscribers=[
                    {
                        "Notification": {
                            "NotificationType": "ACTUAL",
                            "ComparisonOperator": "GREATER_THAN",
                            "Threshold": BUDGET_ALERT_PERCENT,
                            "ThresholdType": "PERCENTAGE",
                        },
                        "Subscribers": [
                            {"SubscriptionType": "EMAIL", "Address": email}
                        ],
                    }
                ],
            )
        except ClientError as e:
            if _error_code(e) == "DuplicateRecordException":
                self.report("Budget already exists, skipping")
                return True
            raise
        self.report("Budget {} created".format(budget_name))
        return True

    def run_ec2(self) -> bool:
        """Launch a t3.micro, wait for it to run, then terminate it.

        Returns:
            True if the instance reached running
        """
        client = self.conn.client("ec2")
        image_id = latest_ami(client, AL2023_OWNER, AL2023_PATTERN)
        if not image_id:
            raise ImageNotFoundError(resource_name=AL2023_PATTERN)

        [instance_id] = ec2_instances.launch_instances(
            client, image_id, "t3.micro"
        )
        self.report("Instance {} launched, waiting for it".format(instance_id))
        outcome = self._wait(
            ec2_instances.wait_for_instance_state,
            client,
            instance_id,
            ec2_instances.RUNNING,
            settings=poll_settings("instance_running", self.config),
        )
        if not outcome and not self.confirm(
            "{}. Terminate it anyway?".format(outcome.summary()),
            RiskClass.DESTRUCTIVE.default,
        ):
            self.report(
                "Instance {} left in place, terminate it manually".format(
                    instance_id
                )
            )
            return False

        terminated = self._wait(
            ec2_instances.terminate_instance,
            client,
            instance_id,
            release_addresses=False,
            wait=True,
            settings=poll_settings("instance_terminated", self.config),
        )
        if terminated:
            self.report("Instance {} terminated".format(instance_id))
        else:
            self.report(
                "{}. Check the EC2 console".format(terminated.summary())
            )
        return outcome.converged

    def run_lambda(self) -> bool:
        """Create, invoke and delete a Lambda function.

        Returns:
            True if the function was invoked

        Raises:
            CleanupError: the function or role could not be removed
        """
        iam = self.conn.client("iam")
        lambda_client = self.conn.client("lambda")
        role_name = "AutoLambdaRole-{}".format(random_suffix(5))
        function_name = "AutoFunc-{}".format(random_suffix(5))

        self.report("Creating temporary IAM role {}".format(role_name))
        role_arn = iam.create_role(
            RoleName=role_name,
            AssumeRolePolicyDocument=json.dumps(ASSUME_ROLE_POLICY),
        )["Role"]["Arn"]

        invoked = False
        created = False
        try:

            @exponential_backoff(
                retries=6,
                base_delay=2,
                max_time=60,
                exceptions=(ClientError,),
                retry_if=_role_not_ready,
            )
            def create_function():
                lambda_client.create_function(
                    FunctionName=function_name,
                    Runtime=LAMBDA_RUNTIME,
                    Role=role_arn,
                    Handler=LAMBDA_HANDLER,
                    Code={"ZipFile": build_lambda_zip()},
                )

            create_function()
            created = True
            self.report("Function {} created".format(function_name))

            request = ConvergenceRequest.from_settings(
                ResourceKind.FUNCTION_STATE,
                lambda state: state == "Active",
                poll_settings("function_active", self.config),
                description="function {} to be Active".format(function_name),
            )
            outcome = self._poll(
                request,
                lambda: lambda_client.get_function(
                    FunctionName=function_name
                )["Configuration"]["State"],
            )
            if outcome:
                lambda_client.invoke(FunctionName=function_name)
                invoked = True
                self.report("Function {} invoked".format(function_name))
            else:
                self.report("{}, skipping invoke".format(outcome.summary()))
        finally:
            self._cleanup_lambda(
                iam, lambda_client, role_name, function_name, created
            )
        return invoked

    def _cleanup_lambda(
        self, iam, lambda_client, role_name, function_name, created
    ):
        exceptions: List[Exception] = []
        if created:
            try:
                lambda_client.delete_function(FunctionName=function_name)
            except ClientError as e:
                exceptions.append(e)
        try:
            iam.delete_role(RoleName=role_name)
        except ClientError as e:
            exceptions.append(e)
        if exceptions:
            log_exception_list(exceptions)
            raise CleanupError(exceptions)
        self.report("Lambda resources cleaned up")

    def run_rds(self) -> bool:
        """Create a MySQL instance, wait until available, then delete it.

        Returns:
            True if the database became available
        """
        client = self.conn.client("rds")
        db_name = "db-{}".format(random_suffix())
        client.create_db_instance(
            DBInstanceIdentifier=db_name,
            DBInstanceClass=DB_INSTANCE_CLASS,
            Engine=DB_ENGINE,
            MasterUsername=DB_MASTER_USER,
            MasterUserPassword=secrets.token_urlsafe(18),
            AllocatedStorage=DB_STORAGE_GB,
            BackupRetentionPeriod=0,
        )
        self.report(
            "Database {} is being created, this takes 5-10 minutes".format(
                db_name
            )
        )
        request = ConvergenceRequest.from_settings(
            ResourceKind.INSTANCE_STATE,
            lambda status: status == "available",
            poll_settings("db_available", self.config),
            description="database {} to be available".format(db_name),
        )
        outcome = self._poll(
            request,
            lambda: client.describe_db_instances(
                DBInstanceIdentifier=db_name
            )["DBInstances"][0]["DBInstanceStatus"],
        )
        if not outcome:
            self.report(
                "{}. It may still be creating, delete {} manually".format(
                    outcome.summary(), db_name
                )
            )
            return False

        client.delete_db_instance(
            DBInstanceIdentifier=db_name, SkipFinalSnapshot=True
        )
        self.report("Database {} deleted".format(db_name))
        return True

    def run_all(self) -> List[str]:
        """Run every task in order, carrying on past failures.

        Returns:
            names of the tasks that failed
        """
        account_id = self.conn.verify()
        tasks = [
            ("budget", lambda: self.set_budget(account_id)),
            ("ec2", self.run_ec2),
            ("lambda", self.run_lambda),
            ("rds", self.run_rds),
        ]
        failed = []
        for name, task in tasks:
            try:
                if not task():
                    failed.append(name)
            except (AwsmgrException, ClientError) as e:
                self._log.warning("Task %s failed: %s", name, e)
                self.report("Task {} failed: {}".format(name, e))
                failed.append(name)
        return failed
