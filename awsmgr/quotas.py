# This file is part of awsmgr. See LICENSE file for license information.
"""Service quota lookup."""

from botocore.exceptions import ClientError

from awsmgr.errors import CloudError
from awsmgr.session import Connection

EC2_SERVICE_CODE = "ec2"
# Running On-Demand Standard (A, C, D, H, I, M, R, T, Z) instances
VCPU_QUOTA_CODE = "L-1216C47A"


def get_vcpu_quota(conn: Connection, region=None) -> float:
    """Return the on-demand standard instance vCPU quota.

    Raises:
        CloudError: the quota could not be read
    """
    client = conn.client("service-quotas", region)
    try:
        response = client.get_service_quota(
            ServiceCode=EC2_SERVICE_CODE, QuotaCode=VCPU_QUOTA_CODE
        )
    except ClientError as e:
        raise CloudError(
            "Could not read the EC2 vCPU quota: {}".format(e)
        ) from e
    return float(response["Quota"]["Value"])
