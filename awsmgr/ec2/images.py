# This file is part of awsmgr. See LICENSE file for license information.
"""AMI lookup."""

import logging
from typing import Optional

from botocore.exceptions import ClientError

from awsmgr.errors import ImageNotFoundError

log = logging.getLogger(__name__)


def latest_ami(client, owner: str, pattern: str, arch: str = "x86_64"):
    """Find the id of the newest HVM image matching ``pattern``.

    Args:
        client: EC2 client
        owner: account id owning the images
        pattern: name filter, may contain wildcards
        arch: architecture to match

    Returns:
        string, image id, or None when nothing matches or the lookup fails
    """
    log.debug("finding latest %s image matching %s", arch, pattern)
    try:
        images = client.describe_images(
            Owners=[owner],
            Filters=[
                {"Name": "name", "Values": [pattern]},
                {"Name": "architecture", "Values": [arch]},
                {"Name": "virtualization-type", "Values": ["hvm"]},
            ],
        )
    except ClientError as e:
        log.warning("Image lookup for %s failed: %s", pattern, e)
        return None

    if not images.get("Images"):
        return None
    return sorted(images["Images"], key=lambda x: x["CreationDate"])[-1][
        "ImageId"
    ]


def root_device_name(client, image_id: str) -> Optional[str]:
    """Return the root device name of ``image_id``.

    Raises:
        ImageNotFoundError: no such image
    """
    images = client.describe_images(ImageIds=[image_id]).get("Images")
    if not images:
        raise ImageNotFoundError(image_id)
    return images[0].get("RootDeviceName")
