# This file is part of awsmgr. See LICENSE file for license information.
"""Exceptions raised by awsmgr."""

import enum
from typing import List, Optional


class AwsmgrException(Exception):
    """Base of every awsmgr exception.

    Never raised itself. Catching it catches anything awsmgr raises on
    purpose, which is what the menu handlers do.
    """


class AwsmgrError(AwsmgrException):
    """Error without a more specific class."""


class ResourceType(enum.Enum):
    """Kinds of AWS resources awsmgr looks up."""

    REGION = "region"
    INSTANCE = "instance"
    IMAGE = "image"
    NETWORK = "network"
    STATIC_IP = "static ip"

    def __str__(self) -> str:  # noqa: D105
        return self.value


class ResourceNotFoundError(AwsmgrException):
    """A resource awsmgr was asked to act on does not exist.

    Examples:
    ---------
    >>> e = ResourceNotFoundError(ResourceType.INSTANCE, "i-0abc")
    >>> e.resource_id
    'i-0abc'
    >>> str(ResourceNotFoundError(ResourceType.REGION, region="xx-1"))
    'Could not locate the resource type `region`: region=xx-1'
    """

    def __init__(
        self,
        resource_type: ResourceType,
        resource_id: Optional[str] = None,
        resource_name: Optional[str] = None,
        **details,
    ):
        """Init method.

        :param resource_type: Instance of `ResourceType`
        :param resource_id: AWS id, e.g. an instance or AMI id
        :param resource_name: name, e.g. a Lightsail instance or region
        :param details: further key=value pairs for the message
        """
        super().__init__(resource_type, resource_id, resource_name)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.resource_name = resource_name
        self.details = details

    def __str__(self) -> str:  # noqa: D105
        fields = [("id", self.resource_id), ("name", self.resource_name)]
        fields.extend(self.details.items())
        described = ", ".join(
            "{}={}".format(key, value) for key, value in fields if value
        )
        msg = "Could not locate the resource type `{}`".format(
            self.resource_type
        )
        return "{}: {}".format(msg, described) if described else msg


class ImageNotFoundError(ResourceNotFoundError):
    """No AMI matched."""

    def __init__(self, *args, **kwargs):  # noqa: D107
        super().__init__(ResourceType.IMAGE, *args, **kwargs)


class InstanceNotFoundError(ResourceNotFoundError):
    """No EC2 instance with the given id."""

    def __init__(self, *args, **kwargs):  # noqa: D107
        super().__init__(ResourceType.INSTANCE, *args, **kwargs)


class CloudSetupError(AwsmgrException):
    """The AWS session, account or network cannot be used as is."""


class CloudError(AwsmgrException):
    """An AWS API call failed; usually wraps a botocore ClientError."""


class AwsmgrTimeoutError(AwsmgrException):
    """Something did not happen in time."""


class InvalidBoundError(AwsmgrException, ValueError):
    """Raised when a poll is requested without a usable bound."""


class ConvergenceAbortedError(AwsmgrException):
    """Raised when a poll ended on an unrecoverable error."""


class PollCancelledError(AwsmgrException):
    """Raised (or carried by an outcome) when a poll was cancelled."""


class CleanupError(AwsmgrException):
    """One or more resources could not be removed.

    Resources are probably left behind and cost money, so report this one
    rather than silencing it.
    """

    def __init__(self, exceptions: List[Exception]):
        """Init method.

        :param exceptions: The exceptions collected during cleanup
        """
        super().__init__(exceptions)
        self.exceptions = exceptions

    def __str__(self) -> str:
        """Return string representation of the error."""
        return "{} error(s) during cleanup: {}".format(
            len(self.exceptions), "; ".join(str(e) for e in self.exceptions)
        )
