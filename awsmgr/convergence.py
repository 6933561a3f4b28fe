# This file is part of awsmgr. See LICENSE file for license information.
"""Bounded polling of remote state until it reaches a target condition.

Every wait in awsmgr (region opt-in, instance state transitions, IPv6 CIDR
propagation, static IP attachment, Lambda and RDS readiness) is a
parameterization of :func:`poll`. The poller never depends on a vendor SDK:
it only calls a zero-argument ``check`` that returns a snapshot of remote
state or raises.

A poll sleeps ``interval`` seconds before every check, including the first
one, so a condition satisfied on attempt ``n`` returns after roughly
``n * interval`` seconds. Running out of attempts (or time) is reported as a
``TIMED_OUT`` outcome rather than an exception; whether to carry on is the
caller's decision.
"""

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type

from awsmgr.errors import (
    AwsmgrTimeoutError,
    ConvergenceAbortedError,
    InvalidBoundError,
    PollCancelledError,
)
from awsmgr.types import PollSettings

log = logging.getLogger(__name__)

Check = Callable[[], Any]
Predicate = Callable[[Any], bool]


@enum.unique
class ResourceKind(enum.Enum):
    """What kind of remote resource a poll is waiting on."""

    REGION_OPT_IN = "region opt-in"
    INSTANCE_STATE = "instance state"
    CIDR_ASSOCIATION = "IPv6 CIDR association"
    STATIC_IP_CONSISTENCY = "static IP consistency"
    FUNCTION_STATE = "function state"

    def __str__(self) -> str:  # noqa: D105
        return self.value


@enum.unique
class TransientErrorPolicy(enum.Enum):
    """How a poll treats a failed query."""

    CONTINUE = "continue"
    ABORT = "abort"


@enum.unique
class OutcomeState(enum.Enum):
    """Final state of a poll."""

    CONVERGED = "converged"
    TIMED_OUT = "timed out"
    ABORTED = "aborted"


@enum.unique
class RiskClass(enum.Enum):
    """Risk of the action a caller takes after a poll did not converge.

    The value is the default answer of the "proceed anyway?" prompt.
    """

    DESTRUCTIVE = False
    BEST_EFFORT = True

    @property
    def default(self) -> bool:
        """Return the default answer for a forced-continue prompt."""
        return self.value


DEFAULT_POLL_SETTINGS: Dict[str, PollSettings] = {
    "region_opt_in": PollSettings(interval=10, max_attempts=60),
    "instance_running": PollSettings(interval=3, max_attempts=40),
    "instance_terminated": PollSettings(interval=5, max_attempts=60),
    "lightsail_running": PollSettings(interval=2, max_attempts=30),
    "cidr_association": PollSettings(interval=3, max_attempts=10),
    "static_ip": PollSettings(interval=2, max_attempts=15),
    "function_active": PollSettings(interval=2, max_attempts=30),
    "db_available": PollSettings(interval=30, max_attempts=30),
}


def poll_settings(
    name: str, config: Optional[Mapping[str, Any]] = None
) -> PollSettings:
    """Return the poll settings for ``name``.

    Values from a ``[polling.<name>]`` table in the configuration file
    override the defaults key by key.

    Args:
        name: key of DEFAULT_POLL_SETTINGS
        config: parsed configuration, may be None

    Returns:
        PollSettings to use
    """
    defaults = DEFAULT_POLL_SETTINGS[name]
    overrides = ((config or {}).get("polling") or {}).get(name) or {}
    return PollSettings(
        interval=overrides.get("interval", defaults.interval),
        max_attempts=overrides.get("max_attempts", defaults.max_attempts),
        timeout=overrides.get("timeout", defaults.timeout),
    )


@dataclass(frozen=True)
class ConvergenceRequest:
    """Describe what to wait for and for how long.

    At least one of ``max_attempts`` and ``timeout`` (seconds, measured from
    the start of the poll) must be given; a request without a positive
    bound is rejected on construction.
    """

    resource_kind: ResourceKind
    predicate: Predicate
    interval: float
    max_attempts: Optional[int] = None
    timeout: Optional[float] = None
    on_transient_error: TransientErrorPolicy = TransientErrorPolicy.CONTINUE
    transient_errors: Tuple[Type[BaseException], ...] = (Exception,)
    description: str = ""

    def __post_init__(self):
        """Reject requests that could poll forever."""
        if self.max_attempts is None and self.timeout is None:
            raise InvalidBoundError(
                "Waiting for {} requires max_attempts or timeout".format(
                    self.what
                )
            )
        if self.max_attempts is not None and self.max_attempts <= 0:
            raise InvalidBoundError(
                "max_attempts must be positive, got {}".format(
                    self.max_attempts
                )
            )
        if self.timeout is not None and self.timeout <= 0:
            raise InvalidBoundError(
                "timeout must be positive, got {}".format(self.timeout)
            )
        if self.interval < 0:
            raise InvalidBoundError(
                "interval cannot be negative, got {}".format(self.interval)
            )

    @classmethod
    def from_settings(
        cls,
        resource_kind: ResourceKind,
        predicate: Predicate,
        settings: PollSettings,
        **kwargs,
    ) -> "ConvergenceRequest":
        """Build a request from a PollSettings entry."""
        return cls(
            resource_kind=resource_kind,
            predicate=predicate,
            interval=settings.interval,
            max_attempts=settings.max_attempts,
            timeout=settings.timeout,
            **kwargs,
        )

    @property
    def what(self) -> str:
        """Return a human readable name of what is being waited for."""
        return self.description or str(self.resource_kind)


@dataclass
class ConvergenceOutcome:
    """Result of a poll.

    ``snapshot`` is the last successfully observed snapshot. For a
    converged poll it is the first snapshot that satisfied the predicate.
    ``error`` is the error that aborted the poll, or for a timed out poll
    the last transient error seen (if any).
    """

    state: OutcomeState
    request: ConvergenceRequest
    snapshot: Any = None
    attempts: int = 0
    error: Optional[BaseException] = None

    def __bool__(self) -> bool:
        """Only a converged outcome is truthy."""
        return self.converged

    @property
    def converged(self) -> bool:
        """Return True if the predicate was satisfied."""
        return self.state is OutcomeState.CONVERGED

    @property
    def timed_out(self) -> bool:
        """Return True if the bound ran out first."""
        return self.state is OutcomeState.TIMED_OUT

    @property
    def aborted(self) -> bool:
        """Return True if the poll stopped on an error or cancellation."""
        return self.state is OutcomeState.ABORTED

    @property
    def cancelled(self) -> bool:
        """Return True if the poll was cancelled from outside."""
        return isinstance(self.error, PollCancelledError)

    def summary(self) -> str:
        """Describe the outcome, naming what was being waited for."""
        what = self.request.what
        if self.converged:
            return "{} reached after {} attempt(s)".format(
                what, self.attempts
            )
        if self.timed_out:
            return "Timed out waiting for {} after {} attempt(s)".format(
                what, self.attempts
            )
        if self.cancelled:
            return "Cancelled while waiting for {}".format(what)
        return "Gave up waiting for {}: {}".format(what, self.error)

    def raise_for_state(self) -> Any:
        """Return the snapshot if converged, raise otherwise.

        Raises:
            AwsmgrTimeoutError: the poll timed out
            ConvergenceAbortedError: the poll was aborted or cancelled
        """
        if self.converged:
            return self.snapshot
        if self.timed_out:
            raise AwsmgrTimeoutError(self.summary()) from self.error
        raise ConvergenceAbortedError(self.summary()) from self.error


class PollObserver:
    """Receive a notification for every poll attempt.

    This base class ignores everything. The console subclasses it to print
    progress markers.
    """

    def on_snapshot(self, attempt: int, snapshot: Any) -> None:
        """Call after a successful query that did not converge yet."""

    def on_error(self, attempt: int, error: BaseException) -> None:
        """Call after a query raised a transient error."""


def _sleep(seconds: float, cancel: Optional[threading.Event]) -> bool:
    """Sleep, returning True if ``cancel`` got set."""
    if cancel is None:
        time.sleep(seconds)
        return False
    return cancel.wait(seconds)


def poll(
    request: ConvergenceRequest,
    check: Check,
    *,
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> ConvergenceOutcome:
    """Repeatedly run ``check`` until ``request.predicate`` holds.

    Args:
        request: what to wait for and the bound
        check: zero-argument callable returning a snapshot or raising
        cancel: optional event; once set the poll stops waiting
        observer: optional PollObserver notified on every attempt

    Returns:
        ConvergenceOutcome. Timeouts and aborts are reported, not raised.
    """
    observer = observer or PollObserver()
    deadline = None
    if request.timeout is not None:
        deadline = time.monotonic() + request.timeout

    attempts = 0
    snapshot = None
    last_error: Optional[BaseException] = None
    log.debug(
        "Waiting for %s (interval=%ss, max_attempts=%s, timeout=%s)",
        request.what,
        request.interval,
        request.max_attempts,
        request.timeout,
    )
    while request.max_attempts is None or attempts < request.max_attempts:
        delay = request.interval
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            delay = min(delay, remaining)

        if _sleep(delay, cancel):
            log.debug("Wait for %s cancelled", request.what)
            return ConvergenceOutcome(
                OutcomeState.ABORTED,
                request,
                snapshot,
                attempts,
                PollCancelledError(
                    "Cancelled while waiting for {}".format(request.what)
                ),
            )

        attempts += 1
        try:
            current = check()
        except request.transient_errors as e:
            last_error = e
            log.debug(
                "Attempt %d waiting for %s failed: %s",
                attempts,
                request.what,
                e,
            )
            if request.on_transient_error is TransientErrorPolicy.ABORT:
                return ConvergenceOutcome(
                    OutcomeState.ABORTED, request, snapshot, attempts, e
                )
            observer.on_error(attempts, e)
            continue
        except Exception as e:  # pylint: disable=broad-except
            log.debug(
                "Unrecoverable error waiting for %s: %s", request.what, e
            )
            return ConvergenceOutcome(
                OutcomeState.ABORTED, request, snapshot, attempts, e
            )

        snapshot = current
        if request.predicate(snapshot):
            log.debug(
                "%s reached after %d attempt(s)", request.what, attempts
            )
            return ConvergenceOutcome(
                OutcomeState.CONVERGED, request, snapshot, attempts
            )
        observer.on_snapshot(attempts, snapshot)

    log.warning(
        "Timed out waiting for %s after %d attempt(s)",
        request.what,
        attempts,
    )
    return ConvergenceOutcome(
        OutcomeState.TIMED_OUT, request, snapshot, attempts, last_error
    )


def await_convergence(
    check: Check,
    predicate: Predicate,
    interval: float,
    max_attempts: Optional[int] = None,
    *,
    timeout: Optional[float] = None,
    resource_kind: ResourceKind = ResourceKind.INSTANCE_STATE,
    on_transient_error: TransientErrorPolicy = TransientErrorPolicy.CONTINUE,
    transient_errors: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "",
    cancel: Optional[threading.Event] = None,
    observer: Optional[PollObserver] = None,
) -> ConvergenceOutcome:
    """Wait until ``predicate(check())`` holds or the bound runs out.

    Shorthand for building a ConvergenceRequest and calling :func:`poll`.

    Raises:
        InvalidBoundError: no positive bound was given. Nothing is queried.
    """
    request = ConvergenceRequest(
        resource_kind=resource_kind,
        predicate=predicate,
        interval=interval,
        max_attempts=max_attempts,
        timeout=timeout,
        on_transient_error=on_transient_error,
        transient_errors=transient_errors,
        description=description,
    )
    return poll(request, check, cancel=cancel, observer=observer)
