# state_providers.py
"""
Per-state aggregator providers.

Every provider exposes the same two entry points:

    provider.submit_to_aggregator(record)    # primary aggregator only
    provider.submit_to_aggregators(record)   # every aggregator the record routes to

Single-aggregator states go through the same fan-out with one target, so
callers never need to check which kind of provider they hold.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait

from django.core.exceptions import ImproperlyConfigured

from ..conf import get_setting
from ..domain import AggregatorResult
from .aggregators import HHAeXchangeAggregator, NetsmartAggregator, SandataAggregator

logger = logging.getLogger(__name__)

AGGREGATOR_TARGETS = {
    "HHAeXchange": HHAeXchangeAggregator,
    "Sandata": SandataAggregator,
    "Netsmart": NetsmartAggregator,
}

# How often a waiting fan-out re-checks the cancel event
CANCEL_POLL_SECONDS = 0.05


def build_targets(rules):
    targets = []
    for name in rules.aggregators:
        try:
            target_class = AGGREGATOR_TARGETS[name]
        except KeyError:
            raise ImproperlyConfigured(f"No aggregator target registered for {name} ({rules.state})")
        targets.append(target_class())
    return targets


class StateAggregatorProvider:
    state = None

    def __init__(self, rules, targets=None, max_workers=None):
        if self.state is not None and rules.state != self.state:
            raise ImproperlyConfigured(
                f"{self.__class__.__name__} handles {self.state}, got rules for {rules.state}"
            )
        self.rules = rules
        self.targets = list(targets) if targets is not None else build_targets(rules)
        self.max_workers = max_workers or get_setting("EVV_SUBMISSION_MAX_WORKERS")

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.rules.state} {self.aggregator_names}>"

    @property
    def aggregator_names(self):
        return [target.name for target in self.targets]

    @property
    def supports_multiple_aggregators(self):
        return len(self.targets) > 1

    def targets_for(self, record):
        """Aggregators this record must be sent to"""
        return self.targets

    def submit_to_aggregator(self, record):
        """Submit to the primary aggregator; transport failures propagate"""
        target = self.targets_for(record)[0]
        return target.submit(record, self.rules)

    def submit_to_aggregators(self, record, cancel_event=None):
        """
        Send the record to every routed aggregator concurrently.

        Each aggregator is independent: one raising, timing out or being
        cancelled is recorded as a failed result and the others are still
        collected. Results keep the routing order.
        """
        targets = self.targets_for(record)
        if not targets:
            return []

        logger.info(f"Submitting visit {record.visit_id} ({self.rules.state}) to {[t.name for t in targets]}")
        executor = ThreadPoolExecutor(
            max_workers=min(len(targets), self.max_workers),
            thread_name_prefix=f"evv-{self.rules.state}",
        )
        try:
            started = time.monotonic()
            futures = [(target, executor.submit(target.submit, record, self.rules)) for target in targets]
            return [self._collect(target, future, started, cancel_event) for target, future in futures]
        finally:
            # Best effort: queued calls are dropped, running ones finish on their own timeout
            executor.shutdown(wait=False, cancel_futures=True)

    def _collect(self, target, future, started, cancel_event):
        deadline = started + target.timeout

        while not future.done():
            if cancel_event is not None and cancel_event.is_set():
                future.cancel()
                logger.warning(f"{target.name} submission cancelled for {self.rules.state}")
                return AggregatorResult(
                    aggregator=target.name,
                    success=False,
                    error_code="SUBMISSION_CANCELLED",
                    error_message=f"Submission to {target.name} was cancelled before it completed",
                )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"{target.name} did not respond within {target.timeout}s")
                return AggregatorResult(
                    aggregator=target.name,
                    success=False,
                    error_code="AGGREGATOR_TIMEOUT",
                    error_message=f"{target.name} did not respond within {target.timeout} seconds",
                    requires_retry=True,
                )

            if cancel_event is not None:
                remaining = min(remaining, CANCEL_POLL_SECONDS)
            wait([future], timeout=remaining)

        error = future.exception()
        if error is not None:
            logger.error(f"Error submitting to {target.name}: {error}")
            return AggregatorResult(
                aggregator=target.name,
                success=False,
                error_code="SUBMISSION_FAILED",
                error_message=str(error),
                requires_retry=True,
            )
        return future.result()


# -----------------------
# STATE PROVIDERS
# -----------------------
class TexasProvider(StateAggregatorProvider):
    """HHSC mandates HHAeXchange as the single Texas aggregator"""
    state = "TX"


class FloridaProvider(StateAggregatorProvider):
    """
    Florida lets each managed care organization pick its aggregator.

    Records carrying state_specific_data["mco"] are routed with mco_routing,
    which defaults to the rules' table (EVV_STATE_RULE_OVERRIDES["FL"]["mco_routing"]);
    records without an MCO (fee-for-service) go to every aggregator.
    """
    state = "FL"

    def __init__(self, rules, targets=None, max_workers=None, mco_routing=None):
        super().__init__(rules, targets=targets, max_workers=max_workers)
        self.mco_routing = dict(rules.mco_routing if mco_routing is None else mco_routing)
        for mco, names in self.mco_routing.items():
            unknown = set(names) - set(self.aggregator_names)
            if unknown:
                raise ImproperlyConfigured(
                    f"MCO {mco} is routed to {sorted(unknown)}, not among {self.aggregator_names}"
                )

    def targets_for(self, record):
        mco = record.state_specific_data.get("mco")
        routed = self.mco_routing.get(mco)
        if not routed:
            return self.targets
        return [target for target in self.targets if target.name in routed] or self.targets


class PennsylvaniaProvider(StateAggregatorProvider):
    """PA DHS accepts both Sandata (state system) and HHAeXchange"""
    state = "PA"


class SandataStateProvider(StateAggregatorProvider):
    """Sandata-only states share one payload format; the state comes from the rules"""

    SANDATA_STATES = ("OH", "NC", "AZ")

    def __init__(self, rules, targets=None, max_workers=None):
        if rules.state not in self.SANDATA_STATES:
            raise ImproperlyConfigured(f"{rules.state} is not a Sandata-only state")
        super().__init__(rules, targets=targets, max_workers=max_workers)


STATE_PROVIDERS = {
    "TX": TexasProvider,
    "FL": FloridaProvider,
    "PA": PennsylvaniaProvider,
    "OH": SandataStateProvider,
    "NC": SandataStateProvider,
    "AZ": SandataStateProvider,
}
