from __future__ import annotations

from typing import Iterable, Mapping, Protocol

from . import journal
from .console import log_error, log_info, log_success, log_warning
from .errors import ReconcileFailed
from .models import ManagedResource, ObservedState, OutcomeStatus, ReconciliationOutcome, ResourceKind


class ResourceHandler(Protocol):
    """Kind-specific primitives.

    ``probe`` must match the resource name exactly and must not mutate anything.
    ``create`` and ``start`` raise on failure.
    """

    def probe(self, resource: ManagedResource) -> ObservedState: ...

    def create(self, resource: ManagedResource) -> None: ...

    def start(self, resource: ManagedResource) -> None: ...


class Reconciler:
    """Brings each managed resource to its declared state with at most one action."""

    def __init__(self, handlers: Mapping[ResourceKind, ResourceHandler], run_id: int | None = None):
        self.handlers = dict(handlers)
        self.run_id = run_id

    def reconcile(self, resource: ManagedResource) -> ReconciliationOutcome:
        outcome = self._reconcile(resource)
        self._report(resource, outcome)
        if self.run_id is not None:
            journal.record_outcome(self.run_id, outcome)
        return outcome

    def reconcile_all(self, resources: Iterable[ManagedResource]) -> list[ReconciliationOutcome]:
        """Reconcile in order, stopping at the first failure.

        Raises ReconcileFailed for the failing resource; resources handled
        before it are left as they are.
        """
        resources = list(resources)
        seen: set[tuple[ResourceKind, str]] = set()
        for r in resources:
            if r.key in seen:
                raise ValueError(f"Duplicate {r.kind.value} '{r.name}' in resource list.")
            seen.add(r.key)

        outcomes: list[ReconciliationOutcome] = []
        for r in resources:
            outcome = self.reconcile(r)
            outcomes.append(outcome)
            if outcome.failed:
                raise ReconcileFailed(outcome)
        return outcomes

    def _reconcile(self, resource: ManagedResource) -> ReconciliationOutcome:
        handler = self.handlers.get(resource.kind)
        if handler is None:
            return self._outcome(resource, OutcomeStatus.FAILED, reason=f"no handler for {resource.kind.value}")

        log_info(f"Checking {resource.kind.value} '{resource.name}'...")
        try:
            observed = handler.probe(resource)
        except Exception as e:
            return self._outcome(resource, OutcomeStatus.FAILED, reason=f"probe failed: {_describe(e)}")

        if observed is ObservedState.ABSENT:
            try:
                handler.create(resource)
            except Exception as e:
                return self._outcome(resource, OutcomeStatus.FAILED, observed, reason=_describe(e))
            return self._outcome(resource, OutcomeStatus.CREATED, observed)

        if observed is ObservedState.PRESENT_STOPPED:
            try:
                handler.start(resource)
            except Exception as e:
                return self._outcome(resource, OutcomeStatus.FAILED, observed, reason=_describe(e))
            return self._outcome(resource, OutcomeStatus.STARTED_EXISTING, observed)

        # PRESENT_RUNNING, and PRESENT_WITH_DRIFT which is not acted upon.
        return self._outcome(resource, OutcomeStatus.ALREADY_SATISFIED, observed)

    @staticmethod
    def _outcome(
        resource: ManagedResource,
        status: OutcomeStatus,
        observed: ObservedState | None = None,
        reason: str | None = None,
    ) -> ReconciliationOutcome:
        return ReconciliationOutcome(kind=resource.kind, name=resource.name, status=status, observed=observed, reason=reason)

    def _report(self, resource: ManagedResource, outcome: ReconciliationOutcome) -> None:
        label = f"{resource.kind.value} '{resource.name}'"
        if outcome.status is OutcomeStatus.CREATED:
            log_success(f"Created {label}.")
        elif outcome.status is OutcomeStatus.STARTED_EXISTING:
            log_success(f"Started existing {label}.")
        elif outcome.status is OutcomeStatus.FAILED:
            log_error(f"{label}: {outcome.reason}")
        elif resource.kind is ResourceKind.OS_ACCOUNT:
            log_warning(f"User '{resource.name}' already exists. Skipping creation.")
        else:
            log_info(f"{label} already in place.")

        if self.run_id is not None:
            level = "ERROR" if outcome.failed else "INFO"
            journal.log_event(level, f"{label}: {outcome.status.value}", run_id=self.run_id, resource=label)


def _describe(e: Exception) -> str:
    text = str(e).strip()
    return text or type(e).__name__
