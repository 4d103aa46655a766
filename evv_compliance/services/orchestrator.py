# orchestrator.py
"""
EVV compliance orchestrator.

Validates a recorded visit against its state's EVV rules, explains the
outcome with actionable recommendations, and submits verified visits to the
state's aggregators.

    orchestrator = ComplianceOrchestrator()
    feedback = orchestrator.validate_and_submit(record, "TX", timeout=60)
    if feedback.aggregators.submission_status == SubmissionStatus.FAILED:
        ...

Validation is pure and safe to run concurrently. Submission holds no
per-visit lock: callers that need at-most-once submission must serialize
on visit_id themselves.
"""
import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from django.utils import timezone

from ..conf import get_setting
from ..domain import (
    AggregatorRequirements,
    AggregatorSubmissionStatus,
    ComplianceStatus,
    GeofenceCheck,
    GracePeriodCheck,
    RealTimeValidationFeedback,
    SubmissionStatus,
)
from ..geo import haversine_distance, round_half_up
from ..integration import build_visit_data
from ..serializers import RealTimeValidationFeedbackSerializer
from ..signals import evv_submission_completed
from .dashboard import generate_compliance_dashboard
from .provider_factory import StateProviderFactory
from .state_compliance_service import StateComplianceService

logger = logging.getLogger(__name__)

# A submission is COMPLETED only when every aggregator accepted the record
ALL_AGGREGATORS_MUST_SUCCEED = True

SUBMISSION_FAILED = "SUBMISSION_FAILED"

READY_FOR_SUBMISSION = "All EVV requirements met. Record is compliant and ready for aggregator submission."
BLOCKED_FROM_SUBMISSION = "EVV record is non-compliant and cannot be submitted. Address validation errors first."
GPS_ACCURACY_ADVICE = (
    "GPS accuracy is too low. Move to location with better satellite visibility or use WiFi positioning."
)


class ComplianceOrchestrator:

    def __init__(self, compliance_service=None, provider_factory=None):
        self.compliance_service = compliance_service or StateComplianceService()
        self.catalog = self.compliance_service.catalog
        self.provider_factory = provider_factory or StateProviderFactory(catalog=self.catalog)

    # -----------------------
    # VALIDATION
    # -----------------------
    def validate_with_feedback(self, record, state):
        """Validate one EVV record against a state's rules; no I/O, input untouched"""
        rules = self.catalog.get(state)
        visit_data = build_visit_data(record, rules.tz)

        validation = self.compliance_service.validate_evv_for_state(state, visit_data)

        distance = haversine_distance(
            visit_data.client_latitude,
            visit_data.client_longitude,
            visit_data.clock_in_latitude,
            visit_data.clock_in_longitude,
        )
        allowed_radius = self.catalog.geofence_radius(state, visit_data.gps_accuracy)
        geofence = GeofenceCheck(
            within_bounds=distance <= allowed_radius,
            distance=round_half_up(distance),
            allowed_radius=allowed_radius,
            gps_accuracy=visit_data.gps_accuracy,
        )

        grace_period = self._check_grace_period(state, visit_data)
        required = self.catalog.required_aggregators(state)
        recommendations = self._build_recommendations(rules, validation, geofence, grace_period, distance)
        status = self._determine_status(validation, geofence, grace_period)

        return RealTimeValidationFeedback(
            status=status,
            state=state,
            validation=validation,
            geofence=geofence,
            grace_period=grace_period,
            aggregators=AggregatorRequirements(required=required),
            recommendations=recommendations,
            regulatory_context=validation.regulatory_context or f"{state} EVV requirements",
        )

    def validate_batch(self, records, state, max_workers=None):
        """Validate many records concurrently; feedback comes back in input order"""
        max_workers = max_workers or get_setting("EVV_VALIDATION_MAX_WORKERS")
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="evv-validate") as executor:
            return list(executor.map(lambda record: self.validate_with_feedback(record, state), records))

    def _check_grace_period(self, state, visit_data):
        grace = self.catalog.grace_periods(state)
        seconds = (visit_data.clock_in_time - visit_data.scheduled_start_time).total_seconds()
        minutes_from_scheduled = round_half_up(seconds / 60)

        # Single threshold from the early clock-in allowance unless the
        # deployment opts into separate late-arrival limits
        allowed = grace.early_clock_in_minutes
        if minutes_from_scheduled > 0 and get_setting("EVV_ASYMMETRIC_GRACE_PERIOD"):
            allowed = grace.late_clock_in_minutes

        return GracePeriodCheck(
            within_grace=abs(minutes_from_scheduled) <= allowed,
            minutes_from_scheduled=minutes_from_scheduled,
            allowed_grace_minutes=allowed,
        )

    def _build_recommendations(self, rules, validation, geofence, grace_period, distance):
        recommendations = []

        if not geofence.within_bounds:
            # Any violation reads as at least 1m out
            excess = max(1, round_half_up(distance - geofence.allowed_radius))
            recommendations.append(
                f"Location is {excess}m outside geofence. Verify caregiver is at correct address "
                f"or apply manual override with supervisor approval."
            )
            recommendations.extend(rules.advice.geofence_recommendations(rules))

        if not grace_period.within_grace:
            minutes = grace_period.minutes_from_scheduled
            if minutes < 0:
                recommendations.append(
                    f"Early clock-in detected ({minutes:+d} minutes from scheduled start). "
                    f"Ensure caregiver does not begin billable services before scheduled time."
                )
            else:
                recommendations.append(
                    f"Late clock-in detected ({minutes:+d} minutes from scheduled start). "
                    f"Document reason for late arrival and update schedule if needed."
                )

        for error in validation.errors:
            if error.code == "GPS_ACCURACY_EXCEEDED":
                recommendations.append(GPS_ACCURACY_ADVICE)

        if validation.errors:
            recommendations.extend(rules.advice.routing_recommendations(rules))

        if not recommendations:
            recommendations.append(READY_FOR_SUBMISSION)

        return recommendations

    def _determine_status(self, validation, geofence, grace_period):
        if not validation.valid:
            return ComplianceStatus.NON_COMPLIANT

        if not geofence.within_bounds or not grace_period.within_grace or validation.warnings:
            return ComplianceStatus.WARNING

        return ComplianceStatus.COMPLIANT

    # -----------------------
    # SUBMISSION
    # -----------------------
    def submit_to_aggregators(self, record, state, cancel_event=None):
        """
        Submit a record to every aggregator its state requires.

        Raises StateNotSupported for a state with no provider. Every other
        failure is reported as a failed status entry.
        """
        provider = self.provider_factory.get_provider(state)

        try:
            results = provider.submit_to_aggregators(record, cancel_event=cancel_event)
        except Exception as e:
            logger.exception(f"Error submitting visit {record.visit_id} to {state} aggregators")
            return [AggregatorSubmissionStatus(
                aggregator_name=", ".join(provider.aggregator_names),
                success=False,
                timestamp=timezone.now(),
                error_code=SUBMISSION_FAILED,
                error_message=str(e) or e.__class__.__name__,
            )]

        statuses = [
            AggregatorSubmissionStatus(
                aggregator_name=result.aggregator,
                success=result.success,
                timestamp=timezone.now(),
                submission_id=result.submission_id,
                confirmation_id=result.confirmation_id,
                error_code=result.error_code,
                error_message=result.error_message,
                requires_retry=result.requires_retry,
            )
            for result in results
        ]
        for status in statuses:
            if not status.success:
                logger.warning(
                    f"{status.aggregator_name} submission failed for visit {record.visit_id}: "
                    f"{status.error_code} {status.error_message}"
                )
        return statuses

    def validate_and_submit(self, record, state, timeout=None, cancel_event=None):
        """
        Validate, then submit unless the record is NON_COMPLIANT.

        `timeout` (seconds) and `cancel_event` bound the submission. Once
        either fires, aggregator calls still in flight are abandoned and
        recorded as SUBMISSION_CANCELLED; results already received are kept
        and the overall status is FAILED.
        """
        feedback = self.validate_with_feedback(record, state)

        if not feedback.submittable:
            feedback.aggregators.submission_status = SubmissionStatus.PENDING
            feedback.recommendations.append(BLOCKED_FROM_SUBMISSION)
            self._log_feedback(record, feedback)
            return feedback

        feedback.aggregators.submission_status = SubmissionStatus.IN_PROGRESS

        timer = None
        if timeout is not None:
            cancel_event = cancel_event or threading.Event()
            timer = threading.Timer(timeout, cancel_event.set)
            timer.daemon = True
            timer.start()
        try:
            results = self.submit_to_aggregators(record, state, cancel_event=cancel_event)
        finally:
            if timer is not None:
                timer.cancel()

        feedback.aggregators.submission_results = results
        feedback.aggregators.submission_status = self._submission_outcome(results)

        if feedback.aggregators.submission_status == SubmissionStatus.FAILED:
            failed = ", ".join(r.aggregator_name for r in results if not r.success)
            feedback.recommendations.append(
                f"Submission failed for: {failed}. Review error details and retry."
            )

        self._notify_submission(record, state, feedback.aggregators.submission_status, results)
        self._log_feedback(record, feedback)
        return feedback

    def _submission_outcome(self, results):
        if not results:
            return SubmissionStatus.FAILED
        if ALL_AGGREGATORS_MUST_SUCCEED:
            succeeded = all(r.success for r in results)
        else:
            succeeded = any(r.success for r in results)
        return SubmissionStatus.COMPLETED if succeeded else SubmissionStatus.FAILED

    def _notify_submission(self, record, state, submission_status, results):
        responses = evv_submission_completed.send_robust(
            sender=self.__class__,
            record=record,
            state=state,
            submission_status=submission_status,
            results=results,
        )
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(f"evv_submission_completed receiver {receiver} failed: {response}")

    def _log_feedback(self, record, feedback):
        if logger.isEnabledFor(logging.INFO):
            data = RealTimeValidationFeedbackSerializer(feedback).data
            logger.info(f"EVV feedback for visit {record.visit_id}: {json.dumps(data)}")

    # -----------------------
    # DASHBOARD
    # -----------------------
    def generate_compliance_dashboard(self, state, start_date, end_date, records):
        return generate_compliance_dashboard(state, start_date, end_date, records)
