# aggregators.py
"""
Aggregator targets.

Each target knows one aggregator's payload format and how to read its
response. Rejections are returned as failed AggregatorResult values; only
transport failures raise (AggregatorTransportError from the client).
"""
import logging

import pytz

from ..domain import AggregatorResult
from .aggregator_client import AggregatorClient

logger = logging.getLogger(__name__)

SUCCESS_STATUS_CODES = (200, 201, 202)


def format_date_mmddyyyy(d):
    return d.strftime("%m/%d/%Y")


def to_local(dt, rules):
    """Render an aware datetime in the state's local time (naive values are taken as UTC)"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(rules.tz)


class AggregatorTarget:
    name = None
    endpoint = "/visits/upload"
    auth_style = "bearer"

    def __init__(self, client=None, timeout=None):
        self.client = client or AggregatorClient.from_settings(self.name, auth_style=self.auth_style)
        # Fan-out deadline covers every client retry
        self.timeout = timeout if timeout is not None else self.client.retry_budget

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.name}>"

    def missing_fields(self, record):
        """Federal EVV data elements that must be present before submitting"""
        missing = []
        if not record.service_type_code:
            missing.append("serviceTypeCode")
        if not (record.client_medicaid_id or record.client_id):
            missing.append("clientMedicaidId")
        if not record.caregiver_employee_id:
            missing.append("caregiverEmployeeId")
        if not record.has_clock_out:
            missing.append("clockOutTime")
        return missing

    def format_payload(self, record, rules):
        raise NotImplementedError

    def submit(self, record, rules):
        missing = self.missing_fields(record)
        if missing:
            return AggregatorResult(
                aggregator=self.name,
                success=False,
                error_code="VALIDATION_FAILED",
                error_message=f"EVV record is missing required elements: {', '.join(missing)}",
            )

        payload = self.format_payload(record, rules)
        result = self.client.send(self.endpoint, "POST", payload)
        return self.interpret_response(result)

    def interpret_response(self, result):
        status_code = result.get("status_code")
        body = result.get("response") or {}
        if isinstance(body, list):
            body = body[0] if body else {}

        if status_code in SUCCESS_STATUS_CODES and body.get("success", True):
            return AggregatorResult(
                aggregator=self.name,
                success=True,
                submission_id=self._submission_id(body),
                confirmation_id=self._confirmation_id(body),
            )

        logger.warning(f"{self.name} rejected submission: HTTP {status_code} {body}")
        return AggregatorResult(
            aggregator=self.name,
            success=False,
            submission_id=self._submission_id(body),
            error_code=body.get("errorCode") or "SUBMISSION_REJECTED",
            error_message=body.get("errorMessage") or body.get("message") or f"{self.name} rejected submission",
            requires_retry=False,
        )

    def _submission_id(self, body):
        return body.get("transactionId") or body.get("id")

    def _confirmation_id(self, body):
        return body.get("confirmationId") or body.get("confirmationNumber")


class HHAeXchangeAggregator(AggregatorTarget):
    name = "HHAeXchange"
    endpoint = "/evv/visits"
    auth_style = "bearer"

    def format_payload(self, record, rules):
        clock_out = record.clock_out_verification
        return {
            "visitId": record.visit_id,
            "memberId": record.client_medicaid_id or record.client_id,
            "memberName": record.client_name,
            "providerId": record.caregiver_employee_id,
            "providerName": record.caregiver_name,
            "serviceCode": record.service_type_code,
            "serviceDate": record.service_date.isoformat(),
            "clockInTime": to_local(record.clock_in_time, rules).isoformat(),
            "clockOutTime": to_local(record.clock_out_time, rules).isoformat(),
            "clockInLatitude": record.clock_in_verification.latitude,
            "clockInLongitude": record.clock_in_verification.longitude,
            "clockOutLatitude": clock_out.latitude,
            "clockOutLongitude": clock_out.longitude,
            "clockMethod": record.clock_in_verification.method,
            "duration": record.duration_minutes,
            "verificationStatus": "VERIFIED" if record.clock_in_verification.geofence_passed else "EXCEPTION",
            "state": rules.state,
        }

    def _confirmation_id(self, body):
        return body.get("confirmationId")


class SandataAggregator(AggregatorTarget):
    name = "Sandata"
    endpoint = "/visits/upload"
    auth_style = "subscription"

    def format_payload(self, record, rules):
        clock_in = to_local(record.clock_in_time, rules)
        clock_out = to_local(record.clock_out_time, rules)
        verification = record.clock_in_verification
        return [{
            "ProviderIdentification": {
                "ProviderQualifier": "MedicaidID",
                "ProviderID": self.client.provider_id or "",
            },
            "VisitOtherID": record.visit_id,
            "SequenceID": clock_in.strftime("%Y%m%d%H%M%S"),
            "EmployeeIdentifier": record.caregiver_employee_id,
            "ClientIdentifier": record.client_medicaid_id or record.client_id,
            "ProcedureCode": record.service_type_code,
            "VisitTimeZone": rules.timezone,
            "ServiceDate": format_date_mmddyyyy(record.service_date),
            "Calls": [
                {
                    "CallAssignment": "Time In",
                    "CallDateTime": clock_in.strftime("%Y-%m-%dT%H:%M:%S%z"),
                    "CallType": "Mobile",
                    "CallLatitude": verification.latitude,
                    "CallLongitude": verification.longitude,
                },
                {
                    "CallAssignment": "Time Out",
                    "CallDateTime": clock_out.strftime("%Y-%m-%dT%H:%M:%S%z"),
                    "CallType": "Mobile",
                    "CallLatitude": record.clock_out_verification.latitude,
                    "CallLongitude": record.clock_out_verification.longitude,
                },
            ],
            "GPSAccuracy": verification.accuracy,
            "StateSpecific": dict(record.state_specific_data),
        }]


class NetsmartAggregator(AggregatorTarget):
    name = "Netsmart"
    endpoint = "/api/v1/evv/submissions"
    auth_style = "api_key"

    def format_payload(self, record, rules):
        return {
            "visit": {
                "externalId": record.visit_id,
                "serviceCode": record.service_type_code,
                "serviceDate": record.service_date.isoformat(),
                "start": to_local(record.clock_in_time, rules).isoformat(),
                "end": to_local(record.clock_out_time, rules).isoformat(),
            },
            "member": {
                "id": record.client_medicaid_id or record.client_id,
                "name": record.client_name,
            },
            "worker": {
                "id": record.caregiver_employee_id,
                "name": record.caregiver_name,
            },
            "location": {
                "latitude": record.clock_in_verification.latitude,
                "longitude": record.clock_in_verification.longitude,
                "accuracy": record.clock_in_verification.accuracy,
            },
            "mco": record.state_specific_data.get("mco"),
        }

    def _submission_id(self, body):
        return body.get("submissionId") or body.get("id")
