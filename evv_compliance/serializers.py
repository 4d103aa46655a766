from rest_framework import serializers

from .domain import (
    COMPLIANT_FLAG,
    EVVRecord,
    LocationVerification,
    PayorApprovalStatus,
    ServiceAddress,
)

VERIFICATION_METHODS = ["GPS", "NETWORK", "WIFI", "CELL", "PHONE", "FACIAL", "BIOMETRIC", "MANUAL", "EXCEPTION"]


# -----------------------
# INBOUND: raw record dicts -> EVVRecord
# -----------------------
class ServiceAddressSerializer(serializers.Serializer):
    line1 = serializers.CharField(max_length=255)
    line2 = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(min_length=2, max_length=2)
    postal_code = serializers.RegexField(r'^\d{5}(-\d{4})?$', error_messages={'invalid': 'Invalid ZIP code format'})
    country = serializers.CharField(max_length=2, default="US")
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    geofence_radius = serializers.FloatField(min_value=0, required=False, allow_null=True)
    address_verified = serializers.BooleanField(default=False)

    def validate_state(self, value):
        return value.upper()


class LocationVerificationSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    accuracy = serializers.FloatField(min_value=0, required=False, allow_null=True)
    timestamp = serializers.DateTimeField(required=False, allow_null=True)
    geofence_passed = serializers.BooleanField(default=False)
    distance_from_address = serializers.FloatField(min_value=0, required=False, allow_null=True)
    mock_location_detected = serializers.BooleanField(default=False)
    method = serializers.ChoiceField(choices=VERIFICATION_METHODS, default="GPS")


class EVVRecordSerializer(serializers.Serializer):
    """Validates an EVV record as delivered by the integration layer"""
    id = serializers.CharField()
    visit_id = serializers.CharField()
    client_id = serializers.CharField()
    caregiver_id = serializers.CharField()
    service_type_code = serializers.CharField(allow_blank=True, default="")
    service_type_name = serializers.CharField(allow_blank=True, default="")
    client_name = serializers.CharField(allow_blank=True, default="")
    client_medicaid_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    caregiver_name = serializers.CharField(allow_blank=True, default="")
    caregiver_employee_id = serializers.CharField(allow_blank=True, default="")
    service_date = serializers.DateField()
    service_address = ServiceAddressSerializer()
    clock_in_time = serializers.DateTimeField()
    clock_in_verification = LocationVerificationSerializer()
    scheduled_start_time = serializers.DateTimeField(required=False, allow_null=True)
    scheduled_end_time = serializers.DateTimeField(required=False, allow_null=True)
    clock_out_time = serializers.DateTimeField(required=False, allow_null=True)
    clock_out_verification = LocationVerificationSerializer(required=False, allow_null=True)
    compliance_flags = serializers.ListField(child=serializers.CharField(), default=lambda: [COMPLIANT_FLAG])
    submitted_to_payor = serializers.DateTimeField(required=False, allow_null=True)
    payor_approval_status = serializers.ChoiceField(
        choices=[status.value for status in PayorApprovalStatus], required=False, allow_null=True
    )
    state_specific_data = serializers.DictField(required=False, default=dict)

    def validate(self, attrs):
        has_time = attrs.get('clock_out_time') is not None
        has_location = attrs.get('clock_out_verification') is not None
        if has_time != has_location:
            raise serializers.ValidationError({
                "clock_out_verification": [
                    "Clock-out time and clock-out verification must be provided together."
                ]
            })
        return attrs

    def create(self, validated_data):
        data = dict(validated_data)
        clock_out = data.pop('clock_out_verification', None)
        status = data.pop('payor_approval_status', None)

        return EVVRecord(
            service_address=ServiceAddress(**data.pop('service_address')),
            clock_in_verification=LocationVerification(**data.pop('clock_in_verification')),
            clock_out_verification=LocationVerification(**clock_out) if clock_out else None,
            payor_approval_status=PayorApprovalStatus(status) if status else None,
            compliance_flags=tuple(data.pop('compliance_flags')),
            **data,
        )


# -----------------------
# OUTBOUND: computed objects -> JSON-safe dicts
# -----------------------
class ValidationIssueSerializer(serializers.Serializer):
    code = serializers.CharField()
    message = serializers.CharField()
    field = serializers.CharField()
    regulation = serializers.CharField(allow_null=True)


class ValidationResultSerializer(serializers.Serializer):
    valid = serializers.BooleanField()
    errors = ValidationIssueSerializer(many=True)
    warnings = ValidationIssueSerializer(many=True)
    regulatory_context = serializers.CharField()


class GeofenceCheckSerializer(serializers.Serializer):
    within_bounds = serializers.BooleanField()
    distance = serializers.IntegerField()
    allowed_radius = serializers.FloatField()
    gps_accuracy = serializers.FloatField(allow_null=True)


class GracePeriodCheckSerializer(serializers.Serializer):
    within_grace = serializers.BooleanField()
    minutes_from_scheduled = serializers.IntegerField()
    allowed_grace_minutes = serializers.IntegerField()


class AggregatorSubmissionStatusSerializer(serializers.Serializer):
    aggregator_name = serializers.CharField()
    success = serializers.BooleanField()
    submission_id = serializers.CharField(allow_null=True)
    confirmation_id = serializers.CharField(allow_null=True)
    error_code = serializers.CharField(allow_null=True)
    error_message = serializers.CharField(allow_null=True)
    requires_retry = serializers.BooleanField()
    timestamp = serializers.DateTimeField()


class AggregatorRequirementsSerializer(serializers.Serializer):
    required = serializers.ListField(child=serializers.CharField())
    submission_status = serializers.CharField(source='submission_status.value')
    submission_results = AggregatorSubmissionStatusSerializer(many=True, allow_null=True)


class RealTimeValidationFeedbackSerializer(serializers.Serializer):
    status = serializers.CharField(source='status.value')
    state = serializers.CharField()
    validation = ValidationResultSerializer()
    geofence = GeofenceCheckSerializer()
    grace_period = GracePeriodCheckSerializer()
    aggregators = AggregatorRequirementsSerializer()
    recommendations = serializers.ListField(child=serializers.CharField())
    regulatory_context = serializers.CharField()


class ComplianceMetricsSerializer(serializers.Serializer):
    total_visits = serializers.IntegerField()
    compliant_visits = serializers.IntegerField()
    partially_compliant_visits = serializers.IntegerField()
    non_compliant_visits = serializers.IntegerField()
    compliance_rate = serializers.FloatField()


class GeofenceMetricsSerializer(serializers.Serializer):
    total_checks = serializers.IntegerField()
    passed = serializers.IntegerField()
    failed = serializers.IntegerField()
    average_distance = serializers.FloatField()
    average_accuracy = serializers.FloatField()


class AggregatorMetricsSerializer(serializers.Serializer):
    total_submissions = serializers.IntegerField()
    successful_submissions = serializers.IntegerField()
    failed_submissions = serializers.IntegerField()
    pending_submissions = serializers.IntegerField()
    average_submission_time_ms = serializers.FloatField()


class ComplianceIssueSerializer(serializers.Serializer):
    issue_code = serializers.CharField()
    count = serializers.IntegerField()
    percentage = serializers.FloatField()


class StateComplianceDashboardSerializer(serializers.Serializer):
    state = serializers.CharField()
    date_range = serializers.SerializerMethodField()
    metrics = ComplianceMetricsSerializer()
    geofence_metrics = GeofenceMetricsSerializer()
    aggregator_metrics = AggregatorMetricsSerializer()
    top_issues = ComplianceIssueSerializer(many=True)

    def get_date_range(self, obj):
        return {
            "start_date": obj.start_date.isoformat(),
            "end_date": obj.end_date.isoformat(),
        }
