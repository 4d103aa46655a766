"""
Pytest configuration and fixtures for the EVV compliance tests.
"""
import math
import threading
from datetime import date, datetime, timedelta

import django
import pytest
import pytz
from django.conf import settings

if not settings.configured:
    settings.configure(
        DEBUG=False,
        USE_TZ=True,
        TIME_ZONE="UTC",
        INSTALLED_APPS=["rest_framework", "evv_compliance"],
        EVV_AGGREGATORS={
            "HHAeXchange": {"base_url": "https://hhax.example.test", "api_key": "hhax-key", "timeout": 5},
            "Sandata": {
                "base_url": "https://sandata.example.test",
                "api_key": "sandata-key",
                "account_id": "ACCT-1",
                "provider_id": "211108",
            },
            "Netsmart": {"base_url": "https://netsmart.example.test", "api_key": "netsmart-key"},
        },
    )
    django.setup()

from evv_compliance.domain import (  # noqa: E402
    COMPLIANT_FLAG,
    AggregatorResult,
    EVVRecord,
    LocationVerification,
    ServiceAddress,
)
from evv_compliance.geo import EARTH_RADIUS_METERS  # noqa: E402

# Austin, TX
CLIENT_LAT = 30.2672
CLIENT_LON = -97.7431
SCHEDULED_START = datetime(2025, 1, 15, 14, 0, tzinfo=pytz.utc)


def north_of(latitude, meters):
    """Latitude `meters` due north; haversine returns exactly `meters` for this offset"""
    return latitude + math.degrees(meters / EARTH_RADIUS_METERS)


class FakeTarget:
    """Stands in for an AggregatorTarget; behaviour decides what submit does"""

    def __init__(self, name, behaviour=None, timeout=5):
        self.name = name
        self.timeout = timeout
        self.behaviour = behaviour
        self.calls = []

    def submit(self, record, rules):
        self.calls.append(record.visit_id)
        if self.behaviour is not None:
            return self.behaviour(record, rules)
        return AggregatorResult(
            aggregator=self.name,
            success=True,
            submission_id=f"{self.name}-SUB-{record.visit_id}",
            confirmation_id=f"{self.name}-CONF",
        )


@pytest.fixture
def make_record():
    def factory(state="TX", distance_m=0, clock_in_offset_min=0, accuracy=20.0,
                clock_out=True, clock_out_distance_m=0, **overrides):
        clock_in_time = SCHEDULED_START + timedelta(minutes=clock_in_offset_min)
        values = dict(
            id="evv-1",
            visit_id="visit-1",
            client_id="client-1",
            caregiver_id="caregiver-1",
            service_type_code="T1019",
            service_type_name="Personal Care",
            client_name="Jane Client",
            client_medicaid_id="A12345678",
            caregiver_name="Carl Caregiver",
            caregiver_employee_id="EMP-1",
            service_date=date(2025, 1, 15),
            service_address=ServiceAddress(
                line1="100 Congress Ave",
                city="Austin",
                state=state,
                postal_code="78701",
                latitude=CLIENT_LAT,
                longitude=CLIENT_LON,
                geofence_radius=100,
                address_verified=True,
            ),
            clock_in_time=clock_in_time,
            scheduled_start_time=SCHEDULED_START,
            scheduled_end_time=SCHEDULED_START + timedelta(hours=2),
            clock_in_verification=LocationVerification(
                latitude=north_of(CLIENT_LAT, distance_m),
                longitude=CLIENT_LON,
                accuracy=accuracy,
                timestamp=clock_in_time,
                geofence_passed=True,
                distance_from_address=distance_m,
            ),
        )
        if clock_out:
            values["clock_out_time"] = SCHEDULED_START + timedelta(hours=2)
            values["clock_out_verification"] = LocationVerification(
                latitude=north_of(CLIENT_LAT, clock_out_distance_m),
                longitude=CLIENT_LON,
                accuracy=accuracy,
                timestamp=values["clock_out_time"],
                geofence_passed=True,
                distance_from_address=clock_out_distance_m,
            )
        values.update(overrides)
        return EVVRecord(**values)

    return factory


@pytest.fixture
def record_dict():
    """Raw record as the integration layer hands it over"""
    return {
        "id": "evv-42",
        "visit_id": "visit-42",
        "client_id": "client-42",
        "caregiver_id": "caregiver-42",
        "service_type_code": "T1019",
        "client_medicaid_id": "A00000042",
        "caregiver_employee_id": "EMP-42",
        "service_date": "2025-01-15",
        "service_address": {
            "line1": "100 Congress Ave",
            "city": "Austin",
            "state": "tx",
            "postal_code": "78701",
            "latitude": CLIENT_LAT,
            "longitude": CLIENT_LON,
            "geofence_radius": 100,
        },
        "clock_in_time": "2025-01-15T14:05:00Z",
        "scheduled_start_time": "2025-01-15T14:00:00Z",
        "clock_in_verification": {
            "latitude": CLIENT_LAT,
            "longitude": CLIENT_LON,
            "accuracy": 15,
            "geofence_passed": True,
            "distance_from_address": 3.5,
        },
        "clock_out_time": "2025-01-15T16:00:00Z",
        "clock_out_verification": {
            "latitude": CLIENT_LAT,
            "longitude": CLIENT_LON,
            "accuracy": 12,
        },
        "compliance_flags": [COMPLIANT_FLAG],
        "payor_approval_status": "PENDING",
    }


@pytest.fixture
def fake_target():
    return FakeTarget


@pytest.fixture
def blocking_target():
    """Target whose submit blocks until the test releases it"""
    released = threading.Event()

    def factory(name, timeout=0.2):
        def behaviour(record, rules):
            released.wait(5)
            return AggregatorResult(aggregator=name, success=True, submission_id="late")
        return FakeTarget(name, behaviour=behaviour, timeout=timeout)

    yield factory
    released.set()
