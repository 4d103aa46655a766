# integration.py
"""
Read-only access to the visit, client and caregiver records owned by the
scheduling and HR verticals.
"""
import logging
from datetime import datetime, time

from .domain import VisitData
from .exceptions import NotFound
from .serializers import EVVRecordSerializer

logger = logging.getLogger(__name__)


def scheduled_start_for(record, tz=None):
    """Scheduled start, or midnight of the service date when none was recorded"""
    if record.scheduled_start_time is not None:
        return record.scheduled_start_time
    midnight = datetime.combine(record.service_date, time.min)
    if record.clock_in_time.tzinfo is None:
        return midnight
    if tz is not None:
        return tz.localize(midnight)
    return midnight.replace(tzinfo=record.clock_in_time.tzinfo)


def build_visit_data(record, tz=None):
    """Assemble the VisitData snapshot validated for one EVV record"""
    clock_in = record.clock_in_verification
    clock_out = record.clock_out_verification
    address = record.service_address

    return VisitData(
        client_latitude=address.latitude,
        client_longitude=address.longitude,
        clock_in_latitude=clock_in.latitude,
        clock_in_longitude=clock_in.longitude,
        clock_in_time=record.clock_in_time,
        scheduled_start_time=scheduled_start_for(record, tz),
        scheduled_end_time=record.scheduled_end_time,
        gps_accuracy=clock_in.accuracy,
        clock_out_latitude=clock_out.latitude if clock_out else None,
        clock_out_longitude=clock_out.longitude if clock_out else None,
        clock_out_time=record.clock_out_time if clock_out else None,
        mock_location_detected=clock_in.mock_location_detected,
    )


class IntegrationService:
    """Interface to the other verticals; every lookup raises NotFound on a miss"""

    def get_evv_record(self, visit_id):
        raise NotImplementedError

    def get_visit_data(self, visit_id, tz=None):
        return build_visit_data(self.get_evv_record(visit_id), tz)

    def get_caregiver_data(self, caregiver_id):
        raise NotImplementedError


class InMemoryIntegrationService(IntegrationService):
    """
    Integration backed by plain dicts, as delivered by the API layer or a
    batch export. Records are validated with EVVRecordSerializer on load.
    """

    def __init__(self, records=(), caregivers=None):
        self._records = {}
        self._caregivers = dict(caregivers or {})
        for data in records:
            self.add_record(data)

    def add_record(self, data):
        serializer = EVVRecordSerializer(data=data)
        serializer.is_valid(raise_exception=True)
        record = serializer.save()
        self._records[record.visit_id] = record
        return record

    def add_caregiver(self, caregiver_id, data):
        self._caregivers[caregiver_id] = dict(data)

    def get_evv_record(self, visit_id):
        try:
            return self._records[visit_id]
        except KeyError:
            logger.warning(f"EVV record lookup failed for visit {visit_id}")
            raise NotFound("Visit", visit_id) from None

    def get_caregiver_data(self, caregiver_id):
        try:
            return dict(self._caregivers[caregiver_id])
        except KeyError:
            raise NotFound("Caregiver", caregiver_id) from None

    def records(self):
        return list(self._records.values())
