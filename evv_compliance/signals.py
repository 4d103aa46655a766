# signals.py
from django.dispatch import Signal

# Sent after every aggregator submission attempt made by validate_and_submit.
# kwargs: record, state, submission_status, results
#
# The persistence layer connects here to mark the visit submitted, e.g.
#
#     @receiver(evv_submission_completed)
#     def record_submission(sender, record, submission_status, results, **kwargs):
#         ...
evv_submission_completed = Signal()
