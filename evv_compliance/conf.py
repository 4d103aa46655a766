# conf.py
from django.conf import settings

DEFAULTS = {
    "EVV_AGGREGATORS": {},
    "EVV_AGGREGATOR_TIMEOUT": 30,
    "EVV_AGGREGATOR_MAX_RETRIES": 3,
    "EVV_AGGREGATOR_BACKOFF_FACTOR": 0.5,
    "EVV_STATE_RULE_OVERRIDES": {},
    "EVV_VALIDATION_MAX_WORKERS": 8,
    "EVV_SUBMISSION_MAX_WORKERS": 4,
    "EVV_ASYMMETRIC_GRACE_PERIOD": False,
    "EVV_DASHBOARD_TOP_ISSUES": 10,
}


def get_setting(name):
    """Read an EVV setting, falling back to the packaged default"""
    return getattr(settings, name, DEFAULTS[name])


def get_aggregator_settings(aggregator_name):
    """
    Transport settings for one aggregator, e.g.

        EVV_AGGREGATORS = {
            "Sandata": {"base_url": "...", "api_key": "...", "account_id": "..."},
        }
    """
    configured = get_setting("EVV_AGGREGATORS").get(aggregator_name, {})
    return {
        "base_url": configured.get("base_url", ""),
        "api_key": configured.get("api_key", ""),
        "account_id": configured.get("account_id"),
        "provider_id": configured.get("provider_id"),
        "timeout": configured.get("timeout", get_setting("EVV_AGGREGATOR_TIMEOUT")),
        "max_retries": configured.get("max_retries", get_setting("EVV_AGGREGATOR_MAX_RETRIES")),
        "backoff_factor": configured.get(
            "backoff_factor", get_setting("EVV_AGGREGATOR_BACKOFF_FACTOR")
        ),
    }
