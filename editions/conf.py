from django.conf import settings

DEFAULT_ACTIVE_FINANCIAL_STATUSES = ("paid", "authorized", "pending", "partially_paid")


def enforce_capacity():
    return bool(getattr(settings, "EDITIONS_ENFORCE_CAPACITY", False))


def certificate_base_url():
    return getattr(settings, "EDITIONS_CERTIFICATE_BASE_URL", "").rstrip("/")


def active_financial_statuses():
    return tuple(
        getattr(settings, "EDITIONS_ACTIVE_FINANCIAL_STATUSES", DEFAULT_ACTIVE_FINANCIAL_STATUSES)
    )
