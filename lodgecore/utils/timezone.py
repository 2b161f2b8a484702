from datetime import date, datetime
from typing import Optional

import pytz

from lodgecore import config


def get_tz(tz_name: Optional[str] = None):
    """Tenant timezone, falling back to HOTEL_TIMEZONE"""
    return pytz.timezone(tz_name or config.HOTEL_TIMEZONE)


def get_hotel_now(tz_name: Optional[str] = None) -> datetime:
    """Returns current time in the hotel timezone"""
    return datetime.now(get_tz(tz_name))


def get_operational_date(tz_name: Optional[str] = None) -> date:
    """Today's calendar date as seen at the lodge"""
    return get_hotel_now(tz_name).date()


def tenant_today(tenant) -> date:
    return get_operational_date(getattr(tenant, "timezone", None))
