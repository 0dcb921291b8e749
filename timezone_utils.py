from datetime import datetime, timezone
import pytz

IST = pytz.timezone('Asia/Kolkata')

def get_ist_time_naive():
    """Get current IST time as naive datetime for display and day bucketing"""
    return datetime.now(IST).replace(tzinfo=None)

def get_ist_today():
    """Today's date in IST as YYYY-MM-DD, the format stored in tourDate"""
    return datetime.now(IST).strftime('%Y-%m-%d')

def utc_now():
    """Timezone-aware UTC now, used when the store resolves server timestamps"""
    return datetime.now(timezone.utc)

def convert_to_ist(dt):
    """Convert datetime to IST timezone"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        # Assume UTC if no timezone info
        dt = pytz.utc.localize(dt)
    return dt.astimezone(IST)
