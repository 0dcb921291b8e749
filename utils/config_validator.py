"""
Configuration validation for DutySync
Checks the environment before the API or the tracking agent starts
"""
import os
import logging
from typing import Dict, List, Tuple, Any

logger = logging.getLogger(__name__)

STORE_BACKENDS = ('sql', 'firestore')

class ConfigValidationError(Exception):
    """Raised when critical configuration is missing or invalid"""
    pass

def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('true', '1', 'yes', 'on')

def env_number(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigValidationError(f"{name} must be a number, got {value!r}")

def validate_store_config() -> Tuple[bool, List[str]]:
    """
    Validate document store configuration.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    backend = os.getenv('DOCUMENT_STORE', 'sql').lower()
    if backend not in STORE_BACKENDS:
        issues.append(f"DOCUMENT_STORE must be one of {', '.join(STORE_BACKENDS)}, got '{backend}'")
    elif backend == 'firestore':
        credentials = os.getenv('FIREBASE_CREDENTIALS') or os.getenv('GOOGLE_APPLICATION_CREDENTIALS')
        if not credentials:
            issues.append("Firestore selected but neither FIREBASE_CREDENTIALS nor "
                          "GOOGLE_APPLICATION_CREDENTIALS is set")
        elif not os.path.exists(credentials):
            issues.append(f"Firebase credentials file not found: {credentials}")
    elif os.getenv('DOCUMENT_STORE_URL', '').startswith('sqlite') and os.getenv('FLASK_ENV') == 'production':
        issues.append("SQLite document store is for development only")

    return len(issues) == 0, issues

def validate_flask_config() -> Tuple[bool, List[str]]:
    """
    Validate Flask configuration for production.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    session_secret = os.getenv('SESSION_SECRET')
    if not session_secret:
        issues.append("Missing SESSION_SECRET environment variable")
    elif len(session_secret) < 32:
        issues.append("SESSION_SECRET should be at least 32 characters for security")

    if env_flag('DEBUG'):
        issues.append("DEBUG mode is enabled - should be disabled in production")

    if os.getenv('ALLOWED_ORIGINS', '*').strip() == '*':
        issues.append("ALLOWED_ORIGINS allows every origin")

    return len(issues) == 0, issues

def validate_tracking_config() -> Tuple[bool, List[str]]:
    """Validate location tracking intervals and gateway settings"""
    issues = []
    try:
        if env_number('LOCATION_TIME_INTERVAL_SECONDS', 30) <= 0:
            issues.append("LOCATION_TIME_INTERVAL_SECONDS must be positive")
        if env_number('LOCATION_DISTANCE_INTERVAL_METERS', 10) < 0:
            issues.append("LOCATION_DISTANCE_INTERVAL_METERS cannot be negative")
    except ConfigValidationError as e:
        issues.append(str(e))

    if env_flag('LOCATION_TRACKING_ENABLED') and not os.getenv('LOCATION_GATEWAY_URL'):
        issues.append("LOCATION_TRACKING_ENABLED is set but LOCATION_GATEWAY_URL is missing")

    return len(issues) == 0, issues

def check_production_readiness() -> Dict[str, Any]:
    """
    Comprehensive check of production readiness.

    Returns:
        dict: Status information including issues and recommendations
    """
    debug_mode = env_flag('DEBUG')

    store_valid, store_issues = validate_store_config()
    flask_valid, flask_issues = validate_flask_config()
    tracking_valid, tracking_issues = validate_tracking_config()

    all_issues = store_issues + flask_issues + tracking_issues
    is_production_ready = bool(len(all_issues) == 0 and not debug_mode)

    result = {
        'production_ready': is_production_ready,
        'debug_mode': debug_mode,
        'store_configured': store_valid,
        'tracking_configured': tracking_valid,
        'issues': all_issues,
        'recommendations': []
    }

    if debug_mode:
        result['recommendations'].append("Disable DEBUG mode for production deployment")

    if not store_valid:
        result['recommendations'].append("Fix document store settings before serving requests")

    if not is_production_ready:
        result['recommendations'].append("Address configuration issues before deploying to production")

    if is_production_ready:
        logger.info("CONFIG: Production readiness check PASSED")
    else:
        logger.warning(f"CONFIG: Production readiness check FAILED - Issues: {len(all_issues)}")
        for issue in all_issues:
            logger.warning(f"CONFIG: Issue - {issue}")

    return result
