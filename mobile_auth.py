"""
Mobile Authentication Module
Exchanges a Firebase ID token for an API session (JWT) and ends it at logout
"""

from functools import wraps

from flask import Blueprint, request, jsonify, g
from flask_jwt_extended import create_access_token, get_jwt, get_jwt_identity, verify_jwt_in_request
import logging

from app import get_services
from forms import SessionForm, form_from_json, validated
from models import UserRole
from services.exceptions import AuthenticationError
from services.session_service import Session

logger = logging.getLogger(__name__)

# Create mobile auth blueprint
mobile_auth_bp = Blueprint('mobile_auth', __name__)

# JWT token blocklist for logout functionality
revoked_tokens = set()


def session_required(role: UserRole = None):
    """
    Require a valid access token and expose its Session as g.session.

    Args:
        role: restrict the endpoint to one role
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            session = Session.from_claims(get_jwt_identity(), get_jwt())
            if role is not None and session.role is not role:
                logger.warning(f"ROLE_DENIED: User {session.user_id} ({session.role.value}) "
                               f"tried {request.path}")
                return jsonify({
                    'success': False,
                    'error': 'forbidden',
                    'message': f'{role.value.capitalize()} access required'
                }), 403
            g.session = session
            return view(*args, **kwargs)
        return wrapper
    return decorator


@mobile_auth_bp.route('/api/v1/auth/session', methods=['POST'])
def create_session():
    """Verify a Firebase ID token and issue an access token carrying the role"""
    services = get_services()

    form = validated(form_from_json(SessionForm, request.get_json(silent=True)))

    claims = services.firebase.verify_id_token(form.id_token.data)
    if not claims or not claims.get('uid'):
        raise AuthenticationError('Invalid or expired sign-in token')

    session = services.sessions.login(claims['uid'])
    access_token = create_access_token(identity=session.user_id, additional_claims=session.claims())

    logger.info(f"MOBILE_LOGIN: User: {session.user_id} Role: {session.role.value}")
    return jsonify({
        'success': True,
        'access_token': access_token,
        'user_id': session.user_id,
        'role': session.role.value,
        'name': session.name
    })


@mobile_auth_bp.route('/api/v1/auth/session', methods=['DELETE'])
@session_required()
def end_session():
    """Logout: revoke the token and take a driver offline"""
    revoked_tokens.add(get_jwt()['jti'])
    synced = get_services().sessions.logout(g.session)

    logger.info(f"MOBILE_LOGOUT: User: {g.session.user_id}")
    return jsonify({
        'success': True,
        'message': 'Successfully logged out',
        'driver_synced': synced
    })


# JWT token blocklist checker
def check_if_token_revoked(jwt_header, jwt_payload):
    """Check if JWT token is in the blocklist"""
    return jwt_payload['jti'] in revoked_tokens
