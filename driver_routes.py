"""
Driver API
A driver's own duty lists, trip history, profile and the start / complete actions
"""

from flask import Blueprint, request, jsonify, g
import logging

from app import get_services
from forms import CompleteDutyForm, ProfileForm, StartDutyForm, form_from_json, validated
from mobile_auth import session_required
from models import UserRole

logger = logging.getLogger(__name__)

driver_bp = Blueprint('driver', __name__)


@driver_bp.route('/duties', methods=['GET'])
@session_required(UserRole.DRIVER)
def list_duties():
    mode = request.args.get('mode', 'all')
    duties = get_services().reporting.driver_duties(g.session.user_id, mode)
    return jsonify({
        'success': True,
        'mode': mode,
        'count': len(duties),
        'duties': duties
    })


@driver_bp.route('/duties/today', methods=['GET'])
@session_required(UserRole.DRIVER)
def todays_duties():
    duties = get_services().reporting.today_duties(g.session.user_id)
    return jsonify({
        'success': True,
        'count': len(duties),
        'duties': duties
    })


@driver_bp.route('/duties/history', methods=['GET'])
@session_required(UserRole.DRIVER)
def duty_history():
    """Completed trips grouped by day"""
    return jsonify({
        'success': True,
        **get_services().reporting.driver_history(g.session.user_id)
    })


@driver_bp.route('/duties/<task_id>/start', methods=['POST'])
@session_required(UserRole.DRIVER)
def start_duty(task_id):
    """Start an assigned duty with the opening odometer reading"""
    form = validated(form_from_json(StartDutyForm, request.get_json(silent=True)))

    result = get_services().duties.start_duty(task_id, g.session.user_id, form.start_odometer.data)

    if not result.driver_synced:
        logger.warning(f"Duty {task_id} started but driver record not synced")
    return jsonify({
        'success': True,
        'message': 'Duty started',
        **result.to_dict()
    })


@driver_bp.route('/duties/<task_id>/complete', methods=['POST'])
@session_required(UserRole.DRIVER)
def complete_duty(task_id):
    """Complete an in-progress duty with the closing odometer and fuel figures"""
    form = validated(form_from_json(CompleteDutyForm, request.get_json(silent=True)))

    result = get_services().duties.complete_duty(
        task_id, g.session.user_id,
        form.closing_km.data,
        fuel_quantity=form.fuel_quantity.data,
        fuel_amount=form.fuel_amount.data
    )

    if not result.driver_synced:
        logger.warning(f"Duty {task_id} completed but driver record not synced")
    return jsonify({
        'success': True,
        'message': f'Journey completed: {result.kilometers:g} km',
        **result.to_dict()
    })


@driver_bp.route('/profile', methods=['GET', 'POST'])
@session_required(UserRole.DRIVER)
def profile():
    drivers = get_services().drivers
    if request.method == 'POST':
        form = validated(form_from_json(ProfileForm, request.get_json(silent=True)))
        updated = drivers.update_profile(g.session.user_id, form.name.data, form.phone.data or '')
        return jsonify({
            'success': True,
            'message': 'Profile information updated',
            'profile': updated
        })

    return jsonify({
        'success': True,
        'profile': drivers.get_profile(g.session.user_id)
    })
