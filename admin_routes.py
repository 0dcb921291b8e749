"""
Admin API
Duty assignment and cancellation, the driver roster, dashboards, reports and live tracking
"""

from flask import Blueprint, Response, request, jsonify, g
import logging

from app import get_services
from forms import AssignDutyForm, form_from_json, validated
from mobile_auth import session_required
from models import UserRole
from timezone_utils import get_ist_today

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)


@admin_bp.route('/duties', methods=['POST'])
@session_required(UserRole.ADMIN)
def assign_duty():
    """Assign a duty to an available driver"""
    form = validated(form_from_json(AssignDutyForm, request.get_json(silent=True)))
    passenger = form.passenger.form

    task_id = get_services().duties.assign_duty(
        driver_id=form.driver_id.data.strip(),
        passenger={
            'name': passenger.name.data,
            'heads': passenger.heads.data,
            'contact': passenger.contact.data,
            'designation': passenger.designation.data,
            'department': passenger.department.data,
        },
        tour_location=form.tour_location.data,
        tour_date=form.tour_date.data.strftime('%Y-%m-%d'),
        tour_time=form.tour_time.data,
        notes=form.notes.data or '',
        assigned_by=g.session.user_id
    )

    return jsonify({
        'success': True,
        'message': 'Duty assigned',
        'task_id': task_id
    }), 201


@admin_bp.route('/duties/<task_id>', methods=['DELETE'])
@session_required(UserRole.ADMIN)
def cancel_duty(task_id):
    """Delete an assigned duty and return the driver to the available pool"""
    result = get_services().duties.cancel_duty(task_id, cancelled_by=g.session.user_id)
    return jsonify({
        'success': True,
        'message': 'Duty cancelled and driver reset to available',
        'task_id': task_id,
        'driver_synced': result.driver_synced
    })


@admin_bp.route('/drivers', methods=['GET'])
@session_required(UserRole.ADMIN)
def driver_roster():
    """Fleet personnel list; ?search= narrows by name"""
    search = request.args.get('search', '')
    drivers = get_services().reporting.driver_roster(search)
    return jsonify({
        'success': True,
        'search': search,
        'count': len(drivers),
        'drivers': drivers
    })


@admin_bp.route('/drivers/available', methods=['GET'])
@session_required(UserRole.ADMIN)
def available_drivers():
    drivers = get_services().reporting.available_drivers()
    return jsonify({
        'success': True,
        'count': len(drivers),
        'drivers': drivers
    })


@admin_bp.route('/dashboard', methods=['GET'])
@session_required(UserRole.ADMIN)
def dashboard():
    return jsonify({
        'success': True,
        'stats': get_services().reporting.dashboard_stats()
    })


@admin_bp.route('/duty-records', methods=['GET'])
@session_required(UserRole.ADMIN)
def duty_records():
    record_filter = request.args.get('filter', 'all')
    records = get_services().reporting.duty_records(record_filter)
    return jsonify({
        'success': True,
        'filter': record_filter,
        'count': len(records),
        'duties': records
    })


@admin_bp.route('/reports/daywise', methods=['GET'])
@session_required(UserRole.ADMIN)
def daywise_report():
    report_date = request.args.get('date') or get_ist_today()
    return jsonify({
        'success': True,
        **get_services().reporting.daywise_report(report_date)
    })


@admin_bp.route('/reports/daywise.csv', methods=['GET'])
@session_required(UserRole.ADMIN)
def daywise_report_csv():
    report_date = request.args.get('date') or get_ist_today()
    content = get_services().reporting.daywise_csv(report_date)

    logger.info(f"Day-wise report exported for {report_date} by {g.session.user_id}")
    return Response(
        content,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename=DutySync_Report_{report_date}.csv'}
    )


@admin_bp.route('/drivers/<driver_id>/profile', methods=['GET'])
@session_required(UserRole.ADMIN)
def driver_profile(driver_id):
    return jsonify({
        'success': True,
        'profile': get_services().reporting.driver_profile(driver_id)
    })


@admin_bp.route('/tracking/live', methods=['GET'])
@session_required(UserRole.ADMIN)
def live_tracking():
    positions = get_services().reporting.live_positions()
    return jsonify({
        'success': True,
        'online': sum(1 for driver in positions if driver['isOnline']),
        'drivers': positions
    })


@admin_bp.route('/reconcile', methods=['POST'])
@session_required(UserRole.ADMIN)
def reconcile():
    """Repair driver records that drifted from their tasks"""
    report = get_services().reconciliation.reconcile()
    return jsonify({
        'success': True,
        **report.to_dict()
    })
