"""
Unit tests for JSON request forms
"""

import pytest

from forms import AssignDutyForm, CompleteDutyForm, ProfileForm, StartDutyForm, form_from_json, validated
from services.exceptions import ValidationError
from tests.conftest import AssignDutyPayloadFactory, PassengerFactory


class TestAssignDutyForm:

    def test_valid_payload(self):
        form = validated(form_from_json(AssignDutyForm, AssignDutyPayloadFactory(tour_date='2026-10-19')))
        assert form.tour_date.data.isoformat() == '2026-10-19'
        assert form.passenger.form.heads.data == 2

    def test_missing_passenger_field(self):
        """A missing nested field is a missing-field error naming the path"""
        payload = AssignDutyPayloadFactory(passenger=PassengerFactory(name=None))
        with pytest.raises(ValidationError) as excinfo:
            validated(form_from_json(AssignDutyForm, payload))
        assert excinfo.value.code == 'missing-field'
        assert 'passenger.name' in excinfo.value.message

    @pytest.mark.parametrize('overrides', [
        {'tour_time': '25:00'},
        {'tour_date': '2026/10/19'},
        {'passenger': {'name': 'A', 'heads': 0, 'contact': '9876543210',
                       'designation': 'Manager', 'department': 'Finance'}},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValidationError) as excinfo:
            validated(form_from_json(AssignDutyForm, AssignDutyPayloadFactory(**overrides)))
        assert excinfo.value.code == 'invalid-field'

    def test_non_object_body(self):
        with pytest.raises(ValidationError) as excinfo:
            validated(form_from_json(AssignDutyForm, ['not', 'an', 'object']))
        assert excinfo.value.code == 'missing-field'


class TestOdometerForms:

    def test_start_requires_reading(self):
        with pytest.raises(ValidationError) as excinfo:
            validated(form_from_json(StartDutyForm, {}))
        assert excinfo.value.code == 'missing-field'

    def test_start_rejects_text(self):
        with pytest.raises(ValidationError) as excinfo:
            validated(form_from_json(StartDutyForm, {'start_odometer': 'lots'}))
        assert excinfo.value.code == 'invalid-field'

    def test_fuel_optional(self):
        form = validated(form_from_json(CompleteDutyForm, {'closing_km': 160}))
        assert form.closing_km.data == 160
        assert form.fuel_quantity.data is None

    def test_negative_fuel(self):
        with pytest.raises(ValidationError) as excinfo:
            validated(form_from_json(CompleteDutyForm, {'closing_km': 160, 'fuel_amount': -5}))
        assert excinfo.value.code == 'invalid-field'


class TestProfileForm:

    def test_phone_optional(self):
        form = validated(form_from_json(ProfileForm, {'name': 'Ravi Kumar', 'phone': None}))
        assert form.phone.data == ''

    def test_short_phone(self):
        with pytest.raises(ValidationError) as excinfo:
            validated(form_from_json(ProfileForm, {'name': 'Ravi Kumar', 'phone': '12345'}))
        assert excinfo.value.code == 'invalid-field'
        assert 'phone' in excinfo.value.message

    def test_name_required(self):
        with pytest.raises(ValidationError) as excinfo:
            validated(form_from_json(ProfileForm, {'phone': '9876543210'}))
        assert excinfo.value.code == 'missing-field'
