from wtforms import Form, FormField, StringField, IntegerField, FloatField, DateField, TextAreaField
from wtforms.validators import DataRequired, InputRequired, NumberRange, Optional, Regexp, Length
from werkzeug.datastructures import MultiDict

from services.exceptions import ValidationError

REQUIRED_MESSAGE = 'This field is required.'


class PassengerForm(Form):
    name = StringField('Passenger Name', validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=120)])
    heads = IntegerField('Number of Heads', validators=[InputRequired(message=REQUIRED_MESSAGE),
                                                        NumberRange(min=1, message='At least one passenger')])
    contact = StringField('Contact', validators=[DataRequired(message=REQUIRED_MESSAGE),
                                                 Regexp(r'^\d{10}$', message='Contact must be 10 digits')])
    designation = StringField('Designation', validators=[DataRequired(message=REQUIRED_MESSAGE)])
    department = StringField('Department', validators=[DataRequired(message=REQUIRED_MESSAGE)])


class AssignDutyForm(Form):
    driver_id = StringField('Driver', validators=[DataRequired(message=REQUIRED_MESSAGE)])
    passenger = FormField(PassengerForm)
    tour_location = StringField('Tour Location', validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=255)])
    tour_date = DateField('Tour Date', format='%Y-%m-%d', validators=[InputRequired(message=REQUIRED_MESSAGE)])
    tour_time = StringField('Tour Time', validators=[DataRequired(message=REQUIRED_MESSAGE),
                                                     Regexp(r'^([01]\d|2[0-3]):[0-5]\d$', message='Use HH:MM')])
    notes = TextAreaField('Notes', validators=[Optional(), Length(max=1000)])


class StartDutyForm(Form):
    start_odometer = FloatField('Start Odometer', validators=[InputRequired(message=REQUIRED_MESSAGE),
                                                             NumberRange(min=0)])


class CompleteDutyForm(Form):
    closing_km = FloatField('Closing Odometer', validators=[InputRequired(message=REQUIRED_MESSAGE),
                                                            NumberRange(min=0)])
    fuel_quantity = FloatField('Fuel Quantity', validators=[Optional(), NumberRange(min=0)])
    fuel_amount = FloatField('Fuel Amount', validators=[Optional(), NumberRange(min=0)])


class ProfileForm(Form):
    name = StringField('Full Name', validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=120)])
    phone = StringField('Phone', validators=[Optional(), Regexp(r'^\d{10}$', message='Phone must be 10 digits')])


class SessionForm(Form):
    id_token = StringField('ID Token', validators=[DataRequired(message=REQUIRED_MESSAGE)])


def _flatten(payload, prefix=''):
    flat = {}
    for key, value in payload.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{name}-"))
        elif isinstance(value, (list, tuple)):
            continue
        elif value is None:
            flat[name] = ''
        else:
            flat[name] = str(value)
    return flat


def form_from_json(form_class, payload):
    """Bind a JSON body to a form; nested objects map onto FormField prefixes"""
    if not isinstance(payload, dict):
        payload = {}
    return form_class(formdata=MultiDict(_flatten(payload)))


def _error_lines(errors, prefix=''):
    for field_name, messages in errors.items():
        if isinstance(messages, dict):
            yield from _error_lines(messages, f"{prefix}{field_name}.")
        else:
            for message in messages:
                yield f"{prefix}{field_name}", message


def validated(form):
    """Validate a bound form; raise ValidationError describing every failing field"""
    if form.validate():
        return form

    lines = list(_error_lines(form.errors))
    code = 'missing-field' if any(message == REQUIRED_MESSAGE for _, message in lines) else 'invalid-field'
    raise ValidationError(code, '; '.join(f"{name}: {message}" for name, message in lines))
