from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import DataRequired


class TrackForm(FlaskForm):
    """Page view payload posted by the client as JSON"""

    class Meta:
        csrf = False

    pagePath = StringField('Page Path', validators=[DataRequired(message='pagePath is required')])
    pageTitle = StringField('Page Title')
    referrer = StringField('Referrer')

    def first_error(self):
        for errors in self.errors.values():
            if errors:
                return errors[0]
        return 'Invalid page view payload'
