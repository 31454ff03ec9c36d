from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import DataRequired, Optional

REQUIRED_FIELDS = ("mainCharacter", "plot", "ending")


class StoryRequestForm(FlaskForm):
    """Story parameters as posted by the generator page (JSON or form-encoded)."""

    class Meta:
        csrf = False

    mainCharacter = StringField("Main character", validators=[DataRequired()])
    plot = StringField("Plot", validators=[DataRequired()])
    ending = StringField("Ending", validators=[DataRequired()])
    genre = StringField("Genre", validators=[Optional()])
    literature = StringField("Literary form", validators=[Optional()])

    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if self.errors.get(name)]
