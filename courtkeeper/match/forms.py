"""Forms for the match blueprint."""

from flask_wtf import FlaskForm  # type: ignore
from wtforms import SelectField, StringField, TextAreaField, ValidationError
from wtforms.validators import DataRequired, Length, Optional

from courtkeeper.core.constants import DISPUTE_REASONS, RESOLVE_ACTIONS


def parse_points(raw):
    """Turn "11, 9, 11" into [11, 9, 11]."""
    points = []
    for part in (raw or "").replace(";", ",").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            points.append(int(part))
        except ValueError:
            raise ValidationError(f"'{part}' is not a whole number.") from None
    return points


class ScoreForm(FlaskForm):
    """Game-by-game points for each side, comma separated."""

    scores_a = StringField("Side A points", validators=[DataRequired()])
    scores_b = StringField("Side B points", validators=[DataRequired()])

    def validate_scores_a(self, field):
        """Validate that every entry is a non-negative whole number."""
        if any(p < 0 for p in parse_points(field.data)):
            raise ValidationError("Scores cannot be negative.")

    def validate_scores_b(self, field):
        """Validate that both sides list the same number of games."""
        points_b = parse_points(field.data)
        if any(p < 0 for p in points_b):
            raise ValidationError("Scores cannot be negative.")
        try:
            points_a = parse_points(self.scores_a.data)
        except ValidationError:
            return
        if len(points_a) != len(points_b):
            raise ValidationError("Both sides need a score for every game.")

    def games(self):
        """Return the parsed (side A, side B) point lists."""
        return parse_points(self.scores_a.data), parse_points(self.scores_b.data)


class ConfirmForm(FlaskForm):
    """Acknowledge a pending score."""

    submission_id = StringField("Submission", validators=[Optional()])


class DisputeForm(FlaskForm):
    """Form for disputing a submitted score."""

    reason = SelectField(
        "Reason",
        choices=[(r, r.replace("_", " ").title()) for r in DISPUTE_REASONS],
        validators=[DataRequired()],
    )
    notes = TextAreaField("Notes", validators=[Optional(), Length(max=500)])


class ResolveDisputeForm(FlaskForm):
    """Organizer decision on a disputed match."""

    action = SelectField(
        "Action",
        choices=[(a, a.title()) for a in RESOLVE_ACTIONS],
        validators=[DataRequired()],
    )
    scores_a = StringField("Side A points", validators=[Optional()])
    scores_b = StringField("Side B points", validators=[Optional()])

    def validate(self, extra_validators=None):
        """Require new scores when editing."""
        if not super().validate(extra_validators=extra_validators):
            return False
        if self.action.data != "edit":
            return True
        try:
            points_a = parse_points(self.scores_a.data)
            points_b = parse_points(self.scores_b.data)
        except ValidationError as e:
            self.scores_a.errors.append(str(e))
            return False
        if not points_a or len(points_a) != len(points_b):
            self.scores_a.errors.append("Enter new scores for both sides.")
            return False
        return True

    def new_scores(self):
        """Return the edited games as (side A, side B) pairs."""
        if self.action.data != "edit":
            return None
        return list(
            zip(parse_points(self.scores_a.data), parse_points(self.scores_b.data))
        )
