"""Forms for the tournament blueprint."""

from flask_wtf import FlaskForm  # type: ignore
from wtforms import TextAreaField, ValidationError
from wtforms.validators import DataRequired


def parse_pool_lines(raw):
    """Parse "Pool A: t1, t2" lines into pool assignment dicts."""
    assignments = []
    for number, line in enumerate((raw or "").splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        if ":" not in line:
            raise ValidationError(f"Line {number} must look like 'Pool A: team1, team2'.")
        name, teams = line.split(":", 1)
        assignments.append(
            {
                "poolName": name.strip(),
                "teamIds": [t.strip() for t in teams.split(",") if t.strip()],
            }
        )
    return assignments


class PoolAssignmentForm(FlaskForm):
    """One pool per line: the pool name, a colon, then team ids."""

    pools = TextAreaField("Pools", validators=[DataRequired()])

    def validate_pools(self, field):
        """Validate that at least one pool was entered."""
        if not parse_pool_lines(field.data):
            raise ValidationError("Enter at least one pool.")

    def assignments(self):
        """Return the parsed pool assignments."""
        return parse_pool_lines(self.pools.data)
