from __future__ import annotations

from jinja2 import Environment, StrictUndefined


FULL_DAY_TEMPLATE = """Dear Parent,

Your child {{ student_name }} ({{ student_id }}) was ABSENT for the WHOLE DAY on {{ date }}.

Stream: {{ stream }}
Semester: {{ semester }}
Total Subjects: {{ absent_subjects | length }}

Please contact the school if this is incorrect.

Best regards,
{{ institution }}"""

PARTIAL_DAY_TEMPLATE = """Dear Parent,

Your child {{ student_name }} ({{ student_id }}) was ABSENT for the following subject(s) on {{ date }}:

{% for subject in absent_subjects %}{{ loop.index }}. {{ subject }}
{% endfor %}
Stream: {{ stream }}
Semester: {{ semester }}

Please contact the school if this is incorrect.

Best regards,
{{ institution }}"""


class TemplateEngine:
    def __init__(self) -> None:
        self.env = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=False)
        self.templates = {
            'full_day': self.env.from_string(FULL_DAY_TEMPLATE),
            'partial_day': self.env.from_string(PARTIAL_DAY_TEMPLATE),
        }

    def render(self, message_type: str, context: dict[str, object]) -> str:
        return self.templates[message_type].render(**context)


template_engine = TemplateEngine()
