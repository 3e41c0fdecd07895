"""CSV report builders for the admin export endpoints."""

import csv
import io
from datetime import datetime


def format_value(value):
    if value is None:
        return ''
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return value


def build_csv(headers: list[str], rows: list[list]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([format_value(value) for value in row])
    return output.getvalue()


def build_students_csv(students: list, enrollment_counts: dict[str, int]) -> str:
    headers = ['ID', 'Email', 'First Name', 'Last Name', 'Active', 'Enrollments', 'Created At']
    rows = [
        [
            student.id,
            student.email,
            student.first_name,
            student.last_name,
            student.is_active,
            enrollment_counts.get(student.id, 0),
            student.created_at,
        ]
        for student in students
    ]
    return build_csv(headers, rows)


def build_test_results_csv(instances: list, users: dict, template_names: dict[str, str], assessment_names: dict[str, str]) -> str:
    headers = ['Instance ID', 'Student Email', 'Student Name', 'Test', 'Score', 'Percentage', 'Passed', 'Submitted At']
    rows = []
    for instance in instances:
        student = users.get(instance.student_id)
        test_name = (
            template_names.get(instance.test_template_id)
            or assessment_names.get(instance.topic_assessment_id)
            or ''
        )
        rows.append([
            instance.id,
            student.email if student else '',
            student.full_name if student else '',
            test_name,
            instance.score,
            instance.percentage,
            instance.passed,
            instance.submitted_at,
        ])
    return build_csv(headers, rows)
