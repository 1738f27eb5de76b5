"""CSV export of a course gradebook.

Pure string transform: no file or network I/O.  Quoting follows the
standard CSV rules via the csv module, so a student named "Doe, Jane"
round-trips through any CSV reader unchanged.
"""

from __future__ import annotations

import csv
import io

from app.models.gradebook import CourseGradebook, StudentGradeSummary
from app.services.gradebook import category_label

NO_DATA = "N/A"


def format_percentage(value: float | None) -> str:
    return NO_DATA if value is None else f"{value:.2f}"


def gradebook_header(gradebook: CourseGradebook) -> list[str]:
    return [
        "Student Name",
        *(f"{category_label(c.category)} %" for c in gradebook.configs),
        "Overall %",
        "Letter Grade",
    ]


def _student_row(gradebook: CourseGradebook, student: StudentGradeSummary) -> list[str]:
    cells = [student.student_name]
    for config in gradebook.configs:
        summary = student.categories.get(config.category)
        cells.append(format_percentage(summary.percentage if summary else None))
    cells.append(format_percentage(student.overall_percentage))
    cells.append(student.letter_grade or NO_DATA)
    return cells


def export_gradebook_csv(gradebook: CourseGradebook) -> str:
    """Header row plus one row per student, in the gradebook's order."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(gradebook_header(gradebook))
    for student in gradebook.students:
        writer.writerow(_student_row(gradebook, student))
    return buf.getvalue()
