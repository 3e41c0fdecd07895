"""Certificate numbering, issuing and PDF rendering."""

import logging
import secrets
from datetime import datetime
from io import BytesIO

from pypdf import PdfWriter
from pypdf.generic import ContentStream, DictionaryObject, FloatObject, NameObject, TextStringObject

from drivingschool.core import config
from drivingschool.models.certificate import Certificate

logger = logging.getLogger(__name__)

CERTIFICATE_PREFIX = 'DS'
MAX_NUMBER_ATTEMPTS = 10

# A4 landscape, in points.
PAGE_WIDTH = 842
PAGE_HEIGHT = 595

# Rough Helvetica advance width as a fraction of the font size.
AVERAGE_GLYPH_WIDTH = 0.5


def generate_certificate_number(now: datetime | None = None) -> str:
    year = (now or datetime.now()).year
    return f'{CERTIFICATE_PREFIX}-{year}-{secrets.token_hex(4).upper()}'


def issue_certificate(storage, course_id: str, student_id: str) -> Certificate:
    for _ in range(MAX_NUMBER_ATTEMPTS):
        number = generate_certificate_number()
        if storage.get_certificate_by_number(number) is None:
            break
    else:
        raise RuntimeError('Could not allocate a unique certificate number.')

    certificate = storage.create_certificate(
        course_id=course_id,
        student_id=student_id,
        certificate_number=number,
        issued_at=datetime.now(),
    )
    logger.info('Issued certificate %s for student %s in course %s', number, student_id, course_id)
    return certificate


def _pdf_text(value: str) -> str:
    # Standard Type1 fonts only cover Latin-1.
    return (value or '').encode('latin-1', 'replace').decode('latin-1')


def _centered_text(text: str, font: str, size: float, y: float) -> list:
    text = _pdf_text(text)
    x = max((PAGE_WIDTH - len(text) * size * AVERAGE_GLYPH_WIDTH) / 2, 36)
    return [
        ([], b'BT'),
        ([NameObject(font), FloatObject(size)], b'Tf'),
        ([FloatObject(x), FloatObject(y)], b'Td'),
        ([TextStringObject(text)], b'Tj'),
        ([], b'ET'),
    ]


def _frame(inset: float, line_width: float) -> list:
    return [
        ([FloatObject(line_width)], b'w'),
        (
            [
                FloatObject(inset),
                FloatObject(inset),
                FloatObject(PAGE_WIDTH - 2 * inset),
                FloatObject(PAGE_HEIGHT - 2 * inset),
            ],
            b're',
        ),
        ([], b'S'),
    ]


def _font(base_font: str) -> DictionaryObject:
    return DictionaryObject({
        NameObject('/Type'): NameObject('/Font'),
        NameObject('/Subtype'): NameObject('/Type1'),
        NameObject('/BaseFont'): NameObject(base_font),
        NameObject('/Encoding'): NameObject('/WinAnsiEncoding'),
    })


def render_certificate_pdf(certificate: Certificate, student_name: str, course_name: str) -> bytes:
    """Render a one-page A4 landscape certificate and return the PDF bytes."""
    writer = PdfWriter()
    page = writer.add_blank_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
    page[NameObject('/Resources')] = DictionaryObject({
        NameObject('/Font'): DictionaryObject({
            NameObject('/F1'): _font('/Helvetica'),
            NameObject('/F2'): _font('/Helvetica-Bold'),
        }),
    })

    issued_on = certificate.issued_at.strftime('%B %d, %Y') if certificate.issued_at else ''

    operations = []
    operations += _frame(20, 3)
    operations += _frame(30, 1)
    operations += _centered_text('Certificate of Completion', '/F2', 36, 470)
    operations += _centered_text('This is to certify that', '/F1', 16, 400)
    operations += _centered_text(student_name or 'Student', '/F2', 28, 350)
    operations += _centered_text('has successfully completed the course', '/F1', 16, 300)
    operations += _centered_text(course_name or 'Course', '/F2', 22, 255)
    operations += _centered_text(f'Issued on {issued_on}', '/F1', 12, 180)
    operations += _centered_text(f'Certificate No. {certificate.certificate_number}', '/F1', 12, 160)
    operations += _centered_text(config.SCHOOL_NAME, '/F2', 14, 90)

    content = ContentStream(None, writer)
    content.operations = operations
    page.replace_contents(content)

    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()
