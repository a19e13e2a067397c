"""
Section 91 CrPC Application Renderer

Pure rendering: `render_document(template_kind, content) -> bytes`.
`content` is the canonical payload built by the case service; nothing here
reads the database.
"""
from io import BytesIO
from typing import Any, Dict, List
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle


CRPC_91_APPLICATION = "crpc_91_application"

PAGE_MARGIN = 20 * mm
CONTENT_WIDTH = A4[0] - (PAGE_MARGIN * 2)
NOT_PROVIDED = "Not provided"

styles = getSampleStyleSheet()

COURT_STYLE = ParagraphStyle(
    name="CourtHeading",
    parent=styles["Title"],
    fontName="Helvetica-Bold",
    fontSize=13,
    leading=17,
    spaceAfter=4,
)

TITLE_STYLE = ParagraphStyle(
    name="ApplicationTitle",
    parent=styles["Title"],
    fontName="Helvetica-Bold",
    fontSize=11,
    leading=14,
    spaceBefore=6,
    spaceAfter=10,
)

HEADING_STYLE = ParagraphStyle(
    name="SectionHeading",
    fontName="Helvetica-Bold",
    fontSize=10,
    leading=13,
    spaceBefore=8,
    spaceAfter=4,
    keepWithNext=True,
)

BODY_STYLE = ParagraphStyle(
    name="BodyText",
    fontName="Helvetica",
    fontSize=9,
    leading=12,
    wordWrap="CJK",
    splitLongWords=True,
)

LABEL_STYLE = ParagraphStyle(name="LabelText", parent=BODY_STYLE, fontName="Helvetica-Bold")

PRAYER_ITEMS = [
    "Direct the concerned authorities to investigate the matter",
    "Freeze the accused's bank accounts and payment handles",
    "Direct the telecom service provider to furnish subscriber details of the accused's numbers",
    "Take appropriate legal action against the accused",
]


class UnknownTemplateError(ValueError):
    """Raised for a template kind this renderer does not know."""


def _text(value: Any, default: str = NOT_PROVIDED) -> str:
    if value is None or value == "":
        return default
    return escape(str(value))


def _details_table(rows: List[tuple]) -> Table:
    data = [[Paragraph(escape(label), LABEL_STYLE), Paragraph(_text(value), BODY_STYLE)] for label, value in rows]
    table = Table(data, colWidths=[CONTENT_WIDTH * 0.3, CONTENT_WIDTH * 0.7])
    table.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("BACKGROUND", (0, 0), (0, -1), colors.whitesmoke),
        ("LEFTPADDING", (0, 0), (-1, -1), 4),
        ("RIGHTPADDING", (0, 0), (-1, -1), 4),
    ]))
    return table


def _format_amount(amount: Any) -> str:
    try:
        return f"INR {float(amount):,.2f}"
    except (TypeError, ValueError):
        return NOT_PROVIDED


def _crpc_91_story(content: Dict[str, Any]) -> list:
    case = content.get("case", {})
    victim = content.get("victim", {})
    accused = content.get("accused", {})
    evidence = content.get("evidence", [])
    issued_on = content.get("issued_on", "")

    story = [
        Paragraph("IN THE COURT OF THE CHIEF JUDICIAL MAGISTRATE", COURT_STYLE),
        Paragraph("CYBER CRIME DIVISION", COURT_STYLE),
        Paragraph(
            f"Document No: {_text(content.get('document_number'))}<br/>"
            f"Case No: {_text(case.get('case_code'))}<br/>Date: {_text(issued_on)}",
            BODY_STYLE,
        ),
        Paragraph("APPLICATION UNDER SECTION 91 OF THE CODE OF CRIMINAL PROCEDURE, 1973", TITLE_STYLE),
        Paragraph(
            "The undersigned respectfully submits that the applicant is a victim of cyber fraud "
            "committed by the accused person(s) detailed below, and that the documents and records "
            "held by the addressed authorities are necessary for the investigation.",
            BODY_STYLE,
        ),
        Paragraph("1. VICTIM DETAILS", HEADING_STYLE),
        _details_table([
            ("Name", victim.get("name")),
            ("Address", victim.get("address")),
            ("Phone", victim.get("phone")),
            ("Email", victim.get("email")),
            ("Government ID", victim.get("government_id")),
        ]),
        Paragraph("2. ACCUSED DETAILS", HEADING_STYLE),
        _details_table([
            ("Name", accused.get("name") or "Unknown"),
            ("Phone", accused.get("phone")),
            ("Email", accused.get("email")),
            ("UPI / Payment Handle", accused.get("payment_handle")),
            ("Bank Account", accused.get("bank_account")),
            ("IFSC Code", accused.get("routing_code")),
            ("Address", accused.get("address")),
            ("Linked Complaints", accused.get("case_count")),
        ]),
        Paragraph("3. INCIDENT DETAILS", HEADING_STYLE),
        _details_table([
            ("Date of Incident", case.get("incident_date")),
            ("Amount Lost", _format_amount(case.get("amount"))),
            ("Case Type", case.get("case_type")),
            ("Location", case.get("location")),
            ("Description", case.get("description")),
        ]),
        Paragraph("4. EVIDENCE", HEADING_STYLE),
    ]

    if evidence:
        for index, item in enumerate(evidence, start=1):
            story.append(Paragraph(f"{index}. {_text(item.get('name'))} ({_text(item.get('kind'), 'file')})", BODY_STYLE))
    else:
        story.append(Paragraph("No evidence files were attached to the complaint.", BODY_STYLE))

    story.append(Paragraph("5. PRAYER", HEADING_STYLE))
    story.append(Paragraph(
        "It is therefore most respectfully prayed that this Hon'ble Court may be pleased to:",
        BODY_STYLE,
    ))
    for letter, item in zip("abcdefgh", PRAYER_ITEMS):
        story.append(Paragraph(f"{letter}) {escape(item)}", BODY_STYLE))

    story.extend([
        Spacer(1, 10),
        Paragraph("AND FOR THIS ACT OF KINDNESS, THE APPLICANT SHALL EVER REMAIN GRATEFUL.", LABEL_STYLE),
        Spacer(1, 14),
        Paragraph(f"Dated: {_text(issued_on)}", BODY_STYLE),
        Paragraph("Respectfully submitted,<br/>Fraud Investigation Team<br/>Cyber Crime Division", BODY_STYLE),
        Spacer(1, 10),
        Paragraph("VERIFICATION", HEADING_STYLE),
        Paragraph(
            "Verified that the contents of the above application are true and correct to the best "
            "of the applicant's knowledge and belief.",
            BODY_STYLE,
        ),
    ])
    return story


_TEMPLATES = {
    CRPC_91_APPLICATION: _crpc_91_story,
}


def render_document(template_kind: str, content: Dict[str, Any]) -> bytes:
    """Render `content` with the named template to PDF bytes."""
    build_story = _TEMPLATES.get(template_kind)
    if build_story is None:
        raise UnknownTemplateError(f"Unknown document template: {template_kind}")

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=PAGE_MARGIN,
        rightMargin=PAGE_MARGIN,
        topMargin=PAGE_MARGIN,
        bottomMargin=PAGE_MARGIN,
        title=f"Section 91 CrPC Application {content.get('document_number', '')}",
        author="Cyber Crime Division",
    )
    doc.build(build_story(content))
    return buffer.getvalue()
