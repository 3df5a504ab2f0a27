#!/usr/bin/env python
# coding: utf-8

"""
PDF run reports for differential methylation window calling.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, StyleSheet1, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    ListFlowable,
    ListItem,
    Paragraph,
    Preformatted,
    SimpleDocTemplate,
    Spacer,
)

# heading prefix -> (style name, font size, space before)
HEADINGS = {
    "### ": ("H3", 12, 6),
    "## ": ("H2", 14, 20),
    "# ": ("H1", 16, 25),
}


def _build_styles() -> StyleSheet1:
    styles = getSampleStyleSheet()
    for name, size, before in HEADINGS.values():
        styles.add(
            ParagraphStyle(
                name,
                parent=styles["Normal"],
                fontName="Helvetica-Bold",
                fontSize=size,
                leading=size + 2,
                spaceBefore=before,
                spaceAfter=6,
            )
        )
    styles.add(
        ParagraphStyle(
            "CodeBlock",
            parent=styles["Normal"],
            fontName="Courier",
            fontSize=9,
        )
    )
    return styles


class PDFLogger:
    """Collects Markdown-like lines and tables into a PDF run report."""

    def __init__(self, path: Optional[str] = "report.pdf", echo: bool = True):
        self.path = path
        self.echo = echo
        self.doc = SimpleDocTemplate(path, pagesize=A4)
        self.styles = _build_styles()
        self.story: List[Any] = []
        self.current_list: Optional[ListFlowable] = None

    def _format_md(self, text: str) -> str:
        """Bold, italics and inline code."""
        text = re.sub(r"\*\*(.*?)\*\*", r"<b>\1</b>", text)
        text = re.sub(r"\*([^*]+)\*", r"<i>\1</i>", text)
        text = re.sub(r"`(.*?)`", r"<font name='Courier'>\1</font>", text)
        return text

    def _emit(self, text: str):
        if self.echo:
            print(text)

    def _bullet(self, text: str):
        item = ListItem(Paragraph(self._format_md(text), self.styles["Normal"]))
        if self.current_list is None:
            self.current_list = ListFlowable(
                [item],
                bulletType="bullet",
                leftIndent=18,
                bulletFontSize=10,
                start=None,
                spaceAfter=12,
            )
            self.story.append(self.current_list)
        else:
            self.current_list._flowables.append(item)

    def log_text(self, text: str):
        text = text.strip()
        if not text:
            return
        self._emit(text)

        if text.startswith("- "):
            self._bullet(text[2:].strip())
            return

        self.current_list = None
        for prefix, (style, _, _) in HEADINGS.items():
            if text.startswith(prefix):
                self.story.append(Paragraph(text[len(prefix):], self.styles[style]))
                return
        self.story.append(Paragraph(self._format_md(text), self.styles["Normal"]))

    def log_mapping(self, values: Dict[str, Any], title: Optional[str] = None):
        """Log key/value pairs as a bullet list."""
        if title:
            self.log_text(f"### {title}")
        for key, value in values.items():
            self.log_text(f"- **{key}**: {value}")
        self.current_list = None

    def log_code(self, code: str):
        """Log preformatted text."""
        code = code.rstrip()
        self._emit(code)
        self.current_list = None
        self.story.append(Preformatted(code, self.styles["CodeBlock"]))
        self.story.append(Spacer(1, 0.18 * inch))

    def log_dataframe(
        self, df: pd.DataFrame, title: Optional[str] = None, max_rows: int = 10
    ):
        """Log a DataFrame as a fixed-width table, truncated to ``max_rows``."""
        self.current_list = None

        if title:
            self.story.append(Paragraph(f"<b>{title}</b>", self.styles["Normal"]))
            self.story.append(Spacer(1, 0.1 * inch))

        if len(df) > max_rows:
            table_text = df.head(max_rows).to_string(index=False)
            table_text += f"\n... ({len(df) - max_rows} more rows)"
        else:
            table_text = df.to_string(index=False)

        self._emit(table_text)
        self.story.append(Preformatted(table_text, self.styles["CodeBlock"]))
        self.story.append(Spacer(1, 0.15 * inch))

    def save(self):
        """Build the PDF."""
        self.doc.build(list(self.story))
        self._emit(f"✔ PDF saved to {self.path}")


def write_analysis_report(result, path: str, echo: bool = False, max_rows: int = 20) -> PDFLogger:
    """
    Write a PDF summary of an ``AnalysisResult``.

    Covers configuration, stage counts, excluded windows and the top
    hyper- and hypomethylated windows by q-value.
    """
    from dmw_engine.core.engine import results_to_frame

    pdf = PDFLogger(path, echo=echo)
    pdf.log_text("# Differential Methylation Window Report")
    pdf.log_text(f"**Generated**: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    pdf.log_text("## Analysis Configuration")
    pdf.log_mapping(result.config.to_dict())

    pdf.log_text("## Samples")
    pdf.log_mapping({sample: group.value for sample, group in result.sample_groups.items()})

    pdf.log_text("## Pipeline")
    pdf.log_mapping(result.stage_counts)
    pdf.log_text(f"**Test**: `{result.method}`")
    pdf.log_text(result.exclusions.summary())

    pdf.log_text("## Differentially Methylated Windows")
    pdf.log_mapping(result.summary())

    for label, subset in (("Hypermethylated", result.classified.hyper),
                          ("Hypomethylated", result.classified.hypo)):
        if not subset:
            pdf.log_text(f"No {label.lower()} windows passed the thresholds.")
            continue
        frame = results_to_frame(subset).sort_values("qvalue")
        pdf.log_dataframe(frame, title=f"Top {label} Windows", max_rows=max_rows)

    pdf.save()
    return pdf
