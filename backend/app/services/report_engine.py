"""
Report Engine — quotation and quick-quote PDFs.

Outputs:
  - Quotation PDF (A4): header, material / subcon / routing / tooling lines and
    the volume-pricing table
  - Quick-quote PDF (A4): per-part material, post-process and sales price

All outputs saved to DOWNLOAD_DIR and path returned for FileResponse.
Branding (company_name, report_header_text, theme_color_hex,
report_footer_text) comes from the quotation settings rows.
"""
import os
import logging
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Sequence, Tuple

logger = logging.getLogger("fhx-report")

DOWNLOAD_DIR = os.getenv("DOWNLOAD_DIR", "/tmp/downloads")
DEFAULT_COMPANY_NAME = "FHX PRECISION COMPONENTS"
DEFAULT_COMPANY_SUB = "Contract manufacturing  |  machining  |  assembly"
VALIDITY_DAYS = 30


def _ensure_dir(path: str):
    os.makedirs(path, exist_ok=True)


def _hex_to_rgb(hex_color: str) -> tuple:
    """Convert '#RRGGBB' to (r, g, b) floats 0-1."""
    h = hex_color.lstrip("#")
    if len(h) != 6:
        return (0.08, 0.08, 0.12)
    return (int(h[0:2], 16) / 255, int(h[2:4], 16) / 255, int(h[4:6], 16) / 255)


def _num(value, places: int = 2) -> str:
    if value is None:
        return "-"
    return f"{float(value):,.{places}f}"


# ── PDF helpers ───────────────────────────────────────────────────────────────

def _draw_header(c, page_w, page_h, company_name: str = None, company_sub: str = None, theme_rgb: tuple = None):
    from reportlab.lib.units import cm
    name = company_name or DEFAULT_COMPANY_NAME
    sub = company_sub or DEFAULT_COMPANY_SUB
    bg = theme_rgb or (0.08, 0.08, 0.12)
    c.setFillColorRGB(*bg)
    c.rect(0, page_h - 3*cm, page_w, 3*cm, fill=1, stroke=0)
    c.setFillColorRGB(1, 1, 1)
    c.setFont("Helvetica-Bold", 13)
    c.drawString(1.5*cm, page_h - 1.5*cm, name)
    c.setFont("Helvetica", 8)
    c.drawString(1.5*cm, page_h - 2.1*cm, sub)
    c.setStrokeColorRGB(0.58, 0.64, 0.72)
    c.setLineWidth(2)
    c.line(0, page_h - 3*cm, page_w, page_h - 3*cm)
    c.setLineWidth(1)
    c.setStrokeColorRGB(0, 0, 0)


def _draw_footer(c, page_w, page_num: int, footer_text: str = None):
    from reportlab.lib.units import cm
    c.setFillColorRGB(0.5, 0.5, 0.5)
    c.setFont("Helvetica", 7)
    c.drawString(1.5*cm, 0.8*cm, footer_text or f"CONFIDENTIAL  {DEFAULT_COMPANY_NAME}")
    c.drawRightString(page_w - 1.5*cm, 0.8*cm, f"Page {page_num}")
    c.setStrokeColorRGB(0.7, 0.7, 0.7)
    c.line(1.5*cm, 1.2*cm, page_w - 1.5*cm, 1.2*cm)


class _PdfWriter:
    """Canvas plus a y cursor that breaks onto a fresh branded page when full."""

    def __init__(self, engine: "ReportEngine", path: str):
        from reportlab.pdfgen import canvas as rl_canvas
        from reportlab.lib.pagesizes import A4
        from reportlab.lib.units import cm

        self.cm = cm
        self.engine = engine
        self.page_w, self.page_h = A4
        self.c = rl_canvas.Canvas(path, pagesize=A4)
        self.page = 0
        self.y = 0.0
        self.new_page()

    def new_page(self):
        if self.page:
            self.c.showPage()
        self.page += 1
        e = self.engine
        _draw_header(self.c, self.page_w, self.page_h, e.company_name, e.company_sub, e.theme_rgb)
        _draw_footer(self.c, self.page_w, self.page, e.footer_text)
        self.y = self.page_h - 4.2*self.cm

    def need(self, height_cm: float):
        if self.y - height_cm*self.cm < 2*self.cm:
            self.new_page()

    def title(self, text: str, subtitle: str = ""):
        c, cm = self.c, self.cm
        c.setFillColorRGB(0.08, 0.08, 0.12)
        c.setFont("Helvetica-Bold", 18)
        c.drawString(1.5*cm, self.y, text)
        self.y -= 0.7*cm
        if subtitle:
            c.setFont("Helvetica", 9)
            c.setFillColorRGB(0.4, 0.4, 0.4)
            c.drawString(1.5*cm, self.y, subtitle)
            self.y -= 0.6*cm

    def section(self, text: str):
        c, cm = self.c, self.cm
        self.need(1.6)
        self.y -= 0.5*cm
        c.setFont("Helvetica-Bold", 11)
        c.setFillColorRGB(0.08, 0.08, 0.12)
        c.drawString(1.5*cm, self.y, text)
        self.y -= 0.3*cm
        c.setStrokeColorRGB(0.58, 0.64, 0.72)
        c.line(1.5*cm, self.y, self.page_w - 1.5*cm, self.y)
        self.y -= 0.5*cm

    def key_values(self, rows: Sequence[Tuple[str, str]]):
        c, cm = self.c, self.cm
        for label, value in rows:
            self.need(0.6)
            c.setFont("Helvetica", 9)
            c.setFillColorRGB(0.2, 0.2, 0.2)
            c.drawString(1.5*cm, self.y, label)
            c.setFont("Helvetica-Bold", 9)
            c.drawRightString(self.page_w - 1.5*cm, self.y, value)
            self.y -= 0.5*cm

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[str]], widths_cm: Sequence[float]):
        """First column left-aligned, the rest right-aligned (numbers)."""
        c, cm = self.c, self.cm

        def _row(values, bold=False):
            self.need(0.55)
            c.setFont("Helvetica-Bold" if bold else "Helvetica", 8)
            x = 1.5*cm
            for i, (value, w) in enumerate(zip(values, widths_cm)):
                if i == 0:
                    c.drawString(x, self.y, str(value)[:40])
                else:
                    c.drawRightString(x + w*cm - 0.1*cm, self.y, str(value))
                x += w*cm
            self.y -= 0.45*cm

        c.setFillColorRGB(0.0, 0.13, 0.28)
        _row(headers, bold=True)
        c.setFillColorRGB(0.2, 0.2, 0.2)
        for r in rows:
            _row(r)

    def note(self, text: str, rgb: tuple = (0.6, 0.1, 0.1)):
        c, cm = self.c, self.cm
        self.need(0.6)
        c.setFont("Helvetica-Oblique", 8)
        c.setFillColorRGB(*rgb)
        c.drawString(1.5*cm, self.y, text)
        self.y -= 0.5*cm

    def save(self):
        self.c.save()


class ReportEngine:

    def __init__(self, company_settings: Optional[Dict[str, Any]] = None, output_dir: Optional[str] = None):
        cs = company_settings or {}
        self.company_name = cs.get("company_name", DEFAULT_COMPANY_NAME)
        self.company_sub = cs.get("report_header_text", DEFAULT_COMPANY_SUB)
        self.theme_rgb = _hex_to_rgb(cs.get("theme_color_hex", "#002147"))
        self.footer_text = cs.get("report_footer_text")
        self.output_dir = output_dir or DOWNLOAD_DIR

    def _path(self, filename: str) -> str:
        _ensure_dir(self.output_dir)
        return os.path.join(self.output_dir, filename)

    # ── Quotation PDF ─────────────────────────────────────────────────────────

    def quotation_pdf(self, quotation: Dict[str, Any]) -> Optional[str]:
        """Render a quotation (``quotation_to_dict`` shape). Returns the file path, None on failure."""
        qid = str(quotation.get("id", "draft"))
        ref = quotation.get("quote_number") or qid[:8].upper()
        currency = quotation.get("currency") or "EUR"
        path = self._path(f"Quotation_{qid[:8]}_v{quotation.get('version', 1)}.pdf")
        try:
            pdf = _PdfWriter(self, path)
            validity = (datetime.now() + timedelta(days=VALIDITY_DAYS)).strftime("%d %b %Y")
            pdf.title(
                "QUOTATION",
                f"Ref: {ref}  |  Version {quotation.get('version', 1)}  |  "
                f"Date: {datetime.now().strftime('%d %b %Y')}  |  Valid until {validity}",
            )
            pdf.key_values([
                ("Customer", f"{quotation.get('customer') or '-'} ({quotation.get('customer_code') or '-'})"),
                ("Part", f"{quotation.get('part_number') or '-'} rev {quotation.get('revision') or '-'}"),
                ("Description", (quotation.get("description") or "-")[:70]),
                ("Status", str(quotation.get("status", "draft")).upper()),
            ])

            materials: List[Dict] = quotation.get("materials", [])
            if materials:
                pdf.section(f"MATERIALS  (markup {_num(quotation.get('material_markup'))} %)")
                pdf.table(
                    ["Description", "Category", "Cost/unit", "Qty/part", "Line"],
                    [
                        [m.get("material_description") or m.get("vendor_no") or "-", m.get("category") or "-",
                         _num(m.get("std_cost_est"), 4), _num(m.get("qty_per_unit"), 4), _num(m.get("total_material"))]
                        for m in materials
                    ],
                    [7, 3, 2.5, 2.5, 3],
                )

            subcons: List[Dict] = quotation.get("subcons", [])
            if subcons:
                pdf.section(f"SUBCONTRACT  (markup {_num(quotation.get('subcon_markup'))} %)")
                pdf.table(
                    ["Process", "Vendor", "Quantity", "Cost/unit", "Cert."],
                    [
                        [s.get("process_description") or "-", s.get("vendor_no") or "-", str(s.get("quantity")),
                         _num(s.get("std_cost_est"), 4), "yes" if s.get("certification_required") else "no"]
                        for s in subcons
                    ],
                    [7, 3, 2.5, 2.5, 3],
                )

            routings: List[Dict] = quotation.get("routings", [])
            if routings:
                pdf.section("ROUTING")
                pdf.table(
                    ["Operation", "Resource", "Setup min", "Run min", "Override"],
                    [
                        [f"{r.get('op_no')} {r.get('operation_details') or ''}", r.get("resource_no") or "-",
                         _num(r.get("setup_time"), 2), _num(r.get("run_time"), 3), _num(r.get("override_cost"))]
                        for r in routings
                    ],
                    [7, 3, 2.5, 2.5, 3],
                )

            tools: List[Dict] = quotation.get("tools", [])
            if tools:
                pdf.section("TOOLING")
                pdf.table(
                    ["Tool", "Tier qty", "Tools", "Price", "Markup %", "Total"],
                    [
                        [t.get("tool_name") or "-", str(t.get("volume") or "-"), _num(t.get("quantity"), 0),
                         _num(t.get("price")), _num(t.get("markup"), 1), _num(t.get("total"))]
                        for t in tools
                    ],
                    [6, 2, 2, 2.5, 2, 3],
                )

            tiers: List[Dict] = quotation.get("volume_pricing", [])
            pdf.section(f"VOLUME PRICING  ({currency})")
            if tiers:
                pdf.table(
                    ["Quantity", "Hours", "Labour", "Material", "Subcon", "Tooling", "Total cost", "Margin %",
                     "Unit price", "Total price"],
                    [
                        [str(t.get("quantity")), _num(t.get("hours"), 1), _num(t.get("labour_cost")),
                         _num(t.get("material_cost")), _num(t.get("subcon_cost")), _num(t.get("tooling_cost")),
                         _num(t.get("total_cost")),
                         _num(t.get("margin"), 1), _num(t.get("unit_price_quoted")), _num(t.get("total_price"))]
                        for t in tiers
                    ],
                    [1.6, 1.3, 1.9, 1.9, 1.7, 1.7, 2, 1.4, 1.7, 2.2],
                )
                if any(t.get("used_fallback_rate") for t in tiers):
                    pdf.note("Labour on one or more operations priced at the default hourly rate.")
            else:
                pdf.note("No volume pricing calculated.")
            pdf.save()
            logger.info("Quotation PDF generated", extra={"quotation_id": qid})
            return path
        except Exception as e:
            logger.error(f"Quotation PDF failed: {e}", exc_info=True, extra={"quotation_id": qid})
            return None

    # ── Quick-quote PDF ───────────────────────────────────────────────────────

    def quick_quote_pdf(self, result: Dict[str, Any]) -> Optional[str]:
        """Render a ``run_quick_quote`` result. Returns the file path, None on failure."""
        ref = result.get("rfq_reference") or datetime.now().strftime("%Y%m%d%H%M%S")
        path = self._path(f"QuickQuote_{str(ref).replace('/', '-')}.pdf")
        try:
            pdf = _PdfWriter(self, path)
            pdf.title(
                "QUICK QUOTE",
                f"RFQ: {ref}  |  Customer: {result.get('customer_name') or '-'}  |  "
                f"Material basis: {result.get('basis', 'P50')}",
            )

            parts: List[Dict] = result.get("parts", [])
            pdf.section("PARTS")
            pdf.table(
                ["Part", "Qty", "Material/part", "Post-proc/part", "Mfg/part", "Cost/part", "Sales/part"],
                [
                    [p.get("part_number") or p.get("part_id"), str(p.get("quantity")),
                     _num((p.get("material_estimate") or {}).get("material_cost_per_part")),
                     _num(p.get("post_process_cost_per_part")), _num(p.get("manufacturing_cost_per_part")),
                     _num(p.get("cost_per_part")), _num(p.get("sales_price_per_part"))]
                    for p in parts
                ],
                [4.5, 1.5, 2.5, 2.5, 2, 2.5, 2.5],
            )
            for p in parts:
                if p.get("material_estimate") is None:
                    pdf.note(f"{p.get('part_number') or p.get('part_id')}: no material estimate "
                             f"({p.get('no_estimate_reason') or 'no data'})")

            pdf.section("TOTALS")
            pdf.key_values([
                ("Global margin", f"{_num(result.get('global_margin_percent'), 1)} %"),
                ("Total cost", _num(result.get("total_cost"))),
                ("Total sales", _num(result.get("total_sales"))),
                ("Margin", _num(result.get("margin"))),
            ])
            pdf.save()
            logger.info("Quick-quote PDF generated")
            return path
        except Exception as e:
            logger.error(f"Quick-quote PDF failed: {e}", exc_info=True)
            return None
