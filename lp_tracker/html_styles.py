"""
HTML Report CSS Styles
======================

Inline stylesheet of the position history report; kept out of
html_generator.py so the markup stays readable.
The in-range / out-of-range badge colours are parameterised so the
report can be re-themed without touching the markup.
"""

import re as _re

IN_RANGE_COLORS = ("#d1fae5", "#10b981", "#065f46")
OUT_OF_RANGE_COLORS = ("#fee2e2", "#ef4444", "#991b1b")


def _validate_css_color(value: str) -> str:
    """Validate a CSS color value to prevent style injection (CWE-79)."""
    if _re.fullmatch(r"#[0-9a-fA-F]{3,8}", value):
        return value
    raise ValueError(f"Invalid CSS color: {value!r}")


def build_css(
    in_range: tuple = IN_RANGE_COLORS, out_of_range: tuple = OUT_OF_RANGE_COLORS
) -> str:
    """Return the complete ``<style>`` block for the report.

    Args:
        in_range:     (background, border, text) colours of the In Range badge.
        out_of_range: (background, border, text) colours of the Out of Range badge.
    """
    # CWE-79: validate colour parameters before CSS interpolation
    in_bg, in_border, in_text = (_validate_css_color(c) for c in in_range)
    out_bg, out_border, out_text = (_validate_css_color(c) for c in out_of_range)
    return f"""    <style>
        :root {{
            --primary: #3b82f6;
            --success: #10b981;
            --danger: #ef4444;
            --bg: #f8fafc;
            --card: #ffffff;
            --border: #e1e5e9;
            --text: #1e293b;
            --text-light: #64748b;
            --shadow: 0 1px 3px 0 rgba(0, 0, 0, 0.1), 0 1px 2px 0 rgba(0, 0, 0, 0.06);
            --radius: 12px;
            --fs-xs:  0.75rem;
            --fs-sm:  0.85rem;
            --fs-lg:  1.1rem;
            --fs-2xl: 1.5rem;
        }}

        body {{
            font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, "Helvetica Neue", sans-serif;
            margin: 0;
            background: linear-gradient(135deg, #f8fafc 0%, #e2e8f0 100%);
            color: var(--text);
            line-height: 1.6;
        }}

        .container {{
            max-width: 1200px;
            margin: 0 auto;
            padding: 24px;
        }}

        header h1 {{
            font-size: var(--fs-2xl);
            margin-bottom: 4px;
        }}

        .subtitle {{
            color: var(--text-light);
            font-size: var(--fs-sm);
        }}

        .dashboard {{
            display: grid;
            grid-template-columns: repeat(auto-fit, minmax(200px, 1fr));
            gap: 16px;
            margin: 24px 0;
        }}

        .card {{
            background: var(--card);
            border: 1px solid var(--border);
            border-radius: var(--radius);
            box-shadow: var(--shadow);
            padding: 16px;
        }}

        .card .label {{
            color: var(--text-light);
            font-size: var(--fs-xs);
            text-transform: uppercase;
            letter-spacing: 0.05em;
        }}

        .card .value {{
            font-size: var(--fs-lg);
            font-weight: 600;
        }}

        .position {{
            background: var(--card);
            border: 1px solid var(--border);
            border-radius: var(--radius);
            box-shadow: var(--shadow);
            margin-bottom: 24px;
            overflow-x: auto;
        }}

        .position h2 {{
            font-size: var(--fs-lg);
            padding: 16px 16px 0;
            margin: 0;
        }}

        .position .meta {{
            color: var(--text-light);
            font-size: var(--fs-sm);
            padding: 0 16px 8px;
        }}

        table {{
            width: 100%;
            border-collapse: collapse;
            font-size: var(--fs-sm);
        }}

        th, td {{
            padding: 8px 12px;
            border-top: 1px solid var(--border);
            text-align: right;
            white-space: nowrap;
        }}

        th:first-child, td:first-child {{
            text-align: left;
        }}

        tr.live td {{
            background: #eff6ff;
            font-weight: 600;
        }}

        .live-tag {{
            background: var(--primary);
            color: #ffffff;
            border-radius: 4px;
            font-size: var(--fs-xs);
            padding: 1px 6px;
            margin-left: 6px;
        }}

        .positive, .fees-24h {{ color: var(--success); }}
        .negative, .fees-24h-negative {{ color: var(--danger); }}
        .neutral {{ color: var(--text-light); }}

        .status-badge {{
            border-radius: 999px;
            font-size: var(--fs-xs);
            padding: 2px 10px;
        }}

        .status-in-range {{
            background: {in_bg};
            border: 1px solid {in_border};
            color: {in_text};
        }}

        .status-out-range {{
            background: {out_bg};
            border: 1px solid {out_border};
            color: {out_text};
        }}

        footer {{
            color: var(--text-light);
            font-size: var(--fs-xs);
            text-align: center;
            margin-top: 32px;
        }}
    </style>"""
