"""Markdown and JSON reports for verification records."""

import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader

from flowguard.models import SEVERITY_LEVELS, Verification, VerificationIssue

logger = logging.getLogger(__name__)

REPORT_TEMPLATE = "verification_report.md.j2"


class ReportWriter:
    """Renders verification reports from the project templates."""

    def __init__(self, template_dir: Optional[Path] = None):
        template_dir = template_dir or Path(__file__).parent / "templates"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render_markdown(self, verification: Verification) -> str:
        issues_by_severity: Dict[str, List[VerificationIssue]] = defaultdict(list)
        for issue in verification.issues:
            issues_by_severity[issue.severity].append(issue)

        template = self.jinja_env.get_template(REPORT_TEMPLATE)
        return template.render(
            verification=verification,
            severities=SEVERITY_LEVELS,
            issues_by_severity=issues_by_severity,
            open_count=len(verification.open_issues),
        )

    def write_reports(self, verification: Verification, output_dir: Path) -> Tuple[Path, Path]:
        """Write verification_<id>.md and verification_<id>.json into output_dir.

        Returns:
            (markdown_path, json_path)
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        md_path = output_dir / f"verification_{verification.id}.md"
        md_path.write_text(self.render_markdown(verification), encoding="utf-8")

        json_path = output_dir / f"verification_{verification.id}.json"
        with open(json_path, 'w', encoding="utf-8") as f:
            json.dump(verification.to_dict(), f, indent=2)

        logger.info(f"Verification reports saved to {output_dir}")
        return md_path, json_path


def write_reports(verification: Verification, output_dir: Path) -> Tuple[Path, Path]:
    return ReportWriter().write_reports(verification, output_dir)
