"""Structured proposal sections built from a project brief."""

from typing import Optional

SECTION_KEYS = ("overview", "scope", "deliverables", "timeline", "pricing")


def build_proposal_sections(brief: str, client_name: Optional[str] = None) -> dict[str, str]:
    """Draft sections for a new proposal version."""
    client = (client_name or "").strip() or "your client"
    return {
        "overview": (
            f"This proposal outlines a project for {client}, "
            f"based on the following brief:\n\n{brief.strip()}"
        ),
        "scope": (
            "Key scope items:\n"
            "- Understand the client's goals and context\n"
            "- Design and implement the agreed solution\n"
            "- Iterate with feedback and track progress"
        ),
        "deliverables": (
            "Core deliverables:\n"
            "- Detailed implementation plan\n"
            "- Working product / feature set\n"
            "- Documentation and handover\n"
            "- Post-launch support window"
        ),
        "timeline": (
            "Indicative timeline (adjust per project):\n"
            "- Week 1-2: Discovery & planning\n"
            "- Week 3-4: Core build\n"
            "- Week 5: Testing & polish\n"
            "- Week 6: Launch & review"
        ),
        "pricing": (
            "Pricing structure (to be customized):\n"
            "- Fixed project fee OR\n"
            "- Monthly retainer + success-based component\n"
            "- Payment terms: e.g. 40% upfront, 40% on milestones, 20% on completion"
        ),
    }
