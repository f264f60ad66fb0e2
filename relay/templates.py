"""Artifact templates and their registry.

Each template bundles the inputs a caller collects, the sections the
artifact should contain, the Collaborator's rubric, convergence defaults,
and the two role instructions (kept in relay/prompts/).
"""

from __future__ import annotations

from convergence.core.errors import TemplateNotFoundError
from convergence.models import (
    ArtifactTemplate,
    ConvergencePolicy,
    FieldDefinition,
    FieldType,
    RubricDimension,
    SectionDefinition,
)
from relay.prompts import email_reply, software_spec


# =============================================================================
# email-reply
# =============================================================================


EMAIL_REPLY = ArtifactTemplate(
    id="email-reply",
    name="Email Reply",
    description="Professional email response",
    icon="📧",
    inputs=(
        FieldDefinition(
            id="recipient",
            label="Recipient",
            type=FieldType.TEXT,
            required=True,
            placeholder="e.g., John Smith, CEO",
        ),
        FieldDefinition(
            id="context",
            label="Email context",
            type=FieldType.TEXTAREA,
            required=True,
            placeholder="What are you responding to? Include key points from their email...",
        ),
        FieldDefinition(
            id="goal",
            label="Your goal",
            type=FieldType.TEXT,
            required=True,
            placeholder="e.g., Decline the meeting politely, propose alternative date",
        ),
        FieldDefinition(
            id="tone",
            label="Tone",
            type=FieldType.SELECT,
            required=False,
            default_value="professional",
            options=("professional", "friendly", "formal", "casual", "firm"),
        ),
        FieldDefinition(
            id="constraints",
            label="Constraints",
            type=FieldType.TEXTAREA,
            required=False,
            placeholder="e.g., Keep under 200 words, avoid making commitments...",
        ),
    ),
    output_schema=(
        SectionDefinition("subject", "Subject Line", "Clear, specific subject (if new thread)", False),
        SectionDefinition("body", "Email Body", "Complete email text", True),
        SectionDefinition("alternatives", "Alternative Versions", "Optional: shorter or more direct variants", False),
    ),
    rubric=(
        RubricDimension("clarity", "Clarity", "Clear purpose and ask/response", 0.3),
        RubricDimension("tone", "Tone Fit", "Matches requested professional style", 0.25),
        RubricDimension("completeness", "Completeness", "Addresses all points, includes next steps", 0.25),
        RubricDimension("conciseness", "Conciseness", "Respects length constraints, no fluff", 0.2),
    ),
    convergence_policy=ConvergencePolicy(
        max_rounds=3,
        score_threshold=9,
        require_questions_resolved=False,
        require_all_sections_present=False,
    ),
    writer_instructions=email_reply.WRITER_INSTRUCTIONS,
    collaborator_instructions=email_reply.COLLABORATOR_INSTRUCTIONS,
)


# =============================================================================
# software-spec
# =============================================================================


SOFTWARE_SPEC = ArtifactTemplate(
    id="software-spec",
    name="Software Feature Spec",
    description="Build-ready specification for an AI code builder",
    icon="📋",
    inputs=(
        FieldDefinition(
            id="feature",
            label="Feature description",
            type=FieldType.TEXTAREA,
            required=True,
            placeholder="e.g., Add user authentication with email/password and OAuth",
        ),
        FieldDefinition(
            id="app_context",
            label="App context",
            type=FieldType.TEXTAREA,
            required=False,
            placeholder="e.g., Next.js app, using Supabase, existing users table...",
        ),
        FieldDefinition(
            id="constraints",
            label="Constraints",
            type=FieldType.TEXTAREA,
            required=False,
            placeholder="e.g., Must work on mobile, no external dependencies...",
        ),
        FieldDefinition(
            id="success_metrics",
            label="Success metrics",
            type=FieldType.TEXT,
            required=False,
            placeholder="e.g., Users can sign up in <30 seconds",
        ),
    ),
    output_schema=(
        SectionDefinition("overview", "Overview", "High-level summary of what will be built", True),
        SectionDefinition("scope", "Scope & Non-Scope", "What is included and explicitly excluded", True),
        SectionDefinition("user_flow", "User Flow", "Step-by-step UX from user perspective", True),
        SectionDefinition("system_behavior", "System Behavior", "State changes, business logic, validation rules", True),
        SectionDefinition("data_model", "Data Model", "Objects, fields, relationships", True),
        SectionDefinition("api", "API / Integrations", "Endpoints, external services, data flow", False),
        SectionDefinition("edge_cases", "Edge Cases", "Error handling, boundary conditions, race conditions", True),
        SectionDefinition("acceptance_criteria", "Acceptance Criteria", 'Testable outcomes that define "done"', True),
        SectionDefinition("implementation_plan", "Implementation Plan", "Step-by-step build instructions for AI builder", True),
    ),
    rubric=(
        RubricDimension("completeness", "Completeness", "All required sections present and substantive", 0.3),
        RubricDimension("specificity", "Specificity", "Concrete details, not vague descriptions", 0.25),
        RubricDimension("buildability", "Buildability", "An AI builder can implement without ambiguity", 0.25),
        RubricDimension("edge_case_coverage", "Edge Case Coverage", "Error states and boundary conditions addressed", 0.2),
    ),
    convergence_policy=ConvergencePolicy(
        max_rounds=5,
        score_threshold=9,
        require_questions_resolved=True,
        require_all_sections_present=True,
    ),
    writer_instructions=software_spec.WRITER_INSTRUCTIONS,
    collaborator_instructions=software_spec.COLLABORATOR_INSTRUCTIONS,
)


# =============================================================================
# Registry
# =============================================================================


TEMPLATES: dict[str, ArtifactTemplate] = {
    template.id: template for template in (EMAIL_REPLY, SOFTWARE_SPEC)
}


def get_template(template_id: str) -> ArtifactTemplate:
    """Look up a template by id.

    Raises:
        TemplateNotFoundError: If no template has that id.
    """
    try:
        return TEMPLATES[template_id]
    except KeyError:
        raise TemplateNotFoundError(
            f"Template not found: '{template_id}'. Available: {sorted(TEMPLATES)}"
        ) from None


def all_templates() -> list[ArtifactTemplate]:
    return list(TEMPLATES.values())
