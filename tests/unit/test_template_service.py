import pytest

from outreach.models.domain.user_document import EmailTemplate
from outreach.services.template_service import (
    TemplateService,
    build_fallback_draft,
    pick_template,
    render_placeholders,
    template_name_for_contact,
)
from outreach.services.user_document_service import UserDocumentService

TEMPLATES = [
    EmailTemplate(id=1, name="Finance", content="Finance for [Name]"),
    EmailTemplate(id=2, name="Tech", content="Tech for [Name]"),
    EmailTemplate(id=3, name="Medicine", content="Medicine for [Name]"),
]


def test_render_replaces_strict_placeholders_only():
    contact = {"first_name": "Ada", "last_name": "Lovelace", "organization": "Engines Ltd"}

    rendered = render_placeholders(
        "Hello [Name] at [Company], [name]. [mention: project experience]", contact
    )

    assert rendered == (
        "Hello Ada Lovelace at Engines Ltd, [name]. [mention: project experience]"
    )


def test_render_falls_back_to_name_and_placeholders():
    assert render_placeholders("[Name] / [Company]", {"name": "Grace"}) == "Grace / Company"
    assert render_placeholders("[Name]", {}) == "Unknown"


@pytest.mark.parametrize(
    "industry, expected",
    [
        ("Investment Banking", "Finance"),
        ("Software", "Tech"),
        ("Healthcare", "Medicine"),
        ("Retail", "Tech"),
        (None, "Tech"),
    ],
)
def test_template_name_for_contact(industry, expected):
    assert template_name_for_contact({"industry": industry}) == expected


def test_pick_template_by_name_or_id():
    assert pick_template(TEMPLATES, {}, "Medicine").id == 3
    assert pick_template(TEMPLATES, {}, 1).name == "Finance"
    assert pick_template(TEMPLATES, {"template": "Tech"}).name == "Tech"


def test_pick_template_by_industry_then_first():
    assert pick_template(TEMPLATES, {"industry": "Finance"}, "Missing").name == "Finance"
    only_custom = [EmailTemplate(id=9, name="Custom")]
    assert pick_template(only_custom, {"industry": "bank"}).name == "Custom"
    assert pick_template([], {}) is None


def test_build_fallback_draft():
    contact = {"first_name": "Ada", "last_name": "Lovelace", "company": "Engines Ltd"}

    draft = build_fallback_draft(TEMPLATES[0], contact)

    assert draft == {
        "subject": "Outreach: Ada Lovelace at Engines Ltd",
        "body": "Finance for Ada Lovelace",
    }
    assert build_fallback_draft(None, {})["subject"] == "Outreach: Unknown at Company"


@pytest.mark.asyncio
async def test_load_templates_defaults_then_user_templates(gateway):
    documents = UserDocumentService(gateway)
    service = TemplateService(gateway, documents)

    defaults = await service.load_email_templates("u1")
    assert [t.name for t in defaults] == ["Finance", "Tech"]

    await documents.create_or_update_user_profile("u1")
    await documents.update_user_templates("u1", [{"id": 5, "name": "Mine", "content": "Yo [Name]"}])

    templates = await service.load_email_templates("u1")
    assert [t.name for t in templates] == ["Mine"]

    draft = await service.draft_for_contact("u1", {"name": "Grace"})
    assert draft["body"] == "Yo Grace"


def test_render_skips_fields_of_the_wrong_type():
    contact = {"name": "Grace", "company": {"name": "Navy"}, "organization": "Navy"}

    assert render_placeholders("[Name] at [Company]", contact) == "Grace at Navy"
    assert build_fallback_draft(None, contact)["subject"] == "Outreach: Grace at Navy"
