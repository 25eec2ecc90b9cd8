import pytest

from support_widget.triage import CanonicalReplyStore, Category, DepartmentRouter, ReplyBranch


def test_router_maps_categories_to_departments():
    router = DepartmentRouter()
    assert router.route(Category.COURSE_INQUIRY) == "academico"
    assert router.route(Category.FINANCIAL_INQUIRY) == "financeiro"
    assert router.route(Category.CONTACT_REQUEST) == "atendimento"
    assert router.route("complaint") == "ouvidoria"


@pytest.mark.parametrize("category", [Category.GREETING, Category.COMPLIMENT, Category.OTHER])
def test_router_uses_general_queue_for_unmapped_categories(category):
    assert DepartmentRouter().route(category) is None


def test_explicit_override_is_authoritative():
    router = DepartmentRouter()
    assert router.route(Category.COURSE_INQUIRY, "vendas") == "vendas"
    assert router.route(Category.OTHER, " vendas ") == "vendas"
    assert router.route(Category.COURSE_INQUIRY, "  ") == "academico"


def test_router_custom_table():
    router = DepartmentRouter({"course_inquiry": "cursos", Category.COMPLAINT: ""})
    assert router.route(Category.COURSE_INQUIRY) == "cursos"
    assert router.route(Category.COMPLAINT) is None
    assert router.route(Category.FINANCIAL_INQUIRY) is None


def test_reply_branches():
    replies = CanonicalReplyStore()
    assert replies.select(Category.GREETING, None)[0] is ReplyBranch.GREETING
    assert replies.select(Category.GREETING, "academico")[0] is ReplyBranch.GREETING

    branch, text = replies.select(Category.COURSE_INQUIRY, "academico")
    assert branch is ReplyBranch.FORWARDED
    assert text == "Estamos encaminhando você para um atendente especializado..."

    branch, text = replies.select(Category.OTHER, None)
    assert branch is ReplyBranch.ACKNOWLEDGED
    assert text == "Obrigado pelo contato! Um atendente irá responder em breve."


def test_reply_texts_can_be_overridden():
    replies = CanonicalReplyStore({"greeting": "Hello!", ReplyBranch.FORWARDED: ""})
    assert replies.select(Category.GREETING, None) == (ReplyBranch.GREETING, "Hello!")
    _, forwarded = replies.select(Category.COMPLAINT, "ouvidoria")
    assert forwarded.startswith("Estamos encaminhando")
