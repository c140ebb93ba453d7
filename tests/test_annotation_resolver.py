from surfacemap.domain.models import Authorization
from surfacemap.extractors.declarations import RawArgument, RawAttribute
from surfacemap.resolve.annotations import (
    AnnotationKind,
    ContainerAnnotations,
    classify,
    merge_authorization,
    resolve_container,
    resolve_member,
)


def attr(name, *positional, **named):
    args = [RawArgument(text=f'"{v}"' if v is not None else "Computed.Value", literal=v) for v in positional]
    args += [RawArgument(text=f'"{v}"', literal=v, name=k) for k, v in named.items()]
    return RawAttribute(name=name, arguments=tuple(args))


def test_classify_tolerates_namespace_and_attribute_suffix():
    a = classify(attr("Microsoft.AspNetCore.Mvc.HttpGetAttribute", "{id}"))
    assert a is not None
    assert a.kind == AnnotationKind.HTTP_VERB
    assert a.verb == "GET"
    assert a.template == "{id}"


def test_classify_ignores_unrelated_attributes():
    assert classify(attr("ProducesResponseType", "200")) is None
    assert classify(attr("ApiController")) is None


def test_verb_tie_break_first_attribute_wins():
    member = resolve_member([attr("HttpGet"), attr("HttpPost")])
    assert member.verb == "GET"
    assert member.ignored_verbs == ("POST",)

    member = resolve_member([attr("HttpPost"), attr("HttpGet")])
    assert member.verb == "POST"
    assert member.ignored_verbs == ("GET",)


def test_ignored_verb_template_does_not_contribute_a_fragment():
    member = resolve_member([attr("HttpGet", "a"), attr("HttpPost", "b")])
    assert member.route_fragments == ("a",)


def test_route_fragments_follow_textual_order():
    member = resolve_member([attr("Route", "first"), attr("HttpGet", "second"), attr("Route", "third")])
    assert member.route_fragments == ("first", "second", "third")


def test_non_literal_template_yields_none_fragment():
    member = resolve_member([attr("Route", None)])
    assert member.route_fragments == (None,)

    verb_only = resolve_member([attr("HttpGet", None)])
    assert verb_only.verb == "GET"
    assert verb_only.route_fragments == ()


def test_accept_verbs_takes_first_known_verb():
    member = resolve_member([attr("AcceptVerbs", "put", "POST")])
    assert member.verb == "PUT"


def test_authorize_policy_positional_or_named():
    assert resolve_member([attr("Authorize", "Admin")]).authorization == Authorization(policy="Admin")
    assert resolve_member([attr("Authorize", Policy="Ops")]).authorization == Authorization(policy="Ops")
    roles = resolve_member([attr("Authorize", Roles="Manager")]).authorization
    assert roles == Authorization(policy=None, roles="Manager")


def test_non_literal_policy_keeps_expression_text():
    a = RawAttribute(name="Authorize", arguments=(RawArgument(text="Policies.Admin"),))
    assert resolve_member([a]).authorization == Authorization(policy="Policies.Admin")


def test_method_policy_takes_precedence_over_container():
    container = resolve_container([attr("Authorize", "ContainerPolicy")])
    member = resolve_member([attr("Authorize", "MethodPolicy")], container)
    assert member.authorization == Authorization(policy="MethodPolicy")


def test_method_without_policy_inherits_container_policy():
    container = resolve_container([attr("Authorize", "ContainerPolicy")])
    assert resolve_member([attr("Authorize")], container).authorization == Authorization(policy="ContainerPolicy")
    assert resolve_member([attr("HttpGet")], container).authorization == Authorization(policy="ContainerPolicy")


def test_allow_anonymous_overrides_container_authorize():
    container = resolve_container([attr("Authorize", "ContainerPolicy")])
    member = resolve_member([attr("AllowAnonymous"), attr("HttpGet")], container)
    assert member.authorization == Authorization(required=False)


def test_merge_authorization_without_any_annotation():
    assert merge_authorization(None, None) is None


def test_non_action_excludes_member():
    assert resolve_member([attr("NonAction")]).excluded
    assert resolve_member([attr("NonHandler")]).excluded
    assert not resolve_member([attr("HttpGet")]).excluded


def test_resolve_container_route_and_area():
    c = resolve_container([attr("Area", "Admin"), attr("Route", "[area]/[controller]"), attr("Route", "other")])
    assert c == ContainerAnnotations(route="[area]/[controller]", authorization=None, area="Admin")
