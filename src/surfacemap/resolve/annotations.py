from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from surfacemap.domain.models import Authorization
from surfacemap.extractors.declarations import RawAttribute

log = logging.getLogger(__name__)


class AnnotationKind(str, Enum):
    HTTP_VERB = "http_verb"
    ROUTE = "route"
    AUTHORIZE = "authorize"
    ALLOW_ANONYMOUS = "allow_anonymous"
    NON_ACTION = "non_action"
    AREA = "area"


_VERB_ATTRIBUTES = {
    "HttpGet": "GET",
    "HttpPost": "POST",
    "HttpPut": "PUT",
    "HttpDelete": "DELETE",
    "HttpPatch": "PATCH",
    "HttpHead": "HEAD",
    "HttpOptions": "OPTIONS",
}

_SIMPLE_KINDS = {
    "Route": AnnotationKind.ROUTE,
    "Authorize": AnnotationKind.AUTHORIZE,
    "AllowAnonymous": AnnotationKind.ALLOW_ANONYMOUS,
    "NonAction": AnnotationKind.NON_ACTION,
    "NonHandler": AnnotationKind.NON_ACTION,
    "Area": AnnotationKind.AREA,
}

_KNOWN_VERBS = {"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"}


@dataclass(frozen=True)
class Annotation:
    """A recognized attribute, normalized once."""

    kind: AnnotationKind
    source: str
    verb: Optional[str] = None
    template: Optional[str] = None
    policy: Optional[str] = None
    roles: Optional[str] = None
    area: Optional[str] = None


def classify(attr: RawAttribute) -> Optional[Annotation]:
    name = attr.short_name

    if name in _VERB_ATTRIBUTES:
        template = attr.first_literal()
        if template is None:
            named = attr.named("Template")
            template = named.literal if named is not None else None
        return Annotation(AnnotationKind.HTTP_VERB, attr.name, verb=_VERB_ATTRIBUTES[name], template=template)

    if name == "AcceptVerbs":
        verbs = [a.literal.upper() for a in attr.positional if a.literal and a.literal.upper() in _KNOWN_VERBS]
        if not verbs:
            return None
        named = attr.named("Route")
        return Annotation(
            AnnotationKind.HTTP_VERB,
            attr.name,
            verb=verbs[0],
            template=named.literal if named is not None else None,
        )

    kind = _SIMPLE_KINDS.get(name)
    if kind is None:
        return None

    if kind == AnnotationKind.ROUTE:
        return Annotation(kind, attr.name, template=attr.first_literal())

    if kind == AnnotationKind.AUTHORIZE:
        policy_arg = attr.named("Policy") or (attr.positional[0] if attr.positional else None)
        roles_arg = attr.named("Roles")
        return Annotation(
            kind,
            attr.name,
            policy=_argument_value(policy_arg),
            roles=_argument_value(roles_arg),
        )

    if kind == AnnotationKind.AREA:
        area_arg = attr.positional[0] if attr.positional else None
        return Annotation(kind, attr.name, area=_argument_value(area_arg))

    return Annotation(kind, attr.name)


def _argument_value(arg) -> Optional[str]:
    # literal when we have one, else the expression text (e.g. Policies.Admin)
    if arg is None:
        return None
    return arg.literal if arg.literal is not None else (arg.text or None)


def classify_all(attrs: Iterable[RawAttribute]) -> list[Annotation]:
    return [a for a in (classify(attr) for attr in attrs) if a is not None]


@dataclass(frozen=True)
class ContainerAnnotations:
    route: Optional[str] = None
    authorization: Optional[Authorization] = None
    area: Optional[str] = None


@dataclass(frozen=True)
class MemberAnnotations:
    verb: Optional[str] = None
    route_fragments: tuple[Optional[str], ...] = ()
    authorization: Optional[Authorization] = None
    excluded: bool = False
    ignored_verbs: tuple[str, ...] = ()


def _authorization(annotations: list[Annotation]) -> Optional[Authorization]:
    for a in annotations:
        if a.kind == AnnotationKind.ALLOW_ANONYMOUS:
            return Authorization(required=False)
    for a in annotations:
        if a.kind == AnnotationKind.AUTHORIZE:
            return Authorization(required=True, policy=a.policy, roles=a.roles)
    return None


def resolve_container(attrs: Iterable[RawAttribute]) -> ContainerAnnotations:
    annotations = classify_all(attrs)
    route = next((a.template for a in annotations if a.kind == AnnotationKind.ROUTE), None)
    area = next((a.area for a in annotations if a.kind == AnnotationKind.AREA), None)
    return ContainerAnnotations(route=route, authorization=_authorization(annotations), area=area)


def merge_authorization(
    member: Optional[Authorization],
    container: Optional[Authorization],
) -> Optional[Authorization]:
    """
    Method level wins. An [Authorize] without a policy on the method keeps the
    container's policy; [AllowAnonymous] on the method clears everything.
    """
    if member is None:
        return container
    if not member.required:
        return member
    if container is None or not container.required:
        return member
    return Authorization(
        required=True,
        policy=member.policy or container.policy,
        roles=member.roles or container.roles,
    )


def resolve_member(
    attrs: Iterable[RawAttribute],
    container: Optional[ContainerAnnotations] = None,
    subject: str = "",
) -> MemberAnnotations:
    """
    Normalize one method's attributes.

    The first HTTP-verb attribute decides the verb; later ones are ignored
    (logged, never an error). Route fragments come from every [Route] and from
    the winning verb attribute, in textual order; a non-literal template is
    kept as None.
    """
    annotations = classify_all(attrs)
    container = container or ContainerAnnotations()

    verb: Optional[str] = None
    ignored: list[str] = []
    fragments: list[Optional[str]] = []

    for a in annotations:
        if a.kind == AnnotationKind.HTTP_VERB:
            if verb is None:
                verb = a.verb
                if a.template is not None:
                    fragments.append(a.template)
            else:
                ignored.append(a.verb or "")
        elif a.kind == AnnotationKind.ROUTE:
            fragments.append(a.template)

    if ignored:
        log.info(
            "AmbiguousVerbAnnotation: %s uses %s, ignoring %s",
            subject or "member",
            verb,
            ", ".join(ignored),
        )

    return MemberAnnotations(
        verb=verb,
        route_fragments=tuple(fragments),
        authorization=merge_authorization(_authorization(annotations), container.authorization),
        excluded=any(a.kind == AnnotationKind.NON_ACTION for a in annotations),
        ignored_verbs=tuple(ignored),
    )
