from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.core.config import OPERATOR_ONLY_PERMISSIONS
from venuedesk.domain.models import Permission, RoleTemplate, RoleTemplatePermission


logger = logging.getLogger(__name__)

TEMPLATE_ADMIN = "admin"
TEMPLATE_MANAGER = "manager"
TEMPLATE_VIEWER = "viewer"


@dataclass(frozen=True)
class PermissionSpec:
    code: str
    description: str

    @property
    def category(self) -> str:
        return self.code.split(".", 1)[0]

    @property
    def operator_only(self) -> bool:
        return self.code in OPERATOR_ONLY_PERMISSIONS


PERMISSION_CATALOG: tuple[PermissionSpec, ...] = (
    PermissionSpec("feedback.view", "View customer feedback"),
    PermissionSpec("feedback.respond", "Reply to feedback"),
    PermissionSpec("feedback.export", "Export feedback data"),
    PermissionSpec("questions.view", "View feedback questions"),
    PermissionSpec("questions.edit", "Create, edit and delete questions"),
    PermissionSpec("reports.view", "Access reports"),
    PermissionSpec("reports.export", "Export report data"),
    PermissionSpec("reports.create", "Create custom reports"),
    PermissionSpec("nps.view", "View NPS score"),
    PermissionSpec("nps.insights", "View NPS insights"),
    PermissionSpec("nps.edit", "Edit NPS settings"),
    PermissionSpec("staff.view", "View employee list"),
    PermissionSpec("staff.edit", "Manage employees, roles and locations"),
    PermissionSpec("staff.leaderboard", "View leaderboard"),
    PermissionSpec("staff.recognition", "Manage recognition"),
    PermissionSpec("managers.view", "View managers"),
    PermissionSpec("managers.invite", "Invite new managers"),
    PermissionSpec("managers.remove", "Remove managers"),
    PermissionSpec("managers.permissions", "Change manager permissions"),
    PermissionSpec("managers.venues", "Change manager venue access"),
    PermissionSpec("venue.view", "View venue settings"),
    PermissionSpec("venue.edit", "Edit venue settings and menu"),
    PermissionSpec("venue.branding", "Edit branding"),
    PermissionSpec("venue.integrations", "Manage integrations"),
    PermissionSpec("floorplan.view", "View floor plan"),
    PermissionSpec("floorplan.edit", "Edit floor plan"),
    PermissionSpec("qr.view", "View QR codes"),
    PermissionSpec("qr.generate", "Generate QR codes"),
    PermissionSpec("ai.insights", "View AI insights"),
    PermissionSpec("ai.chat", "Use AI chat"),
    PermissionSpec("ai.regenerate", "Regenerate insights"),
    PermissionSpec("reviews.view", "View external reviews"),
    PermissionSpec("billing.view", "View billing info"),
    PermissionSpec("billing.manage", "Manage subscription"),
    PermissionSpec("multivenue.view", "Access multi-venue overview"),
)

_VIEWER_CODES: frozenset[str] = frozenset(
    {
        "feedback.view",
        "questions.view",
        "reports.view",
        "nps.view",
        "staff.view",
        "staff.leaderboard",
        "venue.view",
        "floorplan.view",
        "qr.view",
        "reviews.view",
    }
)

_MANAGER_CODES: frozenset[str] = _VIEWER_CODES | frozenset(
    {
        "feedback.respond",
        "feedback.export",
        "questions.edit",
        "reports.export",
        "reports.create",
        "nps.insights",
        "staff.edit",
        "staff.recognition",
        "managers.view",
        "managers.invite",
        "managers.permissions",
        "managers.venues",
        "venue.edit",
        "floorplan.edit",
        "qr.generate",
        "ai.insights",
        "ai.chat",
        "multivenue.view",
    }
)

# Built-in templates keyed by code: (stable id, display name, codes).
BUILTIN_TEMPLATES: dict[str, tuple[str, str, frozenset[str]]] = {
    TEMPLATE_ADMIN: ("tpl_admin", "Admin", frozenset(spec.code for spec in PERMISSION_CATALOG)),
    TEMPLATE_MANAGER: ("tpl_manager", "Manager", _MANAGER_CODES),
    TEMPLATE_VIEWER: ("tpl_viewer", "Viewer", _VIEWER_CODES),
}


def group_by_category(codes: set[str] | frozenset[str] | list[str]) -> dict[str, list[str]]:
    # Group "category.action" codes for dashboard menus.
    grouped: dict[str, list[str]] = {}
    for code in sorted(codes):
        category = code.split(".", 1)[0]
        grouped.setdefault(category, []).append(code)
    return grouped


async def ensure_builtin_catalog(session: AsyncSession) -> dict[str, int]:
    """Insert missing catalog permissions, built-in templates and their links.

    Idempotent: existing rows are left alone except for the ``operator_only``
    flag, which is re-asserted so the fixed list always wins. Returns counts of
    rows added for script output.
    """
    added = {"permissions": 0, "templates": 0, "links": 0}
    existing = {
        row.code: row for row in (await session.execute(select(Permission))).scalars().all()
    }
    for spec in PERMISSION_CATALOG:
        row = existing.get(spec.code)
        if row is None:
            session.add(
                Permission(
                    code=spec.code,
                    category=spec.category,
                    description=spec.description,
                    operator_only=spec.operator_only,
                )
            )
            added["permissions"] += 1
        elif spec.operator_only and not row.operator_only:
            row.operator_only = True
    # Flush permissions before template links to satisfy FK constraints.
    await session.flush()

    templates = {
        row.code: row for row in (await session.execute(select(RoleTemplate))).scalars().all()
    }
    for code, (template_id, name, codes) in BUILTIN_TEMPLATES.items():
        template = templates.get(code)
        if template is None:
            template = RoleTemplate(id=template_id, code=code, name=name)
            session.add(template)
            added["templates"] += 1
            await session.flush()
        linked = set(
            (
                await session.execute(
                    select(RoleTemplatePermission.permission_code).where(
                        RoleTemplatePermission.template_id == template.id
                    )
                )
            ).scalars().all()
        )
        for permission_code in sorted(codes - linked):
            session.add(RoleTemplatePermission(template_id=template.id, permission_code=permission_code))
            added["links"] += 1
    await session.flush()
    if any(added.values()):
        logger.info(
            "permission_catalog_seeded permissions=%s templates=%s links=%s",
            added["permissions"],
            added["templates"],
            added["links"],
        )
    return added
