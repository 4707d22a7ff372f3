"""Role management and invitation endpoints."""
from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, request

from admin_console.core.errors import PolicyDenied
from admin_console.core.models import NewUserDraft, Outcome, RoleTransitionRequest
from admin_console.core.policy import INSUFFICIENT_PRIVILEGE
from admin_console.core.roles import Role

from .decorators import current_principal, require_principal

bp = Blueprint("roles", __name__)

_TRANSITION_STATUS = {
    Outcome.SUCCEEDED: 200,
    Outcome.PARTIALLY_APPLIED: 202,
    Outcome.POLICY_DENIED: 403,
}

_INVITATION_STATUS = {
    Outcome.SUCCEEDED: 201,
    Outcome.PARTIALLY_APPLIED: 202,
    Outcome.POLICY_DENIED: 403,
}


def _services():
    return current_app.extensions["admin_console"]


def _payload() -> dict:
    if not request.is_json:
        abort(400, description="Request body must be JSON")
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Request body must be a JSON object")
    return payload


def _optional_payload() -> dict:
    """Body may be omitted; when present it must still be a JSON object."""
    if not request.get_data():
        return {}
    return _payload()


def _role_field(payload: dict, name: str = "role", default: Role | None = None) -> Role:
    value = payload.get(name)
    if value is None and default is not None:
        return default
    try:
        return Role.parse(value)
    except ValueError as exc:
        abort(400, description=str(exc))


def _reason(payload: dict) -> str | None:
    reason = payload.get("reason")
    if reason is not None and not isinstance(reason, str):
        abort(400, description="reason must be a string")
    return reason.strip() if reason else None


def _transition_response(result):
    return jsonify(result.to_dict()), _TRANSITION_STATUS[result.outcome]


@bp.route("/users/<user_id>/role", methods=["POST"])
@require_principal
def change_role(user_id: str):
    payload = _payload()
    transition = RoleTransitionRequest(
        principal=current_principal(),
        target_user_id=user_id,
        requested_role=_role_field(payload),
        reason=_reason(payload),
    )
    return _transition_response(_services().orchestrator.apply(transition))


@bp.route("/users/<user_id>/promote", methods=["POST"])
@require_principal
def promote(user_id: str):
    payload = _optional_payload()
    role = _role_field(payload, default=Role.ORG_ADMIN)
    result = _services().orchestrator.promote_to_admin(current_principal(), user_id, role, _reason(payload))
    return _transition_response(result)


@bp.route("/users/<user_id>/revoke-admin", methods=["POST"])
@require_principal
def revoke_admin(user_id: str):
    payload = _optional_payload()
    result = _services().orchestrator.revoke_admin(current_principal(), user_id, _reason(payload))
    return _transition_response(result)


@bp.route("/invitations", methods=["POST"])
@require_principal
def invite():
    payload = _payload()
    draft = NewUserDraft(
        display_name=str(payload.get("display_name") or ""),
        email=str(payload.get("email") or ""),
        organization_id=payload.get("organization_id"),
    )
    role = _role_field(payload, default=Role.USER)
    try:
        result = _services().invitations.invite(current_principal(), draft, role)
    except ValueError as exc:
        abort(400, description=str(exc))
    return jsonify(result.to_dict()), _INVITATION_STATUS[result.outcome]


@bp.route("/users/lagging", methods=["GET"])
@require_principal
def lagging_users():
    """Accounts whose directory mirror is missing (operator remediation list)."""
    if not current_principal().role.is_system_role:
        raise PolicyDenied(INSUFFICIENT_PRIVILEGE, "Required role: Developer or SuperAdmin")
    accounts = _services().store.list_lagging()
    return jsonify([
        {
            "id": a.id,
            "email": a.email,
            "role": a.role.value,
            "organization_id": a.organization_id,
        }
        for a in accounts
    ])
