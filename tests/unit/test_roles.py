import pytest

from admin_console.core.roles import ADMIN_ROLES, SYSTEM_ROLES, Role, sorted_by_privilege


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Developer", Role.DEVELOPER),
        ("superadmin", Role.SUPER_ADMIN),
        ("SUPER_ADMIN", Role.SUPER_ADMIN),
        ("org-admin", Role.ORG_ADMIN),
        (" User ", Role.USER),
        (Role.ORG_ADMIN, Role.ORG_ADMIN),
    ],
)
def test_parse_accepts_values_and_names(raw, expected):
    assert Role.parse(raw) is expected


@pytest.mark.parametrize("raw", ["", "   ", None, "admin", 3])
def test_parse_rejects_unknown(raw):
    with pytest.raises(ValueError):
        Role.parse(raw)


def test_directory_role_names():
    assert [r.directory_role_name for r in Role] == ["DevRole", "SuperAdmin", "OrgAdmin", "OrgUser"]


def test_system_and_admin_roles():
    assert SYSTEM_ROLES == {Role.DEVELOPER, Role.SUPER_ADMIN}
    assert Role.ORG_ADMIN in ADMIN_ROLES and Role.USER not in ADMIN_ROLES
    assert Role.SUPER_ADMIN.is_system_role
    assert not Role.ORG_ADMIN.is_system_role


def test_sorted_by_privilege():
    assert sorted_by_privilege(["User", "Developer", "OrgAdmin"]) == [Role.DEVELOPER, Role.ORG_ADMIN, Role.USER]


def test_display_metadata_for_every_role():
    for role in Role:
        assert role.display_name
        assert role.badge_class.startswith("bg-")
        assert role.description
