"""Wire every use case to one unit of work."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from orgkit.repositories.ports import UnitOfWork
from orgkit.services import memberships, organizations, users
from orgkit.services.hooks import ToolkitOptions


@dataclass
class UseCases:
    create_user: users.CreateUser
    get_user: users.GetUser
    update_user: users.UpdateUser
    delete_user: users.DeleteUser
    list_user_organizations: users.ListUserOrganizations

    create_organization: organizations.CreateOrganization
    get_organization: organizations.GetOrganization
    update_organization: organizations.UpdateOrganization
    archive_organization: organizations.ArchiveOrganization
    delete_organization: organizations.DeleteOrganization
    restore_organization: organizations.RestoreOrganization
    list_organization_members: organizations.ListOrganizationMembers

    add_organization_member: memberships.AddOrganizationMember
    accept_organization_invitation: memberships.AcceptOrganizationInvitation
    leave_organization: memberships.LeaveOrganization
    remove_organization_member: memberships.RemoveOrganizationMember
    update_organization_member_role: memberships.UpdateOrganizationMemberRole
    transfer_organization_ownership: memberships.TransferOrganizationOwnership


def build_use_cases(uow: UnitOfWork, options: Optional[ToolkitOptions] = None) -> UseCases:
    options = options or ToolkitOptions()
    return UseCases(
        create_user=users.CreateUser(uow, options),
        get_user=users.GetUser(uow, options),
        update_user=users.UpdateUser(uow, options),
        delete_user=users.DeleteUser(uow, options),
        list_user_organizations=users.ListUserOrganizations(uow, options),
        create_organization=organizations.CreateOrganization(uow, options),
        get_organization=organizations.GetOrganization(uow, options),
        update_organization=organizations.UpdateOrganization(uow, options),
        archive_organization=organizations.ArchiveOrganization(uow, options),
        delete_organization=organizations.DeleteOrganization(uow, options),
        restore_organization=organizations.RestoreOrganization(uow, options),
        list_organization_members=organizations.ListOrganizationMembers(uow, options),
        add_organization_member=memberships.AddOrganizationMember(uow, options),
        accept_organization_invitation=memberships.AcceptOrganizationInvitation(uow, options),
        leave_organization=memberships.LeaveOrganization(uow, options),
        remove_organization_member=memberships.RemoveOrganizationMember(uow, options),
        update_organization_member_role=memberships.UpdateOrganizationMemberRole(uow, options),
        transfer_organization_ownership=memberships.TransferOrganizationOwnership(uow, options),
    )
