"""
Read views joining an account with its type-specific profile.

``UserView`` is a tagged union: code branches on ``kind`` (or isinstance)
instead of probing for optional fields.
"""
from dataclasses import dataclass
from typing import List, Literal, Optional, Union

from audit_auth.authorization import EXTERNAL_SESSION_ROLE
from audit_auth.models import Account, ExternalProfile, InternalProfile, UserType
from audit_auth.token import ClaimsPayload


@dataclass(frozen=True)
class InternalUser:
    account: Account
    profile: InternalProfile
    kind: Literal["INTERNAL"] = "INTERNAL"

    @property
    def roles(self) -> List[str]:
        return list(self.profile.roles)

    @property
    def primary_role(self) -> str:
        return self.profile.primary_role

    def holds(self, role: str) -> bool:
        return self.profile.has_role(role)

    def claims(self, session_id: str, current_role: str) -> ClaimsPayload:
        return ClaimsPayload(
            sub=self.account.id,
            username=self.account.username,
            email=self.account.email,
            type=UserType.INTERNAL.value,
            profile_id=self.profile.id,
            session_id=session_id,
            roles=self.roles,
            current_role=current_role,
        )

    def to_dict(self, current_role: str) -> dict:
        return {
            "id": self.account.id,
            "username": self.account.username,
            "email": self.account.email,
            "fullName": self.account.full_name,
            "type": UserType.INTERNAL.value,
            "profileId": self.profile.id,
            "roles": self.roles,
            "currentRole": current_role,
        }


@dataclass(frozen=True)
class ExternalUser:
    account: Account
    profile: ExternalProfile
    kind: Literal["EXTERNAL"] = "EXTERNAL"

    @property
    def organization_id(self) -> str:
        return self.profile.organization_id

    def claims(self, session_id: str, current_role: Optional[str] = None) -> ClaimsPayload:
        return ClaimsPayload(
            sub=self.account.id,
            username=self.account.username,
            email=self.account.email,
            type=UserType.EXTERNAL.value,
            profile_id=self.profile.id,
            session_id=session_id,
            organization_id=self.organization_id,
        )

    def to_dict(self, current_role: str = EXTERNAL_SESSION_ROLE) -> dict:
        return {
            "id": self.account.id,
            "username": self.account.username,
            "email": self.account.email,
            "fullName": self.account.full_name,
            "type": UserType.EXTERNAL.value,
            "profileId": self.profile.id,
            "organizationId": self.organization_id,
            "currentRole": current_role,
        }


UserView = Union[InternalUser, ExternalUser]
