from dataclasses import dataclass, field

from starlette.requests import Request

from app.core.rbac import ADMIN_ROLE, roles_grant
from app.platform.tokens import token_service


@dataclass
class AuthUser:
    sub: str
    roles: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles

    def has_permission(self, permission: str) -> bool:
        return roles_grant(self.roles, permission)


GUEST = AuthUser(sub="anonymous", roles=["guest"])


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.removeprefix("Bearer ").strip() if auth_header.startswith("Bearer ") else ""


def authenticate(token: str | None) -> AuthUser:
    subject = token_service.validate(token, "session")
    if subject is None:
        return AuthUser(sub=GUEST.sub, roles=list(GUEST.roles))
    return AuthUser(sub=subject.subject_id, roles=list(subject.roles))


async def get_current_user(request: Request) -> AuthUser:
    user = authenticate(bearer_token(request))
    context = getattr(request.state, "context", None)
    if context is not None and user.sub != GUEST.sub:
        context.user_id = user.sub
    return user
