"""
Authentication Service
Bearer JWT verification and the team-membership capability the API consumes:
"is this user a member of team T with role >= R".

Users and teams are provisioned elsewhere. By default memberships are read from
the token's "teams" claim ({team_id: role}); deployments with a membership
service override get_membership_resolver.
"""

from jose import JWTError, jwt
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Callable, Dict, Optional
import secrets
import os

# ============================================================================
# Configuration
# ============================================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", secrets.token_urlsafe(32))
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60  # 1 hour

# Bearer token authentication
security = HTTPBearer()


class TeamRole(str, Enum):
    VIEWER = "viewer"
    MEMBER = "member"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return list(TeamRole).index(self)


@dataclass
class Principal:
    """Authenticated caller"""
    user_id: str
    teams: Dict[str, str] = field(default_factory=dict)


# ============================================================================
# JWT Token Management
# ============================================================================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str, token_type: str = "access") -> Optional[dict]:
    """Decode a token; None when invalid, expired or of the wrong type"""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        if payload.get("type") != token_type:
            return None
        return payload
    except JWTError:
        return None


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Principal:
    """
    Dependency to get the authenticated caller from the bearer token
    Usage: def endpoint(principal: Principal = Depends(get_current_user))
    """
    payload = verify_token(credentials.credentials, token_type="access")

    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    teams = payload.get("teams") or {}
    if not isinstance(teams, dict):
        teams = {}
    return Principal(user_id=payload["sub"], teams=teams)


# ============================================================================
# Team Membership
# ============================================================================

MembershipResolver = Callable[[Principal, str], Optional[TeamRole]]


def claims_membership(principal: Principal, team_id: str) -> Optional[TeamRole]:
    role = principal.teams.get(team_id)
    try:
        return TeamRole(role) if role else None
    except ValueError:
        return None


def get_membership_resolver() -> MembershipResolver:
    """Dependency returning the membership capability; override to plug in a team service"""
    return claims_membership


def ensure_team_role(
    principal: Principal,
    resolver: MembershipResolver,
    team_id: Optional[str],
    minimum: TeamRole = TeamRole.MEMBER,
):
    """Raise 403 unless the principal holds at least `minimum` in the team"""
    role = resolver(principal, team_id) if team_id else None
    if role is None or role.rank < minimum.rank:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires {minimum.value} role in team {team_id}",
        )


def require_team_role(minimum: TeamRole = TeamRole.MEMBER):
    """
    Dependency factory for routes with a team_id path or query parameter
    Usage: def endpoint(team_id: str, principal: Principal = Depends(require_team_role(TeamRole.ADMIN)))
    """
    def dependency(
        team_id: str,
        principal: Principal = Depends(get_current_user),
        resolver: MembershipResolver = Depends(get_membership_resolver),
    ) -> Principal:
        ensure_team_role(principal, resolver, team_id, minimum)
        return principal

    return dependency
