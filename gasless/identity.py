"""
Resolving a caller-supplied user key to a user and the wallet they pay from.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from django.contrib.auth import get_user_model
from django.db.models import Q

from gasless.errors import NotFoundError
from gasless.models import UserWallet


@dataclass(frozen=True)
class ResolvedIdentity:
    user: Any
    user_id: Any
    payable_address: Optional[str]
    active: bool


class IdentityResolver(ABC):
    @abstractmethod
    def resolve(self, user_key: str) -> ResolvedIdentity:
        """
        Resolve a user key (id, email, username) to an identity.

        Raises:
            NotFoundError: unknown user
        """
        pass


class DjangoIdentityResolver(IdentityResolver):
    """Looks users up in the auth user table; the payable address comes from `UserWallet`."""

    def resolve(self, user_key: str) -> ResolvedIdentity:
        user_model = get_user_model()
        key = str(user_key).strip()
        if not key:
            raise NotFoundError('User not found.')

        lookup = Q(email__iexact=key) | Q(**{user_model.USERNAME_FIELD: key})
        if key.isdigit():
            lookup |= Q(pk=int(key))

        user = user_model.objects.filter(lookup).order_by('pk').first()
        if user is None:
            raise NotFoundError('User not found.')

        wallet = UserWallet.objects.filter(user=user).first()
        return ResolvedIdentity(
            user=user,
            user_id=user.pk,
            payable_address=wallet.address if wallet else None,
            active=bool(getattr(user, 'is_active', True)),
        )
