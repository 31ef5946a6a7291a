# accounts/services.py
import logging

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Q

from tracker.exceptions import AlreadyExists, ErrorCodes, NotFound
from tracker.pagination import paginate

from .rbac import Action, GlobalRole, decide, enforce

logger = logging.getLogger(__name__)

User = get_user_model()

SORT_FIELDS = {
    'name': 'name',
    'role': 'role',
    'created_at': 'date_joined',
}


class UserService:
    """Global user administration. Users are not audited."""

    def list(self, page=1, page_size=None, search=None, sort_by='created_at', sort_order='desc'):
        queryset = User.objects.all()
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(email__icontains=search))
        order_field = SORT_FIELDS.get(sort_by, 'date_joined')
        prefix = '' if sort_order == 'asc' else '-'
        queryset = queryset.order_by(f'{prefix}{order_field}', 'id')
        return paginate(queryset, page=page, page_size=page_size)

    def get(self, user_id):
        user = User.objects.filter(pk=user_id).first()
        if user is None:
            raise NotFound('User not found.', ErrorCodes.USER_NOT_FOUND, {'user_id': user_id})
        return user

    def create(self, email, name, password, role=GlobalRole.VIEWER):
        email = User.objects.normalize_email(email)
        if User.objects.filter(email__iexact=email).exists():
            raise AlreadyExists(
                'A user with this email already exists.', ErrorCodes.EMAIL_ALREADY_EXISTS, {'email': email},
            )
        try:
            with transaction.atomic():
                user = User.objects.create_user(email=email, password=password, name=name, role=role)
        except IntegrityError:
            raise AlreadyExists(
                'A user with this email already exists.', ErrorCodes.EMAIL_ALREADY_EXISTS, {'email': email},
            )
        logger.info(f"User {user.id} created with role {role}")
        return user

    def update(self, actor, user_id, patch):
        """
        Change a user's name and/or global role.

        Sending ``role`` for your own account is refused even when it would
        not change anything.
        """
        user = self.get(user_id)
        action = Action.UPDATE_USER_ROLE if 'role' in patch else Action.MANAGE_USERS
        decision = decide(actor.role, None, action, actor_id=actor.id, target_id=user.id)
        if not decision:
            logger.warning(f"User {actor.id} refused {action.value} on {user.id}: {decision.reason}")
        enforce(decision, user_id=user.id)

        fields = [name for name in ('name', 'role') if name in patch]
        for name in fields:
            setattr(user, name, patch[name])
        if fields:
            user.save(update_fields=[*fields, 'updated_at'])
            logger.info(f"User {user.id} updated by {actor.id}: {', '.join(fields)}")
        return user

    def delete(self, actor, user_id):
        user = self.get(user_id)
        decision = decide(actor.role, None, Action.DELETE_USER, actor_id=actor.id, target_id=user.id)
        if not decision:
            logger.warning(f"User {actor.id} refused delete_user on {user.id}: {decision.reason}")
        enforce(decision, user_id=user.id)
        user.delete()
        logger.info(f"User {user_id} deleted by {actor.id}")


user_service = UserService()
