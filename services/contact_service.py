"""
ContactService - Contact identity resolution

Maps a channel-supplied (number, alternate id) pair onto exactly one contact
per tenant, merging duplicates when the two identifiers resolve to different
rows. Uniqueness races on insert are recovered by re-querying.
"""

import re
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from crm_database import Contact
from logging_config import get_logger
from repositories.contact_repository import ContactRepository
from services.common.errors import ConflictError, ValidationError
from services.common.tenant_context import TenantContext, require_tenant
from services.notification_service import NotificationService

logger = get_logger(__name__)


def normalize_number(number: Optional[str], is_group: bool = False,
                     keep_format: bool = False) -> Optional[str]:
    """Strip everything but digits unless the identifier is a group id or must be kept verbatim."""
    if number is None:
        return None
    number = str(number).strip()
    if not number:
        return None
    if is_group or keep_format:
        return number
    digits = re.sub(r'\D', '', number)
    return digits or None


class ContactService:
    """Resolves, creates and merges contacts for the current tenant"""

    def __init__(self, contact_repository: ContactRepository,
                 notification_service: NotificationService):
        self.contact_repository = contact_repository
        self.notifications = notification_service

    def resolve_or_create(self, name: Optional[str] = None, number: Optional[str] = None,
                          alt_id: Optional[str] = None, profile_pic_url: Optional[str] = None,
                          is_group: bool = False, email: Optional[str] = None,
                          custom_fields: Optional[List[Dict[str, str]]] = None,
                          keep_number_format: bool = False) -> Contact:
        """
        Return the canonical contact for an identity, creating or merging as needed.

        Args:
            name: Display name reported by the channel
            number: Primary external identifier
            alt_id: Secondary provider identifier (linked identity)
            profile_pic_url: Avatar URL
            is_group: Whether the identity is a group conversation
            email: Free-text email
            custom_fields: Ordered name/value pairs replacing the current ones
            keep_number_format: Store the number verbatim instead of digits only

        Returns:
            The created, updated or surviving merged contact

        Raises:
            ValidationError: If neither a number nor an alternate id is given
            TenantContextRequired: If no tenant scope is active
        """
        tenant = require_tenant()
        number = normalize_number(number, is_group, keep_number_format)
        alt_id = (alt_id or '').strip() or None
        if not number and not alt_id:
            raise ValidationError("A contact needs a number or an alternate id")

        by_number, by_alt = self.contact_repository.find_by_identity(tenant, number, alt_id)

        if by_number and by_alt and by_number.id != by_alt.id:
            contact = self._merge(tenant, survivor=by_number, loser=by_alt)
        else:
            contact = by_number or by_alt

        if contact is not None:
            self._apply_profile(tenant, contact, name, number, alt_id, profile_pic_url,
                                is_group, email, custom_fields)
            action = 'update'
        else:
            contact, action = self._create_or_recover(
                tenant, name, number, alt_id, profile_pic_url, is_group, email, custom_fields
            )

        self.contact_repository.commit()
        self.notifications.emit_contact(contact, action)
        return contact

    def create_contact(self, name: str, number: str, email: Optional[str] = None,
                       profile_pic_url: Optional[str] = None,
                       custom_fields: Optional[List[Dict[str, str]]] = None) -> Contact:
        """
        Explicitly create a contact (e.g. from a shared vCard).

        Raises:
            ValidationError: If the number is missing
            ConflictError: If a contact with that number already exists
        """
        tenant = require_tenant()
        number = normalize_number(number)
        if not number:
            raise ValidationError("A contact number is required")
        if self.contact_repository.find_by_number(tenant, number):
            raise ConflictError(f"Contact with number {number} already exists",
                                details={'number': number})

        contact = self.contact_repository.create(
            tenant,
            name=(name or '').strip() or number,
            number=number,
            email=email or '',
            profile_pic_url=profile_pic_url,
            is_group=False
        )
        if custom_fields:
            self.contact_repository.replace_custom_fields(tenant, contact, custom_fields)
        self.contact_repository.commit()
        self.notifications.emit_contact(contact, 'create')
        return contact

    def get_contact(self, contact_id: int) -> Optional[Contact]:
        return self.contact_repository.get_by_id(require_tenant(), contact_id)

    # Internal helpers

    def _merge(self, tenant: TenantContext, survivor: Contact, loser: Contact) -> Contact:
        """Fold `loser` into `survivor` in the current transaction."""
        loser_id = loser.id
        loser_alt_id = loser.alt_id
        loser_picture = loser.profile_pic_url

        counts = self.contact_repository.repoint_references(tenant, loser, survivor)
        self.contact_repository.delete(tenant, loser)

        updates = {}
        if loser_alt_id:
            updates['alt_id'] = loser_alt_id
        if loser_picture and not survivor.profile_pic_url:
            updates['profile_pic_url'] = loser_picture
        if updates:
            self.contact_repository.update(tenant, survivor, **updates)

        logger.warning(
            "Merged duplicate contacts",
            survivor_id=survivor.id,
            loser_id=loser_id,
            alt_id=loser_alt_id,
            **counts
        )

        # Both contacts may have had a conversation open on the same connection.
        # Both tickets are kept; new messages land on the most recently updated one.
        duplicates = self.contact_repository.find_duplicate_active_tickets(tenant, survivor)
        if duplicates:
            logger.warning(
                "Merged contact has more than one active ticket on a connection",
                contact_id=survivor.id,
                tickets_by_connection=duplicates
            )
        return survivor

    def _apply_profile(self, tenant: TenantContext, contact: Contact, name: Optional[str],
                       number: Optional[str], alt_id: Optional[str],
                       profile_pic_url: Optional[str], is_group: bool,
                       email: Optional[str], custom_fields: Optional[List[Dict[str, str]]]) -> None:
        updates = {}
        if name and name.strip() and name.strip() != contact.name:
            updates['name'] = name.strip()
        if number and contact.number != number:
            updates['number'] = number
        if alt_id and contact.alt_id != alt_id:
            updates['alt_id'] = alt_id
        if profile_pic_url and contact.profile_pic_url != profile_pic_url:
            updates['profile_pic_url'] = profile_pic_url
        if email is not None and email != contact.email:
            updates['email'] = email
        if bool(is_group) != bool(contact.is_group):
            updates['is_group'] = bool(is_group)
        if updates:
            self.contact_repository.update(tenant, contact, **updates)
        if custom_fields is not None:
            self.contact_repository.replace_custom_fields(tenant, contact, custom_fields)

    def _create_or_recover(self, tenant: TenantContext, name: Optional[str], number: Optional[str],
                           alt_id: Optional[str], profile_pic_url: Optional[str], is_group: bool,
                           email: Optional[str],
                           custom_fields: Optional[List[Dict[str, str]]]) -> Tuple[Contact, str]:
        """Insert a new contact; on a uniqueness race, update the row that won instead."""
        try:
            with self.contact_repository.begin_nested():
                contact = self.contact_repository.create(
                    tenant,
                    name=(name or '').strip() or number or alt_id,
                    number=number,
                    alt_id=alt_id,
                    profile_pic_url=profile_pic_url,
                    is_group=bool(is_group),
                    email=email or ''
                )
        except IntegrityError:
            existing = self.contact_repository.find_by_number_or_alt_id(tenant, number, alt_id)
            if existing is None:
                raise
            logger.warning("Contact insert lost a uniqueness race, updating existing row",
                           contact_id=existing.id, number=number, alt_id=alt_id)
            self._apply_profile(tenant, existing, name, number, alt_id, profile_pic_url,
                                is_group, email, custom_fields)
            return existing, 'update'

        if custom_fields:
            self.contact_repository.replace_custom_fields(tenant, contact, custom_fields)
        return contact, 'create'
