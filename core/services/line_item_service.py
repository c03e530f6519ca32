"""
Line item service for quote and invoice items.

Every mutation recomputes the item's amounts from quantity, unit price and
tax rate, then re-sums the document's included items and overwrites its
totals, all in one transaction. Document totals never drift from their
items.

Items can only change while the owning document is a DRAFT. Optional and
selectable items exist on quotes only.
"""

import logging
from uuid import UUID, uuid4

from core.audit import AuditLogger, AuditAction, compute_changes
from core.exceptions import InvalidArgumentError, NotFoundError
from core.models import BillingDocument, LineItem, LineItemCreate, LineItemUpdate, TaxType
from core.money import compute_line, resolve_tax_rate, sum_amounts, to_decimal
from core.repository import BillingRepository
from core.state_machine import require_editable
from utils.organization_context import get_current_organization_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "description", "quantity", "unit_price", "tax_type", "tax_rate",
    "is_optional", "is_selected",
}

# Flags that only make sense on quotes
_QUOTE_ONLY_FIELDS = {"is_optional", "is_selected"}


class LineItemService:
    """Service for line item operations."""

    def __init__(self, repository: BillingRepository, audit: AuditLogger):
        self.repository = repository
        self.audit = audit

    def _get_document(self, document_id: UUID) -> BillingDocument:
        """Load and lock the document, scoped to the current organization."""
        document = self.repository.find_document(
            document_id, get_current_organization_id(), for_update=True
        )
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    def _get_item(self, item_id: UUID) -> tuple[LineItem, BillingDocument]:
        """
        Load an item and its locked document. Items of other organizations are not found.

        The item is read again once the document lock is held, so a concurrent
        edit committed while waiting for the lock is not overwritten.
        """
        item = self.repository.find_line_item(item_id)
        if item is None:
            raise NotFoundError(f"Line item {item_id} not found")

        document = self.repository.find_document(
            item.document_id, get_current_organization_id(), for_update=True
        )
        if document is None:
            raise NotFoundError(f"Line item {item_id} not found")

        item = self.repository.find_line_item(item_id)
        if item is None or item.document_id != document.id:
            raise NotFoundError(f"Line item {item_id} not found")

        return item, document

    @staticmethod
    def _check_quote_only_flags(document: BillingDocument, fields: dict) -> None:
        if document.is_quote:
            return
        if fields.get("is_optional") or fields.get("is_selected") is False:
            raise InvalidArgumentError(
                f"Invoice {document.number} cannot have optional or unselected items"
            )

    def get_items(self, document_id: UUID) -> list[LineItem]:
        """
        Items of a document ordered by sort_order.

        Raises:
            NotFoundError: If the document is not in the current organization
        """
        document = self.repository.find_document(document_id, get_current_organization_id())
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return self.repository.find_line_items(document_id)

    def add_item(self, document_id: UUID, data: LineItemCreate) -> LineItem:
        """
        Add a line item to a draft document.

        Args:
            document_id: Quote or invoice to add to
            data: Item fields. tax_type defaults to STANDARD, tax_rate to the
                tax type's rate. Optional items start unselected.

        Returns:
            Created line item

        Raises:
            NotFoundError: If document not found
            InvalidStateError: If document is not a draft
            InvalidArgumentError: If quantity <= 0, unit price < 0, or quote-only
                flags are set on an invoice
        """
        return self.add_items(document_id, [data])[0]

    def add_items(self, document_id: UUID, items: list[LineItemCreate]) -> list[LineItem]:
        """
        Add several items at once with a single totals recalculation.

        Items get consecutive sort orders after the current last item.
        """
        with self.repository.transaction():
            document = self._get_document(document_id)
            require_editable(document)

            existing = self.repository.find_line_items(document_id)
            next_sort_order = max((i.sort_order for i in existing), default=-1) + 1
            now = now_utc()

            created = []
            for data in items:
                self._check_quote_only_flags(document, data.model_dump())

                tax_type = data.tax_type or TaxType.STANDARD
                tax_rate = resolve_tax_rate(tax_type, data.tax_rate)
                amounts = compute_line(data.quantity, data.unit_price, tax_rate)
                is_selected = data.is_selected if data.is_selected is not None else not data.is_optional

                item = self.repository.save_line_item(LineItem(
                    id=uuid4(),
                    document_id=document_id,
                    service_id=data.service_id,
                    description=data.description,
                    quantity=to_decimal(data.quantity),
                    unit_price=to_decimal(data.unit_price),
                    tax_type=tax_type,
                    tax_rate=tax_rate,
                    subtotal=amounts.subtotal,
                    tax_amount=amounts.tax_amount,
                    total=amounts.total,
                    sort_order=next_sort_order,
                    is_optional=data.is_optional,
                    is_selected=is_selected,
                    created_at=now,
                    updated_at=now,
                ))
                next_sort_order += 1
                created.append(item)

                self.audit.log_change(
                    entity_type="line_item",
                    entity_id=item.id,
                    action=AuditAction.CREATE,
                    changes={"created": item.model_dump(mode="json")}
                )

            self._recalculate(document)

        return created

    def update_item(self, item_id: UUID, data: LineItemUpdate) -> LineItem:
        """
        Update a line item. Unspecified fields keep their values.

        A new tax_type without a tax_rate switches to that type's table rate.
        Without either, the stored rate (possibly an override) is kept.

        Args:
            item_id: Line item UUID
            data: Fields to update

        Returns:
            Updated line item

        Raises:
            NotFoundError: If item not found
            InvalidStateError: If the document is not a draft
            InvalidArgumentError: If the resulting quantity or price is invalid
        """
        return self._update_item(item_id, data)

    def _update_item(self, item_id: UUID, data: LineItemUpdate, optional_only: bool = False) -> LineItem:
        with self.repository.transaction():
            current, document = self._get_item(item_id)
            if optional_only and not current.is_optional:
                raise InvalidArgumentError(f"Line item {item_id} is not optional")
            require_editable(document)

            updates = data.model_dump(exclude_none=True)
            for field in updates:
                if field not in _UPDATABLE_FIELDS:
                    logger.warning(
                        f"Attempted to update unknown field '{field}' on line item {item_id}"
                    )
            updates = {k: v for k, v in updates.items() if k in _UPDATABLE_FIELDS}
            if not updates:
                return current

            self._check_quote_only_flags(document, updates)

            tax_type = updates.get("tax_type", current.tax_type)
            if "tax_rate" in updates:
                tax_rate = resolve_tax_rate(tax_type, updates["tax_rate"])
            elif "tax_type" in updates:
                tax_rate = resolve_tax_rate(tax_type)
            else:
                tax_rate = current.tax_rate

            quantity = to_decimal(updates.get("quantity", current.quantity))
            unit_price = to_decimal(updates.get("unit_price", current.unit_price))
            amounts = compute_line(quantity, unit_price, tax_rate)

            is_optional = updates.get("is_optional", current.is_optional)
            is_selected = updates.get("is_selected", current.is_selected)
            if not is_optional:
                is_selected = True

            updated = self.repository.save_line_item(current.model_copy(update={
                "description": updates.get("description", current.description),
                "quantity": quantity,
                "unit_price": unit_price,
                "tax_type": tax_type,
                "tax_rate": tax_rate,
                "subtotal": amounts.subtotal,
                "tax_amount": amounts.tax_amount,
                "total": amounts.total,
                "is_optional": is_optional,
                "is_selected": is_selected,
                "updated_at": now_utc(),
            }))

            changes = compute_changes(
                current.model_dump(mode="json"),
                updated.model_dump(mode="json")
            )
            if changes:
                self.audit.log_change(
                    entity_type="line_item",
                    entity_id=item_id,
                    action=AuditAction.UPDATE,
                    changes=changes
                )

            self._recalculate(document)

        return updated

    def set_item_selected(self, item_id: UUID, selected: bool) -> LineItem:
        """
        Include or exclude an optional quote item from the totals.

        Raises:
            NotFoundError: If item not found
            InvalidArgumentError: If the item is not an optional quote item
            InvalidStateError: If the quote is not a draft
        """
        return self._update_item(item_id, LineItemUpdate(is_selected=selected), optional_only=True)

    def remove_item(self, item_id: UUID) -> None:
        """
        Delete a line item. Remaining items keep their sort order.

        Raises:
            NotFoundError: If item not found
            InvalidStateError: If the document is not a draft
        """
        with self.repository.transaction():
            item, document = self._get_item(item_id)
            require_editable(document)

            self.repository.delete_line_item(item_id)

            self.audit.log_change(
                entity_type="line_item",
                entity_id=item_id,
                action=AuditAction.DELETE,
                changes={"deleted": item.model_dump(mode="json")}
            )

            self._recalculate(document)

    def recalculate_totals(self, document_id: UUID) -> BillingDocument:
        """
        Overwrite the document's totals with the sum of its included items.

        Raises:
            NotFoundError: If document not found
        """
        with self.repository.transaction():
            return self._recalculate(self._get_document(document_id))

    def _recalculate(self, document: BillingDocument) -> BillingDocument:
        items = self.repository.find_line_items(document.id)
        totals = sum_amounts(document.included_items(items))

        if (totals.subtotal, totals.tax_amount, totals.total) == (
            document.subtotal, document.tax_amount, document.total
        ):
            return document

        return self.repository.save_document(document.model_copy(update={
            "subtotal": totals.subtotal,
            "tax_amount": totals.tax_amount,
            "total": totals.total,
            "updated_at": now_utc(),
        }))
