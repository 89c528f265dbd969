import logging
from typing import Any, Dict, List, Optional

from sqlmodel import Session, func, select

from provenance.app.exceptions import ConflictError, NotFoundError
from provenance.app.ledger import Ledger, sign_invocation
from provenance.app.models import ProductIndex, TransactionLog
from provenance.app.utils import format_date, private_key_to_address, validate_address
from provenance.program.encoding import (
    CreateProduct,
    Identity,
    MarkEndOfLife,
    OperationRequest,
    ProductRecord,
    RecordRepair,
    TransactionType,
    TransferOwnership,
    encode_request,
)
from provenance.program.errors import ProcessingError

logger = logging.getLogger(__name__)


class ProvenanceManager:
    def __init__(self, session: Session, ledger: Optional[Ledger] = None):
        self.session = session
        self.ledger = ledger or Ledger(session)

    def _record_to_dict(self, slot_address: str, record: ProductRecord) -> Dict[str, Any]:
        return {
            "slot": slot_address,
            "product_id": record.product_id,
            "transaction_type": record.transaction_type.label,
            "previous_record": record.previous_record.address if record.previous_record else None,
            "current_owner": record.current_owner.address,
            "next_owner": record.next_owner.address if record.next_owner else None,
            "timestamp": record.timestamp,
            "date": format_date(record.timestamp),
            "metadata": record.metadata,
        }

    def _get_index(self, product_id: str) -> ProductIndex:
        index = self.session.get(ProductIndex, product_id)
        if index is None:
            raise NotFoundError(f"Product ID {product_id} does not exist.")
        return index

    def _log_entry(self, tx_id: str, request: OperationRequest, product_id: str, signer: str, record_slot: str, accounts: List[str]) -> TransactionLog:
        return TransactionLog(
            tx_id=tx_id,
            instruction=type(request).__name__,
            product_id=product_id,
            signer=signer,
            record_slot=record_slot,
            slots=",".join(accounts),
            timestamp=self.ledger.clock.now(),
        )

    # === TRANSACTION METHODS ====

    def create_product(self, sender_pk: str, product_id: str, metadata: str = "") -> Dict[str, str]:
        """Register a new product and write its Manufacture record.
        Args:
            sender_pk (str): Private key of the manufacturer.
            product_id (str): Manufacturer serial number.
            metadata (str): Free-form notes stored on the record.
        Returns:
            Dict[str, str]: Transaction id and the slot holding the new record.
        """
        if not product_id or not product_id.strip():
            raise ValueError("Product ID must not be empty.")

        manufacturer = private_key_to_address(sender_pk)
        request = CreateProduct(product_id=product_id, metadata=metadata or "")
        data = encode_request(request)

        with self.ledger.lock:
            if self.session.get(ProductIndex, product_id) is not None:
                raise ConflictError(f"Product ID {product_id} already exists.")

            product_slot = self.ledger.allocate_slot()
            accounts = [product_slot, manufacturer]
            signature = sign_invocation(sender_pk, data, accounts)

            def journal(tx_id):
                index = ProductIndex(
                    product_id=product_id,
                    manufacturer=manufacturer,
                    genesis_slot=product_slot,
                    head_slot=product_slot,
                    status=TransactionType.MANUFACTURE.label,
                )
                return [index, self._log_entry(tx_id, request, product_id, manufacturer, product_slot, accounts)]

            tx_id = self.ledger.invoke(data, accounts, [signature], on_commit=journal)

        logger.info("Product %s created by %s in slot %s", product_id, manufacturer, product_slot)
        return {"tx_id": tx_id, "product_id": product_id, "record_slot": product_slot}

    def _append_record(self, sender_pk: str, product_id: str, request: OperationRequest, status: TransactionType) -> Dict[str, str]:
        """Invoke an operation that reads the product's head slot and writes a fresh successor slot.

        The head is looked up under the ledger lock and checked again just
        before commit, so two events can never both extend the same head.
        """
        sender = private_key_to_address(sender_pk)
        data = encode_request(request)

        with self.ledger.lock:
            index = self._get_index(product_id)
            self.session.refresh(index)
            if index.status == TransactionType.END_OF_LIFE.label:
                raise ValueError(f"Product {product_id} has reached end-of-life; no further events can be recorded.")

            head_slot = index.head_slot
            record_slot = self.ledger.allocate_slot()
            accounts = [head_slot, sender, record_slot]
            signature = sign_invocation(sender_pk, data, accounts)

            def journal(tx_id):
                self.session.refresh(index)
                if index.head_slot != head_slot:
                    raise ConflictError(
                        f"Product {product_id} advanced to {index.head_slot} while {type(request).__name__} "
                        f"was being applied to {head_slot}."
                    )
                index.head_slot = record_slot
                index.status = status.label
                return [index, self._log_entry(tx_id, request, product_id, sender, record_slot, accounts)]

            tx_id = self.ledger.invoke(data, accounts, [signature], on_commit=journal)

        return {"tx_id": tx_id, "product_id": product_id, "previous_slot": head_slot, "record_slot": record_slot}

    def transfer_ownership(self, sender_pk: str, product_id: str, next_owner_address: str) -> Dict[str, str]:
        next_owner = validate_address(next_owner_address)
        result = self._append_record(
            sender_pk, product_id, TransferOwnership(next_owner=Identity.from_address(next_owner)), TransactionType.TRANSFER
        )
        logger.info("Ownership of %s transferred to %s", product_id, next_owner)
        return result

    def record_repair(self, sender_pk: str, product_id: str, metadata: str) -> Dict[str, str]:
        if not metadata or not metadata.strip():
            raise ValueError("Repair metadata must not be empty.")
        result = self._append_record(sender_pk, product_id, RecordRepair(metadata=metadata), TransactionType.REPAIR)
        logger.info("Repair recorded for %s", product_id)
        return result

    def mark_end_of_life(self, sender_pk: str, product_id: str) -> Dict[str, str]:
        result = self._append_record(sender_pk, product_id, MarkEndOfLife(), TransactionType.END_OF_LIFE)
        logger.info("Product %s marked as end-of-life", product_id)
        return result

    # === READ METHODS ===

    def get_record(self, slot_address: str) -> Dict[str, Any]:
        address = validate_address(slot_address)
        return self._record_to_dict(address, self.ledger.read_slot(address))

    def _walk_chain(self, head_slot: str) -> List[Dict[str, Any]]:
        chain = []
        visited = set()
        address = head_slot
        while address is not None:
            if address in visited:
                raise ValueError(f"Chain loops back to slot {address}.")
            visited.add(address)
            record = self.ledger.read_slot(address)
            chain.append(self._record_to_dict(address, record))
            address = record.previous_record.address if record.previous_record else None
        return chain[::-1]  # Oldest first

    def get_product_history(self, product_id: str) -> List[Dict[str, Any]]:
        """Replay a product's chain from its manufacture record to its current head."""
        index = self._get_index(product_id)
        return self._walk_chain(index.head_slot)

    def verify_chain(self, product_id: str) -> Dict[str, Any]:
        """Re-decode a product's chain and check its links and ownership continuity.
        Returns:
            Dict[str, Any]: Verification report with a `valid` flag and a list of issues.
        """
        index = self._get_index(product_id)
        try:
            chain = self._walk_chain(index.head_slot)
        except (ProcessingError, ValueError) as e:
            return {"product_id": product_id, "valid": False, "length": 0, "issues": [str(e)]}

        issues = []
        genesis = chain[0]
        if genesis["slot"] != index.genesis_slot:
            issues.append(f"Chain starts at {genesis['slot']} instead of {index.genesis_slot}.")
        if genesis["transaction_type"] != TransactionType.MANUFACTURE.label:
            issues.append(f"First record is {genesis['transaction_type']}, expected Manufacture.")

        for previous, current in zip(chain, chain[1:]):
            if current["product_id"] != previous["product_id"]:
                issues.append(f"Record {current['slot']} belongs to product {current['product_id']}.")
            if current["transaction_type"] == TransactionType.MANUFACTURE.label:
                issues.append(f"Record {current['slot']} is a second Manufacture record.")
            if current["transaction_type"] == TransactionType.TRANSFER.label:
                expected_owner = previous["next_owner"]
            else:
                expected_owner = previous["current_owner"]
            if current["current_owner"] != expected_owner:
                issues.append(f"Record {current['slot']} owner {current['current_owner']} does not follow from {previous['slot']}.")

        return {"product_id": product_id, "valid": not issues, "length": len(chain), "issues": issues}

    def get_recent_transactions(self, limit: int = 10) -> List[Dict[str, Any]]:
        if limit <= 0:
            raise ValueError("Limit must be a positive integer.")
        entries = self.session.exec(select(TransactionLog).order_by(TransactionLog.id.desc()).limit(limit)).all()
        return [
            {
                "tx_id": entry.tx_id,
                "instruction": entry.instruction,
                "product_id": entry.product_id,
                "signer": entry.signer,
                "record_slot": entry.record_slot,
                "timestamp": entry.timestamp,
                "date": format_date(entry.timestamp),
            }
            for entry in entries
        ]

    # === STATS ===

    def get_system_stats(self) -> Dict[str, int]:
        status_counts = dict(
            self.session.exec(select(ProductIndex.status, func.count()).group_by(ProductIndex.status)).all()
        )
        total_products = sum(status_counts.values())
        retired = status_counts.get(TransactionType.END_OF_LIFE.label, 0)
        total_transactions = self.session.exec(select(func.count()).select_from(TransactionLog)).one()

        return {
            "total_products": total_products,
            "active_products": total_products - retired,
            "end_of_life_products": retired,
            "total_transactions": total_transactions,
        }
