"""
Order collaborator interface.

The gangsheet engine does not own orders. It asks an OrderGateway for the
printable line items of a batch of orders and nothing else. Production
deployments implement OrderGateway against the order database; the
in-memory implementation here backs development servers and tests.

Contract:
    validate_orders(tenant_id, order_ids)
        Raises OrderNotFoundError / OrderNotPrintableError
    fetch_printable_line_items(tenant_id, order_ids) -> List[LineItem]
        Same failures, otherwise every line item of every order, in the
        order the ids were given
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Iterable, List, Tuple

from models.geometry import LineItem
from modules.sizing import line_item_from_design

from .exceptions import OrderNotFoundError, OrderNotPrintableError


# Order statuses that may be sent to print
PRINTABLE_STATUSES = frozenset({"paid", "in_production", "ready_to_print"})


class OrderGateway:
    """Interface for the order collaborator."""

    def validate_orders(self, tenant_id: str, order_ids: Iterable[str]) -> None:
        raise NotImplementedError

    def fetch_printable_line_items(self, tenant_id: str, order_ids: Iterable[str]) -> List[LineItem]:
        raise NotImplementedError


@dataclass(frozen=True)
class OrderRecord:
    """An order as seen by the gangsheet engine."""

    order_id: str
    tenant_id: str
    status: str
    line_items: Tuple[LineItem, ...]

    @property
    def is_printable(self) -> bool:
        return self.status in PRINTABLE_STATUSES


class InMemoryOrderGateway(OrderGateway):
    """
    Thread-safe in-memory order collaborator.

    Usage:
        gateway = InMemoryOrderGateway()
        gateway.add_order("tenant-1", "1001", [LineItem(...)], status="paid")
        items = gateway.fetch_printable_line_items("tenant-1", ["1001"])
    """

    def __init__(self):
        self._orders: Dict[Tuple[str, str], OrderRecord] = {}
        self._lock = threading.Lock()

    def add_order(
        self,
        tenant_id: str,
        order_id: str,
        line_items: Iterable[LineItem],
        status: str = "paid"
    ) -> OrderRecord:
        record = OrderRecord(
            order_id=str(order_id),
            tenant_id=str(tenant_id),
            status=status,
            line_items=tuple(line_items),
        )
        with self._lock:
            self._orders[(record.tenant_id, record.order_id)] = record
        return record

    def set_status(self, tenant_id: str, order_id: str, status: str) -> None:
        key = (str(tenant_id), str(order_id))
        with self._lock:
            record = self._orders.get(key)
            if record is None:
                raise OrderNotFoundError(str(tenant_id), [str(order_id)])
            self._orders[key] = OrderRecord(
                order_id=record.order_id,
                tenant_id=record.tenant_id,
                status=status,
                line_items=record.line_items,
            )

    def validate_orders(self, tenant_id: str, order_ids: Iterable[str]) -> None:
        self._lookup(tenant_id, order_ids)

    def fetch_printable_line_items(self, tenant_id: str, order_ids: Iterable[str]) -> List[LineItem]:
        items: List[LineItem] = []
        for record in self._lookup(tenant_id, order_ids):
            items.extend(record.line_items)
        return items

    def _lookup(self, tenant_id: str, order_ids: Iterable[str]) -> List[OrderRecord]:
        tenant_id = str(tenant_id)
        ids = [str(oid) for oid in order_ids]
        with self._lock:
            records = [self._orders.get((tenant_id, oid)) for oid in ids]

        missing = [oid for oid, record in zip(ids, records) if record is None]
        if missing:
            raise OrderNotFoundError(tenant_id, missing)

        not_printable = {r.order_id: r.status for r in records if not r.is_printable}
        if not_printable:
            raise OrderNotPrintableError(tenant_id, not_printable)

        return records

    def load_file(self, path: str | Path) -> int:
        """
        Load orders from a JSON fixture file.

        Format:
            {"tenants": {"<tenant>": [{"id": "1001", "status": "paid",
              "items": [{"designRef": "...", "printWidth": 6, "printHeight": 4,
                         "quantity": 2}, ...]}]}}

        Items may give `printSize` with `pixelWidth`/`pixelHeight` instead of
        explicit print width and height.

        Returns:
            Number of orders loaded
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        count = 0
        for tenant_id, orders in data.get("tenants", {}).items():
            for order in orders:
                order_id = str(order["id"])
                items = [_item_from_fixture(order_id, entry) for entry in order.get("items", [])]
                self.add_order(tenant_id, order_id, items, status=order.get("status", "paid"))
                count += 1
        return count


def _item_from_fixture(order_id: str, entry: Dict[str, Any]) -> LineItem:
    if "printSize" in entry:
        line_id = entry.get("lineId")
        return line_item_from_design(
            order_id=order_id,
            design_ref=entry["designRef"],
            pixel_width=int(entry["pixelWidth"]),
            pixel_height=int(entry["pixelHeight"]),
            print_size=float(entry["printSize"]),
            quantity=int(entry.get("quantity", 1)),
            allow_rotate=bool(entry.get("allowRotate", True)),
            line_id=str(line_id) if line_id is not None else None,
            label=entry.get("label", ""),
        )
    return LineItem.from_dict({**entry, "orderId": order_id})
