"""Apply the user's display order to a record list."""

from .model import Record


def order_records(records: list[Record], order: list[str]) -> list[Record]:
    """Arrange records by an order index.

    The order index is only a hint: ids without a backing record are
    skipped, records missing from the index follow in their original order,
    and no record appears twice.

    Args:
        records: Records in insertion order.
        order: Preferred sequence of record ids.

    Returns:
        A new list with every record exactly once.
    """
    by_id = {r["id"]: r for r in records}
    placed: set[str] = set()
    ordered: list[Record] = []

    for record_id in order:
        if record_id in placed or record_id not in by_id:
            continue
        placed.add(record_id)
        ordered.append(by_id[record_id])

    for record in records:
        if record["id"] not in placed:
            placed.add(record["id"])
            ordered.append(record)

    return ordered
