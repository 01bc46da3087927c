"""Library Lending - rezervasyon, ödünç ve stok kuralları

Bu paket şunları içerir:
- Reservation and borrow lifecycles (services/)
- Inventory ledger and access policy
- Database layer (database.py, repositories.py)
- HTTP API (api.py) and CLI (cli.py)
"""

from lending.desk import LendingDesk

__all__ = ["LendingDesk"]
