from .keys import canonical_json, consolidation_key, memory_update_key, response_key
from .ledger import WriteLedger
from .schemas import LedgerRecord

__all__ = ["LedgerRecord", "WriteLedger", "canonical_json", "consolidation_key", "memory_update_key", "response_key"]
