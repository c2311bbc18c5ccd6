"""CRM provider adapters -- one normalized contract over many real-estate CRMs.

Provides the abstract CRMAdapter interface with concrete implementations:
- RexAdapter: Rex (bearer token or X-Api-Key)
- AgentBoxAdapter: AgentBox / Reapit (bearer token + api-version header)
- VaultREAdapter: VaultRE (OAuth2 bearer token)

Each adapter owns its provider's field mapping and status vocabulary; nothing
provider-specific crosses the adapter boundary.
"""

from src.crm_hub.adapters.agentbox import AgentBoxAdapter
from src.crm_hub.adapters.base import CRMAdapter, HttpCRMAdapter
from src.crm_hub.adapters.mapping import normalize_phone
from src.crm_hub.adapters.rex import RexAdapter
from src.crm_hub.adapters.vaultre import VaultREAdapter

__all__ = [
    "CRMAdapter",
    "HttpCRMAdapter",
    "RexAdapter",
    "AgentBoxAdapter",
    "VaultREAdapter",
    "normalize_phone",
]
