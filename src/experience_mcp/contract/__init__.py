from experience_mcp.contract.loader import load_contract
from experience_mcp.contract.models import ExperienceContract, PlaybookDefinition

__all__ = ["ExperienceContract", "PlaybookDefinition", "load_contract"]
