from .company import Company
from .research import ResearchRecord

__all__ = [
    "Company",
    "ResearchRecord",
]
