"""
Studio Modules.

Business modules built on the studio kernel and the studio configuration.
Each module contains:
- Domain models (the nouns)
- ORM persistence models
- Workflows (state machines)
- Configuration schemas (policy and settings)
- Services (transaction-owning entry points)

Modules:
- Payroll: Monthly payroll cycles, compensation slips, employee review,
  payout and salary expense posting
"""

from studio_modules import payroll

__all__ = ["payroll"]
