"""
Expose ORM models for Django's auto-discovery while keeping real definitions
under the infrastructure module.
"""

from funding.infra.models import *
from funding.infra.activities import ActivityORM
