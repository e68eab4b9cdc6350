"""
Pydantic schemas for admin API request/response validation.
"""

# Re-export schemas for convenient imports.
from .claim import ClaimDefine as ClaimDefine
from .claim import ClaimResponse as ClaimResponse
from .report import CompileReportResponse as CompileReportResponse
from .rule import RuleDefine as RuleDefine
from .rule import RuleResponse as RuleResponse
