from .base import BaseReport, ReportResult, ParameterError, TargetNotFoundError
from .mobile_devices import MobileDeviceReport
from .sign_ins import SignInReport
from .inbox_rules import InboxRuleReport
from .role_eligibility import RoleEligibilityReport
from .mailbox_permissions import MailboxPermissionReport
from .auth_methods import AuthMethodReport
from .group_members import GroupMemberReport

ALL_REPORTS = [
    MobileDeviceReport,
    SignInReport,
    InboxRuleReport,
    RoleEligibilityReport,
    MailboxPermissionReport,
    AuthMethodReport,
    GroupMemberReport,
]

REPORTS_BY_NAME = {cls.name: cls for cls in ALL_REPORTS}

__all__ = [
    "BaseReport",
    "ReportResult",
    "ParameterError",
    "TargetNotFoundError",
    "MobileDeviceReport",
    "SignInReport",
    "InboxRuleReport",
    "RoleEligibilityReport",
    "MailboxPermissionReport",
    "AuthMethodReport",
    "GroupMemberReport",
    "ALL_REPORTS",
    "REPORTS_BY_NAME",
]
