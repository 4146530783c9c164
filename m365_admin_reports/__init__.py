"""
M365 Admin Reports
==================
Read-only tabular reports for a Microsoft 365 tenant: mobile device client
versions, sign-in logs, inbox rules, PIM role eligibility, mailbox
permissions, authentication methods and group memberships.

Every report fetches from Microsoft Graph or the Exchange Online admin API,
filters and flattens the records, and writes a delimited file.
"""

__version__ = "1.0.0"
__mode__ = "READ-ONLY"
