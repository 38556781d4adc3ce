from accounts.models.user import User
from accounts.models.client import Client
from accounts.models.otp_challenge import OtpChallenge
from accounts.models.audit_log import AuditLog
