from app.models.schema.audit_log import AuditLogEntry
from app.models.schema.event_type import EventTypeEntry, EventTypeRoleEntry
from app.models.schema.notification_log import NotificationLogEntry
from app.models.schema.otp import OtpEntry
from app.models.schema.template import EmailTemplateEntry, SmsTemplateEntry
from app.models.schema.user import UserEntry


class Databases:
    otp = OtpEntry
    user = UserEntry
    event_type = EventTypeEntry
    event_type_role = EventTypeRoleEntry
    email_template = EmailTemplateEntry
    sms_template = SmsTemplateEntry
    notification_log = NotificationLogEntry
    audit_log = AuditLogEntry
