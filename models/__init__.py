from models.user import User
from models.notification import Notification
from models.notification_log import NotificationLog
