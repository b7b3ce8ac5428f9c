# Smart Class QR Scheduler - Package
"""
Upcoming-class QR notification service for the classroom management system.
Finds classes about to start, issues single-use QR credentials and emails
them to the professors teaching those classes.
"""

__version__ = "1.0.0"
__description__ = "Upcoming-class QR credential scheduler for classroom access"

# Import core components for easy access
from .modules.database_manager import DatabaseManager
from .modules.qr_generator import QRGenerator
from .modules.notification_system import NotificationSystem
from .modules.schedule_manager import ScheduleManager
from .modules.class_scheduler import ClassScheduler
from .modules.window_matcher import current_occupancy, match_upcoming_classes

__all__ = [
    'DatabaseManager',
    'QRGenerator',
    'NotificationSystem',
    'ScheduleManager',
    'ClassScheduler',
    'match_upcoming_classes',
    'current_occupancy'
]
