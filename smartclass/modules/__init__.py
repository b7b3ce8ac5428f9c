# Smart Class QR Scheduler - Modules Package
"""
Core modules of the upcoming-class QR scheduler: database access, record
management, window matching, QR issuance, email delivery and the
notification loop.
"""
